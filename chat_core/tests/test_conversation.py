import dataclasses

import pytest

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    DConversation,
    conversation_title,
    create_conversation,
    duplicate_conversation,
    next_branch_title,
)
from chat_core.domain.fragments import (
    DBlobDataRef,
    create_attachment_fragment,
    create_error_content_fragment,
    create_image_content_fragment,
    create_placeholder_content_fragment,
    create_text_content_fragment,
    duplicate_fragment,
    is_attachment_fragment,
    is_content_fragment,
    is_error_part,
    is_image_ref_part,
    is_placeholder_part,
    is_text_part,
    TextPart,
)
from chat_core.domain.message import create_message, duplicate_message, message_text


def test_fragment_factories_and_predicates():
    text = create_text_content_fragment("hi")
    error = create_error_content_fragment("bad")
    placeholder = create_placeholder_content_fragment("Thinking...")
    image = create_image_content_fragment(DBlobDataRef(dblob_asset_id="asset-1", mime_type="image/png"))
    attachment = create_attachment_fragment("notes.md", TextPart(text="# notes"))

    assert is_content_fragment(text) and is_text_part(text.part)
    assert is_error_part(error.part)
    assert is_placeholder_part(placeholder.part)
    assert is_image_ref_part(image.part) and image.part.data_ref.reftype == "dblob"
    assert is_attachment_fragment(attachment) and not is_content_fragment(attachment)
    assert len({f.f_id for f in (text, error, placeholder, image, attachment)}) == 5


def test_fragments_are_immutable():
    fragment = create_text_content_fragment("hi")
    with pytest.raises(dataclasses.FrozenInstanceError):
        fragment.part = TextPart(text="changed")  # type: ignore[misc]


def test_duplicate_fragment_gets_new_id():
    fragment = create_text_content_fragment("hi")
    copy = duplicate_fragment(fragment)
    assert copy.f_id != fragment.f_id
    assert copy.part is fragment.part


def test_create_message_from_text_and_fragments():
    message = create_message("user", "hello")
    assert message_text(message) == "hello"
    assert message.token_count == 0
    assert not message.pending_incomplete
    assert message.updated is None

    parts = [create_text_content_fragment("a"), create_error_content_fragment("oops"), create_text_content_fragment("b")]
    message = create_message("assistant", parts)
    assert message.fragments == tuple(parts)
    assert message_text(message, separator="|") == "a|b"


def test_duplicate_message_copies_content_with_fresh_ids():
    message = create_message("assistant", "hello")
    copy = duplicate_message(message)
    assert copy.id != message.id
    assert copy.fragments[0].f_id != message.fragments[0].f_id
    assert message_text(copy) == "hello"


def test_create_conversation_defaults():
    conversation = create_conversation()
    assert conversation.id.startswith("c-")
    assert conversation.system_purpose_id == settings.default_persona_id
    assert conversation.messages == ()
    assert create_conversation("Developer").system_purpose_id == "Developer"


def test_conversation_title_precedence():
    conversation = DConversation(id="c1", auto_title="auto")
    assert conversation_title(conversation) == "auto"
    assert conversation_title(dataclasses.replace(conversation, user_title="user")) == "user"
    assert conversation_title(DConversation(id="c2"), fallback="New Chat") == "New Chat"


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Trip", "(1) Trip"),
        ("(1) Trip", "(2) Trip"),
        ("(9) Trip", "(10) Trip"),
        ("", ""),
    ],
)
def test_next_branch_title(title, expected):
    assert next_branch_title(title) == expected


def test_duplicate_conversation_with_unknown_message_keeps_everything():
    messages = tuple(create_message("user", str(i)) for i in range(3))
    conversation = DConversation(id="c1", messages=messages, user_symbol="*")
    copy = duplicate_conversation(conversation, "not-there")
    assert len(copy.messages) == 3
    assert copy.id != conversation.id
    assert copy.user_symbol == "*"
    assert copy.created == conversation.created
