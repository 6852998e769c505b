from chat_core.domain.fragments import (
    TextPart,
    UrlDataRef,
    create_attachment_fragment,
    create_error_content_fragment,
    create_image_content_fragment,
    create_placeholder_content_fragment,
    create_text_content_fragment,
)
from chat_core.domain.message import DMessage, create_message
from chat_core.domain.tokens import TokenAccountant, estimate_tokens_for_fragments, fold_token_count
from chat_core.providers.registry import ModelDescriptor, ModelRegistry


MODEL = ModelDescriptor(id="m", label="M", context_tokens=1000, max_output_tokens=100, chars_per_token=4.0, image_tokens=85)


def test_default_estimator_counts_each_kind():
    fragments = [
        create_text_content_fragment("12345678"),  # 2
        create_text_content_fragment("123"),  # 1（向上取整）
        create_error_content_fragment("1234"),  # 1
        create_placeholder_content_fragment("..."),  # 0
        create_image_content_fragment(UrlDataRef(url="https://example.com/cat.png")),  # 85
        create_attachment_fragment("abcd", TextPart(text="12345678")),  # 1 + 2
    ]
    assert estimate_tokens_for_fragments(fragments, MODEL) == 2 + 1 + 1 + 0 + 85 + 3
    assert estimate_tokens_for_fragments([], MODEL) == 0


def test_fold_token_count():
    messages = [DMessage(id="a", role="user", token_count=10), DMessage(id="b", role="assistant", token_count=0)]
    assert fold_token_count(messages) == 3 + (4 + 10) + (4 + 0)
    assert fold_token_count([]) == 3


def _accountant(estimator=None, default_model_id="m"):
    registry = ModelRegistry([MODEL], default_model_id=default_model_id)
    if estimator is None:
        return TokenAccountant(registry)
    return TokenAccountant(registry, estimator)


def test_cached_count_is_reused_unless_forced():
    calls = []

    def estimator(fragments, model, debug_from):
        calls.append(debug_from)
        return 42

    accountant = _accountant(estimator)
    cached = DMessage(id="a", role="user", token_count=7)
    assert accountant.update_message(cached, "m", False, "test") is cached
    assert calls == []

    forced = accountant.update_message(cached, "m", True, "forced")
    assert forced.token_count == 42
    assert cached.token_count == 7
    assert calls == ["forced"]

    unknown = DMessage(id="b", role="user", token_count=0)
    assert accountant.update_message(unknown, "m", False, "lazy").token_count == 42


def test_lookup_failures_fall_back_to_zero():
    accountant = _accountant()
    message = create_message("user", "some text")
    assert accountant.update_message(message, None, True, "no-model").token_count == 0
    assert accountant.update_message(message, "missing", True, "bad-model").token_count == 0


def test_negative_or_failing_estimator_falls_back_to_zero():
    message = DMessage(id="a", role="user", token_count=5)
    assert _accountant(lambda f, m, d: -3).update_message(message, "m", True, "neg").token_count == 0

    def broken(fragments, model, debug_from):
        raise RuntimeError("boom")

    assert _accountant(broken).update_message(message, "m", True, "boom").token_count == 0


def test_update_messages_returns_total():
    accountant = _accountant(lambda f, m, d: 10)
    messages, total = accountant.update_messages([create_message("user", "x"), create_message("user", "y")], "m", True, "t")
    assert [m.token_count for m in messages] == [10, 10]
    assert total == 3 + 14 + 14
