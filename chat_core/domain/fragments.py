"""消息内容片段（fragment）模型。

一条消息由若干片段组成，片段是带标签的变体：

- ContentFragment (ft="content")：模型或用户产生的内容，part 可以是
  文本、图片引用、错误信息或占位符（流式生成尚未完成）。
- AttachmentFragment (ft="attachment")：用户附加的文档 / 图片。

所有片段与 part 都是 frozen dataclass：编辑时整体替换，从不原地修改，
这样上层可以用对象身份（is）判断内容是否变化。
"""

from dataclasses import dataclass, field, replace
from typing import Literal, Optional, Union

from .ids import IdFactory, new_id


# ---- 数据引用 ----

@dataclass(frozen=True)
class UrlDataRef:
    url: str
    reftype: Literal["url"] = field(default="url", init=False)


@dataclass(frozen=True)
class DBlobDataRef:
    """指向本地资产库（dblob）中的二进制资源。"""

    dblob_asset_id: str
    mime_type: str = ""
    bytes_size: Optional[int] = None
    reftype: Literal["dblob"] = field(default="dblob", init=False)


DataRef = Union[UrlDataRef, DBlobDataRef]


# ---- 内容 part ----

@dataclass(frozen=True)
class TextPart:
    text: str
    pt: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ImageRefPart:
    data_ref: DataRef
    alt_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pt: Literal["image_ref"] = field(default="image_ref", init=False)


@dataclass(frozen=True)
class ErrorPart:
    error: str
    pt: Literal["error"] = field(default="error", init=False)


@dataclass(frozen=True)
class PlaceholderPart:
    p_text: str
    pt: Literal["ph"] = field(default="ph", init=False)


ContentPart = Union[TextPart, ImageRefPart, ErrorPart, PlaceholderPart]
AttachmentPart = Union[TextPart, ImageRefPart]


# ---- 片段 ----

@dataclass(frozen=True)
class ContentFragment:
    f_id: str
    part: ContentPart
    ft: Literal["content"] = field(default="content", init=False)


@dataclass(frozen=True)
class AttachmentFragment:
    f_id: str
    title: str
    part: AttachmentPart
    ft: Literal["attachment"] = field(default="attachment", init=False)


DMessageFragment = Union[ContentFragment, AttachmentFragment]


# ---- 类型判断 ----

def is_content_fragment(fragment: DMessageFragment) -> bool:
    return fragment.ft == "content"


def is_attachment_fragment(fragment: DMessageFragment) -> bool:
    return fragment.ft == "attachment"


def is_text_part(part: ContentPart) -> bool:
    return part.pt == "text"


def is_image_ref_part(part: ContentPart) -> bool:
    return part.pt == "image_ref"


def is_error_part(part: ContentPart) -> bool:
    return part.pt == "error"


def is_placeholder_part(part: ContentPart) -> bool:
    return part.pt == "ph"


# ---- 构造 ----

def create_text_content_fragment(text: str, id_factory: IdFactory = new_id) -> ContentFragment:
    return ContentFragment(f_id=id_factory("chat-dfragment"), part=TextPart(text=text))


def create_error_content_fragment(error: str, id_factory: IdFactory = new_id) -> ContentFragment:
    return ContentFragment(f_id=id_factory("chat-dfragment"), part=ErrorPart(error=error))


def create_placeholder_content_fragment(p_text: str, id_factory: IdFactory = new_id) -> ContentFragment:
    return ContentFragment(f_id=id_factory("chat-dfragment"), part=PlaceholderPart(p_text=p_text))


def create_image_content_fragment(
    data_ref: DataRef,
    alt_text: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    id_factory: IdFactory = new_id,
) -> ContentFragment:
    part = ImageRefPart(data_ref=data_ref, alt_text=alt_text, width=width, height=height)
    return ContentFragment(f_id=id_factory("chat-dfragment"), part=part)


def create_attachment_fragment(title: str, part: AttachmentPart, id_factory: IdFactory = new_id) -> AttachmentFragment:
    return AttachmentFragment(f_id=id_factory("chat-dfragment"), title=title, part=part)


def duplicate_fragment(fragment: DMessageFragment, id_factory: IdFactory = new_id) -> DMessageFragment:
    """复制片段并分配新的 f_id；part 本身不可变，可以直接共享。"""

    return replace(fragment, f_id=id_factory("chat-dfragment"))
