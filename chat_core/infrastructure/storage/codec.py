"""会话记录 <-> JSON 字典 的转换。

编码直接使用 dataclasses.asdict，再把时间戳格式化为 ISO-8601（UTC, "Z" 结尾）；
解码时逐字段读取，缺失字段取默认值。时间戳同时兼容旧版本写入的毫秒整数。
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import DConversation
from chat_core.domain.exceptions import MigrationError
from chat_core.domain.fragments import (
    AttachmentFragment,
    ContentFragment,
    DataRef,
    DBlobDataRef,
    DMessageFragment,
    ErrorPart,
    ImageRefPart,
    PlaceholderPart,
    TextPart,
    UrlDataRef,
)
from chat_core.domain.message import DMessage, utcnow


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---- 编码 ----

def encode_conversation(conversation: DConversation) -> Dict[str, Any]:
    payload = asdict(conversation)
    payload["created"] = format_timestamp(conversation.created)
    payload["updated"] = format_timestamp(conversation.updated)
    for message, encoded in zip(conversation.messages, payload["messages"]):
        encoded["created"] = format_timestamp(message.created)
        encoded["updated"] = format_timestamp(message.updated)
    return payload


# ---- 解码 ----

def decode_data_ref(data: Dict[str, Any]) -> DataRef:
    reftype = data.get("reftype")
    if reftype == "url":
        return UrlDataRef(url=data["url"])
    if reftype == "dblob":
        asset_id = data.get("dblob_asset_id") or data.get("dblob_id")
        if not asset_id:
            raise MigrationError(code="STORE_DECODE_ERROR", message="Blob data reference without asset id")
        return DBlobDataRef(
            dblob_asset_id=asset_id,
            mime_type=data.get("mime_type") or "",
            bytes_size=data.get("bytes_size"),
        )
    raise MigrationError(code="STORE_DECODE_ERROR", message=f"Unknown data reference type: {reftype!r}")


def decode_part(data: Dict[str, Any]):
    pt = data.get("pt")
    if pt == "text":
        return TextPart(text=data.get("text") or "")
    if pt == "image_ref":
        return ImageRefPart(
            data_ref=decode_data_ref(data["data_ref"]),
            alt_text=data.get("alt_text"),
            width=data.get("width"),
            height=data.get("height"),
        )
    if pt == "error":
        return ErrorPart(error=data.get("error") or "")
    if pt == "ph":
        return PlaceholderPart(p_text=data.get("p_text") or "")
    raise MigrationError(code="STORE_DECODE_ERROR", message=f"Unknown content part type: {pt!r}")


def decode_fragment(data: Dict[str, Any]) -> DMessageFragment:
    ft = data.get("ft")
    if ft == "content":
        return ContentFragment(f_id=data["f_id"], part=decode_part(data["part"]))
    if ft == "attachment":
        return AttachmentFragment(f_id=data["f_id"], title=data.get("title") or "", part=decode_part(data["part"]))
    raise MigrationError(code="STORE_DECODE_ERROR", message=f"Unknown fragment type: {ft!r}")


def decode_message(data: Dict[str, Any]) -> DMessage:
    return DMessage(
        id=data["id"],
        role=data.get("role") or "assistant",
        fragments=tuple(decode_fragment(f) for f in data.get("fragments") or ()),
        metadata=dict(data.get("metadata") or {}),
        token_count=max(int(data.get("token_count") or 0), 0),
        pending_incomplete=bool(data.get("pending_incomplete", False)),
        purpose_id=data.get("purpose_id"),
        origin_llm=data.get("origin_llm"),
        created=parse_timestamp(data.get("created")) or utcnow(),
        updated=parse_timestamp(data.get("updated")),
    )


def decode_conversation(data: Dict[str, Any]) -> DConversation:
    return DConversation(
        id=data["id"],
        messages=tuple(decode_message(m) for m in data.get("messages") or ()),
        system_purpose_id=data.get("system_purpose_id") or settings.default_persona_id,
        user_title=data.get("user_title"),
        auto_title=data.get("auto_title"),
        user_symbol=data.get("user_symbol") or None,
        token_count=max(int(data.get("token_count") or 0), 0),
        created=parse_timestamp(data.get("created")) or utcnow(),
        updated=parse_timestamp(data.get("updated")),
    )
