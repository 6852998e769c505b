"""v3 -> v4 会话格式转换。

v3 的消息只有一段 text（外加 sender / avatar / typing 等界面字段），
v4 改为多片段结构。旧版本按 camelCase 写入字段名（tokenCount、systemPurposeId 等），
转换时统一改为 snake_case。转换是纯字典操作，对任何输入都返回结果、不抛异常。
"""

from typing import Any, Dict, List, Mapping

from chat_core.domain.ids import IdFactory, new_id


_MESSAGE_KEYS = {
    "tokenCount": "token_count",
    "purposeId": "purpose_id",
    "originLLM": "origin_llm",
}

_CONVERSATION_KEYS = {
    "systemPurposeId": "system_purpose_id",
    "userTitle": "user_title",
    "autoTitle": "auto_title",
    "userSymbol": "user_symbol",
    "tokenCount": "token_count",
}


def _rename_keys(record: Dict[str, Any], renames: Mapping[str, str]) -> Dict[str, Any]:
    renamed = dict(record)
    for legacy_key, key in renames.items():
        if legacy_key in renamed:
            value = renamed.pop(legacy_key)
            # 两种写法同时存在时以 snake_case 为准
            renamed.setdefault(key, value)
    return renamed


def _legacy_fragments(message: Dict[str, Any], id_factory: IdFactory) -> List[Dict[str, Any]]:
    text = message.get("text")
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    if not text and message.get("typing"):
        # 保存时仍在生成且尚无内容：转成占位符，加载后会被标记为未完成
        part = {"pt": "ph", "p_text": "..."}
    else:
        part = {"pt": "text", "text": text}
    return [{"ft": "content", "f_id": id_factory("chat-dfragment"), "part": part}]


def convert_legacy_message(message: Dict[str, Any], id_factory: IdFactory = new_id) -> Dict[str, Any]:
    message = _rename_keys(message, _MESSAGE_KEYS)
    converted: Dict[str, Any] = {
        "id": message.get("id") or id_factory("chat-dmessage"),
        "role": message.get("role") or "assistant",
        "fragments": _legacy_fragments(message, id_factory),
        "metadata": dict(message.get("metadata") or {}),
        "token_count": message.get("token_count") or 0,
        "purpose_id": message.get("purpose_id"),
        "origin_llm": message.get("origin_llm"),
        "created": message.get("created"),
        "updated": message.get("updated"),
    }
    if message.get("typing"):
        converted["pending_incomplete"] = True
    return converted


def convert_legacy_conversation(conversation: Dict[str, Any], id_factory: IdFactory = new_id) -> Dict[str, Any]:
    converted = _rename_keys(conversation, _CONVERSATION_KEYS)
    converted["messages"] = [convert_legacy_message(m, id_factory) for m in conversation.get("messages") or []]
    # 取消句柄只存在于内存
    converted.pop("abort_controller", None)
    converted.pop("abortController", None)
    return converted
