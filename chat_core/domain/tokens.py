"""token 统计。

规则：
1. 只有在强制刷新，或缓存值为 0（未知）时才重新估算一条消息。
2. 没有配置默认模型时，token 数记为 0，不算错误。
3. 模型查找失败或估算器抛异常时，token 数记为 0 并记录日志。
4. 会话总数用 fold_token_count 折叠每条消息的缓存值，
   除 set_messages / import_conversation 外从不对整段历史重新估算
   （流式追加片段时避免反复对全部历史分词）。

计算所需的模型 ID 由调用方显式传入，本模块不读取任何全局状态。
"""

import logging
import math
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from chat_core.domain.exceptions import ModelNotFoundError
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import ModelDescriptor, ModelLookup
from .fragments import DMessageFragment
from .message import DMessage


TokenEstimator = Callable[[Sequence[DMessageFragment], ModelDescriptor, str], int]


def _text_tokens(text: str, model: ModelDescriptor) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / model.chars_per_token)


def estimate_tokens_for_fragments(fragments: Sequence[DMessageFragment], model: ModelDescriptor, debug_from: str = "") -> int:
    """默认估算器：按字符数粗略估算，图片按模型的固定值计。"""

    total = 0
    for fragment in fragments:
        if fragment.ft == "attachment":
            total += _text_tokens(fragment.title, model)
        part = fragment.part
        if part.pt == "text":
            total += _text_tokens(part.text, model)
        elif part.pt == "error":
            total += _text_tokens(part.error, model)
        elif part.pt == "image_ref":
            total += model.image_tokens
        # 占位符不计 token
    return total


def fold_token_count(messages: Sequence[DMessage]) -> int:
    """会话 token 总数：3 + Σ(4 + 每条消息缓存的 token 数)。

    常数对应每个会话 / 每条消息固定的协议开销；这里只读取缓存，不调用估算器。
    """

    return 3 + sum(4 + (m.token_count or 0) for m in messages)


class TokenAccountant:
    """根据给定模型 ID 计算并缓存消息的 token 数。

    消息是只读记录，因此方法返回带新 token_count 的消息副本；
    数值未变化时直接返回原对象。
    """

    def __init__(self, lookup: ModelLookup, estimator: TokenEstimator = estimate_tokens_for_fragments):
        self._lookup = lookup
        self._estimator = estimator

    def update_message(self, message: DMessage, model_id: Optional[str], force: bool, debug_from: str) -> DMessage:
        if not force and message.token_count:
            return message
        token_count = self._estimate(message, model_id, debug_from)
        if token_count == message.token_count:
            return message
        return replace(message, token_count=token_count)

    def update_messages(
        self,
        messages: Sequence[DMessage],
        model_id: Optional[str],
        force: bool,
        debug_from: str,
    ) -> Tuple[Tuple[DMessage, ...], int]:
        """逐条刷新消息 token 数，返回 (新消息元组, 会话总数)。"""

        updated: List[DMessage] = [self.update_message(m, model_id, force, debug_from) for m in messages]
        return tuple(updated), fold_token_count(updated)

    def _estimate(self, message: DMessage, model_id: Optional[str], debug_from: str) -> int:
        if not model_id:
            return 0
        try:
            model = self._lookup.find_model(model_id)
        except (ModelNotFoundError, KeyError):
            logger.log(
                logging.ERROR,
                "Token count: model not found",
                extra={"extra": {"model_id": model_id, "message_id": message.id, "debug_from": debug_from}},
            )
            return 0
        try:
            count = int(self._estimator(message.fragments, model, debug_from))
        except Exception:
            logger.exception(
                "Token count: estimator failed",
                extra={"extra": {"model_id": model_id, "message_id": message.id, "debug_from": debug_from}},
            )
            return 0
        return max(count, 0)
