"""模型注册表。

token 统计需要知道“当前聊天模型”的上下文窗口与估算参数。
本模块把模型 ID 映射为 ModelDescriptor：

- find_model(model_id)：查找描述，不存在时抛 ModelNotFoundError。
- get_default_model_id()：当前配置的聊天模型，可能为 None（此时 token 数记为 0）。

上层只依赖 ModelLookup 协议，测试或宿主应用可以替换成自己的注册表。"""

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Protocol

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ModelNotFoundError


@dataclass(frozen=True)
class ModelDescriptor:
    """单个模型的描述。"""

    id: str
    label: str
    context_tokens: int
    max_output_tokens: int
    # 粗略估算：每个 token 约对应的字符数
    chars_per_token: float = 4.0
    # 每张图片引用按固定 token 数计
    image_tokens: int = 512


class ModelLookup(Protocol):
    def find_model(self, model_id: str) -> ModelDescriptor:
        ...

    def get_default_model_id(self) -> Optional[str]:
        ...


BUILTIN_MODELS: Mapping[str, ModelDescriptor] = {
    "kimi-k2-turbo-preview": ModelDescriptor(
        id="kimi-k2-turbo-preview",
        label="Kimi K2 Turbo",
        context_tokens=262_144,
        max_output_tokens=8192,
    ),
    "glm-4.6": ModelDescriptor(
        id="glm-4.6",
        label="GLM 4.6",
        context_tokens=200_000,
        max_output_tokens=8192,
        chars_per_token=3.5,
    ),
}


class ModelRegistry:
    """进程内模型注册表，默认模型 ID 取自配置。"""

    def __init__(self, models: Iterable[ModelDescriptor] = (), default_model_id: Optional[str] = None):
        self._models: Dict[str, ModelDescriptor] = {m.id: m for m in models}
        self._default_model_id = default_model_id

    def register(self, model: ModelDescriptor) -> None:
        self._models[model.id] = model

    def find_model(self, model_id: str) -> ModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError:
            raise ModelNotFoundError(model_id) from None

    def get_default_model_id(self) -> Optional[str]:
        return self._default_model_id

    def set_default_model_id(self, model_id: Optional[str]) -> None:
        self._default_model_id = model_id


def default_registry() -> ModelRegistry:
    """使用内置模型与配置中的 default_chat_model 构造注册表。"""

    return ModelRegistry(BUILTIN_MODELS.values(), default_model_id=settings.default_chat_model)
