"""模型注册表集成层。

token 统计只依赖 ModelLookup 协议（find_model / get_default_model_id），
具体模型清单与默认模型由 registry 模块集中配置。
"""

from chat_core.providers.registry import (
    BUILTIN_MODELS,
    ModelDescriptor,
    ModelLookup,
    ModelRegistry,
    default_registry,
)

__all__ = ["BUILTIN_MODELS", "ModelDescriptor", "ModelLookup", "ModelRegistry", "default_registry"]
