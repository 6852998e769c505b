import pytest

from chat_core.domain.exceptions import BusinessError, ModelNotFoundError
from chat_core.providers.registry import BUILTIN_MODELS, ModelDescriptor, ModelRegistry, default_registry


def test_find_model_and_missing_model():
    registry = ModelRegistry([ModelDescriptor(id="a", label="A", context_tokens=10, max_output_tokens=5)])
    assert registry.find_model("a").label == "A"
    with pytest.raises(ModelNotFoundError) as exc:
        registry.find_model("b")
    assert isinstance(exc.value, BusinessError)
    assert exc.value.code == "MODEL_NOT_FOUND"
    assert exc.value.model_id == "b"


def test_register_and_default_model_id():
    registry = ModelRegistry()
    assert registry.get_default_model_id() is None
    registry.register(ModelDescriptor(id="x", label="X", context_tokens=10, max_output_tokens=5))
    registry.set_default_model_id("x")
    assert registry.get_default_model_id() == "x"
    assert registry.find_model("x").id == "x"


def test_default_registry_uses_settings(monkeypatch):
    class DummySettings:
        default_chat_model = "kimi-k2-turbo-preview"

    monkeypatch.setattr("chat_core.providers.registry.settings", DummySettings())
    registry = default_registry()
    assert registry.get_default_model_id() == "kimi-k2-turbo-preview"
    for model_id in BUILTIN_MODELS:
        assert registry.find_model(model_id).id == model_id
