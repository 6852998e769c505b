import tempfile
from pathlib import Path

from chat_core.api import service
from chat_core.domain.message import create_message
from chat_core.infrastructure.storage.chat_persistence import ChatPersistence
from chat_core.infrastructure.storage.kv_store import JsonFileStorage
from chat_core.providers.registry import ModelRegistry
from chat_core.store.chat_store import ChatStore


def _reset(monkeypatch, root: Path) -> None:
    monkeypatch.setattr(service, "_store", ChatStore(lookup=ModelRegistry()))
    monkeypatch.setattr(service, "_persistence", ChatPersistence(JsonFileStorage(root=root)))
    monkeypatch.setattr(service, "_unbind", None)


def test_load_chats_persists_changes_across_restarts(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        _reset(monkeypatch, root)

        store = service.load_chats()
        cid = store.prepend_new_conversation("Developer")
        store.append_message(cid, create_message("user", "remember me"))
        assert (root / "app-chats.json").exists()

        # 模拟进程重启
        _reset(monkeypatch, root)
        store = service.load_chats(auto_save=False)
        assert service.is_valid_conversation(cid)
        assert service.get_conversation_system_purpose_id(cid) == "Developer"
        assert len(service.get_conversation(cid).messages) == 1


def test_save_chats_without_binding(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        _reset(monkeypatch, root)

        store = service.load_chats(auto_save=False)
        store.set_user_title(store.conversations[0].id, "Manual save")
        assert not (root / "app-chats.json").exists()

        service.save_chats()
        assert (root / "app-chats.json").exists()
