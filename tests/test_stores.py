import json
import sqlite3

import pytest
import pytest_asyncio

from livechat.core.types import DeliveryStatus, Role, ThreadStatus
from livechat.storage.database import Database
from livechat.storage.json_store import JsonFileThreadStore
from livechat.storage.memory_store import MemoryThreadStore
from livechat.storage.models import ChatMessage
from livechat.storage.sqlite_store import SqliteThreadStore


def _msg(client_id, msg_id, text="hi", role=Role.VISITOR, at="2024-01-01T00:00:00.000Z"):
    return ChatMessage(id=msg_id, client_id=client_id, sender_role=role, text=text, created_at=at)


@pytest_asyncio.fixture(params=["memory", "json", "sqlite"])
async def store(request, tmp_path):
    match request.param:
        case "memory":
            engine = MemoryThreadStore()
        case "json":
            engine = JsonFileThreadStore(str(tmp_path / "chats.json"))
        case "sqlite":
            engine = SqliteThreadStore(Database(str(tmp_path / "chat.db")))
    await engine.initialize()
    yield engine
    await engine.close()


@pytest.mark.asyncio
async def test_append_creates_thread_and_keeps_order(store):
    for i in range(3):
        assert await store.append_message("c1", _msg("c1", f"m{i}"), {"name": "Ann"})
    thread = await store.get_thread("c1")
    assert [m.id for m in thread.messages] == ["m0", "m1", "m2"]
    assert thread.client_info["name"] == "Ann"
    assert thread.status == ThreadStatus.ACTIVE


@pytest.mark.asyncio
async def test_duplicate_id_is_not_appended(store):
    await store.append_message("c1", _msg("c1", "m1"))
    assert await store.append_message("c1", _msg("c1", "m1", text="again")) is False
    thread = await store.get_thread("c1")
    assert len(thread.messages) == 1
    assert thread.messages[0].text == "hi"


@pytest.mark.asyncio
async def test_message_reopens_resolved_thread(store):
    await store.append_message("c1", _msg("c1", "m1"))
    assert await store.set_status("c1", ThreadStatus.RESOLVED)
    assert [t.client_id for t in await store.list_threads(ThreadStatus.RESOLVED)] == ["c1"]
    await store.append_message("c1", _msg("c1", "m2"))
    assert (await store.get_thread("c1")).status == ThreadStatus.ACTIVE


@pytest.mark.asyncio
async def test_missing_thread_operations(store):
    assert await store.get_thread("nobody") is None
    assert await store.set_status("nobody", ThreadStatus.RESOLVED) is False
    assert await store.delete_thread("nobody") is False
    assert await store.advance_delivery("nobody", DeliveryStatus.READ) == 0


@pytest.mark.asyncio
async def test_delete_thread(store):
    await store.append_message("c1", _msg("c1", "m1"))
    assert await store.delete_thread("c1") is True
    assert await store.get_thread("c1") is None
    assert await store.list_threads() == []


@pytest.mark.asyncio
async def test_client_info_never_creates_ghost(store):
    assert await store.update_client_info("c1", {"name": "Guest", "email": None, "lastSeen": "x"}) is False
    assert await store.get_thread("c1") is None
    assert await store.update_client_info("c2", {"name": "Ann", "email": "ann@example.com"}) is True
    thread = await store.get_thread("c2")
    assert thread.messages == []
    assert thread.client_info == {"name": "Ann", "email": "ann@example.com"}


@pytest.mark.asyncio
async def test_client_info_merge_skips_empty_values(store):
    await store.append_message("c1", _msg("c1", "m1"), {"name": "Ann", "email": "a@b.co"})
    await store.update_client_info("c1", {"name": "Anna", "email": None})
    info = (await store.get_thread("c1")).client_info
    assert info == {"name": "Anna", "email": "a@b.co"}


@pytest.mark.asyncio
async def test_advance_delivery_by_role_and_id(store):
    await store.append_message("c1", _msg("c1", "v1"))
    await store.append_message("c1", _msg("c1", "a1", role=Role.ADMIN))
    await store.append_message("c1", _msg("c1", "v2"))

    assert await store.advance_delivery("c1", DeliveryStatus.DELIVERED, message_ids=["v1"]) == 1
    assert await store.advance_delivery("c1", DeliveryStatus.READ, sender_role=Role.VISITOR) == 2
    assert await store.advance_delivery("c1", DeliveryStatus.DELIVERED, sender_role=Role.VISITOR) == 0

    statuses = {m.id: m.delivery_status for m in (await store.get_thread("c1")).messages}
    assert statuses == {
        "v1": DeliveryStatus.READ,
        "a1": DeliveryStatus.SENT,
        "v2": DeliveryStatus.READ,
    }


@pytest.mark.asyncio
async def test_purge_ghosts_respects_age_and_content(store):
    await store.append_message("keep", _msg("keep", "m1"))
    await store.update_client_info("named", {"name": "Ann"})
    # Nothing ghostly yet: threads have a message or a real name
    assert await store.purge_ghosts() == 0

    await store.update_client_info("named", {"name": "Guest"})
    assert await store.purge_ghosts(older_than="2000-01-01T00:00:00.000Z") == 0
    assert await store.purge_ghosts() == 1
    assert await store.get_thread("named") is None
    assert await store.get_thread("keep") is not None


@pytest.mark.asyncio
async def test_json_store_survives_restart(tmp_path):
    path = tmp_path / "chats.json"
    first = JsonFileThreadStore(str(path))
    await first.initialize()
    await first.append_message("c1", _msg("c1", "m1"), {"name": "Ann"})

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["chats"]["c1"]["clientInfo"]["name"] == "Ann"
    assert document["chats"]["c1"]["messages"][0]["senderRole"] == "visitor"

    second = JsonFileThreadStore(str(path))
    await second.initialize()
    thread = await second.get_thread("c1")
    assert [m.id for m in thread.messages] == ["m1"]


@pytest.mark.asyncio
async def test_sqlite_store_survives_restart(tmp_path):
    path = str(tmp_path / "chat.db")
    first = SqliteThreadStore(Database(path))
    await first.initialize()
    await first.append_message("c1", _msg("c1", "m1"))
    await first.close()

    second = SqliteThreadStore(Database(path))
    await second.initialize()
    try:
        thread = await second.get_thread("c1")
        assert [m.id for m in thread.messages] == ["m1"]
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_sqlite_failed_append_leaves_no_thread(tmp_path):
    db_path = str(tmp_path / "chat.db")
    engine = SqliteThreadStore(Database(db_path))
    await engine.initialize()
    try:
        # A list cannot be bound as a SQL parameter, so the message insert fails
        # after the thread row has been written.
        broken = ChatMessage(id="m1", client_id="ghost", sender_role=Role.VISITOR, text=["not", "text"])
        with pytest.raises(sqlite3.Error):
            await engine.append_message("ghost", broken)

        await engine.append_message("c1", _msg("c1", "m1"))
        await engine.set_status("c1", ThreadStatus.RESOLVED)
    finally:
        await engine.close()

    reopened = SqliteThreadStore(Database(db_path))
    await reopened.initialize()
    try:
        assert await reopened.get_thread("ghost") is None
        assert [t.client_id for t in await reopened.list_threads()] == ["c1"]
    finally:
        await reopened.close()
