import pytest

from livechat.core.registry import ConnectionRegistry


@pytest.mark.asyncio
async def test_newer_visitor_supersedes_older(visitor_factory):
    registry = ConnectionRegistry()
    first = visitor_factory("c1")
    second = visitor_factory("c1")

    assert await registry.register(first) is None
    superseded = await registry.register(second)

    assert superseded is first
    assert first.open is False
    assert first.close_code == 4000
    assert registry.find_visitor("c1") is second


@pytest.mark.asyncio
async def test_stale_unregister_is_noop(visitor_factory):
    registry = ConnectionRegistry()
    first = visitor_factory("c1")
    second = visitor_factory("c1")
    await registry.register(first)
    await registry.register(second)

    assert registry.unregister(first) is False
    assert registry.find_visitor("c1") is second
    assert registry.unregister(second) is True
    assert registry.find_visitor("c1") is None


@pytest.mark.asyncio
async def test_admins_coexist(admin_factory):
    registry = ConnectionRegistry()
    a, b = admin_factory(), admin_factory()
    await registry.register(a)
    await registry.register(b)
    assert set(registry.all_admins()) == {a, b}
    registry.unregister(a)
    assert registry.all_admins() == [b]


@pytest.mark.asyncio
async def test_closed_connections_are_not_live(visitor_factory):
    registry = ConnectionRegistry()
    conn = visitor_factory("c1")
    await registry.register(conn)
    conn.open = False
    assert registry.find_visitor("c1") is None
    assert registry.is_online("c1") is False
    assert registry.get(conn.connection_id) is conn


@pytest.mark.asyncio
async def test_stats(visitor_factory, admin_factory):
    registry = ConnectionRegistry()
    await registry.register(admin_factory())
    await registry.register(visitor_factory("c1", name="Ann"))
    stats = registry.stats()
    assert stats["connectedClients"] == 2
    assert stats["adminOnline"] == 1
    assert stats["activeChats"] == 1
    assert stats["users"][0]["id"] == "c1"
    assert stats["users"][0]["name"] == "Ann"
