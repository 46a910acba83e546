import pytest

from conftest import wait_until
from livechat.client.console import AdminConsole
from livechat.client.widget import VisitorWidget
from livechat.core.presence import ActiveChatSummary
from livechat.core.types import ConnectionState, DeliveryStatus, Role
from livechat.errors import TransportFailure
from livechat.protocol.frames import (
    ActiveChatsFrame,
    ChatDeletedFrame,
    ChatEventFrame,
    ClientIdFrame,
    HistoryFrame,
    MessageStatusFrame,
)


def _visitor_event(client_id, msg_id, text="hi", at="2024-01-01T00:00:01.000Z"):
    return ChatEventFrame(
        id=msg_id,
        client_id=client_id,
        message=text,
        timestamp=at,
        sender_role=Role.VISITOR,
        name="Ann",
        status=DeliveryStatus.DELIVERED,
    )


@pytest.mark.asyncio
async def test_widget_keeps_assigned_id_across_reconnects(connector, fast_reconnect):
    widget = VisitorWidget("ws://chat.test", name="Ann", config=fast_reconnect, connector=connector)
    await widget.start()
    try:
        assert connector.urls[0] == "ws://chat.test/ws"
        assert connector.last.sent_types() == ["identify", "get_history"]

        connector.last.feed(ClientIdFrame(client_id="client_123"))
        await wait_until(lambda: widget.client_id == "client_123")

        connector.last.drop()
        await wait_until(lambda: connector.calls == 2 and widget.state == ConnectionState.CONNECTED)
        assert connector.urls[1] == "ws://chat.test/ws?clientId=client_123"
        assert connector.last.sent_types() == ["identify", "get_history"]
    finally:
        await widget.stop()


@pytest.mark.asyncio
async def test_widget_dedups_outgoing_and_replayed_messages(connector, fast_reconnect):
    widget = VisitorWidget("ws://chat.test", client_id="c1", config=fast_reconnect, connector=connector)
    await widget.start()
    try:
        sent = await widget.send_message("hello", message_id="msg-1-a")
        assert sent is not None
        assert await widget.send_message("hello", message_id="msg-1-a") is None
        assert connector.last.sent_types().count("chat") == 1

        connector.last.feed(MessageStatusFrame(id="msg-1-a", client_id="c1", status=DeliveryStatus.DELIVERED))
        connector.last.feed(HistoryFrame(client_id="c1", messages=[sent.to_dict()]))
        await wait_until(lambda: widget.history[0].delivery_status == DeliveryStatus.DELIVERED)
        assert [m.id for m in widget.history] == ["msg-1-a"]
    finally:
        await widget.stop()


@pytest.mark.asyncio
async def test_widget_reports_lost_connection(connector, fast_reconnect):
    connector.refuse = True
    widget = VisitorWidget("ws://chat.test", config=fast_reconnect, connector=connector)
    await widget.start()
    await wait_until(lambda: widget.state == ConnectionState.LOST)
    assert widget.notices[-1] == "Connection lost. Please reload."


@pytest.mark.asyncio
async def test_console_resyncs_open_thread_after_reconnect(connector, fast_reconnect):
    console = AdminConsole("ws://chat.test", api_key="k1", config=fast_reconnect, connector=connector)
    await console.start()
    try:
        assert connector.urls[0] == "ws://chat.test/ws/admin?apiKey=k1"
        assert connector.last.sent_types() == ["identify", "get_active_chats"]
        assert connector.last.sent[0]["isAdmin"] is True

        await console.open_chat("c1")
        connector.last.drop()
        await wait_until(lambda: connector.calls == 2 and console.state == ConnectionState.CONNECTED)

        assert connector.last.sent_types() == ["identify", "get_active_chats", "get_history"]
        assert connector.last.sent[2]["clientId"] == "c1"
    finally:
        await console.stop()


@pytest.mark.asyncio
async def test_console_tracks_unread_outside_open_thread(connector, fast_reconnect):
    console = AdminConsole("ws://chat.test", api_key="k1", config=fast_reconnect, connector=connector)
    await console.start()
    try:
        connector.last.feed(
            ActiveChatsFrame(
                chats=[ActiveChatSummary("c1", "Ann", "old", "2024-01-01T00:00:00.000Z", True).to_dict()]
            )
        )
        await wait_until(lambda: "c1" in console.presence)
        await console.open_chat("c1")
        assert console.presence.get("c1").unread is False

        connector.last.feed(_visitor_event("c1", "m1", at="2024-01-01T00:00:02.000Z"))
        connector.last.feed(_visitor_event("c2", "m2", at="2024-01-01T00:00:03.000Z"))
        connector.last.feed(_visitor_event("c2", "m2", at="2024-01-01T00:00:03.000Z"))
        await wait_until(lambda: "c2" in console.presence)

        assert console.presence.get("c1").unread is False
        assert console.presence.get("c2").unread is True
        assert [s.client_id for s in console.active_chats] == ["c2", "c1"]
        assert len(console.thread("c2")) == 1
    finally:
        await console.stop()


@pytest.mark.asyncio
async def test_console_reply_and_delete(connector, fast_reconnect):
    console = AdminConsole("ws://chat.test", api_key="k1", config=fast_reconnect, connector=connector)
    await console.start()
    try:
        await console.open_chat("c1")
        reply = await console.reply("On it", message_id="a1")
        assert reply.sender_role == Role.ADMIN
        assert await console.reply("On it", message_id="a1") is None
        frame = connector.last.sent[-1]
        assert frame == {"type": "admin_message", "targetClientId": "c1", "message": "On it", "id": "a1"}

        connector.last.feed(ChatDeletedFrame(client_id="c1", success=True))
        await wait_until(lambda: console.open_client_id is None)
        assert console.thread("c1") == []
        assert "c1" not in console.presence
    finally:
        await console.stop()


@pytest.mark.asyncio
async def test_widget_send_while_disconnected_can_be_retried(connector, fast_reconnect):
    widget = VisitorWidget("ws://chat.test", client_id="c1", config=fast_reconnect, connector=connector)

    assert await widget.send_message("hello", message_id="msg-1-a") is None
    assert widget.history == []
    assert "msg-1-a" not in widget.dedup

    await widget.start()
    try:
        sent = await widget.send_message("hello", message_id="msg-1-a")
        assert sent is not None
        assert [m.id for m in widget.history] == ["msg-1-a"]
        assert connector.last.sent_types() == ["get_history", "chat"]
        assert connector.last.sent[-1]["id"] == "msg-1-a"
    finally:
        await widget.stop()


@pytest.mark.asyncio
async def test_failed_send_is_retracted(connector, fast_reconnect):
    console = AdminConsole("ws://chat.test", api_key="k1", config=fast_reconnect, connector=connector)
    await console.start()
    try:
        async def refuse(data):
            raise TransportFailure("socket went away")

        connector.last.send = refuse
        assert await console.reply("On it", client_id="c1", message_id="a1") is None
        assert console.thread("c1") == []
        assert "c1" not in console.presence

        del connector.last.send
        assert await console.reply("On it", client_id="c1", message_id="a1") is not None
        assert connector.last.sent[-1]["id"] == "a1"
    finally:
        await console.stop()
