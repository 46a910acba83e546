import asyncio

import pytest

from conftest import wait_until
from livechat.client.reconnect import ReconnectionController
from livechat.config import ReconnectConfig
from livechat.core.types import ConnectionState
from livechat.errors import TransportFailure
from livechat.protocol.frames import PingFrame, PongFrame, SystemFrame


def test_backoff_schedule_caps_at_max_delay():
    controller = ReconnectionController("ws://x", config=ReconnectConfig())
    assert [controller.delay_for(n) for n in range(7)] == [1, 2, 4, 8, 16, 30, 30]


@pytest.mark.asyncio
async def test_connect_runs_hook_and_resets_attempts(connector, fast_reconnect):
    hooks = []

    async def on_connected():
        hooks.append(controller.attempts)

    controller = ReconnectionController(
        "ws://x/ws", config=fast_reconnect, connector=connector, on_connected=on_connected
    )
    controller.attempts = 2
    await controller.start()
    try:
        assert controller.state == ConnectionState.CONNECTED
        assert controller.attempts == 0
        assert hooks == [0]
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_reconnects_after_drop(connector, fast_reconnect):
    states = []
    connected = []

    async def on_connected():
        connected.append(connector.calls)

    controller = ReconnectionController(
        "ws://x/ws",
        config=fast_reconnect,
        connector=connector,
        on_state_change=states.append,
        on_connected=on_connected,
    )
    await controller.start()
    try:
        connector.last.drop()
        await wait_until(lambda: connector.calls == 2 and controller.connected)
        assert connected == [1, 2]
        assert controller.attempts == 0
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(connector, fast_reconnect):
    connector.refuse = True
    controller = ReconnectionController("ws://x/ws", config=fast_reconnect, connector=connector)

    await controller.start()
    await wait_until(lambda: controller.state == ConnectionState.LOST)

    # One initial dial plus one per attempt
    assert connector.calls == fast_reconnect.max_attempts + 1
    assert controller.reconnect_scheduled is False


@pytest.mark.asyncio
async def test_lost_state_can_be_restarted(connector, fast_reconnect):
    connector.refuse = True
    controller = ReconnectionController("ws://x/ws", config=fast_reconnect, connector=connector)
    await controller.start()
    await wait_until(lambda: controller.state == ConnectionState.LOST)

    connector.refuse = False
    await controller.start()
    try:
        assert controller.state == ConnectionState.CONNECTED
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_timer(connector):
    connector.refuse = True
    controller = ReconnectionController(
        "ws://x/ws", config=ReconnectConfig(base_delay=0.05), connector=connector
    )
    await controller.start()
    assert controller.reconnect_scheduled is True

    await controller.stop()

    assert controller.reconnect_scheduled is False
    assert controller.state == ConnectionState.DISCONNECTED
    calls = connector.calls
    await asyncio.sleep(0.15)
    assert connector.calls == calls


@pytest.mark.asyncio
async def test_frames_are_decoded_and_malformed_skipped(connector, fast_reconnect):
    received = []

    async def on_frame(frame):
        received.append(frame)

    controller = ReconnectionController(
        "ws://x/ws", config=fast_reconnect, connector=connector, on_frame=on_frame
    )
    await controller.start()
    try:
        connector.last.feed("garbage")
        connector.last.feed(SystemFrame(message="hello"))
        connector.last.feed(PongFrame())
        await wait_until(lambda: len(received) == 2)
        assert [f.type for f in received] == ["system", "pong"]
        assert controller.connected
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_send_requires_connection(connector, fast_reconnect):
    controller = ReconnectionController("ws://x/ws", config=fast_reconnect, connector=connector)
    with pytest.raises(TransportFailure):
        await controller.send(PingFrame())

    await controller.start()
    try:
        await controller.send(PingFrame())
        assert connector.last.sent == [{"type": "ping"}]
    finally:
        await controller.stop()
    assert connector.sockets[0].closed is True


@pytest.mark.asyncio
async def test_failing_frame_handler_keeps_reading(connector, fast_reconnect):
    received = []

    async def on_frame(frame):
        if isinstance(frame, SystemFrame):
            raise KeyError("bad frame")
        received.append(frame)

    controller = ReconnectionController(
        "ws://x/ws", config=fast_reconnect, connector=connector, on_frame=on_frame
    )
    await controller.start()
    try:
        connector.last.feed(SystemFrame(message="boom"))
        connector.last.feed(PongFrame())
        await wait_until(lambda: len(received) == 1)
        assert controller.connected
        assert connector.calls == 1
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_failing_resync_is_contained(connector, fast_reconnect):
    async def on_connected():
        raise RuntimeError("resync broke")

    controller = ReconnectionController(
        "ws://x/ws", config=fast_reconnect, connector=connector, on_connected=on_connected
    )
    await controller.start()
    try:
        assert controller.state == ConnectionState.CONNECTED

        # The timer-driven reconnect runs the same hook inside a task
        connector.last.drop()
        await wait_until(lambda: connector.calls == 2 and controller.connected)
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_dropped_socket_is_closed_before_redial(connector, fast_reconnect):
    controller = ReconnectionController("ws://x/ws", config=fast_reconnect, connector=connector)
    await controller.start()
    try:
        first = connector.last
        first.drop()
        await wait_until(lambda: connector.calls == 2 and controller.connected)
        assert first.closed is True
        assert connector.last.closed is False
    finally:
        await controller.stop()
