"""Client-side connection state machine with exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from livechat.config import ReconnectConfig
from livechat.core.types import ConnectionState
from livechat.errors import MalformedFrame, TransportFailure
from livechat.log import get_logger
from livechat.protocol import codec
from livechat.protocol.frames import Frame, OutboundFrame

logger = get_logger(__name__)

Connector = Callable[[str], Awaitable[Any]]
FrameHandler = Callable[[OutboundFrame], Awaitable[None]]
StateHandler = Callable[[ConnectionState], None]
ConnectedHandler = Callable[[], Awaitable[None]]


class ReconnectionController:
    """Owns one websocket and re-dials it after every close.

    After a close the controller waits ``min(max_delay, 2**attempts * base_delay)``
    seconds, increments ``attempts`` and dials again. A successful connect
    resets ``attempts`` to 0. Once ``attempts`` reaches ``max_attempts`` the
    controller gives up and stays in ``LOST`` until ``start()`` is called again.

    *connector* is awaited with the url and must return an object supporting
    ``send(str)``, ``close()`` and async iteration over incoming text.
    """

    def __init__(
        self,
        url: str,
        config: Optional[ReconnectConfig] = None,
        connector: Optional[Connector] = None,
        on_frame: Optional[FrameHandler] = None,
        on_state_change: Optional[StateHandler] = None,
        on_connected: Optional[ConnectedHandler] = None,
    ):
        self.url = url
        self._config = config or ReconnectConfig()
        self._connector = connector or ws_connect
        self._on_frame = on_frame
        self._on_state_change = on_state_change
        self._on_connected = on_connected

        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._stopped = True

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def reconnect_scheduled(self) -> bool:
        return self._timer is not None

    def delay_for(self, attempts: int) -> float:
        return min(self._config.max_delay, (2 ** attempts) * self._config.base_delay)

    async def start(self) -> None:
        """Dial immediately; later closes are handled by the backoff timer."""
        self._stopped = False
        self.attempts = 0
        await self._attempt()

    async def stop(self) -> None:
        self._stopped = True
        self._cancel_timer()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def send(self, frame: Frame) -> None:
        if not self.connected:
            raise TransportFailure(f"not connected ({self.state.value})")
        try:
            await self._ws.send(codec.encode(frame))
        except ConnectionClosed as e:
            raise TransportFailure(str(e)) from e

    # State machine

    async def _attempt(self) -> None:
        self._cancel_timer()
        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await self._connector(self.url)
        except Exception as e:
            # Refused sockets, timeouts and handshake rejections all count as a close
            logger.warning("connect_failed", url=self.url, attempts=self.attempts, error=str(e))
            self._closed()
            return

        if self._stopped:
            await ws.close()
            return

        self._ws = ws
        self.attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("connected", url=self.url)
        self._reader = asyncio.create_task(self._read(ws), name="livechat-reader")
        if self._on_connected is not None:
            try:
                await self._on_connected()
            except Exception as e:
                # A dropped socket during resync is picked up by the reader
                logger.warning("resync_failed", url=self.url, error=str(e))

    async def _read(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    frame = codec.decode_event(raw)
                except MalformedFrame as e:
                    logger.warning("malformed_event", reason=e.reason)
                    continue
                if self._on_frame is not None:
                    try:
                        await self._on_frame(frame)
                    except Exception as e:
                        logger.warning("frame_handler_failed", frame_type=frame.type, error=str(e))
        except ConnectionClosed as e:
            logger.info("connection_closed", url=self.url, code=e.rcvd.code if e.rcvd else None)
        except Exception as e:
            logger.warning("reader_failed", url=self.url, error=str(e))
        finally:
            if self._ws is ws:
                self._ws = None
                self._closed()
                await ws.close()

    def _closed(self) -> None:
        if self._stopped:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        if self.attempts >= self._config.max_attempts:
            self._set_state(ConnectionState.LOST)
            logger.error("connection_lost", url=self.url, attempts=self.attempts)
            return
        self._set_state(ConnectionState.DISCONNECTED)
        delay = self.delay_for(self.attempts)
        logger.info("reconnect_scheduled", delay=delay, attempt=self.attempts + 1)
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self.attempts += 1
        self._pending = asyncio.create_task(self._attempt(), name="livechat-reconnect")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
