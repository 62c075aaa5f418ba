import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from src.realtime_client.connector import Connector, DisconnectCallback
from src.realtime_client.errors import (
    DecodeError,
    NotConnectedError,
    TransmitError,
    TransportError,
)
from src.realtime_client.events import ClientEvent, EventCodec
from src.realtime_client.settings import ConnectionRequest, Transport
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class SocketState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SocketConnector(Connector):
    """
    Connector over a single persistent WebSocket connection.

    Construction starts the connection in the background, so it must happen
    inside a running event loop. Use :meth:`wait_connected` to block until the
    handshake completes.
    """

    transport = Transport.WEBSOCKET

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        codec: Optional[EventCodec] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        super().__init__(codec=codec, on_disconnect=on_disconnect)
        self.url = url
        self._headers = dict(headers or {})
        self._connect = connect
        self._ws = None
        self._state = SocketState.CONNECTING
        self._send_lock = asyncio.Lock()
        self.handshake_headers: Optional[Any] = None

        loop = asyncio.get_running_loop()
        self._opened: asyncio.Future = loop.create_future()
        self._task = loop.create_task(self._run())

    @classmethod
    def from_request(cls, request: ConnectionRequest, **kwargs) -> "SocketConnector":
        return cls(request.websocket_url(), request.websocket_headers(), **kwargs)

    @property
    def state(self) -> SocketState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is SocketState.OPEN

    async def wait_connected(self) -> None:
        """
        Wait until the connection is open.

        Raises:
            TransportError: If the handshake failed or the connector was
                closed before it opened.
        """
        await asyncio.shield(self._opened)

    async def send(self, event: ClientEvent) -> None:
        if self._state is not SocketState.OPEN:
            raise NotConnectedError()

        payload = self.codec.encode(event)
        async with self._send_lock:
            if self._state is not SocketState.OPEN:
                raise NotConnectedError()
            try:
                await self._ws.send(payload)
            except ConnectionClosed as e:
                raise TransmitError(f"WebSocket rejected the write: {e}") from e
        logger.debug(f"[websocket] Sent: {event.type}")

    async def close(self) -> None:
        if self._disconnected:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        if not self._disconnected:
            # Cancelled before the connection task ever ran.
            self._state = SocketState.CLOSED
            self._fail_opening(TransportError("Connector closed before the connection opened"))
            self._finish()

    async def _run(self) -> None:
        logger.info(f"Connecting to realtime WebSocket at {self.url}")
        try:
            self._ws = await self._connect(self.url, additional_headers=self._headers)
        except asyncio.CancelledError:
            self._state = SocketState.CLOSED
            self._fail_opening(TransportError("Connector closed before the connection opened"))
            self._finish()
            return
        except Exception as e:
            logger.error(f"Failed to connect to WebSocket: {e}")
            self._state = SocketState.CLOSED
            error = TransportError(f"WebSocket handshake failed: {e}")
            self._fail_opening(error)
            self._finish(error)
            return

        response = getattr(self._ws, "response", None)
        self.handshake_headers = getattr(response, "headers", None)
        self._state = SocketState.OPEN
        self._opened.set_result(None)
        logger.keyinfo(f"Connected to {self.url}")

        error: Optional[BaseException] = None
        try:
            async for message in self._ws:
                self._deliver(message)
        except DecodeError as e:
            logger.error(f"Dropping WebSocket connection on undecodable message: {e}")
            error = e
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            logger.error(f"WebSocket connection error: {e}")
            error = TransportError(f"WebSocket connection lost: {e}")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"WebSocket receive loop failed: {e!r}")
            error = TransportError(f"WebSocket receive failed: {e}")

        await self._teardown(error)

    async def _teardown(self, error: Optional[BaseException]) -> None:
        self._state = SocketState.CLOSING
        try:
            await self._ws.close()
        except Exception as e:
            logger.warning(f"Error during WebSocket close: {e}")
        finally:
            self._state = SocketState.CLOSED
            self._finish(error)

    def _fail_opening(self, error: BaseException) -> None:
        if not self._opened.done():
            self._opened.set_exception(error)
            # Mark retrieved; callers may never await wait_connected().
            self._opened.exception()
