"""
Connector contract shared by the WebSocket and WebRTC transports.

A connector owns exactly one transport resource. It exposes ``send`` for
outbound events, a single inbound :class:`EventStream`, and a disconnect
callback slot that fires exactly once after the stream has terminated.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Set

from src.realtime_client.events import ClientEvent, EventCodec, ServerEvent
from src.realtime_client.settings import Transport
from src.realtime_client.stream import EventStream
from utils.ml_logging import get_logger

logger = get_logger(__name__)

DisconnectCallback = Callable[[], Any]


class Connector(ABC):
    """Abstract base class for realtime transport connectors."""

    transport: Transport

    def __init__(
        self,
        codec: Optional[EventCodec] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> None:
        self.codec = codec or EventCodec()
        self._events: EventStream[ServerEvent] = EventStream()
        self._on_disconnect = on_disconnect
        self._disconnected = False
        self._closed_event = asyncio.Event()
        self._callback_tasks: Set[asyncio.Task] = set()

    @property
    def events(self) -> EventStream[ServerEvent]:
        """Inbound server events, in transport receipt order."""
        return self._events

    @property
    def on_disconnect(self) -> Optional[DisconnectCallback]:
        return self._on_disconnect

    @on_disconnect.setter
    def on_disconnect(self, callback: Optional[DisconnectCallback]) -> None:
        self._on_disconnect = callback

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @abstractmethod
    def is_connected(self) -> bool:
        """Return True while events can be sent."""
        raise NotImplementedError()

    @abstractmethod
    async def send(self, event: ClientEvent) -> None:
        """
        Encode and hand one event to the transport.

        Raises:
            NotConnectedError: If the transport is not open. Nothing is written.
            TransmitError: If the transport rejects the write.
        """
        raise NotImplementedError()

    @abstractmethod
    async def close(self) -> None:
        """Tear the connection down from any state."""
        raise NotImplementedError()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def _deliver(self, data) -> None:
        """Decode one inbound message onto the event stream."""
        event = self.codec.decode(data)
        if event.is_error:
            logger.error(f"[{self.transport.value}] Realtime API error event: {event}")
        else:
            logger.debug(f"[{self.transport.value}] Received: {event.type}")
        self._events.push(event)

    def _finish(self, error: Optional[BaseException] = None) -> None:
        """Terminate the event stream, then fire the disconnect notification once."""
        if self._disconnected:
            return
        self._disconnected = True
        self._events.close(error)
        self._closed_event.set()

        if error is not None:
            logger.warning(f"[{self.transport.value}] Connection ended with error: {error}")
        else:
            logger.info(f"[{self.transport.value}] Connection closed")

        callback = self._on_disconnect
        if callback is None:
            return
        try:
            result = callback()
        except Exception as e:
            logger.error(f"Error in disconnect callback: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in disconnect callback: {error}")
