# client.py exposes the transport-agnostic RealtimeClient facade and the
# helpers that build it over a WebSocket or WebRTC connector.

from typing import Optional

from src.realtime_client.connector import Connector, DisconnectCallback
from src.realtime_client.events import ClientEvent, ServerEvent
from src.realtime_client.negotiation import SessionNegotiator
from src.realtime_client.settings import (
    DEFAULT_WEBRTC_MODEL,
    DEFAULT_WEBSOCKET_MODEL,
    ConnectionRequest,
    Transport,
)
from src.realtime_client.stream import EventStream
from src.realtime_client.webrtc_connector import PeerConnector
from src.realtime_client.websocket_connector import SocketConnector
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class RealtimeClient:
    """
    Uniform send/receive surface over exactly one connector.

    Which transport is in use stays hidden behind :attr:`transport`; the
    concrete WebRTC connector is reachable only through
    :meth:`webrtc_connector` for transport-specific diagnostics.

    Reconnect, retry and negotiation timeouts are not handled here; layer
    them on top (e.g. ``asyncio.wait_for`` around :meth:`connect`).
    """

    def __init__(self, connector: Connector) -> None:
        self._connector = connector

    @property
    def events(self) -> EventStream[ServerEvent]:
        return self._connector.events

    @property
    def on_disconnect(self) -> Optional[DisconnectCallback]:
        return self._connector.on_disconnect

    @on_disconnect.setter
    def on_disconnect(self, callback: Optional[DisconnectCallback]) -> None:
        self._connector.on_disconnect = callback

    @property
    def transport(self) -> Transport:
        return self._connector.transport

    def is_connected(self) -> bool:
        return self._connector.is_connected()

    async def send(self, event: ClientEvent) -> None:
        await self._connector.send(event)

    async def close(self) -> None:
        await self._connector.close()

    async def wait_closed(self) -> None:
        await self._connector.wait_closed()

    def webrtc_connector(self) -> Optional[PeerConnector]:
        """Return the WebRTC connector, or None when the socket transport is active."""
        if self._connector.transport is Transport.WEBRTC:
            return self._connector
        return None

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    @classmethod
    def websocket_from_request(cls, request: ConnectionRequest, **kwargs) -> "RealtimeClient":
        """Start a WebSocket connection; the returned client is still connecting."""
        return cls(SocketConnector.from_request(request, **kwargs))

    @classmethod
    def websocket(
        cls, auth_token: str, model: str = DEFAULT_WEBSOCKET_MODEL, **kwargs
    ) -> "RealtimeClient":
        request = ConnectionRequest(auth_token=auth_token, model=model)
        return cls.websocket_from_request(request, **kwargs)

    @classmethod
    async def webrtc_from_request(cls, request: ConnectionRequest, **kwargs) -> "RealtimeClient":
        return cls(await PeerConnector.connect(request, **kwargs))

    @classmethod
    async def webrtc(
        cls,
        auth_token: str,
        is_ephemeral_key: bool = False,
        model: str = DEFAULT_WEBRTC_MODEL,
        negotiator: Optional[SessionNegotiator] = None,
        **kwargs,
    ) -> "RealtimeClient":
        """
        Negotiate a WebRTC session and return a connected client.

        Args:
            auth_token: Long-lived API key, or a pre-issued short-lived key
                when ``is_ephemeral_key`` is set.
            is_ephemeral_key: Skip credential issuance and use ``auth_token``
                directly for the SDP exchange.
            model: Realtime model identifier.
            negotiator: Session negotiator; built from the request if omitted.
        """
        request = ConnectionRequest(
            auth_token=auth_token,
            model=model,
            transport=Transport.WEBRTC,
            is_ephemeral_key=is_ephemeral_key,
        )
        return await cls.webrtc_from_request(request, negotiator=negotiator, **kwargs)

    @classmethod
    async def connect(cls, request: ConnectionRequest, **kwargs) -> "RealtimeClient":
        """Open a connection over ``request.transport`` and wait until it is usable."""
        logger.info(f"Opening realtime connection: {request!r}")
        if request.transport is Transport.WEBRTC:
            return await cls.webrtc_from_request(request, **kwargs)

        connector = SocketConnector.from_request(request, **kwargs)
        try:
            await connector.wait_connected()
        except BaseException:
            await connector.close()
            raise
        return cls(connector)
