"""
Connector over a WebRTC peer connection.

Connecting is two-phase: session negotiation (credential issuance, then the
SDP offer/answer exchange) followed by a data channel carrying the realtime
events. Audio tracks negotiated alongside the channel are kept as opaque
resources and released on teardown.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, List, Optional

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription

from src.realtime_client.connector import Connector, DisconnectCallback
from src.realtime_client.errors import (
    DecodeError,
    NotConnectedError,
    TransmitError,
    TransportError,
)
from src.realtime_client.events import ClientEvent, EventCodec
from src.realtime_client.negotiation import SessionNegotiator
from src.realtime_client.settings import (
    WEBRTC_EVENTS_CHANNEL,
    ConnectionRequest,
    Transport,
)
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class PeerState(str, Enum):
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"


class PeerConnector(Connector):
    """
    Connector over a WebRTC data channel.

    Instances are obtained through :meth:`connect`, which only returns once
    the data channel is open.
    """

    transport = Transport.WEBRTC

    def __init__(
        self,
        peer_connection: Any,
        codec: Optional[EventCodec] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> None:
        super().__init__(codec=codec, on_disconnect=on_disconnect)
        self._state = PeerState.NEGOTIATING
        self._pc = peer_connection
        self._opened: asyncio.Future = asyncio.get_running_loop().create_future()
        self._teardown_task: Optional[asyncio.Task] = None
        self._closing = False
        self.remote_tracks: List[MediaStreamTrack] = []

        self._channel = peer_connection.createDataChannel(WEBRTC_EVENTS_CHANNEL)
        self._channel.on("open", self._on_channel_open)
        self._channel.on("message", self._on_channel_message)
        self._channel.on("close", self._on_channel_close)
        peer_connection.on("connectionstatechange", self._on_connection_state_change)
        peer_connection.on("track", self._on_track)

    @classmethod
    async def connect(
        cls,
        request: ConnectionRequest,
        negotiator: Optional[SessionNegotiator] = None,
        codec: Optional[EventCodec] = None,
        peer_factory: Callable[[], Any] = RTCPeerConnection,
        audio_track: Optional[MediaStreamTrack] = None,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> "PeerConnector":
        """
        Negotiate a session and return a connected connector.

        No timeout is applied; wrap the call in ``asyncio.wait_for`` to bound
        it. On failure the peer connection is closed, ``on_disconnect`` fires,
        and no connector is returned.

        Raises:
            NegotiationError: If credential issuance or the SDP exchange fails.
            TransportError: If the peer connection fails before the data
                channel opens.
        """
        negotiator = negotiator or SessionNegotiator.for_request(request)
        connector = cls(peer_factory(), codec=codec, on_disconnect=on_disconnect)
        try:
            await connector._negotiate(request, negotiator, audio_track)
        except BaseException as e:
            logger.error(f"WebRTC negotiation failed: {e!r}")
            await connector._teardown(
                e if isinstance(e, Exception) else None, state=PeerState.FAILED
            )
            raise
        return connector

    async def _negotiate(
        self,
        request: ConnectionRequest,
        negotiator: SessionNegotiator,
        audio_track: Optional[MediaStreamTrack],
    ) -> None:
        if audio_track is not None:
            self._pc.addTrack(audio_track)
        else:
            self._pc.addTransceiver("audio", direction="recvonly")

        async with negotiator.credential_scope(request) as credential:
            offer = await self._pc.createOffer()
            await self._pc.setLocalDescription(offer)
            answer = await negotiator.exchange_session_description(
                self._pc.localDescription.sdp, credential, request.model
            )
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=answer, type="answer"))
        logger.info("Session description applied, waiting for the data channel")
        await asyncio.shield(self._opened)

    @property
    def state(self) -> PeerState:
        return self._state

    @property
    def peer_connection(self) -> Any:
        return self._pc

    @property
    def data_channel(self) -> Any:
        return self._channel

    def is_connected(self) -> bool:
        return self._state is PeerState.CONNECTED

    async def send(self, event: ClientEvent) -> None:
        if self._state is not PeerState.CONNECTED:
            raise NotConnectedError()
        if self._channel.readyState != "open":
            raise TransmitError(f"Data channel is {self._channel.readyState}")

        payload = self.codec.encode(event)
        try:
            self._channel.send(payload)
        except Exception as e:
            raise TransmitError(f"Data channel rejected the write: {e}") from e
        logger.debug(f"[webrtc] Sent: {event.type}")

    async def close(self) -> None:
        await self._teardown(None)
        await self.wait_closed()

    def _on_channel_open(self) -> None:
        if self._state is not PeerState.NEGOTIATING:
            return
        self._state = PeerState.CONNECTED
        logger.keyinfo("WebRTC data channel open")
        if not self._opened.done():
            self._opened.set_result(None)

    def _on_channel_message(self, message) -> None:
        if self._closing or self._teardown_task is not None:
            return
        try:
            self._deliver(message)
        except DecodeError as e:
            logger.error(f"Dropping WebRTC connection on undecodable message: {e}")
            self._schedule_teardown(e)

    def _on_channel_close(self) -> None:
        self._schedule_teardown(None)

    def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        logger.info(f"WebRTC connection state: {state}")
        if state == "failed":
            self._schedule_teardown(TransportError("WebRTC peer connection failed"))
        elif state == "closed":
            self._schedule_teardown(None)

    def _on_track(self, track: MediaStreamTrack) -> None:
        logger.info(f"Remote {track.kind} track received")
        self.remote_tracks.append(track)

    def _schedule_teardown(self, error: Optional[BaseException]) -> None:
        if self._closing or self._teardown_task is not None:
            return
        if not self._opened.done():
            # The negotiating coroutine tears down once it observes the failure.
            self._opened.set_exception(error or TransportError("Data channel closed before opening"))
            return
        self._teardown_task = asyncio.ensure_future(self._teardown(error))

    async def _teardown(
        self, error: Optional[BaseException], state: PeerState = PeerState.CLOSED
    ) -> None:
        if self._closing:
            return
        self._closing = True
        self._state = state
        if not self._opened.done():
            self._opened.set_exception(TransportError("Connector closed before the data channel opened"))
        # Mark retrieved; nobody awaits the handshake after teardown.
        self._opened.exception()
        try:
            await self._pc.close()
        except Exception as e:
            logger.warning(f"Error closing WebRTC peer connection: {e}")
        finally:
            self._finish(error)
