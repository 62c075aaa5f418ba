"""
Realtime Client Package

Provides a single client surface over the realtime API, reachable through:
- a WebSocket connection (SocketConnector)
- a WebRTC data channel negotiated over HTTPS (PeerConnector, SessionNegotiator)

Events are tagged JSON messages encoded and decoded by EventCodec and
delivered in order through a single-consumer EventStream.
"""

from .client import RealtimeClient
from .connector import Connector
from .errors import (
    DecodeError,
    NegotiationError,
    NotConnectedError,
    RealtimeError,
    TransmitError,
    TransportError,
)
from .events import (
    ClientEvent,
    ClientEventType,
    EventCodec,
    ServerEvent,
    ServerEventType,
)
from .negotiation import Credential, SessionNegotiator
from .settings import ConnectionRequest, Transport
from .stream import EventStream
from .webrtc_connector import PeerConnector, PeerState
from .websocket_connector import SocketConnector, SocketState

__all__ = [
    "RealtimeClient",
    "Connector",
    "SocketConnector",
    "SocketState",
    "PeerConnector",
    "PeerState",
    "SessionNegotiator",
    "Credential",
    "ConnectionRequest",
    "Transport",
    "ClientEvent",
    "ClientEventType",
    "ServerEvent",
    "ServerEventType",
    "EventCodec",
    "EventStream",
    "RealtimeError",
    "TransmitError",
    "NotConnectedError",
    "DecodeError",
    "NegotiationError",
    "TransportError",
]
