"""
Shared fakes for the realtime client tests.

The fakes stand in for the transport primitives (websocket connection,
WebRTC peer connection and data channel, aiohttp session) so connectors can
be driven deterministically.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from websockets.exceptions import ConnectionClosedOK

_CLOSE_OK = object()


class MockWebSocket:
    """Mock websocket connection with a scripted inbound queue."""

    def __init__(self):
        self.sent_messages: List[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_calls = 0
        self.response = SimpleNamespace(headers={"x-request-id": "req_123"})

    async def send(self, message: str):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent_messages.append(message)

    async def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(_CLOSE_OK)

    def feed(self, message: Any):
        """Queue an inbound message (str/bytes) or an exception to raise."""
        self.incoming.put_nowait(message)

    def feed_event(self, **event):
        self.feed(json.dumps(event))

    def remote_close(self):
        self.closed = True
        self.incoming.put_nowait(_CLOSE_OK)

    async def __aiter__(self):
        while True:
            item = await self.incoming.get()
            if item is _CLOSE_OK:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class MockConnect:
    """Stand-in for ``websockets.connect`` recording the handshake request."""

    def __init__(self, websocket: Optional[MockWebSocket] = None, error: Optional[Exception] = None):
        self.websocket = websocket or MockWebSocket()
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.block: Optional[asyncio.Event] = None

    async def __call__(self, url, additional_headers=None):
        self.calls.append({"url": url, "headers": additional_headers})
        if self.block is not None:
            await self.block.wait()
        if self.error is not None:
            raise self.error
        return self.websocket


class MockDataChannel:
    """Mock aiortc data channel with pyee-style ``on`` registration."""

    def __init__(self, label: str):
        self.label = label
        self.readyState = "connecting"
        self.sent_messages: List[str] = []
        self.handlers: Dict[str, List] = {}

    def on(self, event: str, handler):
        self.handlers.setdefault(event, []).append(handler)
        return handler

    def emit(self, event: str, *args):
        for handler in self.handlers.get(event, []):
            handler(*args)

    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("channel not open")
        self.sent_messages.append(data)

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def receive(self, message):
        self.emit("message", message)

    def receive_event(self, **event):
        self.receive(json.dumps(event))

    def remote_close(self):
        self.readyState = "closed"
        self.emit("close")


class MockPeerConnection:
    """Mock aiortc RTCPeerConnection; opens the data channel once the answer is applied."""

    def __init__(self, auto_open: bool = True):
        self.auto_open = auto_open
        self.channel: Optional[MockDataChannel] = None
        self.connectionState = "new"
        self.handlers: Dict[str, List] = {}
        self.transceivers: List[tuple] = []
        self.tracks: List[Any] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.close_calls = 0
        self.on_answer = None

    def createDataChannel(self, label: str):
        self.channel = MockDataChannel(label)
        return self.channel

    def on(self, event: str, handler):
        self.handlers.setdefault(event, []).append(handler)
        return handler

    def emit(self, event: str, *args):
        for handler in self.handlers.get(event, []):
            handler(*args)

    def addTransceiver(self, kind: str, direction: str = "sendrecv"):
        self.transceivers.append((kind, direction))

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0\r\no=- offer\r\n", type="offer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remoteDescription = description
        loop = asyncio.get_running_loop()
        if self.on_answer is not None:
            loop.call_soon(self.on_answer)
        elif self.auto_open:
            self.connectionState = "connected"
            loop.call_soon(self.channel.open)

    def set_connection_state(self, state: str):
        self.connectionState = state
        self.emit("connectionstatechange")

    async def close(self):
        self.close_calls += 1
        if self.connectionState == "closed":
            return
        if self.channel is not None and self.channel.readyState != "closed":
            self.channel.remote_close()
        self.set_connection_state("closed")


class MockResponse:
    def __init__(self, status: int, text: str):
        self.status = status
        self._text = text

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class MockHttpSession:
    """Mock aiohttp.ClientSession replaying queued responses in order."""

    def __init__(self, *responses: MockResponse):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def post(self, url, headers=None, **kwargs):
        self.requests.append({"url": url, "headers": dict(headers or {}), **kwargs})
        return self.responses.pop(0)


def credential_response(value: str = "ek_test_123", expires_at: int = 1735689600) -> MockResponse:
    body = {"id": "sess_1", "client_secret": {"value": value, "expires_at": expires_at}}
    return MockResponse(200, json.dumps(body))


def answer_response(sdp: str = "v=0\r\no=- answer\r\n") -> MockResponse:
    return MockResponse(201, sdp)


async def drain(stream) -> List[Any]:
    """Collect every event until the stream ends."""
    return [event async for event in stream]


@pytest.fixture
def mock_websocket():
    return MockWebSocket()


@pytest.fixture
def mock_connect(mock_websocket):
    return MockConnect(mock_websocket)


@pytest.fixture
def mock_peer():
    return MockPeerConnection()
