"""
Tests for SocketConnector
=========================

Covers the connection state machine, ordered send/receive, decode and
transport failures, and the exactly-once disconnect notification.
"""

import asyncio
import functools
import json
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import MockConnect, drain
from websockets.exceptions import ConnectionClosedError

from src.realtime_client.errors import (
    DecodeError,
    NotConnectedError,
    TransmitError,
    TransportError,
)
from src.realtime_client.events import ClientEvent
from src.realtime_client.settings import ConnectionRequest
from src.realtime_client.websocket_connector import SocketConnector, SocketState


def make_connector(mock_connect, on_disconnect=None) -> SocketConnector:
    request = ConnectionRequest(auth_token="sk-test", model="gpt-4o-realtime-preview")
    return SocketConnector.from_request(request, connect=mock_connect, on_disconnect=on_disconnect)


class TestSocketHandshake:
    @pytest.mark.asyncio
    async def test_reaches_open_and_sends(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        assert connector.state is SocketState.CONNECTING

        await connector.wait_connected()

        assert connector.state is SocketState.OPEN
        assert connector.is_connected()
        await connector.send(ClientEvent(type="response.create"))
        assert json.loads(mock_websocket.sent_messages[0]) == {"type": "response.create"}
        await connector.close()

    @pytest.mark.asyncio
    async def test_handshake_request_carries_model_and_auth(self, mock_connect):
        connector = make_connector(mock_connect)
        await connector.wait_connected()

        call = mock_connect.calls[0]
        assert call["url"] == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"
        assert call["headers"]["Authorization"] == "Bearer sk-test"
        assert call["headers"]["OpenAI-Beta"] == "realtime=v1"
        assert connector.handshake_headers == {"x-request-id": "req_123"}
        await connector.close()

    @pytest.mark.asyncio
    async def test_handshake_failure_closes_and_notifies(self):
        on_disconnect = Mock()
        connector = make_connector(MockConnect(error=OSError("connection refused")), on_disconnect)

        with pytest.raises(TransportError):
            await connector.wait_connected()

        assert connector.state is SocketState.CLOSED
        on_disconnect.assert_called_once()
        with pytest.raises(TransportError):
            await drain(connector.events)

    @pytest.mark.asyncio
    async def test_send_before_open_fails_without_writing(self, mock_connect, mock_websocket):
        mock_connect.block = asyncio.Event()
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await asyncio.sleep(0)

        with pytest.raises(NotConnectedError):
            await connector.send(ClientEvent(type="response.create"))

        assert mock_websocket.sent_messages == []
        await connector.close()
        assert connector.state is SocketState.CLOSED
        on_disconnect.assert_called_once()
        with pytest.raises(TransportError):
            await connector.wait_connected()


class TestSocketTraffic:
    @pytest.mark.asyncio
    async def test_sends_reach_transport_in_call_order(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        await connector.wait_connected()

        events = [ClientEvent(type="input_audio_buffer.append", audio=str(i)) for i in range(20)]
        await asyncio.gather(*(connector.send(event) for event in events))

        assert [json.loads(m)["audio"] for m in mock_websocket.sent_messages] == [
            str(i) for i in range(20)
        ]
        await connector.close()

    @pytest.mark.asyncio
    async def test_inbound_events_in_receipt_order_then_graceful_end(self, mock_connect, mock_websocket):
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()
        consumer = asyncio.create_task(drain(connector.events))

        for i in range(3):
            mock_websocket.feed_event(type="response.text.delta", delta=str(i))
            await asyncio.sleep(0.01)
        mock_websocket.remote_close()

        received = await asyncio.wait_for(consumer, timeout=1.0)
        assert [event.delta for event in received] == ["0", "1", "2"]
        assert connector.state is SocketState.CLOSED
        on_disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_error_events_are_delivered(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        await connector.wait_connected()
        consumer = asyncio.create_task(drain(connector.events))

        mock_websocket.feed_event(type="error", error={"message": "invalid session"})
        await asyncio.sleep(0.01)
        await connector.close()

        received = await asyncio.wait_for(consumer, timeout=1.0)
        assert received[0].is_error

    @pytest.mark.asyncio
    async def test_transport_rejecting_write_raises_transmit_error(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        await connector.wait_connected()
        mock_websocket.closed = True

        with pytest.raises(TransmitError):
            await connector.send(ClientEvent(type="response.create"))
        await connector.close()


class TestSocketTeardown:
    @pytest.mark.asyncio
    async def test_decode_failure_terminates_stream_and_notifies(self, mock_connect, mock_websocket):
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()
        received = []

        async def consume():
            async for event in connector.events:
                received.append(event)

        consumer = asyncio.create_task(consume())
        mock_websocket.feed_event(type="session.created")
        await asyncio.sleep(0.01)
        mock_websocket.feed("{not json")

        with pytest.raises(DecodeError):
            await asyncio.wait_for(consumer, timeout=1.0)
        assert [event.type for event in received] == ["session.created"]
        assert mock_websocket.close_calls >= 1
        assert connector.state is SocketState.CLOSED
        on_disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_abnormal_close_surfaces_transport_error(self, mock_connect, mock_websocket):
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()

        mock_websocket.feed(ConnectionClosedError(None, None))
        await asyncio.wait_for(connector.wait_closed(), timeout=1.0)

        with pytest.raises(TransportError):
            await drain(connector.events)
        on_disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_explicit_close_is_idempotent(self, mock_connect):
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()

        await connector.close()
        await connector.close()

        assert connector.state is SocketState.CLOSED
        on_disconnect.assert_called_once()
        assert await drain(connector.events) == []
        with pytest.raises(NotConnectedError):
            await connector.send(ClientEvent(type="response.create"))

    @pytest.mark.asyncio
    async def test_queued_events_survive_graceful_close(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        await connector.wait_connected()
        consumer = asyncio.create_task(drain(connector.events))
        await asyncio.sleep(0.01)

        mock_websocket.feed_event(type="response.text.delta", delta="hi")
        mock_websocket.feed_event(type="response.done")
        mock_websocket.remote_close()

        received = await asyncio.wait_for(consumer, timeout=1.0)
        assert [event.type for event in received] == ["response.text.delta", "response.done"]

    @pytest.mark.asyncio
    async def test_no_event_delivered_after_disconnect(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        notified = asyncio.Event()
        connector.on_disconnect = notified.set
        await connector.wait_connected()

        mock_websocket.feed_event(type="response.done")
        mock_websocket.remote_close()
        await asyncio.wait_for(notified.wait(), timeout=1.0)
        connector._deliver(json.dumps({"type": "response.created"}))

        assert [event.type for event in await drain(connector.events)] == ["response.done"]

    @pytest.mark.asyncio
    async def test_unexpected_receive_failure_tears_down(self, mock_connect, mock_websocket):
        on_disconnect = Mock()
        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()

        mock_websocket.feed(OSError("connection reset"))
        await asyncio.wait_for(connector.wait_closed(), timeout=1.0)

        with pytest.raises(TransportError):
            await drain(connector.events)
        assert connector.state is SocketState.CLOSED
        assert mock_websocket.close_calls == 1
        on_disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_async_disconnect_callback_registered_after_open(self, mock_connect, mock_websocket):
        connector = make_connector(mock_connect)
        await connector.wait_connected()
        callback = AsyncMock()
        connector.on_disconnect = callback

        mock_websocket.remote_close()
        await asyncio.wait_for(connector.wait_closed(), timeout=1.0)
        await asyncio.sleep(0.01)

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_last_registered_callback_wins(self, mock_connect):
        first, second = Mock(), Mock()
        connector = make_connector(mock_connect, first)
        connector.on_disconnect = second
        await connector.wait_connected()

        await connector.close()

        first.assert_not_called()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_async_callback_is_logged(self, mock_connect, monkeypatch):
        logger = Mock()
        monkeypatch.setattr("src.realtime_client.connector.logger", logger)

        async def on_disconnect():
            raise RuntimeError("callback boom")

        connector = make_connector(mock_connect, on_disconnect)
        await connector.wait_connected()
        await connector.close()
        await asyncio.sleep(0.01)

        messages = [str(call.args[0]) for call in logger.error.call_args_list]
        assert any("callback boom" in message for message in messages)
        assert connector._callback_tasks == set()

    @pytest.mark.asyncio
    async def test_callable_returning_coroutine_is_awaited(self, mock_connect):
        seen = []

        async def record(reason):
            seen.append(reason)

        connector = make_connector(mock_connect, functools.partial(record, "closed"))
        await connector.wait_connected()
        await connector.close()
        await asyncio.sleep(0.01)

        assert seen == ["closed"]
