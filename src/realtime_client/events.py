"""
Realtime Event Models
=====================

Tagged client/server event models and the codec translating them to and
from the JSON text frames carried by both transports.

Payload fields beyond ``type`` and ``event_id`` are kept as-is; their meaning
belongs to the application consuming the events.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.realtime_client.errors import DecodeError

EventT = TypeVar("EventT", bound="RealtimeEvent")


class ClientEventType(str, Enum):
    """Tags of events the client sends."""

    SESSION_UPDATE = "session.update"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    INPUT_AUDIO_BUFFER_CLEAR = "input_audio_buffer.clear"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"
    CONVERSATION_ITEM_TRUNCATE = "conversation.item.truncate"
    CONVERSATION_ITEM_DELETE = "conversation.item.delete"
    RESPONSE_CREATE = "response.create"
    RESPONSE_CANCEL = "response.cancel"


class ServerEventType(str, Enum):
    """Tags of events the server sends."""

    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_ITEM_CREATED = "conversation.item.created"
    CONVERSATION_ITEM_TRUNCATED = "conversation.item.truncated"
    CONVERSATION_ITEM_DELETED = "conversation.item.deleted"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )
    INPUT_AUDIO_BUFFER_COMMITTED = "input_audio_buffer.committed"
    INPUT_AUDIO_BUFFER_CLEARED = "input_audio_buffer.cleared"
    INPUT_AUDIO_BUFFER_SPEECH_STARTED = "input_audio_buffer.speech_started"
    INPUT_AUDIO_BUFFER_SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    RESPONSE_CONTENT_PART_ADDED = "response.content_part.added"
    RESPONSE_CONTENT_PART_DONE = "response.content_part.done"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_TEXT_DONE = "response.text.done"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_AUDIO_DONE = "response.audio.done"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    RATE_LIMITS_UPDATED = "rate_limits.updated"


class RealtimeEvent(BaseModel):
    """Common shape of every realtime event: a ``type`` tag plus payload."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = Field(..., min_length=1, description="Event tag")
    event_id: Optional[str] = Field(default=None, description="Event identifier")


class ClientEvent(RealtimeEvent):
    """Outbound event. Immutable once constructed."""

    @classmethod
    def create(cls, type: Union[ClientEventType, str], **fields) -> "ClientEvent":
        """
        Build an event with a freshly generated ``event_id``.

        Args:
            type: The event tag.
            **fields: Payload fields of the event.
        """
        tag = type.value if isinstance(type, ClientEventType) else type
        return cls(type=tag, event_id=generate_event_id(), **fields)


class ServerEvent(RealtimeEvent):
    """Inbound event produced by :class:`EventCodec`."""

    @property
    def is_error(self) -> bool:
        return self.type == ServerEventType.ERROR.value


def generate_event_id(prefix: str = "evt_") -> str:
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{prefix}{timestamp}{secrets.token_hex(4)}"


class EventCodec:
    """Encode/decode boundary between typed events and wire text."""

    def encode(self, event: RealtimeEvent) -> str:
        return event.model_dump_json(exclude_unset=True)

    def decode(
        self, data: Union[str, bytes], model: Type[EventT] = ServerEvent
    ) -> EventT:
        """
        Parse one wire message into a typed event.

        Raises:
            DecodeError: If the payload is not JSON, not an object, or lacks
                a string ``type`` tag.
        """
        try:
            return model.model_validate_json(data, strict=True)
        except ValidationError as e:
            raise DecodeError(f"Malformed realtime event: {e.errors()[0]['msg']}") from e
