"""
src/realtime_client/settings.py
===============================
Defaults, environment variables and the connection request consumed by
both connectors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlencode

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Transport(str, Enum):
    """Transport used to reach the realtime API."""

    WEBSOCKET = "websocket"
    WEBRTC = "webrtc"


# ------------------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------------------
OPENAI_API_BASE_URL: str = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1")
OPENAI_REALTIME_WS_URL: str = os.getenv(
    "OPENAI_REALTIME_WS_URL", "wss://api.openai.com/v1/realtime"
)

# Protocol-version marker sent on the websocket upgrade
OPENAI_BETA_HEADER: str = "OpenAI-Beta"
OPENAI_BETA_VALUE: str = "realtime=v1"

# ------------------------------------------------------------------------------
# Authentication
# ------------------------------------------------------------------------------
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
# Pre-issued short-lived key; when set the credential issuance round-trip is skipped
OPENAI_REALTIME_EPHEMERAL_KEY: str = os.getenv("OPENAI_REALTIME_EPHEMERAL_KEY", "")

# ------------------------------------------------------------------------------
# Session defaults
# ------------------------------------------------------------------------------
DEFAULT_WEBSOCKET_MODEL: str = os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview")
DEFAULT_WEBRTC_MODEL: str = os.getenv(
    "OPENAI_REALTIME_WEBRTC_MODEL", "gpt-4o-realtime-preview-2024-12-17"
)
DEFAULT_VOICE: str = os.getenv("OPENAI_REALTIME_VOICE", "shimmer")
DEFAULT_TRANSPORT: Transport = Transport(
    os.getenv("OPENAI_REALTIME_TRANSPORT", "websocket").lower()
)

# Label of the data channel carrying realtime events over WebRTC
WEBRTC_EVENTS_CHANNEL: str = "oai-events"


@dataclass(frozen=True)
class ConnectionRequest:
    """
    Everything needed for one connection attempt.

    Built once per attempt and never reused across reconnects. ``auth_token``
    is the long-lived API key unless ``is_ephemeral_key`` is set, in which
    case it already is the short-lived credential.
    """

    auth_token: str
    model: Optional[str] = None
    transport: Transport = Transport.WEBSOCKET
    endpoint: Optional[str] = None
    is_ephemeral_key: bool = False
    voice: str = DEFAULT_VOICE
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.auth_token:
            raise ValueError("ConnectionRequest requires an auth token.")
        if self.model is None:
            default = (
                DEFAULT_WEBRTC_MODEL
                if self.transport is Transport.WEBRTC
                else DEFAULT_WEBSOCKET_MODEL
            )
            object.__setattr__(self, "model", default)

    def __repr__(self) -> str:
        return (
            f"ConnectionRequest(transport={self.transport.value!r}, "
            f"model={self.model!r}, endpoint={self.endpoint!r}, "
            f"is_ephemeral_key={self.is_ephemeral_key})"
        )

    def websocket_url(self) -> str:
        base = self.endpoint or OPENAI_REALTIME_WS_URL
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode({'model': self.model})}"

    def websocket_headers(self) -> Dict[str, str]:
        return {
            OPENAI_BETA_HEADER: OPENAI_BETA_VALUE,
            "Authorization": f"Bearer {self.auth_token}",
            **self.extra_headers,
        }

    def api_base_url(self) -> str:
        return (self.endpoint or OPENAI_API_BASE_URL).rstrip("/")

    @classmethod
    def from_env(cls, transport: Optional[Transport] = None) -> "ConnectionRequest":
        """
        Build a request from environment configuration.

        A configured ephemeral key wins over the API key for WebRTC.
        """
        transport = transport or DEFAULT_TRANSPORT
        if transport is Transport.WEBRTC and OPENAI_REALTIME_EPHEMERAL_KEY:
            return cls(
                auth_token=OPENAI_REALTIME_EPHEMERAL_KEY,
                transport=transport,
                is_ephemeral_key=True,
            )
        return cls(auth_token=OPENAI_API_KEY, transport=transport)
