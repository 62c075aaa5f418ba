"""
Session negotiation for the WebRTC transport.

Two single-shot HTTPS round-trips: issuing a short-lived credential from the
long-lived API key, then exchanging the local SDP offer for the remote
answer. Neither call retries; callers own retry and timeout policy.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from src.realtime_client.errors import NegotiationError
from src.realtime_client.settings import (
    DEFAULT_VOICE,
    OPENAI_API_BASE_URL,
    ConnectionRequest,
)
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class Credential:
    """
    Short-lived secret authorizing one session negotiation.

    Never persisted; the value is masked in ``repr`` and wiped by
    :meth:`discard` once the handshake is over.
    """

    __slots__ = ("_value", "expires_at")

    def __init__(self, value: str, expires_at: Optional[int] = None) -> None:
        self._value = value
        self.expires_at = expires_at

    @property
    def value(self) -> str:
        if not self._value:
            raise RuntimeError("Credential has been discarded")
        return self._value

    @property
    def discarded(self) -> bool:
        return not self._value

    def discard(self) -> None:
        self._value = ""

    def __repr__(self) -> str:
        state = "discarded" if self.discarded else "***"
        return f"Credential({state}, expires_at={self.expires_at})"


class SessionNegotiator:
    """Performs the out-of-band HTTPS exchanges needed to open a WebRTC session."""

    def __init__(
        self,
        base_url: str = OPENAI_API_BASE_URL,
        voice: str = DEFAULT_VOICE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.voice = voice
        self._session = session
        self.tracer = trace.get_tracer(__name__)

    @classmethod
    def for_request(cls, request: ConnectionRequest, **kwargs) -> "SessionNegotiator":
        return cls(base_url=request.api_base_url(), voice=request.voice, **kwargs)

    def _span(self, name: str, model: str):
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes={
                "peer.service": "openai-realtime",
                "server.address": self.base_url,
                "gen_ai.request.model": model,
            },
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
        else:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None)) as session:
                yield session

    async def issue_credential(self, long_lived_token: str, model: str) -> Credential:
        """
        Obtain a short-lived credential scoped to one model.

        Raises:
            NegotiationError: On a non-2xx status or a body without
                ``client_secret.value``.
        """
        url = f"{self.base_url}/realtime/sessions"
        headers = {
            "Authorization": f"Bearer {long_lived_token}",
            "Content-Type": "application/json",
        }
        with self._span("realtime.issue_credential", model) as span:
            logger.info(f"Requesting realtime session credential for model {model}")
            status, body = await self._post(url, headers=headers, json={"model": model, "voice": self.voice})
            span.set_attribute("http.response.status_code", status)
            if not 200 <= status < 300:
                span.set_status(Status(StatusCode.ERROR))
                logger.error(f"Credential issuance failed with status {status}")
                raise NegotiationError(
                    f"Credential issuance failed with status {status}", status=status, body=body
                )
            return self._parse_credential(body, status)

    async def exchange_session_description(
        self, local_offer: str, credential: Credential, model: str
    ) -> str:
        """
        Submit the local SDP offer and return the remote SDP answer.

        Raises:
            NegotiationError: On a non-2xx status or an empty answer.
        """
        url = f"{self.base_url}/realtime"
        headers = {
            "Authorization": f"Bearer {credential.value}",
            "Content-Type": "application/sdp",
        }
        with self._span("realtime.exchange_session_description", model) as span:
            logger.info(f"Exchanging session description for model {model}")
            status, body = await self._post(
                url, headers=headers, params={"model": model}, data=local_offer
            )
            span.set_attribute("http.response.status_code", status)
            if not 200 <= status < 300:
                span.set_status(Status(StatusCode.ERROR))
                logger.error(f"Session description exchange failed with status {status}")
                raise NegotiationError(
                    f"Session description exchange failed with status {status}",
                    status=status,
                    body=body,
                )
            if not body.strip():
                raise NegotiationError("Session description exchange returned an empty answer", status=status)
            return body

    @asynccontextmanager
    async def credential_scope(self, request: ConnectionRequest) -> AsyncIterator[Credential]:
        """
        Yield the credential for one handshake and discard it on exit.

        A request carrying a pre-issued ephemeral key skips issuance.
        """
        if request.is_ephemeral_key:
            logger.info("Using caller-supplied ephemeral key, skipping credential issuance")
            credential = Credential(request.auth_token)
        else:
            credential = await self.issue_credential(request.auth_token, request.model)
        try:
            yield credential
        finally:
            credential.discard()

    async def _post(self, url: str, headers: Dict[str, str], **kwargs: Any):
        try:
            async with self._client() as session:
                async with session.post(url, headers=headers, **kwargs) as response:
                    return response.status, await response.text()
        except aiohttp.ClientError as e:
            logger.error(f"Negotiation request to {url} failed: {e}")
            raise NegotiationError(f"Negotiation request failed: {e}") from e

    @staticmethod
    def _parse_credential(body: str, status: int) -> Credential:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise NegotiationError("Credential response is not valid JSON", status=status, body=body) from e

        secret = payload.get("client_secret") if isinstance(payload, dict) else None
        value = secret.get("value") if isinstance(secret, dict) else None
        if not isinstance(value, str) or not value:
            raise NegotiationError(
                "Credential response is missing client_secret.value", status=status, body=body
            )
        expires_at = secret.get("expires_at")
        return Credential(value, expires_at=expires_at if isinstance(expires_at, int) else None)
