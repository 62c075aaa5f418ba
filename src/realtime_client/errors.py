from typing import Optional


class RealtimeError(Exception):
    """Base class for every error raised by the realtime client."""


class TransmitError(RealtimeError):
    """An outbound event could not be handed to the transport."""


class NotConnectedError(TransmitError):
    """``send`` was called while the connector is not connected."""

    def __init__(self, message: str = "Realtime connector is not connected") -> None:
        super().__init__(message)


class DecodeError(RealtimeError):
    """An inbound payload was not a well-formed server event."""


class TransportError(RealtimeError):
    """The underlying connection failed or was lost abruptly."""


class NegotiationError(RealtimeError):
    """
    A session negotiation round-trip failed.

    Carries the HTTP status and a truncated response body when the failure
    came from the remote service.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body[:512] if body else body
