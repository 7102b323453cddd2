"""Error taxonomy surfaced by the streaming chat client."""

from __future__ import annotations


class ChatApiError(Exception):
    """Base class for failures terminating a streamed completion."""

    #: Short category string forwarded to telemetry spans.
    kind: str = "api"
    #: Whether repeating the request could plausibly succeed.
    retryable: bool = False


class NetworkError(ChatApiError):
    """Transport-level failure; no usable response was received."""

    kind = "network"
    retryable = True

    def __init__(self, reason: str) -> None:
        super().__init__(f"Network error: {reason}")
        self.reason = reason


class AuthError(ChatApiError):
    """The provider rejected the configured credential."""

    kind = "auth"

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Authentication failed: {status_code}")
        self.status_code = status_code


class RateLimitError(ChatApiError):
    """The provider throttled the request."""

    kind = "rate_limit"
    retryable = True

    def __init__(self, retry_after: int | None = None) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after = retry_after


class ApiError(ChatApiError):
    """Any other non-success HTTP status."""

    kind = "api"

    def __init__(self, status_code: int, message: str = "API error") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class StreamDroppedError(ChatApiError):
    """The event stream closed before the ``[DONE]`` sentinel arrived.

    Not part of the provider error set: it is only reported to telemetry
    spans so that a dropped stream still closes its span.
    """

    kind = "dropped"
    retryable = True

    def __init__(self, received_chars: int = 0) -> None:
        super().__init__(f"Stream closed before completion after {received_chars} chars")
        self.received_chars = received_chars


__all__ = [
    "ChatApiError",
    "NetworkError",
    "AuthError",
    "RateLimitError",
    "ApiError",
    "StreamDroppedError",
]
