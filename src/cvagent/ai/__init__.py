"""Streaming completion client, request pacing and telemetry contracts."""

from .ai_types import StreamCompleted, StreamContent, StreamDropped, StreamEvent, StreamFailed, TokenUsage
from .client import ChatClient, ClientSettings
from .errors import ApiError, AuthError, ChatApiError, NetworkError, RateLimitError, StreamDroppedError
from .rate_limiter import NOOP_RATE_LIMITER, MinIntervalRateLimiter, NoOpRateLimiter, RateLimiter
from .telemetry import NOOP_TRACER, AgentTracer, RecordingTracer, TracingSpan

__all__ = [
    "ChatClient",
    "ClientSettings",
    "StreamEvent",
    "StreamContent",
    "StreamCompleted",
    "StreamFailed",
    "StreamDropped",
    "TokenUsage",
    "ChatApiError",
    "NetworkError",
    "AuthError",
    "RateLimitError",
    "ApiError",
    "StreamDroppedError",
    "RateLimiter",
    "MinIntervalRateLimiter",
    "NoOpRateLimiter",
    "NOOP_RATE_LIMITER",
    "AgentTracer",
    "TracingSpan",
    "RecordingTracer",
    "NOOP_TRACER",
]
