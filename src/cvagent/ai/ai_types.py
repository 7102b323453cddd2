"""Shared typing contracts for the streaming chat client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from .errors import ChatApiError


@dataclass(slots=True, frozen=True)
class TokenUsage:
    """Token counters reported by the provider for one completion."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> TokenUsage | None:
        """Build usage counters from a provider ``usage`` object, if well formed."""

        if not isinstance(payload, Mapping):
            return None
        try:
            prompt = int(payload.get("prompt_tokens") or 0)
            completion = int(payload.get("completion_tokens") or 0)
            total = int(payload.get("total_tokens") or prompt + completion)
        except (TypeError, ValueError):
            return None
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass(slots=True, frozen=True)
class StreamContent:
    """One non-empty content delta, in network arrival order."""

    delta: str


@dataclass(slots=True, frozen=True)
class StreamCompleted:
    """Terminal success: the ``[DONE]`` sentinel was received."""

    full_text: str
    usage: TokenUsage | None = None


@dataclass(slots=True, frozen=True)
class StreamFailed:
    """Terminal failure carrying one of the transport error kinds."""

    error: ChatApiError


@dataclass(slots=True, frozen=True)
class StreamDropped:
    """Terminal drop: the body ended without the ``[DONE]`` sentinel."""

    partial_text: str


StreamTerminal = Union[StreamCompleted, StreamFailed, StreamDropped]
StreamEvent = Union[StreamContent, StreamCompleted, StreamFailed, StreamDropped]


def is_terminal(event: StreamEvent) -> bool:
    """Return ``True`` when *event* ends a stream."""

    return not isinstance(event, StreamContent)


__all__ = [
    "TokenUsage",
    "StreamContent",
    "StreamCompleted",
    "StreamFailed",
    "StreamDropped",
    "StreamEvent",
    "StreamTerminal",
    "is_terminal",
]
