"""Telemetry span contract for LLM requests plus an in-memory recorder."""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, Protocol, Sequence

from .ai_types import TokenUsage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TokenPricing:
    """USD price per million prompt/completion tokens."""

    prompt_per_million: float
    completion_per_million: float

    def cost(self, usage: TokenUsage | None) -> float | None:
        if usage is None:
            return None
        return (
            usage.prompt_tokens * self.prompt_per_million
            + usage.completion_tokens * self.completion_per_million
        ) / 1_000_000


# Groq list prices for llama-3.3-70b-versatile, Jan 2025.
GROQ_PRICING = TokenPricing(prompt_per_million=0.59, completion_per_million=0.79)


class TracingSpan(Protocol):
    """One request's telemetry record; closed exactly once."""

    def add_chunk(self, text: str) -> None:
        ...

    def record_first_token(self) -> None:
        ...

    def complete(self, full_text: str, usage: TokenUsage | None = None) -> None:
        ...

    def error(self, exc: BaseException, kind: str | None = None, retryable: bool | None = None) -> None:
        ...


class AgentTracer(Protocol):
    """Factory for LLM spans."""

    def start_llm_span(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: Sequence[Mapping[str, str]],
        temperature: float,
        max_tokens: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> TracingSpan:
        ...


class _NoOpSpan:
    def add_chunk(self, text: str) -> None:
        del text

    def record_first_token(self) -> None:
        return None

    def complete(self, full_text: str, usage: TokenUsage | None = None) -> None:
        del full_text, usage

    def error(self, exc: BaseException, kind: str | None = None, retryable: bool | None = None) -> None:
        del exc, kind, retryable


class NoOpTracer:
    """Tracer that discards everything."""

    _SPAN = _NoOpSpan()

    def start_llm_span(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: Sequence[Mapping[str, str]],
        temperature: float,
        max_tokens: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> TracingSpan:
        return self._SPAN


NOOP_TRACER: AgentTracer = NoOpTracer()


@dataclass(slots=True)
class LlmSpanRecord:
    """Finished span as kept by :class:`RecordingTracer`."""

    span_id: int
    model: str
    system_prompt: str
    message_count: int
    temperature: float
    max_tokens: int
    started_at: float
    metadata: dict[str, Any] = field(default_factory=dict)
    chunks: list[str] = field(default_factory=list)
    first_token_at: float | None = None
    finished_at: float | None = None
    status: str = "open"
    full_text: str | None = None
    usage: TokenUsage | None = None
    cost_usd: float | None = None
    error_kind: str | None = None
    error_message: str | None = None
    retryable: bool | None = None

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def first_token_latency(self) -> float | None:
        if self.first_token_at is None:
            return None
        return self.first_token_at - self.started_at

    @property
    def duration(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class TelemetrySink(Protocol):
    """Sink interface used to collect finished spans."""

    def record(self, span: LlmSpanRecord) -> None:
        ...


class InMemoryTelemetrySink:
    """Simple ring-buffer telemetry sink for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[LlmSpanRecord] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, span: LlmSpanRecord) -> None:
        with self._lock:
            self._buffer.append(span)

    def tail(self, limit: int | None = None) -> list[LlmSpanRecord]:
        with self._lock:
            spans = list(self._buffer)
        if limit is None or limit >= len(spans):
            return spans
        return spans[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


class RecordingSpan:
    """Span that fills an :class:`LlmSpanRecord` and hands it to a sink on close."""

    def __init__(self, record: LlmSpanRecord, sink: TelemetrySink, pricing: TokenPricing | None) -> None:
        self._record = record
        self._sink = sink
        self._pricing = pricing

    @property
    def record(self) -> LlmSpanRecord:
        return self._record

    @property
    def closed(self) -> bool:
        return self._record.finished_at is not None

    def add_chunk(self, text: str) -> None:
        if self.closed:
            return
        self._record.chunks.append(text)

    def record_first_token(self) -> None:
        if self._record.first_token_at is None:
            self._record.first_token_at = time.monotonic()

    def complete(self, full_text: str, usage: TokenUsage | None = None) -> None:
        if not self._begin_close("complete"):
            return
        self._record.status = "ok"
        self._record.full_text = full_text
        self._record.usage = usage
        if self._pricing is not None:
            self._record.cost_usd = self._pricing.cost(usage)
        self._sink.record(self._record)

    def error(self, exc: BaseException, kind: str | None = None, retryable: bool | None = None) -> None:
        if not self._begin_close("error"):
            return
        self._record.status = "error"
        self._record.error_kind = kind
        self._record.error_message = str(exc)
        self._record.retryable = retryable
        self._record.full_text = "".join(self._record.chunks)
        self._sink.record(self._record)

    def _begin_close(self, how: str) -> bool:
        if self.closed:
            LOGGER.warning("Span %s already closed (%s); ignoring %s", self._record.span_id, self._record.status, how)
            return False
        self._record.finished_at = time.monotonic()
        return True


class RecordingTracer:
    """Tracer keeping finished spans in memory; backs the CLI trace summary."""

    def __init__(self, sink: TelemetrySink | None = None, *, pricing: TokenPricing | None = GROQ_PRICING) -> None:
        self._sink = sink or InMemoryTelemetrySink()
        self._pricing = pricing
        self._ids = itertools.count(1)

    @property
    def sink(self) -> TelemetrySink:
        return self._sink

    def spans(self, limit: int | None = None) -> list[LlmSpanRecord]:
        tail = getattr(self._sink, "tail", None)
        if tail is None:
            raise NotImplementedError("Telemetry sink does not support snapshotting")
        return list(tail(limit))

    def start_llm_span(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: Sequence[Mapping[str, str]],
        temperature: float,
        max_tokens: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> RecordingSpan:
        record = LlmSpanRecord(
            span_id=next(self._ids),
            model=model,
            system_prompt=system_prompt,
            message_count=len(messages),
            temperature=temperature,
            max_tokens=max_tokens,
            started_at=time.monotonic(),
            metadata=dict(metadata or {}),
        )
        return RecordingSpan(record, self._sink, self._pricing)


def format_span_summary(span: LlmSpanRecord) -> str:
    """One-line human summary of a finished span."""

    parts = [f"#{span.span_id} {span.model}", span.status]
    if span.error_kind:
        parts.append(f"kind={span.error_kind}")
    parts.append(f"chunks={span.chunk_count}")
    latency = span.first_token_latency
    if latency is not None:
        parts.append(f"ttft={latency * 1000:.0f}ms")
    if span.usage is not None:
        parts.append(f"tokens={span.usage.total_tokens:,}")
    if span.cost_usd is not None:
        parts.append(f"cost=${span.cost_usd:.6f}")
    return " · ".join(parts)


__all__ = [
    "TokenPricing",
    "GROQ_PRICING",
    "TracingSpan",
    "AgentTracer",
    "NoOpTracer",
    "NOOP_TRACER",
    "LlmSpanRecord",
    "TelemetrySink",
    "InMemoryTelemetrySink",
    "RecordingSpan",
    "RecordingTracer",
    "format_span_summary",
]
