"""Async streaming client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, cast

import httpx
from openai.types.chat import ChatCompletionMessageParam

from .ai_types import StreamCompleted, StreamContent, StreamDropped, StreamEvent, StreamFailed, TokenUsage
from .errors import ApiError, AuthError, ChatApiError, NetworkError, RateLimitError, StreamDroppedError
from .rate_limiter import NOOP_RATE_LIMITER, RateLimiter
from .telemetry import NOOP_TRACER, AgentTracer, TracingSpan

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.3-70b-versatile"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1024

_DATA_PREFIX = "data: "
_DONE_SENTINEL = "[DONE]"
_AUTH_STATUSES = frozenset({401, 403})


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the chat client."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout: float | None = 90.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"


class _SpanGuard:
    """Closes a span at most once and keeps telemetry faults out of the stream."""

    __slots__ = ("_span", "closed")

    def __init__(self, span: TracingSpan) -> None:
        self._span = span
        self.closed = False

    def chunk(self, text: str, *, first: bool) -> None:
        try:
            if first:
                self._span.record_first_token()
            self._span.add_chunk(text)
        except Exception:  # pragma: no cover - defensive guard
            LOGGER.debug("Telemetry span rejected chunk", exc_info=True)

    def complete(self, full_text: str, usage: TokenUsage | None) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._span.complete(full_text, usage)
        except Exception:  # pragma: no cover - defensive guard
            LOGGER.debug("Telemetry span failed to complete", exc_info=True)

    def fail(self, exc: BaseException, *, kind: str | None = None, retryable: bool | None = None) -> None:
        if self.closed:
            return
        self.closed = True
        if isinstance(exc, ChatApiError):
            kind = kind or exc.kind
            retryable = exc.retryable if retryable is None else retryable
        try:
            self._span.error(exc, kind, retryable)
        except Exception:  # pragma: no cover - defensive guard
            LOGGER.debug("Telemetry span failed to record error", exc_info=True)


class ChatClient:
    """Issues one streamed completion request per conversational turn.

    Every request acquires a rate limiter slot first, opens exactly one
    telemetry span and yields a tagged event sequence: zero or more
    :class:`StreamContent` followed by a single terminal event. Failures are
    delivered as :class:`StreamFailed` values, never raised.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter = NOOP_RATE_LIMITER,
        tracer: AgentTracer = NOOP_TRACER,
    ) -> None:
        self._settings = settings
        self._owns_http = http_client is None
        self._http = http_client or self._build_http_client(settings)
        self._rate_limiter = rate_limiter
        self._tracer = tracer

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    async def stream_events(
        self,
        history: Iterable[Mapping[str, Any]],
        *,
        system_prompt: str = "",
        session_id: str | None = None,
        turn_number: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one completion for *history*, prepending *system_prompt* when non-empty."""

        messages = self._coerce_messages(history)
        LOGGER.debug("Starting chat completion - messages: %s, turn: %s", len(messages), turn_number)
        span = self._tracer.start_llm_span(
            model=self._settings.model,
            system_prompt=system_prompt,
            messages=cast(List[Mapping[str, str]], messages),
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
            metadata=self._span_metadata(session_id, turn_number, metadata),
        )
        guard = _SpanGuard(span)
        try:
            await self._rate_limiter.acquire()
            payload = self._build_chat_payload(messages, system_prompt)
            if self._settings.debug_logging:
                self._log_prompt_payload(payload)

            async with self._http.stream(
                "POST",
                self._settings.completions_url,
                json=payload,
                headers=self._request_headers(),
            ) as response:
                LOGGER.debug("Response status: %s", response.status_code)
                if response.status_code != 200:
                    error = await self._classify_failure(response)
                    guard.fail(error)
                    yield StreamFailed(error)
                    return
                async for event in self._parse_stream(response, guard):
                    yield event
        except (httpx.HTTPError, OSError) as exc:
            LOGGER.error("Request failed: %s", exc)
            error = NetworkError(str(exc) or type(exc).__name__)
            guard.fail(error, kind="timeout" if isinstance(exc, httpx.TimeoutException) else None)
            yield StreamFailed(error)
        finally:
            if not guard.closed:
                # Cancelled, or the consumer abandoned the iterator mid-stream.
                LOGGER.debug("Chat completion abandoned before a terminal event")
                guard.fail(RuntimeError("request cancelled"), kind="cancelled", retryable=False)

    async def stream_completion(
        self,
        history: Iterable[Mapping[str, Any]],
        *,
        on_chunk: Callable[[str], None],
        on_complete: Callable[[], None],
        on_error: Callable[[ChatApiError], None],
        on_drop: Callable[[str], None] | None = None,
        system_prompt: str = "",
        session_id: str | None = None,
        turn_number: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Callback flavour of :meth:`stream_events`.

        A dropped stream fires none of ``on_chunk``/``on_complete``/``on_error``
        for its terminal event; only ``on_drop`` when supplied.
        """

        async for event in self.stream_events(
            history,
            system_prompt=system_prompt,
            session_id=session_id,
            turn_number=turn_number,
            metadata=metadata,
        ):
            if isinstance(event, StreamContent):
                on_chunk(event.delta)
            elif isinstance(event, StreamCompleted):
                on_complete()
            elif isinstance(event, StreamFailed):
                on_error(event.error)
            elif on_drop is not None:
                on_drop(event.partial_text)

    async def _parse_stream(self, response: httpx.Response, span: _SpanGuard) -> AsyncIterator[StreamEvent]:
        accumulated: list[str] = []
        usage: TokenUsage | None = None
        async for line in response.aiter_lines():
            if not line.startswith(_DATA_PREFIX):
                continue
            data = line[len(_DATA_PREFIX):].strip()
            if data == _DONE_SENTINEL:
                full_text = "".join(accumulated)
                LOGGER.debug("Stream completed - response length: %s", len(full_text))
                span.complete(full_text, usage)
                yield StreamCompleted(full_text=full_text, usage=usage)
                return
            chunk = _decode_chunk(data)
            if chunk is None:
                continue
            usage = _extract_usage(chunk) or usage
            delta = _extract_delta(chunk)
            if not delta:
                continue
            if not accumulated:
                LOGGER.debug("First chunk arrived")
            span.chunk(delta, first=not accumulated)
            accumulated.append(delta)
            yield StreamContent(delta=delta)

        partial = "".join(accumulated)
        LOGGER.warning("Stream closed without %s after %s chars", _DONE_SENTINEL, len(partial))
        span.fail(StreamDroppedError(len(partial)))
        yield StreamDropped(partial_text=partial)

    async def _classify_failure(self, response: httpx.Response) -> ChatApiError:
        status = response.status_code
        if status in _AUTH_STATUSES:
            LOGGER.warning("Auth error: %s", status)
            return AuthError(status)
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            LOGGER.warning("Rate limit exceeded, retry-after: %s", retry_after)
            await self._rate_limiter.report_throttled(retry_after)
            return RateLimitError(retry_after)
        message = await _read_error_message(response)
        LOGGER.warning("API error: %s %s", status, message)
        return ApiError(status, message)

    def _coerce_messages(self, history: Iterable[Mapping[str, Any]]) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in history:
            try:
                role = str(message["role"])
                content = str(message.get("content") or "")
            except (KeyError, TypeError, AttributeError) as exc:
                raise TypeError("Messages must be mappings with 'role' and 'content' keys") from exc
            normalized.append(cast(ChatCompletionMessageParam, {"role": role, "content": content}))
        return normalized

    def _build_chat_payload(
        self,
        messages: List[ChatCompletionMessageParam],
        system_prompt: str,
    ) -> Dict[str, Any]:
        outbound: List[ChatCompletionMessageParam] = []
        if system_prompt:
            outbound.append({"role": "system", "content": system_prompt})
        outbound.extend(messages)
        return {
            "model": self._settings.model,
            "messages": outbound,
            "stream": True,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }

    def _request_headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._settings.api_key}",
            "Accept": "text/event-stream",
        }
        if self._settings.default_headers:
            headers.update(self._settings.default_headers)
        return headers

    def _span_metadata(
        self,
        session_id: str | None,
        turn_number: int | None,
        runtime_metadata: Mapping[str, Any] | None,
    ) -> Dict[str, Any]:
        combined: Dict[str, Any] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        if session_id is not None:
            combined["session_id"] = session_id
        if turn_number is not None:
            combined["turn_number"] = turn_number
        return combined

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat payload:\n%s", serialized)

    @staticmethod
    def _build_http_client(settings: ClientSettings) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.request_timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if self._owns_http:
            await self._http.aclose()


def _decode_chunk(data: str) -> Mapping[str, Any] | None:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        return None
    return chunk if isinstance(chunk, dict) else None


def _extract_delta(chunk: Mapping[str, Any]) -> str | None:
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def _extract_usage(chunk: Mapping[str, Any]) -> TokenUsage | None:
    usage = TokenUsage.from_payload(chunk.get("usage"))
    if usage is not None:
        return usage
    # Groq reports usage under x_groq on the final chunk.
    extra = chunk.get("x_groq")
    if isinstance(extra, dict):
        return TokenUsage.from_payload(extra.get("usage"))
    return None


def _parse_retry_after(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


async def _read_error_message(response: httpx.Response) -> str:
    try:
        body = await response.aread()
        payload = json.loads(body or b"null")
    except (httpx.HTTPError, ValueError):
        return "API error"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return "API error"


__all__ = [
    "ChatClient",
    "ClientSettings",
    "DEFAULT_BASE_URL",
    "DEFAULT_MODEL",
    "DEFAULT_TEMPERATURE",
    "DEFAULT_MAX_TOKENS",
]
