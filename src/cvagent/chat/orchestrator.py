"""Conversation orchestrator.

Owns the message list and the streaming lifecycle of one conversation and
publishes an immutable :class:`ConversationState` after every transition::

    IDLE --submit()--> SENDING --request issued--> STREAMING --done--> IDLE
                                                        \\--error/drop--> IDLE + error

Only one turn may be in flight; a second :meth:`ChatOrchestrator.submit`
raises :class:`TurnInProgressError`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, AsyncGenerator, Iterable, Mapping, Protocol, Sequence

from ..ai.ai_types import StreamCompleted, StreamContent, StreamDropped, StreamEvent, StreamFailed
from ..ai.errors import ApiError, AuthError, ChatApiError, NetworkError, RateLimitError
from .message_model import (
    DEFAULT_SUGGESTIONS,
    ChatError,
    ChatErrorKind,
    ConversationState,
    EntityReference,
    Message,
    MessageRole,
)
from .references import ReferenceExtractor
from .state_store import StateStore
from .suggestions import SuggestionExtractor

LOGGER = logging.getLogger(__name__)

MAX_HISTORY = 10
THINKING_STATUS = "Crafting personalized response."


class TurnInProgressError(RuntimeError):
    """Raised when a submission arrives while another turn is in flight."""


class CompletionTransport(Protocol):
    """Streaming completion source; satisfied by :class:`cvagent.ai.ChatClient`."""

    def stream_events(
        self,
        history: Iterable[Mapping[str, Any]],
        *,
        system_prompt: str = "",
        session_id: str | None = None,
        turn_number: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        ...


@dataclass(slots=True, frozen=True)
class PromptResult:
    """System prompt plus the identifiers of the template that produced it."""

    prompt: str
    version: str | None = None
    variant: str | None = None


class SystemPromptProvider(Protocol):
    def build_prompt(self) -> PromptResult | None:
        ...


class StaticPromptProvider:
    """Provider returning a fixed system prompt."""

    def __init__(self, prompt: str, *, version: str | None = None, variant: str | None = None) -> None:
        self._result = PromptResult(prompt=prompt, version=version, variant=variant)

    def build_prompt(self) -> PromptResult | None:
        return self._result if self._result.prompt else None


def to_chat_error(error: ChatApiError) -> ChatError:
    """Map a transport error to the presentation error shown to the user."""

    if isinstance(error, NetworkError):
        return ChatError(ChatErrorKind.NETWORK, error.reason)
    if isinstance(error, RateLimitError):
        return ChatError(ChatErrorKind.RATE_LIMIT, str(error))
    if isinstance(error, AuthError):
        return ChatError(ChatErrorKind.API, "Authentication failed")
    if isinstance(error, ApiError):
        return ChatError(ChatErrorKind.API, error.message)
    return ChatError(ChatErrorKind.API, str(error))


class ChatOrchestrator:
    """State machine turning user submissions into streamed assistant turns."""

    def __init__(
        self,
        transport: CompletionTransport,
        *,
        reference_extractor: ReferenceExtractor | None = None,
        suggestion_extractor: SuggestionExtractor | None = None,
        prompt_provider: SystemPromptProvider | None = None,
        max_history: int = MAX_HISTORY,
        stream_timeout: float | None = None,
        idle_suggestions: Sequence[str] = DEFAULT_SUGGESTIONS,
    ) -> None:
        self._transport = transport
        self._reference_extractor = reference_extractor
        self._suggestion_extractor = suggestion_extractor or SuggestionExtractor()
        self._prompt_provider = prompt_provider
        self._max_history = max(1, int(max_history))
        self._stream_timeout = stream_timeout
        self._idle_suggestions = tuple(idle_suggestions)
        self._store: StateStore[ConversationState] = StateStore(ConversationState(suggestions=self._idle_suggestions))
        self._last_user_message: str | None = None
        self._session_id = str(uuid.uuid4())
        self._turn_number = 0
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> StateStore[ConversationState]:
        """Observable store; subscribe to receive every snapshot."""
        return self._store

    @property
    def snapshot(self) -> ConversationState:
        return self._store.value

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def turn_number(self) -> int:
        return self._turn_number

    @property
    def last_user_message(self) -> str | None:
        return self._last_user_message

    def is_busy(self) -> bool:
        """Check if a turn is currently sending or streaming."""
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(self, text: str) -> asyncio.Task[None]:
        """Append a user turn and start streaming the reply.

        Blank text is accepted. Must be called from a running event loop;
        the returned task finishes when the turn settles.

        Raises:
            TurnInProgressError: If another turn is still in flight.
        """
        if self.is_busy():
            raise TurnInProgressError("A chat turn is already in progress")
        loop = asyncio.get_running_loop()

        LOGGER.debug("Sending message - length: %d", len(text))
        self._last_user_message = text
        user_message = Message(role=MessageRole.USER, content=text)
        self._store.update(
            lambda current: replace(
                current,
                messages=current.messages + (user_message,),
                is_loading=True,
                thinking_status=THINKING_STATUS,
                error=None,
                suggestions=(),
            )
        )
        task = loop.create_task(self._stream_response(), name=f"chat-turn-{self._turn_number + 1}")
        task.add_done_callback(self._on_turn_done)
        self._task = task
        return task

    def on_suggestion_clicked(self, suggestion: str) -> asyncio.Task[None]:
        return self.submit(suggestion)

    def retry(self) -> asyncio.Task[None] | None:
        """Re-submit the last user text verbatim; ``None`` if nothing was sent yet."""
        if self._last_user_message is None:
            return None
        return self.submit(self._last_user_message)

    def clear_error(self) -> None:
        self._store.update(lambda current: replace(current, error=None))

    def clear_history(self) -> None:
        """Drop every turn, forget the retry text and start a new session."""
        LOGGER.debug("Clearing chat history (%d messages)", len(self.snapshot.messages))
        self.cancel()
        self._store.set(ConversationState(suggestions=self._idle_suggestions))
        self._last_user_message = None
        self._session_id = str(uuid.uuid4())
        self._turn_number = 0

    def cancel(self) -> bool:
        """Cancel the in-flight turn; its placeholder is removed without an error."""
        if not self.is_busy():
            return False
        assert self._task is not None
        self._task.cancel()
        return True

    async def aclose(self) -> None:
        task = self._task
        if task is not None and self.cancel():
            try:
                await task
            except asyncio.CancelledError:
                pass
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    async def _stream_response(self) -> None:
        self._turn_number += 1
        turn = self._turn_number
        session_id = self._session_id
        LOGGER.debug("Starting turn %d in session %s", turn, session_id)

        prompt = self._prompt_provider.build_prompt() if self._prompt_provider else None
        history = self._build_history()
        assistant_message = Message(role=MessageRole.ASSISTANT, content="")
        message_id = assistant_message.id

        self._store.update(
            lambda current: replace(
                current,
                messages=current.messages + (assistant_message,),
                is_loading=False,
                is_streaming=True,
                streaming_message_id=message_id,
                thinking_status=None,
            )
        )

        buffer: list[str] = []
        try:
            consume = self._consume(history, prompt, session_id, turn, message_id, buffer)
            if self._stream_timeout is not None:
                terminal = await asyncio.wait_for(consume, timeout=self._stream_timeout)
            else:
                terminal = await consume
        except asyncio.TimeoutError:
            LOGGER.warning("Turn %d timed out after %.1fs", turn, self._stream_timeout or 0.0)
            self._fail_turn(message_id, ChatError(ChatErrorKind.DROPPED, "Response timed out"))
            return
        except asyncio.CancelledError:
            LOGGER.debug("Turn %d canceled", turn)
            self._fail_turn(message_id, None)
            raise
        except Exception as exc:
            LOGGER.exception("Turn %d failed unexpectedly", turn)
            self._fail_turn(message_id, ChatError(ChatErrorKind.API, str(exc)))
            raise

        if isinstance(terminal, StreamCompleted):
            self._complete_turn(message_id, "".join(buffer))
        elif isinstance(terminal, StreamFailed):
            LOGGER.warning("Stream error: %s", type(terminal.error).__name__)
            self._fail_turn(message_id, to_chat_error(terminal.error))
        else:
            self._fail_turn(message_id, ChatError(ChatErrorKind.DROPPED, "Response ended unexpectedly"))

    async def _consume(
        self,
        history: list[dict[str, str]],
        prompt: PromptResult | None,
        session_id: str,
        turn: int,
        message_id: str,
        buffer: list[str],
    ) -> StreamCompleted | StreamFailed | StreamDropped | None:
        metadata: dict[str, Any] = {}
        if prompt is not None:
            if prompt.version:
                metadata["prompt_version"] = prompt.version
            if prompt.variant:
                metadata["prompt_variant"] = prompt.variant
        events = self._transport.stream_events(
            history,
            system_prompt=prompt.prompt if prompt else "",
            session_id=session_id,
            turn_number=turn,
            metadata=metadata or None,
        )
        # Close the stream as soon as the terminal event arrives so the connection is released.
        async with contextlib.aclosing(events):
            async for event in events:
                if isinstance(event, StreamContent):
                    buffer.append(event.delta)
                    content = "".join(buffer)
                    self._store.update(lambda current: _with_message_content(current, message_id, content))
                    continue
                return event
        return None

    def _complete_turn(self, message_id: str, text: str) -> None:
        extraction = self._suggestion_extractor.extract(text)
        content = extraction.cleaned_content
        references: tuple[EntityReference, ...] = ()
        if self._reference_extractor is not None:
            resolved = self._reference_extractor.extract(content)
            content = resolved.cleaned_content
            references = resolved.references
        LOGGER.debug(
            "Stream completed - content length: %d, references: %d, suggestions: %d",
            len(content),
            len(references),
            len(extraction.suggestions),
        )

        def _finalize(current: ConversationState) -> ConversationState:
            messages = tuple(
                replace(message, content=content, references=references, suggestions=extraction.suggestions)
                if message.id == message_id
                else message
                for message in current.messages
            )
            return replace(current, messages=messages, is_streaming=False, streaming_message_id=None)

        self._release_turn()
        self._store.update(_finalize)

    def _fail_turn(self, message_id: str, error: ChatError | None) -> None:
        def _discard(current: ConversationState) -> ConversationState:
            return replace(
                current,
                messages=tuple(message for message in current.messages if message.id != message_id),
                is_loading=False,
                is_streaming=False,
                streaming_message_id=None,
                thinking_status=None,
                error=error if error is not None else current.error,
            )

        self._release_turn()
        self._store.update(_discard)

    def _release_turn(self) -> None:
        # Observers reacting to the settled snapshot may submit the next turn.
        if self._task is not None and self._task is asyncio.current_task():
            self._task = None

    def _on_turn_done(self, task: asyncio.Task[None]) -> None:
        if task is not self._task:
            return
        self._task = None
        # A task cancelled before its first step never reaches _stream_response's handlers.
        if task.cancelled() and self._store.value.is_loading:
            self._store.update(lambda current: replace(current, is_loading=False, thinking_status=None))

    def _build_history(self) -> list[dict[str, str]]:
        recent = self._store.value.messages[-self._max_history:]
        return [message.as_api_message() for message in recent]


def _with_message_content(state: ConversationState, message_id: str, content: str) -> ConversationState:
    return replace(
        state,
        messages=tuple(
            message.with_content(content) if message.id == message_id else message for message in state.messages
        ),
    )


__all__ = [
    "ChatOrchestrator",
    "CompletionTransport",
    "PromptResult",
    "SystemPromptProvider",
    "StaticPromptProvider",
    "TurnInProgressError",
    "THINKING_STATUS",
    "MAX_HISTORY",
    "to_chat_error",
]
