"""Conversation data model: turns, references, errors and state snapshots."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(slots=True, frozen=True)
class EntityReference:
    """Domain entity an inline ``[Kind: id]`` marker resolved to."""

    id: str
    kind: str
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "kind": self.kind, "label": self.label}


@dataclass(slots=True, frozen=True)
class Message:
    """Represents one turn inside the conversation."""

    role: MessageRole
    content: str
    id: str = field(default_factory=_new_id)
    references: tuple[EntityReference, ...] = ()
    suggestions: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)

    def with_content(self, content: str) -> Message:
        return replace(self, content=content)

    def as_api_message(self) -> Dict[str, str]:
        """Role/content pair as sent to the completions endpoint."""

        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for logs and UI bridges."""

        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "references": [reference.to_dict() for reference in self.references],
            "suggestions": list(self.suggestions),
            "created_at": self.created_at.isoformat(),
        }


class ChatErrorKind(str, Enum):
    """Presentation-level error categories."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    API = "api"
    DROPPED = "dropped"


@dataclass(slots=True, frozen=True)
class ChatError:
    """Error published on the conversation state for the UI to render."""

    kind: ChatErrorKind
    message: str = ""


class ConversationPhase(str, Enum):
    """Lifecycle of the current turn.

    Values:
        IDLE: No request in flight (initial state and between turns).
        SENDING: User turn appended, request not yet issued.
        STREAMING: Assistant placeholder present and receiving content.
    """

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"


# Idle suggestions are deployment content; callers pass their own list.
DEFAULT_SUGGESTIONS: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ConversationState:
    """Immutable snapshot published to observers after every mutation.

    Attributes:
        messages: Turns in conversation order (oldest first).
        is_loading: Request issued, no stream opened yet.
        is_streaming: An assistant turn is receiving content.
        streaming_message_id: Id of that assistant turn, if any.
        thinking_status: Short status text shown while loading.
        error: Last presentation error, cleared by the next submission.
        suggestions: Idle suggestions shown while the conversation is empty.
    """

    messages: tuple[Message, ...] = ()
    is_loading: bool = False
    is_streaming: bool = False
    streaming_message_id: Optional[str] = None
    thinking_status: Optional[str] = None
    error: Optional[ChatError] = None
    suggestions: tuple[str, ...] = DEFAULT_SUGGESTIONS

    @property
    def phase(self) -> ConversationPhase:
        if self.is_streaming:
            return ConversationPhase.STREAMING
        if self.is_loading:
            return ConversationPhase.SENDING
        return ConversationPhase.IDLE

    @property
    def streaming_message(self) -> Message | None:
        if self.streaming_message_id is None:
            return None
        return self.find(self.streaming_message_id)

    def find(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


__all__ = [
    "MessageRole",
    "EntityReference",
    "Message",
    "ChatErrorKind",
    "ChatError",
    "ConversationPhase",
    "ConversationState",
    "DEFAULT_SUGGESTIONS",
]
