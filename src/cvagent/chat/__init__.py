"""Conversation model, content extractors and the turn orchestrator."""

from .message_model import (
    DEFAULT_SUGGESTIONS,
    ChatError,
    ChatErrorKind,
    ConversationPhase,
    ConversationState,
    EntityReference,
    Message,
    MessageRole,
)
from .orchestrator import (
    ChatOrchestrator,
    PromptResult,
    StaticPromptProvider,
    SystemPromptProvider,
    TurnInProgressError,
)
from .references import EntityResolver, ReferenceExtractor, StaticEntityResolver
from .state_store import StateStore
from .suggestions import SuggestionExtractor

__all__ = [
    "ChatOrchestrator",
    "ChatError",
    "ChatErrorKind",
    "ConversationPhase",
    "ConversationState",
    "DEFAULT_SUGGESTIONS",
    "EntityReference",
    "EntityResolver",
    "Message",
    "MessageRole",
    "PromptResult",
    "ReferenceExtractor",
    "StateStore",
    "StaticEntityResolver",
    "StaticPromptProvider",
    "SuggestionExtractor",
    "SystemPromptProvider",
    "TurnInProgressError",
]
