"""Session memory and compaction for conversational agents.

This package keeps dialogue state across turns and bounds its size.  It wires
together

* a linear session memory with an optional compacted summary,
* a branching topic / subtopic memory with per-topic rolling summaries,
* start policies and strategies that decide when and how history is compacted,
* a model-driven branch classifier with retry and fallback, and
* an OpenAI-compatible client plus a SQLite snapshot store.
"""

from .branching import BranchingSessionMemory, normalize_display_name, normalize_key
from .classifier import BranchClassifier
from .clients import CompletionClient, CompletionError, LLMClient
from .coordinator import SessionCompactionMode, SessionMemoryCompactionCoordinator, build_coordinator
from .policies import (
    NeverCompactionStartPolicy,
    RollingWindowCompactionStartPolicy,
    SlidingWindowCompactionStartPolicy,
)
from .runtime import SessionRuntime, TurnResult
from .schemas import (
    ActiveBranch,
    AgentResponse,
    BranchActivationResult,
    BranchClassificationResult,
    BranchingConversation,
    BranchingMemoryState,
    BranchSubtopicCatalogEntry,
    BranchTopicCatalogEntry,
    CompactedSessionSummary,
    ConversationMessage,
    MessageRole,
    SessionCompactionCandidate,
    SessionMemoryState,
    SubtopicBranchState,
    TopicBranchState,
)
from .session import SessionMemory
from .storage import SessionMemoryStore
from .strategies import (
    FactMapCompactionStrategy,
    FactMapValidationError,
    RollingSummaryCompactionStrategy,
    SessionCompactionSummaryMode,
    SlidingWindowCompactionStrategy,
)
from .tokens import estimate_tokens

__all__ = [
    "ActiveBranch",
    "AgentResponse",
    "BranchActivationResult",
    "BranchClassificationResult",
    "BranchClassifier",
    "BranchSubtopicCatalogEntry",
    "BranchTopicCatalogEntry",
    "BranchingConversation",
    "BranchingMemoryState",
    "BranchingSessionMemory",
    "CompactedSessionSummary",
    "CompletionClient",
    "CompletionError",
    "ConversationMessage",
    "FactMapCompactionStrategy",
    "FactMapValidationError",
    "LLMClient",
    "MessageRole",
    "NeverCompactionStartPolicy",
    "RollingSummaryCompactionStrategy",
    "RollingWindowCompactionStartPolicy",
    "SessionCompactionCandidate",
    "SessionCompactionMode",
    "SessionCompactionSummaryMode",
    "SessionMemory",
    "SessionMemoryCompactionCoordinator",
    "SessionMemoryState",
    "SessionMemoryStore",
    "SessionRuntime",
    "SlidingWindowCompactionStartPolicy",
    "SlidingWindowCompactionStrategy",
    "SubtopicBranchState",
    "TopicBranchState",
    "TurnResult",
    "build_coordinator",
    "estimate_tokens",
    "normalize_display_name",
    "normalize_key",
]
