"""Typed data structures shared by the session memory and compaction layers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    """A single role/content pair handed to the completion model."""

    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> "ConversationMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationMessage":
        return cls(role=MessageRole.ASSISTANT, content=content)

    def to_payload(self) -> Mapping[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ConversationMessage":
        if not isinstance(payload, Mapping):
            raise ValueError("Message payload must be a mapping.")
        role = payload.get("role")
        content = payload.get("content")
        if not isinstance(role, str) or not isinstance(content, str):
            raise ValueError("Message payload requires string 'role' and 'content'.")
        try:
            resolved = MessageRole(role.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown message role '{role}'.") from exc
        return cls(role=resolved, content=content)


@dataclass(frozen=True)
class TokenUsage:
    total_tokens: int
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class AgentResponse:
    """Result of a single completion call."""

    content: str
    usage: Optional[TokenUsage] = None


@dataclass(frozen=True)
class CompactedSessionSummary:
    """Summary produced by a generating compaction strategy."""

    strategy_id: str
    content: str

    def is_valid(self) -> bool:
        return bool(self.strategy_id.strip()) and bool(self.content.strip())

    def to_payload(self) -> Mapping[str, Any]:
        return {"strategy_id": self.strategy_id, "content": self.content}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CompactedSessionSummary":
        if not isinstance(payload, Mapping):
            raise ValueError("Summary payload must be a mapping.")
        strategy_id = payload.get("strategy_id")
        content = payload.get("content")
        if not isinstance(strategy_id, str) or not isinstance(content, str):
            raise ValueError("Summary payload requires string 'strategy_id' and 'content'.")
        return cls(strategy_id=strategy_id, content=content)


class MemoryEstimateSource(str, Enum):
    HYBRID = "hybrid"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class MemoryUsageSnapshot:
    estimated_tokens: int
    source: MemoryEstimateSource
    message_count: int

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "estimated_tokens": self.estimated_tokens,
            "source": self.source.value,
            "message_count": self.message_count,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MemoryUsageSnapshot":
        try:
            return cls(
                estimated_tokens=int(payload["estimated_tokens"]),
                source=MemoryEstimateSource(payload["source"]),
                message_count=int(payload["message_count"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid usage payload: {exc}") from exc


# ----------------------------------------------------------------------
# Branching snapshot shapes
# ----------------------------------------------------------------------
@dataclass
class SubtopicBranchState:
    key: str
    display_name: str
    messages: List[ConversationMessage] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "messages": [message.to_payload() for message in self.messages],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SubtopicBranchState":
        if not isinstance(payload, Mapping):
            raise ValueError("Subtopic payload must be a mapping.")
        return cls(
            key=_require_str(payload, "key"),
            display_name=_require_str(payload, "display_name"),
            messages=_messages_from_payload(payload.get("messages", [])),
        )


@dataclass
class TopicBranchState:
    key: str
    display_name: str
    rolling_summary: str = ""
    subtopics: List[SubtopicBranchState] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "rolling_summary": self.rolling_summary,
            "subtopics": [subtopic.to_payload() for subtopic in self.subtopics],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TopicBranchState":
        if not isinstance(payload, Mapping):
            raise ValueError("Topic payload must be a mapping.")
        subtopics = payload.get("subtopics", [])
        if not isinstance(subtopics, list):
            raise ValueError("Topic 'subtopics' must be a list.")
        summary = payload.get("rolling_summary") or ""
        if not isinstance(summary, str):
            raise ValueError("Topic 'rolling_summary' must be a string.")
        return cls(
            key=_require_str(payload, "key"),
            display_name=_require_str(payload, "display_name"),
            rolling_summary=summary,
            subtopics=[SubtopicBranchState.from_payload(item) for item in subtopics],
        )


@dataclass
class BranchingMemoryState:
    """Deep, detached copy of a branching memory tree."""

    active_topic_key: str
    active_subtopic_key: str
    topics: List[TopicBranchState] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "active_topic_key": self.active_topic_key,
            "active_subtopic_key": self.active_subtopic_key,
            "topics": [topic.to_payload() for topic in self.topics],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BranchingMemoryState":
        if not isinstance(payload, Mapping):
            raise ValueError("Branching payload must be a mapping.")
        topics = payload.get("topics", [])
        if not isinstance(topics, list):
            raise ValueError("Branching 'topics' must be a list.")
        return cls(
            active_topic_key=_require_str(payload, "active_topic_key"),
            active_subtopic_key=_require_str(payload, "active_subtopic_key"),
            topics=[TopicBranchState.from_payload(item) for item in topics],
        )


@dataclass
class SessionMemoryState:
    """Everything the persistence collaborator stores for one session."""

    messages: List[ConversationMessage] = field(default_factory=list)
    compacted_summary: Optional[CompactedSessionSummary] = None
    usage: Optional[MemoryUsageSnapshot] = None
    active_compaction_mode_id: Optional[str] = None
    branching_state: Optional[BranchingMemoryState] = None

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "messages": [message.to_payload() for message in self.messages],
            "compacted_summary": (
                self.compacted_summary.to_payload() if self.compacted_summary else None
            ),
            "usage": self.usage.to_payload() if self.usage else None,
            "active_compaction_mode_id": self.active_compaction_mode_id,
            "branching_state": (
                self.branching_state.to_payload() if self.branching_state else None
            ),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SessionMemoryState":
        if not isinstance(payload, Mapping):
            raise ValueError("Session payload must be a mapping.")
        summary = payload.get("compacted_summary")
        usage = payload.get("usage")
        branching = payload.get("branching_state")
        mode_id = payload.get("active_compaction_mode_id")
        if mode_id is not None and not isinstance(mode_id, str):
            raise ValueError("'active_compaction_mode_id' must be a string.")
        return cls(
            messages=_messages_from_payload(payload.get("messages", [])),
            compacted_summary=CompactedSessionSummary.from_payload(summary) if summary else None,
            usage=MemoryUsageSnapshot.from_payload(usage) if usage else None,
            active_compaction_mode_id=mode_id,
            branching_state=BranchingMemoryState.from_payload(branching) if branching else None,
        )


# ----------------------------------------------------------------------
# Result records
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ActiveBranch:
    topic: str
    subtopic: str


@dataclass(frozen=True)
class BranchSubtopicCatalogEntry:
    key: str
    subtopic: str
    is_active: bool = False

    def to_payload(self) -> Mapping[str, Any]:
        return {"key": self.key, "subtopic": self.subtopic, "is_active": self.is_active}


@dataclass(frozen=True)
class BranchTopicCatalogEntry:
    key: str
    topic: str
    is_active: bool = False
    subtopics: Sequence[BranchSubtopicCatalogEntry] = ()

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "key": self.key,
            "topic": self.topic,
            "is_active": self.is_active,
            "subtopics": [entry.to_payload() for entry in self.subtopics],
        }


@dataclass(frozen=True)
class BranchingConversation:
    conversation: List[ConversationMessage]
    truncated_turns: int


@dataclass(frozen=True)
class BranchActivationResult:
    topic: str
    subtopic: str
    is_new_topic: bool
    is_new_subtopic: bool
    switched_to_existing_branch: bool


@dataclass(frozen=True)
class SessionCompactionCandidate:
    compacted_count: int
    messages_to_compact: List[ConversationMessage]


@dataclass(frozen=True)
class BranchClassificationResult:
    topic: str
    subtopic: str
    used_fallback: bool


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key) if isinstance(payload, Mapping) else None
    if not isinstance(value, str):
        raise ValueError(f"Payload field '{key}' must be a string.")
    return value


def _messages_from_payload(items: Any) -> List[ConversationMessage]:
    if not isinstance(items, list):
        raise ValueError("'messages' must be a list.")
    return [ConversationMessage.from_payload(item) for item in items]


def messages_to_payload(messages: Sequence[ConversationMessage]) -> List[Dict[str, str]]:
    """Render messages as the ``{"role", "content"}`` dicts the chat API expects."""

    return [{"role": message.role.value, "content": message.content} for message in messages]


def dumps_payload(data: Any) -> str:
    """Render ``data`` as formatted JSON for prompt injection."""

    return json.dumps(data, ensure_ascii=False, indent=2)


__all__ = [
    "ActiveBranch",
    "AgentResponse",
    "BranchActivationResult",
    "BranchClassificationResult",
    "BranchSubtopicCatalogEntry",
    "BranchTopicCatalogEntry",
    "BranchingConversation",
    "BranchingMemoryState",
    "CompactedSessionSummary",
    "ConversationMessage",
    "MemoryEstimateSource",
    "MemoryUsageSnapshot",
    "MessageRole",
    "SessionCompactionCandidate",
    "SessionMemoryState",
    "SubtopicBranchState",
    "TokenUsage",
    "TopicBranchState",
    "dumps_payload",
    "messages_to_payload",
]
