"""Start policies deciding whether, and how much, history should be compacted."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .schemas import ConversationMessage, SessionCompactionCandidate


class SessionCompactionStartPolicy(Protocol):
    def select(
        self, messages: Sequence[ConversationMessage]
    ) -> Optional[SessionCompactionCandidate]:
        """Return the prefix of ``messages`` to compact, or ``None``."""


@dataclass(frozen=True)
class RollingWindowCompactionStartPolicy:
    """Compact the oldest ``compact_count`` messages once ``threshold`` is reached."""

    threshold: int
    compact_count: int
    keep_count: int

    def __post_init__(self) -> None:
        if self.threshold <= 0:
            raise ValueError("threshold must be > 0.")
        if self.compact_count <= 0:
            raise ValueError("compact_count must be > 0.")
        if self.compact_count % 2:
            raise ValueError("compact_count must be even so whole turns are compacted.")
        if self.keep_count < 0:
            raise ValueError("keep_count must be >= 0.")
        if self.threshold != self.compact_count + self.keep_count:
            raise ValueError("threshold must equal compact_count + keep_count.")

    def select(
        self, messages: Sequence[ConversationMessage]
    ) -> Optional[SessionCompactionCandidate]:
        if len(messages) < self.threshold:
            return None
        return SessionCompactionCandidate(
            compacted_count=self.compact_count,
            messages_to_compact=list(messages[: self.compact_count]),
        )


@dataclass(frozen=True)
class SlidingWindowCompactionStartPolicy:
    """Keep at most ``max_messages`` messages, evicting whole turns."""

    max_messages: int

    def __post_init__(self) -> None:
        if self.max_messages <= 0:
            raise ValueError("max_messages must be > 0.")

    def select(
        self, messages: Sequence[ConversationMessage]
    ) -> Optional[SessionCompactionCandidate]:
        if len(messages) <= self.max_messages:
            return None
        overflow = len(messages) - self.max_messages
        if overflow % 2:
            # round up so a user/assistant pair is never split
            overflow += 1
        compacted_count = min(overflow, len(messages))
        return SessionCompactionCandidate(
            compacted_count=compacted_count,
            messages_to_compact=list(messages[:compacted_count]),
        )


class NeverCompactionStartPolicy:
    """Policy used when compaction is turned off."""

    def select(
        self, messages: Sequence[ConversationMessage]
    ) -> Optional[SessionCompactionCandidate]:
        return None


__all__ = [
    "NeverCompactionStartPolicy",
    "RollingWindowCompactionStartPolicy",
    "SessionCompactionStartPolicy",
    "SlidingWindowCompactionStartPolicy",
]
