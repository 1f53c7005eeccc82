"""Glue a start policy and a compaction strategy to a linear session memory."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .clients import CompletionClient
from .policies import (
    NeverCompactionStartPolicy,
    RollingWindowCompactionStartPolicy,
    SessionCompactionStartPolicy,
    SlidingWindowCompactionStartPolicy,
)
from .schemas import CompactedSessionSummary
from .session import SessionMemory
from .strategies import (
    DisabledCompactionStrategy,
    FactMapCompactionStrategy,
    RollingSummaryCompactionStrategy,
    SessionCompactionStrategy,
    SessionCompactionSummaryMode,
    SlidingWindowCompactionStrategy,
)

logger = logging.getLogger(__name__)


class SessionMemoryCompactionCoordinator:
    """Compact a :class:`SessionMemory` when its start policy asks for it."""

    def __init__(
        self,
        start_policy: SessionCompactionStartPolicy,
        strategy: SessionCompactionStrategy,
    ) -> None:
        self.start_policy = start_policy
        self.strategy = strategy
        self.last_error: Optional[Exception] = None

    @classmethod
    def disabled(cls) -> "SessionMemoryCompactionCoordinator":
        return cls(NeverCompactionStartPolicy(), DisabledCompactionStrategy())

    def compact_if_needed(self, memory: SessionMemory, model: str) -> bool:
        """Apply one compaction step; return ``False`` if nothing changed."""

        self.last_error = None
        candidate = self.start_policy.select(memory.non_system_messages_snapshot())
        if candidate is None:
            return False

        summary: Optional[CompactedSessionSummary] = None
        if self.strategy.summary_mode is SessionCompactionSummaryMode.GENERATE:
            previous = memory.compacted_summary_snapshot()
            try:
                content = self.strategy.compact(
                    previous.content if previous else None,
                    candidate.messages_to_compact,
                    model,
                ).strip()
            except Exception as exc:
                self.last_error = exc
                logger.warning("Compaction with %s abandoned: %s", self.strategy.id, exc)
                return False
            if not content:
                logger.warning("Compaction with %s abandoned: empty summary", self.strategy.id)
                return False
            summary = CompactedSessionSummary(strategy_id=self.strategy.id, content=content)

        memory.apply_compaction(summary, candidate.compacted_count)
        return True


# ----------------------------------------------------------------------
# Mode registry
# ----------------------------------------------------------------------
class SessionCompactionMode(Enum):
    ROLLING_SUMMARY = ("rolling-summary", "Rolling summary")
    SLIDING_WINDOW = ("sliding-window", "Sliding window")
    FACT_MAP = ("fact-map", "Fact map")
    BRANCHING = ("branching", "Branching")

    def __init__(self, mode_id: str, label: str) -> None:
        self.id = mode_id
        self.label = label

    @classmethod
    def from_id_or_none(cls, mode_id: Optional[str]) -> Optional["SessionCompactionMode"]:
        if not mode_id or not mode_id.strip():
            return None
        for mode in cls:
            if mode.id == mode_id:
                return mode
        return None


ROLLING_WINDOW_THRESHOLD = 12
ROLLING_WINDOW_COMPACT_COUNT = 10
ROLLING_WINDOW_KEEP_COUNT = 2
SLIDING_WINDOW_MAX_MESSAGES = 10


def build_coordinator(
    mode: SessionCompactionMode,
    client: CompletionClient,
    *,
    threshold: int = ROLLING_WINDOW_THRESHOLD,
    compact_count: int = ROLLING_WINDOW_COMPACT_COUNT,
    keep_count: int = ROLLING_WINDOW_KEEP_COUNT,
    max_messages: int = SLIDING_WINDOW_MAX_MESSAGES,
) -> SessionMemoryCompactionCoordinator:
    """Return the policy/strategy pair configured for ``mode``.

    Branching mode keeps history per branch and bounds the request size by
    truncating views instead, so its linear coordinator is disabled.
    """

    if mode is SessionCompactionMode.BRANCHING:
        return SessionMemoryCompactionCoordinator.disabled()
    if mode is SessionCompactionMode.SLIDING_WINDOW:
        return SessionMemoryCompactionCoordinator(
            SlidingWindowCompactionStartPolicy(max_messages=max_messages),
            SlidingWindowCompactionStrategy(),
        )

    policy = RollingWindowCompactionStartPolicy(
        threshold=threshold,
        compact_count=compact_count,
        keep_count=keep_count,
    )
    if mode is SessionCompactionMode.FACT_MAP:
        return SessionMemoryCompactionCoordinator(policy, FactMapCompactionStrategy(client))
    return SessionMemoryCompactionCoordinator(policy, RollingSummaryCompactionStrategy(client))


__all__ = [
    "SessionCompactionMode",
    "SessionMemoryCompactionCoordinator",
    "build_coordinator",
]
