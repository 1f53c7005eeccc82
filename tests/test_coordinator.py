from __future__ import annotations

from typing import List, Optional, Sequence

import pytest

from agentmem.coordinator import (
    SessionCompactionMode,
    SessionMemoryCompactionCoordinator,
    build_coordinator,
)
from agentmem.policies import (
    NeverCompactionStartPolicy,
    RollingWindowCompactionStartPolicy,
    SlidingWindowCompactionStartPolicy,
)
from agentmem.prompts import ROLLING_SUMMARY_PROMPT
from agentmem.schemas import CompactedSessionSummary, ConversationMessage
from agentmem.session import SessionMemory
from agentmem.strategies import (
    FactMapCompactionStrategy,
    RollingSummaryCompactionStrategy,
    SessionCompactionSummaryMode,
    SlidingWindowCompactionStrategy,
)


class RecordingStrategy:
    def __init__(
        self,
        summary_mode: SessionCompactionSummaryMode,
        result: str = "summary",
        error: Optional[Exception] = None,
    ) -> None:
        self.id = "recording-v1"
        self.summary_mode = summary_mode
        self.result = result
        self.error = error
        self.calls: List[dict] = []

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        self.calls.append(
            {"previous": previous_summary, "messages": list(messages_to_compact), "model": model}
        )
        if self.error is not None:
            raise self.error
        return self.result


def _memory_with_turns(count: int) -> SessionMemory:
    memory = SessionMemory("system prompt")
    for index in range(1, count + 1):
        memory.record_successful_turn(f"question {index}", f"answer {index}")
    return memory


def _rolling_policy() -> RollingWindowCompactionStartPolicy:
    return RollingWindowCompactionStartPolicy(threshold=4, compact_count=2, keep_count=2)


def test_no_candidate_is_a_noop() -> None:
    strategy = RecordingStrategy(SessionCompactionSummaryMode.GENERATE)
    coordinator = SessionMemoryCompactionCoordinator(_rolling_policy(), strategy)
    memory = _memory_with_turns(1)

    assert coordinator.compact_if_needed(memory, "model") is False
    assert strategy.calls == []


def test_generate_mode_applies_summary_from_strategy() -> None:
    strategy = RecordingStrategy(SessionCompactionSummaryMode.GENERATE, result="  merged  ")
    coordinator = SessionMemoryCompactionCoordinator(_rolling_policy(), strategy)
    memory = _memory_with_turns(2)
    memory.apply_compaction(CompactedSessionSummary(strategy_id="recording-v1", content="old"), 0)
    original = memory.non_system_messages_snapshot()

    assert coordinator.compact_if_needed(memory, "model") is True

    assert strategy.calls == [{"previous": "old", "messages": original[:2], "model": "model"}]
    assert memory.non_system_messages_snapshot() == original[2:]
    assert memory.compacted_summary_snapshot() == CompactedSessionSummary(
        strategy_id="recording-v1", content="merged"
    )


@pytest.mark.parametrize(
    "strategy",
    [
        RecordingStrategy(SessionCompactionSummaryMode.GENERATE, error=RuntimeError("boom")),
        RecordingStrategy(SessionCompactionSummaryMode.GENERATE, result="   "),
    ],
)
def test_generate_failure_leaves_memory_untouched(strategy: RecordingStrategy) -> None:
    coordinator = SessionMemoryCompactionCoordinator(_rolling_policy(), strategy)
    memory = _memory_with_turns(2)
    before = memory.snapshot()

    assert coordinator.compact_if_needed(memory, "model") is False
    assert memory.snapshot() == before
    assert memory.compacted_summary_snapshot() is None


def test_generate_error_is_kept_for_reporting() -> None:
    error = ValueError("bad fact map")
    coordinator = SessionMemoryCompactionCoordinator(
        _rolling_policy(), RecordingStrategy(SessionCompactionSummaryMode.GENERATE, error=error)
    )

    coordinator.compact_if_needed(_memory_with_turns(2), "model")

    assert coordinator.last_error is error


def test_clear_mode_never_invokes_strategy_and_drops_summary() -> None:
    strategy = RecordingStrategy(SessionCompactionSummaryMode.CLEAR)
    coordinator = SessionMemoryCompactionCoordinator(
        SlidingWindowCompactionStartPolicy(max_messages=2), strategy
    )
    memory = _memory_with_turns(3)
    memory.apply_compaction(CompactedSessionSummary(strategy_id="old", content="old summary"), 0)
    original = memory.non_system_messages_snapshot()

    assert coordinator.compact_if_needed(memory, "model") is True

    assert len(strategy.calls) == 0
    assert memory.non_system_messages_snapshot() == original[4:]
    assert memory.compacted_summary_snapshot() is None


def test_disabled_coordinator_never_compacts() -> None:
    coordinator = SessionMemoryCompactionCoordinator.disabled()
    memory = _memory_with_turns(50)

    assert coordinator.compact_if_needed(memory, "model") is False
    assert len(memory.non_system_messages_snapshot()) == 100


def test_rolling_summary_coordinator_end_to_end(make_client) -> None:
    client = make_client({ROLLING_SUMMARY_PROMPT: ["Ten messages summarized."]})
    coordinator = build_coordinator(SessionCompactionMode.ROLLING_SUMMARY, client)
    memory = _memory_with_turns(6)

    assert coordinator.compact_if_needed(memory, "gpt-4.1-mini") is True

    assert memory.non_system_messages_snapshot() == [
        ConversationMessage.user("question 6"),
        ConversationMessage.assistant("answer 6"),
    ]
    assert memory.compacted_summary_snapshot() == CompactedSessionSummary(
        strategy_id="rolling-summary-v1", content="Ten messages summarized."
    )


def test_mode_lookup_by_id() -> None:
    assert SessionCompactionMode.from_id_or_none("fact-map") is SessionCompactionMode.FACT_MAP
    assert SessionCompactionMode.from_id_or_none("branching") is SessionCompactionMode.BRANCHING
    assert SessionCompactionMode.from_id_or_none("unknown-mode") is None
    assert SessionCompactionMode.from_id_or_none("  ") is None
    assert SessionCompactionMode.from_id_or_none(None) is None


def test_build_coordinator_pairs(make_client) -> None:
    client = make_client({})

    rolling = build_coordinator(SessionCompactionMode.ROLLING_SUMMARY, client)
    fact_map = build_coordinator(SessionCompactionMode.FACT_MAP, client)
    sliding = build_coordinator(SessionCompactionMode.SLIDING_WINDOW, client)
    branching = build_coordinator(SessionCompactionMode.BRANCHING, client)

    assert isinstance(rolling.strategy, RollingSummaryCompactionStrategy)
    assert isinstance(rolling.start_policy, RollingWindowCompactionStartPolicy)
    assert isinstance(fact_map.strategy, FactMapCompactionStrategy)
    assert isinstance(sliding.strategy, SlidingWindowCompactionStrategy)
    assert isinstance(sliding.start_policy, SlidingWindowCompactionStartPolicy)
    assert isinstance(branching.start_policy, NeverCompactionStartPolicy)


def test_build_coordinator_rejects_odd_compact_count(make_client) -> None:
    with pytest.raises(ValueError):
        build_coordinator(
            SessionCompactionMode.ROLLING_SUMMARY,
            make_client({}),
            threshold=3,
            compact_count=3,
            keep_count=0,
        )
