from __future__ import annotations

import json

import pytest

from agentmem.prompts import FACT_MAP_PROMPT, ROLLING_SUMMARY_PROMPT
from agentmem.schemas import ConversationMessage
from agentmem.strategies import (
    EMPTY_FACT_MAP_JSON,
    FactMapCompactionStrategy,
    FactMapValidationError,
    RollingSummaryCompactionStrategy,
    SessionCompactionSummaryMode,
    SlidingWindowCompactionStrategy,
    validate_fact_map,
)

MESSAGES = [
    ConversationMessage.user("I want a roguelike with short runs."),
    ConversationMessage.assistant("Let's target 20 minute runs."),
]


def _fact_map(**overrides) -> str:
    data = {
        "goal": "Ship a roguelike",
        "constraints": [],
        "decisions": [],
        "preferences": [],
        "agreements": [],
    }
    data.update(overrides)
    return json.dumps(data)


def test_rolling_summary_merges_previous_summary_and_transcript(make_client) -> None:
    client = make_client({ROLLING_SUMMARY_PROMPT: ["  Updated summary.  "]})
    strategy = RollingSummaryCompactionStrategy(client)

    result = strategy.compact("Old summary.", MESSAGES, "gpt-4.1-mini")

    assert result == "Updated summary."
    assert strategy.summary_mode is SessionCompactionSummaryMode.GENERATE
    (call,) = client.calls
    assert call["temperature"] == 0.0
    assert call["model"] == "gpt-4.1-mini"
    prompt = call["conversation"][1].content
    assert "Previous summary:\nOld summary." in prompt
    assert "1. USER: I want a roguelike with short runs." in prompt
    assert "2. ASSISTANT: Let's target 20 minute runs." in prompt


def test_rolling_summary_uses_none_marker_without_previous_summary(make_client) -> None:
    client = make_client({ROLLING_SUMMARY_PROMPT: ["Summary."]})

    RollingSummaryCompactionStrategy(client).compact("   ", MESSAGES, "model")

    assert "Previous summary:\n(none)" in client.calls[0]["conversation"][1].content


def test_rolling_summary_rejects_empty_input(make_client) -> None:
    strategy = RollingSummaryCompactionStrategy(make_client({}))

    with pytest.raises(ValueError):
        strategy.compact(None, [], "model")
    with pytest.raises(ValueError):
        strategy.compact(None, MESSAGES, " ")


def test_fact_map_normalizes_valid_response(make_client) -> None:
    response = _fact_map(
        goal="  Ship a roguelike  ",
        constraints=[" 20 minute runs ", "", "20 minute runs", "Solo developer", "   "],
    )
    client = make_client({FACT_MAP_PROMPT: [response]})

    result = FactMapCompactionStrategy(client).compact(None, MESSAGES, "model")

    assert json.loads(result) == {
        "goal": "Ship a roguelike",
        "constraints": ["20 minute runs", "Solo developer"],
        "decisions": [],
        "preferences": [],
        "agreements": [],
    }
    assert list(json.loads(result)) == ["goal", "constraints", "decisions", "preferences", "agreements"]


def test_fact_map_missing_key_is_rejected(make_client) -> None:
    response = json.dumps(
        {"goal": "g", "constraints": [], "decisions": [], "preferences": []}
    )
    client = make_client({FACT_MAP_PROMPT: [response]})

    with pytest.raises(FactMapValidationError, match="agreements"):
        FactMapCompactionStrategy(client).compact(None, MESSAGES, "model")


def test_fact_map_extra_key_is_reported() -> None:
    with pytest.raises(FactMapValidationError, match="extra: notes"):
        validate_fact_map(_fact_map(notes=[]))


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        _fact_map(goal=3),
        _fact_map(decisions="one decision"),
        _fact_map(preferences=["ok", 5]),
    ],
)
def test_fact_map_schema_violations_raise(raw: str) -> None:
    with pytest.raises(FactMapValidationError):
        validate_fact_map(raw)


def test_fact_map_replaces_invalid_previous_summary(make_client) -> None:
    client = make_client({FACT_MAP_PROMPT: [_fact_map()]})

    FactMapCompactionStrategy(client).compact("free text summary", MESSAGES, "model")

    prompt = client.calls[0]["conversation"][1].content
    assert f"Previous fact map JSON:\n{EMPTY_FACT_MAP_JSON}" in prompt


def test_fact_map_keeps_valid_previous_summary(make_client) -> None:
    previous = _fact_map(decisions=["Use Godot"])
    client = make_client({FACT_MAP_PROMPT: [_fact_map()]})

    FactMapCompactionStrategy(client).compact(previous, MESSAGES, "model")

    prompt = client.calls[0]["conversation"][1].content
    assert '"decisions":["Use Godot"]' in prompt


def test_sliding_window_strategy_clears_without_model_call() -> None:
    strategy = SlidingWindowCompactionStrategy()

    assert strategy.summary_mode is SessionCompactionSummaryMode.CLEAR
    assert strategy.compact("previous", MESSAGES, "model") == ""
