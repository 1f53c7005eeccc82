from __future__ import annotations

import json

import pytest

from agentmem.branching import BranchingSessionMemory
from agentmem.classifier import BranchClassifier
from agentmem.clients import CompletionError
from agentmem.prompts import BRANCH_CLASSIFICATION_PROMPT


def _classify(classifier: BranchClassifier, catalog=(), fallback_subtopic: str = "Misc"):
    return classifier.classify(
        list(catalog),
        "How should enemies spawn?",
        "Spawn them in waves.",
        "  Game   Development ",
        fallback_subtopic,
        "gpt-4.1-mini",
    )


def test_classify_reads_json_wrapped_in_prose(make_client) -> None:
    reply = 'Sure:\n```json\n{"topic": " Game  Development", "subtopic": "Enemy AI"}\n```'
    client = make_client({BRANCH_CLASSIFICATION_PROMPT: [reply]})

    result = _classify(BranchClassifier(client))

    assert result.topic == "Game Development"
    assert result.subtopic == "Enemy AI"
    assert result.used_fallback is False
    (call,) = client.calls
    assert call["temperature"] == 0.0
    assert call["model"] == "gpt-4.1-mini"


def test_prompt_lists_existing_topics_and_latest_turn(make_client) -> None:
    memory = BranchingSessionMemory()
    memory.resolve_and_activate("Game Development", "Game Design")
    memory.resolve_and_activate("Cooking", "Pasta")
    client = make_client(
        {BRANCH_CLASSIFICATION_PROMPT: ['{"topic": "Cooking", "subtopic": "Pasta"}']}
    )

    _classify(BranchClassifier(client), memory.topic_catalog())

    payload = json.loads(client.calls[0]["conversation"][1].content)
    assert payload["existing_topics"] == [
        {"topic": "Game Development", "subtopics": ["Game Design"]},
        {"topic": "Cooking", "subtopics": ["Pasta"]},
    ]
    assert payload["latest_turn"] == {
        "user": "How should enemies spawn?",
        "assistant": "Spawn them in waves.",
    }


@pytest.mark.parametrize(
    "first_reply",
    [
        "no json here",
        CompletionError("timeout"),
        '{"topic": "Game Development", "subtopic": "AI", "confidence": 0.9}',
        '{"topic": 3, "subtopic": "AI"}',
        '{"topic": "   ", "subtopic": "AI"}',
    ],
)
def test_classify_retries_after_bad_attempt(make_client, first_reply) -> None:
    client = make_client(
        {
            BRANCH_CLASSIFICATION_PROMPT: [
                first_reply,
                '{"topic": "Game Development", "subtopic": "Enemy AI"}',
            ]
        }
    )

    result = _classify(BranchClassifier(client))

    assert len(client.calls) == 2
    assert (result.topic, result.subtopic, result.used_fallback) == (
        "Game Development",
        "Enemy AI",
        False,
    )


def test_blank_subtopic_defaults_to_general(make_client) -> None:
    client = make_client({BRANCH_CLASSIFICATION_PROMPT: ['{"topic": "Cooking", "subtopic": " "}']})

    result = _classify(BranchClassifier(client))

    assert result.subtopic == "General"


def test_classify_falls_back_after_exhausting_attempts(make_client) -> None:
    client = make_client({BRANCH_CLASSIFICATION_PROMPT: ["nope", "still nope"]})

    result = _classify(BranchClassifier(client))

    assert len(client.calls) == 2
    assert result.used_fallback is True
    assert result.topic == "Game Development"
    assert result.subtopic == "Misc"


def test_blank_fallback_subtopic_becomes_general(make_client) -> None:
    client = make_client({BRANCH_CLASSIFICATION_PROMPT: ["nope", "nope"]})

    result = _classify(BranchClassifier(client), fallback_subtopic="   ")

    assert result.used_fallback is True
    assert result.subtopic == "General"


def test_blank_fallback_topic_is_rejected(make_client) -> None:
    classifier = BranchClassifier(make_client({}))

    with pytest.raises(ValueError):
        classifier.classify([], "q", "a", "  ", "General", "model")


def test_max_attempts_must_be_positive(make_client) -> None:
    with pytest.raises(ValueError):
        BranchClassifier(make_client({}), max_attempts=0)
