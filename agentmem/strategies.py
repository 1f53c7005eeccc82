"""Compaction strategies: what replaces the compacted prefix of a conversation."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .clients import CompletionClient
from .prompts import FACT_MAP_PROMPT, ROLLING_SUMMARY_PROMPT
from .schemas import ConversationMessage

logger = logging.getLogger(__name__)


class SessionCompactionSummaryMode(str, Enum):
    GENERATE = "generate"
    CLEAR = "clear"


class SessionCompactionStrategy(Protocol):
    id: str
    summary_mode: SessionCompactionSummaryMode

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        ...


class FactMapValidationError(ValueError):
    """Raised when a fact map does not match the fixed schema."""


def serialize_transcript(messages: Sequence[ConversationMessage]) -> str:
    """Render messages as a numbered ``N. ROLE: content`` transcript."""

    return "\n".join(
        f"{index}. {message.role.name}: {message.content}"
        for index, message in enumerate(messages, start=1)
    )


def _check_inputs(messages_to_compact: Sequence[ConversationMessage], model: str) -> None:
    if not messages_to_compact:
        raise ValueError("messages_to_compact must not be empty.")
    if not model.strip():
        raise ValueError("model must not be blank.")


# ----------------------------------------------------------------------
# Rolling summary
# ----------------------------------------------------------------------
class RollingSummaryCompactionStrategy:
    """Merge the compacted messages into a free-text rolling summary."""

    id = "rolling-summary-v1"
    summary_mode = SessionCompactionSummaryMode.GENERATE

    def __init__(self, client: CompletionClient, system_prompt: str = ROLLING_SUMMARY_PROMPT) -> None:
        self.client = client
        self.system_prompt = system_prompt

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        _check_inputs(messages_to_compact, model)
        conversation = [
            ConversationMessage.system(self.system_prompt),
            ConversationMessage.user(self._build_prompt(previous_summary, messages_to_compact)),
        ]
        response = self.client.complete(conversation, temperature=0.0, model=model)
        return response.content.strip()

    @staticmethod
    def _build_prompt(
        previous_summary: Optional[str], messages_to_compact: Sequence[ConversationMessage]
    ) -> str:
        summary_block = (previous_summary or "").strip() or "(none)"
        return "\n".join(
            [
                "Previous summary:",
                summary_block,
                "",
                "New messages to compact:",
                serialize_transcript(messages_to_compact),
                "",
                "Return an updated rolling summary that merges previous summary and new messages.",
                "Output summary text only.",
            ]
        )


# ----------------------------------------------------------------------
# Fact map
# ----------------------------------------------------------------------
GOAL_KEY = "goal"
FACT_MAP_KEYS = (GOAL_KEY, "constraints", "decisions", "preferences", "agreements")
EMPTY_FACT_MAP: Dict[str, Any] = {
    GOAL_KEY: "",
    "constraints": [],
    "decisions": [],
    "preferences": [],
    "agreements": [],
}
EMPTY_FACT_MAP_JSON = json.dumps(EMPTY_FACT_MAP, ensure_ascii=False, separators=(",", ":"))


class FactMapCompactionStrategy:
    """Maintain a fixed-schema JSON fact map across compactions.

    A previous summary that fails validation is silently replaced by the empty
    fact map, but a model response that fails validation raises
    :class:`FactMapValidationError`.
    """

    id = "fact-map-v1"
    summary_mode = SessionCompactionSummaryMode.GENERATE

    def __init__(self, client: CompletionClient, system_prompt: str = FACT_MAP_PROMPT) -> None:
        self.client = client
        self.system_prompt = system_prompt

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        _check_inputs(messages_to_compact, model)
        prompt = "\n".join(
            [
                "Previous fact map JSON:",
                self.normalize_previous_summary(previous_summary),
                "",
                "New messages to compact:",
                serialize_transcript(messages_to_compact),
                "",
                "Return the updated fact map JSON only.",
            ]
        )
        conversation = [
            ConversationMessage.system(self.system_prompt),
            ConversationMessage.user(prompt),
        ]
        response = self.client.complete(conversation, temperature=0.0, model=model)
        return validate_fact_map(response.content.strip())

    @staticmethod
    def normalize_previous_summary(previous_summary: Optional[str]) -> str:
        text = (previous_summary or "").strip()
        if not text:
            return EMPTY_FACT_MAP_JSON
        try:
            return validate_fact_map(text)
        except FactMapValidationError as exc:
            logger.debug("Replacing invalid previous fact map: %s", exc)
            return EMPTY_FACT_MAP_JSON


def validate_fact_map(raw_summary: str) -> str:
    """Validate ``raw_summary`` against the fact map schema and return normalized JSON."""

    try:
        parsed = json.loads(raw_summary)
    except json.JSONDecodeError as exc:
        raise FactMapValidationError("Fact map summary must be valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise FactMapValidationError("Fact map summary must be a JSON object.")

    missing = [key for key in FACT_MAP_KEYS if key not in parsed]
    extra = [key for key in parsed if key not in FACT_MAP_KEYS]
    if missing or extra:
        raise FactMapValidationError(
            "Fact map summary keys mismatch. "
            f"Missing: {', '.join(missing)}; extra: {', '.join(extra)}"
        )

    goal = parsed[GOAL_KEY]
    if not isinstance(goal, str):
        raise FactMapValidationError(f"Fact map key '{GOAL_KEY}' must be a string.")

    normalized: Dict[str, Any] = {GOAL_KEY: goal.strip()}
    for key in FACT_MAP_KEYS[1:]:
        normalized[key] = _normalize_string_array(key, parsed[key])
    return json.dumps(normalized, ensure_ascii=False, separators=(",", ":"))


def _normalize_string_array(key: str, value: Any) -> List[str]:
    if not isinstance(value, list):
        raise FactMapValidationError(f"Fact map key '{key}' must be an array of strings.")
    items: List[str] = []
    for index, item in enumerate(value, start=1):
        if not isinstance(item, str):
            raise FactMapValidationError(f"Fact map key '{key}' item #{index} must be a string.")
        text = item.strip()
        if text and text not in items:
            items.append(text)
    return items


# ----------------------------------------------------------------------
# Clearing strategies
# ----------------------------------------------------------------------
class SlidingWindowCompactionStrategy:
    """Drop compacted messages without producing any summary."""

    id = "sliding-window-v1"
    summary_mode = SessionCompactionSummaryMode.CLEAR

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        return ""


class DisabledCompactionStrategy:
    id = "disabled"
    summary_mode = SessionCompactionSummaryMode.CLEAR

    def compact(
        self,
        previous_summary: Optional[str],
        messages_to_compact: Sequence[ConversationMessage],
        model: str,
    ) -> str:
        return ""


__all__ = [
    "DisabledCompactionStrategy",
    "EMPTY_FACT_MAP_JSON",
    "FACT_MAP_KEYS",
    "FactMapCompactionStrategy",
    "FactMapValidationError",
    "RollingSummaryCompactionStrategy",
    "SessionCompactionStrategy",
    "SessionCompactionSummaryMode",
    "SlidingWindowCompactionStrategy",
    "serialize_transcript",
    "validate_fact_map",
]
