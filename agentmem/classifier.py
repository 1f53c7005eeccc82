"""Route a conversation turn to a (topic, subtopic) branch using the model."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Sequence

from .branching import normalize_display_name
from .clients import CompletionClient
from .prompts import BRANCH_CLASSIFICATION_PROMPT
from .schemas import (
    BranchClassificationResult,
    BranchTopicCatalogEntry,
    ConversationMessage,
    dumps_payload,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBTOPIC_NAME = "General"
CLASSIFICATION_KEYS = frozenset({"topic", "subtopic"})


class BranchClassifier:
    """Ask the model which branch a turn belongs to, with retry and fallback."""

    def __init__(
        self,
        client: CompletionClient,
        *,
        max_attempts: int = 2,
        system_prompt: str = BRANCH_CLASSIFICATION_PROMPT,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0.")
        self.client = client
        self.max_attempts = max_attempts
        self.system_prompt = system_prompt

    def classify(
        self,
        existing_topics: Sequence[BranchTopicCatalogEntry],
        user_prompt: str,
        assistant_response: str,
        fallback_topic: str,
        fallback_subtopic: str,
        model: str,
    ) -> BranchClassificationResult:
        fallback_topic_name = normalize_display_name(fallback_topic)
        if not fallback_topic_name:
            raise ValueError("fallback_topic must not be blank.")

        conversation = [
            ConversationMessage.system(self.system_prompt),
            ConversationMessage.user(
                self._build_prompt(existing_topics, user_prompt, assistant_response)
            ),
        ]
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.client.complete(conversation, temperature=0.0, model=model)
                topic, subtopic = self._parse_decision(response.content)
            except Exception as exc:
                logger.warning("Branch classification attempt %s failed: %s", attempt, exc)
                continue
            return BranchClassificationResult(topic=topic, subtopic=subtopic, used_fallback=False)

        logger.warning("Branch classification fell back to %s / %s", fallback_topic_name, fallback_subtopic)
        return BranchClassificationResult(
            topic=fallback_topic_name,
            subtopic=normalize_display_name(fallback_subtopic, DEFAULT_SUBTOPIC_NAME),
            used_fallback=True,
        )

    # ------------------------------------------------------------------
    # Prompt helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_prompt(
        existing_topics: Sequence[BranchTopicCatalogEntry],
        user_prompt: str,
        assistant_response: str,
    ) -> str:
        catalog = [
            {
                "topic": entry.topic,
                "subtopics": [subtopic.subtopic for subtopic in entry.subtopics],
            }
            for entry in existing_topics
        ]
        payload = {
            "existing_topics": catalog,
            "latest_turn": {"user": user_prompt, "assistant": assistant_response},
        }
        return dumps_payload(payload)

    @classmethod
    def _parse_decision(cls, raw: str) -> tuple[str, str]:
        parsed = cls._extract_json_object(raw)
        if parsed is None:
            raise ValueError(f"Classification response is not a JSON object: {raw!r}")
        keys = set(parsed)
        if keys != CLASSIFICATION_KEYS:
            raise ValueError(f"Classification keys mismatch: {sorted(keys)}")

        topic = parsed["topic"]
        subtopic = parsed["subtopic"]
        if not isinstance(topic, str) or not isinstance(subtopic, str):
            raise ValueError("Classification 'topic' and 'subtopic' must be strings.")
        topic_name = normalize_display_name(topic)
        if not topic_name:
            raise ValueError("Classification topic must not be blank.")
        return topic_name, normalize_display_name(subtopic, DEFAULT_SUBTOPIC_NAME)

    @staticmethod
    def _extract_json_object(message: str) -> Optional[Mapping[str, Any]]:
        start = message.find("{")
        end = message.rfind("}")
        if start < 0 or end <= start:
            return None
        try:
            parsed = json.loads(message[start : end + 1])
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None


__all__ = ["BranchClassifier", "DEFAULT_SUBTOPIC_NAME"]
