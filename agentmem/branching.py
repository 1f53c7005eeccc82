"""Branching session memory: a topic -> subtopic tree of independent histories."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .schemas import (
    ActiveBranch,
    BranchActivationResult,
    BranchingConversation,
    BranchingMemoryState,
    BranchSubtopicCatalogEntry,
    BranchTopicCatalogEntry,
    ConversationMessage,
    SubtopicBranchState,
    TopicBranchState,
)
from .session import require_turn_text, is_valid_turn_sequence

logger = logging.getLogger(__name__)

LEGACY_GENERAL_KEY = "general"

_WHITESPACE = re.compile(r"\s+")

TokenEstimator = Callable[[Sequence[ConversationMessage]], int]


def normalize_display_name(value: Optional[str], default: str = "") -> str:
    """Collapse whitespace runs and trim; fall back to ``default`` when empty."""

    normalized = _WHITESPACE.sub(" ", value or "").strip()
    return normalized or default


def normalize_key(value: Optional[str]) -> str:
    return normalize_display_name(value).lower()


def _is_legacy_placeholder(state: BranchingMemoryState) -> bool:
    """A lone "General" topic holding a lone "General" subtopic means no memory yet."""

    if len(state.topics) != 1:
        return False
    (topic,) = state.topics
    return (
        normalize_key(topic.key) == LEGACY_GENERAL_KEY
        and len(topic.subtopics) == 1
        and normalize_key(topic.subtopics[0].key) == LEGACY_GENERAL_KEY
    )


@dataclass
class SubtopicMemory:
    key: str
    display_name: str
    messages: List[ConversationMessage] = field(default_factory=list)


@dataclass
class TopicMemory:
    key: str
    display_name: str
    rolling_summary: str = ""
    subtopics: Dict[str, SubtopicMemory] = field(default_factory=dict)


class BranchingSessionMemory:
    """Keep one conversation per (topic, subtopic) branch.

    Topics and subtopics are stored in insertion-ordered dicts keyed by their
    normalized key; the active branch is referenced by key.  The empty tree
    with both active keys set to ``""`` is the valid initial state.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, TopicMemory] = {}
        self._active_topic_key = ""
        self._active_subtopic_key = ""

    def reset(self) -> None:
        self._topics = {}
        self._active_topic_key = ""
        self._active_subtopic_key = ""

    def is_empty(self) -> bool:
        return not self._topics

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def restore(self, state: Optional[BranchingMemoryState]) -> bool:
        """Replace the tree with ``state``; reset and return ``False`` if it is invalid."""

        loaded = self._load(state)
        if loaded is None:
            self.reset()
            return False

        topics, active_topic_key, active_subtopic_key = loaded
        self._topics = topics
        self._active_topic_key = active_topic_key
        self._active_subtopic_key = active_subtopic_key
        return True

    def _load(
        self, state: Optional[BranchingMemoryState]
    ) -> Optional[tuple[Dict[str, TopicMemory], str, str]]:
        if state is None:
            return None

        active_topic_key = normalize_key(state.active_topic_key)
        active_subtopic_key = normalize_key(state.active_subtopic_key)
        if not active_topic_key or not active_subtopic_key:
            logger.warning("Rejecting branching state without active branch keys")
            return None

        if _is_legacy_placeholder(state):
            logger.warning("Rejecting legacy General/General placeholder state")
            return None

        topics: Dict[str, TopicMemory] = {}
        for topic_state in state.topics:
            topic_key = normalize_key(topic_state.key)
            if not topic_key or topic_key in topics:
                logger.warning("Rejecting branching state with blank or duplicate topic %r", topic_state.key)
                return None
            if not topic_state.subtopics:
                logger.warning("Rejecting branching state: topic %r has no subtopics", topic_state.key)
                return None

            subtopics: Dict[str, SubtopicMemory] = {}
            for subtopic_state in topic_state.subtopics:
                subtopic_key = normalize_key(subtopic_state.key)
                if not subtopic_key or subtopic_key in subtopics:
                    logger.warning(
                        "Rejecting branching state with blank or duplicate subtopic %r in %r",
                        subtopic_state.key,
                        topic_state.key,
                    )
                    return None
                if not is_valid_turn_sequence(subtopic_state.messages):
                    logger.warning(
                        "Rejecting branching state: invalid messages in %r/%r",
                        topic_state.key,
                        subtopic_state.key,
                    )
                    return None
                subtopics[subtopic_key] = SubtopicMemory(
                    key=subtopic_key,
                    display_name=normalize_display_name(subtopic_state.display_name, subtopic_key),
                    messages=list(subtopic_state.messages),
                )

            topics[topic_key] = TopicMemory(
                key=topic_key,
                display_name=normalize_display_name(topic_state.display_name, topic_key),
                rolling_summary=(topic_state.rolling_summary or "").strip(),
                subtopics=subtopics,
            )

        if not topics:
            logger.warning("Rejecting branching state without any topics")
            return None

        active_topic = topics.get(active_topic_key)
        if active_topic is None or active_subtopic_key not in active_topic.subtopics:
            logger.warning(
                "Rejecting branching state: active branch %r/%r not found",
                active_topic_key,
                active_subtopic_key,
            )
            return None
        return topics, active_topic_key, active_subtopic_key

    def snapshot(self) -> BranchingMemoryState:
        return BranchingMemoryState(
            active_topic_key=self._active_topic_key,
            active_subtopic_key=self._active_subtopic_key,
            topics=[
                TopicBranchState(
                    key=topic.key,
                    display_name=topic.display_name,
                    rolling_summary=topic.rolling_summary,
                    subtopics=[
                        SubtopicBranchState(
                            key=subtopic.key,
                            display_name=subtopic.display_name,
                            messages=list(subtopic.messages),
                        )
                        for subtopic in topic.subtopics.values()
                    ],
                )
                for topic in self._topics.values()
            ],
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def active_branch(self) -> ActiveBranch:
        topic = self._topics.get(self._active_topic_key)
        if topic is None:
            raise RuntimeError(f"Missing active topic '{self._active_topic_key}'.")
        subtopic = topic.subtopics.get(self._active_subtopic_key)
        if subtopic is None:
            raise RuntimeError(
                f"Missing active subtopic '{self._active_subtopic_key}' in topic '{topic.key}'."
            )
        return ActiveBranch(topic=topic.display_name, subtopic=subtopic.display_name)

    def topic_catalog(self) -> List[BranchTopicCatalogEntry]:
        catalog: List[BranchTopicCatalogEntry] = []
        for topic in self._topics.values():
            topic_active = topic.key == self._active_topic_key
            catalog.append(
                BranchTopicCatalogEntry(
                    key=topic.key,
                    topic=topic.display_name,
                    is_active=topic_active,
                    subtopics=tuple(
                        BranchSubtopicCatalogEntry(
                            key=subtopic.key,
                            subtopic=subtopic.display_name,
                            is_active=topic_active and subtopic.key == self._active_subtopic_key,
                        )
                        for subtopic in topic.subtopics.values()
                    ),
                )
            )
        return catalog

    def active_topic_summary(self) -> Optional[str]:
        topic = self._active_topic()
        summary = topic.rolling_summary.strip() if topic else ""
        return summary or None

    def active_context_snapshot(self, system_prompt: str) -> List[ConversationMessage]:
        topic = self._active_topic()
        subtopic = self._active_subtopic(topic)
        messages = subtopic.messages if subtopic else []
        return self._build_conversation(system_prompt, topic, messages)

    def conversation_for(
        self,
        prompt: str,
        system_prompt: str,
        max_estimated_tokens: Optional[int],
        estimate_tokens: TokenEstimator,
    ) -> BranchingConversation:
        """Build the model-facing view, dropping the oldest turns until it fits.

        Truncation only affects the returned view; the stored subtopic keeps
        every message.
        """

        topic = self._active_topic()
        subtopic = self._active_subtopic(topic)
        visible = list(subtopic.messages) if subtopic else []
        truncated_turns = 0

        while True:
            conversation = self._build_conversation(system_prompt, topic, visible, prompt)
            if max_estimated_tokens is None or max_estimated_tokens <= 0:
                break
            if len(visible) < 2 or estimate_tokens(conversation) <= max_estimated_tokens:
                break
            visible = visible[2:]
            truncated_turns += 1

        if truncated_turns:
            logger.debug("Dropped %s oldest turns to fit %s tokens", truncated_turns, max_estimated_tokens)
        return BranchingConversation(conversation=conversation, truncated_turns=truncated_turns)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def resolve_and_activate(self, topic_name: str, subtopic_name: str) -> BranchActivationResult:
        topic_display = normalize_display_name(topic_name)
        if not topic_display:
            raise ValueError("Branch topic name must not be blank.")
        subtopic_display = normalize_display_name(subtopic_name)
        if not subtopic_display:
            raise ValueError("Branch subtopic name must not be blank.")
        topic_key = topic_display.lower()
        subtopic_key = subtopic_display.lower()

        previous = (self._active_topic_key, self._active_subtopic_key)

        topic = self._topics.get(topic_key)
        is_new_topic = topic is None
        if topic is None:
            topic = TopicMemory(key=topic_key, display_name=topic_display)
            self._topics[topic_key] = topic

        subtopic = topic.subtopics.get(subtopic_key)
        is_new_subtopic = subtopic is None
        if subtopic is None:
            subtopic = SubtopicMemory(key=subtopic_key, display_name=subtopic_display)
            topic.subtopics[subtopic_key] = subtopic

        self._active_topic_key = topic.key
        self._active_subtopic_key = subtopic.key

        switched = (
            not is_new_topic
            and not is_new_subtopic
            and previous != (self._active_topic_key, self._active_subtopic_key)
        )
        if is_new_topic or is_new_subtopic or switched:
            logger.info(
                "Activated branch %s / %s (new topic=%s, new subtopic=%s)",
                topic.display_name,
                subtopic.display_name,
                is_new_topic,
                is_new_subtopic,
            )
        return BranchActivationResult(
            topic=topic.display_name,
            subtopic=subtopic.display_name,
            is_new_topic=is_new_topic,
            is_new_subtopic=is_new_subtopic,
            switched_to_existing_branch=switched,
        )

    def record_successful_turn(self, prompt: str, response: str) -> None:
        require_turn_text(prompt, response)
        topic = self._active_topic()
        if topic is None:
            raise RuntimeError("Cannot store turn without an active topic.")
        subtopic = self._active_subtopic(topic)
        if subtopic is None:
            raise RuntimeError("Cannot store turn without an active subtopic.")
        subtopic.messages.append(ConversationMessage.user(prompt))
        subtopic.messages.append(ConversationMessage.assistant(response))

    def update_active_topic_summary(self, summary: Optional[str]) -> None:
        topic = self._active_topic()
        if topic is None:
            return
        topic.rolling_summary = (summary or "").strip()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _active_topic(self) -> Optional[TopicMemory]:
        if not self._active_topic_key:
            return None
        return self._topics.get(self._active_topic_key)

    def _active_subtopic(self, topic: Optional[TopicMemory]) -> Optional[SubtopicMemory]:
        if topic is None or not self._active_subtopic_key:
            return None
        return topic.subtopics.get(self._active_subtopic_key)

    @staticmethod
    def _build_conversation(
        system_prompt: str,
        topic: Optional[TopicMemory],
        messages: Sequence[ConversationMessage],
        prompt: Optional[str] = None,
    ) -> List[ConversationMessage]:
        conversation = [ConversationMessage.system(system_prompt)]
        summary = topic.rolling_summary.strip() if topic else ""
        if topic is not None and summary:
            conversation.append(
                ConversationMessage.system(f"Topic summary for '{topic.display_name}':\n{summary}")
            )
        conversation.extend(messages)
        if prompt is not None:
            conversation.append(ConversationMessage.user(prompt))
        return conversation


__all__ = [
    "BranchingSessionMemory",
    "LEGACY_GENERAL_KEY",
    "SubtopicMemory",
    "TokenEstimator",
    "TopicMemory",
    "normalize_display_name",
    "normalize_key",
]
