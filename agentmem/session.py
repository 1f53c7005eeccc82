"""Linear session memory: one ordered conversation plus an optional summary."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .schemas import CompactedSessionSummary, ConversationMessage, MessageRole

logger = logging.getLogger(__name__)


class SessionMemory:
    """Single-branch conversation history rooted at a system prompt.

    Stored messages always look like ``SYSTEM, USER, ASSISTANT, USER, ...``
    ending with an assistant reply.  A compacted summary, when attached, is
    kept out of band and injected as a second system message in model-facing
    views only.
    """

    def __init__(self, system_prompt: str) -> None:
        self._messages: List[ConversationMessage] = []
        self._compacted_summary: Optional[CompactedSessionSummary] = None
        self._system_prompt = system_prompt
        self.reset(system_prompt)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def conversation_for(self, prompt: str) -> List[ConversationMessage]:
        return [*self.context_snapshot(), ConversationMessage.user(prompt)]

    def context_snapshot(self) -> List[ConversationMessage]:
        """Root prompt, injected summary (if any) and stored history."""

        root, *history = self._messages
        conversation = [root]
        summary = self._compacted_summary
        if summary is not None and summary.content.strip():
            conversation.append(ConversationMessage.system(_summary_message(summary)))
        conversation.extend(history)
        return conversation

    def snapshot(self) -> List[ConversationMessage]:
        return list(self._messages)

    def non_system_messages_snapshot(self) -> List[ConversationMessage]:
        return list(self._messages[1:])

    def compacted_summary_snapshot(self) -> Optional[CompactedSessionSummary]:
        return self._compacted_summary

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def record_successful_turn(self, prompt: str, response: str) -> None:
        require_turn_text(prompt, response)
        self._messages.append(ConversationMessage.user(prompt))
        self._messages.append(ConversationMessage.assistant(response))

    def reset(self, system_prompt: str) -> None:
        self._system_prompt = system_prompt
        self._messages = [ConversationMessage.system(system_prompt)]
        self._compacted_summary = None

    def restore(
        self,
        persisted_messages: Sequence[ConversationMessage],
        persisted_summary: Optional[CompactedSessionSummary] = None,
    ) -> bool:
        """Load a persisted session, falling back to a fresh one if it is invalid."""

        messages = list(persisted_messages)
        if not is_valid_session_messages(messages):
            logger.warning("Discarding persisted session with invalid message order")
            self.reset(self._system_prompt)
            return False
        if persisted_summary is not None and not persisted_summary.is_valid():
            logger.warning("Discarding persisted session with blank compacted summary")
            self.reset(self._system_prompt)
            return False

        self._messages = messages
        self._system_prompt = messages[0].content
        self._compacted_summary = persisted_summary
        return True

    def apply_compaction(
        self,
        summary: Optional[CompactedSessionSummary],
        compacted_count: int,
    ) -> None:
        non_system_count = len(self._messages) - 1
        if compacted_count < 0:
            raise ValueError("compacted_count must be >= 0.")
        if compacted_count > non_system_count:
            raise ValueError(
                f"compacted_count {compacted_count} exceeds {non_system_count} stored messages."
            )
        if summary is not None and not summary.is_valid():
            raise ValueError("Compacted summary requires non-blank strategy_id and content.")

        kept = self._messages[1 + compacted_count :]
        if not is_valid_turn_sequence(kept):
            raise ValueError(
                f"Compacting {compacted_count} messages would split a user/assistant pair."
            )

        self._messages = [self._messages[0], *kept]
        self._compacted_summary = summary
        logger.info(
            "Compacted %s messages (%s kept, summary=%s)",
            compacted_count,
            len(kept),
            summary.strategy_id if summary else None,
        )


def is_valid_session_messages(messages: Sequence[ConversationMessage]) -> bool:
    """Return whether ``messages`` is a root system prompt followed by whole turns."""

    if not messages or messages[0].role != MessageRole.SYSTEM:
        return False
    if not messages[0].content.strip():
        return False
    return is_valid_turn_sequence(messages[1:])


def is_valid_turn_sequence(messages: Sequence[ConversationMessage]) -> bool:
    """Return whether ``messages`` alternate USER/ASSISTANT in complete pairs."""

    if len(messages) % 2 != 0:
        return False
    for index, message in enumerate(messages):
        if not message.content.strip():
            return False
        expected = MessageRole.USER if index % 2 == 0 else MessageRole.ASSISTANT
        if message.role != expected:
            return False
    return True


def require_turn_text(prompt: str, response: str) -> None:
    if not prompt.strip():
        raise ValueError("Turn prompt must not be blank.")
    if not response.strip():
        raise ValueError("Turn response must not be blank.")


def _summary_message(summary: CompactedSessionSummary) -> str:
    return f"Compacted conversation summary ({summary.strategy_id}):\n{summary.content.strip()}"


__all__ = [
    "SessionMemory",
    "is_valid_session_messages",
    "is_valid_turn_sequence",
    "require_turn_text",
]
