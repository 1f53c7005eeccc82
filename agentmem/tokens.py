"""Heuristic token estimation for conversation views."""

from __future__ import annotations

from typing import Sequence

from .schemas import ConversationMessage

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4


def estimate_tokens(messages: Sequence[ConversationMessage]) -> int:
    """Rough token count: ~4 characters per token plus a fixed per-message overhead."""

    total = 0
    for message in messages:
        total += MESSAGE_OVERHEAD_TOKENS + (len(message.content) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN
    return total


__all__ = ["estimate_tokens"]
