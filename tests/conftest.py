from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

import pytest

from agentmem.schemas import AgentResponse, ConversationMessage

Reply = Union[str, AgentResponse, Exception]


class FakeCompletionClient:
    """Replies from per-system-prompt queues and records every request."""

    def __init__(self, responses: Mapping[str, List[Reply]]) -> None:
        self.responses = {key: list(queue) for key, queue in responses.items()}
        self.calls: List[Mapping[str, Any]] = []

    def complete(
        self,
        conversation: Sequence[ConversationMessage],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> AgentResponse:
        system_prompt = conversation[0].content
        self.calls.append(
            {
                "system": system_prompt,
                "conversation": list(conversation),
                "temperature": temperature,
                "model": model,
            }
        )
        queue = self.responses.get(system_prompt)
        if not queue:
            raise AssertionError(f"No response queued for system prompt: {system_prompt!r}")
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, AgentResponse):
            return reply
        return AgentResponse(content=reply)

    def calls_for(self, system_prompt: str) -> List[Mapping[str, Any]]:
        return [call for call in self.calls if call["system"] == system_prompt]


@pytest.fixture
def make_client() -> Callable[[Mapping[str, List[Reply]]], FakeCompletionClient]:
    return FakeCompletionClient

