"""OpenAI-compatible completion client used as the model collaborator."""

from __future__ import annotations

import logging
import os
from copy import deepcopy
from typing import Any, Dict, Mapping, MutableMapping, Optional, Protocol, Sequence

from openai import OpenAI, OpenAIError

from .schemas import AgentResponse, ConversationMessage, TokenUsage, messages_to_payload

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("vllm", "deepseek", "openai")
DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"
PROVIDER_API_KEY_ENV: Mapping[str, str] = {"deepseek": "DEEPSEEK_API_KEY"}

# vLLM serves Qwen-style chat templates; keep their thinking blocks out of replies.
VLLM_REQUEST_OPTIONS: Mapping[str, Any] = {
    "extra_body": {"chat_template_kwargs": {"enable_thinking": False}}
}


class CompletionError(RuntimeError):
    """Raised when a completion request fails or returns no usable content."""


class CompletionClient(Protocol):
    def complete(
        self,
        conversation: Sequence[ConversationMessage],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> AgentResponse:
        ...


def resolve_api_key(
    provider: str, api_key: Optional[str] = None, api_key_env: Optional[str] = None
) -> str:
    """Explicit key first, then the provider's environment variable, else ``""``."""

    if api_key is not None:
        return api_key
    env_name = api_key_env or PROVIDER_API_KEY_ENV.get(provider, DEFAULT_API_KEY_ENV)
    return os.environ.get(env_name, "")


def merge_request_options(
    defaults: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Overlay ``overrides`` on ``defaults``; nested mappings are merged one level deep."""

    merged: Dict[str, Any] = deepcopy(dict(defaults))
    for key, value in (overrides or {}).items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = {**current, **deepcopy(dict(value))}
        else:
            merged[key] = deepcopy(value)
    return merged


class LLMClient:
    """Chat-completions client over :class:`openai.OpenAI`.

    ``provider`` only selects defaults: which environment variable holds the
    API key and, for vLLM, extra request options.
    """

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        provider: str = "openai",
        api_key: Optional[str] = None,
        api_key_env: Optional[str] = None,
        request_options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.provider = provider.lower()
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider '{provider}'")
        if request_options is None:
            request_options = VLLM_REQUEST_OPTIONS if self.provider == "vllm" else {}

        self.model = model
        self.request_options: Dict[str, Any] = deepcopy(dict(request_options))
        self._client = OpenAI(
            base_url=base_url,
            api_key=resolve_api_key(self.provider, api_key, api_key_env),
        )

    def complete(
        self,
        conversation: Sequence[ConversationMessage],
        *,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        extra_body: Optional[Mapping[str, Any]] = None,
    ) -> AgentResponse:
        payload: MutableMapping[str, Any] = merge_request_options(self.request_options, extra_body)
        payload["model"] = model or self.model
        payload["messages"] = messages_to_payload(conversation)
        if temperature is not None:
            payload["temperature"] = temperature

        logger.debug("Dispatching chat request: %s", payload)
        try:
            response = self._client.chat.completions.create(**payload)
        except OpenAIError as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc
        logger.debug("Chat raw response: %s", response)

        if not response.choices:
            raise CompletionError("Completion response contained no choices.")
        content = getattr(response.choices[0].message, "content", "") or ""
        if not content.strip():
            raise CompletionError("Completion response content is empty.")
        return AgentResponse(content=content, usage=_usage(response))


def _usage(response: Any) -> Optional[TokenUsage]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return TokenUsage(
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
        input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
    )


__all__ = [
    "CompletionClient",
    "CompletionError",
    "LLMClient",
    "merge_request_options",
    "resolve_api_key",
]
