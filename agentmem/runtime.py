"""Runtime helpers that drive one conversation through memory, model and storage."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from .branching import BranchingSessionMemory, TokenEstimator
from .classifier import DEFAULT_SUBTOPIC_NAME, BranchClassifier
from .clients import CompletionClient, CompletionError, LLMClient
from .coordinator import SessionCompactionMode, SessionMemoryCompactionCoordinator, build_coordinator
from .prompts import TOPIC_SUMMARY_PROMPT
from .schemas import (
    ConversationMessage,
    MemoryEstimateSource,
    MemoryUsageSnapshot,
    SessionMemoryState,
    TokenUsage,
)
from .session import SessionMemory
from .storage import SessionMemoryStore
from .strategies import RollingSummaryCompactionStrategy
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a concise and pragmatic assistant. Ask for clarification only when needed."
)


@dataclass(frozen=True)
class TurnResult:
    content: str
    topic: Optional[str] = None
    subtopic: Optional[str] = None
    truncated_turns: int = 0
    compacted: bool = False
    used_fallback: bool = False
    usage: Optional[TokenUsage] = None


@dataclass
class SessionRuntime:
    """High level runtime wiring session memory, compaction and persistence."""

    db_path: Optional[str] = "session_memory.sqlite"
    session_id: str = "default"
    llm_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4.1-mini"
    llm_provider: str = "openai"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    compaction_mode: str = SessionCompactionMode.ROLLING_SUMMARY.id
    max_estimated_tokens: Optional[int] = 6000
    summarize_topics: bool = True
    fallback_topic: str = "Conversation"
    fallback_subtopic: str = DEFAULT_SUBTOPIC_NAME
    client: Optional[CompletionClient] = None
    token_estimator: TokenEstimator = field(default=estimate_tokens)

    def __post_init__(self) -> None:
        mode = SessionCompactionMode.from_id_or_none(self.compaction_mode)
        if mode is None:
            raise ValueError(f"Unknown compaction mode '{self.compaction_mode}'")
        self.mode = mode

        if self.client is None:
            self.client = LLMClient(
                base_url=self.llm_url,
                model=self.llm_model,
                provider=self.llm_provider,
            )

        self.store: Optional[SessionMemoryStore] = None
        if self.db_path:
            if self.db_path != ":memory:":
                Path(self.db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
                self.store = SessionMemoryStore(str(Path(self.db_path).expanduser()), self.session_id)
            else:
                self.store = SessionMemoryStore(self.db_path, self.session_id)

        self.session = SessionMemory(self.system_prompt)
        self.branching = BranchingSessionMemory()
        self.classifier = BranchClassifier(self.client)
        self.topic_summarizer = RollingSummaryCompactionStrategy(
            self.client, system_prompt=TOPIC_SUMMARY_PROMPT
        )
        self.coordinator: SessionMemoryCompactionCoordinator = build_coordinator(mode, self.client)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def send(self, prompt: str) -> TurnResult:
        """Run one turn; memory is only updated once the completion succeeded."""

        if not prompt.strip():
            raise ValueError("prompt must not be blank.")
        if self.mode is SessionCompactionMode.BRANCHING:
            result = self._send_branching(prompt)
        else:
            result = self._send_linear(prompt)
        self.save()
        return result

    def switch_mode(self, mode: SessionCompactionMode) -> None:
        self.mode = mode
        self.compaction_mode = mode.id
        self.coordinator = build_coordinator(mode, self.client)
        logger.info("Switched compaction mode to %s", mode.label)
        self.save()

    def reset(self) -> None:
        self.session.reset(self.system_prompt)
        self.branching.reset()
        if self.store is not None:
            self.store.clear()

    def load(self) -> bool:
        """Restore memory from the store; ``False`` if nothing valid was found."""

        if self.store is None:
            return False
        state = self.store.load()
        if state is None:
            return False

        mode = SessionCompactionMode.from_id_or_none(state.active_compaction_mode_id)
        if mode is not None and mode is not self.mode:
            self.mode = mode
            self.compaction_mode = mode.id
            self.coordinator = build_coordinator(mode, self.client)

        restored = False
        if state.messages:
            restored = self.session.restore(state.messages, state.compacted_summary)
        if state.branching_state is not None:
            restored = self.branching.restore(state.branching_state) or restored
        return restored

    def save(self) -> None:
        if self.store is not None:
            self.store.save(self.state())

    def state(self) -> SessionMemoryState:
        if self.mode is SessionCompactionMode.BRANCHING:
            view = self.branching.active_context_snapshot(self.system_prompt)
        else:
            view = self.session.context_snapshot()
        return SessionMemoryState(
            messages=self.session.snapshot(),
            compacted_summary=self.session.compacted_summary_snapshot(),
            usage=MemoryUsageSnapshot(
                estimated_tokens=self.token_estimator(view),
                source=MemoryEstimateSource.HEURISTIC,
                message_count=len(view),
            ),
            active_compaction_mode_id=self.mode.id,
            branching_state=None if self.branching.is_empty() else self.branching.snapshot(),
        )

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------
    def _send_linear(self, prompt: str) -> TurnResult:
        conversation = self.session.conversation_for(prompt)
        response = self.client.complete(conversation, model=self.llm_model)
        self.session.record_successful_turn(prompt, response.content)
        compacted = self.coordinator.compact_if_needed(self.session, self.llm_model)
        if self.coordinator.last_error is not None:
            logger.error("Session compaction failed: %s", self.coordinator.last_error)
        return TurnResult(content=response.content, compacted=compacted, usage=response.usage)

    def _send_branching(self, prompt: str) -> TurnResult:
        view = self.branching.conversation_for(
            prompt,
            self.system_prompt,
            self.max_estimated_tokens,
            self.token_estimator,
        )
        response = self.client.complete(view.conversation, model=self.llm_model)

        if self.branching.is_empty():
            fallback_topic, fallback_subtopic = self.fallback_topic, self.fallback_subtopic
        else:
            active = self.branching.active_branch()
            fallback_topic, fallback_subtopic = active.topic, active.subtopic
        decision = self.classifier.classify(
            self.branching.topic_catalog(),
            prompt,
            response.content,
            fallback_topic,
            fallback_subtopic,
            self.llm_model,
        )
        activation = self.branching.resolve_and_activate(decision.topic, decision.subtopic)
        self.branching.record_successful_turn(prompt, response.content)
        if self.summarize_topics:
            self._refresh_topic_summary(prompt, response.content)

        return TurnResult(
            content=response.content,
            topic=activation.topic,
            subtopic=activation.subtopic,
            truncated_turns=view.truncated_turns,
            used_fallback=decision.used_fallback,
            usage=response.usage,
        )

    def _refresh_topic_summary(self, prompt: str, response: str) -> None:
        turn = [ConversationMessage.user(prompt), ConversationMessage.assistant(response)]
        try:
            summary = self.topic_summarizer.compact(
                self.branching.active_topic_summary(), turn, self.llm_model
            )
        except Exception as exc:
            logger.warning("Topic summary refresh failed: %s", exc)
            return
        if summary:
            self.branching.update_active_topic_summary(summary)


# ----------------------------------------------------------------------
# Command line entry point
# ----------------------------------------------------------------------
RESET_COMMAND = "/reset"
MODE_COMMAND = "/mode"


def run_stream(runtime: SessionRuntime, stream: Iterable[str]) -> List[Mapping[str, object]]:
    """Feed one prompt per line to ``runtime``.

    ``/reset`` clears the session and ``/mode <id>`` switches compaction mode.
    A failed completion is reported in the output and the loop continues.
    """

    results: List[Mapping[str, object]] = []
    for line in stream:
        prompt = line.strip()
        if not prompt:
            continue
        if prompt == RESET_COMMAND:
            runtime.reset()
            results.append({"command": "reset"})
            continue
        if prompt.startswith(MODE_COMMAND + " "):
            mode_id = prompt[len(MODE_COMMAND) :].strip()
            mode = SessionCompactionMode.from_id_or_none(mode_id)
            if mode is None:
                results.append({"command": "mode", "error": f"Unknown compaction mode '{mode_id}'"})
            else:
                runtime.switch_mode(mode)
                results.append({"command": "mode", "mode": mode.id})
            continue
        try:
            turn = runtime.send(prompt)
        except CompletionError as exc:
            logger.error("Turn failed: %s", exc)
            results.append({"prompt": prompt, "error": str(exc)})
            continue
        results.append({"prompt": prompt, **asdict(turn)})
    return results


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Chat with session memory and compaction")
    parser.add_argument("--db", default="session_memory.sqlite", help="SQLite file for session snapshots")
    parser.add_argument("--session-id", default="default", help="Snapshot row to load and save")
    parser.add_argument("--llm-url", default="https://api.openai.com/v1", help="Base URL of the LLM server")
    parser.add_argument("--llm-model", default="gpt-4.1-mini", help="LLM model name exposed by the server")
    parser.add_argument(
        "--llm-provider",
        choices=["vllm", "deepseek", "openai"],
        default="openai",
        help="LLM provider type",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.id for mode in SessionCompactionMode],
        default=SessionCompactionMode.ROLLING_SUMMARY.id,
        help="Compaction mode used when no snapshot is stored",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=6000,
        help="Estimated token budget for branching requests (0 disables truncation)",
    )
    parser.add_argument("--fresh", action="store_true", help="Ignore the stored snapshot")
    parser.add_argument(
        "--input",
        type=Path,
        help="Optional path to a file with one prompt per line. Defaults to standard input.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    runtime = SessionRuntime(
        db_path=str(args.db),
        session_id=args.session_id,
        llm_url=args.llm_url,
        llm_model=args.llm_model,
        llm_provider=args.llm_provider,
        compaction_mode=args.mode,
        max_estimated_tokens=args.max_tokens,
    )
    if args.fresh:
        runtime.reset()
    elif runtime.load():
        logger.info("Restored session %s in %s mode", args.session_id, runtime.mode.label)

    if args.input:
        with args.input.open("r", encoding="utf-8") as fh:
            results = run_stream(runtime, fh)
    else:
        results = run_stream(runtime, sys.stdin)

    for result in results:
        print(json.dumps(result, ensure_ascii=False, indent=2))

    return 0


__all__ = ["DEFAULT_SYSTEM_PROMPT", "SessionRuntime", "TurnResult", "main", "run_stream"]


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
