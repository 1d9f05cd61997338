"""Public library API for unvibe: Session class and TurnResult dataclass."""

import os
import platform
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path

import tiktoken

from . import fmt
from .bulk import create_many
from .knowledge import KnowledgeStore
from .report import ReportCollector, TransportError
from .stream import CommandExecuted, Event, StreamCoordinator
from .tools import DEFAULT_TIMEOUT, ExecutionResult

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"

_encoder = None


def estimate_tokens(text: str) -> int:
    """Count tokens with tiktoken's cl100k_base encoding."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return len(_encoder.encode(text))


@dataclass
class TurnResult:
    """Outcome of one turn: the final transcript and every executed command."""

    transcript: str
    commands: list[CommandExecuted] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(1 for c in self.commands if not c.result.success)


def _describe_context(store: KnowledgeStore) -> str:
    ctx = store.context()
    files = ", ".join(f["name"] + f" ({f['path']})" for f in ctx["file_details"])
    actions = ", ".join(
        f"{a['action']} {a['target']}" + ("" if a["success"] else " (failed)")
        for a in ctx["recent_actions"]
    )
    shell = os.environ.get("SHELL") or os.environ.get("COMSPEC") or "/bin/sh"
    return (
        "CURRENT CONTEXT:\n"
        f"- Operating system: {platform.system()} {platform.release()} ({platform.machine()})\n"
        f"- Shell: {shell}\n"
        f"- Working directory: {os.getcwd()}\n"
        f"- Files in memory: {files or 'none'}\n"
        f"- Recent actions: {actions or 'none'}\n"
    )


class Session:
    """Programmatic interface to the unvibe turn loop.

    One Session keeps one KnowledgeStore across turns. Each call to
    run() or iter_run() is one turn with its own stream coordinator, so
    command deduplication is scoped to that turn.
    """

    def __init__(
        self,
        transport,
        store: KnowledgeStore | None = None,
        *,
        command_timeout: int = DEFAULT_TIMEOUT,
        command_filter: Callable[[str], str] | None = None,
        system_prompt: str | None = None,
        verbose: bool = False,
        report: ReportCollector | None = None,
    ):
        self.transport = transport
        self.store = store if store is not None else KnowledgeStore()
        self.command_timeout = command_timeout
        self.command_filter = command_filter
        self.system_prompt = system_prompt
        self.verbose = verbose
        self.report = report
        self.turns = 0

    def build_prompt(self, instruction: str) -> str:
        system = self.system_prompt
        if system is None:
            system = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")
        return (
            f"{system.rstrip()}\n\n"
            f"{_describe_context(self.store)}\n"
            f"USER REQUEST: {instruction}\n\n"
            "Carry out the whole request in this reply, emitting command blocks as you go."
        )

    def iter_run(self, instruction: str) -> Generator[Event, None, TurnResult]:
        """Run one turn as a stream of events; returns the TurnResult.

        TransportError propagates to the caller. Commands executed before
        the failure stay applied and stay in the action log.
        """
        self.turns += 1
        turn = self.turns
        prompt = self.build_prompt(instruction)
        token_est = 0
        if self.verbose or self.report is not None:
            token_est = estimate_tokens(prompt)
        if self.verbose:
            fmt.turn_header(turn, getattr(self.transport, "label", "model"), token_est)

        coordinator = StreamCoordinator(
            self.store,
            timeout=self.command_timeout,
            command_filter=self.command_filter,
        )
        fragments = 0
        start = time.monotonic()

        try:
            for text in self.transport.submit(prompt):
                fragments += 1
                yield from self._observe(turn, coordinator.feed(text))
        except TransportError as e:
            self._record_llm_call(turn, start, coordinator, token_est, fragments, str(e))
            raise

        self._record_llm_call(turn, start, coordinator, token_est, fragments)
        yield from self._observe(turn, coordinator.flush())
        transcript = coordinator.finish()
        self.store.add_conversation(instruction, transcript, len(coordinator.commands))
        return TurnResult(transcript=transcript, commands=list(coordinator.commands))

    def run(
        self, instruction: str, on_event: Callable[[Event], None] | None = None
    ) -> TurnResult:
        """Run one turn to completion, handing each event to on_event."""
        events = self.iter_run(instruction)
        while True:
            try:
                event = next(events)
            except StopIteration as stop:
                return stop.value
            if on_event is not None:
                on_event(event)

    def create_files(self, files: list[tuple[str, str]]) -> list[ExecutionResult]:
        """Create several files concurrently (targets must be disjoint)."""
        return create_many(files, self.store)

    def reset(self) -> None:
        """Forget cached files, the action log and the conversation."""
        self.store.clear()

    def _observe(
        self, turn: int, events: Generator[Event, None, None]
    ) -> Generator[Event, None, None]:
        for event in events:
            if isinstance(event, CommandExecuted):
                self._record_command(turn, event)
            yield event

    def _record_command(self, turn: int, event: CommandExecuted) -> None:
        if self.report is None:
            return
        self.report.record_command(
            turn,
            event.token.action,
            event.token.target,
            event.result.success,
            event.duration,
            message=event.result.message,
        )

    def _record_llm_call(
        self,
        turn: int,
        start: float,
        coordinator: StreamCoordinator,
        token_est: int,
        fragments: int,
        error: str | None = None,
    ) -> None:
        if self.report is None:
            return
        action_time = sum(c.duration for c in coordinator.commands)
        elapsed = max(0.0, time.monotonic() - start - action_time)
        self.report.record_llm_call(turn, elapsed, token_est, fragments, error=error)
