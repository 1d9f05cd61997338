"""Incremental execution of command blocks as model output streams in.

The coordinator owns the turn's text buffer. Each inbound fragment is
forwarded as-is, then the buffer is scanned; every newly completed block
is dispatched once and its span in the buffer is replaced by a one-line
result marker, which is forwarded like any other fragment.
"""

import time
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass

from .knowledge import KnowledgeStore
from .protocol import CommandToken, format_result_marker, may_contain_block, scan
from .tools import DEFAULT_TIMEOUT, ExecutionResult, dispatch

ACCUMULATING = "accumulating"
DONE = "done"


@dataclass
class Fragment:
    text: str
    injected: bool = False


@dataclass
class CommandStarted:
    token: CommandToken


@dataclass
class CommandExecuted:
    token: CommandToken
    result: ExecutionResult
    marker: str
    duration: float = 0.0


Event = Fragment | CommandStarted | CommandExecuted


class StreamCoordinator:
    def __init__(
        self,
        store: KnowledgeStore,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        command_filter: Callable[[str], str] | None = None,
    ):
        self.store = store
        self.timeout = timeout
        self.command_filter = command_filter
        self.buffer = ""
        self.executed: set[str] = set()
        self.commands: list[CommandExecuted] = []
        self.state = ACCUMULATING

    def feed(self, text: str) -> Generator[Event, None, None]:
        """Append one fragment and execute any blocks it completes."""
        if self.state == DONE:
            raise RuntimeError("stream already finished")
        if not text:
            return

        self.buffer += text
        yield Fragment(text)
        if may_contain_block(self.buffer):
            yield from self._execute_new(scan(self.buffer))

    def flush(self) -> Generator[Event, None, None]:
        """Execute blocks held back behind an opening tag that never closed."""
        if self.state == DONE:
            return
        yield from self._execute_new(scan(self.buffer, final=True))

    def _execute_new(self, tokens: list[CommandToken]) -> Generator[Event, None, None]:
        for token in tokens:
            if token.raw_span in self.executed:
                continue
            self.executed.add(token.raw_span)
            yield CommandStarted(token)
            yield from self._execute(token)

    def _execute(self, token: CommandToken) -> Generator[Event, None, None]:
        start = time.monotonic()
        result = dispatch(
            token,
            self.store,
            timeout=self.timeout,
            command_filter=self.command_filter,
        )
        duration = time.monotonic() - start

        marker = format_result_marker(
            token.action, token.target, result.success, result.message
        )
        self.buffer = self.buffer.replace(token.raw_span, marker, 1)
        executed = CommandExecuted(token, result, marker, duration)
        self.commands.append(executed)
        yield executed
        yield Fragment(marker, injected=True)

    def finish(self) -> str:
        self.state = DONE
        return self.buffer

    def run(self, fragments: Iterable[str]) -> Generator[Event, None, str]:
        """Consume a fragment stream; the generator's return value is the transcript.

        Errors raised by the fragment source propagate unchanged. Commands
        already executed stay applied.
        """
        for text in fragments:
            yield from self.feed(text)
        yield from self.flush()
        return self.finish()
