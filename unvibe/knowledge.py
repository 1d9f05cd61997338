"""In-memory knowledge store: cached file snapshots, action log, transcript."""

import os
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

MAX_ACTIONS = 50
MAX_SEARCH_LINES = 5


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class FileRecord:
    path: str
    content: str
    last_modified: str
    size: int

    @property
    def name(self) -> str:
        return Path(self.path).name


@dataclass
class ActionLogEntry:
    action: str
    target: str
    result: dict
    timestamp: str = field(default_factory=_now)


@dataclass
class ConversationEntry:
    user: str
    assistant: str
    commands_executed: int
    timestamp: str = field(default_factory=_now)


class KnowledgeStore:
    """Session memory shared by the dispatcher and the turn driver.

    Files are keyed by canonical absolute path (latest write wins). The
    action log is a ring buffer holding the most recent ``max_actions``
    entries. All mutators take a lock so concurrent bulk creation can
    insert safely.
    """

    def __init__(self, max_actions: int = MAX_ACTIONS):
        if max_actions < 1:
            raise ValueError(f"max_actions must be at least 1, got {max_actions}")
        self.max_actions = max_actions
        self._files: dict[str, FileRecord] = {}
        self._actions: deque[ActionLogEntry] = deque(maxlen=max_actions)
        self._conversations: list[ConversationEntry] = []
        self._lock = threading.Lock()

    # -- Files ---------------------------------------------------------------

    def store_file(self, path: str, content: str) -> FileRecord:
        record = FileRecord(
            path=str(path),
            content=content,
            last_modified=_now(),
            size=len(content),
        )
        with self._lock:
            # Re-insert so list_files() reflects recency of the last write.
            self._files.pop(record.path, None)
            self._files[record.path] = record
        return record

    def get_file(self, name_or_path: str) -> FileRecord | None:
        """Look up a cached file by canonical path, relative path, or name."""
        with self._lock:
            records = list(self._files.values())
            exact = self._files.get(name_or_path)
        if exact is not None:
            return exact

        resolved = os.path.abspath(name_or_path)
        for record in reversed(records):
            if record.path == resolved:
                return record
        for record in reversed(records):
            if record.name == name_or_path:
                return record
        for record in reversed(records):
            if name_or_path and name_or_path in record.path:
                return record
        return None

    def list_files(self) -> list[str]:
        with self._lock:
            return list(self._files)

    def search_files(self, text: str, max_lines: int = MAX_SEARCH_LINES) -> list[dict]:
        """Case-insensitive substring search across cached file contents."""
        needle = text.lower()
        with self._lock:
            records = list(self._files.values())

        results = []
        for record in records:
            if needle not in record.content.lower():
                continue
            lines = [
                {"line": i, "content": line.strip()}
                for i, line in enumerate(record.content.split("\n"), start=1)
                if needle in line.lower()
            ]
            results.append(
                {
                    "path": record.path,
                    "name": record.name,
                    "matches": len(lines),
                    "lines": lines[:max_lines],
                }
            )
        return results

    # -- Actions -------------------------------------------------------------

    def add_action(self, action: str, target: str, result: dict) -> ActionLogEntry:
        entry = ActionLogEntry(action=action, target=target, result=dict(result))
        with self._lock:
            self._actions.append(entry)
        return entry

    def recent_actions(self, n: int = 10) -> list[ActionLogEntry]:
        with self._lock:
            actions = list(self._actions)
        if n <= 0:
            return []
        return actions[-n:]

    # -- Conversation --------------------------------------------------------

    def add_conversation(
        self, user: str, assistant: str, commands_executed: int
    ) -> ConversationEntry:
        entry = ConversationEntry(
            user=user, assistant=assistant, commands_executed=commands_executed
        )
        with self._lock:
            self._conversations.append(entry)
        return entry

    def conversations(self, n: int = 10) -> list[ConversationEntry]:
        with self._lock:
            entries = list(self._conversations)
        if n <= 0:
            return []
        return entries[-n:]

    # -- Views ---------------------------------------------------------------

    def context(self) -> dict:
        """Compact view of memory for inclusion in the next prompt."""
        with self._lock:
            records = list(self._files.values())
            actions = list(self._actions)[-5:]
        return {
            "recent_actions": [
                {
                    "action": a.action,
                    "target": a.target,
                    "success": a.result.get("success", False),
                }
                for a in actions
            ],
            "available_files": [r.path for r in records],
            "file_details": [
                {
                    "path": r.path,
                    "name": r.name,
                    "size": r.size,
                    "last_modified": r.last_modified,
                }
                for r in records
            ],
        }

    def summary(self) -> dict:
        with self._lock:
            return {
                "files": len(self._files),
                "actions": len(self._actions),
                "max_actions": self.max_actions,
                "conversations": len(self._conversations),
            }

    def clear(self) -> None:
        with self._lock:
            self._files.clear()
            self._actions.clear()
            self._conversations.clear()
