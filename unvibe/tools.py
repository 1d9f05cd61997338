"""Action implementations for command blocks found in model output."""

import os
import shutil
import subprocess
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable

from .knowledge import KnowledgeStore
from .protocol import ACTIONS, CommandToken

DEFAULT_TIMEOUT = 600
MAX_TIMEOUT = 3600
MAX_CAPTURE_BYTES = 1 * 1024 * 1024  # 1MB per stream
MAX_STDERR_IN_MESSAGE = 500
MAX_SEARCH_MATCHES = 200
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB

# Dependency caches and build output that search never descends into.
IGNORED_DIRS = frozenset(
    {"node_modules", "__pycache__", "venv", "site-packages", "bower_components"}
)


@dataclass
class ExecutionResult:
    success: bool
    message: str
    path: str | None = None
    content: str | None = None
    size: int | None = None
    files: list[str] | None = None
    folders: list[str] | None = None
    matches: list[dict] | None = None
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _fail(message: str, **extra) -> ExecutionResult:
    return ExecutionResult(success=False, message=message, **extra)


def resolve_path(file_path: str) -> Path:
    """Resolve a target against the current working directory.

    Absolute paths are kept (normalized); relative ones are joined to
    os.getcwd() at call time. No other base directory is ever used.
    """
    return Path(os.path.abspath(file_path))


# -- File actions ------------------------------------------------------------


def _read(target: str, store: KnowledgeStore) -> ExecutionResult:
    resolved = resolve_path(target)
    if not resolved.exists():
        return _fail(f"File not found: {target}")
    if resolved.is_dir():
        return _fail(f"Is a directory: {target}")

    try:
        content = resolved.read_bytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        return _fail(f"failed to decode {target} as UTF-8: {exc}")

    store.store_file(str(resolved), content)
    return ExecutionResult(
        success=True,
        message="File read successfully",
        path=str(resolved),
        content=content,
        size=len(content),
    )


def _delete(target: str) -> ExecutionResult:
    resolved = resolve_path(target)
    if not resolved.exists() and not resolved.is_symlink():
        return _fail(f"File not found: {target}")
    if resolved == Path(resolved.anchor):
        return _fail(f"refusing to delete filesystem root: {target}")

    if resolved.is_dir() and not resolved.is_symlink():
        shutil.rmtree(resolved)
    else:
        resolved.unlink()
    return ExecutionResult(
        success=True, message="Deleted successfully", path=str(resolved)
    )


def _write(
    target: str, content: str, store: KnowledgeStore, message: str
) -> ExecutionResult:
    resolved = resolve_path(target)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8")
    resolved.write_bytes(data)
    store.store_file(str(resolved), content)
    return ExecutionResult(
        success=True,
        message=f"{message} ({len(data)} bytes)",
        path=str(resolved),
        size=len(data),
    )


def _edit(target: str, content: str, store: KnowledgeStore) -> ExecutionResult:
    return _write(target, content, store, "File edited successfully")


def _create_file(target: str, content: str, store: KnowledgeStore) -> ExecutionResult:
    return _write(target, content, store, "File created successfully")


def _create_folder(target: str) -> ExecutionResult:
    resolved = resolve_path(target)
    resolved.mkdir(parents=True, exist_ok=True)
    return ExecutionResult(
        success=True, message="Folder created successfully", path=str(resolved)
    )


def _rename(old_path: str, new_path: str) -> ExecutionResult:
    source = resolve_path(old_path)
    dest = resolve_path(new_path)
    if not source.exists() and not source.is_symlink():
        return _fail(f"File not found: {old_path}")
    source.rename(dest)
    return ExecutionResult(success=True, message="Renamed successfully", path=str(dest))


def _list(target: str) -> ExecutionResult:
    resolved = resolve_path(target or ".")
    if not resolved.exists():
        return _fail(f"Path not found: {target}")
    if not resolved.is_dir():
        return _fail(f"Not a directory: {target}")

    files: list[str] = []
    folders: list[str] = []
    for child in sorted(resolved.iterdir()):
        if child.is_dir():
            folders.append(child.name)
        elif child.is_file():
            files.append(child.name)
    return ExecutionResult(
        success=True,
        message=f"Listed directory contents ({len(files) + len(folders)} items)",
        path=str(resolved),
        files=files,
        folders=folders,
    )


def _search_file(path: Path, needle: str) -> list[dict]:
    """Return matching lines in one file; unreadable files yield nothing."""
    try:
        with open(path, "rb") as f:
            chunk = f.read(BINARY_CHECK_BYTES)
        if b"\x00" in chunk:
            return []
        text = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError):
        return []

    return [
        {"line": line_no, "content": line.strip()}
        for line_no, line in enumerate(text.split("\n"), start=1)
        if needle in line.lower()
    ]


def _search(query: str, target: str) -> ExecutionResult:
    if not query:
        return _fail("search query must not be empty")
    root = resolve_path(target or ".")
    if not root.exists():
        return _fail(f"Path not found: {target}")

    needle = query.lower()
    results: list[dict] = []
    total = 0

    if root.is_file():
        candidates = [root]
    else:
        candidates = []
        for dirpath, dirs, filenames in os.walk(root):
            dirs[:] = sorted(
                d for d in dirs if not d.startswith(".") and d not in IGNORED_DIRS
            )
            for filename in sorted(filenames):
                if not filename.startswith("."):
                    candidates.append(Path(dirpath) / filename)

    truncated = False
    for path in candidates:
        matches = _search_file(path, needle)
        if not matches:
            continue
        room = MAX_SEARCH_MATCHES - total
        if len(matches) > room:
            matches = matches[:room]
            truncated = True
        results.append({"file": str(path), "matches": matches})
        total += len(matches)
        if total >= MAX_SEARCH_MATCHES:
            truncated = True
            break

    message = f'{len(results)} files contain "{query}"'
    if truncated:
        message += f" (results truncated at {MAX_SEARCH_MATCHES} matches)"
    return ExecutionResult(
        success=True, message=message, path=str(root), matches=results
    )


# -- Terminal ----------------------------------------------------------------

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants.

    On Unix the child runs in its own session, so the whole process group
    goes. On Windows, taskkill /T handles the tree.
    """
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    else:
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            pass
    try:
        proc.kill()
    except OSError:
        pass


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    text = data[:MAX_CAPTURE_BYTES].decode("utf-8", errors="replace")
    if len(data) > MAX_CAPTURE_BYTES:
        text += "\n[output truncated at 1MB]"
    return text


def _terminal(command: str, timeout: int = DEFAULT_TIMEOUT) -> ExecutionResult:
    """Run a shell string in the current working directory."""
    if not command.strip():
        return _fail("terminal command is empty")
    timeout = max(1, min(timeout, MAX_TIMEOUT))

    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", command]
    else:
        shell_cmd = ["/bin/sh", "-c", command]

    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=os.getcwd(),
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    try:
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
    except OSError as e:
        return _fail(f"failed to start shell command: {e}")

    try:
        out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_tree(proc)
        try:
            out, err = proc.communicate(timeout=_KILL_WAIT_TIMEOUT)
        except subprocess.TimeoutExpired:
            out, err = b"", b""
        return _fail(
            f"Command timed out after {timeout}s",
            exit_code=proc.returncode,
            stdout=_decode(out),
            stderr=_decode(err),
        )

    stdout = _decode(out)
    stderr = _decode(err)
    if proc.returncode == 0:
        return ExecutionResult(
            success=True,
            message="Command executed successfully",
            exit_code=0,
            stdout=stdout,
            stderr=stderr,
        )

    message = f"Command failed with exit code {proc.returncode}"
    tail = stderr.strip()[-MAX_STDERR_IN_MESSAGE:]
    if tail:
        message += f": {tail}"
    return _fail(message, exit_code=proc.returncode, stdout=stdout, stderr=stderr)


# -- Dispatch ----------------------------------------------------------------


def _log_target(token: CommandToken) -> str:
    if token.action == "rename":
        return f"{token.parameter} -> {token.target}"
    if token.action == "terminal":
        return token.parameter
    if token.action == "search":
        return f'"{token.parameter}" in {token.target or "."}'
    return token.target


def _run_action(
    token: CommandToken,
    store: KnowledgeStore,
    timeout: int,
    command_filter: Callable[[str], str] | None,
) -> ExecutionResult:
    action, parameter, target = token.action, token.parameter, token.target

    if action == "read":
        return _read(target, store)
    elif action == "delete":
        return _delete(target)
    elif action == "edit":
        return _edit(target, parameter, store)
    elif action == "create_file":
        return _create_file(target, parameter, store)
    elif action == "create_folder":
        return _create_folder(target)
    elif action == "rename":
        return _rename(parameter, target)
    elif action == "terminal":
        command = command_filter(parameter) if command_filter else parameter
        return _terminal(command, timeout=timeout)
    elif action == "list":
        return _list(target)
    elif action == "search":
        return _search(parameter, target)
    return _fail(
        f"unknown action {action!r}, expected one of: {', '.join(ACTIONS)}"
    )


def dispatch(
    token: CommandToken,
    store: KnowledgeStore,
    *,
    timeout: int = DEFAULT_TIMEOUT,
    command_filter: Callable[[str], str] | None = None,
) -> ExecutionResult:
    """Execute one command token and log the outcome.

    Filesystem and process failures come back as an unsuccessful
    ExecutionResult; nothing raised by an action escapes this function
    except KeyboardInterrupt.
    """
    try:
        result = _run_action(token, store, timeout, command_filter)
    except (OSError, ValueError) as exc:
        result = _fail(str(exc))

    store.add_action(
        token.action,
        _log_target(token),
        {"success": result.success, "message": result.message},
    )
    return result
