"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Turn structure ----------------------------------------------------------


def turn_header(n: int, label: str, token_est: int) -> None:
    title = f"Turn {n} \u00b7 {label} (~{token_est} prompt tokens)"
    _console.print(Rule(escape(title), style="cyan"))


def turn_summary(commands: int, failed: int, files_cached: int, chars: int) -> None:
    style = "green" if failed == 0 else "yellow"
    text = Text()
    text.append(f"  Commands executed: {commands}", style=style)
    if failed:
        text.append(f" ({failed} failed)", style="red")
    _console.print(text)
    _console.print(Text(f"  Files in memory: {files_cached}", style="dim"))
    _console.print(Text(f"  Response length: {chars} characters", style="dim"))


# -- Commands ----------------------------------------------------------------


def command_start(action: str, subject: str) -> None:
    header = Text()
    header.append("  \u25b6 ", style="bold magenta")
    header.append(action.upper(), style="bold magenta")
    header.append(f" {subject}", style="magenta")
    _console.print(header)


def command_ok(action: str, elapsed: float, detail: str) -> None:
    header = Text()
    header.append(f"  \u2713 {action}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    if detail:
        header.append(f"  {detail}", style="dim")
    _console.print(header)


def command_failed(action: str, msg: str) -> None:
    header = Text()
    header.append(f"  \u2717 {action}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def command_output(stderr: str) -> None:
    for line in stderr.strip().splitlines()[-20:]:
        _console.print(Text(f"    {line}", style="dim red"))


# -- Memory ------------------------------------------------------------------


def memory_summary(summary: dict, recent: list, files: list[str]) -> None:
    _console.print(Rule("Memory", style="cyan"))
    _console.print(Text(f"  Files stored: {summary['files']}", style="dim"))
    _console.print(
        Text(
            f"  Actions logged: {summary['actions']}/{summary['max_actions']}",
            style="dim",
        )
    )
    _console.print(Text(f"  Conversations: {summary['conversations']}", style="dim"))
    for entry in recent:
        ok = entry.result.get("success", False)
        line = Text()
        line.append("    \u2713 " if ok else "    \u2717 ", style="green" if ok else "red")
        line.append(f"{entry.action} {entry.target}", style="dim")
        _console.print(line)
    if files:
        _console.print(Text(f"  Available files: {', '.join(files)}", style="dim"))


def cached_files(records: list) -> None:
    if not records:
        _console.print(Text("  No files in memory.", style="dim"))
        return
    for record in records:
        _console.print(Text(f"  {record.path} ({record.size} chars)", style="dim"))


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(label: str) -> None:
    _console.print(Text(f"Using {label}.", style="dim"))
    _console.print(
        Text("Interactive mode. Type /help for commands, /exit or Ctrl-D to quit.", style="dim")
    )
