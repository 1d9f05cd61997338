import argparse
import os
import sys
from importlib import metadata

from . import fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)
from .knowledge import KnowledgeStore
from .report import AgentError, ReportCollector
from .session import Session
from .stream import CommandExecuted, CommandStarted, Fragment
from .transport import PROVIDERS, Transport, resolve_provider_config

MAX_SUBJECT_LOG = 200


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="unvibe",
        usage="%(prog)s [options] [instruction]\n       %(prog)s --repl [options]",
        description=(
            "A CLI file and terminal assistant that executes command blocks "
            "from a streaming LLM reply."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "instruction",
        nargs="?",
        default=None,
        help="What to do. Omit to start an interactive session.",
    )
    parser.add_argument(
        "--repl",
        action="store_true",
        help="Start an interactive session.",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="LLM provider (default: ollama).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model identifier (default: the provider's default model).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Provider base URL (default: http://localhost:11434 for ollama).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: 0.3).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens (default: 4096).",
    )
    stream_group = parser.add_mutually_exclusive_group()
    stream_group.add_argument(
        "--stream",
        dest="stream",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force a streaming request.",
    )
    stream_group.add_argument(
        "--no-stream",
        dest="stream",
        action="store_const",
        const=False,
        help="Request one complete reply instead of a stream.",
    )
    parser.add_argument(
        "--command-timeout",
        type=int,
        default=_UNSET,
        help="Seconds a terminal command may run (default: 600).",
    )
    parser.add_argument(
        "--history-size",
        type=int,
        default=_UNSET,
        help="Action log entries kept in memory (default: 50).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Suppress diagnostics; only print the model's reply.",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a JSON run report to FILE. Incompatible with --repl.",
    )
    parser.add_argument(
        "--init-config",
        nargs="?",
        const="global",
        choices=["global", "project"],
        default=None,
        help="Print a config file template and exit.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    return parser


def _subject(event: CommandStarted) -> str:
    token = event.token
    if token.action == "terminal":
        subject = token.parameter
    elif token.action == "rename":
        subject = f"{token.parameter} -> {token.target}"
    else:
        subject = token.target
    subject = " ".join(subject.split())
    if len(subject) > MAX_SUBJECT_LOG:
        subject = subject[:MAX_SUBJECT_LOG] + "..."
    return subject


def _detail(event: CommandExecuted) -> str:
    result = event.result
    if event.token.action == "list" and result.files is not None:
        return f"{len(result.files)} files, {len(result.folders or [])} folders"
    if event.token.action == "search" and result.matches is not None:
        return result.message
    if result.size is not None:
        return f"{result.size} bytes" if event.token.action != "read" else f"{result.size} chars"
    return ""


def make_printer(verbose: bool):
    """Return an on_event callback that writes the reply to stdout as it streams."""

    def on_event(event) -> None:
        if isinstance(event, Fragment):
            sys.stdout.write(event.text)
            sys.stdout.flush()
        elif not verbose:
            return
        elif isinstance(event, CommandStarted):
            sys.stdout.write("\n")
            sys.stdout.flush()
            fmt.command_start(event.token.action, _subject(event))
        elif isinstance(event, CommandExecuted):
            if event.result.success:
                fmt.command_ok(event.token.action, event.duration, _detail(event))
            else:
                fmt.command_failed(event.token.action, event.result.message)
                if event.result.stderr:
                    fmt.command_output(event.result.stderr)

    return on_event


def run_turn(session: Session, instruction: str, verbose: bool):
    on_event = make_printer(verbose)
    result = session.run(instruction, on_event=on_event)
    sys.stdout.write("\n")
    sys.stdout.flush()
    if verbose:
        fmt.turn_summary(
            len(result.commands),
            result.failed,
            len(session.store.list_files()),
            len(result.transcript),
        )
    return result


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("unvibe")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.init_config == "project"))
        sys.exit(0)

    try:
        config = load_config(os.getcwd())
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)
    args.verbose = not args.quiet

    if args.report and (args.repl or args.instruction is None):
        parser.error("--report requires an instruction and is incompatible with --repl")

    fmt.init(color=args.color, no_color=args.no_color)

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    provider_config = resolve_provider_config(
        args.provider,
        model=args.model,
        api_key=args.api_key,
        base_url=args.base_url,
        temperature=args.temperature,
        max_output_tokens=args.max_output_tokens,
        stream=args.stream,
    )
    transport = Transport(provider_config, verbose=args.verbose)
    report = ReportCollector() if args.report else None
    session = Session(
        transport,
        KnowledgeStore(max_actions=args.history_size),
        command_timeout=args.command_timeout,
        verbose=args.verbose,
        report=report,
    )

    if args.repl or args.instruction is None:
        repl_loop(session, verbose=args.verbose)
        return

    settings = {
        "temperature": provider_config.temperature,
        "max_output_tokens": provider_config.max_output_tokens,
        "stream": provider_config.stream,
        "command_timeout": args.command_timeout,
    }
    try:
        result = run_turn(session, args.instruction, args.verbose)
    except AgentError as e:
        if report is not None:
            _write_report(args, report, provider_config, settings, "error", None, 1, str(e))
        raise

    if report is not None:
        _write_report(args, report, provider_config, settings, "success", result.transcript, 0)


def _write_report(args, report, provider_config, settings, outcome, transcript, exit_code, error_message=None):
    report.finalize(
        task=args.instruction or "",
        model=provider_config.model,
        provider=provider_config.provider,
        settings=settings,
        outcome=outcome,
        transcript=transcript,
        exit_code=exit_code,
        error_message=error_message,
    )
    try:
        report.write(args.report)
    except OSError as e:
        fmt.error(f"Failed to write report to {args.report}: {e}")
        return
    if args.verbose:
        fmt.info(f"Report written to {args.report}")


# ---------------------------------------------------------------------------
# REPL command helpers
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help          Show this help message\n"
        "  /memory        Show cached files, recent actions and conversation count\n"
        "  /files         List files cached in memory\n"
        "  /clear         Forget cached files, actions and conversation\n"
        "  /exit, /quit   Exit the REPL"
    )


def _repl_memory(store: KnowledgeStore) -> None:
    files = [os.path.basename(p) for p in store.list_files()]
    fmt.memory_summary(store.summary(), store.recent_actions(5), files)


def _repl_files(store: KnowledgeStore) -> None:
    fmt.cached_files([store.get_file(p) for p in store.list_files()])


def _repl_clear(store: KnowledgeStore) -> None:
    before = store.summary()
    store.clear()
    fmt.info(
        f"memory cleared ({before['files']} files, {before['actions']} actions, "
        f"{before['conversations']} conversations removed)"
    )


def repl_loop(session: Session, *, verbose: bool) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = global_config_dir() / "repl_history"
    history_path.parent.mkdir(parents=True, exist_ok=True)
    prompt_session = PromptSession(
        history=FileHistory(str(history_path)),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansicyan", "unvibe> ")])

    if verbose:
        fmt.repl_banner(getattr(session.transport, "label", "model"))

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = prompt_session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        line = line.strip()
        if not line:
            continue

        if line in ("/exit", "/quit"):
            break

        cmd = line.split(None, 1)[0].lower()
        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/memory":
            _repl_memory(session.store)
            continue
        elif cmd == "/files":
            _repl_files(session.store)
            continue
        elif cmd == "/clear":
            _repl_clear(session.store)
            continue

        try:
            run_turn(session, line, verbose)
        except KeyboardInterrupt:
            fmt.warning("interrupted, turn aborted.")
            continue
        except AgentError as e:
            fmt.error(str(e))
            continue


if __name__ == "__main__":
    main()
