"""Token grammar for commands embedded in model output.

A command block looks like::

    <|unvibe_ACTION|>PARAMETER<|parameter_separator|>TARGET<|/unvibe_ACTION|>

The action name must match on both sides. Matching starts at the leftmost
opening tag: a block written inside another block's slots is part of that
slot's text, never a command of its own. Anything that does not form a
complete block (mismatched names, missing separator, empty slots) is
ordinary text and is left alone.
"""

import re
from dataclasses import dataclass

ACTIONS = (
    "read",
    "delete",
    "edit",
    "create_file",
    "create_folder",
    "rename",
    "terminal",
    "list",
    "search",
)

OPEN_PREFIX = "<|unvibe_"
CLOSE_PREFIX = "<|/unvibe_"
TAG_SUFFIX = "|>"
SEPARATOR = "<|parameter_separator|>"

_ACTION_ALT = "|".join(re.escape(a) for a in ACTIONS)

_OPEN_RE = re.compile(r"<\|unvibe_(?P<action>" + _ACTION_ALT + r")\|>")
_TAG_RE = re.compile(r"<\|(?P<close>/?)unvibe_(?P<action>" + _ACTION_ALT + r")\|>")


def open_tag(action: str) -> str:
    return f"{OPEN_PREFIX}{action}{TAG_SUFFIX}"


def close_tag(action: str) -> str:
    return f"{CLOSE_PREFIX}{action}{TAG_SUFFIX}"


def block(action: str, parameter: str, target: str) -> str:
    """Render a command block; the inverse of scan() for a single token."""
    return f"{open_tag(action)}{parameter}{SEPARATOR}{target}{close_tag(action)}"


@dataclass(frozen=True)
class CommandToken:
    action: str
    parameter: str
    target: str
    raw_span: str


def may_contain_block(text: str) -> bool:
    """Prefix pre-check: False means text certainly holds no complete block."""
    return CLOSE_PREFIX in text and OPEN_PREFIX in text


def _find_close(text: str, action: str, start: int) -> re.Match | None:
    """Return the close tag balancing an open tag of action ending at start."""
    depth = 0
    for m in _TAG_RE.finditer(text, start):
        if m.group("action") != action:
            continue
        if not m.group("close"):
            depth += 1
        elif depth:
            depth -= 1
        else:
            return m
    return None


def scan(text: str, *, final: bool = False) -> list[CommandToken]:
    """Return every complete command block in text, in order of appearance.

    While a stream is still arriving, an opening tag without its close tag
    may yet be completed, so scanning stops there. With final=True such a
    tag is treated as plain text and scanning continues after it.
    """
    if not may_contain_block(text):
        return []

    tokens: list[CommandToken] = []
    pos = 0
    while (opening := _OPEN_RE.search(text, pos)) is not None:
        action = opening.group("action")
        closing = _find_close(text, action, opening.end())
        if closing is None:
            if not final:
                break
            pos = opening.end()
            continue
        pos = closing.end()

        # Targets are paths or short descriptions; content lives before
        # the last separator and may itself contain separators.
        parameter, sep, target = text[opening.end() : closing.start()].rpartition(
            SEPARATOR
        )
        parameter, target = parameter.strip(), target.strip()
        if not sep or not parameter or not target:
            continue
        tokens.append(
            CommandToken(
                action=action,
                parameter=parameter,
                target=target,
                raw_span=text[opening.start() : closing.end()],
            )
        )
    return tokens


def _inert(text: str) -> str:
    return text.replace("<|", "< |").replace("|>", "| >")


def format_result_marker(action: str, target: str, success: bool, message: str) -> str:
    """Build the single-line marker spliced back into the stream.

    Delimiters in the target or message are defused, so a marker can never
    be read back as a command block.
    """
    # Keep the marker on one line even when the message is multi-line stderr.
    if success:
        status = "SUCCESS"
    else:
        flat = " ".join(message.split()) if message else "unknown error"
        status = f"FAILED: {_inert(flat)}"
    return f"[EXECUTION_RESULT: {action.upper()} {_inert(target)} - {status}]"
