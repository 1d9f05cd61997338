"""Settings files for unvibe.

Two optional TOML files are read: the user's ``config.toml`` in the
global config directory and ``unvibe.toml`` in the working directory.
Values flow CLI flag > project file > global file > built-in default.
"""

import argparse
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from . import fmt
from .report import ConfigError

_UNSET = object()  # argparse default meaning "flag not given"

PROJECT_FILE = "unvibe.toml"
GLOBAL_FILE = "config.toml"


@dataclass(frozen=True)
class Setting:
    types: tuple[type, ...]
    default: object = None
    minimum: int | None = None


SETTINGS: dict[str, Setting] = {
    "provider": Setting((str,), "ollama"),
    "model": Setting((str,)),
    "api_key": Setting((str,)),
    "base_url": Setting((str,)),
    "temperature": Setting((int, float)),
    "max_output_tokens": Setting((int,), minimum=1),
    "stream": Setting((bool,)),
    "command_timeout": Setting((int,), 600, minimum=1),
    "history_size": Setting((int,), 50, minimum=1),
    "color": Setting((bool,)),
    "quiet": Setting((bool,), False),
}


def global_config_dir() -> Path:
    """Directory holding the global config and REPL history."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "unvibe"


def _check_value(source: str, key: str, value) -> None:
    setting = SETTINGS[key]
    names = " or ".join(t.__name__ for t in setting.types)
    # TOML booleans are ints to Python; only accept them for bool settings.
    is_bool = isinstance(value, bool)
    if (is_bool and bool not in setting.types) or not isinstance(value, setting.types):
        raise ConfigError(
            f"{source}: {key!r} expected {names}, got {type(value).__name__}"
        )
    if setting.minimum is not None and value < setting.minimum:
        raise ConfigError(f"{source}: {key!r} must be at least {setting.minimum}")


def _inside_git_checkout(path: Path) -> bool:
    return any((parent / ".git").exists() for parent in path.parents)


def _read_file(path: Path) -> dict:
    """Parse and check one settings file; a missing file is an empty dict."""
    if not path.is_file():
        return {}
    source = str(path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{source}: invalid TOML: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"{source}: cannot read file: {e}") from e

    settings = {}
    for key, value in data.items():
        if key not in SETTINGS:
            fmt.warning(f"{source}: unknown config key {key!r}")
            continue
        _check_value(source, key, value)
        settings[key] = value
    return settings


def load_config(base_dir) -> dict:
    """Merge the global file and the project file under base_dir.

    Only keys present in a file appear in the result.
    """
    merged = _read_file(global_config_dir() / GLOBAL_FILE)

    project_path = Path(base_dir).resolve() / PROJECT_FILE
    project = _read_file(project_path)
    if "api_key" in project and _inside_git_checkout(project_path):
        fmt.warning(
            f"{project_path}: 'api_key' in a git-tracked project config "
            "may be committed accidentally. Consider using an environment variable."
        )
    merged.update(project)
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Fill every argument still at _UNSET from config, then from defaults."""

    def unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # --color / --no-color share the single "color" key; absent means auto.
    if unset("color") and unset("no_color") and "color" in config:
        args.color = config["color"]
        args.no_color = not config["color"]
    if unset("color"):
        args.color = False
    if unset("no_color"):
        args.no_color = False

    for key, setting in SETTINGS.items():
        if key == "color" or not unset(key):
            continue
        setattr(args, key, config.get(key, setting.default))


def generate_config(project: bool = False) -> str:
    """Commented-out template for ``--init-config``."""
    where = f"<project>/{PROJECT_FILE}" if project else f"~/.config/unvibe/{GLOBAL_FILE}"
    return f"""\
# Unvibe {"project" if project else "global"} configuration: {where}
#
# Command-line flags take precedence. Uncomment only what you need.

# Model provider: "ollama", "openai", "mistral", "claude" or "gemini"
# provider = "ollama"
# model = "qwen2.5-coder:7b"
# api_key = "sk-..."             # the provider's env var is usually better
# base_url = "http://localhost:11434"

# temperature = 0.3
# max_output_tokens = 4096
# stream = true                  # leave unset for the provider's default

# command_timeout = 600          # seconds per terminal command
# history_size = 50              # action log entries kept in memory

# color = true                   # unset means auto-detect
# quiet = false
"""
