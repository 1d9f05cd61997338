"""Tests for unvibe.config: TOML config file loading, merging, and CLI integration."""

import argparse
import tomllib

import pytest

from unvibe.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "provider": _UNSET,
        "model": _UNSET,
        "api_key": _UNSET,
        "base_url": _UNSET,
        "temperature": _UNSET,
        "max_output_tokens": _UNSET,
        "stream": _UNSET,
        "command_timeout": _UNSET,
        "history_size": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "quiet": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    return home


@pytest.fixture
def project(tmp_path):
    d = tmp_path / "project"
    d.mkdir()
    return d


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_no_files(self, xdg, project):
        assert load_config(project) == {}

    def test_global_dir_respects_xdg(self, xdg):
        assert global_config_dir() == xdg / "unvibe"

    def test_project_overrides_global(self, xdg, project):
        _write_toml(xdg / "unvibe" / "config.toml", 'provider = "openai"\nmodel = "gpt-4o"\n')
        _write_toml(project / "unvibe.toml", 'model = "gpt-4o-mini"\n')
        assert load_config(project) == {"provider": "openai", "model": "gpt-4o-mini"}

    def test_invalid_toml(self, xdg, project):
        _write_toml(project / "unvibe.toml", "provider = \n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(project)

    def test_wrong_type(self, xdg, project):
        _write_toml(project / "unvibe.toml", 'command_timeout = "long"\n')
        with pytest.raises(ConfigError, match="command_timeout"):
            load_config(project)

    def test_bool_rejected_for_number(self, xdg, project):
        _write_toml(project / "unvibe.toml", "history_size = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(project)

    def test_out_of_range(self, xdg, project):
        _write_toml(project / "unvibe.toml", "history_size = 0\n")
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(project)

    def test_unknown_key_warns_and_is_dropped(self, xdg, project, capsys):
        _write_toml(project / "unvibe.toml", 'colour = true\nmodel = "m"\n')
        assert load_config(project) == {"model": "m"}
        err = " ".join(capsys.readouterr().err.split())
        assert "unknown config key 'colour'" in err

    def test_api_key_in_git_project_warns(self, xdg, project, capsys):
        (project / ".git").mkdir()
        _write_toml(project / "unvibe.toml", 'api_key = "sk-x"\n')
        load_config(project)
        assert "git-tracked" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Applying to argparse
# ---------------------------------------------------------------------------


class TestApplyConfig:
    def test_defaults_fill_unset(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.provider == "ollama"
        assert args.model is None
        assert args.command_timeout == 600
        assert args.history_size == 50
        assert args.quiet is False
        assert args.color is False and args.no_color is False

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"provider": "mistral", "command_timeout": 30})
        assert args.provider == "mistral"
        assert args.command_timeout == 30

    def test_cli_wins(self):
        args = _make_args(provider="openai")
        apply_config_to_args(args, {"provider": "mistral"})
        assert args.provider == "openai"

    def test_color_key_maps_to_pair(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_cli_color_flag_beats_config(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False


class TestGenerateConfig:
    @pytest.mark.parametrize("project", [False, True])
    def test_template_is_valid_toml(self, project):
        text = generate_config(project=project)
        assert tomllib.loads(text) == {}
        assert "command_timeout" in text
        assert ("unvibe.toml" in text) is project
