"""Tests for the command-line entry point."""

import json
import sys
from unittest.mock import patch

import pytest

from unvibe import agent
from unvibe import session as session_mod
from unvibe.config import _UNSET
from unvibe.protocol import block
from unvibe.transport import StaticTransport


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr(session_mod, "estimate_tokens", lambda text: 1)
    return tmp_path


def _run_main(monkeypatch, argv, fragments):
    transport = StaticTransport(fragments)
    monkeypatch.setattr(sys, "argv", ["unvibe", *argv])
    with patch.object(agent, "Transport", return_value=transport):
        agent.main()
    return transport


class TestParser:
    def test_defaults_are_unset(self):
        args = agent.build_parser().parse_args([])
        assert args.instruction is None
        assert args.provider is _UNSET
        assert args.stream is _UNSET
        assert args.repl is False

    def test_flags(self):
        args = agent.build_parser().parse_args(
            ["--provider", "openai", "--no-stream", "--command-timeout", "5", "-q", "do it"]
        )
        assert args.provider == "openai"
        assert args.stream is False
        assert args.command_timeout == 5
        assert args.quiet is True
        assert args.instruction == "do it"

    def test_unknown_provider_rejected(self):
        with pytest.raises(SystemExit):
            agent.build_parser().parse_args(["--provider", "nope"])

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            agent.build_parser().parse_args(["--color", "--no-color"])


class TestMain:
    def test_one_shot(self, monkeypatch, isolated, capsys):
        _run_main(
            monkeypatch,
            ["-q", "make a folder"],
            ["Creating. ", block("create_folder", "d", "test"), " Done."],
        )
        assert (isolated / "test").is_dir()
        out = capsys.readouterr().out
        assert "Creating. " in out
        assert "[EXECUTION_RESULT: CREATE_FOLDER test - SUCCESS]" in out

    def test_verbose_diagnostics_on_stderr(self, monkeypatch, isolated, capsys):
        _run_main(monkeypatch, ["--no-color", "go"], [block("read", "d", "missing.txt")])
        captured = capsys.readouterr()
        assert "FAILED: File not found: missing.txt" in captured.out
        assert "Commands executed: 1" in captured.err

    def test_report(self, monkeypatch, isolated):
        path = isolated / "report.json"
        _run_main(
            monkeypatch,
            ["-q", "--report", str(path), "go"],
            [block("create_folder", "d", "x")],
        )
        data = json.loads(path.read_text())
        assert data["result"]["outcome"] == "success"
        assert data["provider"] == "ollama"
        assert data["stats"]["commands_total"] == 1

    def test_missing_api_key_exits(self, monkeypatch, capsys):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setattr(sys, "argv", ["unvibe", "--provider", "openai", "hi"])
        with pytest.raises(SystemExit) as exc:
            agent.main()
        assert exc.value.code == 1
        assert "OPENAI_API_KEY" in capsys.readouterr().err

    def test_init_config(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["unvibe", "--init-config"])
        with pytest.raises(SystemExit) as exc:
            agent.main()
        assert exc.value.code == 0
        assert "# provider" in capsys.readouterr().out

    def test_report_with_repl_rejected(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["unvibe", "--repl", "--report", "r.json"])
        with pytest.raises(SystemExit) as exc:
            agent.main()
        assert exc.value.code == 2

    def test_project_config_used(self, monkeypatch, isolated):
        (isolated / "unvibe.toml").write_text("history_size = 3\n")
        captured = {}

        real_session = agent.Session

        def spy(*args, **kwargs):
            s = real_session(*args, **kwargs)
            captured["session"] = s
            return s

        monkeypatch.setattr(agent, "Session", spy)
        _run_main(monkeypatch, ["-q", "go"], ["nothing"])
        assert captured["session"].store.max_actions == 3


class TestReplCommands:
    def test_clear(self, capsys):
        from unvibe.knowledge import KnowledgeStore

        store = KnowledgeStore()
        store.store_file("/p/a", "x")
        agent._repl_clear(store)
        assert store.summary()["files"] == 0
        err = " ".join(capsys.readouterr().err.split())
        assert "memory cleared (1 files" in err

    def test_memory_and_files(self, capsys):
        from unvibe.knowledge import KnowledgeStore

        store = KnowledgeStore()
        store.store_file("/p/a.txt", "abc")
        store.add_action("read", "/p/a.txt", {"success": True})
        agent._repl_memory(store)
        agent._repl_files(store)
        err = capsys.readouterr().err
        assert "Files stored: 1" in err
        assert "/p/a.txt (3 chars)" in err
