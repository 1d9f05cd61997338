"""Error types and JSON run reports."""

import json
from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the turn driver or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (unknown provider, bad API key, etc.)."""


class TransportError(AgentError):
    """Raised when the model call fails; aborts the current turn."""


class ReportCollector:
    """Accumulates events during a run for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.action_stats: dict[str, dict[str, int]] = {}
        self.llm_calls = 0
        self.total_llm_time = 0.0
        self.total_action_time = 0.0
        self.turns = 0
        self._last_report: dict | None = None

    def record_llm_call(
        self,
        turn: int,
        duration: float,
        token_est: int,
        fragments: int,
        *,
        error: str | None = None,
    ):
        self.llm_calls += 1
        self.total_llm_time += duration
        if turn > self.turns:
            self.turns = turn
        event = {
            "turn": turn,
            "type": "llm_call",
            "duration_s": round(duration, 3),
            "prompt_tokens_est": token_est,
            "fragments": fragments,
        }
        if error is not None:
            event["error"] = error
        self.events.append(event)

    def record_command(
        self,
        turn: int,
        action: str,
        target: str,
        succeeded: bool,
        duration: float,
        message: str | None = None,
    ):
        self.total_action_time += duration
        stats = self.action_stats.setdefault(action, {"succeeded": 0, "failed": 0})
        if succeeded:
            stats["succeeded"] += 1
        else:
            stats["failed"] += 1
        event: dict = {
            "turn": turn,
            "type": "command",
            "action": action,
            "target": target,
            "succeeded": succeeded,
            "duration_s": round(duration, 3),
        }
        if not succeeded and message is not None:
            event["error"] = message
        self.events.append(event)

    def build_report(
        self,
        *,
        task: str,
        model: str,
        provider: str,
        settings: dict,
        outcome: str,
        transcript: str | None,
        exit_code: int,
        error_message: str | None = None,
    ) -> dict:
        succeeded = sum(s["succeeded"] for s in self.action_stats.values())
        failed = sum(s["failed"] for s in self.action_stats.values())

        result: dict = {
            "outcome": outcome,
            "transcript": transcript,
            "exit_code": exit_code,
        }
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": model,
            "provider": provider,
            "settings": settings,
            "result": result,
            "stats": {
                "turns": self.turns,
                "commands_total": succeeded + failed,
                "commands_succeeded": succeeded,
                "commands_failed": failed,
                "commands_by_action": dict(self.action_stats),
                "llm_calls": self.llm_calls,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "total_action_time_s": round(self.total_action_time, 3),
            },
            "timeline": self.events,
        }

    def finalize(self, **kwargs) -> dict:
        """Build the report and keep it for write()."""
        self._last_report = self.build_report(**kwargs)
        return self._last_report

    def write(self, path: str):
        if self._last_report is None:
            raise AgentError("report has not been finalized")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._last_report, f, indent=2)
            f.write("\n")
