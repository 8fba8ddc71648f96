from __future__ import annotations

import json
from pathlib import Path
from typing import Any, cast

import pytest
import yaml

import leasebot.daemon.main as daemon_main
from leasebot.core.outcomes import RoundResult, Workflow, WorkflowOutcome, WorkflowResult
from leasebot.daemon.orchestrator import StartupCheckError
from tests.logging_helpers import reset_service_logging

_EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "program.yaml"


def _idle_round() -> RoundResult:
    return RoundResult(
        accept=WorkflowResult(workflow=Workflow.ACCEPT, outcome=WorkflowOutcome.IDLE),
        open=WorkflowResult(workflow=Workflow.OPEN, outcome=WorkflowOutcome.IDLE),
    )


class _FakeOrchestrator:
    def __init__(self, *, startup_error: Exception | None = None) -> None:
        self.rounds = 0
        self.startup_checks = 0
        self.startup_error = startup_error

    def run_startup_checks(self):
        self.startup_checks += 1
        if self.startup_error is not None:
            raise self.startup_error
        return None

    def run_round(self) -> RoundResult:
        self.rounds += 1
        return _idle_round()


def _write_config(tmp_path: Path, *, period_seconds: int) -> Path:
    with _EXAMPLE_CONFIG.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    raw["app"]["home_dir"] = str(tmp_path / "home")
    raw["runtime"]["period_seconds"] = period_seconds
    path = tmp_path / "program.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_service_logging("daemon")


def test_run_loop_single_round_when_period_disabled(capsys) -> None:
    orchestrator = _FakeOrchestrator()
    sleeps: list[float] = []
    code = daemon_main.run_loop(
        cast(Any, orchestrator), period_seconds=0, sleep=sleeps.append
    )
    assert code == 0
    assert orchestrator.rounds == 1
    assert sleeps == []
    line = json.loads(capsys.readouterr().out.strip())
    assert line["event"] == "round"
    assert [r["workflow"] for r in line["results"]] == ["accept", "open"]


def test_run_loop_sleeps_fixed_period_between_rounds() -> None:
    orchestrator = _FakeOrchestrator()
    sleeps: list[float] = []
    daemon_main.run_loop(
        cast(Any, orchestrator), period_seconds=45, sleep=sleeps.append, max_rounds=3
    )
    assert orchestrator.rounds == 3
    assert sleeps == [45, 45]


def test_run_loop_once_flag_overrides_period() -> None:
    orchestrator = _FakeOrchestrator()
    daemon_main.run_loop(cast(Any, orchestrator), period_seconds=45, once=True)
    assert orchestrator.rounds == 1


def test_run_daemon_runs_checks_then_rounds(tmp_path, monkeypatch) -> None:
    orchestrator = _FakeOrchestrator()
    monkeypatch.setattr(daemon_main, "build_orchestrator", lambda program: orchestrator)
    path = _write_config(tmp_path, period_seconds=0)
    code = daemon_main.run_daemon(program_path=path, once=False)
    assert code == 0
    assert orchestrator.startup_checks == 1
    assert orchestrator.rounds == 1
    assert (tmp_path / "home" / "logs" / "debug.log").exists()


def test_run_daemon_startup_failure_is_fatal(tmp_path, monkeypatch, capsys) -> None:
    orchestrator = _FakeOrchestrator(startup_error=StartupCheckError("alias_mismatch:a:b"))
    monkeypatch.setattr(daemon_main, "build_orchestrator", lambda program: orchestrator)
    path = _write_config(tmp_path, period_seconds=60)
    code = daemon_main.run_daemon(program_path=path, once=False)
    assert code == 1
    assert orchestrator.rounds == 0
    out = json.loads(capsys.readouterr().out.strip())
    assert out["event"] == "startup_failed"
    assert "alias_mismatch" in out["error"]


def test_run_daemon_unreadable_credentials_are_fatal(tmp_path) -> None:
    path = _write_config(tmp_path, period_seconds=0)
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    raw["node"]["macaroon_path"] = str(tmp_path / "missing.macaroon")
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    assert daemon_main.run_daemon(program_path=path, once=True) == 1


def test_run_daemon_invalid_config_is_fatal(tmp_path, capsys) -> None:
    path = tmp_path / "program.yaml"
    path.write_text("app: {}\n", encoding="utf-8")
    assert daemon_main.run_daemon(program_path=path, once=True) == 1
    out = json.loads(capsys.readouterr().out.strip())
    assert out["event"] == "startup_failed"
    assert "Missing required field" in out["error"]


def test_run_daemon_missing_config_is_fatal(tmp_path, capsys) -> None:
    code = daemon_main.run_daemon(program_path=tmp_path / "absent.yaml", once=True)
    assert code == 1
    out = json.loads(capsys.readouterr().out.strip())
    assert out["event"] == "startup_failed"
