from __future__ import annotations

import json
from pathlib import Path

import yaml

from leasebot.cli.manager import _doctor, _orders_status, _validate

_EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "program.yaml"


def test_config_validate_ok(capsys) -> None:
    assert _validate(_EXAMPLE_CONFIG) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["max_fee_sat_per_vbyte"] == 10


def test_config_validate_reports_error(tmp_path, capsys) -> None:
    path = tmp_path / "program.yaml"
    path.write_text("app: {}\n", encoding="utf-8")
    assert _validate(path) == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert "Missing required field" in out["error"]


def test_doctor_reports_missing_credentials(tmp_path, capsys) -> None:
    raw = yaml.safe_load(_EXAMPLE_CONFIG.read_text(encoding="utf-8"))
    raw["node"]["macaroon_path"] = str(tmp_path / "nope.macaroon")
    raw["node"]["tls_cert_path"] = str(tmp_path / "nope.cert")
    raw["marketplace"]["token_path"] = str(tmp_path / "nope.key")
    path = tmp_path / "program.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    assert _doctor(path) == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert any(p.startswith("missing_file:macaroon:") for p in out["problems"])
    assert "operator_alerts_log_only" in out["warnings"]


def test_doctor_reports_invalid_config(tmp_path, capsys) -> None:
    path = tmp_path / "program.yaml"
    path.write_text("app: {}\n", encoding="utf-8")
    assert _doctor(path) == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert out["problems"][0].startswith("program_config_invalid:")


def test_orders_status_reports_missing_config(tmp_path, capsys) -> None:
    assert _orders_status(tmp_path / "absent.yaml") == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert out["error"]
