from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from leasebot.config.io import load_program_config, read_secret_file
from leasebot.config.models import parse_program_config

_EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "program.yaml"


def _raw() -> dict:
    with _EXAMPLE_CONFIG.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def test_load_example_program_config() -> None:
    cfg = load_program_config(_EXAMPLE_CONFIG)
    assert cfg.app_log_level == "INFO"
    assert cfg.min_fee_sat_per_vbyte == 2
    assert cfg.max_fee_sat_per_vbyte == 10
    assert cfg.period_seconds == 300
    assert cfg.reject_on_failure is False
    assert cfg.close_expired is False
    assert cfg.marketplace_api_url == "https://api.amboss.space/graphql"
    assert cfg.run_once is False


def test_missing_required_field_is_reported() -> None:
    raw = _raw()
    del raw["node"]["macaroon_path"]
    with pytest.raises(ValueError, match="Missing required field: macaroon_path"):
        parse_program_config(raw)


def test_fee_bounds_are_validated() -> None:
    raw = _raw()
    raw["fees"]["max_sat_per_vbyte"] = 1
    with pytest.raises(ValueError, match="max_sat_per_vbyte"):
        parse_program_config(raw)

    raw = _raw()
    raw["fees"]["min_sat_per_vbyte"] = 0
    with pytest.raises(ValueError, match="min_sat_per_vbyte"):
        parse_program_config(raw)


def test_non_positive_period_means_single_round() -> None:
    raw = _raw()
    raw["runtime"]["period_seconds"] = 0
    assert parse_program_config(raw).run_once is True


def test_optional_runtime_fields_default() -> None:
    raw = _raw()
    for key in (
        "reject_on_failure",
        "close_expired",
        "invoice_expiry_seconds",
        "channel_point_notify_delay_seconds",
    ):
        raw["runtime"].pop(key)
    raw.pop("notifications")
    cfg = parse_program_config(raw)
    assert cfg.invoice_expiry_seconds == 180000
    assert cfg.channel_point_notify_delay_seconds == 10
    assert cfg.pushover_enabled is False


def test_invalid_log_level_rejected() -> None:
    raw = _raw()
    raw["app"]["log_level"] = "VERBOSE"
    with pytest.raises(ValueError, match="app.log_level"):
        parse_program_config(raw)


def test_missing_log_level_is_written_back(tmp_path: Path) -> None:
    raw = _raw()
    raw["app"].pop("log_level")
    path = tmp_path / "program.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    cfg = load_program_config(path)
    assert cfg.app_log_level == "INFO"
    assert cfg.app_log_level_was_missing is True
    healed = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert healed["app"]["log_level"] == "INFO"


def test_read_secret_file_strips(tmp_path: Path) -> None:
    path = tmp_path / "api.key"
    path.write_text("  token-abc\n", encoding="utf-8")
    assert read_secret_file(str(path)) == "token-abc"


def test_read_secret_file_rejects_empty(tmp_path: Path) -> None:
    path = tmp_path / "api.key"
    path.write_text("\n", encoding="utf-8")
    with pytest.raises(ValueError, match="empty"):
        read_secret_file(str(path))
