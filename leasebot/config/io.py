from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from leasebot.config.models import ProgramConfig, parse_program_config

_config_logger = logging.getLogger("leasebot.config")


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML file must parse to a mapping: {path}")
    return data


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)


def load_program_config(path: Path) -> ProgramConfig:
    raw = load_yaml(path)
    config = parse_program_config(raw)
    if config.app_log_level_was_missing:
        app = raw.get("app")
        if isinstance(app, dict):
            app["log_level"] = config.app_log_level
            write_yaml(path, raw)
            _config_logger.warning(
                "program config missing app.log_level; wrote default %s to %s",
                config.app_log_level,
                path,
            )
    return config


def read_secret_file(path: str) -> str:
    """Read a credential file that holds a single plaintext value."""
    value = Path(path).expanduser().read_text(encoding="utf-8").strip()
    if not value:
        raise ValueError(f"credential file is empty: {path}")
    return value


def default_program_config_path() -> str:
    home_default = Path("~/.leasebot/config/program.yaml").expanduser()
    if home_default.exists():
        return str(home_default)
    return "config/program.yaml"
