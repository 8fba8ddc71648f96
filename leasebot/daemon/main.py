from __future__ import annotations

import argparse
import json
import logging
import os
import time
from collections.abc import Callable
from functools import partial
from pathlib import Path

from leasebot.adapters.amboss import AmbossAdapter
from leasebot.adapters.lnd import LndRestAdapter
from leasebot.config.io import (
    default_program_config_path,
    load_program_config,
    read_secret_file,
)
from leasebot.config.models import ProgramConfig
from leasebot.daemon.orchestrator import Orchestrator, StartupCheckError
from leasebot.logging_setup import initialize_service_logging
from leasebot.notify.pushover import send_pushover_alert

_DAEMON_SERVICE_NAME = "daemon"
_daemon_logger = logging.getLogger("leasebot.daemon")


def build_node_adapter(program: ProgramConfig) -> LndRestAdapter:
    return LndRestAdapter.from_files(
        program.node_rest_host,
        macaroon_path=program.node_macaroon_path,
        tls_cert_path=program.node_tls_cert_path,
        timeout_seconds=program.node_timeout_seconds,
    )


def build_marketplace_adapter(program: ProgramConfig) -> AmbossAdapter:
    return AmbossAdapter(
        program.marketplace_api_url,
        read_secret_file(program.marketplace_token_path),
        timeout_seconds=program.marketplace_timeout_seconds,
    )


def build_orchestrator(program: ProgramConfig) -> Orchestrator:
    return Orchestrator(
        program=program,
        node=build_node_adapter(program),
        marketplace=build_marketplace_adapter(program),
        alert_sink=partial(send_pushover_alert, program),
    )


def run_loop(
    orchestrator: Orchestrator,
    *,
    period_seconds: int,
    once: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    max_rounds: int | None = None,
) -> int:
    rounds = 0
    try:
        while True:
            result = orchestrator.run_round()
            rounds += 1
            print(json.dumps({"event": "round", "results": [r.as_dict() for r in result.results]}))
            if once or period_seconds <= 0:
                break
            if max_rounds is not None and rounds >= max_rounds:
                break
            sleep(period_seconds)
    except KeyboardInterrupt:
        _daemon_logger.info("daemon_interrupted rounds=%s", rounds)
    return 0


def _startup_failed(exc: Exception) -> int:
    _daemon_logger.error("daemon_startup_failed error=%s", exc)
    print(json.dumps({"event": "startup_failed", "error": str(exc)}))
    return 1


def run_daemon(*, program_path: Path, once: bool) -> int:
    try:
        program = load_program_config(program_path)
    except (OSError, ValueError) as exc:
        return _startup_failed(exc)
    initialize_service_logging(
        service_name=_DAEMON_SERVICE_NAME,
        home_dir=program.home_dir,
        log_level=program.app_log_level,
        logger=_daemon_logger,
    )
    mode = "once" if once or program.run_once else "loop"
    _daemon_logger.info(
        "daemon_starting mode=%s program_config=%s min_fee=%s max_fee=%s "
        "reject_on_failure=%s close_expired=%s",
        mode,
        os.fspath(program_path),
        program.min_fee_sat_per_vbyte,
        program.max_fee_sat_per_vbyte,
        program.reject_on_failure,
        program.close_expired,
    )
    try:
        orchestrator = build_orchestrator(program)
        orchestrator.run_startup_checks()
    except (OSError, ValueError, StartupCheckError) as exc:
        return _startup_failed(exc)
    exit_code = run_loop(orchestrator, period_seconds=program.period_seconds, once=once)
    _daemon_logger.info("daemon_stopped mode=%s exit_code=%s", mode, exit_code)
    return exit_code


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the liquidity lease daemon")
    parser.add_argument(
        "--program-config",
        default=default_program_config_path(),
        help="Path to program.yaml",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one reconciliation round and exit",
    )
    args = parser.parse_args()
    raise SystemExit(run_daemon(program_path=Path(args.program_config), once=bool(args.once)))


if __name__ == "__main__":
    main()
