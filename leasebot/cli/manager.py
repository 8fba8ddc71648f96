from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path

from leasebot.config.io import default_program_config_path, load_program_config
from leasebot.core.orders import OrderStatus
from leasebot.daemon.main import build_marketplace_adapter, build_node_adapter
from leasebot.daemon.orchestrator import Orchestrator, StartupCheckError

_manager_logger = logging.getLogger("leasebot.manager")


def _validate(program_path: Path) -> int:
    try:
        program = load_program_config(program_path)
    except (OSError, ValueError) as exc:
        print(json.dumps({"ok": False, "program_config": str(program_path), "error": str(exc)}))
        return 2
    print(
        json.dumps(
            {
                "ok": True,
                "program_config": str(program_path),
                "min_fee_sat_per_vbyte": program.min_fee_sat_per_vbyte,
                "max_fee_sat_per_vbyte": program.max_fee_sat_per_vbyte,
                "period_seconds": program.period_seconds,
            }
        )
    )
    return 0


def _doctor(program_path: Path) -> int:
    try:
        program = load_program_config(program_path)
    except (OSError, ValueError) as exc:
        _manager_logger.warning("doctor_problems program_config_invalid:%s", exc)
        print(
            json.dumps(
                {
                    "ok": False,
                    "program_config": str(program_path),
                    "identity": {},
                    "warnings": [],
                    "problems": [f"program_config_invalid:{exc}"],
                }
            )
        )
        return 2

    problems: list[str] = []
    warnings: list[str] = []

    for label, path in (
        ("macaroon", program.node_macaroon_path),
        ("tls_cert", program.node_tls_cert_path),
        ("marketplace_token", program.marketplace_token_path),
    ):
        if not Path(path).expanduser().is_file():
            problems.append(f"missing_file:{label}:{path}")

    if program.pushover_enabled:
        for env_name in (program.pushover_user_key_env, program.pushover_app_token_env):
            if not os.getenv(env_name):
                warnings.append(f"missing_env:{env_name}")
    else:
        warnings.append("operator_alerts_log_only")

    if program.run_once:
        warnings.append("period_disabled:single_round")

    identity: dict[str, str] = {}
    if not problems:
        try:
            orchestrator = Orchestrator(
                program=program,
                node=build_node_adapter(program),
                marketplace=build_marketplace_adapter(program),
            )
            node_identity = orchestrator.run_startup_checks()
            identity = {"pubkey": node_identity.pubkey, "alias": node_identity.alias}
        except (OSError, ValueError, StartupCheckError) as exc:
            problems.append(f"startup_check_failed:{exc}")

    result = {
        "ok": len(problems) == 0,
        "program_config": str(program_path),
        "identity": identity,
        "warnings": warnings,
        "problems": problems,
    }
    if problems:
        _manager_logger.warning("doctor_problems %s", ",".join(problems))
    print(json.dumps(result))
    return 0 if not problems else 2


def _orders_status(program_path: Path) -> int:
    buckets: dict[str, object] = {}
    try:
        program = load_program_config(program_path)
        marketplace = build_marketplace_adapter(program)
        for status in (
            OrderStatus.WAITING_FOR_SELLER_APPROVAL,
            OrderStatus.WAITING_FOR_CHANNEL_OPEN,
        ):
            order = marketplace.get_order(status)
            buckets[status.value] = asdict(order) if order is not None else None
        finished = marketplace.get_finished_order()
    except (OSError, ValueError, RuntimeError) as exc:
        print(json.dumps({"ok": False, "program_config": str(program_path), "error": str(exc)}))
        return 2
    buckets["latest_finished"] = asdict(finished) if finished is not None else None
    print(json.dumps({"ok": True, "program_config": str(program_path), "orders": buckets}))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Liquidity lease manager CLI")
    parser.add_argument("--program-config", default=default_program_config_path())

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("config-validate")
    sub.add_parser("doctor")
    sub.add_parser("orders-status")

    args = parser.parse_args()
    program_path = Path(args.program_config)
    if args.command == "config-validate":
        code = _validate(program_path)
    elif args.command == "doctor":
        code = _doctor(program_path)
    elif args.command == "orders-status":
        code = _orders_status(program_path)
    else:
        raise ValueError(f"unsupported command: {args.command}")
    raise SystemExit(code)


if __name__ == "__main__":
    main()
