from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from leasebot.logging_setup import ALLOWED_LOG_LEVELS, DEFAULT_LOG_LEVEL_NAME

DEFAULT_MARKETPLACE_API_URL = "https://api.amboss.space/graphql"
DEFAULT_NODE_TIMEOUT_SECONDS = 50
DEFAULT_MARKETPLACE_TIMEOUT_SECONDS = 30
DEFAULT_INVOICE_EXPIRY_SECONDS = 180_000
DEFAULT_CHANNEL_POINT_NOTIFY_DELAY_SECONDS = 10


@dataclass(frozen=True, slots=True)
class ProgramConfig:
    home_dir: str
    app_log_level: str
    node_rest_host: str
    node_macaroon_path: str
    node_tls_cert_path: str
    node_timeout_seconds: int
    marketplace_api_url: str
    marketplace_token_path: str
    marketplace_timeout_seconds: int
    min_fee_sat_per_vbyte: int
    max_fee_sat_per_vbyte: int
    period_seconds: int
    reject_on_failure: bool
    close_expired: bool
    invoice_expiry_seconds: int
    channel_point_notify_delay_seconds: int
    pushover_enabled: bool
    pushover_user_key_env: str
    pushover_app_token_env: str
    app_log_level_was_missing: bool = False

    @property
    def run_once(self) -> bool:
        return self.period_seconds <= 0


def _req(mapping: dict[str, Any], key: str) -> Any:
    if key not in mapping:
        raise ValueError(f"Missing required field: {key}")
    return mapping[key]


def _section(raw: dict[str, Any], key: str, *, required: bool = True) -> dict[str, Any]:
    value = _req(raw, key) if required else raw.get(key, {})
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


def _int_field(mapping: dict[str, Any], key: str, *, section: str, default: int | None = None) -> int:
    raw = _req(mapping, key) if default is None else mapping.get(key, default)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{section}.{key} must be an integer") from exc


def _non_empty_str(mapping: dict[str, Any], key: str, *, section: str) -> str:
    value = str(_req(mapping, key)).strip()
    if not value:
        raise ValueError(f"{section}.{key} must be non-empty")
    return value


def _validate_fee_bounds(min_fee: int, max_fee: int) -> None:
    if min_fee < 1:
        raise ValueError("fees.min_sat_per_vbyte must be >= 1")
    if max_fee < min_fee:
        raise ValueError("fees.max_sat_per_vbyte must be >= fees.min_sat_per_vbyte")


def parse_program_config(raw: dict[str, Any]) -> ProgramConfig:
    app = _section(raw, "app")
    node = _section(raw, "node")
    marketplace = _section(raw, "marketplace")
    fees = _section(raw, "fees")
    runtime = _section(raw, "runtime")
    notifications = _section(raw, "notifications", required=False)
    pushover = notifications.get("pushover") or {}
    if not isinstance(pushover, dict):
        raise ValueError("notifications.pushover must be a mapping")

    log_level_raw = app.get("log_level")
    log_level_was_missing = log_level_raw is None or not str(log_level_raw).strip()
    log_level = DEFAULT_LOG_LEVEL_NAME if log_level_was_missing else str(log_level_raw).strip().upper()
    if log_level not in ALLOWED_LOG_LEVELS:
        raise ValueError(f"app.log_level must be one of: {', '.join(sorted(ALLOWED_LOG_LEVELS))}")

    min_fee = _int_field(fees, "min_sat_per_vbyte", section="fees")
    max_fee = _int_field(fees, "max_sat_per_vbyte", section="fees")
    _validate_fee_bounds(min_fee, max_fee)

    invoice_expiry = _int_field(
        runtime, "invoice_expiry_seconds", section="runtime", default=DEFAULT_INVOICE_EXPIRY_SECONDS
    )
    if invoice_expiry <= 0:
        raise ValueError("runtime.invoice_expiry_seconds must be > 0")
    notify_delay = _int_field(
        runtime,
        "channel_point_notify_delay_seconds",
        section="runtime",
        default=DEFAULT_CHANNEL_POINT_NOTIFY_DELAY_SECONDS,
    )
    if notify_delay < 0:
        raise ValueError("runtime.channel_point_notify_delay_seconds must be >= 0")

    node_timeout = _int_field(
        node, "timeout_seconds", section="node", default=DEFAULT_NODE_TIMEOUT_SECONDS
    )
    marketplace_timeout = _int_field(
        marketplace,
        "timeout_seconds",
        section="marketplace",
        default=DEFAULT_MARKETPLACE_TIMEOUT_SECONDS,
    )
    if node_timeout <= 0 or marketplace_timeout <= 0:
        raise ValueError("timeout_seconds must be > 0")

    api_url = str(marketplace.get("api_url") or DEFAULT_MARKETPLACE_API_URL).strip()
    if not api_url.startswith(("http://", "https://")):
        raise ValueError("marketplace.api_url must be an http(s) URL")

    return ProgramConfig(
        home_dir=_non_empty_str(app, "home_dir", section="app"),
        app_log_level=log_level,
        node_rest_host=_non_empty_str(node, "rest_host", section="node"),
        node_macaroon_path=_non_empty_str(node, "macaroon_path", section="node"),
        node_tls_cert_path=_non_empty_str(node, "tls_cert_path", section="node"),
        node_timeout_seconds=node_timeout,
        marketplace_api_url=api_url,
        marketplace_token_path=_non_empty_str(marketplace, "token_path", section="marketplace"),
        marketplace_timeout_seconds=marketplace_timeout,
        min_fee_sat_per_vbyte=min_fee,
        max_fee_sat_per_vbyte=max_fee,
        period_seconds=_int_field(runtime, "period_seconds", section="runtime"),
        reject_on_failure=bool(runtime.get("reject_on_failure", False)),
        close_expired=bool(runtime.get("close_expired", False)),
        invoice_expiry_seconds=invoice_expiry,
        channel_point_notify_delay_seconds=notify_delay,
        pushover_enabled=bool(pushover.get("enabled", False)),
        pushover_user_key_env=str(pushover.get("user_key_env", "PUSHOVER_USER_KEY")),
        pushover_app_token_env=str(pushover.get("app_token_env", "PUSHOVER_APP_TOKEN")),
        app_log_level_was_missing=log_level_was_missing,
    )
