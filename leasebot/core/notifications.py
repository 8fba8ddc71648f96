from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OperatorAlert:
    order_id: str
    channel_point: str
    reason: str
    error: str


def build_unrecorded_channel_alert(*, order_id: str, channel_point: str, error: str) -> OperatorAlert:
    return OperatorAlert(
        order_id=order_id,
        channel_point=channel_point,
        reason="channel_point_notify_failed",
        error=error,
    )


def render_operator_alert_message(alert: OperatorAlert) -> str:
    return (
        f"[{alert.order_id}] Channel {alert.channel_point} is funded but the "
        f"marketplace has no record of it ({alert.reason}: {alert.error}). "
        "Report the channel point for this order manually."
    )
