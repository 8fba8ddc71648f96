from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class FeeMode(StrEnum):
    # Accepting an order: wait out expensive markets, never raise the rate.
    ACCEPT = "accept"
    # Opening a channel: funds are committed, so floor at min but still cap at max.
    OPEN = "open"


@dataclass(frozen=True, slots=True)
class FeeDecision:
    allowed: bool
    effective_rate: int | None
    requested_rate: int
    reason: str


def clamp_or_reject(
    rate: int,
    *,
    min_fee: int,
    max_fee: int,
    mode: FeeMode,
) -> FeeDecision:
    requested = int(rate)
    if requested > max_fee:
        return FeeDecision(
            allowed=False,
            effective_rate=None,
            requested_rate=requested,
            reason="fee_above_max",
        )
    if mode == FeeMode.OPEN and requested < min_fee:
        return FeeDecision(
            allowed=True,
            effective_rate=min_fee,
            requested_rate=requested,
            reason="fee_raised_to_min",
        )
    return FeeDecision(
        allowed=True,
        effective_rate=requested,
        requested_rate=requested,
        reason="fee_within_bounds",
    )
