from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class OrderStatus(StrEnum):
    WAITING_FOR_SELLER_APPROVAL = "WAITING_FOR_SELLER_APPROVAL"
    WAITING_FOR_CHANNEL_OPEN = "WAITING_FOR_CHANNEL_OPEN"
    CHANNEL_MONITORING_FINISHED = "CHANNEL_MONITORING_FINISHED"


@dataclass(frozen=True, slots=True)
class Order:
    order_id: str
    peer: str
    channel_size: int
    invoice_amount: int
    fee_rate: int
    status: str
    channel_point: str | None = None


def channel_point_from_txid_bytes(txid: bytes, output_index: int) -> str:
    """Render a funding outpoint as ``<txid>:<index>``.

    Nodes hand out transaction ids in internal byte order; the display form
    is the reversed bytes hex-encoded.
    """
    return f"{bytes(reversed(txid)).hex()}:{int(output_index)}"


def split_channel_point(channel_point: str) -> tuple[str, int]:
    txid, sep, index = str(channel_point).strip().partition(":")
    if not sep or not txid or not index:
        raise ValueError(f"invalid channel point: {channel_point!r}")
    try:
        output_index = int(index)
    except ValueError as exc:
        raise ValueError(f"invalid channel point output index: {channel_point!r}") from exc
    if output_index < 0:
        raise ValueError(f"invalid channel point output index: {channel_point!r}")
    return txid.lower(), output_index
