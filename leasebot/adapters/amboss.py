from __future__ import annotations

import json
import logging
import random
import re
import urllib.error
import urllib.request
from collections.abc import Callable
from typing import Any

from leasebot.core.orders import Order, OrderStatus

logger = logging.getLogger(__name__)

_CLEARNET_ADDR_RE = re.compile(r"^(?:[0-9]{1,3}\.){3}[0-9]{1,3}:[0-9]+$")
_ONION_ADDR_RE = re.compile(r"^[a-z0-9]+\.onion:[0-9]+$")

_NODE_QUERY = """
query GetNode($pubkey: String!) {
  getNode(pubkey: $pubkey) {
    graph_info {
      node {
        alias
        addresses {
          addr
        }
      }
    }
  }
}
"""

_OFFER_ORDERS_QUERY = """
query ListOfferOrders {
  getUser {
    market {
      offer_orders {
        list {
          id
          account
          size
          status
          seller_invoice_amount
          channel_point
          created_at
        }
      }
    }
  }
  getMempoolFees {
    hourFee
  }
}
"""

_ACCEPT_MUTATION = """
mutation SellerAcceptOrder($sellerAcceptOrderId: String!, $request: String!) {
  sellerAcceptOrder(id: $sellerAcceptOrderId, request: $request)
}
"""

_REJECT_MUTATION = """
mutation SellerRejectOrder($sellerRejectOrderId: String!) {
  sellerRejectOrder(id: $sellerRejectOrderId)
}
"""

_ADD_TRANSACTION_MUTATION = """
mutation SellerAddTransaction($sellerAddTransactionId: String!, $transaction: String!) {
  sellerAddTransaction(id: $sellerAddTransactionId, transaction: $transaction)
}
"""


def select_peer_address(addresses: list[str]) -> str:
    """Prefer the first clear-net ``ip:port``; otherwise the last onion address seen."""
    onion = ""
    for addr in addresses:
        candidate = str(addr).strip()
        if _CLEARNET_ADDR_RE.match(candidate):
            return candidate
        if _ONION_ADDR_RE.match(candidate):
            onion = candidate
    return onion


class AmbossAdapter:
    """Amboss Magma GraphQL adapter authenticated with a bearer API token."""

    def __init__(
        self,
        api_url: str,
        token: str,
        *,
        timeout_seconds: int = 30,
        shuffle: Callable[[list[Any]], None] | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._token = token.strip()
        self._timeout_seconds = timeout_seconds
        self._shuffle = shuffle or random.SystemRandom().shuffle

    def get_alias(self, pubkey: str) -> str:
        node = self._get_graph_node(pubkey)
        return str(node.get("alias") or "")

    def get_peer_address(self, pubkey: str) -> str:
        node = self._get_graph_node(pubkey)
        rows = node.get("addresses") or []
        addresses = [str(row.get("addr", "")) for row in rows if isinstance(row, dict)]
        return select_peer_address(addresses)

    def get_order(self, status: OrderStatus | str) -> Order | None:
        rows, fee_rate = self._list_offer_orders()
        # Random pick so one persistently failing order cannot block the rest of the bucket.
        self._shuffle(rows)
        for row in rows:
            if str(row.get("status", "")) == str(status):
                return _order_from_row(row, fee_rate=fee_rate)
        return None

    def get_finished_order(self) -> Order | None:
        rows, fee_rate = self._list_offer_orders()
        finished = [
            row
            for row in rows
            if str(row.get("status", "")) == OrderStatus.CHANNEL_MONITORING_FINISHED
            and str(row.get("channel_point") or "").strip()
        ]
        if not finished:
            return None
        latest = max(finished, key=lambda row: str(row.get("created_at") or ""))
        return _order_from_row(latest, fee_rate=fee_rate)

    def accept_order(self, order_id: str, payment_request: str) -> None:
        self._graphql(
            query=_ACCEPT_MUTATION,
            variables={"sellerAcceptOrderId": order_id, "request": payment_request},
        )

    def reject_order(self, order_id: str) -> None:
        self._graphql(query=_REJECT_MUTATION, variables={"sellerRejectOrderId": order_id})

    def notify_channel_point(self, order_id: str, channel_point: str) -> None:
        self._graphql(
            query=_ADD_TRANSACTION_MUTATION,
            variables={"sellerAddTransactionId": order_id, "transaction": channel_point},
        )

    def _get_graph_node(self, pubkey: str) -> dict[str, Any]:
        clean_pubkey = str(pubkey).strip()
        if not clean_pubkey:
            raise ValueError("pubkey is required")
        data = self._graphql(query=_NODE_QUERY, variables={"pubkey": clean_pubkey})
        node = ((data.get("getNode") or {}).get("graph_info") or {}).get("node") or {}
        if not isinstance(node, dict):
            return {}
        return node

    def _list_offer_orders(self) -> tuple[list[dict[str, Any]], int]:
        data = self._graphql(query=_OFFER_ORDERS_QUERY, variables={})
        market = (data.get("getUser") or {}).get("market") or {}
        rows = (market.get("offer_orders") or {}).get("list") or []
        fees = data.get("getMempoolFees") or {}
        try:
            fee_rate = int(float(fees.get("hourFee") or 0))
        except (TypeError, ValueError) as exc:
            raise RuntimeError(f"amboss_invalid_fee_estimate:{fees.get('hourFee')}") from exc
        return [row for row in rows if isinstance(row, dict)], fee_rate

    def _graphql(self, *, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps({"query": query, "variables": variables}, separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "leasebot/0.1",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        req = urllib.request.Request(
            self._api_url,
            data=body.encode("utf-8"),
            method="POST",
            headers=headers,
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_seconds) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace").strip()
            snippet = raw[:200] if raw else ""
            message = f"amboss_http_error:{exc.code}"
            if snippet:
                message = f"{message}:{snippet}"
            raise RuntimeError(message) from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"amboss_network_error:{exc.reason}") from exc
        except TimeoutError as exc:
            raise RuntimeError("amboss_network_error:timeout") from exc
        if not isinstance(payload, dict):
            raise RuntimeError("amboss_invalid_response")
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict):
                raise RuntimeError(f"amboss_graphql_error:{first.get('message', 'unknown')}")
            raise RuntimeError(f"amboss_graphql_error:{first}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise RuntimeError("amboss_missing_data")
        return data


def _order_from_row(row: dict[str, Any], *, fee_rate: int) -> Order:
    order_id = str(row.get("id", "")).strip()
    if not order_id:
        raise RuntimeError("amboss_order_missing_id")
    try:
        size = int(str(row.get("size", "")).strip())
    except ValueError as exc:
        raise RuntimeError(f"amboss_order_invalid_size:{order_id}:{row.get('size')}") from exc
    invoice_raw = row.get("seller_invoice_amount")
    try:
        invoice_amount = int(str(invoice_raw).strip()) if invoice_raw not in (None, "") else size
    except ValueError as exc:
        raise RuntimeError(
            f"amboss_order_invalid_invoice_amount:{order_id}:{invoice_raw}"
        ) from exc
    channel_point = str(row.get("channel_point") or "").strip() or None
    return Order(
        order_id=order_id,
        peer=str(row.get("account", "")).strip(),
        channel_size=size,
        invoice_amount=invoice_amount,
        fee_rate=fee_rate,
        status=str(row.get("status", "")),
        channel_point=channel_point,
    )
