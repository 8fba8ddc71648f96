from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from leasebot.adapters.amboss import AmbossAdapter
from leasebot.adapters.lnd import LndRestAdapter, NodeIdentity
from leasebot.config.models import ProgramConfig
from leasebot.core.fee_policy import FeeMode, clamp_or_reject
from leasebot.core.notifications import OperatorAlert, build_unrecorded_channel_alert
from leasebot.core.orders import Order, OrderStatus
from leasebot.core.outcomes import RoundResult, Workflow, WorkflowOutcome, WorkflowResult

_logger = logging.getLogger("leasebot.orchestrator")


class StartupCheckError(RuntimeError):
    pass


def invoice_memo(order_id: str) -> str:
    return f"Magma channel lease order {order_id}"


class Orchestrator:
    """Drives marketplace orders through the node, one order per bucket per round.

    The marketplace is the only record of order state: nothing is carried
    between rounds, and every round starts by re-fetching each bucket.
    """

    def __init__(
        self,
        *,
        program: ProgramConfig,
        node: LndRestAdapter,
        marketplace: AmbossAdapter,
        sleep: Callable[[float], None] = time.sleep,
        alert_sink: Callable[[OperatorAlert], Any] | None = None,
    ) -> None:
        self._program = program
        self._node = node
        self._marketplace = marketplace
        self._sleep = sleep
        self._alert_sink = alert_sink

    def run_startup_checks(self) -> NodeIdentity:
        try:
            identity = self._node.get_identity()
        except Exception as exc:
            raise StartupCheckError(f"node_identity_failed:{exc}") from exc
        try:
            marketplace_alias = self._marketplace.get_alias(identity.pubkey)
        except Exception as exc:
            raise StartupCheckError(f"marketplace_alias_failed:{exc}") from exc
        if marketplace_alias != identity.alias:
            raise StartupCheckError(
                f"alias_mismatch:node={identity.alias!r}:marketplace={marketplace_alias!r}"
            )
        try:
            self._marketplace.get_order(OrderStatus.WAITING_FOR_SELLER_APPROVAL)
        except Exception as exc:
            raise StartupCheckError(f"marketplace_auth_failed:{exc}") from exc
        _logger.info("startup_checks_passed pubkey=%s alias=%s", identity.pubkey, identity.alias)
        return identity

    def run_round(self) -> RoundResult:
        accept = self.accept_pending_order()
        opened = self.open_approved_channel()
        cleanup = self.close_expired_channel() if self._program.close_expired else None
        result = RoundResult(accept=accept, open=opened, cleanup=cleanup)
        _logger.info(
            "round_complete %s",
            " ".join(f"{r.workflow}={r.outcome}" for r in result.results),
        )
        return result

    def accept_pending_order(self) -> WorkflowResult:
        try:
            order = self._marketplace.get_order(OrderStatus.WAITING_FOR_SELLER_APPROVAL)
        except Exception as exc:
            _logger.warning("accept_fetch_failed error=%s", exc)
            return _result(
                Workflow.ACCEPT,
                WorkflowOutcome.ABORTED_RETRYABLE,
                None,
                "marketplace_fetch_failed",
                error=str(exc),
            )
        if order is None:
            return _result(Workflow.ACCEPT, WorkflowOutcome.IDLE, None, "no_order")

        _logger.info(
            "accept_order_observed order_id=%s peer=%s size=%s invoice_amount=%s fee_rate=%s",
            order.order_id,
            order.peer,
            order.channel_size,
            order.invoice_amount,
            order.fee_rate,
        )
        fee = clamp_or_reject(
            order.fee_rate,
            min_fee=self._program.min_fee_sat_per_vbyte,
            max_fee=self._program.max_fee_sat_per_vbyte,
            mode=FeeMode.ACCEPT,
        )
        if not fee.allowed:
            _logger.info(
                "accept_deferred order_id=%s fee_rate=%s max_fee=%s",
                order.order_id,
                order.fee_rate,
                self._program.max_fee_sat_per_vbyte,
            )
            return _result(
                Workflow.ACCEPT,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                fee.reason,
                fee_rate=order.fee_rate,
            )

        try:
            address = self._marketplace.get_peer_address(order.peer)
        except Exception as exc:
            return self._apply_reject_policy(order, "peer_address_lookup_failed", error=str(exc))
        if not address:
            return self._apply_reject_policy(order, "peer_address_unknown")

        try:
            self._node.connect(order.peer, address)
        except Exception as exc:
            return self._apply_reject_policy(
                order, "peer_connect_failed", address=address, error=str(exc)
            )

        try:
            funds = self._node.available_funds()
        except Exception as exc:
            return self._apply_reject_policy(order, "wallet_balance_failed", error=str(exc))
        if funds < order.channel_size:
            return self._apply_reject_policy(
                order, "insufficient_funds", available=funds, required=order.channel_size
            )

        try:
            payment_request = self._node.create_invoice(
                order.invoice_amount,
                self._program.invoice_expiry_seconds,
                invoice_memo(order.order_id),
            )
        except Exception as exc:
            return self._apply_reject_policy(order, "invoice_failed", error=str(exc))

        try:
            self._marketplace.accept_order(order.order_id, payment_request)
        except Exception as exc:
            return self._apply_reject_policy(order, "accept_failed", error=str(exc))

        _logger.info("order_accepted order_id=%s amount=%s", order.order_id, order.invoice_amount)
        return _result(
            Workflow.ACCEPT,
            WorkflowOutcome.COMPLETED,
            order.order_id,
            "order_accepted",
            payment_request=payment_request,
        )

    def open_approved_channel(self) -> WorkflowResult:
        try:
            order = self._marketplace.get_order(OrderStatus.WAITING_FOR_CHANNEL_OPEN)
        except Exception as exc:
            _logger.warning("open_fetch_failed error=%s", exc)
            return _result(
                Workflow.OPEN,
                WorkflowOutcome.ABORTED_RETRYABLE,
                None,
                "marketplace_fetch_failed",
                error=str(exc),
            )
        if order is None:
            return _result(Workflow.OPEN, WorkflowOutcome.IDLE, None, "no_order")

        fee = clamp_or_reject(
            order.fee_rate,
            min_fee=self._program.min_fee_sat_per_vbyte,
            max_fee=self._program.max_fee_sat_per_vbyte,
            mode=FeeMode.OPEN,
        )
        if not fee.allowed or fee.effective_rate is None:
            _logger.info(
                "open_deferred order_id=%s fee_rate=%s max_fee=%s",
                order.order_id,
                order.fee_rate,
                self._program.max_fee_sat_per_vbyte,
            )
            return _result(
                Workflow.OPEN,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                fee.reason,
                fee_rate=order.fee_rate,
            )

        try:
            channel_point = self._node.open_channel(
                order.channel_size, fee.effective_rate, order.peer
            )
        except Exception as exc:
            # Funding may already be broadcast; leave the order for the next round.
            _logger.warning(
                "open_channel_failed order_id=%s peer=%s error=%s",
                order.order_id,
                order.peer,
                exc,
            )
            return _result(
                Workflow.OPEN,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                "open_channel_failed",
                error=str(exc),
                fee_rate=fee.effective_rate,
            )
        _logger.info(
            "channel_opened order_id=%s channel_point=%s fee_rate=%s",
            order.order_id,
            channel_point,
            fee.effective_rate,
        )

        # The marketplace verifies the funding tx against its own mempool view.
        self._sleep(self._program.channel_point_notify_delay_seconds)

        try:
            self._marketplace.notify_channel_point(order.order_id, channel_point)
        except Exception as exc:
            self._escalate(
                build_unrecorded_channel_alert(
                    order_id=order.order_id, channel_point=channel_point, error=str(exc)
                )
            )
            return _result(
                Workflow.OPEN,
                WorkflowOutcome.OPERATOR_ATTENTION,
                order.order_id,
                "channel_point_notify_failed",
                channel_point=channel_point,
                error=str(exc),
            )

        return _result(
            Workflow.OPEN,
            WorkflowOutcome.COMPLETED,
            order.order_id,
            "channel_point_recorded",
            channel_point=channel_point,
            fee_rate=fee.effective_rate,
        )

    def close_expired_channel(self) -> WorkflowResult:
        try:
            order = self._marketplace.get_finished_order()
        except Exception as exc:
            _logger.warning("cleanup_fetch_failed error=%s", exc)
            return _result(
                Workflow.CLEANUP,
                WorkflowOutcome.ABORTED_RETRYABLE,
                None,
                "marketplace_fetch_failed",
                error=str(exc),
            )
        if order is None or not order.channel_point:
            return _result(Workflow.CLEANUP, WorkflowOutcome.IDLE, None, "no_order")

        try:
            still_open = self._node.is_channel_open(order.channel_point)
        except Exception as exc:
            _logger.warning(
                "cleanup_channel_lookup_failed order_id=%s channel_point=%s error=%s",
                order.order_id,
                order.channel_point,
                exc,
            )
            return _result(
                Workflow.CLEANUP,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                "channel_lookup_failed",
                error=str(exc),
            )
        if not still_open:
            return _result(
                Workflow.CLEANUP, WorkflowOutcome.IDLE, order.order_id, "channel_not_open"
            )

        try:
            closing_txid = self._node.close_channel(
                self._program.min_fee_sat_per_vbyte, order.channel_point
            )
        except Exception as exc:
            _logger.warning(
                "close_channel_failed order_id=%s channel_point=%s error=%s",
                order.order_id,
                order.channel_point,
                exc,
            )
            return _result(
                Workflow.CLEANUP,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                "close_channel_failed",
                error=str(exc),
            )
        _logger.info(
            "expired_channel_closed order_id=%s channel_point=%s closing_txid=%s",
            order.order_id,
            order.channel_point,
            closing_txid,
        )
        return _result(
            Workflow.CLEANUP,
            WorkflowOutcome.COMPLETED,
            order.order_id,
            "channel_closed",
            channel_point=order.channel_point,
            closing_txid=closing_txid,
        )

    def _apply_reject_policy(self, order: Order, reason: str, **detail: Any) -> WorkflowResult:
        _logger.warning(
            "accept_aborted order_id=%s reason=%s %s",
            order.order_id,
            reason,
            " ".join(f"{k}={v}" for k, v in detail.items()),
        )
        if not self._program.reject_on_failure:
            return _result(
                Workflow.ACCEPT, WorkflowOutcome.ABORTED_RETRYABLE, order.order_id, reason, **detail
            )
        try:
            self._marketplace.reject_order(order.order_id)
        except Exception as exc:
            _logger.warning("reject_failed order_id=%s error=%s", order.order_id, exc)
            return _result(
                Workflow.ACCEPT,
                WorkflowOutcome.ABORTED_RETRYABLE,
                order.order_id,
                reason,
                reject_error=str(exc),
                **detail,
            )
        _logger.warning("order_rejected order_id=%s reason=%s", order.order_id, reason)
        return _result(
            Workflow.ACCEPT, WorkflowOutcome.ABORTED_DISPOSED, order.order_id, reason, **detail
        )

    def _escalate(self, alert: OperatorAlert) -> None:
        _logger.critical(
            "operator_attention_required order_id=%s channel_point=%s reason=%s error=%s",
            alert.order_id,
            alert.channel_point,
            alert.reason,
            alert.error,
        )
        if self._alert_sink is None:
            return
        try:
            self._alert_sink(alert)
        except Exception as exc:
            _logger.error("operator_alert_delivery_failed order_id=%s error=%s", alert.order_id, exc)


def _result(
    workflow: Workflow,
    outcome: WorkflowOutcome,
    order_id: str | None,
    reason: str,
    **detail: Any,
) -> WorkflowResult:
    return WorkflowResult(
        workflow=workflow, outcome=outcome, order_id=order_id, reason=reason, detail=detail
    )
