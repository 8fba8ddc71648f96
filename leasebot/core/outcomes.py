from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Workflow(StrEnum):
    ACCEPT = "accept"
    OPEN = "open"
    CLEANUP = "cleanup"


class WorkflowOutcome(StrEnum):
    IDLE = "idle"
    COMPLETED = "completed"
    ABORTED_RETRYABLE = "aborted_retryable"
    ABORTED_DISPOSED = "aborted_disposed"
    OPERATOR_ATTENTION = "operator_attention"


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    workflow: Workflow
    outcome: WorkflowOutcome
    order_id: str | None = None
    reason: str = ""
    detail: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow.value,
            "outcome": self.outcome.value,
            "order_id": self.order_id,
            "reason": self.reason,
            "detail": dict(self.detail),
        }


@dataclass(frozen=True, slots=True)
class RoundResult:
    accept: WorkflowResult
    open: WorkflowResult
    cleanup: WorkflowResult | None = None

    @property
    def results(self) -> list[WorkflowResult]:
        out = [self.accept, self.open]
        if self.cleanup is not None:
            out.append(self.cleanup)
        return out

    @property
    def needs_operator_attention(self) -> bool:
        return any(r.outcome == WorkflowOutcome.OPERATOR_ATTENTION for r in self.results)
