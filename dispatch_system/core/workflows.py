"""
Workflow engines.

Two independent state machines plus the blacklist toggle:

WorkOrder lifecycle
    waiting -> in_progress -> completed -> invoiced -> paid by convention,
    but any explicit operator transition is accepted. Only the cost request
    precondition looks at work order status.

CostRequest AP lifecycle
    requested -> approved -> paid
    requested | approved -> requested   (revert, clears approved_at/paid_at)
    paid -> *                           TerminalStateViolation

Blacklist
    blocking needs a non-empty reason; unblocking clears it.

Everything here is pure: callers pass the records in and persist the result.
"""

import math
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from datashapes import (
    ACTIVE_WORK_ORDER_STATUSES,
    CostRequest,
    CostStatus,
    Technician,
    WorkOrder,
    WorkOrderStatus,
    to_iso,
)
from dispatch_errors import (
    DuplicateOpenRequest,
    InvalidAmount,
    PreconditionFailed,
    ReasonRequired,
    TerminalStateViolation,
    ValidationFailed,
)
from technician_matching import REASON_MAX, sanitize_text


# =============================================================================
# WORK ORDER LIFECYCLE
# =============================================================================

def parse_work_order_status(value) -> WorkOrderStatus:
    if isinstance(value, WorkOrderStatus):
        return value
    try:
        return WorkOrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in WorkOrderStatus)
        raise ValidationFailed(f"Unknown work order status '{value}' (expected one of: {allowed})", "status")


def is_active(status: WorkOrderStatus) -> bool:
    """Waiting or in progress; the only statuses that get ETA buckets."""
    return status in ACTIVE_WORK_ORDER_STATUSES


# =============================================================================
# COST REQUEST AP WORKFLOW
# =============================================================================

class CostRequestWorkflow:
    """Guards and transitions for technician cost requests."""

    @staticmethod
    def parse_status(value) -> CostStatus:
        if isinstance(value, CostStatus):
            return value
        try:
            return CostStatus(value)
        except ValueError:
            allowed = ", ".join(s.value for s in CostStatus)
            raise ValidationFailed(f"Unknown cost status '{value}' (expected one of: {allowed})", "status")

    @staticmethod
    def check_amount(amount) -> float:
        if isinstance(amount, bool):
            raise InvalidAmount("Amount must be a number", "amount")
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise InvalidAmount(f"Amount must be a number, got {amount!r}", "amount")
        if not math.isfinite(value):
            raise InvalidAmount(f"Amount must be a finite number, got {amount!r}", "amount")
        if not value > 0:
            raise InvalidAmount("Amount must be greater than zero", "amount")
        return value

    def check_create(self, work_order: Optional[WorkOrder], work_order_id: str,
                     technician: Optional[Technician], technician_id: Optional[str],
                     amount, existing: Iterable[CostRequest]) -> float:
        """
        Validate a new cost request.

        Args:
            work_order: resolved work order, or None when the id is unknown
            technician: the work order's assigned technician, resolved
            technician_id: explicit technician from the caller, or None to use the assignment
            existing: every current cost request

        Returns:
            The validated amount.
        """
        if work_order is None:
            raise PreconditionFailed(f"Work order {work_order_id} does not exist", work_order_id)

        if work_order.status != WorkOrderStatus.COMPLETED:
            raise PreconditionFailed(
                f"Work order {work_order.wo_number or work_order.id} must be completed before requesting "
                f"payment (status is {work_order.status.value})",
                work_order.id
            )

        if not work_order.technician_id:
            raise PreconditionFailed(
                f"Assign a technician to {work_order.wo_number or work_order.id} first", work_order.id
            )

        if technician_id and technician_id != work_order.technician_id:
            raise PreconditionFailed(
                f"Technician {technician_id} is not the one assigned to {work_order.wo_number or work_order.id}",
                work_order.id
            )

        if technician is None:
            raise PreconditionFailed(
                f"Assigned technician {work_order.technician_id} no longer exists", work_order.id
            )

        if technician.blacklisted:
            raise PreconditionFailed(f"Technician {technician.name} is blacklisted", work_order.id)

        value = self.check_amount(amount)

        for cost in existing:
            if cost.work_order_id == work_order.id and cost.is_open:
                raise DuplicateOpenRequest(work_order.id, cost.id)

        return value

    def apply_transition(self, record: CostRequest, target, now: datetime) -> CostRequest:
        """Return a copy of record moved to target, stamping or clearing timestamps."""
        target = self.parse_status(target)

        if record.status == CostStatus.PAID:
            raise TerminalStateViolation(f"Cost request {record.id} is paid and can no longer change", record.id)

        stamp = to_iso(now)

        if target == CostStatus.REQUESTED:
            return replace(record, status=CostStatus.REQUESTED, approved_at="", paid_at="", updated_at=stamp)

        if target == CostStatus.APPROVED:
            if record.status != CostStatus.REQUESTED:
                raise PreconditionFailed(
                    f"Only requested costs can be approved ({record.id} is {record.status.value})", record.id
                )
            return replace(record, status=CostStatus.APPROVED, approved_at=stamp, updated_at=stamp)

        if record.status != CostStatus.APPROVED:
            raise PreconditionFailed(
                f"Only approved costs can be paid ({record.id} is {record.status.value})", record.id
            )
        return replace(record, status=CostStatus.PAID, paid_at=stamp, updated_at=stamp)


# =============================================================================
# BLACKLIST
# =============================================================================

def check_blacklist(value: bool, reason) -> str:
    """
    Validate a blacklist toggle.

    Returns:
        The reason to store: cleaned text when blocking, "" when clearing.
    """
    if not value:
        return ""
    cleaned = sanitize_text(reason, REASON_MAX)
    if not cleaned:
        raise ReasonRequired("A reason is required to blacklist a technician")
    return cleaned
