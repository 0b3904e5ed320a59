"""
Order Lifecycle

Guarded state machine over SalesOrder.status. This module owns the
transition table, the guards that do not need collaborators, and the
header effects of each transition. SalesOrderService sequences guards,
collaborator side effects and persistence around it.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .models import SalesOrder, SalesOrderStatus
from .order_aggregate import SalesOrderAggregate
from .order_validation import validate_tax_inputs, validate_ship_to
from .protocols import (
    ApprovalNotPermittedError,
    InvalidOrderStateError,
    OrderValidationError,
)

logger = logging.getLogger(__name__)

S = SalesOrderStatus


class Transition(str, Enum):
    CONVERT_TO_DRAFT = "convert_to_draft"
    REQUEST_SIGNATURE = "request_signature"
    CONFIRM_PRINTED = "confirm_printed"
    RECORD_SIGNATURE = "record_signature"
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    RELEASE = "release"
    MARK_PARTIALLY_INVOICED = "mark_partially_invoiced"
    CLOSE = "close"
    CANCEL = "cancel"


TERMINAL_STATUSES: FrozenSet[SalesOrderStatus] = frozenset({S.CANCELLED, S.CLOSED})
NON_TERMINAL_STATUSES: FrozenSet[SalesOrderStatus] = frozenset(set(S) - TERMINAL_STATUSES)

# transition -> (allowed source statuses, target status)
TRANSITIONS: Dict[Transition, Tuple[FrozenSet[SalesOrderStatus], SalesOrderStatus]] = {
    Transition.CONVERT_TO_DRAFT: (frozenset({S.QUOTATION}), S.DRAFT),
    Transition.REQUEST_SIGNATURE: (frozenset({S.DRAFT, S.NEEDS_UPDATE}), S.PENDING_CUSTOMER_SIGNATURE),
    Transition.CONFIRM_PRINTED: (frozenset({S.DRAFT, S.NEEDS_UPDATE}), S.PENDING_APPROVAL),
    Transition.RECORD_SIGNATURE: (frozenset({S.PENDING_CUSTOMER_SIGNATURE}), S.PENDING_APPROVAL),
    Transition.APPROVE: (frozenset({S.PENDING_APPROVAL}), S.APPROVED),
    Transition.REQUEST_CHANGES: (frozenset({S.PENDING_APPROVAL}), S.NEEDS_UPDATE),
    Transition.RELEASE: (frozenset({S.APPROVED}), S.RELEASED),
    Transition.MARK_PARTIALLY_INVOICED: (frozenset({S.RELEASED}), S.PARTIALLY_INVOICED),
    Transition.CLOSE: (frozenset({S.RELEASED, S.PARTIALLY_INVOICED}), S.CLOSED),
    Transition.CANCEL: (NON_TERMINAL_STATUSES, S.CANCELLED),
}


def can_transition(transition: Transition, current: SalesOrderStatus) -> bool:
    sources, _ = TRANSITIONS[transition]
    return current in sources


def available_transitions(current: SalesOrderStatus) -> List[Transition]:
    return [transition for transition in Transition if can_transition(transition, current)]


def target_status(transition: Transition, current: SalesOrderStatus) -> SalesOrderStatus:
    """
    Raises:
        InvalidOrderStateError: transition not allowed from current status
    """
    sources, target = TRANSITIONS[transition]
    if current not in sources:
        allowed = ", ".join(sorted(status.value for status in sources))
        raise InvalidOrderStateError(
            f"Cannot {transition.value.replace('_', ' ')} an order in status {current.value}"
            f" (allowed from: {allowed})",
            current_status=current.value,
        )
    return target


# ====================
# Guards
# ====================

def check_ready_for_submission(order: SalesOrder) -> None:
    """Ship-to complete and not a PO box, and at least one valid line."""
    validate_tax_inputs(order.ship_to, order.lines)


def check_ready_for_approval(
    aggregate: SalesOrderAggregate,
    role: Optional[str],
    approver_roles: Iterable[str],
) -> None:
    """
    Raises:
        ApprovalNotPermittedError: role may not approve
        OrderValidationError: ship-to invalid
        StaleTaxBreakdownError: breakdown missing or stale
    """
    allowed = {r.lower() for r in approver_roles}
    if (role or "").lower() not in allowed:
        raise ApprovalNotPermittedError(
            f"Role '{role}' is not permitted to approve sales orders",
            guard="approver_role",
        )
    validate_ship_to(aggregate.order.ship_to)
    aggregate.require_current_tax()


def check_cancellation_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise OrderValidationError(
            "A cancellation reason is required",
            guard="cancellation_reason",
        )
    return cleaned


# ====================
# Effects
# ====================

def apply_transition(
    order: SalesOrder,
    transition: Transition,
    now: datetime,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
) -> SalesOrderStatus:
    """
    Move the order to the transition's target status and record the
    milestone fields. Returns the previous status.
    """
    previous = order.status
    order.status = target_status(transition, previous)
    order.updated_at = now

    if transition == Transition.CONVERT_TO_DRAFT:
        order.converted_at = now
    elif transition == Transition.REQUEST_SIGNATURE:
        order.customer_signature_requested_at = now
    elif transition == Transition.CONFIRM_PRINTED:
        order.printed_order_confirmation_at = now
    elif transition == Transition.RECORD_SIGNATURE:
        order.customer_signature_received_at = now
    elif transition == Transition.APPROVE:
        order.approved_by = actor
        order.approved_at = now
    elif transition == Transition.RELEASE:
        order.released_by = actor
        order.released_at = now
    elif transition == Transition.MARK_PARTIALLY_INVOICED:
        order.partially_invoiced_at = now
    elif transition == Transition.CLOSE:
        order.closed_at = now
    elif transition == Transition.CANCEL:
        order.cancelled_reason = reason
        order.cancelled_by = actor
        order.cancelled_at = now
        note = f"[CANCELLED on {now.isoformat()} by {actor or 'unknown'}]\nReason: {reason}"
        order.comments_internal = f"{order.comments_internal}\n\n{note}" if order.comments_internal else note

    logger.info(
        f"Sales order {order.so_number}: {previous.value} -> {order.status.value} ({transition.value})"
    )
    return previous
