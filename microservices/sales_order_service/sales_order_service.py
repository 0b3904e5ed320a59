"""
Sales Order Service - Business Logic Layer

Orchestrates the sales order engine:
- Tax preview over proposed inputs and tax attachment to stored orders
- Order submission (create and edit-save) guarded by a current tax breakdown
- Lifecycle transitions with their collaborator side effects
- Inventory availability preview and allocation on approval
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional

from core.auth_dependencies import SessionContext

from .events.publishers import (
    publish_sales_order_created,
    publish_sales_order_deleted,
    publish_sales_order_updated,
    publish_status_changed,
    publish_tax_calculated,
)
from .inventory_allocator import allocate, summarize_available
from .models import (
    InventoryCheckResponse,
    LineAllocation,
    SalesOrder,
    SalesOrderCreateRequest,
    SalesOrderStatus,
    SalesOrderUpdateRequest,
    SignatureStatus,
    TaxBreakdown,
    TaxCalculationRequest,
    TaxPreviewRequest,
    TaxPreviewResponse,
)
from .order_aggregate import SalesOrderAggregate, tax_inputs_fingerprint
from .order_lifecycle import (
    Transition,
    apply_transition,
    check_cancellation_reason,
    check_ready_for_approval,
    check_ready_for_submission,
    target_status,
)
from .order_validation import validate_tax_inputs
from .protocols import (
    ConcurrentModificationError,
    EventBusProtocol,
    OrderNotEditableError,
    OrderNotFoundError,
    OrderValidationError,
    SalesOrderRepositoryProtocol,
    SignatureClientProtocol,
    SignatureDispatchError,
    StaleTaxBreakdownError,
)
from .tax_engine import TaxEngine

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _breakdown_amounts(breakdown: TaxBreakdown) -> dict:
    return breakdown.model_dump(exclude={"per_line": {"__all__": {"line_id"}}})


class SalesOrderService:
    """
    Sales Order Service - Core business logic

    All mutations are one request each: load, guard, side effect, one
    atomic save, then event publication.
    """

    DEFAULT_APPROVER_ROLES = ("admin", "manager", "sales_manager")

    def __init__(
        self,
        repository: SalesOrderRepositoryProtocol,
        tax_engine: Optional[TaxEngine] = None,
        event_bus: Optional[EventBusProtocol] = None,
        signature_client: Optional[SignatureClientProtocol] = None,
        approver_roles: Iterable[str] = DEFAULT_APPROVER_ROLES,
        tenant_code: str = "TN",
        default_currency: str = "USD",
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize sales order service with dependencies.

        Args:
            repository: Sales order repository (atomic header + line writes)
            tax_engine: Tax engine; rule-based only when no calculator client is set
            event_bus: Event bus for publishing events (optional)
            signature_client: E-signature service client (optional)
            approver_roles: Session roles allowed to approve orders
            tenant_code: Code used in generated SO numbers
            default_currency: Currency for orders submitted without one
            clock: Current time provider
        """
        self.repository = repository
        self.tax_engine = tax_engine or TaxEngine()
        self.event_bus = event_bus
        self.signature_client = signature_client
        self.approver_roles = tuple(approver_roles)
        self.tenant_code = tenant_code
        self.default_currency = default_currency
        self._clock = clock

    # ====================
    # Tax
    # ====================

    async def preview_tax(self, request: TaxPreviewRequest) -> TaxPreviewResponse:
        """
        Compute the breakdown for inputs being edited, with the inputs hash
        that a later submission must carry.
        """
        breakdown = await self.tax_engine.compute_tax(TaxCalculationRequest(
            ship_to=request.ship_to,
            customer_exempt=request.customer_tax_exempt,
            lines=request.lines,
            shipping_amount=request.shipping_amount,
        ))
        inputs_hash = tax_inputs_fingerprint(
            request.ship_to,
            request.lines,
            request.shipping_amount,
            request.customer_tax_exempt,
            request.tax_exemption_reason,
        )
        return TaxPreviewResponse(tax_breakdown=breakdown, tax_inputs_hash=inputs_hash)

    async def calculate_order_tax(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        """Compute and attach the breakdown of a stored, editable order."""
        order = await self._load(order_id, session.tenant_id)
        expected = self._expected_version(order, expected_version)
        aggregate = SalesOrderAggregate(order)
        self._require_editable(aggregate)

        breakdown = await self.tax_engine.compute_tax(TaxCalculationRequest(
            ship_to=order.ship_to,
            customer_exempt=order.customer_tax_exempt,
            lines=list(order.lines),
            shipping_amount=order.shipping_amount,
        ))
        aggregate.attach_tax_breakdown(breakdown)
        order.updated_at = self._clock()

        saved = await self.repository.save_order(order, expected)
        await publish_tax_calculated(self.event_bus, saved)
        return saved

    # ====================
    # Submission
    # ====================

    async def create_order(self, request: SalesOrderCreateRequest, session: SessionContext) -> SalesOrder:
        """
        Create header and lines together in status QUOTATION.

        Raises:
            OrderValidationError: invalid ship-to, no valid lines, or no breakdown
            StaleTaxBreakdownError: breakdown computed from other inputs, or
                amounts that differ from a recalculation
        """
        validate_tax_inputs(request.ship_to, request.lines)
        now = self._clock()

        aggregate = SalesOrderAggregate.create(
            request,
            tenant_id=session.tenant_id,
            so_number=self._next_so_number(now),
            created_by=session.user_id,
            currency=self.default_currency,
            now=now,
        )
        aggregate.attach_submitted_breakdown(request.tax_breakdown, request.tax_inputs_hash)
        await self._verify_submitted_breakdown(aggregate.order)

        saved = await self.repository.create_order(aggregate.order)
        logger.info(f"Created sales order {saved.so_number} for customer {saved.customer_id}")
        await publish_sales_order_created(self.event_bus, saved, session.user_id)
        return saved

    async def update_order(
        self, order_id: str, request: SalesOrderUpdateRequest, session: SessionContext
    ) -> SalesOrder:
        """
        Replace header and lines of an editable order.

        Raises:
            OrderNotEditableError: order outside QUOTATION/DRAFT/NEEDS_UPDATE
            ConcurrentModificationError: expected_version is not current
        """
        order = await self._load(order_id, session.tenant_id)
        expected = self._expected_version(order, request.expected_version)
        aggregate = SalesOrderAggregate(order)

        plan = aggregate.apply_edit(request, self._clock())
        validate_tax_inputs(order.ship_to, order.lines)
        aggregate.attach_submitted_breakdown(request.tax_breakdown, request.tax_inputs_hash)
        await self._verify_submitted_breakdown(order)

        saved = await self.repository.save_order(order, expected, plan.to_delete)
        logger.info(
            f"Updated sales order {saved.so_number}: {len(plan.to_insert)} added, "
            f"{len(plan.to_update)} updated, {len(plan.to_delete)} removed lines"
        )
        await publish_sales_order_updated(self.event_bus, saved, session.user_id)
        return saved

    async def delete_order(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> bool:
        """Hard delete an order that is still editable."""
        order = await self._load(order_id, session.tenant_id)
        expected = self._expected_version(order, expected_version)
        self._require_editable(SalesOrderAggregate(order))

        deleted = await self.repository.delete_order(order_id, session.tenant_id, expected)
        if deleted:
            logger.info(f"Deleted sales order {order.so_number}")
            await publish_sales_order_deleted(self.event_bus, order, session.user_id)
        return deleted

    # ====================
    # Queries
    # ====================

    async def get_order(self, order_id: str, session: SessionContext) -> SalesOrder:
        return await self._load(order_id, session.tenant_id)

    async def list_orders(
        self,
        session: SessionContext,
        status: Optional[SalesOrderStatus] = None,
        customer_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SalesOrder]:
        return await self.repository.list_orders(
            session.tenant_id, status=status, customer_id=customer_id, limit=limit, offset=offset
        )

    async def inventory_check(self, order_id: str, session: SessionContext) -> InventoryCheckResponse:
        """Allocation preview against current inventory; writes nothing."""
        order = await self._load(order_id, session.tenant_id)
        allocations = await self._compute_allocations(order)
        return InventoryCheckResponse(
            order_id=order.order_id,
            lines=allocations,
            fully_available=all(a.backordered == 0 for a in allocations),
        )

    # ====================
    # Lifecycle
    # ====================

    async def convert_to_draft(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        return await self._transition(order_id, session, Transition.CONVERT_TO_DRAFT, expected_version)

    async def request_signature(
        self,
        order_id: str,
        signer_email: str,
        signer_name: str,
        session: SessionContext,
        expected_version: Optional[int] = None,
    ) -> SalesOrder:
        """
        Dispatch the order confirmation for customer signature.

        Raises:
            OrderValidationError: ship-to/lines invalid or signer missing
            SignatureDispatchError: the e-signature service did not accept the request
        """
        async def dispatch(aggregate: SalesOrderAggregate):
            order = aggregate.order
            check_ready_for_submission(order)
            if not (signer_email or "").strip() or not (signer_name or "").strip():
                raise OrderValidationError("Signer email and name are required", guard="signer")
            if self.signature_client is None:
                raise SignatureDispatchError("E-signature service is not configured", guard="signature_dispatch")

            result = await self.signature_client.send_for_signature(
                order.order_id, signer_email.strip(), signer_name.strip()
            )
            if not result:
                raise SignatureDispatchError(
                    f"Failed to send order {order.so_number} for signature",
                    guard="signature_dispatch",
                )
            order.signature_request_id = result.get("signature_request_id") or result.get("id")
            order.signature_status = SignatureStatus.PENDING
            order.signed_document_url = None

        return await self._transition(
            order_id, session, Transition.REQUEST_SIGNATURE, expected_version, before_apply=dispatch
        )

    async def confirm_printed(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        """Manual path: confirmation printed and signed on paper."""
        async def guard(aggregate: SalesOrderAggregate):
            check_ready_for_submission(aggregate.order)

        return await self._transition(
            order_id, session, Transition.CONFIRM_PRINTED, expected_version, before_apply=guard
        )

    async def record_signature_status(
        self,
        signature_request_id: str,
        status: SignatureStatus,
        signed_document_url: Optional[str] = None,
    ) -> Optional[SalesOrder]:
        """
        Apply a status report from the e-signature service.

        Only `signed` moves the order (to PENDING_APPROVAL); other statuses
        are recorded on the header. Reports for unknown requests or for
        orders no longer awaiting signature are ignored.
        """
        order = await self.repository.get_order_by_signature_request(signature_request_id)
        if order is None:
            logger.warning(f"No sales order found for signature request {signature_request_id}")
            return None

        if order.status != SalesOrderStatus.PENDING_CUSTOMER_SIGNATURE:
            logger.info(
                f"Ignoring signature status {status.value} for order {order.so_number} in status {order.status.value}"
            )
            return order

        expected = order.version
        order.signature_status = status
        previous = None
        if status == SignatureStatus.SIGNED:
            order.signed_document_url = signed_document_url
            previous = apply_transition(order, Transition.RECORD_SIGNATURE, self._clock())
        else:
            order.updated_at = self._clock()

        saved = await self.repository.save_order(order, expected)
        if previous is not None:
            await publish_status_changed(
                self.event_bus, saved, previous.value, Transition.RECORD_SIGNATURE.value
            )
        return saved

    async def approve(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        """
        Approve an order and persist per-line allocation with the header.

        Raises:
            ApprovalNotPermittedError: session role may not approve
            StaleTaxBreakdownError: breakdown missing or stale
        """
        async def allocate_lines(aggregate: SalesOrderAggregate):
            check_ready_for_approval(aggregate, session.role, self.approver_roles)
            allocations = await self._compute_allocations(aggregate.order)
            aggregate.apply_allocations(allocations)
            backordered = sum(1 for a in allocations if a.backordered > 0)
            logger.info(
                f"Allocated order {aggregate.order.so_number}: {len(allocations)} lines, {backordered} backordered"
            )

        return await self._transition(
            order_id, session, Transition.APPROVE, expected_version, before_apply=allocate_lines
        )

    async def request_changes(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        return await self._transition(order_id, session, Transition.REQUEST_CHANGES, expected_version)

    async def release(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        return await self._transition(order_id, session, Transition.RELEASE, expected_version)

    async def mark_partially_invoiced(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        return await self._transition(order_id, session, Transition.MARK_PARTIALLY_INVOICED, expected_version)

    async def close(
        self, order_id: str, session: SessionContext, expected_version: Optional[int] = None
    ) -> SalesOrder:
        return await self._transition(order_id, session, Transition.CLOSE, expected_version)

    async def cancel(
        self,
        order_id: str,
        reason: Optional[str],
        session: SessionContext,
        expected_version: Optional[int] = None,
    ) -> SalesOrder:
        """
        Raises:
            OrderValidationError: empty reason
            InvalidOrderStateError: order already CANCELLED or CLOSED
        """
        cleaned = check_cancellation_reason(reason)
        return await self._transition(
            order_id, session, Transition.CANCEL, expected_version, reason=cleaned
        )

    # ====================
    # Internals
    # ====================

    async def _transition(
        self,
        order_id: str,
        session: SessionContext,
        transition: Transition,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
        before_apply: Optional[Callable[[SalesOrderAggregate], Awaitable[None]]] = None,
    ) -> SalesOrder:
        order = await self._load(order_id, session.tenant_id)
        expected = self._expected_version(order, expected_version)

        # Reject wrong-status calls before any guard or side effect runs
        target_status(transition, order.status)

        if before_apply is not None:
            await before_apply(SalesOrderAggregate(order))

        previous = apply_transition(order, transition, self._clock(), actor=session.user_id, reason=reason)
        saved = await self.repository.save_order(order, expected)

        await publish_status_changed(
            self.event_bus, saved, previous.value, transition.value, session.user_id, reason
        )
        return saved

    async def _compute_allocations(self, order: SalesOrder) -> List[LineAllocation]:
        skus = sorted({line.sku for line in order.lines if line.sku})
        lots = await self.repository.list_available_inventory(order.tenant_id, skus)
        return allocate(order.lines, summarize_available(lots))

    async def _verify_submitted_breakdown(self, order: SalesOrder) -> None:
        """
        Recalculate tax from the order's own inputs and reject a submitted
        breakdown whose amounts differ.

        The inputs hash only proves which inputs the caller claims; the
        amounts must also be the ones those inputs produce.
        """
        expected = await self.tax_engine.compute_tax(TaxCalculationRequest(
            ship_to=order.ship_to,
            customer_exempt=order.customer_tax_exempt,
            lines=list(order.lines),
            shipping_amount=order.shipping_amount,
        ))
        if _breakdown_amounts(expected) != _breakdown_amounts(order.tax_breakdown):
            logger.warning(f"Rejected tax breakdown for {order.so_number}: amounts differ from recalculation")
            raise StaleTaxBreakdownError(
                "Submitted tax breakdown does not match the order inputs; recalculate tax"
            )

    async def _load(self, order_id: str, tenant_id: str) -> SalesOrder:
        order = await self.repository.get_order(order_id, tenant_id)
        if order is None:
            raise OrderNotFoundError(f"Sales order not found: {order_id}")
        return order

    @staticmethod
    def _expected_version(order: SalesOrder, expected_version: Optional[int]) -> int:
        if expected_version is not None and expected_version != order.version:
            raise ConcurrentModificationError(
                f"Sales order {order.so_number} was modified (version {order.version}, expected {expected_version})",
                expected_version=expected_version,
            )
        return order.version

    @staticmethod
    def _require_editable(aggregate: SalesOrderAggregate) -> None:
        if not aggregate.is_editable:
            order = aggregate.order
            raise OrderNotEditableError(
                f"Order {order.so_number} cannot be changed in status {order.status.value}",
                current_status=order.status.value,
                guard="editable_status",
            )

    def _next_so_number(self, now: datetime) -> str:
        return f"SO-{self.tenant_code}-{int(now.timestamp() * 1000)}"
