"""
Sales Order Service Protocols

Defines interfaces for dependency injection and testing, plus the
service's exception taxonomy.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .models import InventoryLot, SalesOrder, SalesOrderStatus


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class SalesOrderRepositoryProtocol(Protocol):
    """Persistence interface for sales orders, their lines and inventory lots"""

    async def create_order(self, order: SalesOrder) -> SalesOrder:
        """
        Insert a new order header and all of its lines in one transaction.

        Raises:
            SalesOrderPersistenceError: if any write fails (nothing is committed)
        """
        ...

    async def get_order(self, order_id: str, tenant_id: str) -> Optional[SalesOrder]:
        """
        Get an order with its lines, scoped to a tenant.

        Returns:
            The order or None if not found
        """
        ...

    async def list_orders(
        self,
        tenant_id: str,
        status: Optional[SalesOrderStatus] = None,
        customer_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SalesOrder]:
        """List orders for a tenant, newest first"""
        ...

    async def save_order(
        self,
        order: SalesOrder,
        expected_version: int,
        deleted_line_ids: Sequence[str] = (),
    ) -> SalesOrder:
        """
        Persist header and lines atomically.

        The header write is conditional on the stored version matching
        expected_version; the stored version is incremented. Lines listed in
        deleted_line_ids are removed, the remaining lines are upserted.

        Raises:
            ConcurrentModificationError: stored version differs
            SalesOrderPersistenceError: any other write failure
        """
        ...

    async def delete_order(self, order_id: str, tenant_id: str, expected_version: int) -> bool:
        """Hard delete an order and its lines"""
        ...

    async def list_available_inventory(self, tenant_id: str, skus: Sequence[str]) -> List[InventoryLot]:
        """
        Inventory lots for the given SKUs.

        Returns lots of every status; the allocator filters on status.
        """
        ...

    async def get_order_by_signature_request(self, signature_request_id: str) -> Optional[SalesOrder]:
        """Find the order a signature request was dispatched for"""
        ...


# ====================
# Collaborator Protocols
# ====================


@runtime_checkable
class TaxCalculatorClientProtocol(Protocol):
    """External tax calculator used for non-domestic jurisdictions"""

    async def calculate(self, order_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Calculate tax for an order.

        Returns:
            Calculator response (may carry a `fallback` flag) or None when
            the calculator could not be reached
        """
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class SignatureClientProtocol(Protocol):
    """E-signature dispatch service"""

    async def send_for_signature(
        self, order_id: str, signer_email: str, signer_name: str
    ) -> Optional[Dict[str, Any]]:
        """
        Send an order confirmation for signature.

        Returns:
            Signature request record (with signature_request_id) or None on failure
        """
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Event bus interface"""

    async def publish_event(self, event: Any) -> bool:
        ...


# ====================
# Exceptions
# ====================


class SalesOrderServiceError(Exception):
    """
    Base exception for sales order service errors.

    Attributes:
        code: stable machine-readable error code
        guard: name of the failed guard, when a transition guard rejected the call
    """

    code = "SALES_ORDER_ERROR"

    def __init__(self, message: str, guard: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.guard = guard

    def to_dict(self) -> Dict[str, Any]:
        detail = {"error": self.code, "message": self.message}
        if self.guard:
            detail["guard"] = self.guard
        return detail


class OrderValidationError(SalesOrderServiceError):
    """User-correctable input problem (address, lines, missing breakdown, reason)"""
    code = "VALIDATION_ERROR"


class StaleTaxBreakdownError(SalesOrderServiceError):
    """Tax inputs changed since the breakdown was computed"""
    code = "STALE_TAX_BREAKDOWN"

    def __init__(self, message: str = "Tax breakdown is out of date; recalculate tax", guard: str = "tax_breakdown_current"):
        super().__init__(message, guard=guard)


class InvalidOrderStateError(SalesOrderServiceError):
    """Transition not allowed from the order's current status"""
    code = "INVALID_STATE"

    def __init__(self, message: str, current_status: Optional[str] = None, guard: Optional[str] = "status"):
        super().__init__(message, guard=guard)
        self.current_status = current_status


class OrderNotEditableError(InvalidOrderStateError):
    """Header/line edits attempted outside the editable statuses"""
    code = "ORDER_NOT_EDITABLE"


class OrderNotFoundError(SalesOrderServiceError):
    """Raised when a sales order is not found"""
    code = "ORDER_NOT_FOUND"


class ApprovalNotPermittedError(SalesOrderServiceError):
    """Session role may not approve orders"""
    code = "FORBIDDEN"


class ConcurrentModificationError(SalesOrderServiceError):
    """Stored order version differs from the expected version"""
    code = "VERSION_CONFLICT"

    def __init__(self, message: str, expected_version: Optional[int] = None, guard: str = "version"):
        super().__init__(message, guard=guard)
        self.expected_version = expected_version


class TaxJurisdictionUnavailableError(SalesOrderServiceError):
    """External calculator has no coverage/nexus for the jurisdiction"""
    code = "TAX_UNAVAILABLE"


class TaxServiceUnavailableError(SalesOrderServiceError):
    """External calculator could not be reached"""
    code = "COLLABORATOR_FAILURE"


class SignatureDispatchError(SalesOrderServiceError):
    """E-signature request could not be dispatched"""
    code = "COLLABORATOR_FAILURE"


class SalesOrderPersistenceError(SalesOrderServiceError):
    """Multi-record write failed; the order did not reach the target state"""
    code = "PERSISTENCE_ERROR"
