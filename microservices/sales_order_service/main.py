"""
Sales Order Microservice API

Quotation to close: tax preview and attachment, guarded lifecycle
transitions, e-signature dispatch and inventory allocation on approval.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional, Type

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.auth_dependencies import SessionContext, require_session_context
from core.config import get_settings
from core.internal_service_auth import require_internal_service
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from . import __version__
from .factory import create_sales_order_service
from .models import (
    CancelOrderRequest,
    HealthCheckResponse,
    InventoryCheckResponse,
    SalesOrder,
    SalesOrderCreateRequest,
    SalesOrderListResponse,
    SalesOrderStatus,
    SalesOrderUpdateRequest,
    SignatureCallbackRequest,
    SignatureDispatchRequest,
    TaxPreviewRequest,
    TaxPreviewResponse,
    TransitionRequest,
)
from .protocols import (
    ApprovalNotPermittedError,
    ConcurrentModificationError,
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderValidationError,
    SalesOrderPersistenceError,
    SalesOrderServiceError,
    SignatureDispatchError,
    StaleTaxBreakdownError,
    TaxJurisdictionUnavailableError,
    TaxServiceUnavailableError,
)
from .sales_order_service import SalesOrderService

config = get_settings()

# Configure logging
logger = setup_service_logger(
    config.service_name, level=config.logging.log_level, config=config.logging
)

# Global variables
sales_order_service: Optional[SalesOrderService] = None
event_bus = None  # NATS event bus
SERVICE_PORT = config.port or 8240
API_PREFIX = "/api/v1/sales-orders"

ERROR_STATUS_CODES: Dict[Type[SalesOrderServiceError], int] = {
    OrderValidationError: status.HTTP_400_BAD_REQUEST,
    OrderNotFoundError: status.HTTP_404_NOT_FOUND,
    ApprovalNotPermittedError: status.HTTP_403_FORBIDDEN,
    StaleTaxBreakdownError: status.HTTP_409_CONFLICT,
    InvalidOrderStateError: status.HTTP_409_CONFLICT,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    TaxJurisdictionUnavailableError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TaxServiceUnavailableError: status.HTTP_502_BAD_GATEWAY,
    SignatureDispatchError: status.HTTP_502_BAD_GATEWAY,
    SalesOrderPersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(error: SalesOrderServiceError) -> int:
    """HTTP status of a service error; subclasses inherit their parent's code"""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global sales_order_service, event_bus

    try:
        # Initialize NATS JetStream event bus
        if config.events_enabled:
            try:
                event_bus = await get_event_bus(config.service_name, config.nats_url)
                logger.info("✅ Event bus initialized successfully")
            except Exception as e:
                logger.warning(
                    f"⚠️  Failed to initialize event bus: {e}. Continuing without event publishing."
                )
                event_bus = None

        sales_order_service = create_sales_order_service(config=config, event_bus=event_bus)
        await sales_order_service.repository.initialize()

        # Subscribe to signature status events
        if event_bus:
            try:
                from .events import get_event_handlers

                handler_map = get_event_handlers(sales_order_service)
                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"sales-order-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                    logger.info(f"✅ Subscribed to {pattern}")
            except Exception as e:
                logger.warning(f"⚠️  Failed to subscribe to events: {e}")

        logger.info(f"✅ Sales order service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize sales order service: {e}")
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Sales order event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if sales_order_service:
            if sales_order_service.tax_engine.tax_client:
                await sales_order_service.tax_engine.tax_client.close()
            if sales_order_service.signature_client:
                await sales_order_service.signature_client.close()
            await sales_order_service.repository.close()
            logger.info("Sales order service connections closed")


# Create FastAPI application
app = FastAPI(
    title="Sales Order Service",
    description="Sales order tax calculation, lifecycle and fulfillment allocation",
    version=__version__,
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_sales_order_service() -> SalesOrderService:
    """Get sales order service instance"""
    if not sales_order_service:
        raise HTTPException(status_code=503, detail="Sales order service not initialized")
    return sales_order_service


def _expected_version(request: Optional[TransitionRequest]) -> Optional[int]:
    return request.expected_version if request else None


# ====================
# Health Check
# ====================


@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Basic health check"""
    dependencies = {}

    repository = sales_order_service.repository if sales_order_service else None
    if repository is not None and hasattr(repository, "health_check"):
        dependencies["database"] = "healthy" if await repository.health_check() else "unhealthy"
    else:
        dependencies["database"] = "not_configured"

    if event_bus is not None:
        dependencies["event_bus"] = "healthy" if event_bus.is_connected else "unhealthy"
    else:
        dependencies["event_bus"] = "not_configured"

    overall = "healthy" if all(v in ("healthy", "not_configured") for v in dependencies.values()) else "degraded"

    return HealthCheckResponse(
        status=overall,
        service="sales_order_service",
        port=SERVICE_PORT,
        version=__version__,
        dependencies=dependencies,
    )


# ====================
# Tax
# ====================


@app.post(f"{API_PREFIX}/tax/preview", response_model=TaxPreviewResponse)
async def preview_tax(
    request: TaxPreviewRequest,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Tax breakdown and inputs hash for an order being edited"""
    return await service.preview_tax(request)


@app.post(f"{API_PREFIX}/signature-callback")
async def signature_callback(
    request: SignatureCallbackRequest,
    caller: str = Depends(require_internal_service),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Status report from the e-signature service"""
    order = await service.record_signature_status(
        signature_request_id=request.signature_request_id,
        status=request.status,
        signed_document_url=request.signed_document_url,
    )
    if order is None:
        return {"processed": False, "order_id": None, "status": None}
    return {"processed": True, "order_id": order.order_id, "status": order.status.value}


# ====================
# Orders
# ====================


@app.post(API_PREFIX, response_model=SalesOrder, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: SalesOrderCreateRequest,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Create an order (QUOTATION) with its lines and current tax breakdown"""
    return await service.create_order(request, session)


@app.get(API_PREFIX, response_model=SalesOrderListResponse)
async def list_orders(
    order_status: Optional[SalesOrderStatus] = Query(None, alias="status"),
    customer_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """List the tenant's orders, newest first"""
    orders = await service.list_orders(
        session, status=order_status, customer_id=customer_id, limit=limit, offset=offset
    )
    return SalesOrderListResponse(orders=orders, count=len(orders), limit=limit, offset=offset)


@app.get(f"{API_PREFIX}/{{order_id}}", response_model=SalesOrder)
async def get_order(
    order_id: str,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.get_order(order_id, session)


@app.put(f"{API_PREFIX}/{{order_id}}", response_model=SalesOrder)
async def update_order(
    order_id: str,
    request: SalesOrderUpdateRequest,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Edit-save: replace header and lines of an editable order"""
    return await service.update_order(order_id, request, session)


@app.delete(f"{API_PREFIX}/{{order_id}}")
async def delete_order(
    order_id: str,
    expected_version: Optional[int] = Query(None, ge=1),
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    deleted = await service.delete_order(order_id, session, expected_version)
    return {"deleted": deleted, "order_id": order_id}


@app.post(f"{API_PREFIX}/{{order_id}}/tax", response_model=SalesOrder)
async def calculate_order_tax(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Compute and attach the tax breakdown of a stored order"""
    return await service.calculate_order_tax(order_id, session, _expected_version(request))


@app.get(f"{API_PREFIX}/{{order_id}}/inventory-check", response_model=InventoryCheckResponse)
async def inventory_check(
    order_id: str,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Allocation preview; nothing is reserved"""
    return await service.inventory_check(order_id, session)


# ====================
# Lifecycle
# ====================


@app.post(f"{API_PREFIX}/{{order_id}}/convert", response_model=SalesOrder)
async def convert_to_draft(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.convert_to_draft(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/signature-request", response_model=SalesOrder)
async def request_signature(
    order_id: str,
    request: SignatureDispatchRequest,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Send the order confirmation for customer e-signature"""
    return await service.request_signature(
        order_id,
        signer_email=request.signer_email,
        signer_name=request.signer_name,
        session=session,
        expected_version=request.expected_version,
    )


@app.post(f"{API_PREFIX}/{{order_id}}/confirmation-printed", response_model=SalesOrder)
async def confirm_printed(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.confirm_printed(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/approve", response_model=SalesOrder)
async def approve_order(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Approve and allocate inventory per line"""
    return await service.approve(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/request-changes", response_model=SalesOrder)
async def request_changes(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.request_changes(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/release", response_model=SalesOrder)
async def release_order(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.release(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/partially-invoiced", response_model=SalesOrder)
async def mark_partially_invoiced(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.mark_partially_invoiced(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/close", response_model=SalesOrder)
async def close_order(
    order_id: str,
    request: Optional[TransitionRequest] = None,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    return await service.close(order_id, session, _expected_version(request))


@app.post(f"{API_PREFIX}/{{order_id}}/cancel", response_model=SalesOrder)
async def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    session: SessionContext = Depends(require_session_context),
    service: SalesOrderService = Depends(get_sales_order_service),
):
    """Cancel from any non-terminal status; a reason is required"""
    return await service.cancel(
        order_id, request.reason, session=session, expected_version=request.expected_version
    )


# ====================
# Error Handling
# ====================


@app.exception_handler(SalesOrderServiceError)
async def sales_order_error_handler(request: Request, exc: SalesOrderServiceError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} in {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} in {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error occurred"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.sales_order_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.logging.log_level.lower(),
    )
