"""
Sales Order Service Event Handlers

Handle events from other services that drive the order lifecycle.
"""

import logging
from typing import Any, Callable, Dict, Union

from ..models import SignatureStatus
from ..protocols import (
    ConcurrentModificationError,
    SalesOrderPersistenceError,
    SalesOrderServiceError,
)

logger = logging.getLogger(__name__)


def extract_event_data(event_or_data: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    """
    Extract data from either an Event object or a raw dict.
    """
    if hasattr(event_or_data, 'data'):
        return event_or_data.data
    return event_or_data


# ============================================================================
# Event Handlers
# ============================================================================


async def handle_signature_status_changed(
    event_or_data: Union[Dict[str, Any], Any], sales_order_service=None
):
    """
    Handle signature.request.status_changed from the e-signature service

    Event data:
        - signature_request_id: Signature request ID
        - status: pending | viewed | signed | declined | expired
        - signed_document_url: Signed document reference (when signed)
    """
    event_data = extract_event_data(event_or_data)
    signature_request_id = event_data.get("signature_request_id")
    raw_status = (event_data.get("status") or "").lower()

    if not signature_request_id:
        logger.warning("signature.request.status_changed event missing signature_request_id")
        return

    try:
        status = SignatureStatus(raw_status)
    except ValueError:
        logger.warning(f"Unknown signature status '{raw_status}' for request {signature_request_id}")
        return

    logger.info(f"Processing signature status {status.value} for request {signature_request_id}")

    if sales_order_service is None:
        return

    try:
        await sales_order_service.record_signature_status(
            signature_request_id=signature_request_id,
            status=status,
            signed_document_url=event_data.get("signed_document_url"),
        )
    except (SalesOrderPersistenceError, ConcurrentModificationError):
        # Transient; raising naks the message for redelivery
        raise
    except SalesOrderServiceError as e:
        # Business rejections are not redelivered
        logger.warning(
            f"Signature status {status.value} for request {signature_request_id} not applied: {e.message}"
        )


def get_event_handlers(sales_order_service=None) -> Dict[str, Callable]:
    """
    Return a mapping of event subject patterns to handler functions

    Events subscribed:
        - signature.request.*: Signature request status updates
    """
    return {
        "signature.request.*": lambda event: handle_signature_status_changed(event, sales_order_service),
    }
