"""
Sales Order Service Factory

Factory for creating SalesOrderService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import SalesOrderServiceConfig, get_settings

from .protocols import (
    SalesOrderRepositoryProtocol,
    SignatureClientProtocol,
    TaxCalculatorClientProtocol,
)
from .sales_order_repository import SalesOrderRepository
from .sales_order_service import SalesOrderService
from .tax_engine import TaxEngine

logger = logging.getLogger(__name__)


def create_sales_order_service(
    config: Optional[SalesOrderServiceConfig] = None,
    event_bus=None,
    repository: Optional[SalesOrderRepositoryProtocol] = None,
    tax_client: Optional[TaxCalculatorClientProtocol] = None,
    signature_client: Optional[SignatureClientProtocol] = None,
) -> SalesOrderService:
    """
    Create SalesOrderService with all real dependencies

    Args:
        config: Optional service config (global settings if not provided)
        event_bus: Optional event bus for event publishing
        repository: Optional repository (asyncpg repository if not provided)
        tax_client: Optional external tax calculator client
        signature_client: Optional e-signature client

    Returns:
        SalesOrderService instance; call repository.initialize() before use
    """
    if config is None:
        config = get_settings()

    if repository is None:
        repository = SalesOrderRepository(config=config)

    if tax_client is None:
        from .clients.tax_client import TaxCalculatorClient

        tax_client = TaxCalculatorClient(
            base_url=config.tax_service_url, timeout=config.collaborator_timeout
        )
        logger.info("✅ TaxCalculatorClient initialized for sales order service")

    if signature_client is None:
        from .clients.signature_client import SignatureClient

        signature_client = SignatureClient(
            base_url=config.signature_service_url, timeout=config.collaborator_timeout
        )
        logger.info("✅ SignatureClient initialized for sales order service")

    tax_engine = TaxEngine(
        tax_client=tax_client,
        origin_address=config.origin_address.to_dict(),
    )

    return SalesOrderService(
        repository=repository,
        tax_engine=tax_engine,
        event_bus=event_bus,
        signature_client=signature_client,
        approver_roles=config.approver_roles,
        tenant_code=config.tenant_code,
        default_currency=config.default_currency,
    )


__all__ = ["create_sales_order_service"]
