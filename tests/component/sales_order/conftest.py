"""
Sales Order Service Component Test Fixtures

Provides mocked dependencies for sales order service component testing:
- MockSalesOrderRepository: in-memory SalesOrderRepositoryProtocol with version checks
- MockTaxClient: scripted external tax calculator
- MockSignatureClient: scripted e-signature service
- MockEventBus: records published events
"""

from decimal import Decimal
from typing import Any

import pytest

from tests.fixtures.sales_order_mocks import (
    MockEventBus,
    MockSalesOrderRepository,
    MockSignatureClient,
    MockTaxClient,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_repository():
    """Create mock sales order repository"""
    return MockSalesOrderRepository()


@pytest.fixture
def mock_tax_client():
    return MockTaxClient()


@pytest.fixture
def mock_signature_client():
    return MockSignatureClient()


@pytest.fixture
def mock_event_bus():
    """Create mock event bus"""
    return MockEventBus()


@pytest.fixture
def sales_order_service(mock_repository, mock_tax_client, mock_signature_client, mock_event_bus):
    """Create sales order service with mocked dependencies"""
    from microservices.sales_order_service.sales_order_service import SalesOrderService
    from microservices.sales_order_service.tax_engine import TaxEngine

    return SalesOrderService(
        repository=mock_repository,
        tax_engine=TaxEngine(tax_client=mock_tax_client, origin_address={"country": "US", "state": "WA"}),
        event_bus=mock_event_bus,
        signature_client=mock_signature_client,
    )


@pytest.fixture
def session(data_factory):
    """Sales manager session in the test tenant"""
    return data_factory.make_session(role="sales_manager", tenant_id="tenant_test")


@pytest.fixture
def stock(mock_repository, data_factory):
    """Put available inventory for a SKU into the test tenant"""
    def _stock(sku: str, quantity: Any, status: str = "available"):
        lot = data_factory.make_inventory_lot(sku, Decimal(str(quantity)), status=status)
        mock_repository.add_lot("tenant_test", lot)
        return lot
    return _stock
