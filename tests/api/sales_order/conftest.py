"""
Sales Order Service API Test Configuration

Runs the FastAPI app in-process through httpx's ASGI transport with the
service global patched to a SalesOrderService over in-memory mocks.
"""

from typing import AsyncGenerator, Dict
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from microservices.sales_order_service.sales_order_service import SalesOrderService
from microservices.sales_order_service.tax_engine import TaxEngine
from tests.fixtures.sales_order_mocks import (
    MockEventBus,
    MockSalesOrderRepository,
    MockSignatureClient,
    MockTaxClient,
)

TENANT_ID = "tenant_api"


@pytest.fixture
def mock_repository():
    return MockSalesOrderRepository()


@pytest.fixture
def mock_tax_client():
    return MockTaxClient()


@pytest.fixture
def mock_signature_client():
    return MockSignatureClient()


@pytest.fixture
def sales_order_service(mock_repository, mock_tax_client, mock_signature_client):
    return SalesOrderService(
        repository=mock_repository,
        tax_engine=TaxEngine(tax_client=mock_tax_client, origin_address={"country": "US", "state": "WA"}),
        event_bus=MockEventBus(),
        signature_client=mock_signature_client,
    )


@pytest_asyncio.fixture
async def client(sales_order_service) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client against the app; lifespan is not run"""
    from microservices.sales_order_service.main import app

    with patch("microservices.sales_order_service.main.sales_order_service", sales_order_service), \
         patch("microservices.sales_order_service.main.event_bus", None):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac


def session_headers(role: str = "sales_manager", user_id: str = "user_api") -> Dict[str, str]:
    return {"X-Tenant-Id": TENANT_ID, "X-User-Role": role, "X-User-Id": user_id}


@pytest.fixture
def headers() -> Dict[str, str]:
    """Sales manager session headers"""
    return session_headers()


@pytest.fixture
def clerk_headers() -> Dict[str, str]:
    """Session headers of a role that may not approve"""
    return session_headers(role="user", user_id="user_clerk")
