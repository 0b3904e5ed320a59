"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - api/        : HTTP contract tests (FastAPI TestClient, mocked service deps)
    - component/  : Service tests (mocked repository, clients and event bus)
    - unit/       : Pure rules, engine, allocator, aggregate and lifecycle
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("EVENTS_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.contracts.sales_order.data_contract import SalesOrderTestDataFactory


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "unit: pure logic tests, no I/O")
    config.addinivalue_line("markers", "component: service tests with mocked dependencies")
    config.addinivalue_line("markers", "api: HTTP contract tests")


@pytest.fixture
def data_factory():
    """Provide data factory for test data generation"""
    return SalesOrderTestDataFactory
