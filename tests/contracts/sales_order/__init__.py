"""
Sales Order Service Contracts

Test data factory for sales_order_service testing.
"""

from .data_contract import ADDRESSES, SalesOrderTestDataFactory

__all__ = ["ADDRESSES", "SalesOrderTestDataFactory"]
