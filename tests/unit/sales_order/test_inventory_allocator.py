"""
Unit Tests for the Inventory Allocator
"""

from decimal import Decimal

import pytest

from microservices.sales_order_service.inventory_allocator import (
    allocate,
    allocate_line,
    summarize_available,
)
from microservices.sales_order_service.models import AllocationStatus


@pytest.mark.unit
class TestSummarizeAvailable:

    def test_sums_available_lots_across_locations(self, data_factory):
        lots = [
            data_factory.make_inventory_lot("SKU-1", "4", location="WH-1"),
            data_factory.make_inventory_lot("SKU-1", "6", location="WH-2"),
            data_factory.make_inventory_lot("SKU-2", "3"),
        ]
        assert summarize_available(lots) == {"SKU-1": Decimal("10"), "SKU-2": Decimal("3")}

    def test_ignores_lots_that_are_not_available(self, data_factory):
        lots = [
            data_factory.make_inventory_lot("SKU-1", "5"),
            data_factory.make_inventory_lot("SKU-1", "50", status="reserved"),
            data_factory.make_inventory_lot("SKU-1", "50", status="quarantine"),
        ]
        assert summarize_available(lots) == {"SKU-1": Decimal("5")}

    def test_status_is_case_insensitive(self, data_factory):
        lots = [data_factory.make_inventory_lot("SKU-1", "2", status="AVAILABLE")]
        assert summarize_available(lots) == {"SKU-1": Decimal("2")}


@pytest.mark.unit
class TestAllocateLine:

    def test_fully_available(self, data_factory):
        line = data_factory.make_line(sku="SKU-1", quantity="5")
        allocation = allocate_line(line, Decimal("8"))

        assert allocation.allocatable == Decimal("5")
        assert allocation.backordered == Decimal("0")
        assert allocation.status == AllocationStatus.AVAILABLE

    def test_partial_backorder(self, data_factory):
        line = data_factory.make_line(sku="SKU-1", quantity="10")
        allocation = allocate_line(line, Decimal("4"))

        assert allocation.needed == Decimal("10")
        assert allocation.allocatable == Decimal("4")
        assert allocation.backordered == Decimal("6")
        assert allocation.status == AllocationStatus.BACKORDERED

    def test_nothing_available(self, data_factory):
        line = data_factory.make_line(sku="SKU-1", quantity="3")
        allocation = allocate_line(line, Decimal("0"))

        assert allocation.allocatable == Decimal("0")
        assert allocation.backordered == Decimal("3")
        assert allocation.status == AllocationStatus.BACKORDERED

    def test_negative_availability_counts_as_zero(self, data_factory):
        line = data_factory.make_line(sku="SKU-1", quantity="3")
        allocation = allocate_line(line, Decimal("-2"))

        assert allocation.available == Decimal("0")
        assert allocation.allocatable + allocation.backordered == line.quantity_ordered


@pytest.mark.unit
class TestAllocate:

    def test_unknown_sku_is_backordered(self, data_factory):
        lines = [data_factory.make_line(sku="SKU-NEW", quantity="2")]
        [allocation] = allocate(lines, {})

        assert allocation.backordered == Decimal("2")

    def test_lines_sharing_a_sku_each_see_full_availability(self, data_factory):
        lines = [
            data_factory.make_line(sku="SKU-1", quantity="6"),
            data_factory.make_line(sku="SKU-1", quantity="6"),
        ]
        allocations = allocate(lines, {"SKU-1": Decimal("8")})

        assert [a.allocatable for a in allocations] == [Decimal("6"), Decimal("6")]
        assert all(a.status == AllocationStatus.AVAILABLE for a in allocations)

    def test_split_always_adds_up(self, data_factory):
        lines = [
            data_factory.make_line(sku="A", quantity="1"),
            data_factory.make_line(sku="B", quantity="7.5"),
            data_factory.make_line(sku="C", quantity="12"),
        ]
        allocations = allocate(lines, {"A": Decimal("5"), "B": Decimal("2.5")})

        for line, allocation in zip(lines, allocations):
            assert allocation.allocatable + allocation.backordered == line.quantity_ordered
