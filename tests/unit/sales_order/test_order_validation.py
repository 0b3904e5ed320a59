"""
Unit Tests for Ship-to and Line Validation
"""

import pytest

from microservices.sales_order_service.models import PostalAddress
from microservices.sales_order_service.order_validation import (
    is_address_complete,
    is_po_box_address,
    is_valid_line,
    missing_address_fields,
    validate_ship_to,
    validate_tax_inputs,
)
from microservices.sales_order_service.protocols import OrderValidationError


@pytest.mark.unit
class TestPoBoxDetection:

    @pytest.mark.parametrize("line1", [
        "PO Box 123", "P.O. Box 9", "p o box 77", "POBOX 5", "Post Office Box 12",
    ])
    def test_po_box_variants(self, data_factory, line1):
        assert is_po_box_address(data_factory.make_ship_to("ON", line1=line1))

    def test_po_box_in_line3(self, data_factory):
        assert is_po_box_address(data_factory.make_ship_to("ON", line3="PO Box 1"))

    @pytest.mark.parametrize("line1", ["100 Boxwood Dr", "12 Postal Rd", "7 Pool Boxes Way"])
    def test_street_addresses_are_not_po_boxes(self, data_factory, line1):
        assert not is_po_box_address(data_factory.make_ship_to("ON", line1=line1))


@pytest.mark.unit
class TestAddressCompleteness:

    def test_complete_address(self, data_factory):
        assert is_address_complete(data_factory.make_ship_to("QC"))

    def test_missing_fields_are_listed(self):
        assert missing_address_fields(PostalAddress(line1="1 Main", city="  ")) == [
            "city", "region", "postal_code", "country",
        ]

    def test_no_address(self):
        assert not is_address_complete(None)

    def test_incomplete_guard(self, data_factory):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_ship_to(data_factory.make_invalid_incomplete_ship_to())
        assert exc_info.value.guard == "ship_to_complete"
        assert "region" in exc_info.value.message

    def test_po_box_guard(self, data_factory):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_ship_to(data_factory.make_invalid_po_box_ship_to())
        assert exc_info.value.guard == "ship_to_po_box"


@pytest.mark.unit
class TestLineValidity:

    def test_valid_line(self, data_factory):
        assert is_valid_line(data_factory.make_line())

    def test_line_needs_product_or_sku(self, data_factory):
        line = data_factory.make_line().model_copy(update={"sku": None, "product_id": None})
        assert not is_valid_line(line)

    def test_line_needs_positive_quantity_and_price(self, data_factory):
        assert not is_valid_line(data_factory.make_line(quantity="0"))
        assert not is_valid_line(data_factory.make_line(unit_price="0"))

    def test_tax_inputs_return_valid_lines_in_order(self, data_factory):
        first = data_factory.make_line(sku="A")
        second = data_factory.make_line(sku="B")
        lines = [first, data_factory.make_invalid_zero_quantity_line(), second]

        assert validate_tax_inputs(data_factory.make_ship_to("AB"), lines) == [first, second]

    def test_tax_inputs_need_a_valid_line(self, data_factory):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_tax_inputs(data_factory.make_ship_to("AB"), [])
        assert exc_info.value.guard == "valid_lines"
