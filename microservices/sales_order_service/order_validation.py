"""
Ship-to address and order line validation shared by tax computation and
the submission/transition guards.
"""

import re
from typing import List, Optional, Sequence

from .models import PostalAddress, SalesOrderLineInput
from .protocols import OrderValidationError

PO_BOX_PATTERN = re.compile(
    r"\b(P\.?\s*O\.?\s*BOX|POST\s*OFFICE\s*BOX|POBOX)\b",
    re.IGNORECASE,
)

REQUIRED_ADDRESS_FIELDS = ("line1", "city", "region", "postal_code", "country")


def is_po_box_address(address: Optional[PostalAddress]) -> bool:
    if address is None:
        return False
    return any(
        PO_BOX_PATTERN.search(value or "")
        for value in (address.line1, address.line2, address.line3)
    )


def missing_address_fields(address: Optional[PostalAddress]) -> List[str]:
    if address is None:
        return list(REQUIRED_ADDRESS_FIELDS)
    return [
        field for field in REQUIRED_ADDRESS_FIELDS
        if not (getattr(address, field) or "").strip()
    ]


def is_address_complete(address: Optional[PostalAddress]) -> bool:
    return not missing_address_fields(address)


def is_valid_line(line: SalesOrderLineInput) -> bool:
    """A line counts when it references a product and has positive quantity and price."""
    return bool(line.product_id or line.sku) and line.quantity_ordered > 0 and line.unit_price > 0


def valid_lines(lines: Sequence[SalesOrderLineInput]) -> List[SalesOrderLineInput]:
    return [line for line in lines if is_valid_line(line)]


def validate_ship_to(address: Optional[PostalAddress]) -> None:
    """
    Raises:
        OrderValidationError: incomplete address (guard ship_to_complete) or
            PO box in line 1-3 (guard ship_to_po_box)
    """
    missing = missing_address_fields(address)
    if missing:
        raise OrderValidationError(
            f"Ship-to address is incomplete: missing {', '.join(missing)}",
            guard="ship_to_complete",
        )
    if is_po_box_address(address):
        raise OrderValidationError(
            "Ship-to address cannot be a PO Box",
            guard="ship_to_po_box",
        )


def validate_tax_inputs(
    address: Optional[PostalAddress], lines: Sequence[SalesOrderLineInput]
) -> List[SalesOrderLineInput]:
    """
    Validate the inputs of a tax computation or submission.

    Returns:
        The valid lines, in submitted order
    """
    validate_ship_to(address)
    usable = valid_lines(lines)
    if not usable:
        raise OrderValidationError(
            "At least one line with a product, quantity and unit price is required",
            guard="valid_lines",
        )
    return usable
