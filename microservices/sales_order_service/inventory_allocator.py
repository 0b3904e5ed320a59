"""
Inventory Allocator

Pure allocation of ordered quantities against available inventory.
Nothing here writes; the approval transition persists the result.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence

from .models import AllocationStatus, InventoryLot, LineAllocation, SalesOrderLineInput

AVAILABLE_LOT_STATUS = "available"


def summarize_available(lots: Iterable[InventoryLot]) -> Dict[str, Decimal]:
    """On-hand quantity per SKU across all available lots, regardless of location."""
    available: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for lot in lots:
        if (lot.status or "").lower() != AVAILABLE_LOT_STATUS:
            continue
        available[lot.sku] += lot.quantity
    return dict(available)


def allocate_line(line: SalesOrderLineInput, available: Decimal) -> LineAllocation:
    needed = line.quantity_ordered
    available = max(Decimal("0"), available)
    allocatable = min(needed, available)
    backordered = max(Decimal("0"), needed - available)
    return LineAllocation(
        line_id=line.line_id,
        sku=line.sku,
        needed=needed,
        available=available,
        allocatable=allocatable,
        backordered=backordered,
        status=AllocationStatus.BACKORDERED if backordered > 0 else AllocationStatus.AVAILABLE,
    )


def allocate(
    lines: Sequence[SalesOrderLineInput],
    available_by_sku: Mapping[str, Decimal],
) -> List[LineAllocation]:
    """
    Allocation per line against the available inventory snapshot.

    Each line is compared with the full availability of its SKU; lines
    sharing a SKU do not consume from each other.
    """
    return [
        allocate_line(line, available_by_sku.get(line.sku or "", Decimal("0")))
        for line in lines
    ]
