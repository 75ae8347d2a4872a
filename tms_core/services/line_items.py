"""
Accessorial/Line-Item Builder.

Turns loads into billing lines split by payer: the customer side feeds
invoices, the carrier side feeds pay sheets. Every line keeps the id of
the load it came from.
"""

from decimal import Decimal
from typing import Iterable, Optional

from tms_core.core.money import to_decimal
from tms_core.data.models import Accessorial, AccessorialType, BillTo, LineItem, LineItemType, Load

# Accessorial types with a dedicated line item type; the rest become "other"
_LINE_TYPES = {
    AccessorialType.DETENTION: LineItemType.DETENTION,
    AccessorialType.LAYOVER: LineItemType.LAYOVER,
    AccessorialType.LUMPER: LineItemType.LUMPER,
}


def accessorial_description(accessorial: Accessorial, load_number: str) -> str:
    """e.g. ``"Detention: 3 hrs at shipper (SPTMS-202501-0007)"``."""
    label = accessorial.type.value.capitalize()
    detail = f": {accessorial.description}" if accessorial.description else ""
    return f"{label}{detail} ({load_number})"


def _linehaul(load: Load, prefix: str, rate: Optional[Decimal]) -> LineItem:
    return LineItem(
        description=f"{prefix}: {load.display_number} - {load.route_description()}",
        quantity=Decimal("1"),
        rate=to_decimal(rate),
        type=LineItemType.LINEHAUL,
        load_id=load.id,
    )


def _accessorial_lines(load: Load, bill_to: BillTo) -> Iterable[LineItem]:
    for accessorial in load.accessorials:
        if accessorial.bill_to != bill_to:
            continue
        yield LineItem(
            description=accessorial_description(accessorial, load.display_number),
            quantity=Decimal("1"),
            rate=accessorial.amount,
            type=_LINE_TYPES.get(accessorial.type, LineItemType.OTHER),
            load_id=load.id,
        )


def build_customer_line_items(loads: Iterable[Load]) -> list[LineItem]:
    """
    Invoice lines: one freight line per load plus customer-billed accessorials.

    Args:
        loads: Loads in invoice order

    Returns:
        Line items, each carrying its source load id
    """
    items: list[LineItem] = []
    for load in loads:
        items.append(_linehaul(load, "Freight", load.customer_rate))
        items.extend(_accessorial_lines(load, BillTo.CUSTOMER))
    return items


def build_carrier_line_items(loads: Iterable[Load]) -> list[LineItem]:
    """
    Pay sheet lines: one line haul per load plus carrier-paid accessorials.

    Args:
        loads: Loads in pay sheet order

    Returns:
        Line items, each carrying its source load id
    """
    items: list[LineItem] = []
    for load in loads:
        items.append(_linehaul(load, "Line Haul", load.carrier_rate))
        items.extend(_accessorial_lines(load, BillTo.CARRIER))
    return items
