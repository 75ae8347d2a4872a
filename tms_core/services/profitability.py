"""
Rate & Margin Calculator - per-load and batch profitability.

Pure functions, no I/O:
- load_profitability: revenue, cost, profit, margin % and per-mile figures
- batch_profitability: the same summed across a collection
- target_rate: minimum customer rate that yields a target margin

Money is carried as unrounded Decimal through every sum and rounded half
away from zero only when a result is returned.
"""

from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from tms_core.core.errors import ComputationError
from tms_core.core.money import ZERO, round_money, safe_divide, sum_amounts, to_decimal
from tms_core.data.models import BillTo, Load

HUNDRED = Decimal("100")


class LoadProfitability(BaseModel):
    """Profitability of a single load."""

    load_id: str
    load_number: str
    customer_rate: Decimal
    carrier_rate: Decimal
    accessorial_revenue: Decimal
    accessorial_cost: Decimal
    gross_revenue: Decimal
    gross_cost: Decimal
    gross_profit: Decimal
    margin_percent: Decimal

    # Only present when the load has miles > 0
    revenue_per_mile: Optional[Decimal] = None
    cost_per_mile: Optional[Decimal] = None
    margin_per_mile: Optional[Decimal] = None


class BatchTotals(BaseModel):
    total_revenue: Decimal
    total_cost: Decimal
    total_profit: Decimal
    average_margin_percent: Decimal
    total_miles: int
    profit_per_mile: Decimal


class BatchProfitability(BaseModel):
    per_load: list[LoadProfitability]
    totals: BatchTotals


class TargetRate(BaseModel):
    minimum_customer_rate: Decimal
    target_profit: Decimal


class _Figures:
    """Unrounded revenue/cost for one load."""

    __slots__ = ("customer_rate", "carrier_rate", "accessorial_revenue", "accessorial_cost", "miles")

    def __init__(self, load: Load) -> None:
        self.customer_rate = to_decimal(load.customer_rate)
        self.carrier_rate = to_decimal(load.carrier_rate)
        self.accessorial_revenue = sum_amounts(
            a.amount for a in load.accessorials if a.bill_to == BillTo.CUSTOMER
        )
        self.accessorial_cost = sum_amounts(
            a.amount for a in load.accessorials if a.bill_to == BillTo.CARRIER
        )
        self.miles = load.miles or 0

    @property
    def revenue(self) -> Decimal:
        return self.customer_rate + self.accessorial_revenue

    @property
    def cost(self) -> Decimal:
        return self.carrier_rate + self.accessorial_cost

    @property
    def profit(self) -> Decimal:
        return self.revenue - self.cost


def margin_percent(profit: Decimal, revenue: Decimal) -> Decimal:
    """profit / revenue * 100, or 0 when there is no revenue."""
    ratio = safe_divide(profit, revenue)
    return ZERO if ratio is None else ratio * HUNDRED


def _per_mile(amount: Decimal, miles: int) -> Optional[Decimal]:
    if miles <= 0:
        return None
    return round_money(amount / Decimal(miles))


def load_profitability(load: Load) -> LoadProfitability:
    """
    Calculate profitability for a single load.

    Accessorials billed to the customer add revenue, those billed to the
    carrier add cost, internal ones are ignored.

    Args:
        load: Load to evaluate

    Returns:
        LoadProfitability with money rounded to cents
    """
    f = _Figures(load)
    return LoadProfitability(
        load_id=load.id,
        load_number=load.load_number or "",
        customer_rate=round_money(f.customer_rate),
        carrier_rate=round_money(f.carrier_rate),
        accessorial_revenue=round_money(f.accessorial_revenue),
        accessorial_cost=round_money(f.accessorial_cost),
        gross_revenue=round_money(f.revenue),
        gross_cost=round_money(f.cost),
        gross_profit=round_money(f.profit),
        margin_percent=round_money(margin_percent(f.profit, f.revenue)),
        revenue_per_mile=_per_mile(f.revenue, f.miles),
        cost_per_mile=_per_mile(f.cost, f.miles),
        margin_per_mile=_per_mile(f.profit, f.miles),
    )


def batch_totals(loads: Iterable[Load]) -> BatchTotals:
    """Totals across loads, summed unrounded and rounded once."""
    figures = [_Figures(load) for load in loads]

    total_revenue = sum_amounts(f.revenue for f in figures)
    total_cost = sum_amounts(f.cost for f in figures)
    total_profit = total_revenue - total_cost
    total_miles = sum(f.miles for f in figures)
    profit_per_mile = safe_divide(total_profit, Decimal(total_miles)) or ZERO

    return BatchTotals(
        total_revenue=round_money(total_revenue),
        total_cost=round_money(total_cost),
        total_profit=round_money(total_profit),
        average_margin_percent=round_money(margin_percent(total_profit, total_revenue)),
        total_miles=total_miles,
        profit_per_mile=round_money(profit_per_mile),
    )


def batch_profitability(loads: list[Load]) -> BatchProfitability:
    """
    Calculate profitability across multiple loads.

    Args:
        loads: Loads to evaluate

    Returns:
        Per-load results plus totals
    """
    return BatchProfitability(
        per_load=[load_profitability(load) for load in loads],
        totals=batch_totals(loads),
    )


def target_rate(carrier_rate: Decimal, target_margin_percent: Decimal) -> TargetRate:
    """
    Minimum customer rate for a target margin.

    Solves ``revenue = cost / (1 - margin / 100)``.

    Args:
        carrier_rate: Cost side of the load
        target_margin_percent: Desired margin, e.g. 20 for 20%

    Returns:
        TargetRate with the minimum customer rate and resulting profit

    Raises:
        ComputationError: If target_margin_percent >= 100
    """
    cost = to_decimal(carrier_rate)
    margin = to_decimal(target_margin_percent)
    if margin >= HUNDRED:
        raise ComputationError(
            "Target margin must be below 100%", target_margin_percent=str(margin)
        )

    revenue = cost / (1 - margin / HUNDRED)
    return TargetRate(
        minimum_customer_rate=round_money(revenue),
        target_profit=round_money(revenue - cost),
    )
