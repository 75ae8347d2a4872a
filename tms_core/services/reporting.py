"""
Profitability Reporting Aggregator.

Batches the rate & margin calculator over a load set to produce customer,
carrier, lane and summary reports. Lanes are grouped by origin state and
destination state only; city names on a lane row come from the first load
seen for that pair.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel

from tms_core.core.config import ConfigManager
from tms_core.core.errors import ValidationError
from tms_core.core.money import round_money, safe_divide, sum_amounts, to_decimal
from tms_core.data.models import BillTo, Carrier, Customer, Load
from tms_core.data.store import DocumentStore, Filter
from tms_core.services.base import BaseService
from tms_core.services.profitability import BatchProfitability, batch_profitability, batch_totals

TOP_N = 10
UNKNOWN = "Unknown"
UNKNOWN_STATE = "XX"


class ReportType(str, Enum):
    SUMMARY = "summary"
    LOADS = "loads"
    CUSTOMERS = "customers"
    CARRIERS = "carriers"
    LANES = "lanes"


class ReportPeriod(BaseModel):
    start_date: date
    end_date: date


class CustomerProfitability(BaseModel):
    customer_id: str
    customer_name: str
    total_loads: int
    total_revenue: Decimal
    total_cost: Decimal
    total_profit: Decimal
    average_margin_percent: Decimal
    average_revenue_per_load: Decimal
    average_profit_per_load: Decimal


class CarrierProfitability(BaseModel):
    carrier_id: str
    carrier_name: str
    mc_number: str
    total_loads: int
    total_paid: Decimal
    average_rate_per_load: Decimal
    average_rate_per_mile: Optional[Decimal] = None


class LaneProfitability(BaseModel):
    origin_city: str
    origin_state: str
    destination_city: str
    destination_state: str
    total_loads: int
    average_customer_rate: Decimal
    average_carrier_rate: Decimal
    average_margin: Decimal
    average_margin_percent: Decimal
    average_miles: Optional[int] = None


class ProfitabilitySummary(BaseModel):
    period: ReportPeriod
    total_loads: int
    total_revenue: Decimal
    total_cost: Decimal
    gross_profit: Decimal
    average_margin_percent: Decimal
    top_customers: list[CustomerProfitability]
    top_lanes: list[LaneProfitability]
    loads_by_status: dict[str, int]


class GroupReport(BaseModel):
    """Customers, carriers or lanes for a period."""

    period: ReportPeriod
    total_loads: int
    rows: list[Union[CustomerProfitability, CarrierProfitability, LaneProfitability]]


def _group(loads: list[Load], key: Any) -> dict[Any, list[Load]]:
    # Insertion-ordered so ties keep input order after the stable sort
    groups: dict[Any, list[Load]] = {}
    for load in loads:
        group_key = key(load)
        if group_key is not None:
            groups.setdefault(group_key, []).append(load)
    return groups


def _per_load(total: Decimal, count: int) -> Decimal:
    return round_money(total / Decimal(count))


def customer_profitability(loads: list[Load], customers: dict[str, Customer]) -> list[CustomerProfitability]:
    """
    Profitability per customer, highest total profit first.

    Args:
        loads: Loads to aggregate
        customers: Customer records by id (missing names report as "Unknown")
    """
    rows = []
    for customer_id, group in _group(loads, lambda load: load.customer_id).items():
        totals = batch_totals(group)
        customer = customers.get(customer_id)
        rows.append(
            CustomerProfitability(
                customer_id=customer_id,
                customer_name=customer.company_name if customer else UNKNOWN,
                total_loads=len(group),
                total_revenue=totals.total_revenue,
                total_cost=totals.total_cost,
                total_profit=totals.total_profit,
                average_margin_percent=totals.average_margin_percent,
                average_revenue_per_load=_per_load(totals.total_revenue, len(group)),
                average_profit_per_load=_per_load(totals.total_profit, len(group)),
            )
        )
    return sorted(rows, key=lambda r: r.total_profit, reverse=True)


def _carrier_cost(load: Load) -> Decimal:
    return to_decimal(load.carrier_rate) + sum_amounts(
        a.amount for a in load.accessorials if a.bill_to == BillTo.CARRIER
    )


def carrier_profitability(loads: list[Load], carriers: dict[str, Carrier]) -> list[CarrierProfitability]:
    """Amount paid per carrier, highest total paid first."""
    rows = []
    for carrier_id, group in _group(loads, lambda load: load.carrier_id).items():
        total_paid = sum_amounts(_carrier_cost(load) for load in group)
        total_miles = sum(load.miles or 0 for load in group)
        per_mile = safe_divide(total_paid, Decimal(total_miles))
        carrier = carriers.get(carrier_id)
        rows.append(
            CarrierProfitability(
                carrier_id=carrier_id,
                carrier_name=carrier.company_name if carrier else UNKNOWN,
                mc_number=carrier.mc_number if carrier else "",
                total_loads=len(group),
                total_paid=round_money(total_paid),
                average_rate_per_load=_per_load(total_paid, len(group)),
                average_rate_per_mile=round_money(per_mile) if per_mile is not None else None,
            )
        )
    return sorted(rows, key=lambda r: r.total_paid, reverse=True)


def lane_key(load: Load) -> str:
    """``"{origin state}-{destination state}"``, "XX" for a missing state."""
    origin = (load.pickup_address.state if load.pickup_address else None) or UNKNOWN_STATE
    destination = (load.delivery_address.state if load.delivery_address else None) or UNKNOWN_STATE
    return f"{origin}-{destination}"


def lane_profitability(loads: list[Load]) -> list[LaneProfitability]:
    """Per-lane averages, highest average margin first."""
    rows = []
    for group in _group(loads, lane_key).values():
        totals = batch_totals(group)
        first = group[0]
        pickup = first.pickup_address
        delivery = first.delivery_address
        count = len(group)
        rows.append(
            LaneProfitability(
                origin_city=(pickup.city if pickup else None) or UNKNOWN,
                origin_state=(pickup.state if pickup else None) or UNKNOWN_STATE,
                destination_city=(delivery.city if delivery else None) or UNKNOWN,
                destination_state=(delivery.state if delivery else None) or UNKNOWN_STATE,
                total_loads=count,
                average_customer_rate=_per_load(totals.total_revenue, count),
                average_carrier_rate=_per_load(totals.total_cost, count),
                average_margin=_per_load(totals.total_profit, count),
                average_margin_percent=totals.average_margin_percent,
                average_miles=round(totals.total_miles / count) if totals.total_miles > 0 else None,
            )
        )
    return sorted(rows, key=lambda r: r.average_margin, reverse=True)


def summary(
    loads: list[Load], customers: dict[str, Customer], period: ReportPeriod, top_n: int = TOP_N
) -> ProfitabilitySummary:
    """Totals, the top customers and lanes (10 by default) and a per-status load count."""
    totals = batch_totals(loads)
    return ProfitabilitySummary(
        period=period,
        total_loads=len(loads),
        total_revenue=totals.total_revenue,
        total_cost=totals.total_cost,
        gross_profit=totals.total_profit,
        average_margin_percent=totals.average_margin_percent,
        top_customers=customer_profitability(loads, customers)[:top_n],
        top_lanes=lane_profitability(loads)[:top_n],
        loads_by_status=dict(Counter(load.status.value for load in loads)),
    )


class ReportingService(BaseService):
    """
    Builds profitability reports from stored loads.

    Example:
        reports = ReportingService(store)
        report = reports.generate("lanes", start_date=date(2025, 1, 1))
    """

    def __init__(self, store: DocumentStore, config_manager: Optional[ConfigManager] = None) -> None:
        super().__init__("reporting", store, config_manager)
        settings = self.config_manager.get_reporting_config()
        self.window_days = int(settings.get("default_window_days", 30))
        self.max_loads = int(settings.get("max_loads", 1000))
        self.top_n = int(settings.get("top_n", TOP_N))

    def period(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> ReportPeriod:
        """Report window; defaults to the last ``default_window_days`` days."""
        end_date = end_date or date.today()
        start_date = start_date or (end_date - timedelta(days=self.window_days))
        if start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )
        return ReportPeriod(start_date=start_date, end_date=end_date)

    def fetch_loads(
        self,
        period: ReportPeriod,
        customer_id: Optional[str] = None,
        carrier_id: Optional[str] = None,
    ) -> list[Load]:
        """Loads created within the period (whole days, inclusive)."""
        where: Filter = {
            "created_at": {
                "greater_than_equal": datetime.combine(period.start_date, time.min),
                "less_than_equal": datetime.combine(period.end_date, time.max),
            }
        }
        if customer_id:
            where["customer.id"] = {"equals": customer_id}
        if carrier_id:
            where["carrier.id"] = {"equals": carrier_id}
        loads = self.repository.find_loads(where, limit=self.max_loads)
        if len(loads) == self.max_loads:
            self.logger.warning("report_load_limit_reached", limit=self.max_loads)
        return loads

    def generate(
        self,
        report_type: Union[ReportType, str] = ReportType.SUMMARY,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        customer_id: Optional[str] = None,
        carrier_id: Optional[str] = None,
    ) -> Union[ProfitabilitySummary, BatchProfitability, GroupReport]:
        """
        Generate a profitability report.

        Args:
            report_type: summary, loads, customers, carriers or lanes
            start_date: First day of the window (default 30 days before end)
            end_date: Last day of the window (default today)
            customer_id: Only this customer's loads
            carrier_id: Only this carrier's loads

        Returns:
            Report model for the requested type

        Raises:
            ValidationError: Unknown report type or inverted date range
        """
        try:
            kind = ReportType(report_type)
        except ValueError as e:
            raise ValidationError(f"Unknown report type: {report_type}", report_type=str(report_type)) from e

        period = self.period(start_date, end_date)
        loads = self.fetch_loads(period, customer_id, carrier_id)
        self.logger.info("report_generating", report_type=kind.value, load_count=len(loads))

        if kind == ReportType.LOADS:
            return batch_profitability(loads)
        if kind == ReportType.CARRIERS:
            carriers = self.repository.carriers_by_id({load.carrier_id for load in loads if load.carrier_id})
            rows: list[Any] = carrier_profitability(loads, carriers)
        elif kind == ReportType.LANES:
            rows = lane_profitability(loads)
        else:
            customers = self.repository.customers_by_id({load.customer_id for load in loads if load.customer_id})
            if kind == ReportType.SUMMARY:
                return summary(loads, customers, period, self.top_n)
            rows = customer_profitability(loads, customers)
        return GroupReport(period=period, total_loads=len(loads), rows=rows)
