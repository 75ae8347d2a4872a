"""
Core services for the brokerage.

This module contains:
- Loads: booking, carrier assignment and status progression
- Billing: invoices, carrier pay sheets and their external sync
- Tracking: MacroPoint orders and location webhooks
- Reporting: customer, carrier and lane profitability
- Profitability / line items / documents: pure calculators and assemblers
"""

from .billing import BillingService
from .documents import InvoiceAssembler, PaymentPolicy, PaySheetAssembler
from .line_items import build_carrier_line_items, build_customer_line_items
from .loads import LoadService, transition
from .profitability import batch_profitability, load_profitability, target_rate
from .reporting import ReportingService, ReportType
from .sequence import SequenceGenerator, next_number
from .tracking import TrackingEventProcessor, TrackingService

__all__ = [
    "BillingService",
    "InvoiceAssembler",
    "PaySheetAssembler",
    "PaymentPolicy",
    "build_customer_line_items",
    "build_carrier_line_items",
    "LoadService",
    "transition",
    "load_profitability",
    "batch_profitability",
    "target_rate",
    "ReportingService",
    "ReportType",
    "SequenceGenerator",
    "next_number",
    "TrackingService",
    "TrackingEventProcessor",
]
