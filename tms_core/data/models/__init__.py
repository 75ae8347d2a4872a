"""
Pydantic data models for the brokerage core.

Core models:
- Load: Brokered shipment with rates, accessorials and status history
- Customer / Carrier: Counterparty master data
- Invoice / PaySheet: Derived billing documents
- TrackingEvent: Immutable location/status fix
- Unresolved / Resolved: Relationship references
"""

from .documents import (
    BillingDocument,
    Deduction,
    DeductionType,
    Invoice,
    InvoiceStatus,
    LineItem,
    LineItemType,
    PaymentEntry,
    PaySheet,
    PaySheetStatus,
    SyncRecord,
    SyncStatus,
)
from .load import (
    STATUS_PROGRESSION,
    Accessorial,
    AccessorialType,
    Address,
    BillTo,
    DocumentFlags,
    DriverInfo,
    EquipmentType,
    Load,
    LoadStatus,
    StatusHistoryEntry,
    TrackingInfo,
)
from .party import Carrier, CarrierPaymentMethod, Customer, PaymentTerms
from .refs import Resolved, Unresolved, ref_id, require_resolved
from .tracking import EventEta, EventLocation, TrackingEvent, TrackingEventType, TrackingSource

__all__ = [
    "Accessorial",
    "AccessorialType",
    "Address",
    "BillTo",
    "BillingDocument",
    "Carrier",
    "CarrierPaymentMethod",
    "Customer",
    "Deduction",
    "DeductionType",
    "DocumentFlags",
    "DriverInfo",
    "EquipmentType",
    "EventEta",
    "EventLocation",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "LineItemType",
    "Load",
    "LoadStatus",
    "PaySheet",
    "PaySheetStatus",
    "PaymentEntry",
    "PaymentTerms",
    "Resolved",
    "STATUS_PROGRESSION",
    "StatusHistoryEntry",
    "SyncRecord",
    "SyncStatus",
    "TrackingEvent",
    "TrackingEventType",
    "TrackingInfo",
    "TrackingSource",
    "Unresolved",
    "ref_id",
    "require_resolved",
]
