"""
Billing documents: customer invoices and carrier pay sheets.

Totals are derived fields, so they are recomputed on every read and can
never be hand-edited: total = sum(line items) - sum(deductions).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from tms_core.core.money import sum_amounts
from tms_core.data.models.party import CarrierPaymentMethod, PaymentTerms


class LineItemType(str, Enum):
    LINEHAUL = "linehaul"
    DETENTION = "detention"
    LAYOVER = "layover"
    LUMPER = "lumper"
    FUEL_ADVANCE = "fuel-advance"
    OTHER = "other"


class DeductionType(str, Enum):
    QUICK_PAY_FEE = "quick-pay-fee"
    INSURANCE = "insurance"
    CARGO_CLAIM = "cargo-claim"
    CHARGEBACK = "chargeback"
    OTHER = "other"


class LineItem(BaseModel):
    """Billable line, optionally traceable to the load it came from."""

    description: str
    quantity: Decimal = Decimal("1")
    rate: Decimal
    type: LineItemType = LineItemType.OTHER
    load_id: Optional[str] = None

    @computed_field
    @property
    def amount(self) -> Decimal:
        return self.quantity * self.rate


class Deduction(BaseModel):
    description: str
    amount: Decimal
    type: DeductionType = DeductionType.OTHER


class SyncStatus(str, Enum):
    NOT_SYNCED = "not-synced"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class SyncRecord(BaseModel):
    """State of the document in an external accounting/payment system."""

    external_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    status: SyncStatus = SyncStatus.NOT_SYNCED
    error: Optional[str] = None


class PaymentEntry(BaseModel):
    amount: Decimal
    paid_at: datetime
    reference: Optional[str] = None


class BillingDocument(BaseModel):
    """Fields and totals shared by invoices and pay sheets."""

    id: Optional[str] = None
    load_ids: list[str] = Field(default_factory=list)
    line_items: list[LineItem] = Field(default_factory=list)
    deductions: list[Deduction] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    sync: SyncRecord = Field(default_factory=SyncRecord)
    notes: Optional[str] = None

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return sum_amounts(item.amount for item in self.line_items)

    @computed_field
    @property
    def total_deductions(self) -> Decimal:
        return sum_amounts(d.amount for d in self.deductions)

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.subtotal - self.total_deductions


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class Invoice(BillingDocument):
    """Customer-facing bill for one or more loads."""

    invoice_number: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    customer_id: str
    customer_name: str
    invoice_date: datetime
    payment_terms: PaymentTerms = PaymentTerms.NET_30
    payments: list[PaymentEntry] = Field(default_factory=list)

    @computed_field
    @property
    def amount_paid(self) -> Decimal:
        return sum_amounts(p.amount for p in self.payments)

    @computed_field
    @property
    def balance_due(self) -> Decimal:
        return self.total - self.amount_paid


class PaySheetStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"
    VOID = "void"


class PaySheet(BillingDocument):
    """Carrier-facing payment document."""

    pay_sheet_number: Optional[str] = None
    status: PaySheetStatus = PaySheetStatus.PENDING
    carrier_id: str
    carrier_name: str
    created_at: datetime
    payment_type: CarrierPaymentMethod = CarrierPaymentMethod.STANDARD
    quick_pay_fee_percent: Optional[Decimal] = None
    factoring_company: Optional[str] = None
