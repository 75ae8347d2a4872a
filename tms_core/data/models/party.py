"""
Customer and carrier master data (only the fields the core reads).
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentTerms(str, Enum):
    """Customer invoice terms."""

    DUE_ON_RECEIPT = "due-on-receipt"
    NET_15 = "net-15"
    NET_30 = "net-30"
    NET_45 = "net-45"
    NET_60 = "net-60"


class CarrierPaymentMethod(str, Enum):
    """How a carrier prefers to be paid."""

    STANDARD = "standard"
    QUICK_PAY = "quick-pay"
    FACTORING = "factoring"


class Customer(BaseModel):
    """Shipper or broker customer billed by invoice."""

    id: str
    company_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    billing_address_line1: Optional[str] = None
    billing_city: Optional[str] = None
    billing_state: Optional[str] = None
    billing_zip: Optional[str] = None
    payment_terms: PaymentTerms = PaymentTerms.NET_30
    quickbooks_id: Optional[str] = Field(None, description="QuickBooks customer id once synced")


class Carrier(BaseModel):
    """Motor carrier paid by pay sheet."""

    id: str
    company_name: str
    mc_number: str
    dot_number: Optional[str] = None
    primary_contact: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    dispatch_email: Optional[str] = None
    payment_method: CarrierPaymentMethod = CarrierPaymentMethod.STANDARD
    factoring_company: Optional[str] = None
    epay_carrier_id: Optional[str] = Field(None, description="ePay carrier id once synced")
