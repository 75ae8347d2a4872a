"""
ePay carrier payment adapter.

Syncs carriers, submits pay sheets for payment and tracks their status.
Every request is signed: X-Signature is an HMAC-SHA256 (keyed with the API
secret) over ``"{api_key}:{member_id}:{timestamp}"``.
"""

import hashlib
import hmac
import time
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tms_core.core.errors import IntegrationError
from tms_core.core.results import IntegrationResult
from tms_core.data.models import Carrier, CarrierPaymentMethod, Load, PaySheet
from tms_core.integrations.base import ProviderAdapter, first_present

PAYMENT_EVENTS = ("payment.updated", "payment.status_changed")
CARRIER_EVENTS = ("carrier.updated",)


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentLine(WireModel):
    description: str
    amount: float
    type: str


class CityState(WireModel):
    city: str = ""
    state: str = ""


class PaymentRequest(WireModel):
    broker_id: str
    carrier_id: str
    reference_number: str
    load_number: str
    amount: float
    payment_type: str  # "standard" or "quick-pay"
    quick_pay_fee: Optional[float] = None
    line_items: list[PaymentLine]
    deductions: list[PaymentLine] = Field(default_factory=list)
    origin: CityState
    destination: CityState
    delivery_date: Optional[str] = None
    notes: Optional[str] = None


class PaymentStatus(WireModel):
    transaction_id: Optional[str] = None
    status: Optional[str] = None  # pending / processing / approved / paid / rejected
    estimated_pay_date: Optional[str] = None
    message: Optional[str] = None


class EPayCarrier(WireModel):
    carrier_id: Optional[str] = None
    mc_number: Optional[str] = None
    dot_number: Optional[str] = None
    company_name: Optional[str] = None
    payment_method: Optional[str] = None
    factoring_company: Optional[str] = None
    status: Optional[str] = None


class WebhookNotice(BaseModel):
    type: str  # payment_update / carrier_update / unknown
    transaction_id: Optional[str] = None
    carrier_id: Optional[str] = None
    status: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


def _status_from(result: dict[str, Any], transaction_id: Optional[str] = None) -> PaymentStatus:
    return PaymentStatus(
        transaction_id=first_present(result, "transactionId", "id", default=transaction_id),
        status=first_present(result, "status"),
        estimated_pay_date=first_present(result, "estimatedPayDate"),
        message=first_present(result, "message"),
    )


def parse_webhook(payload: Any) -> WebhookNotice:
    """Classify an ePay webhook body."""
    if not isinstance(payload, dict):
        return WebhookNotice(type="unknown")
    event = payload.get("event")
    if event in PAYMENT_EVENTS:
        return WebhookNotice(
            type="payment_update",
            transaction_id=first_present(payload, "transactionId", "data.transactionId"),
            status=first_present(payload, "status", "data.status"),
            data=payload,
        )
    if event in CARRIER_EVENTS:
        return WebhookNotice(
            type="carrier_update",
            carrier_id=first_present(payload, "carrierId", "data.carrierId"),
            data=payload,
        )
    return WebhookNotice(type="unknown", data=payload)


class EPayAdapter(ProviderAdapter):
    """ePay broker API client."""

    provider = "epay"
    display_name = "ePay"

    @property
    def base_url(self) -> str:
        return self.settings.epay_api_url.rstrip("/")

    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.epay_member_id and s.epay_api_key and s.epay_api_secret)

    def sign(self, timestamp: str) -> str:
        message = f"{self.settings.epay_api_key}:{self.settings.epay_member_id}:{timestamp}"
        secret = (self.settings.epay_api_secret or "").encode()
        return hmac.new(secret, message.encode(), hashlib.sha256).hexdigest()

    def ensure_authenticated(self) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        return {
            "X-Api-Key": self.settings.epay_api_key or "",
            "X-Member-Id": self.settings.epay_member_id or "",
            "X-Timestamp": timestamp,
            "X-Signature": self.sign(timestamp),
        }

    # Carriers

    def sync_carrier(self, carrier: Carrier) -> IntegrationResult:
        """Register a carrier with ePay. data: ePay carrier id."""
        body = {
            "mcNumber": carrier.mc_number,
            "dotNumber": carrier.dot_number,
            "companyName": carrier.company_name,
            "contactName": carrier.primary_contact,
            "email": carrier.email,
            "phone": carrier.phone,
            "paymentMethod": "factoring" if carrier.payment_method == CarrierPaymentMethod.FACTORING else "ach",
            "factoringCompany": carrier.factoring_company,
        }

        def run() -> Optional[str]:
            return first_present(self.request("/carriers", "POST", body), "carrierId", "id")

        return self._call("sync_carrier", run)

    def get_carrier_by_mc(self, mc_number: str) -> IntegrationResult:
        """Look a carrier up by MC number. data: EPayCarrier or None if unknown."""

        def run() -> Optional[EPayCarrier]:
            try:
                result = self.request(f"/carriers/mc/{mc_number}")
            except IntegrationError as e:
                if e.status_code == 404:
                    return None
                raise
            return EPayCarrier.model_validate(result)

        return self._call("get_carrier_by_mc", run)

    def get_carrier_pending_payments(self, carrier_id: str) -> IntegrationResult:
        """data: list[PaymentStatus]."""

        def run() -> list[PaymentStatus]:
            result = self.request(f"/carriers/{carrier_id}/payments", params={"status": "pending"})
            return [_status_from(p) for p in first_present(result, "payments", default=[])]

        return self._call("get_carrier_pending_payments", run)

    # Payments

    def build_payment_request(self, carrier: Carrier, loads: list[Load], pay_sheet: PaySheet) -> PaymentRequest:
        """
        Payment request for a pay sheet.

        Origin comes from the first load's pickup, destination and delivery
        date from the last load's delivery.
        """
        first, last = loads[0], loads[-1]
        is_quick_pay = pay_sheet.payment_type == CarrierPaymentMethod.QUICK_PAY
        return PaymentRequest(
            broker_id=self.settings.epay_member_id or "",
            carrier_id=carrier.epay_carrier_id or "",
            reference_number=pay_sheet.pay_sheet_number or "",
            load_number=", ".join(load.display_number for load in loads),
            amount=float(pay_sheet.total),
            payment_type="quick-pay" if is_quick_pay else "standard",
            quick_pay_fee=(
                float(pay_sheet.quick_pay_fee_percent or Decimal("0")) if is_quick_pay else None
            ),
            line_items=[
                PaymentLine(description=i.description, amount=float(i.amount), type=i.type.value)
                for i in pay_sheet.line_items
            ],
            deductions=[
                PaymentLine(description=d.description, amount=float(d.amount), type=d.type.value)
                for d in pay_sheet.deductions
            ],
            origin=CityState(
                city=(first.pickup_address.city if first.pickup_address else None) or "",
                state=(first.pickup_address.state if first.pickup_address else None) or "",
            ),
            destination=CityState(
                city=(last.delivery_address.city if last.delivery_address else None) or "",
                state=(last.delivery_address.state if last.delivery_address else None) or "",
            ),
            delivery_date=last.delivery_date.isoformat() if last.delivery_date else None,
            notes=pay_sheet.notes,
        )

    def submit_payment(self, payment: PaymentRequest) -> IntegrationResult:
        """data: PaymentStatus with the ePay transaction id."""

        def run() -> PaymentStatus:
            return _status_from(self.request("/payments", "POST", payment.to_wire()))

        return self._call("submit_payment", run)

    def get_payment_status(self, transaction_id: str) -> IntegrationResult:
        def run() -> PaymentStatus:
            return _status_from(self.request(f"/payments/{transaction_id}"), transaction_id)

        return self._call("get_payment_status", run)

    def cancel_payment(self, transaction_id: str, reason: str) -> IntegrationResult:
        def run() -> PaymentStatus:
            self.request(f"/payments/{transaction_id}/cancel", "POST", {"reason": reason})
            return PaymentStatus(transaction_id=transaction_id, status="rejected")

        return self._call("cancel_payment", run)

    parse_webhook = staticmethod(parse_webhook)
