"""
Document Assembler - builds invoices and carrier pay sheets from loads.

Two assemblers share one contract, ``assemble(loads, combine, policy)``:
- InvoiceAssembler: customer-facing, loads must be exactly ``delivered``
- PaySheetAssembler: carrier-facing, loads must be delivered or later

Every load is validated before any document is built, so a failing batch
produces no documents at all. Assemblers never touch the store: numbering,
persistence and load status changes belong to ``BillingService``.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel, Field

from tms_core.core.config import ConfigManager, get_config
from tms_core.core.errors import ValidationError
from tms_core.core.money import round_money, sum_amounts, to_decimal
from tms_core.data.models import (
    Carrier,
    CarrierPaymentMethod,
    Customer,
    Deduction,
    DeductionType,
    Invoice,
    InvoiceStatus,
    Load,
    LoadStatus,
    PaymentTerms,
    PaySheet,
    PaySheetStatus,
    require_resolved,
)
from tms_core.services.line_items import build_carrier_line_items, build_customer_line_items

logger = structlog.get_logger(component="documents")

D = TypeVar("D", Invoice, PaySheet)

PAY_SHEET_ELIGIBLE = (LoadStatus.DELIVERED, LoadStatus.INVOICED, LoadStatus.PAID)


class PaymentPolicy(BaseModel):
    """
    Due-date and fee rules applied during assembly.

    ``payment_terms`` / ``payment_type`` override the counterparty's own
    preference when set.
    """

    payment_terms: Optional[PaymentTerms] = None
    payment_type: Optional[CarrierPaymentMethod] = None
    default_payment_terms: PaymentTerms = PaymentTerms.NET_30
    term_days: dict[str, int] = Field(default_factory=dict)
    quick_pay_fee_percent: Decimal = Decimal("3")
    quick_pay_due_days: int = 2
    standard_due_days: int = 30
    issued_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config_manager: Optional[ConfigManager] = None, **overrides: Any) -> "PaymentPolicy":
        """Build the policy from the billing section of config.yaml."""
        config_manager = config_manager or get_config()
        billing = config_manager.get_billing_config()
        values: dict[str, Any] = {
            "default_payment_terms": billing.get("default_payment_terms", PaymentTerms.NET_30.value),
            "term_days": config_manager.get_payment_term_days(),
            "quick_pay_fee_percent": to_decimal(billing.get("quick_pay_fee_percent", 3)),
            "quick_pay_due_days": billing.get("quick_pay_due_days", 2),
            "standard_due_days": billing.get("standard_due_days", 30),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def days_for(self, terms: PaymentTerms) -> int:
        return self.term_days.get(terms.value, 30)

    def now(self) -> datetime:
        return self.issued_at or datetime.now()


class DocumentAssembler(Generic[D]):
    """Shared validate-then-build flow for both document kinds."""

    party_label = "counterparty"
    document_label = "document"

    def __init__(self, policy: Optional[PaymentPolicy] = None) -> None:
        self.policy = policy or PaymentPolicy()

    def assemble(self, loads: list[Load], combine: bool = True, policy: Optional[PaymentPolicy] = None) -> list[D]:
        """
        Build documents for resolved loads.

        Args:
            loads: Loads with customer/carrier references already resolved
            combine: One document for all loads (True) or one per load
            policy: Optional override of the assembler's payment policy

        Returns:
            Unsaved documents (no id or number yet)

        Raises:
            ValidationError: Missing counterparty, ineligible status, or
                mixed counterparties when combining
        """
        policy = policy or self.policy
        if not loads:
            raise ValidationError("At least one load is required")

        for load in loads:
            self.check_load(load)

        party_ids = {self.party_of(load).id for load in loads}
        if combine and len(party_ids) > 1:
            raise ValidationError(
                f"Cannot combine loads from different {self.party_label}s into one {self.document_label}",
                party_ids=sorted(party_ids),
            )

        if combine:
            documents = [self.build(loads, policy)]
        else:
            documents = [self.build([load], policy) for load in loads]

        logger.info(
            "documents_assembled",
            document=self.document_label,
            count=len(documents),
            load_count=len(loads),
            combined=combine,
        )
        return documents

    def check_load(self, load: Load) -> None:
        raise NotImplementedError

    def party_of(self, load: Load) -> Any:
        raise NotImplementedError

    def build(self, loads: list[Load], policy: PaymentPolicy) -> D:
        raise NotImplementedError


class InvoiceAssembler(DocumentAssembler[Invoice]):
    """Customer invoices: freight lines plus customer-billed accessorials."""

    party_label = "customer"
    document_label = "invoice"

    def check_load(self, load: Load) -> None:
        if load.customer is None:
            raise ValidationError(f"Load {load.display_number} has no customer assigned", load_id=load.id)
        require_resolved(load.customer, "Customer")

        if load.status in (LoadStatus.INVOICED, LoadStatus.PAID):
            raise ValidationError(f"Load {load.display_number} is already invoiced", load_id=load.id)
        if load.status != LoadStatus.DELIVERED:
            raise ValidationError(
                f"Load {load.display_number} has not been delivered yet (status: {load.status.value})",
                load_id=load.id,
            )

    def party_of(self, load: Load) -> Customer:
        return require_resolved(load.customer, "Customer")

    def build(self, loads: list[Load], policy: PaymentPolicy) -> Invoice:
        customer = self.party_of(loads[0])
        terms = policy.payment_terms or customer.payment_terms or policy.default_payment_terms
        invoice_date = policy.now()

        return Invoice(
            load_ids=[load.id for load in loads],
            line_items=build_customer_line_items(loads),
            customer_id=customer.id,
            customer_name=customer.company_name,
            invoice_date=invoice_date,
            payment_terms=terms,
            due_date=invoice_date + timedelta(days=policy.days_for(terms)),
            status=InvoiceStatus.DRAFT,
        )


class PaySheetAssembler(DocumentAssembler[PaySheet]):
    """Carrier pay sheets: line haul plus carrier-paid accessorials, less fees."""

    party_label = "carrier"
    document_label = "pay sheet"

    def check_load(self, load: Load) -> None:
        if load.customer is None:
            raise ValidationError(f"Load {load.display_number} has no customer assigned", load_id=load.id)
        if load.carrier is None:
            raise ValidationError(f"Load {load.display_number} has no carrier assigned", load_id=load.id)
        require_resolved(load.carrier, "Carrier")

        if load.status not in PAY_SHEET_ELIGIBLE:
            raise ValidationError(
                f"Load {load.display_number} has not been delivered yet (status: {load.status.value})",
                load_id=load.id,
            )

    def party_of(self, load: Load) -> Carrier:
        return require_resolved(load.carrier, "Carrier")

    def build(self, loads: list[Load], policy: PaymentPolicy) -> PaySheet:
        carrier = self.party_of(loads[0])
        payment_type = policy.payment_type or carrier.payment_method or CarrierPaymentMethod.STANDARD
        created_at = policy.now()
        line_items = build_carrier_line_items(loads)
        is_quick_pay = payment_type == CarrierPaymentMethod.QUICK_PAY

        deductions: list[Deduction] = []
        if is_quick_pay:
            deductions.append(quick_pay_deduction(sum_amounts(i.amount for i in line_items), policy.quick_pay_fee_percent))

        due_days = policy.quick_pay_due_days if is_quick_pay else policy.standard_due_days
        return PaySheet(
            load_ids=[load.id for load in loads],
            line_items=line_items,
            deductions=deductions,
            carrier_id=carrier.id,
            carrier_name=carrier.company_name,
            created_at=created_at,
            due_date=created_at + timedelta(days=due_days),
            payment_type=payment_type,
            quick_pay_fee_percent=policy.quick_pay_fee_percent if is_quick_pay else None,
            factoring_company=(
                carrier.factoring_company if payment_type == CarrierPaymentMethod.FACTORING else None
            ),
            status=PaySheetStatus.PENDING,
        )


def quick_pay_deduction(subtotal: Decimal, fee_percent: Decimal) -> Deduction:
    """Fee deducted for expedited payment, rounded to cents."""
    fee_percent = to_decimal(fee_percent)
    return Deduction(
        description=f"Quick Pay Fee ({fee_percent.normalize():f}%)",
        amount=round_money(subtotal * fee_percent / Decimal("100")),
        type=DeductionType.QUICK_PAY_FEE,
    )
