"""
Billing service - invoices, carrier pay sheets and their external sync.

Generation flow (both document kinds):
1. Fetch every load (NotFoundError on an unknown id) and resolve parties
2. Assemble; validation failures leave the store untouched
3. Number each document (INV-YYYYMM-NNNN / PAY-YYYYMM-NNNN) and persist
4. Invoices only: move each source load forward to ``invoiced``

Accounting (QuickBooks) and payment (ePay) sync write their outcome to the
document's ``sync`` sub-record.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from tms_core.core.config import ConfigManager
from tms_core.core.errors import IntegrationError, ValidationError
from tms_core.core.money import to_decimal
from tms_core.core.results import IntegrationResult
from tms_core.data.models import (
    CarrierPaymentMethod,
    Invoice,
    InvoiceStatus,
    Load,
    LoadStatus,
    PaymentEntry,
    PaymentTerms,
    PaySheet,
    PaySheetStatus,
    SyncRecord,
    SyncStatus,
)
from tms_core.data.store import PAY_SHEETS, DocumentStore
from tms_core.integrations.epay import EPayAdapter
from tms_core.integrations.quickbooks import QuickBooksAdapter
from tms_core.services.base import BaseService
from tms_core.services.documents import InvoiceAssembler, PaymentPolicy, PaySheetAssembler
from tms_core.services.loads import transition
from tms_core.services.sequence import SequenceGenerator, create_numbered

# ePay payment status -> pay sheet status
EPAY_STATUSES: dict[str, PaySheetStatus] = {
    "pending": PaySheetStatus.SUBMITTED,
    "processing": PaySheetStatus.PROCESSING,
    "approved": PaySheetStatus.APPROVED,
    "paid": PaySheetStatus.PAID,
    "rejected": PaySheetStatus.REJECTED,
}

SUBMITTABLE = (PaySheetStatus.PENDING, PaySheetStatus.APPROVED)


class BillingService(BaseService):
    """
    Generates and settles billing documents.

    Example:
        billing = BillingService(store)
        invoices = billing.generate_invoices(["load-1", "load-2"])
        pay_sheets = billing.generate_pay_sheets(["load-1"], payment_type="quick-pay")
    """

    def __init__(
        self,
        store: DocumentStore,
        config_manager: Optional[ConfigManager] = None,
        quickbooks: Optional[QuickBooksAdapter] = None,
        epay: Optional[EPayAdapter] = None,
    ) -> None:
        super().__init__("billing", store, config_manager)
        self.sequence = SequenceGenerator(store, self.config_manager)
        self.invoice_assembler = InvoiceAssembler()
        self.pay_sheet_assembler = PaySheetAssembler()
        self._quickbooks = quickbooks
        self._epay = epay

    @property
    def quickbooks(self) -> QuickBooksAdapter:
        if self._quickbooks is None:
            self._quickbooks = QuickBooksAdapter(self.config_manager)
        return self._quickbooks

    @property
    def epay(self) -> EPayAdapter:
        if self._epay is None:
            self._epay = EPayAdapter(self.config_manager)
        return self._epay

    def _fetch_loads(self, load_ids: list[str]) -> list[Load]:
        if not load_ids:
            raise ValidationError("load_ids must contain at least one load id")
        return self.repository.get_resolved_loads(load_ids)

    # Generation

    def generate_invoices(
        self,
        load_ids: list[str],
        combine: bool = True,
        payment_terms: Optional[PaymentTerms] = None,
    ) -> list[Invoice]:
        """
        Invoice delivered loads.

        Every load is checked before anything is written, so a validation
        failure leaves the store untouched. The store has no transactions:
        if persisting a later invoice fails, invoices already created (and
        their loads, now invoiced) are kept and the error propagates.

        Args:
            load_ids: Loads to bill
            combine: One invoice for all loads, or one per load
            payment_terms: Override the customer's terms

        Returns:
            Persisted, numbered invoices

        Raises:
            NotFoundError: Unknown load/customer id
            ValidationError: Ineligible load or mixed customers when combining
            DuplicateKeyError: Every numbering attempt for an invoice collided
        """
        loads = self._fetch_loads(load_ids)
        policy = PaymentPolicy.from_config(self.config_manager, payment_terms=payment_terms)
        drafts = self.invoice_assembler.assemble(loads, combine, policy)

        loads_by_id = {load.id: load for load in loads}
        invoices: list[Invoice] = []
        for draft in drafts:
            invoice = create_numbered(
                draft,
                "invoice_number",
                self.sequence.next_invoice_number,
                self.repository.create_invoice,
                self.sequence.max_attempts,
            )
            invoices.append(invoice)

            for load_id in invoice.load_ids:
                load = loads_by_id[load_id]
                if transition(load, LoadStatus.INVOICED, automated=True):
                    self.repository.save_load(load)

            self.logger.info(
                "invoice_generated",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                customer_id=invoice.customer_id,
                load_count=len(invoice.load_ids),
                total=str(invoice.total),
            )
        return invoices

    def generate_pay_sheets(
        self,
        load_ids: list[str],
        combine: bool = True,
        payment_type: Optional[CarrierPaymentMethod] = None,
    ) -> list[PaySheet]:
        """
        Build carrier pay sheets for delivered (or later) loads.

        Args:
            load_ids: Loads to pay
            combine: One pay sheet for all loads, or one per load
            payment_type: Override the carrier's payment preference

        Returns:
            Persisted, numbered pay sheets
        """
        loads = self._fetch_loads(load_ids)
        policy = PaymentPolicy.from_config(self.config_manager, payment_type=payment_type)
        drafts = self.pay_sheet_assembler.assemble(loads, combine, policy)

        pay_sheets: list[PaySheet] = []
        for draft in drafts:
            pay_sheet = create_numbered(
                draft,
                "pay_sheet_number",
                self.sequence.next_pay_sheet_number,
                self.repository.create_pay_sheet,
                self.sequence.max_attempts,
            )
            pay_sheets.append(pay_sheet)
            self.logger.info(
                "pay_sheet_generated",
                pay_sheet_id=pay_sheet.id,
                pay_sheet_number=pay_sheet.pay_sheet_number,
                carrier_id=pay_sheet.carrier_id,
                payment_type=pay_sheet.payment_type.value,
                total=str(pay_sheet.total),
            )
        return pay_sheets

    # Customer payments

    def record_invoice_payment(
        self,
        invoice_id: str,
        amount: Decimal,
        paid_at: Optional[datetime] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        """
        Apply a customer payment to an invoice.

        A payment that clears the balance marks the invoice paid and moves
        its loads forward to ``paid``.

        Raises:
            ValidationError: Void invoice, non-positive amount, or overpayment
        """
        invoice = self.repository.get_invoice(invoice_id)
        amount = to_decimal(amount)
        if invoice.status == InvoiceStatus.VOID:
            raise ValidationError(f"Invoice {invoice.invoice_number} is void", invoice_id=invoice_id)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", amount=str(amount))
        if amount > invoice.balance_due:
            raise ValidationError(
                f"Payment of {amount} exceeds balance due {invoice.balance_due}",
                invoice_id=invoice_id,
            )

        invoice.payments.append(PaymentEntry(amount=amount, paid_at=paid_at or datetime.now(), reference=reference))
        invoice.status = InvoiceStatus.PAID if invoice.balance_due <= 0 else InvoiceStatus.PARTIAL
        invoice = self.repository.save_invoice(invoice)

        if invoice.status == InvoiceStatus.PAID:
            for load_id in invoice.load_ids:
                load = self.repository.get_load(load_id)
                if transition(load, LoadStatus.PAID, automated=True):
                    self.repository.save_load(load)

        self.logger.info(
            "invoice_payment_recorded",
            invoice_id=invoice.id,
            amount=str(amount),
            balance_due=str(invoice.balance_due),
            status=invoice.status.value,
        )
        return invoice

    # External sync

    def _sync_failed(self, record: SyncRecord, provider: str, result: IntegrationResult) -> IntegrationError:
        record.status = SyncStatus.ERROR
        record.error = result.error
        record.last_synced_at = datetime.now()
        self.logger.warning("document_sync_failed", provider=provider, error=result.error)
        return IntegrationError(provider, "sync failed", status_code=result.status_code, detail=result.error)

    @staticmethod
    def _sync_ok(record: SyncRecord, external_id: Optional[str], status: SyncStatus) -> None:
        record.external_id = external_id or record.external_id
        record.status = status
        record.error = None
        record.last_synced_at = datetime.now()

    def sync_invoice_to_accounting(self, invoice_id: str) -> Invoice:
        """
        Push an invoice to QuickBooks, creating the customer there first if needed.

        Raises:
            IntegrationError: QuickBooks rejected the customer or invoice
                (the failure is also recorded on the invoice)
        """
        invoice = self.repository.get_invoice(invoice_id)
        customer = self.repository.get_customer(invoice.customer_id)

        if not customer.quickbooks_id:
            result = self.quickbooks.sync_customer(customer)
            if not result.success:
                error = self._sync_failed(invoice.sync, "quickbooks", result)
                self.repository.save_invoice(invoice)
                raise error
            customer.quickbooks_id = result.data.qb_id
            self.repository.save_customer(customer)

        result = self.quickbooks.create_invoice(invoice, customer.quickbooks_id or "", customer.email)
        if not result.success:
            error = self._sync_failed(invoice.sync, "quickbooks", result)
            self.repository.save_invoice(invoice)
            raise error

        self._sync_ok(invoice.sync, result.data.qb_id, SyncStatus.COMPLETED)
        invoice = self.repository.save_invoice(invoice)
        self.logger.info("invoice_synced", invoice_id=invoice.id, external_id=invoice.sync.external_id)
        return invoice

    def submit_pay_sheet(self, pay_sheet_id: str) -> PaySheet:
        """
        Submit a pending pay sheet to ePay for payment.

        Raises:
            ValidationError: Pay sheet already submitted or closed
            IntegrationError: ePay rejected the carrier or payment
        """
        pay_sheet = self.repository.get_pay_sheet(pay_sheet_id)
        if pay_sheet.status not in SUBMITTABLE:
            raise ValidationError(
                f"Pay sheet {pay_sheet.pay_sheet_number} cannot be submitted (status: {pay_sheet.status.value})",
                pay_sheet_id=pay_sheet_id,
            )
        carrier = self.repository.get_carrier(pay_sheet.carrier_id)

        if not carrier.epay_carrier_id:
            result = self.epay.sync_carrier(carrier)
            if not result.success:
                error = self._sync_failed(pay_sheet.sync, "epay", result)
                self.repository.save_pay_sheet(pay_sheet)
                raise error
            carrier.epay_carrier_id = result.data
            self.repository.save_carrier(carrier)

        loads = [self.repository.get_load(load_id) for load_id in pay_sheet.load_ids]
        result = self.epay.submit_payment(self.epay.build_payment_request(carrier, loads, pay_sheet))
        if not result.success:
            error = self._sync_failed(pay_sheet.sync, "epay", result)
            self.repository.save_pay_sheet(pay_sheet)
            raise error

        self._sync_ok(pay_sheet.sync, result.data.transaction_id, SyncStatus.SUBMITTED)
        pay_sheet.status = PaySheetStatus.SUBMITTED
        pay_sheet = self.repository.save_pay_sheet(pay_sheet)
        self.logger.info(
            "pay_sheet_submitted", pay_sheet_id=pay_sheet.id, transaction_id=pay_sheet.sync.external_id
        )
        return pay_sheet

    def _apply_payment_status(self, pay_sheet: PaySheet, provider_status: Optional[str]) -> PaySheet:
        status = EPAY_STATUSES.get((provider_status or "").lower())
        if status is None:
            self.logger.warning(
                "payment_status_unrecognized", pay_sheet_id=pay_sheet.id, status=provider_status
            )
            return pay_sheet

        pay_sheet.status = status
        if status == PaySheetStatus.PAID:
            sync_status = SyncStatus.COMPLETED
        elif status == PaySheetStatus.REJECTED:
            sync_status = SyncStatus.ERROR
        else:
            sync_status = SyncStatus.PROCESSING
        self._sync_ok(pay_sheet.sync, None, sync_status)
        if status == PaySheetStatus.REJECTED:
            pay_sheet.sync.error = "Payment rejected by ePay"
        return self.repository.save_pay_sheet(pay_sheet)

    def refresh_pay_sheet_status(self, pay_sheet_id: str) -> PaySheet:
        """Pull the payment status from ePay onto the pay sheet."""
        pay_sheet = self.repository.get_pay_sheet(pay_sheet_id)
        transaction_id = pay_sheet.sync.external_id
        if not transaction_id:
            raise ValidationError(
                f"Pay sheet {pay_sheet.pay_sheet_number} has not been submitted", pay_sheet_id=pay_sheet_id
            )

        result = self.epay.get_payment_status(transaction_id)
        if not result.success:
            raise IntegrationError("epay", "status check failed", status_code=result.status_code, detail=result.error)
        return self._apply_payment_status(pay_sheet, result.data.status)

    def handle_payment_webhook(self, payload: Any) -> dict[str, Any]:
        """
        Apply an ePay webhook. Always returns an acknowledgement.

        Returns:
            ``{"received": True, "processed": bool, ...}``
        """
        transaction_id = None
        try:
            notice = self.epay.parse_webhook(payload)
            if notice.type != "payment_update" or not notice.transaction_id:
                self.logger.info("payment_webhook_ignored", type=notice.type)
                return {"received": True, "processed": False, "reason": f"unhandled event type: {notice.type}"}

            transaction_id = notice.transaction_id
            rows = self.repository.store.find(
                PAY_SHEETS, {"sync.external_id": {"equals": notice.transaction_id}}, limit=1
            )
            if not rows:
                self.logger.warning("payment_webhook_unmatched", transaction_id=notice.transaction_id)
                return {"received": True, "processed": False, "reason": "pay sheet not found"}
            pay_sheet = self._apply_payment_status(PaySheet.model_validate(rows[0]), notice.status)
        except Exception:
            self.logger.exception("payment_webhook_failed", transaction_id=transaction_id)
            return {"received": True, "processed": False, "reason": "internal error"}

        return {
            "received": True,
            "processed": True,
            "pay_sheet_id": pay_sheet.id,
            "status": pay_sheet.status.value,
        }
