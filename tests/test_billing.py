"""Tests for invoice / pay sheet generation, payments and external sync."""

import json
from decimal import Decimal

import pytest

from tms_core.core.errors import IntegrationError, NotFoundError, ValidationError
from tms_core.data.models import (
    CarrierPaymentMethod,
    InvoiceStatus,
    LoadStatus,
    PaySheetStatus,
    SyncStatus,
)
from tms_core.integrations import EPayAdapter, QuickBooksAdapter
from tms_core.services.billing import BillingService
from tms_core.services.sequence import period_prefix

QB = "/v3/company/realm-9"


@pytest.fixture
def quickbooks(config_manager, fake_provider):
    return QuickBooksAdapter(config_manager, client=fake_provider.client())


@pytest.fixture
def epay(config_manager, fake_provider):
    return EPayAdapter(config_manager, client=fake_provider.client())


@pytest.fixture
def billing(store, config_manager, quickbooks, epay, customer, other_customer, carrier, quick_pay_carrier):
    return BillingService(store, config_manager, quickbooks=quickbooks, epay=epay)


class TestGenerateInvoices:
    def test_numbers_persists_and_invoices_loads(self, billing, repository, make_load):
        load = make_load(customer_rate="2500")
        [invoice] = billing.generate_invoices([load.id])

        assert invoice.id
        assert invoice.invoice_number == f"{period_prefix('INV')}0001"
        assert repository.get_invoice(invoice.id).total == Decimal("2500")

        stored = repository.get_load(load.id)
        assert stored.status == LoadStatus.INVOICED
        assert stored.status_history[-1].note == "Status changed from delivered to invoiced"

    def test_one_invoice_per_load(self, billing, make_load):
        loads = [make_load(), make_load(customer_id="cust-2")]
        invoices = billing.generate_invoices([l.id for l in loads], combine=False)
        assert [i.invoice_number[-4:] for i in invoices] == ["0001", "0002"]
        assert [i.customer_id for i in invoices] == ["cust-1", "cust-2"]

    def test_failed_validation_leaves_store_untouched(self, billing, store, repository, make_load):
        loads = [make_load(), make_load(customer_id="cust-2")]
        with pytest.raises(ValidationError):
            billing.generate_invoices([l.id for l in loads], combine=True)
        assert store.find("invoices") == []
        assert all(repository.get_load(l.id).status == LoadStatus.DELIVERED for l in loads)

    def test_unknown_load(self, billing):
        with pytest.raises(NotFoundError):
            billing.generate_invoices(["nope"])

    def test_empty_request(self, billing):
        with pytest.raises(ValidationError):
            billing.generate_invoices([])

    def test_cannot_invoice_twice(self, billing, make_load):
        load = make_load()
        billing.generate_invoices([load.id])
        with pytest.raises(ValidationError, match="already invoiced"):
            billing.generate_invoices([load.id])

    def test_separate_invoices_validated_before_any_write(self, billing, store, repository, make_load):
        delivered = make_load()
        in_transit = make_load(status=LoadStatus.IN_TRANSIT)
        with pytest.raises(ValidationError, match="has not been delivered"):
            billing.generate_invoices([delivered.id, in_transit.id], combine=False)
        assert store.find("invoices") == []
        assert repository.get_load(delivered.id).status == LoadStatus.DELIVERED

    def test_store_failure_keeps_earlier_invoices(self, billing, store, repository, make_load, monkeypatch):
        first, second = make_load(), make_load()
        create = billing.repository.create_invoice
        created = []

        def flaky_create(invoice):
            if created:
                raise RuntimeError("store unavailable")
            created.append(invoice)
            return create(invoice)

        monkeypatch.setattr(billing.repository, "create_invoice", flaky_create)
        with pytest.raises(RuntimeError):
            billing.generate_invoices([first.id, second.id], combine=False)

        [kept] = store.find("invoices")
        assert kept["load_ids"] == [first.id]
        assert repository.get_load(first.id).status == LoadStatus.INVOICED
        assert repository.get_load(second.id).status == LoadStatus.DELIVERED


class TestGeneratePaySheets:
    def test_quick_pay_sheet(self, billing, repository, make_load):
        load = make_load(carrier_id="carrier-2", carrier_rate="1000")
        [sheet] = billing.generate_pay_sheets([load.id])
        assert sheet.pay_sheet_number == f"{period_prefix('PAY')}0001"
        assert sheet.total == Decimal("970.00")
        assert sheet.status == PaySheetStatus.PENDING
        # Pay sheets do not move the load
        assert repository.get_load(load.id).status == LoadStatus.DELIVERED

    def test_payment_type_override(self, billing, make_load):
        load = make_load(carrier_rate="1000")
        [sheet] = billing.generate_pay_sheets([load.id], payment_type=CarrierPaymentMethod.QUICK_PAY)
        assert sheet.payment_type == CarrierPaymentMethod.QUICK_PAY
        assert sheet.total == Decimal("970.00")


class TestInvoicePayments:
    @pytest.fixture
    def invoice(self, billing, make_load):
        load = make_load(customer_rate="2500")
        return billing.generate_invoices([load.id])[0]

    def test_partial_then_paid(self, billing, repository, invoice):
        partial = billing.record_invoice_payment(invoice.id, Decimal("1000"), reference="CHK-1001")
        assert partial.status == InvoiceStatus.PARTIAL
        assert partial.balance_due == Decimal("1500")

        paid = billing.record_invoice_payment(invoice.id, Decimal("1500"))
        assert paid.status == InvoiceStatus.PAID
        assert paid.amount_paid == Decimal("2500")
        assert repository.get_load(invoice.load_ids[0]).status == LoadStatus.PAID

    def test_overpayment_rejected(self, billing, invoice):
        with pytest.raises(ValidationError, match="exceeds balance"):
            billing.record_invoice_payment(invoice.id, Decimal("2500.01"))

    def test_non_positive_rejected(self, billing, invoice):
        with pytest.raises(ValidationError):
            billing.record_invoice_payment(invoice.id, Decimal("0"))

    def test_void_invoice_rejected(self, billing, repository, invoice):
        invoice.status = InvoiceStatus.VOID
        repository.save_invoice(invoice)
        with pytest.raises(ValidationError, match="void"):
            billing.record_invoice_payment(invoice.id, Decimal("10"))


class TestAccountingSync:
    def test_creates_customer_then_invoice(self, billing, repository, fake_provider, make_load):
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58", "SyncToken": "0"}})
        fake_provider.add("POST", f"{QB}/invoice", {"Invoice": {"Id": "130", "SyncToken": "0"}})
        invoice = billing.generate_invoices([make_load().id])[0]

        synced = billing.sync_invoice_to_accounting(invoice.id)
        assert synced.sync.external_id == "130"
        assert synced.sync.status == SyncStatus.COMPLETED
        assert synced.sync.last_synced_at is not None
        assert repository.get_customer("cust-1").quickbooks_id == "58"

        body = json.loads(fake_provider.calls("POST", f"{QB}/invoice")[0].content)
        assert body["CustomerRef"]["value"] == "58"
        assert body["DocNumber"] == invoice.invoice_number

    def test_existing_customer_skips_customer_sync(self, billing, repository, fake_provider, make_load):
        customer = repository.get_customer("cust-1")
        customer.quickbooks_id = "58"
        repository.save_customer(customer)
        fake_provider.add("POST", f"{QB}/invoice", {"Invoice": {"Id": "131"}})
        invoice = billing.generate_invoices([make_load().id])[0]

        billing.sync_invoice_to_accounting(invoice.id)
        assert fake_provider.calls("POST", f"{QB}/customer") == []

    def test_failure_recorded_and_raised(self, billing, repository, fake_provider, make_load):
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58"}})
        fake_provider.add("POST", f"{QB}/invoice", status_code=400, text="Duplicate Document Number Error")
        invoice = billing.generate_invoices([make_load().id])[0]

        with pytest.raises(IntegrationError) as exc_info:
            billing.sync_invoice_to_accounting(invoice.id)
        assert "Duplicate Document Number" in exc_info.value.detail

        stored = repository.get_invoice(invoice.id)
        assert stored.sync.status == SyncStatus.ERROR
        assert "Duplicate Document Number" in stored.sync.error


class TestPaymentSubmission:
    @pytest.fixture
    def sheet(self, billing, make_load):
        load = make_load(carrier_rate="1000")
        return billing.generate_pay_sheets([load.id])[0]

    def test_syncs_carrier_and_submits(self, billing, repository, fake_provider, sheet):
        fake_provider.add("POST", "/v1/carriers", {"carrierId": "EP-77"})
        fake_provider.add("POST", "/v1/payments", {"transactionId": "TXN-1", "status": "pending"})

        submitted = billing.submit_pay_sheet(sheet.id)
        assert submitted.status == PaySheetStatus.SUBMITTED
        assert submitted.sync.external_id == "TXN-1"
        assert submitted.sync.status == SyncStatus.SUBMITTED
        assert repository.get_carrier("carrier-1").epay_carrier_id == "EP-77"

    def test_cannot_submit_twice(self, billing, fake_provider, sheet):
        fake_provider.add("POST", "/v1/carriers", {"carrierId": "EP-77"})
        fake_provider.add("POST", "/v1/payments", {"transactionId": "TXN-1"})
        billing.submit_pay_sheet(sheet.id)
        with pytest.raises(ValidationError, match="cannot be submitted"):
            billing.submit_pay_sheet(sheet.id)

    def test_rejected_submission(self, billing, repository, fake_provider, sheet):
        fake_provider.add("POST", "/v1/carriers", {"carrierId": "EP-77"})
        fake_provider.add("POST", "/v1/payments", status_code=422, text="carrier not verified")
        with pytest.raises(IntegrationError):
            billing.submit_pay_sheet(sheet.id)
        stored = repository.get_pay_sheet(sheet.id)
        assert stored.status == PaySheetStatus.PENDING
        assert stored.sync.status == SyncStatus.ERROR

    def test_refresh_status(self, billing, fake_provider, sheet):
        fake_provider.add("POST", "/v1/carriers", {"carrierId": "EP-77"})
        fake_provider.add("POST", "/v1/payments", {"transactionId": "TXN-1"})
        fake_provider.add("GET", "/v1/payments/TXN-1", {"status": "paid"})
        billing.submit_pay_sheet(sheet.id)

        refreshed = billing.refresh_pay_sheet_status(sheet.id)
        assert refreshed.status == PaySheetStatus.PAID
        assert refreshed.sync.status == SyncStatus.COMPLETED

    def test_refresh_requires_submission(self, billing, sheet):
        with pytest.raises(ValidationError, match="has not been submitted"):
            billing.refresh_pay_sheet_status(sheet.id)

    def test_payment_webhook(self, billing, fake_provider, sheet):
        fake_provider.add("POST", "/v1/carriers", {"carrierId": "EP-77"})
        fake_provider.add("POST", "/v1/payments", {"transactionId": "TXN-1"})
        billing.submit_pay_sheet(sheet.id)

        ack = billing.handle_payment_webhook(
            {"event": "payment.status_changed", "data": {"transactionId": "TXN-1", "status": "approved"}}
        )
        assert ack == {"received": True, "processed": True, "pay_sheet_id": sheet.id, "status": "approved"}

    def test_payment_webhook_always_acknowledged(self, billing):
        assert billing.handle_payment_webhook({"event": "something.else"})["received"] is True
        unmatched = billing.handle_payment_webhook({"event": "payment.updated", "transactionId": "TXN-404"})
        assert unmatched["processed"] is False

    @pytest.mark.parametrize("payload", [None, [{"event": "payment.updated"}], "payment.updated"])
    def test_payment_webhook_non_object_body(self, billing, store, payload):
        ack = billing.handle_payment_webhook(payload)
        assert ack == {"received": True, "processed": False, "reason": "unhandled event type: unknown"}
        assert store.find("carrier-payments") == []
