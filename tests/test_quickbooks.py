"""Tests for the QuickBooks Online adapter."""

import json
from datetime import datetime
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from tms_core.data.models import Invoice, LineItem, LineItemType, PaymentTerms
from tms_core.integrations import QuickBooksAdapter

QB = "/v3/company/realm-9"
TOKEN = "/oauth2/v1/tokens/bearer"


@pytest.fixture
def quickbooks(config_manager, fake_provider):
    return QuickBooksAdapter(config_manager, client=fake_provider.client())


@pytest.fixture
def invoice():
    return Invoice(
        id="inv-1",
        invoice_number="INV-202501-0001",
        customer_id="cust-1",
        customer_name="Acme Foods",
        invoice_date=datetime(2025, 1, 15, 9, 30),
        due_date=datetime(2025, 2, 14, 9, 30),
        payment_terms=PaymentTerms.NET_30,
        load_ids=["load-1"],
        line_items=[
            LineItem(description="Freight: SPTMS-202501-0001", rate=Decimal("2500"), type=LineItemType.LINEHAUL),
            LineItem(description="Detention", quantity=Decimal("3"), rate=Decimal("50"), type=LineItemType.DETENTION),
        ],
    )


class TestAuthentication:
    def test_seeded_token_used_without_grant(self, quickbooks, fake_provider, customer):
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58", "SyncToken": "0"}})
        assert quickbooks.sync_customer(customer).data.qb_id == "58"
        assert fake_provider.calls("POST", TOKEN) == []
        assert fake_provider.requests[0].headers["Authorization"] == "Bearer qb-access"

    def test_rejected_token_refreshed_on_next_call(self, quickbooks, fake_provider, customer):
        fake_provider.add("POST", f"{QB}/customer", status_code=401, text="AuthenticationFailed")
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58"}})
        fake_provider.add("POST", TOKEN, {"access_token": "qb-access-2", "refresh_token": "qb-refresh-2", "expires_in": 3600})

        first = quickbooks.sync_customer(customer)
        assert not first.success
        assert first.status_code == 401

        assert quickbooks.sync_customer(customer).success
        [grant] = fake_provider.calls("POST", TOKEN)
        assert parse_qs(grant.content.decode()) == {"grant_type": ["refresh_token"], "refresh_token": ["qb-refresh"]}
        assert fake_provider.calls("POST", f"{QB}/customer")[-1].headers["Authorization"] == "Bearer qb-access-2"
        assert quickbooks.credentials.current.refresh_token == "qb-refresh-2"

    def test_authorization_url(self, quickbooks):
        url = urlparse(quickbooks.authorization_url(state="xyz"))
        params = parse_qs(url.query)
        assert url.netloc == "appcenter.intuit.com"
        assert params["client_id"] == ["qb-client"]
        assert params["scope"] == ["com.intuit.quickbooks.accounting"]
        assert params["redirect_uri"] == ["https://tms.example.com/qb/callback"]
        assert params["state"] == ["xyz"]

    def test_not_configured(self, config_manager, bare_settings, fake_provider, customer):
        quickbooks = QuickBooksAdapter(config_manager, client=fake_provider.client(), settings=bare_settings)
        assert quickbooks.sync_customer(customer).error == "QuickBooks is not configured"


class TestCustomers:
    def test_create_wire(self, quickbooks, fake_provider, customer):
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58"}})
        quickbooks.sync_customer(customer)
        body = json.loads(fake_provider.calls("POST", f"{QB}/customer")[0].content)
        assert body["DisplayName"] == "Acme Foods"
        assert body["PrimaryEmailAddr"] == {"Address": "ap@acmefoods.example"}
        assert body["BillAddr"]["City"] == "Dallas"
        assert "Id" not in body

    def test_update_uses_current_sync_token(self, quickbooks, fake_provider, customer):
        customer.quickbooks_id = "58"
        fake_provider.add("GET", f"{QB}/customer/58", {"Customer": {"Id": "58", "SyncToken": "3"}})
        fake_provider.add("POST", f"{QB}/customer", {"Customer": {"Id": "58", "SyncToken": "4"}})

        receipt = quickbooks.sync_customer(customer).data
        assert receipt.sync_token == "4"
        body = json.loads(fake_provider.calls("POST", f"{QB}/customer")[0].content)
        assert (body["Id"], body["SyncToken"], body["sparse"]) == ("58", "3", True)

    def test_balances(self, quickbooks, fake_provider):
        fake_provider.add(
            "GET",
            f"{QB}/query",
            {"QueryResponse": {"Customer": [{"Id": "58", "Balance": 1250.5}, {"Id": "59", "Balance": 0}]}},
        )
        [balance] = quickbooks.get_customer_balances().data
        assert (balance.customer_id, balance.balance) == ("58", 1250.5)

    def test_find_by_name_escapes_quotes(self, quickbooks, fake_provider):
        fake_provider.add("GET", f"{QB}/query", {"QueryResponse": {}})
        assert quickbooks.find_customer_by_name("Bob's Freight").data is None
        query = fake_provider.calls("GET", f"{QB}/query")[0].url.params["query"]
        assert query == "select * from Customer where DisplayName = 'Bob\\'s Freight'"


class TestInvoices:
    def test_invoice_wire(self, invoice):
        body = QuickBooksAdapter.invoice_wire(invoice, "58", "ap@acmefoods.example")
        assert body["DocNumber"] == "INV-202501-0001"
        assert body["TxnDate"] == "2025-01-15"
        assert body["DueDate"] == "2025-02-14"
        assert body["CustomerRef"] == {"value": "58", "name": "Acme Foods"}
        assert body["BillEmail"] == {"Address": "ap@acmefoods.example"}
        detention = body["Line"][1]
        assert detention["Amount"] == 150.0
        assert detention["SalesItemLineDetail"] == {"Qty": 3.0, "UnitPrice": 50.0}

    def test_create_invoice(self, quickbooks, fake_provider, invoice):
        fake_provider.add("POST", f"{QB}/invoice", {"Invoice": {"Id": "130", "SyncToken": "0"}})
        receipt = quickbooks.create_invoice(invoice, "58").data
        assert receipt.qb_id == "130"

    def test_void_invoice(self, quickbooks, fake_provider):
        fake_provider.add("GET", f"{QB}/invoice/130", {"Invoice": {"Id": "130", "SyncToken": "2"}})
        fake_provider.add("POST", f"{QB}/invoice", {"Invoice": {"Id": "130"}})

        assert quickbooks.void_invoice("130").success
        [request] = fake_provider.calls("POST", f"{QB}/invoice")
        assert request.url.params["operation"] == "void"
        assert json.loads(request.content) == {"Id": "130", "SyncToken": "2"}

    def test_missing_invoice(self, quickbooks, fake_provider):
        fake_provider.add("GET", f"{QB}/invoice/404", status_code=404, text="Object Not Found")
        result = quickbooks.get_invoice("404")
        assert not result.success
        assert result.status_code == 404
        assert "invoice not found" in result.error

    def test_record_payment(self, quickbooks, fake_provider):
        fake_provider.add("GET", f"{QB}/invoice/130", {"Invoice": {"Id": "130", "CustomerRef": {"value": "58"}}})
        fake_provider.add("POST", f"{QB}/payment", {"Payment": {"Id": "901"}})

        receipt = quickbooks.record_payment("130", Decimal("1000"), datetime(2025, 2, 1)).data
        assert receipt.qb_id == "901"
        body = json.loads(fake_provider.calls("POST", f"{QB}/payment")[0].content)
        assert body["TotalAmt"] == 1000.0
        assert body["CustomerRef"] == {"value": "58"}
        assert body["Line"][0]["LinkedTxn"] == [{"TxnId": "130", "TxnType": "Invoice"}]
