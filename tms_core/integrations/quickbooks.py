"""
QuickBooks Online accounting adapter.

Keeps customers, invoices and payments in step with QuickBooks. The access
and refresh tokens obtained through Intuit's OAuth2 consent flow are seeded
from the environment; expired tokens are renewed with the refresh-token
grant.
"""

import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from tms_core.core.config import ConfigManager, EnvironmentSettings
from tms_core.core.errors import IntegrationError
from tms_core.core.results import IntegrationResult
from tms_core.data.models import Customer, Invoice
from tms_core.integrations.base import CredentialCache, Credentials, OAuthAdapter, first_present

AUTHORIZATION_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
SCOPE = "com.intuit.quickbooks.accounting"

API_HOSTS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}


class SyncReceipt(BaseModel):
    """Identity of a record written to QuickBooks."""

    qb_id: Optional[str] = None
    sync_token: Optional[str] = None


class CustomerBalance(BaseModel):
    customer_id: str
    balance: float


def _date(value: Optional[datetime]) -> Optional[str]:
    return value.date().isoformat() if value else None


class QuickBooksAdapter(OAuthAdapter):
    """QuickBooks Online v3 API client."""

    provider = "quickbooks"
    display_name = "QuickBooks"

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        client: Optional[httpx.Client] = None,
        settings: Optional[EnvironmentSettings] = None,
        credentials: Optional[CredentialCache] = None,
    ) -> None:
        super().__init__(config_manager, client, settings, credentials)
        if credentials is None and self.settings.quickbooks_access_token:
            # Lifetime of the seeded token is unknown; it is used until rejected
            self.credentials = CredentialCache(
                Credentials(
                    access_token=self.settings.quickbooks_access_token,
                    refresh_token=self.settings.quickbooks_refresh_token,
                )
            )

    @property
    def base_url(self) -> str:
        host = API_HOSTS.get(self.settings.quickbooks_environment, API_HOSTS["sandbox"])
        return f"{host}/v3/company/{self.settings.quickbooks_realm_id}"

    def is_configured(self) -> bool:
        s = self.settings
        return bool(
            s.quickbooks_client_id
            and s.quickbooks_client_secret
            and s.quickbooks_realm_id
            and s.quickbooks_access_token
        )

    def authorization_url(self, state: Optional[str] = None) -> str:
        """URL that starts Intuit's consent flow."""
        params = {
            "client_id": self.settings.quickbooks_client_id or "",
            "response_type": "code",
            "scope": SCOPE,
            "redirect_uri": self.settings.quickbooks_redirect_uri or "",
            "state": state or secrets.token_urlsafe(8),
        }
        return f"{AUTHORIZATION_URL}?{urlencode(params)}"

    # Authentication

    def _grant(self, refresh_token: str) -> Credentials:
        data = self.token_request(
            TOKEN_URL,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=httpx.BasicAuth(
                self.settings.quickbooks_client_id or "", self.settings.quickbooks_client_secret or ""
            ),
        )
        return self.credentials_from(data, previous_refresh=refresh_token)

    def refresh(self, credentials: Credentials) -> Credentials:
        return self._grant(credentials.refresh_token or "")

    def authenticate(self) -> Credentials:
        # No unattended grant exists; fall back to the refresh token issued at consent
        refresh_token = self.settings.quickbooks_refresh_token
        if not refresh_token:
            raise IntegrationError(
                self.provider, "authorization required", detail=self.authorization_url()
            )
        return self._grant(refresh_token)

    # Customers

    @staticmethod
    def customer_wire(customer: Customer) -> dict[str, Any]:
        body: dict[str, Any] = {
            "DisplayName": customer.company_name,
            "CompanyName": customer.company_name,
        }
        if customer.email:
            body["PrimaryEmailAddr"] = {"Address": customer.email}
        if customer.phone:
            body["PrimaryPhone"] = {"FreeFormNumber": customer.phone}
        if customer.billing_city or customer.billing_address_line1:
            body["BillAddr"] = {
                "Line1": customer.billing_address_line1,
                "City": customer.billing_city,
                "CountrySubDivisionCode": customer.billing_state,
                "PostalCode": customer.billing_zip,
            }
        return body

    def sync_customer(self, customer: Customer) -> IntegrationResult:
        """
        Create the customer, or update it when it already has a QuickBooks id.

        Updates need the record's current SyncToken, so it is read first.

        Returns:
            IntegrationResult with SyncReceipt data
        """

        def run() -> SyncReceipt:
            body = self.customer_wire(customer)
            if customer.quickbooks_id:
                current = self.request(f"/customer/{customer.quickbooks_id}")
                body.update(
                    {
                        "Id": customer.quickbooks_id,
                        "SyncToken": first_present(current, "Customer.SyncToken", "SyncToken"),
                        "sparse": True,
                    }
                )
            result = self.request("/customer", "POST", body)
            return SyncReceipt(
                qb_id=first_present(result, "Customer.Id", "Id"),
                sync_token=first_present(result, "Customer.SyncToken", "SyncToken"),
            )

        return self._call("sync_customer", run)

    def _query(self, statement: str) -> dict[str, Any]:
        return self.request("/query", params={"query": statement})

    def find_customer_by_name(self, name: str) -> IntegrationResult:
        """data: raw QuickBooks customer dict, or None."""
        escaped = name.replace("'", "\\'")

        def run() -> Optional[dict[str, Any]]:
            result = self._query(f"select * from Customer where DisplayName = '{escaped}'")
            customers = first_present(result, "QueryResponse.Customer", default=[])
            return customers[0] if customers else None

        return self._call("find_customer_by_name", run)

    def get_customer_balances(self) -> IntegrationResult:
        """Customers with an open balance. data: list[CustomerBalance]."""

        def run() -> list[CustomerBalance]:
            result = self._query("select * from Customer")
            return [
                CustomerBalance(customer_id=c["Id"], balance=c["Balance"])
                for c in first_present(result, "QueryResponse.Customer", default=[])
                if (c.get("Balance") or 0) > 0
            ]

        return self._call("get_customer_balances", run)

    # Invoices

    @staticmethod
    def invoice_wire(invoice: Invoice, customer_qb_id: str, email: Optional[str] = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "DocNumber": invoice.invoice_number,
            "TxnDate": _date(invoice.invoice_date),
            "DueDate": _date(invoice.due_date),
            "CustomerRef": {"value": customer_qb_id, "name": invoice.customer_name},
            "Line": [
                {
                    "Amount": float(item.amount),
                    "Description": item.description,
                    "DetailType": "SalesItemLineDetail",
                    "SalesItemLineDetail": {
                        "Qty": float(item.quantity or Decimal("1")),
                        "UnitPrice": float(item.rate),
                    },
                }
                for item in invoice.line_items
            ],
            "PrivateNote": invoice.notes,
        }
        if email:
            body["BillEmail"] = {"Address": email}
        return body

    def create_invoice(self, invoice: Invoice, customer_qb_id: str, email: Optional[str] = None) -> IntegrationResult:
        """data: SyncReceipt for the new QuickBooks invoice."""

        def run() -> SyncReceipt:
            result = self.request("/invoice", "POST", self.invoice_wire(invoice, customer_qb_id, email))
            return SyncReceipt(
                qb_id=first_present(result, "Invoice.Id", "Id"),
                sync_token=first_present(result, "Invoice.SyncToken", "SyncToken"),
            )

        return self._call("create_invoice", run)

    def _fetch_invoice(self, qb_id: str) -> dict[str, Any]:
        try:
            result = self.request(f"/invoice/{qb_id}")
        except IntegrationError as e:
            if e.status_code == 404:
                raise IntegrationError(self.provider, "invoice not found", 404, detail=qb_id) from e
            raise
        return first_present(result, "Invoice", default=result)

    def get_invoice(self, qb_id: str) -> IntegrationResult:
        """data: raw QuickBooks invoice dict."""
        return self._call("get_invoice", self._fetch_invoice, qb_id)

    def void_invoice(self, qb_id: str) -> IntegrationResult:
        def run() -> SyncReceipt:
            current = self._fetch_invoice(qb_id)
            self.request(
                "/invoice",
                "POST",
                {"Id": qb_id, "SyncToken": current.get("SyncToken")},
                params={"operation": "void"},
            )
            return SyncReceipt(qb_id=qb_id)

        return self._call("void_invoice", run)

    def record_payment(self, invoice_qb_id: str, amount: Decimal, payment_date: datetime) -> IntegrationResult:
        """Apply a customer payment to an invoice. data: SyncReceipt of the payment."""

        def run() -> SyncReceipt:
            current = self._fetch_invoice(invoice_qb_id)
            body = {
                "TotalAmt": float(amount),
                "TxnDate": _date(payment_date),
                "CustomerRef": current.get("CustomerRef"),
                "Line": [
                    {
                        "Amount": float(amount),
                        "LinkedTxn": [{"TxnId": invoice_qb_id, "TxnType": "Invoice"}],
                    }
                ],
            }
            result = self.request("/payment", "POST", body)
            return SyncReceipt(qb_id=first_present(result, "Payment.Id", "Id"))

        return self._call("record_payment", run)
