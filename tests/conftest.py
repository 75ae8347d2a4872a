"""Shared fixtures: config, in-memory store, seeded parties and a fake provider."""

import itertools
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from tms_core.core.config import ConfigManager, EnvironmentSettings
from tms_core.data import InMemoryDocumentStore, Repository
from tms_core.data.models import (
    Accessorial,
    Address,
    Carrier,
    CarrierPaymentMethod,
    Customer,
    Load,
    LoadStatus,
    PaymentTerms,
    StatusHistoryEntry,
    Unresolved,
)

CONFIG_DIR = Path(__file__).parent.parent / "config"


class FakeProvider:
    """
    Routes ``(method, path)`` to canned responses and records every request.

    Queued responses are served in order; the last one repeats. An exception
    instance in the queue is raised instead, to simulate transport failures.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        json: Any = None,
        status_code: int = 200,
        text: Optional[str] = None,
    ) -> "FakeProvider":
        self.routes.setdefault((method, path), []).append((status_code, json, text))
        return self

    def fail(self, method: str, path: str, error: Exception) -> "FakeProvider":
        self.routes.setdefault((method, path), []).append(error)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        status_code, json, text = entry
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=json if json is not None else {})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


@pytest.fixture
def env_settings() -> EnvironmentSettings:
    return EnvironmentSettings(
        _env_file=None,
        DAT_CLIENT_ID="dat-client",
        DAT_CLIENT_SECRET="dat-secret",
        DAT_USERNAME="broker",
        DAT_PASSWORD="hunter2",
        MACROPOINT_API_ID="mp-id",
        MACROPOINT_API_PASSWORD="mp-pass",
        MACROPOINT_WEBHOOK_URL="https://tms.example.com/webhooks/macropoint",
        EPAY_MEMBER_ID="member-1",
        EPAY_API_KEY="epay-key",
        EPAY_API_SECRET="epay-secret",
        QUICKBOOKS_CLIENT_ID="qb-client",
        QUICKBOOKS_CLIENT_SECRET="qb-secret",
        QUICKBOOKS_REDIRECT_URI="https://tms.example.com/qb/callback",
        QUICKBOOKS_REALM_ID="realm-9",
        QUICKBOOKS_ACCESS_TOKEN="qb-access",
        QUICKBOOKS_REFRESH_TOKEN="qb-refresh",
    )


@pytest.fixture
def bare_settings() -> EnvironmentSettings:
    """No provider credentials at all."""
    return EnvironmentSettings(
        _env_file=None,
        DAT_CLIENT_ID=None,
        DAT_CLIENT_SECRET=None,
        DAT_USERNAME=None,
        DAT_PASSWORD=None,
        MACROPOINT_API_ID=None,
        MACROPOINT_API_PASSWORD=None,
        EPAY_MEMBER_ID=None,
        EPAY_API_KEY=None,
        EPAY_API_SECRET=None,
        QUICKBOOKS_CLIENT_ID=None,
        QUICKBOOKS_CLIENT_SECRET=None,
        QUICKBOOKS_REALM_ID=None,
        QUICKBOOKS_ACCESS_TOKEN=None,
        QUICKBOOKS_REFRESH_TOKEN=None,
    )


@pytest.fixture
def config_manager(env_settings: EnvironmentSettings) -> ConfigManager:
    return ConfigManager(config_dir=CONFIG_DIR, env=env_settings)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def repository(store: InMemoryDocumentStore) -> Repository:
    return Repository(store)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def customer(repository: Repository) -> Customer:
    return repository.save_customer(
        Customer(
            id="cust-1",
            company_name="Acme Foods",
            email="ap@acmefoods.example",
            billing_city="Dallas",
            billing_state="TX",
            payment_terms=PaymentTerms.NET_30,
        )
    )


@pytest.fixture
def other_customer(repository: Repository) -> Customer:
    return repository.save_customer(
        Customer(id="cust-2", company_name="Bluebonnet Paper", payment_terms=PaymentTerms.NET_15)
    )


@pytest.fixture
def carrier(repository: Repository) -> Carrier:
    return repository.save_carrier(
        Carrier(
            id="carrier-1",
            company_name="Red River Trucking",
            mc_number="MC123456",
            dot_number="987654",
            phone="555-0100",
            email="dispatch@redriver.example",
            payment_method=CarrierPaymentMethod.STANDARD,
        )
    )


@pytest.fixture
def quick_pay_carrier(repository: Repository) -> Carrier:
    return repository.save_carrier(
        Carrier(
            id="carrier-2",
            company_name="Lone Star Haulers",
            mc_number="MC222222",
            payment_method=CarrierPaymentMethod.QUICK_PAY,
        )
    )


@pytest.fixture
def make_load(repository: Repository) -> Callable[..., Load]:
    """Store a load directly, bypassing booking, in any status."""
    counter = itertools.count(1)

    def factory(
        customer_id: Optional[str] = "cust-1",
        carrier_id: Optional[str] = "carrier-1",
        status: LoadStatus = LoadStatus.DELIVERED,
        customer_rate: Optional[str] = "2500",
        carrier_rate: Optional[str] = "2000",
        miles: Optional[int] = 800,
        origin: tuple[str, str] = ("Dallas", "TX"),
        destination: tuple[str, str] = ("Atlanta", "GA"),
        accessorials: Optional[list[Accessorial]] = None,
        created_at: Optional[datetime] = None,
        **fields: Any,
    ) -> Load:
        n = next(counter)
        created_at = created_at or datetime.now()
        load = Load(
            id=f"load-{n}",
            load_number=f"SPTMS-202501-{n:04d}",
            status=status,
            created_at=created_at,
            customer=Unresolved(id=customer_id) if customer_id else None,
            carrier=Unresolved(id=carrier_id) if carrier_id else None,
            customer_rate=Decimal(customer_rate) if customer_rate is not None else None,
            carrier_rate=Decimal(carrier_rate) if carrier_rate is not None else None,
            miles=miles,
            pickup_address=Address(city=origin[0], state=origin[1]),
            delivery_address=Address(city=destination[0], state=destination[1]),
            accessorials=accessorials or [],
            status_history=[StatusHistoryEntry(status=status, timestamp=created_at, note="Load created")],
            **fields,
        )
        return repository.create_load(load)

    return factory
