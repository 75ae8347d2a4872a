"""
Typed access to the document store.

Converts between store dicts and pydantic models and performs the
reference-resolution step (``Unresolved`` -> ``Resolved``) before records
reach the core services.
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from tms_core.core.errors import NotFoundError
from tms_core.data.models import (
    Carrier,
    Customer,
    Invoice,
    Load,
    PaySheet,
    Resolved,
    TrackingEvent,
    Unresolved,
)
from tms_core.data.store import (
    CARRIERS,
    CUSTOMERS,
    INVOICES,
    LOADS,
    PAY_SHEETS,
    TRACKING_EVENTS,
    DocumentStore,
    Filter,
)

M = TypeVar("M", bound=BaseModel)


class Repository:
    """Model-level facade over a ``DocumentStore``."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # Generic helpers

    def _get(self, collection: str, record_id: str, model: type[M]) -> M:
        record = self.store.find_by_id(collection, record_id)
        if record is None:
            raise NotFoundError(collection, record_id)
        return model.model_validate(record)

    def _find(
        self,
        collection: str,
        model: type[M],
        where: Optional[Filter] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[M]:
        return [model.model_validate(r) for r in self.store.find(collection, where, sort, limit)]

    @staticmethod
    def _dump(model: BaseModel) -> dict[str, Any]:
        return model.model_dump(mode="json", exclude_none=False)

    def _create(self, collection: str, model: M) -> M:
        created = self.store.create(collection, self._dump(model))
        return type(model).model_validate(created)

    def _save(self, collection: str, record_id: str, model: M) -> M:
        updated = self.store.update(collection, record_id, self._dump(model))
        return type(model).model_validate(updated)

    # Master data

    def get_customer(self, customer_id: str) -> Customer:
        return self._get(CUSTOMERS, customer_id, Customer)

    def get_carrier(self, carrier_id: str) -> Carrier:
        return self._get(CARRIERS, carrier_id, Carrier)

    def save_customer(self, customer: Customer) -> Customer:
        if self.store.find_by_id(CUSTOMERS, customer.id) is None:
            return self._create(CUSTOMERS, customer)
        return self._save(CUSTOMERS, customer.id, customer)

    def save_carrier(self, carrier: Carrier) -> Carrier:
        if self.store.find_by_id(CARRIERS, carrier.id) is None:
            return self._create(CARRIERS, carrier)
        return self._save(CARRIERS, carrier.id, carrier)

    def customers_by_id(self, customer_ids: set[str]) -> dict[str, Customer]:
        if not customer_ids:
            return {}
        rows = self._find(CUSTOMERS, Customer, {"id": {"in": sorted(customer_ids)}})
        return {c.id: c for c in rows}

    def carriers_by_id(self, carrier_ids: set[str]) -> dict[str, Carrier]:
        if not carrier_ids:
            return {}
        rows = self._find(CARRIERS, Carrier, {"id": {"in": sorted(carrier_ids)}})
        return {c.id: c for c in rows}

    # Loads

    def get_load(self, load_id: str) -> Load:
        return self._get(LOADS, load_id, Load)

    def find_load(self, load_id: str) -> Optional[Load]:
        record = self.store.find_by_id(LOADS, load_id)
        return Load.model_validate(record) if record is not None else None

    def find_load_by_tracking_id(self, tracking_id: str) -> Optional[Load]:
        rows = self._find(LOADS, Load, {"tracking.tracking_id": {"equals": tracking_id}}, limit=1)
        return rows[0] if rows else None

    def find_loads(
        self, where: Optional[Filter] = None, sort: Optional[str] = None, limit: Optional[int] = None
    ) -> list[Load]:
        return self._find(LOADS, Load, where, sort, limit)

    @staticmethod
    def _dehydrate(load: Load) -> Load:
        # Stored loads reference parties by id only
        updates: dict[str, Any] = {}
        if isinstance(load.customer, Resolved):
            updates["customer"] = Unresolved(id=load.customer.id)
        if isinstance(load.carrier, Resolved):
            updates["carrier"] = Unresolved(id=load.carrier.id)
        return load.model_copy(update=updates) if updates else load

    def create_load(self, load: Load) -> Load:
        return self._create(LOADS, self._dehydrate(load))

    def save_load(self, load: Load) -> Load:
        return self._save(LOADS, load.id, self._dehydrate(load))

    def resolve_load(self, load: Load) -> Load:
        """
        Replace unresolved customer/carrier references with full records.

        Raises:
            NotFoundError: If a referenced customer or carrier does not exist
        """
        updates: dict[str, Any] = {}
        if isinstance(load.customer, Unresolved):
            updates["customer"] = Resolved[Customer](value=self.get_customer(load.customer.id))
        if isinstance(load.carrier, Unresolved):
            updates["carrier"] = Resolved[Carrier](value=self.get_carrier(load.carrier.id))
        if not updates:
            return load
        return load.model_copy(update=updates)

    def get_resolved_loads(self, load_ids: list[str]) -> list[Load]:
        """Fetch loads in the given order, resolving references."""
        return [self.resolve_load(self.get_load(load_id)) for load_id in load_ids]

    # Documents

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._get(INVOICES, invoice_id, Invoice)

    def create_invoice(self, invoice: Invoice) -> Invoice:
        return self._create(INVOICES, invoice)

    def save_invoice(self, invoice: Invoice) -> Invoice:
        return self._save(INVOICES, invoice.id or "", invoice)

    def get_pay_sheet(self, pay_sheet_id: str) -> PaySheet:
        return self._get(PAY_SHEETS, pay_sheet_id, PaySheet)

    def create_pay_sheet(self, pay_sheet: PaySheet) -> PaySheet:
        return self._create(PAY_SHEETS, pay_sheet)

    def save_pay_sheet(self, pay_sheet: PaySheet) -> PaySheet:
        return self._save(PAY_SHEETS, pay_sheet.id or "", pay_sheet)

    # Tracking events (append-only: create and query, never update)

    def add_tracking_event(self, event: TrackingEvent) -> TrackingEvent:
        return self._create(TRACKING_EVENTS, event)

    def tracking_events_for(self, load_id: str, limit: Optional[int] = None) -> list[TrackingEvent]:
        return self._find(
            TRACKING_EVENTS,
            TrackingEvent,
            {"load_id": {"equals": load_id}},
            sort="-timestamp",
            limit=limit,
        )
