"""
Document store contract and an in-memory implementation.

The core never picks a persistence engine; it talks to anything that offers
``find_by_id``, ``find``, ``create`` and ``update`` over plain dicts.
Filters use the operator vocabulary below, keyed by (optionally dotted)
field path::

    {"status": {"in": ["delivered", "invoiced"]},
     "tracking.tracking_id": {"equals": "MP-1"},
     "load_number": {"like": "SPTMS-202501-"},
     "created_at": {"greater_than_equal": start, "less_than_equal": end}}

``like`` is a prefix match. Sorting takes a field name, prefixed with ``-``
for descending order.
"""

import copy
import uuid
from datetime import datetime
from threading import RLock
from typing import Any, Optional, Protocol

from tms_core.core.errors import DuplicateKeyError, NotFoundError, ValidationError

Filter = dict[str, dict[str, Any]]

OPERATORS = ("equals", "not_equals", "in", "like", "greater_than_equal", "less_than_equal")

# Collections
LOADS = "loads"
CUSTOMERS = "customers"
CARRIERS = "carriers"
INVOICES = "invoices"
PAY_SHEETS = "carrier-payments"
TRACKING_EVENTS = "tracking-events"


class DocumentStore(Protocol):
    """Persistence contract consumed by the core."""

    def find_by_id(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        ...

    def find(
        self,
        collection: str,
        where: Optional[Filter] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        ...

    def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        ...

    def update(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        ...


def get_path(record: dict[str, Any], path: str) -> Any:
    """Read a dotted path out of nested dicts (None when absent)."""
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _comparable(value: Any) -> Any:
    # Stored datetimes may be ISO strings (JSON dumps) or datetime objects
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def matches(record: dict[str, Any], where: Optional[Filter]) -> bool:
    """Evaluate a filter against a record."""
    for path, clause in (where or {}).items():
        actual = get_path(record, path)
        for op, expected in clause.items():
            if op == "equals":
                if _comparable(actual) != _comparable(expected):
                    return False
            elif op == "not_equals":
                if _comparable(actual) == _comparable(expected):
                    return False
            elif op == "in":
                if _comparable(actual) not in [_comparable(e) for e in expected]:
                    return False
            elif op == "like":
                if not isinstance(actual, str) or not actual.startswith(str(expected)):
                    return False
            elif op == "greater_than_equal":
                if actual is None or _comparable(actual) < _comparable(expected):
                    return False
            elif op == "less_than_equal":
                if actual is None or _comparable(actual) > _comparable(expected):
                    return False
            else:
                raise ValidationError(f"Unsupported filter operator: {op}", operator=op)
    return True


class InMemoryDocumentStore:
    """
    Thread-safe dict-backed store.

    Unique fields are enforced on write as a best-effort check, the same
    guarantee a column constraint gives; it is not a transaction around the
    caller's read-then-write.
    """

    def __init__(self, unique_fields: Optional[dict[str, list[str]]] = None) -> None:
        self._lock = RLock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._unique_fields = unique_fields or {
            LOADS: ["load_number"],
            INVOICES: ["invoice_number"],
            PAY_SHEETS: ["pay_sheet_number"],
        }

    def _bucket(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def _check_unique(self, collection: str, data: dict[str, Any], record_id: str) -> None:
        for field in self._unique_fields.get(collection, []):
            value = data.get(field)
            if value is None:
                continue
            for other_id, other in self._bucket(collection).items():
                if other_id != record_id and other.get(field) == value:
                    raise DuplicateKeyError(collection, field, value)

    def find_by_id(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._bucket(collection).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find(
        self,
        collection: str,
        where: Optional[Filter] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._bucket(collection).values() if matches(r, where)]

        if sort:
            descending = sort.startswith("-")
            key = sort.lstrip("-")
            present = [r for r in rows if get_path(r, key) is not None]
            missing = [r for r in rows if get_path(r, key) is None]
            present.sort(key=lambda r: _comparable(get_path(r, key)), reverse=descending)
            rows = present + missing

        if limit is not None:
            rows = rows[:limit]
        return rows

    def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            record = copy.deepcopy(data)
            record_id = record.get("id") or uuid.uuid4().hex
            record["id"] = record_id
            if record_id in self._bucket(collection):
                raise DuplicateKeyError(collection, "id", record_id)
            self._check_unique(collection, record, record_id)
            self._bucket(collection)[record_id] = record
            return copy.deepcopy(record)

    def update(self, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            current = self._bucket(collection).get(record_id)
            if current is None:
                raise NotFoundError(collection, record_id)
            merged = {**current, **copy.deepcopy(data), "id": record_id}
            self._check_unique(collection, merged, record_id)
            self._bucket(collection)[record_id] = merged
            return copy.deepcopy(merged)
