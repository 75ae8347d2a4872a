"""
Sequence Number Generator - period-scoped human-readable numbers.

Numbers look like ``SPTMS-202501-0007``: an entity prefix, the calendar
year+month, and a counter zero-padded to four digits that restarts at 0001
every month.

The generator reads the greatest existing number for the prefix and adds
one. Two concurrent creates in the same period can read the same maximum;
the store's unique constraint rejects the loser and ``create_numbered``
retries with a fresh number. It is not an atomic counter.
"""

from datetime import datetime
from typing import Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel

from tms_core.core.config import ConfigManager, get_config
from tms_core.core.errors import DuplicateKeyError
from tms_core.data.store import INVOICES, LOADS, PAY_SHEETS, DocumentStore

logger = structlog.get_logger(component="sequence")

PAD_WIDTH = 4

# prefix -> greatest existing number sharing it (None when there are none)
CollectionLookup = Callable[[str], Optional[str]]

M = TypeVar("M", bound=BaseModel)


def period_prefix(entity_prefix: str, when: Optional[datetime] = None) -> str:
    """Build ``"{entity}-{YYYYMM}-"`` for the given moment (default now)."""
    when = when or datetime.now()
    return f"{entity_prefix}-{when.year}{when.month:02d}-"


def parse_suffix(number: str) -> int:
    """Trailing numeric counter of a number; 0 when it is not numeric."""
    tail = number.rsplit("-", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        logger.warning("sequence_suffix_unparseable", number=number)
        return 0


def next_number(prefix: str, collection_lookup: CollectionLookup) -> str:
    """
    Derive the next number for a prefix.

    Args:
        prefix: Period prefix, e.g. "INV-202501-"
        collection_lookup: Returns the lexicographically greatest existing
            number starting with prefix, or None

    Returns:
        Next number, e.g. "INV-202501-0008" after "INV-202501-0007"
    """
    last = collection_lookup(prefix)
    sequence = parse_suffix(last) + 1 if last else 1
    return f"{prefix}{sequence:0{PAD_WIDTH}d}"


def store_lookup(store: DocumentStore, collection: str, field: str) -> CollectionLookup:
    """Lookup that asks the store for the top ``field`` value with a prefix."""

    def lookup(prefix: str) -> Optional[str]:
        rows = store.find(collection, {field: {"like": prefix}}, sort=f"-{field}", limit=1)
        return rows[0].get(field) if rows else None

    return lookup


def create_numbered(
    draft: M,
    field: str,
    next_number: Callable[[], str],
    create: Callable[[M], M],
    max_attempts: int = 3,
) -> M:
    """
    Persist a record under a freshly generated number.

    When the store rejects the number as a duplicate (another writer took it
    between our read and our write) a new number is drawn and the create is
    retried. A number already set on the draft is used as-is, once.

    Raises:
        DuplicateKeyError: If the preset number is taken or every attempt collided
    """
    explicit = getattr(draft, field) is not None
    attempt = 1
    while True:
        candidate = draft if explicit else draft.model_copy(update={field: next_number()})
        try:
            return create(candidate)
        except DuplicateKeyError:
            logger.warning(
                "sequence_collision", field=field, number=getattr(candidate, field), attempt=attempt
            )
            if explicit or attempt >= max_attempts:
                raise
            attempt += 1


class SequenceGenerator:
    """Next load, invoice and pay sheet numbers backed by a document store."""

    def __init__(self, store: DocumentStore, config_manager: Optional[ConfigManager] = None) -> None:
        self.store = store
        self.prefixes = (config_manager or get_config()).get_numbering()
        self.max_attempts = int(self.prefixes.get("max_create_attempts", 3))

    def next_load_number(self, when: Optional[datetime] = None) -> str:
        prefix = period_prefix(self.prefixes["load"], when)
        return next_number(prefix, store_lookup(self.store, LOADS, "load_number"))

    def next_invoice_number(self, when: Optional[datetime] = None) -> str:
        prefix = period_prefix(self.prefixes["invoice"], when)
        return next_number(prefix, store_lookup(self.store, INVOICES, "invoice_number"))

    def next_pay_sheet_number(self, when: Optional[datetime] = None) -> str:
        prefix = period_prefix(self.prefixes["pay_sheet"], when)
        return next_number(prefix, store_lookup(self.store, PAY_SHEETS, "pay_sheet_number"))
