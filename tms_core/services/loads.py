"""
Load lifecycle service.

Booking, rate changes, carrier assignment and status changes. Status
changes come in two flavours:
- manual (operator override): any status may be set
- automated (webhooks, billing side effects): forward-only through
  booked -> dispatched -> in-transit -> delivered -> invoiced -> paid

Every real change appends to the load's status history; history entries are
never rewritten.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from tms_core.core.config import ConfigManager
from tms_core.core.errors import ValidationError
from tms_core.data.models import Accessorial, Load, LoadStatus, Unresolved
from tms_core.data.store import DocumentStore
from tms_core.services.base import BaseService
from tms_core.services.sequence import SequenceGenerator, create_numbered


def transition(
    load: Load,
    target: LoadStatus,
    note: Optional[str] = None,
    automated: bool = False,
    at: Optional[datetime] = None,
) -> bool:
    """
    Apply a status change to a load in memory.

    Args:
        load: Load to mutate
        target: Requested status
        note: History note (defaults to "Status changed from X to Y")
        automated: Enforce forward-only progression when True
        at: Timestamp for the history entry

    Returns:
        True if the status changed, False if it was a no-op or refused
    """
    current = load.status
    if target == current:
        return False
    if automated and not target.is_forward_of(current):
        return False

    load.record_status(
        target, note or f"Status changed from {current.value} to {target.value}", at=at
    )
    return True


def _as_ref(value: Any) -> Any:
    # Accept a bare id string wherever a reference is expected
    if isinstance(value, str):
        return Unresolved(id=value)
    return value


class LoadService(BaseService):
    """
    Owns load writes.

    Example:
        service = LoadService(store)
        load = service.book_load({"customer": "cust-1", "customer_rate": "2500"})
        service.assign_carrier(load.id, "carrier-9", Decimal("2000"))
        service.dispatch(load.id)
    """

    def __init__(self, store: DocumentStore, config_manager: Optional[ConfigManager] = None) -> None:
        super().__init__("loads", store, config_manager)
        self.sequence = SequenceGenerator(store, self.config_manager)

    def book_load(self, data: dict[str, Any]) -> Load:
        """
        Create a load in ``booked`` status.

        A load number is generated when none is given. If another booking
        took the same number first, a fresh number is drawn and the create
        retried a bounded number of times.

        Args:
            data: Load fields; ``customer`` may be an id string

        Returns:
            Stored load

        Raises:
            ValidationError: If no customer is given
            NotFoundError: If the customer or carrier does not exist
            DuplicateKeyError: If a caller-supplied number is taken, or
                every generated number collided
        """
        data = {**data, "id": data.get("id") or ""}
        for field in ("customer", "carrier"):
            if field in data:
                data[field] = _as_ref(data[field])

        draft = Load.model_validate(data)
        if draft.customer is None:
            raise ValidationError("customer is required")
        self.repository.get_customer(draft.customer_id or "")
        if draft.carrier is not None:
            self.repository.get_carrier(draft.carrier_id or "")

        draft.status = LoadStatus.BOOKED
        draft.status_history = []
        draft.record_status(LoadStatus.BOOKED, "Load created", at=draft.created_at)

        load = create_numbered(
            draft,
            "load_number",
            self.sequence.next_load_number,
            self.repository.create_load,
            self.sequence.max_attempts,
        )
        self.logger.info("load_booked", load_id=load.id, load_number=load.load_number)
        return load

    def update_rates(
        self,
        load_id: str,
        customer_rate: Optional[Decimal] = None,
        carrier_rate: Optional[Decimal] = None,
    ) -> Load:
        """Change either rate; margin follows automatically."""
        load = self.repository.get_load(load_id)
        if customer_rate is not None:
            load.customer_rate = customer_rate
        if carrier_rate is not None:
            load.carrier_rate = carrier_rate
        load = self.repository.save_load(load)
        self.logger.info("load_rates_updated", load_id=load.id, margin=str(load.margin))
        return load

    def assign_carrier(self, load_id: str, carrier_id: str, carrier_rate: Optional[Decimal] = None) -> Load:
        load = self.repository.get_load(load_id)
        if load.status.is_terminal:
            raise ValidationError(
                f"Load {load.display_number} is {load.status.value}", load_id=load.id
            )
        carrier = self.repository.get_carrier(carrier_id)
        load.carrier = Unresolved(id=carrier.id)
        if carrier_rate is not None:
            load.carrier_rate = carrier_rate
        load = self.repository.save_load(load)
        self.logger.info("carrier_assigned", load_id=load.id, carrier_id=carrier.id)
        return load

    def dispatch(self, load_id: str) -> Load:
        """Move a booked load with a carrier to ``dispatched``."""
        load = self.repository.get_load(load_id)
        if load.carrier is None:
            raise ValidationError(f"Load {load.display_number} has no carrier assigned", load_id=load.id)
        if load.status != LoadStatus.BOOKED:
            raise ValidationError(
                f"Load {load.display_number} cannot be dispatched (status: {load.status.value})",
                load_id=load.id,
            )
        transition(load, LoadStatus.DISPATCHED)
        load = self.repository.save_load(load)
        self.logger.info("load_dispatched", load_id=load.id, carrier_id=load.carrier_id)
        return load

    def change_status(
        self,
        load_id: str,
        status: LoadStatus,
        note: Optional[str] = None,
        automated: bool = False,
    ) -> Load:
        """
        Set a load's status.

        Manual changes are unconstrained. Automated changes only move
        forward; a backward or sideways request leaves the load untouched.
        """
        load = self.repository.get_load(load_id)
        previous = load.status
        if not transition(load, LoadStatus(status), note=note, automated=automated):
            self.logger.info(
                "status_change_skipped",
                load_id=load.id,
                current=previous.value,
                requested=LoadStatus(status).value,
                automated=automated,
            )
            return load

        load = self.repository.save_load(load)
        self.logger.info(
            "load_status_changed",
            load_id=load.id,
            previous=previous.value,
            status=load.status.value,
            automated=automated,
        )
        return load

    def add_accessorial(self, load_id: str, accessorial: Accessorial) -> Load:
        load = self.repository.get_load(load_id)
        load.accessorials.append(accessorial)
        load = self.repository.save_load(load)
        self.logger.info(
            "accessorial_added",
            load_id=load.id,
            type=accessorial.type.value,
            bill_to=accessorial.bill_to.value,
            amount=str(accessorial.amount),
        )
        return load

    def mark_documents(
        self,
        load_id: str,
        rate_con_sent: Optional[bool] = None,
        has_bol: Optional[bool] = None,
        has_pod: Optional[bool] = None,
    ) -> Load:
        """Flip rate-con/BOL/POD flags; sending a rate con stamps the time."""
        load = self.repository.get_load(load_id)
        if rate_con_sent is not None:
            load.documents.rate_con_sent = rate_con_sent
            load.documents.rate_con_sent_date = datetime.now() if rate_con_sent else None
        if has_bol is not None:
            load.documents.has_bol = has_bol
        if has_pod is not None:
            load.documents.has_pod = has_pod
        return self.repository.save_load(load)

    def get_resolved(self, load_id: str) -> Load:
        """Load with customer and carrier expanded."""
        return self.repository.resolve_load(self.repository.get_load(load_id))
