"""
Tracking service - provider tracking orders and inbound location webhooks.

Webhook handling never fails toward the provider: malformed payloads,
unknown loads and internal faults are logged and still acknowledged so the
provider does not retry indefinitely.
"""

from datetime import datetime
from typing import Any, Optional

import structlog

from tms_core.core.config import ConfigManager
from tms_core.core.errors import IntegrationError, ValidationError
from tms_core.data.models import (
    EventLocation,
    Load,
    TrackingEvent,
    TrackingEventType,
    TrackingSource,
)
from tms_core.data.repository import Repository
from tms_core.data.store import DocumentStore
from tms_core.integrations.macropoint import (
    LocationUpdate,
    MacroPointAdapter,
    map_event_code,
    parse_webhook_payload,
    status_update_for,
)
from tms_core.services.base import BaseService
from tms_core.services.loads import transition


def _ack(processed: bool, **extra: Any) -> dict[str, Any]:
    return {"received": True, "processed": processed, **extra}


class TrackingEventProcessor:
    """
    Applies one normalized location update to its load.

    Every processed update appends a TrackingEvent and refreshes the load's
    cached last location. Status only ever moves forward here: a late
    "departed pickup" on a delivered load is recorded but changes nothing.
    """

    def __init__(self, repository: Repository, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.repository = repository
        self.logger = logger or structlog.get_logger(component="tracking_processor")

    def find_load(self, order_id: str) -> Optional[Load]:
        """Resolve a provider order id: tracking id first, then load id."""
        return self.repository.find_load_by_tracking_id(order_id) or self.repository.find_load(order_id)

    def process(self, payload: Any) -> dict[str, Any]:
        """
        Process a raw webhook body.

        Args:
            payload: Decoded JSON body as received

        Returns:
            Acknowledgement ``{"received": True, "processed": bool, ...}``
        """
        update = parse_webhook_payload(payload)
        if update is None:
            return _ack(False, reason="invalid payload")

        load = self.find_load(update.order_id)
        if load is None:
            self.logger.warning("tracking_load_not_found", order_id=update.order_id)
            return _ack(False, reason="load not found", order_id=update.order_id)

        event, status_changed = self.apply(load, update, payload)
        return _ack(
            True,
            load_id=load.id,
            event_id=event.id,
            event_type=event.event_type.value,
            status=load.status.value,
            status_changed=status_changed,
        )

    def apply(self, load: Load, update: LocationUpdate, payload: dict[str, Any]) -> tuple[TrackingEvent, bool]:
        location = EventLocation(
            latitude=update.latitude,
            longitude=update.longitude,
            city=update.city,
            state=update.state,
            address=update.address,
        )
        event = self.repository.add_tracking_event(
            TrackingEvent(
                load_id=load.id,
                event_type=map_event_code(update.event_code),
                timestamp=update.event_time,
                location=location,
                source=TrackingSource.MACROPOINT,
                event_code=update.event_code,
                raw_payload=payload,
                eta=update.eta,
            )
        )

        load.tracking.last_location = location.describe()
        load.tracking.last_update = update.event_time

        if update.driver is not None:
            if update.driver.name:
                load.driver_info.driver_name = update.driver.name
            if update.driver.phone:
                load.driver_info.driver_phone = update.driver.phone

        previous = load.status
        target = status_update_for(update.event_code)
        status_changed = False
        if target is not None:
            status_changed = transition(
                load,
                target,
                note=f"Tracking update: {event.event_type.value}",
                automated=True,
                at=update.event_time,
            )
            if not status_changed:
                self.logger.info(
                    "tracking_status_not_advanced",
                    load_id=load.id,
                    current=previous.value,
                    requested=target.value,
                )

        self.repository.save_load(load)
        self.logger.info(
            "tracking_event_processed",
            load_id=load.id,
            event_code=update.event_code,
            event_type=event.event_type.value,
            status=load.status.value,
            status_changed=status_changed,
        )
        return event, status_changed


class TrackingService(BaseService):
    """
    Starts/stops provider tracking and serves event history.

    Example:
        tracking = TrackingService(store)
        tracking.start_tracking("load-1")
        ack = tracking.handle_webhook(request_json)
    """

    def __init__(
        self,
        store: DocumentStore,
        config_manager: Optional[ConfigManager] = None,
        macropoint: Optional[MacroPointAdapter] = None,
    ) -> None:
        super().__init__("tracking", store, config_manager)
        self._macropoint = macropoint
        self.processor = TrackingEventProcessor(self.repository, self.logger)
        self.history_limit = int(self.config_manager.get_tracking_config().get("history_limit", 50))

    @property
    def macropoint(self) -> MacroPointAdapter:
        if self._macropoint is None:
            self._macropoint = MacroPointAdapter(self.config_manager)
        return self._macropoint

    def start_tracking(self, load_id: str) -> Load:
        """
        Open a MacroPoint tracking order for a load.

        Raises:
            ValidationError: No carrier assigned, or tracking already active
            IntegrationError: MacroPoint rejected the order
        """
        load = self.repository.get_load(load_id)
        if load.carrier is None:
            raise ValidationError(f"Load {load.display_number} has no carrier assigned", load_id=load.id)
        if load.tracking.tracking_active:
            raise ValidationError(f"Tracking is already active for load {load.display_number}", load_id=load.id)

        carrier = self.repository.get_carrier(load.carrier_id or "")
        result = self.macropoint.create_tracking_request(load, carrier)
        if not result.success:
            raise IntegrationError("macropoint", "tracking request failed", result.status_code, result.error)

        order = result.data
        now = datetime.now()
        load.tracking.tracking_id = order.tracking_id or order.order_id
        load.tracking.tracking_active = True
        load.tracking.last_update = now
        load = self.repository.save_load(load)

        self.repository.add_tracking_event(
            TrackingEvent(
                load_id=load.id,
                event_type=TrackingEventType.IN_TRANSIT,
                timestamp=now,
                source=TrackingSource.MACROPOINT,
                notes="Tracking initiated",
            )
        )
        self.logger.info("tracking_started", load_id=load.id, tracking_id=load.tracking.tracking_id)
        return load

    def stop_tracking(self, load_id: str) -> Load:
        """Cancel the provider order and mark tracking inactive."""
        load = self.repository.get_load(load_id)
        if not load.tracking.tracking_active:
            raise ValidationError(f"Tracking is not active for load {load.display_number}", load_id=load.id)

        result = self.macropoint.cancel_tracking(load.tracking.tracking_id or load.id)
        if not result.success:
            raise IntegrationError("macropoint", "tracking cancel failed", result.status_code, result.error)

        load.tracking.tracking_active = False
        load = self.repository.save_load(load)
        self.logger.info("tracking_stopped", load_id=load.id)
        return load

    def event_history(self, load_id: str, limit: Optional[int] = None) -> list[TrackingEvent]:
        """Tracking events for a load, newest first."""
        self.repository.get_load(load_id)
        return self.repository.tracking_events_for(load_id, limit or self.history_limit)

    def handle_webhook(self, raw_payload: Any) -> dict[str, Any]:
        """Process a MacroPoint webhook; always returns an acknowledgement."""
        try:
            return self.processor.process(raw_payload)
        except Exception as e:
            self.logger.exception("tracking_webhook_failed")
            return _ack(False, reason="internal error", error=str(e))
