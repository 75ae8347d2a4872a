"""
MacroPoint tracking adapter.

Creates and cancels tracking orders and normalizes inbound location
webhooks. Authentication is HTTP Basic with the API id and password.
"""

import base64
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tms_core.core.results import IntegrationResult
from tms_core.data.models import Address, Carrier, EventEta, Load, LoadStatus, TrackingEventType
from tms_core.integrations.base import ProviderAdapter, first_present

logger = structlog.get_logger(provider="macropoint")

EVENT_TYPES: dict[str, TrackingEventType] = {
    "X1": TrackingEventType.DEPARTED_PICKUP,
    "X2": TrackingEventType.DEPARTED_DELIVERY,
    "X3": TrackingEventType.ARRIVED_PICKUP,
    "X4": TrackingEventType.ARRIVED_DELIVERY,
    "LOCATION": TrackingEventType.LOCATION,
    "LOC": TrackingEventType.LOCATION,
    "DELAY": TrackingEventType.DELAY,
    "EXCEPTION": TrackingEventType.EXCEPTION,
    "EXC": TrackingEventType.EXCEPTION,
}

# Only these codes move a load; X3 (arrived at pickup) is logged only
STATUS_UPDATES: dict[str, LoadStatus] = {
    "X1": LoadStatus.IN_TRANSIT,
    "X4": LoadStatus.DELIVERED,
}


def map_event_code(event_code: str) -> TrackingEventType:
    """Domain event type for a provider code (case-insensitive, default location)."""
    return EVENT_TYPES.get(event_code.upper(), TrackingEventType.LOCATION)


def status_update_for(event_code: str) -> Optional[LoadStatus]:
    """Status a code implies, or None when it only records an event."""
    return STATUS_UPDATES.get(event_code.upper())


class DriverContact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class LocationUpdate(BaseModel):
    """Normalized inbound webhook."""

    order_id: str
    event_code: str
    event_time: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    eta: Optional[EventEta] = None
    driver: Optional[DriverContact] = None


class TrackingOrder(BaseModel):
    order_id: str
    tracking_id: Optional[str] = None
    status: Optional[str] = None


class TrackingStatus(BaseModel):
    status: Optional[str] = None
    last_location: Optional[dict[str, Any]] = None


def parse_webhook_payload(payload: Any) -> Optional[LocationUpdate]:
    """
    Normalize a webhook body, accepting the provider's alias field names.

    Returns:
        LocationUpdate, or None when orderId/eventCode is missing or a field
        cannot be parsed
    """
    if not isinstance(payload, dict):
        logger.warning("webhook_payload_invalid", reason="not an object")
        return None

    order_id = first_present(payload, "orderId", "order_id")
    event_code = first_present(payload, "eventCode", "event_code")
    if not order_id or not event_code:
        logger.warning(
            "webhook_payload_invalid",
            reason="missing orderId or eventCode",
            has_order_id=bool(order_id),
            has_event_code=bool(event_code),
        )
        return None

    eta = payload.get("eta")
    driver = payload.get("driver")
    try:
        return LocationUpdate(
            order_id=str(order_id),
            event_code=str(event_code),
            event_time=first_present(payload, "eventTime", "event_time", default=datetime.now()),
            latitude=first_present(payload, "latitude", "lat"),
            longitude=first_present(payload, "longitude", "lng", "lon"),
            city=payload.get("city"),
            state=payload.get("state"),
            address=payload.get("address"),
            eta=(
                EventEta(
                    estimated_arrival=first_present(eta, "arrival", "estimatedArrival"),
                    miles_remaining=first_present(eta, "milesRemaining", "miles_remaining"),
                    minutes_remaining=first_present(eta, "minutesRemaining", "minutes_remaining"),
                )
                if isinstance(eta, dict)
                else None
            ),
            driver=(
                DriverContact(name=driver.get("name"), phone=driver.get("phone"))
                if isinstance(driver, dict)
                else None
            ),
        )
    except PydanticValidationError as e:
        logger.warning("webhook_payload_invalid", reason="unparseable field", errors=e.error_count())
        return None


def _stop(address: Optional[Address], start: Optional[datetime], end: Optional[datetime]) -> dict[str, Any]:
    address = address or Address()
    return {
        "name": address.facility_name or "",
        "address": address.address_line1 or "",
        "city": address.city or "",
        "state": address.state or "",
        "zip": address.zip_code or "",
        "appointmentStart": start.isoformat() if start else None,
        "appointmentEnd": end.isoformat() if end else None,
    }


class MacroPointAdapter(ProviderAdapter):
    """MacroPoint order API client."""

    provider = "macropoint"
    display_name = "MacroPoint"

    @property
    def base_url(self) -> str:
        return self.settings.macropoint_base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.settings.macropoint_api_id and self.settings.macropoint_api_password)

    def ensure_authenticated(self) -> dict[str, str]:
        raw = f"{self.settings.macropoint_api_id}:{self.settings.macropoint_api_password}"
        return {"Authorization": f"Basic {base64.b64encode(raw.encode()).decode()}"}

    def order_wire(self, load: Load, carrier: Carrier) -> dict[str, Any]:
        """Tracking order body for a load and its carrier."""
        return {
            "orderId": load.id,
            "referenceNumber": load.display_number,
            "carrier": {
                "mcNumber": carrier.mc_number,
                "dotNumber": carrier.dot_number,
                "name": carrier.company_name,
                "phone": carrier.phone,
                "email": carrier.dispatch_email or carrier.email,
            },
            "origin": _stop(load.pickup_address, load.pickup_date, load.pickup_date_end),
            "destination": _stop(load.delivery_address, load.delivery_date, load.delivery_date_end),
            "equipment": load.equipment_type.value,
            "commodity": load.commodity,
            "weight": load.weight,
            "driverPhone": load.driver_info.driver_phone,
            "callbackUrl": self.settings.macropoint_webhook_url or "",
        }

    def create_tracking_request(self, load: Load, carrier: Carrier) -> IntegrationResult:
        """Start tracking a load. data: TrackingOrder."""

        def run() -> TrackingOrder:
            result = self.request("/orders", "POST", self.order_wire(load, carrier))
            return TrackingOrder(
                order_id=first_present(result, "orderId", default=load.id),
                tracking_id=first_present(result, "trackingId"),
                status=first_present(result, "status"),
            )

        return self._call("create_tracking_request", run)

    def update_driver_info(self, order_id: str, driver_phone: str, driver_name: Optional[str] = None) -> IntegrationResult:
        def run() -> TrackingOrder:
            result = self.request(
                f"/orders/{order_id}/driver", "PUT", {"phone": driver_phone, "name": driver_name}
            )
            return TrackingOrder(
                order_id=first_present(result, "orderId", default=order_id),
                tracking_id=first_present(result, "trackingId"),
                status=first_present(result, "status"),
            )

        return self._call("update_driver_info", run)

    def cancel_tracking(self, order_id: str) -> IntegrationResult:
        def run() -> TrackingOrder:
            self.request(f"/orders/{order_id}", "DELETE")
            return TrackingOrder(order_id=order_id, status="cancelled")

        return self._call("cancel_tracking", run)

    def get_tracking_status(self, order_id: str) -> IntegrationResult:
        """Current order status and last fix. data: TrackingStatus."""

        def run() -> TrackingStatus:
            result = self.request(f"/orders/{order_id}")
            return TrackingStatus(
                status=first_present(result, "status"),
                last_location=first_present(result, "lastLocation"),
            )

        return self._call("get_tracking_status", run)

    parse_webhook_payload = staticmethod(parse_webhook_payload)
    map_event_code = staticmethod(map_event_code)
    status_update_for = staticmethod(status_update_for)
