"""
Tracking event model - immutable record of a location/status fix.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TrackingEventType(str, Enum):
    LOCATION = "location"
    ARRIVED_PICKUP = "arrived-pickup"
    DEPARTED_PICKUP = "departed-pickup"
    ARRIVED_DELIVERY = "arrived-delivery"
    DEPARTED_DELIVERY = "departed-delivery"
    IN_TRANSIT = "in-transit"
    DELAY = "delay"
    EXCEPTION = "exception"


class TrackingSource(str, Enum):
    MACROPOINT = "macropoint"
    MANUAL = "manual"
    ELD = "eld"
    GPS = "gps"
    MOBILE = "mobile"


class EventLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None

    def describe(self) -> str:
        """City/state when known, else coordinates, else 'Unknown'."""
        parts = [p for p in (self.city, self.state) if p]
        if parts:
            return ", ".join(parts)
        if self.latitude is not None and self.longitude is not None:
            return f"{self.latitude}, {self.longitude}"
        return "Unknown"


class EventEta(BaseModel):
    model_config = ConfigDict(frozen=True)

    estimated_arrival: Optional[datetime] = None
    miles_remaining: Optional[float] = None
    minutes_remaining: Optional[float] = None


class TrackingEvent(BaseModel):
    """Append-only; never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    load_id: str
    event_type: TrackingEventType
    timestamp: datetime
    location: Optional[EventLocation] = None
    source: TrackingSource = TrackingSource.MACROPOINT
    event_code: Optional[str] = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    eta: Optional[EventEta] = None
    notes: Optional[str] = None
