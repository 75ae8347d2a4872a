"""
Load data model - represents a brokered freight shipment.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import BaseModel, Field, computed_field

from tms_core.core.money import ZERO
from tms_core.data.models.party import Carrier, Customer
from tms_core.data.models.refs import Resolved, Unresolved, ref_id

CustomerRef = Annotated[Union[Unresolved, Resolved[Customer]], Field(discriminator="kind")]
CarrierRef = Annotated[Union[Unresolved, Resolved[Carrier]], Field(discriminator="kind")]


class LoadStatus(str, Enum):
    """Load status enumeration."""

    BOOKED = "booked"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    INVOICED = "invoiced"
    PAID = "paid"
    CANCELLED = "cancelled"
    TONU = "tonu"

    @property
    def rank(self) -> Optional[int]:
        """Position in the canonical progression; None for side-states."""
        try:
            return STATUS_PROGRESSION.index(self)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in (LoadStatus.CANCELLED, LoadStatus.TONU)

    def is_forward_of(self, other: "LoadStatus") -> bool:
        """True when self lies strictly after other in the progression."""
        if self.rank is None or other.rank is None:
            return False
        return self.rank > other.rank


STATUS_PROGRESSION = (
    LoadStatus.BOOKED,
    LoadStatus.DISPATCHED,
    LoadStatus.IN_TRANSIT,
    LoadStatus.DELIVERED,
    LoadStatus.INVOICED,
    LoadStatus.PAID,
)


class EquipmentType(str, Enum):
    """Trailer/equipment requested for the load."""

    DRY_VAN = "dry-van"
    REEFER = "reefer"
    FLATBED = "flatbed"
    STEP_DECK = "step-deck"
    LOWBOY = "lowboy"
    POWER_ONLY = "power-only"
    BOX_TRUCK = "box-truck"
    HOTSHOT = "hotshot"
    TANKER = "tanker"
    INTERMODAL = "intermodal"
    OTHER = "other"


class AccessorialType(str, Enum):
    DETENTION = "detention"
    LAYOVER = "layover"
    TONU = "tonu"
    LUMPER = "lumper"
    STOP = "stop"
    FUEL = "fuel"
    OTHER = "other"


class BillTo(str, Enum):
    CUSTOMER = "customer"
    CARRIER = "carrier"
    INTERNAL = "internal"


class Address(BaseModel):
    """Pickup or delivery stop."""

    facility_name: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def label(self, fallback: str = "") -> str:
        """City and state, skipping blank parts; the fallback when both are blank."""
        return ", ".join(part for part in (self.city, self.state) if part) or fallback

    def __str__(self) -> str:
        """String representation."""
        return self.label()


class Accessorial(BaseModel):
    """Ancillary charge attached to a load."""

    type: AccessorialType
    amount: Decimal
    description: Optional[str] = None
    bill_to: BillTo


class StatusHistoryEntry(BaseModel):
    status: LoadStatus
    timestamp: datetime
    note: str


class TrackingInfo(BaseModel):
    """Cached tracking state (provider id, last fix)."""

    tracking_id: Optional[str] = None
    tracking_active: bool = False
    last_location: Optional[str] = None
    last_update: Optional[datetime] = None


class DriverInfo(BaseModel):
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    truck_number: Optional[str] = None
    trailer_number: Optional[str] = None


class DocumentFlags(BaseModel):
    rate_con_sent: bool = False
    rate_con_sent_date: Optional[datetime] = None
    has_bol: bool = False
    has_pod: bool = False


class Load(BaseModel):
    """
    Represents a brokered freight load.

    This is the core data model for load operations.
    """

    # Identification
    id: str = Field(..., description="Store identifier")
    load_number: Optional[str] = Field(None, description="Period-scoped number, e.g. SPTMS-202501-0007")
    status: LoadStatus = Field(LoadStatus.BOOKED, description="Current load status")
    created_at: datetime = Field(default_factory=datetime.now)

    # Parties
    customer: Optional[CustomerRef] = None
    carrier: Optional[CarrierRef] = None

    # Financial
    customer_rate: Optional[Decimal] = Field(None, description="Linehaul billed to customer (USD)")
    carrier_rate: Optional[Decimal] = Field(None, description="Linehaul paid to carrier (USD)")
    accessorials: list[Accessorial] = Field(default_factory=list)

    # Route
    pickup_address: Optional[Address] = None
    delivery_address: Optional[Address] = None
    pickup_date: Optional[datetime] = None
    pickup_date_end: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    delivery_date_end: Optional[datetime] = None
    miles: Optional[int] = Field(None, ge=0)

    # Freight
    equipment_type: EquipmentType = EquipmentType.DRY_VAN
    commodity: Optional[str] = None
    weight: Optional[int] = Field(None, gt=0, description="Weight in pounds")
    length: Optional[int] = Field(None, description="Length in feet")
    is_hazmat: bool = False
    is_team_required: bool = False
    special_instructions: Optional[str] = None

    # Execution
    driver_info: DriverInfo = Field(default_factory=DriverInfo)
    tracking: TrackingInfo = Field(default_factory=TrackingInfo)
    documents: DocumentFlags = Field(default_factory=DocumentFlags)
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)

    @computed_field
    @property
    def margin(self) -> Decimal:
        """Customer rate minus carrier rate; 0 unless both are set."""
        if not self.customer_rate or not self.carrier_rate:
            return ZERO
        return self.customer_rate - self.carrier_rate

    @property
    def customer_id(self) -> Optional[str]:
        return ref_id(self.customer)

    @property
    def carrier_id(self) -> Optional[str]:
        return ref_id(self.carrier)

    @property
    def display_number(self) -> str:
        return self.load_number or self.id

    def route_description(self) -> str:
        """'{city}, {state} to {city}, {state}' with Origin/Destination fallbacks."""
        pickup = (self.pickup_address or Address()).label("Origin")
        delivery = (self.delivery_address or Address()).label("Destination")
        return f"{pickup} to {delivery}"

    def record_status(
        self, status: LoadStatus, note: str, at: Optional[datetime] = None
    ) -> StatusHistoryEntry:
        """Set status and append a history entry (history is append-only)."""
        entry = StatusHistoryEntry(status=status, timestamp=at or datetime.now(), note=note)
        self.status = status
        self.status_history.append(entry)
        return entry
