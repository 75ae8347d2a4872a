"""
DAT load board and RateView adapter.

Operations:
- Post, update and remove load board postings
- Search available trucks
- Spot/contract market rates and lane rate history
- Suggested carrier/customer rates from the market average

Authentication is an OAuth2 password grant (client id/secret as Basic auth)
with refresh-token renewal.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from tms_core.core.money import to_decimal
from tms_core.core.results import IntegrationResult
from tms_core.data.models import EquipmentType, Load
from tms_core.integrations.base import Credentials, OAuthAdapter, first_present

EQUIPMENT_CODES: dict[str, str] = {
    EquipmentType.DRY_VAN.value: "V",
    EquipmentType.REEFER.value: "R",
    EquipmentType.FLATBED.value: "F",
    EquipmentType.STEP_DECK.value: "SD",
    EquipmentType.LOWBOY.value: "LB",
    EquipmentType.POWER_ONLY.value: "PO",
    EquipmentType.BOX_TRUCK.value: "SB",
    EquipmentType.HOTSHOT.value: "HS",
    EquipmentType.TANKER.value: "T",
    EquipmentType.INTERMODAL.value: "IM",
    EquipmentType.OTHER.value: "O",
}

SCOPE = "openid loadboard rateview"


def equipment_code(equipment_type: Any) -> str:
    """DAT code for an equipment type; unknown values pass through."""
    value = equipment_type.value if isinstance(equipment_type, EquipmentType) else str(equipment_type)
    return EQUIPMENT_CODES.get(value, value)


class Place(BaseModel):
    city: str = ""
    state: str = ""
    zip_code: Optional[str] = None
    radius: Optional[int] = None


class ContactInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class LoadPost(BaseModel):
    """A load as offered on the board."""

    posting_id: Optional[str] = None
    reference_number: str
    origin: Place
    destination: Place
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    equipment_type: str = EquipmentType.DRY_VAN.value
    length: Optional[int] = None
    weight: Optional[int] = None
    rate: Optional[Decimal] = None
    rate_type: str = "flat"  # "flat" or "per-mile"
    commodity: Optional[str] = None
    comments: Optional[str] = None
    contact: ContactInfo = Field(default_factory=ContactInfo)
    is_team_required: bool = False
    is_hazmat: bool = False
    pieces: Optional[int] = None
    full_partial: str = "full"


class PostingResult(BaseModel):
    posting_id: Optional[str] = None
    matching_asset_count: Optional[int] = None


class TruckCarrier(BaseModel):
    name: Optional[str] = None
    mc_number: Optional[str] = None
    dot_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    rating: Optional[float] = None
    authority_age_months: Optional[int] = None


class Truck(BaseModel):
    posting_id: Optional[str] = None
    carrier: TruckCarrier
    equipment_type: Optional[str] = None
    length: Optional[int] = None
    location: Place
    destination: Optional[Place] = None
    preferred_lanes: list[str] = Field(default_factory=list)
    available_date: Optional[str] = None
    comments: Optional[str] = None


class TruckSearch(BaseModel):
    origin: Place
    destination: Optional[Place] = None
    equipment_types: list[str] = Field(default_factory=list)
    available_date: Optional[str] = None
    deadhead_origin: Optional[int] = None
    deadhead_destination: Optional[int] = None
    limit: Optional[int] = None


class TruckSearchResult(BaseModel):
    trucks: list[Truck]
    total_count: int


class SpotRate(BaseModel):
    low: Optional[float] = None
    average: Optional[float] = None
    high: Optional[float] = None
    per_mile: Optional[float] = None
    total_miles: Optional[float] = None
    sample_size: Optional[int] = None


class ContractRate(BaseModel):
    low: Optional[float] = None
    average: Optional[float] = None
    high: Optional[float] = None
    per_mile: Optional[float] = None


class RateTrend(BaseModel):
    direction: Optional[str] = None  # up / down / stable
    percent_change: Optional[float] = None
    period: str = "7d"


class MarketRates(BaseModel):
    spot: SpotRate
    contract: Optional[ContractRate] = None
    fuel_surcharge: Optional[float] = None
    trend: Optional[RateTrend] = None


class LaneHistoryEntry(BaseModel):
    date: Optional[str] = None
    spot_rate: Optional[float] = None
    contract_rate: Optional[float] = None
    volume: Optional[int] = None
    fuel_price: Optional[float] = None


class LaneHistory(BaseModel):
    origin: Place
    destination: Place
    equipment_type: str
    history: list[LaneHistoryEntry]


class SuggestedRate(BaseModel):
    suggested_customer_rate: Decimal
    suggested_carrier_rate: Decimal
    market_rate: float
    margin: float
    mileage: Optional[float] = None


def _whole_dollars(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


class DATAdapter(OAuthAdapter):
    """
    DAT Connexion / RateView client.

    Example:
        dat = DATAdapter()
        result = dat.get_rates(Place(city="Dallas", state="TX"), Place(city="Atlanta", state="GA"), "dry-van")
        if result.success:
            print(result.data.spot.average)
    """

    provider = "dat"
    display_name = "DAT"

    @property
    def base_url(self) -> str:
        return self.settings.dat_api_url.rstrip("/")

    @property
    def options(self) -> dict[str, Any]:
        return self.config_manager.business_config.get("integrations", {}).get("dat", {})

    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.dat_client_id and s.dat_client_secret and s.dat_username and s.dat_password)

    # Authentication

    def _client_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.settings.dat_client_id or "", self.settings.dat_client_secret or "")

    def authenticate(self) -> Credentials:
        data = self.token_request(
            f"{self.base_url}/oauth/token",
            {
                "grant_type": "password",
                "username": self.settings.dat_username or "",
                "password": self.settings.dat_password or "",
                "scope": SCOPE,
            },
            auth=self._client_auth(),
        )
        return self.credentials_from(data)

    def refresh(self, credentials: Credentials) -> Credentials:
        data = self.token_request(
            f"{self.base_url}/oauth/token",
            {"grant_type": "refresh_token", "refresh_token": credentials.refresh_token or ""},
            auth=self._client_auth(),
        )
        return self.credentials_from(data, previous_refresh=credentials.refresh_token)

    # Postings

    def build_load_post(self, load: Load, contact: Optional[ContactInfo] = None) -> LoadPost:
        """Translate a load into a board posting."""
        pickup = load.pickup_address
        delivery = load.delivery_address
        return LoadPost(
            reference_number=load.display_number,
            origin=Place(
                city=(pickup.city if pickup else None) or "",
                state=(pickup.state if pickup else None) or "",
                zip_code=pickup.zip_code if pickup else None,
            ),
            destination=Place(
                city=(delivery.city if delivery else None) or "",
                state=(delivery.state if delivery else None) or "",
                zip_code=delivery.zip_code if delivery else None,
            ),
            pickup_date=load.pickup_date,
            delivery_date=load.delivery_date,
            equipment_type=load.equipment_type.value,
            length=load.length,
            weight=load.weight,
            rate=load.customer_rate,
            commodity=load.commodity,
            comments=load.special_instructions,
            contact=contact or ContactInfo(),
            is_team_required=load.is_team_required,
            is_hazmat=load.is_hazmat,
        )

    def _place_wire(self, place: Place) -> dict[str, Any]:
        return {
            "city": place.city,
            "stateProvince": place.state,
            "postalCode": place.zip_code,
            "deadheadRadius": place.radius or self.options.get("default_radius_miles", 50),
        }

    def posting_wire(self, post: LoadPost) -> dict[str, Any]:
        """DAT wire schema for a posting."""
        return {
            "referenceNumber": post.reference_number,
            "origin": self._place_wire(post.origin),
            "destination": self._place_wire(post.destination),
            "earliestAvailability": post.pickup_date.isoformat() if post.pickup_date else None,
            "latestAvailability": post.delivery_date.isoformat() if post.delivery_date else None,
            "equipmentType": equipment_code(post.equipment_type),
            "lengthFeet": post.length,
            "weightPounds": post.weight,
            "rate": (
                {
                    "amount": float(post.rate),
                    "type": "PER_MILE" if post.rate_type == "per-mile" else "FLAT",
                }
                if post.rate
                else None
            ),
            "commodity": post.commodity,
            "comments": post.comments,
            "contact": post.contact.model_dump(),
            "requirements": {"teamRequired": post.is_team_required, "hazmat": post.is_hazmat},
            "pieces": post.pieces,
            "loadType": "PARTIAL" if post.full_partial == "partial" else "FULL",
        }

    def post_load(self, post: LoadPost) -> IntegrationResult:
        """Post a load to the board. data: PostingResult."""

        def run() -> PostingResult:
            result = self.request("/loadboard/postings", "POST", self.posting_wire(post))
            return PostingResult(
                posting_id=first_present(result, "postingId", "id"),
                matching_asset_count=first_present(result, "matchingAssets"),
            )

        return self._call("post_load", run)

    def update_load_post(self, posting_id: str, changes: dict[str, Any]) -> IntegrationResult:
        def run() -> PostingResult:
            self.request(f"/loadboard/postings/{posting_id}", "PUT", changes)
            return PostingResult(posting_id=posting_id)

        return self._call("update_load_post", run)

    def remove_load_post(self, posting_id: str) -> IntegrationResult:
        def run() -> PostingResult:
            self.request(f"/loadboard/postings/{posting_id}", "DELETE")
            return PostingResult(posting_id=posting_id)

        return self._call("remove_load_post", run)

    def get_my_postings(self) -> IntegrationResult:
        """Active postings for this account. data: list[LoadPost]."""

        def run() -> list[LoadPost]:
            result = self.request("/loadboard/postings/mine")
            postings = first_present(result, "postings", "data", default=[])
            return [self._parse_posting(p) for p in postings]

        return self._call("get_my_postings", run)

    @staticmethod
    def _parse_posting(posting: dict[str, Any]) -> LoadPost:
        rate = first_present(posting, "rate.amount")
        return LoadPost(
            posting_id=first_present(posting, "postingId", "id"),
            reference_number=first_present(posting, "referenceNumber", default=""),
            origin=Place(
                city=first_present(posting, "origin.city", default=""),
                state=first_present(posting, "origin.stateProvince", default=""),
                zip_code=first_present(posting, "origin.postalCode"),
            ),
            destination=Place(
                city=first_present(posting, "destination.city", default=""),
                state=first_present(posting, "destination.stateProvince", default=""),
                zip_code=first_present(posting, "destination.postalCode"),
            ),
            pickup_date=first_present(posting, "earliestAvailability"),
            delivery_date=first_present(posting, "latestAvailability"),
            equipment_type=first_present(posting, "equipmentType", default=""),
            rate=to_decimal(rate) if rate is not None else None,
            rate_type="per-mile" if first_present(posting, "rate.type") == "PER_MILE" else "flat",
        )

    # Trucks

    def search_trucks(self, search: TruckSearch) -> IntegrationResult:
        """Find trucks near an origin. data: TruckSearchResult."""
        options = self.options
        radius = options.get("search_radius_miles", 100)
        deadhead = options.get("max_deadhead_miles", 150)
        destination = search.destination

        params = {
            "originCity": search.origin.city,
            "originState": search.origin.state,
            "originRadius": search.origin.radius or radius,
            "destCity": destination.city if destination else None,
            "destState": destination.state if destination else None,
            "destRadius": (destination.radius if destination else None) or radius,
            "equipmentTypes": ",".join(equipment_code(t) for t in search.equipment_types) or None,
            "availableDate": search.available_date,
            "maxDeadheadOrigin": search.deadhead_origin or deadhead,
            "maxDeadheadDestination": search.deadhead_destination or deadhead,
            "limit": search.limit or options.get("search_limit", 50),
        }

        def run() -> TruckSearchResult:
            result = self.request("/loadboard/trucks/search", params=params)
            trucks = [self._parse_truck(t) for t in first_present(result, "trucks", "results", default=[])]
            return TruckSearchResult(
                trucks=trucks,
                total_count=first_present(result, "totalCount", default=len(trucks)),
            )

        return self._call("search_trucks", run)

    @staticmethod
    def _parse_truck(truck: dict[str, Any]) -> Truck:
        destination = truck.get("destination")
        return Truck(
            posting_id=first_present(truck, "postingId", "id"),
            carrier=TruckCarrier(
                name=first_present(truck, "carrier.name", "companyName"),
                mc_number=first_present(truck, "carrier.mcNumber"),
                dot_number=first_present(truck, "carrier.dotNumber"),
                phone=first_present(truck, "carrier.phone", "contact.phone"),
                email=first_present(truck, "carrier.email", "contact.email"),
                rating=first_present(truck, "carrier.rating"),
                authority_age_months=first_present(truck, "carrier.authorityMonths"),
            ),
            equipment_type=first_present(truck, "equipmentType"),
            length=first_present(truck, "lengthFeet"),
            location=Place(
                city=first_present(truck, "origin.city", "location.city", default=""),
                state=first_present(truck, "origin.stateProvince", "location.state", default=""),
                zip_code=first_present(truck, "origin.postalCode"),
            ),
            destination=(
                Place(
                    city=first_present(destination, "city", default=""),
                    state=first_present(destination, "stateProvince", default=""),
                )
                if isinstance(destination, dict)
                else None
            ),
            preferred_lanes=first_present(truck, "destination.preferredLanes", default=[]),
            available_date=first_present(truck, "availableDate", "earliestAvailability"),
            comments=first_present(truck, "comments"),
        )

    # Rates

    @staticmethod
    def _lane_params(origin: Place, destination: Place, equipment_type: str) -> dict[str, Any]:
        return {
            "originCity": origin.city,
            "originState": origin.state,
            "destCity": destination.city,
            "destState": destination.state,
            "equipmentType": equipment_code(equipment_type),
        }

    def get_rates(
        self,
        origin: Place,
        destination: Place,
        equipment_type: str,
        date: Optional[str] = None,
    ) -> IntegrationResult:
        """Spot and contract market rates for a lane. data: MarketRates."""
        params = {**self._lane_params(origin, destination, equipment_type), "date": date}

        def run() -> MarketRates:
            return self._parse_rates(self.request("/rateview/rates", params=params))

        return self._call("get_rates", run)

    @staticmethod
    def _parse_rates(result: dict[str, Any]) -> MarketRates:
        contract = result.get("contract")
        trend = result.get("trend")
        return MarketRates(
            spot=SpotRate(
                low=first_present(result, "spot.low", "spotLow"),
                average=first_present(result, "spot.average", "spotAverage"),
                high=first_present(result, "spot.high", "spotHigh"),
                per_mile=first_present(result, "spot.perMile", "spotPerMile"),
                total_miles=first_present(result, "mileage", "totalMiles"),
                sample_size=first_present(result, "spot.sampleSize"),
            ),
            contract=(
                ContractRate(
                    low=contract.get("low"),
                    average=contract.get("average"),
                    high=contract.get("high"),
                    per_mile=contract.get("perMile"),
                )
                if isinstance(contract, dict)
                else None
            ),
            fuel_surcharge=first_present(result, "fuelSurcharge"),
            trend=(
                RateTrend(
                    direction=trend.get("direction"),
                    percent_change=trend.get("percentChange"),
                    period=trend.get("period") or "7d",
                )
                if isinstance(trend, dict)
                else None
            ),
        )

    def get_lane_history(
        self,
        origin: Place,
        destination: Place,
        equipment_type: str,
        days: Optional[int] = None,
    ) -> IntegrationResult:
        """Historical spot/contract series for a lane. data: LaneHistory."""
        days = days or self.options.get("history_days", 90)
        params = {**self._lane_params(origin, destination, equipment_type), "days": str(days)}

        def run() -> LaneHistory:
            result = self.request("/rateview/history", params=params)
            return LaneHistory(
                origin=origin,
                destination=destination,
                equipment_type=equipment_type,
                history=[
                    LaneHistoryEntry(
                        date=first_present(h, "date"),
                        spot_rate=first_present(h, "spotRate", "spot"),
                        contract_rate=first_present(h, "contractRate", "contract"),
                        volume=first_present(h, "volume", "loadCount"),
                        fuel_price=first_present(h, "fuelPrice"),
                    )
                    for h in first_present(result, "history", "data", default=[])
                ],
            )

        return self._call("get_lane_history", run)

    def get_suggested_rate(
        self,
        origin: Place,
        destination: Place,
        equipment_type: str,
        target_margin: Optional[float] = None,
    ) -> IntegrationResult:
        """
        Suggest carrier and customer rates from the market spot average.

        The carrier rate is the spot average in whole dollars; the customer
        rate adds the target margin (a fraction, default 0.15) on top.

        Returns:
            IntegrationResult with SuggestedRate data
        """
        margin = target_margin if target_margin is not None else self.options.get("suggested_margin", 0.15)
        if margin >= 1:
            return IntegrationResult.fail("Target margin must be below 1")

        rates = self.get_rates(origin, destination, equipment_type)
        if not rates.success:
            return rates
        spot_average = rates.data.spot.average
        if spot_average is None:
            return IntegrationResult.fail("DAT returned no spot average for this lane")

        carrier_rate = _whole_dollars(to_decimal(spot_average))
        customer_rate = _whole_dollars(carrier_rate / (1 - to_decimal(margin)))
        return IntegrationResult.ok(
            SuggestedRate(
                suggested_customer_rate=customer_rate,
                suggested_carrier_rate=carrier_rate,
                market_rate=spot_average,
                margin=margin,
                mileage=rates.data.spot.total_miles,
            )
        )
