"""Tests for the DAT load board / RateView adapter."""

import json
from datetime import timedelta
from decimal import Decimal
from urllib.parse import parse_qs

import pytest

from tms_core.data.models import Address, EquipmentType, Load
from tms_core.integrations import CredentialCache, Credentials, DATAdapter
from tms_core.integrations.base import utcnow
from tms_core.integrations.dat import Place, TruckSearch, equipment_code

TOKEN = "/oauth/token"
POSTINGS = "/loadboard/postings"
RATES = "/rateview/rates"

DALLAS = Place(city="Dallas", state="TX")
ATLANTA = Place(city="Atlanta", state="GA")


def form(request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def dat(config_manager, fake_provider):
    fake_provider.add("POST", TOKEN, {"access_token": "tok-1", "refresh_token": "ref-1", "expires_in": 3600})
    return DATAdapter(config_manager, client=fake_provider.client())


class TestAuthentication:
    def test_password_grant_then_reuse(self, dat, fake_provider):
        fake_provider.add("GET", RATES, {"spotAverage": 2100})
        assert dat.get_rates(DALLAS, ATLANTA, "dry-van").success
        assert dat.get_rates(DALLAS, ATLANTA, "dry-van").success

        [token_call] = fake_provider.calls("POST", TOKEN)
        assert form(token_call)["grant_type"] == "password"
        assert form(token_call)["username"] == "broker"
        assert token_call.headers["Authorization"].startswith("Basic ")
        assert all(r.headers["Authorization"] == "Bearer tok-1" for r in fake_provider.calls("GET", RATES))

    def test_expired_token_refreshed(self, config_manager, fake_provider):
        fake_provider.add("POST", TOKEN, {"access_token": "tok-2", "expires_in": 600})
        fake_provider.add("GET", RATES, {"spotAverage": 2100})
        stale = Credentials(access_token="tok-0", refresh_token="ref-0", expires_at=utcnow() - timedelta(minutes=1))
        dat = DATAdapter(config_manager, client=fake_provider.client(), credentials=CredentialCache(stale))

        assert dat.get_rates(DALLAS, ATLANTA, "reefer").success
        [token_call] = fake_provider.calls("POST", TOKEN)
        assert form(token_call) == {"grant_type": "refresh_token", "refresh_token": "ref-0"}
        # Refresh token carried over when the response has none
        assert dat.credentials.current.refresh_token == "ref-0"

    def test_failed_refresh_falls_back_to_password_grant(self, config_manager, fake_provider):
        fake_provider.add("POST", TOKEN, status_code=400, text="invalid_grant")
        fake_provider.add("POST", TOKEN, {"access_token": "tok-3"})
        fake_provider.add("GET", RATES, {"spotAverage": 2100})
        stale = Credentials(access_token="", refresh_token="ref-0")
        dat = DATAdapter(config_manager, client=fake_provider.client(), credentials=CredentialCache(stale))

        assert dat.get_rates(DALLAS, ATLANTA, "flatbed").success
        grants = [form(r)["grant_type"] for r in fake_provider.calls("POST", TOKEN)]
        assert grants == ["refresh_token", "password"]

    def test_token_expiry_buffer(self, dat, fake_provider):
        fake_provider.add("GET", RATES, {})
        dat.get_rates(DALLAS, ATLANTA, "dry-van")
        remaining = dat.credentials.current.expires_at - utcnow()
        assert timedelta(minutes=58) < remaining <= timedelta(minutes=59)

    def test_rejected_token_invalidated(self, dat, fake_provider):
        fake_provider.add("GET", RATES, status_code=401, text="token expired")
        result = dat.get_rates(DALLAS, ATLANTA, "dry-van")
        assert not result.success
        assert result.status_code == 401
        assert dat.credentials.current.access_token == ""
        assert dat.credentials.current.refresh_token == "ref-1"

    def test_not_configured(self, config_manager, bare_settings, fake_provider):
        dat = DATAdapter(config_manager, client=fake_provider.client(), settings=bare_settings)
        result = dat.get_rates(DALLAS, ATLANTA, "dry-van")
        assert result.success is False
        assert result.error == "DAT is not configured"
        assert fake_provider.requests == []


class TestPostings:
    def test_post_load_wire(self, dat, fake_provider):
        fake_provider.add("POST", POSTINGS, {"postingId": "P-100", "matchingAssets": 12})
        load = Load(
            id="load-1",
            load_number="SPTMS-202501-0001",
            customer_rate=Decimal("2500"),
            pickup_address=Address(city="Dallas", state="TX", zip_code="75201"),
            delivery_address=Address(city="Atlanta", state="GA"),
            equipment_type=EquipmentType.REEFER,
            weight=42000,
            is_hazmat=True,
        )
        result = dat.post_load(dat.build_load_post(load))
        assert result.success
        assert result.data.posting_id == "P-100"
        assert result.data.matching_asset_count == 12

        body = json.loads(fake_provider.calls("POST", POSTINGS)[0].content)
        assert body["referenceNumber"] == "SPTMS-202501-0001"
        assert body["equipmentType"] == "R"
        assert body["rate"] == {"amount": 2500.0, "type": "FLAT"}
        assert body["origin"] == {"city": "Dallas", "stateProvince": "TX", "postalCode": "75201", "deadheadRadius": 50}
        assert body["requirements"] == {"teamRequired": False, "hazmat": True}
        assert body["loadType"] == "FULL"

    def test_unrated_posting_has_no_rate(self, dat, fake_provider):
        fake_provider.add("POST", POSTINGS, {"id": "P-101"})
        post = dat.build_load_post(Load(id="load-2"))
        assert dat.post_load(post).data.posting_id == "P-101"
        assert json.loads(fake_provider.calls("POST", POSTINGS)[0].content)["rate"] is None

    def test_my_postings(self, dat, fake_provider):
        fake_provider.add(
            "GET",
            f"{POSTINGS}/mine",
            {"postings": [{"postingId": "P-1", "referenceNumber": "SPTMS-1", "rate": {"amount": 1800, "type": "PER_MILE"},
                           "origin": {"city": "Waco", "stateProvince": "TX"}}]},
        )
        [post] = dat.get_my_postings().data
        assert post.posting_id == "P-1"
        assert post.rate == Decimal("1800")
        assert post.rate_type == "per-mile"
        assert post.origin.city == "Waco"

    def test_remove_posting(self, dat, fake_provider):
        fake_provider.add("DELETE", f"{POSTINGS}/P-1", status_code=204)
        assert dat.remove_load_post("P-1").success


class TestRates:
    def test_alias_fields_and_zero_values(self, dat, fake_provider):
        fake_provider.add(
            "GET",
            RATES,
            {
                "spotAverage": 2100,
                "spotLow": 0,
                "spot": {"high": 2600},
                "mileage": 781,
                "contract": {"average": 1950, "perMile": 2.5},
                "trend": {"direction": "up", "percentChange": 3.2},
            },
        )
        rates = dat.get_rates(DALLAS, ATLANTA, "dry-van", date="2025-01-15").data
        assert rates.spot.average == 2100
        assert rates.spot.low == 0
        assert rates.spot.high == 2600
        assert rates.spot.total_miles == 781
        assert rates.contract.per_mile == 2.5
        assert rates.trend.period == "7d"

        params = fake_provider.calls("GET", RATES)[0].url.params
        assert params["equipmentType"] == "V"
        assert params["date"] == "2025-01-15"

    def test_list_body_is_a_failed_result(self, dat, fake_provider):
        fake_provider.add("GET", RATES, [])
        result = dat.get_rates(DALLAS, ATLANTA, "dry-van")
        assert not result.success
        assert "non-object JSON body" in result.error
        assert not dat.get_suggested_rate(DALLAS, ATLANTA, "dry-van").success

    def test_scalar_contract_and_trend_are_ignored(self, dat, fake_provider):
        fake_provider.add("GET", RATES, {"spot": {"average": 2000}, "contract": "n/a", "trend": "flat"})
        result = dat.get_rates(DALLAS, ATLANTA, "dry-van")
        assert result.success
        assert result.data.spot.average == 2000
        assert result.data.contract is None
        assert result.data.trend is None

    def test_suggested_rate(self, dat, fake_provider):
        fake_provider.add("GET", RATES, {"spot": {"average": 2000}, "mileage": 780})
        suggestion = dat.get_suggested_rate(DALLAS, ATLANTA, "dry-van").data
        assert suggestion.suggested_carrier_rate == Decimal("2000")
        assert suggestion.suggested_customer_rate == Decimal("2353")
        assert suggestion.margin == 0.15
        assert suggestion.mileage == 780

    def test_suggested_rate_without_market_data(self, dat, fake_provider):
        fake_provider.add("GET", RATES, {"spot": {}})
        result = dat.get_suggested_rate(DALLAS, ATLANTA, "dry-van")
        assert not result.success
        assert "no spot average" in result.error

    def test_margin_must_be_below_one(self, dat, fake_provider):
        assert not dat.get_suggested_rate(DALLAS, ATLANTA, "dry-van", target_margin=1.0).success
        assert fake_provider.calls("GET", RATES) == []

    def test_lane_history(self, dat, fake_provider):
        fake_provider.add("GET", "/rateview/history", {"data": [{"date": "2025-01-01", "spot": 2.31, "loadCount": 40}]})
        history = dat.get_lane_history(DALLAS, ATLANTA, "dry-van").data
        assert history.history[0].spot_rate == 2.31
        assert history.history[0].volume == 40
        assert fake_provider.calls("GET", "/rateview/history")[0].url.params["days"] == "90"


def test_truck_search_defaults(dat, fake_provider):
    fake_provider.add(
        "GET",
        "/loadboard/trucks/search",
        {"trucks": [{"id": "T-1", "companyName": "Hill Country Freight", "location": {"city": "Austin", "state": "TX"}}]},
    )
    result = dat.search_trucks(TruckSearch(origin=DALLAS, equipment_types=["dry-van", "reefer"]))
    assert result.data.total_count == 1
    assert result.data.trucks[0].carrier.name == "Hill Country Freight"
    assert result.data.trucks[0].location.city == "Austin"

    params = fake_provider.calls("GET", "/loadboard/trucks/search")[0].url.params
    assert params["originRadius"] == "100"
    assert params["maxDeadheadOrigin"] == "150"
    assert params["limit"] == "50"
    assert params["equipmentTypes"] == "V,R"
    assert "destCity" not in params


def test_equipment_code_passthrough():
    assert equipment_code(EquipmentType.STEP_DECK) == "SD"
    assert equipment_code("conestoga") == "conestoga"


def test_truck_search_malformed_entries(dat, fake_provider):
    fake_provider.add("GET", "/loadboard/trucks/search", {"trucks": ["T-1"]})
    result = dat.search_trucks(TruckSearch(origin=DALLAS))
    assert not result.success
    assert "unexpected response" in result.error


def test_truck_without_structured_destination(dat, fake_provider):
    fake_provider.add("GET", "/loadboard/trucks/search", {"trucks": [{"id": "T-2", "destination": "ANYWHERE"}]})
    [truck] = dat.search_trucks(TruckSearch(origin=DALLAS)).data.trucks
    assert truck.destination is None
