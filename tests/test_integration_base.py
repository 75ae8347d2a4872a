"""Tests for shared adapter plumbing: extraction, credentials, transport."""

import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from tms_core.integrations import CredentialCache, Credentials, MacroPointAdapter, first_present

STATUS = "/api/1.0/orders/MP-1"


class TestFirstPresent:
    def test_first_candidate_wins(self):
        assert first_present({"a": 1, "b": 2}, "a", "b") == 1

    def test_falls_through_missing_and_null(self):
        assert first_present({"a": None, "b": 2}, "a", "b") == 2
        assert first_present({"b": 2}, "a", "b") == 2

    def test_zero_and_empty_string_are_present(self):
        assert first_present({"a": 0, "b": 5}, "a", "b") == 0
        assert first_present({"a": "", "b": "x"}, "a", "b") == ""

    def test_dotted_paths(self):
        data = {"spot": {"average": 2100}, "spotAverage": 1}
        assert first_present(data, "spot.average", "spotAverage") == 2100
        assert first_present({"spot": 3}, "spot.average", default="none") == "none"

    def test_default(self):
        assert first_present({}, "a", default=[]) == []
        assert first_present(None, "a") is None


class TestCredentialCache:
    def test_reuses_valid_credentials(self):
        cache = CredentialCache()
        calls = []

        def renew(current):
            calls.append(current)
            return Credentials(access_token=f"tok-{len(calls)}")

        assert cache.obtain(renew).access_token == "tok-1"
        assert cache.obtain(renew).access_token == "tok-1"
        assert calls == [None]

    def test_concurrent_callers_share_one_renewal(self):
        cache = CredentialCache()
        calls = []

        def renew(current):
            calls.append(current)
            time.sleep(0.05)
            return Credentials(access_token="tok")

        with ThreadPoolExecutor(max_workers=8) as pool:
            tokens = list(pool.map(lambda _: cache.obtain(renew).access_token, range(8)))
        assert tokens == ["tok"] * 8
        assert len(calls) == 1

    def test_invalidate_keeps_refresh_token(self):
        cache = CredentialCache(Credentials(access_token="tok", refresh_token="ref"))
        cache.invalidate()
        assert cache.current.access_token == ""
        assert cache.current.refresh_token == "ref"
        assert not cache.current.is_valid()

    def test_clear(self):
        cache = CredentialCache(Credentials(access_token="tok"))
        cache.clear()
        assert cache.current is None


class TestTransport:
    @pytest.fixture
    def adapter(self, config_manager, fake_provider):
        return MacroPointAdapter(config_manager, client=fake_provider.client())

    def test_retries_once_on_transport_error(self, adapter, fake_provider):
        fake_provider.fail("GET", STATUS, httpx.ConnectError("connection refused"))
        fake_provider.add("GET", STATUS, {"status": "tracking"})
        result = adapter.get_tracking_status("MP-1")
        assert result.success
        assert len(fake_provider.calls("GET", STATUS)) == 2

    def test_unreachable_after_retry(self, adapter, fake_provider):
        fake_provider.fail("GET", STATUS, httpx.ReadTimeout("timed out"))
        result = adapter.get_tracking_status("MP-1")
        assert not result.success
        assert result.error == "macropoint is unreachable - timed out"
        assert len(fake_provider.calls("GET", STATUS)) == 2

    def test_http_errors_are_not_retried(self, adapter, fake_provider):
        fake_provider.add("GET", STATUS, status_code=500, text="upstream exploded")
        result = adapter.get_tracking_status("MP-1")
        assert result.error == "macropoint API error: 500 - upstream exploded"
        assert result.status_code == 500
        assert len(fake_provider.calls("GET", STATUS)) == 1

    def test_malformed_json(self, adapter, fake_provider):
        fake_provider.add("GET", STATUS, text="<html>gateway</html>")
        result = adapter.get_tracking_status("MP-1")
        assert not result.success
        assert "malformed JSON" in result.error

    @pytest.mark.parametrize("body", [[{"status": "tracking"}], "tracking", 42])
    def test_non_object_json(self, adapter, fake_provider, body):
        fake_provider.add("GET", STATUS, body)
        result = adapter.get_tracking_status("MP-1")
        assert not result.success
        assert result.error.startswith("macropoint returned a non-object JSON body")
        assert result.status_code == 200

    def test_repr(self, adapter):
        assert repr(adapter) == "MacroPointAdapter(configured=True)"
