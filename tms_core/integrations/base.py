"""
Common plumbing for external provider adapters.

Provides:
- Credentials / CredentialCache: per-adapter token state with a single-flight
  guard so overlapping requests trigger one re-authentication
- ProviderAdapter: is_configured / ensure_authenticated / request over a
  shared httpx.Client with a bounded timeout and one retry on transport errors
- OAuthAdapter: access/refresh token lifecycle (refresh first, fall back to
  a full grant)
- first_present: ordered candidate-key extraction for unstable response shapes

Public provider operations go through ``ProviderAdapter._call`` and return an
``IntegrationResult``; they never raise.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel

from tms_core.core.config import ConfigManager, EnvironmentSettings, get_config
from tms_core.core.errors import IntegrationError
from tms_core.core.results import IntegrationResult

_MISSING = object()


def first_present(data: Any, *paths: str, default: Any = None) -> Any:
    """
    Return the first candidate path whose value is present.

    Paths are dotted (``"spot.average"``). A value counts as present unless
    it is missing or None, so ``0`` and ``""`` are returned as-is.

    Args:
        data: Decoded JSON object
        *paths: Candidate paths in priority order
        default: Returned when no candidate is present

    Returns:
        The first present value, or default
    """
    for path in paths:
        value: Any = data
        for part in path.split("."):
            if not isinstance(value, dict):
                value = _MISSING
                break
            value = value.get(part, _MISSING)
        if value is not _MISSING and value is not None:
            return value
    return default


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Credentials(BaseModel):
    """Ephemeral token state; never persisted."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None  # None: lifetime unknown, valid until rejected

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        return (now or utcnow()) < self.expires_at


class CredentialCache:
    """
    Holds one provider's credentials for the life of the process.

    ``obtain`` serializes renewals: a caller that finds the token stale takes
    the lock, re-checks, and only then renews, so concurrent callers share a
    single authentication round-trip.
    """

    def __init__(self, credentials: Optional[Credentials] = None) -> None:
        self._lock = threading.Lock()
        self._credentials = credentials

    @property
    def current(self) -> Optional[Credentials]:
        return self._credentials

    def obtain(self, renew: Callable[[Optional[Credentials]], Credentials]) -> Credentials:
        credentials = self._credentials
        if credentials is not None and credentials.is_valid():
            return credentials

        with self._lock:
            credentials = self._credentials
            if credentials is not None and credentials.is_valid():
                return credentials
            self._credentials = renew(credentials)
            return self._credentials

    def invalidate(self) -> None:
        """Force renewal on next use, keeping the refresh token."""
        with self._lock:
            if self._credentials is not None:
                self._credentials = self._credentials.model_copy(
                    update={"access_token": "", "expires_at": None}
                )

    def clear(self) -> None:
        with self._lock:
            self._credentials = None


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses define ``provider``, ``display_name``, ``base_url``,
    ``is_configured`` and ``ensure_authenticated`` (returning the auth headers
    for one request).
    """

    provider = "provider"
    display_name = "Provider"

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        client: Optional[httpx.Client] = None,
        settings: Optional[EnvironmentSettings] = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            config_manager: Optional config manager (defaults to global instance)
            client: Optional httpx client (tests pass one with a MockTransport)
            settings: Optional environment settings override
        """
        self.config_manager = config_manager or get_config()
        self.settings = settings or self.config_manager.env
        http = self.config_manager.get_http_settings()
        self.max_retries = http.max_retries
        self.client = client or httpx.Client(timeout=http.timeout_seconds)
        self.logger = structlog.get_logger(provider=self.provider)

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Root URL that endpoints are appended to."""

    @abstractmethod
    def is_configured(self) -> bool:
        """True iff every required credential is present. No network call."""

    @abstractmethod
    def ensure_authenticated(self) -> dict[str, str]:
        """Return auth headers, authenticating first if needed."""

    def on_auth_rejected(self) -> None:
        """Hook for a 401 from the provider."""

    # Transport

    def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send one HTTP request, retrying once on a transport failure.

        Raises:
            IntegrationError: If the provider stays unreachable
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                self.logger.warning(
                    "provider_transport_error",
                    method=method,
                    url=url,
                    attempt=attempt,
                    error=str(e),
                )
                if attempt == attempts:
                    raise IntegrationError(self.provider, "is unreachable", detail=str(e)) from e
        raise IntegrationError(self.provider, "is unreachable")

    @staticmethod
    def decode(provider: str, response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise IntegrationError(
                provider, "returned malformed JSON", response.status_code, response.text[:400]
            ) from e
        if not isinstance(data, dict):
            raise IntegrationError(
                provider, "returned a non-object JSON body", response.status_code, response.text[:400]
            )
        return data

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Any] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated API request.

        Args:
            endpoint: Path appended to base_url
            method: HTTP method
            body: JSON body
            params: Query parameters (None values dropped)

        Returns:
            Decoded JSON object ({} for an empty response)

        Raises:
            IntegrationError: Not configured, auth failure, transport failure
                non-2xx response (with the response text as detail) or a body
                that is not a JSON object
        """
        if not self.is_configured():
            raise IntegrationError(self.provider, "is not configured")

        headers = {
            **self.ensure_authenticated(),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        query = {k: v for k, v in (params or {}).items() if v is not None} or None
        response = self.send(method, f"{self.base_url}{endpoint}", headers=headers, json=body, params=query)

        if response.is_error:
            if response.status_code == 401:
                self.on_auth_rejected()
            raise IntegrationError(
                self.provider,
                f"API error: {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            )
        return self.decode(self.provider, response)

    # Result boundary

    def not_configured(self) -> IntegrationResult:
        return IntegrationResult.fail(f"{self.display_name} is not configured")

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> IntegrationResult:
        """Run an operation and fold any failure into an IntegrationResult."""
        if not self.is_configured():
            return self.not_configured()
        try:
            data = func(*args, **kwargs)
        except IntegrationError as e:
            self.logger.warning(
                "provider_call_failed",
                operation=operation,
                status_code=e.status_code,
                error=e.message,
                detail=e.detail,
            )
            error = f"{e.message} - {e.detail}" if e.detail else e.message
            return IntegrationResult.fail(error, e.status_code)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.exception("provider_response_unexpected", operation=operation)
            return IntegrationResult.fail(f"{self.display_name} returned an unexpected response: {e}")

        self.logger.info("provider_call_succeeded", operation=operation)
        return IntegrationResult.ok(data)

    def close(self) -> None:
        self.client.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(configured={self.is_configured()})"


class OAuthAdapter(ProviderAdapter):
    """
    Adapter whose requests carry an OAuth2 bearer token.

    ``ensure_authenticated`` reuses a valid cached token; otherwise it tries
    the refresh-token grant when a refresh token is held and falls back to a
    full ``authenticate`` if the refresh fails.
    """

    token_expiry_buffer = timedelta(seconds=60)

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        client: Optional[httpx.Client] = None,
        settings: Optional[EnvironmentSettings] = None,
        credentials: Optional[CredentialCache] = None,
    ) -> None:
        super().__init__(config_manager, client, settings)
        self.credentials = credentials or CredentialCache()

    @abstractmethod
    def authenticate(self) -> Credentials:
        """Full grant. Raises IntegrationError on failure."""

    def refresh(self, credentials: Credentials) -> Credentials:
        """Refresh-token grant; providers without one re-authenticate."""
        return self.authenticate()

    def _renew(self, current: Optional[Credentials]) -> Credentials:
        if current is not None and current.refresh_token:
            try:
                return self.refresh(current)
            except IntegrationError as e:
                self.logger.warning("token_refresh_failed", status_code=e.status_code, error=e.message)
        credentials = self.authenticate()
        self.logger.info("provider_authenticated")
        return credentials

    def ensure_authenticated(self) -> dict[str, str]:
        credentials = self.credentials.obtain(self._renew)
        return {"Authorization": f"Bearer {credentials.access_token}"}

    def on_auth_rejected(self) -> None:
        self.credentials.invalidate()

    def token_request(self, url: str, data: dict[str, str], auth: Optional[httpx.Auth] = None) -> dict[str, Any]:
        """POST a form-encoded token grant and return the decoded body."""
        response = self.send(
            "POST",
            url,
            data=data,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        if response.is_error:
            raise IntegrationError(
                self.provider,
                "authentication failed",
                status_code=response.status_code,
                detail=response.text,
            )
        return self.decode(self.provider, response)

    def credentials_from(self, data: dict[str, Any], previous_refresh: Optional[str] = None) -> Credentials:
        """Build credentials from a token response, keeping the old refresh token if none is issued."""
        if not data.get("access_token"):
            raise IntegrationError(self.provider, "authentication failed", detail="no access_token in response")
        expires_in = int(data.get("expires_in") or 3600)
        return Credentials(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh,
            expires_at=utcnow() + timedelta(seconds=expires_in) - self.token_expiry_buffer,
        )
