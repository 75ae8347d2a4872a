"""
Configuration management for the brokerage core.

Handles loading and accessing:
- Business configuration (config.yaml)
- Provider credentials and logging settings (environment / .env)
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class HttpSettings(BaseModel):
    """Transport settings shared by every provider adapter."""

    timeout_seconds: float = 30.0
    max_retries: int = Field(1, ge=0, le=1)


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    # DAT load board / RateView
    dat_api_url: str = Field("https://api.dat.com", alias="DAT_API_URL")
    dat_client_id: Optional[str] = Field(None, alias="DAT_CLIENT_ID")
    dat_client_secret: Optional[str] = Field(None, alias="DAT_CLIENT_SECRET")
    dat_username: Optional[str] = Field(None, alias="DAT_USERNAME")
    dat_password: Optional[str] = Field(None, alias="DAT_PASSWORD")

    # MacroPoint tracking
    macropoint_base_url: str = Field(
        "https://macropoint-lite.com/api/1.0", alias="MACROPOINT_BASE_URL"
    )
    macropoint_api_id: Optional[str] = Field(None, alias="MACROPOINT_API_ID")
    macropoint_api_password: Optional[str] = Field(None, alias="MACROPOINT_API_PASSWORD")
    macropoint_webhook_url: Optional[str] = Field(None, alias="MACROPOINT_WEBHOOK_URL")

    # ePay carrier payments
    epay_api_url: str = Field("https://api.epay.com/v1", alias="EPAY_API_URL")
    epay_member_id: Optional[str] = Field(None, alias="EPAY_MEMBER_ID")
    epay_api_key: Optional[str] = Field(None, alias="EPAY_API_KEY")
    epay_api_secret: Optional[str] = Field(None, alias="EPAY_API_SECRET")

    # QuickBooks Online
    quickbooks_client_id: Optional[str] = Field(None, alias="QUICKBOOKS_CLIENT_ID")
    quickbooks_client_secret: Optional[str] = Field(None, alias="QUICKBOOKS_CLIENT_SECRET")
    quickbooks_redirect_uri: Optional[str] = Field(None, alias="QUICKBOOKS_REDIRECT_URI")
    quickbooks_environment: str = Field("sandbox", alias="QUICKBOOKS_ENVIRONMENT")
    quickbooks_realm_id: Optional[str] = Field(None, alias="QUICKBOOKS_REALM_ID")
    quickbooks_access_token: Optional[str] = Field(None, alias="QUICKBOOKS_ACCESS_TOKEN")
    quickbooks_refresh_token: Optional[str] = Field(None, alias="QUICKBOOKS_REFRESH_TOKEN")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("json", alias="LOG_FORMAT")

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


class ConfigManager:
    """
    Central configuration manager for the brokerage core.

    Loads and provides access to:
    - Business configuration from config/config.yaml
    - Environment variables from .env
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        env: Optional[EnvironmentSettings] = None,
    ) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to project root/config.
            env: Optional pre-built environment settings (mainly for tests).
        """
        if config_dir is None:
            # Default to config/ directory in project root
            project_root = Path(__file__).parent.parent.parent
            config_dir = project_root / "config"

        self.config_dir = config_dir
        self._business_config: Optional[dict[str, Any]] = None
        self._env_settings: Optional[EnvironmentSettings] = env

    @property
    def business_config(self) -> dict[str, Any]:
        """Load and return business configuration from config.yaml."""
        if self._business_config is None:
            config_path = self.config_dir / "config.yaml"
            with open(config_path, "r") as f:
                self._business_config = yaml.safe_load(f) or {}
        return self._business_config

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    def get_company_info(self) -> dict[str, Any]:
        """Get company information from business config."""
        return self.business_config.get("company", {})

    def get_numbering(self) -> dict[str, Any]:
        """Get document number prefixes (load, invoice, pay sheet)."""
        defaults = {"load": "SPTMS", "invoice": "INV", "pay_sheet": "PAY"}
        return {**defaults, **self.business_config.get("numbering", {})}

    def get_billing_config(self) -> dict[str, Any]:
        """Get invoice terms and carrier pay settings."""
        return self.business_config.get("billing", {})

    def get_payment_term_days(self) -> dict[str, int]:
        """Get the payment-terms to due-day offset table."""
        defaults = {
            "due-on-receipt": 0,
            "net-15": 15,
            "net-30": 30,
            "net-45": 45,
            "net-60": 60,
        }
        return {**defaults, **self.get_billing_config().get("payment_terms", {})}

    def get_http_settings(self) -> HttpSettings:
        """Get transport settings for provider adapters."""
        return HttpSettings(**self.business_config.get("integrations", {}).get("http", {}))

    def get_reporting_config(self) -> dict[str, Any]:
        """Get profitability reporting settings."""
        return self.business_config.get("reporting", {})

    def get_tracking_config(self) -> dict[str, Any]:
        """Get tracking settings."""
        return self.business_config.get("tracking", {})


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        ConfigManager singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
