"""Tests for configuration loading and logging setup."""

import pytest
import structlog

from tms_core.core.config import ConfigManager
from tms_core.core.logging import configure_logging


def test_business_config_sections(config_manager):
    numbering = config_manager.get_numbering()
    assert numbering["load"] == "SPTMS"
    assert numbering["invoice"] == "INV"
    assert numbering["pay_sheet"] == "PAY"
    assert config_manager.get_billing_config()["quick_pay_fee_percent"] == 3
    assert config_manager.get_tracking_config()["history_limit"] == 50


def test_payment_term_days(config_manager):
    days = config_manager.get_payment_term_days()
    assert days["net-30"] == 30
    assert days["due-on-receipt"] == 0


def test_http_settings(config_manager):
    http = config_manager.get_http_settings()
    assert http.timeout_seconds == 30
    assert http.max_retries == 1


def test_missing_config_file(tmp_path, env_settings):
    manager = ConfigManager(config_dir=tmp_path, env=env_settings)
    with pytest.raises(FileNotFoundError):
        manager.get_numbering()


def test_env_aliases(env_settings):
    assert env_settings.quickbooks_realm_id == "realm-9"
    assert env_settings.epay_api_url == "https://api.epay.com/v1"


def test_configure_logging():
    configure_logging(level="warning", fmt="console")
    assert structlog.is_configured()
    structlog.reset_defaults()
