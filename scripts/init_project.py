#!/usr/bin/env python3
"""
Initialize the brokerage core.

This script sets up the project by:
- Checking for the .env file and provider credentials
- Validating config/config.yaml
- Checking that required packages import
- Reporting which provider integrations are configured
"""

import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

PROVIDER_VARS = {
    "DAT": ["DAT_CLIENT_ID", "DAT_CLIENT_SECRET", "DAT_USERNAME", "DAT_PASSWORD"],
    "MacroPoint": ["MACROPOINT_API_ID", "MACROPOINT_API_PASSWORD"],
    "ePay": ["EPAY_MEMBER_ID", "EPAY_API_KEY", "EPAY_API_SECRET"],
    "QuickBooks": [
        "QUICKBOOKS_CLIENT_ID",
        "QUICKBOOKS_CLIENT_SECRET",
        "QUICKBOOKS_REALM_ID",
        "QUICKBOOKS_ACCESS_TOKEN",
    ],
}

REQUIRED_SECTIONS = ["company", "numbering", "billing", "integrations"]


def check_python_version() -> bool:
    """Verify Python version is 3.10 or higher."""
    if sys.version_info < (3, 10):
        print(f"❌ Python 3.10+ required. Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}")
    return True


def check_env_file() -> bool:
    """Check if .env file exists."""
    env_path = Path(".env")
    if not env_path.exists():
        print("❌ .env file not found")
        print("   Run: cp .env.example .env")
        print("   Then edit .env with your provider credentials")
        return False
    print("✅ .env file exists")
    return True


def _is_placeholder(value: str) -> bool:
    return not value or value.startswith("your_")


def load_and_validate_env() -> bool:
    """Load environment variables and report providers with missing credentials."""
    load_dotenv()

    unconfigured = []
    for provider, variables in PROVIDER_VARS.items():
        missing = [var for var in variables if _is_placeholder(os.getenv(var, ""))]
        if missing:
            unconfigured.append(provider)
            print(f"⚠️  {provider} not configured (missing: {', '.join(missing)})")
        else:
            print(f"✅ {provider} credentials set")

    # Providers are optional; adapters report "not configured" instead of failing
    if len(unconfigured) == len(PROVIDER_VARS):
        print("⚠️  No provider integrations configured")
    return True


def check_config_files() -> bool:
    """Validate config/config.yaml exists and has the required sections."""
    path = Path("config/config.yaml")
    if not path.exists():
        print(f"❌ Main configuration not found: {path}")
        return False
    print("✅ Main configuration exists")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        print(f"❌ Error parsing config.yaml: {e}")
        return False

    if not config:
        print("❌ config.yaml is empty")
        return False

    missing = [section for section in REQUIRED_SECTIONS if section not in config]
    if missing:
        print(f"❌ config.yaml is missing sections: {', '.join(missing)}")
        return False

    print("✅ config.yaml is valid YAML")
    return True


def test_imports() -> bool:
    """Test that critical packages can be imported."""
    required_packages = [
        "pydantic",
        "pydantic_settings",
        "yaml",
        "dotenv",
        "structlog",
        "httpx",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print(f"❌ Missing packages: {', '.join(missing)}")
        print("   Run: pip install -e .[test]")
        return False

    print("✅ All required packages installed")
    return True


def check_adapters() -> bool:
    """Instantiate each provider adapter and report whether it is usable."""
    from tms_core.core.logging import configure_logging
    from tms_core.integrations import DATAdapter, EPayAdapter, MacroPointAdapter, QuickBooksAdapter

    configure_logging()
    for adapter_class in (DATAdapter, MacroPointAdapter, EPayAdapter, QuickBooksAdapter):
        adapter = adapter_class()
        state = "ready" if adapter.is_configured() else "not configured"
        print(f"   {adapter.display_name}: {state}")
        adapter.close()

    print("✅ Provider adapters load")
    return True


def display_next_steps():
    """Show user what to do next."""
    print("\n" + "=" * 60)
    print("🎉 Project initialization complete!")
    print("=" * 60)
    print("\nNext steps:")
    print("\n1. Review config/config.yaml (numbering prefixes, payment terms, quick-pay fee)")
    print("2. Fill in provider credentials in .env")
    print("3. Run the test suite:")
    print("   pytest")
    print("\n" + "=" * 60)


def main():
    """Run all initialization checks."""
    print("=" * 60)
    print("Brokerage Core - Initialization")
    print("=" * 60)
    print()

    checks = [
        ("Python version", check_python_version),
        (".env file", check_env_file),
        ("Environment variables", load_and_validate_env),
        ("Configuration files", check_config_files),
        ("Package imports", test_imports),
        ("Provider adapters", check_adapters),
    ]

    passed = 0
    failed = 0

    for name, check_func in checks:
        print(f"\nChecking {name}...")
        if check_func():
            passed += 1
        else:
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    if failed == 0:
        display_next_steps()
        return 0
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
