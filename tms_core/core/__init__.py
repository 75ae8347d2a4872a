"""
Core infrastructure for the brokerage core.

This module provides:
- Config: Configuration management
- Errors: Error taxonomy shared by every component
- Results: Uniform success/failure shapes
"""

from .config import ConfigManager, EnvironmentSettings, get_config
from .errors import (
    ComputationError,
    DuplicateKeyError,
    IntegrationError,
    NotFoundError,
    TMSError,
    ValidationError,
)
from .results import IntegrationResult, failure_response, run_boundary

__all__ = [
    "ConfigManager",
    "EnvironmentSettings",
    "get_config",
    "TMSError",
    "ValidationError",
    "NotFoundError",
    "IntegrationError",
    "ComputationError",
    "DuplicateKeyError",
    "IntegrationResult",
    "failure_response",
    "run_boundary",
]
