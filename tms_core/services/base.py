"""
Base class for stateful core services.

Provides common functionality:
- Configuration loading
- Repository access
- Structured logging bound to the service name
"""

from typing import Optional

import structlog

from tms_core.core.config import ConfigManager, get_config
from tms_core.data.repository import Repository
from tms_core.data.store import DocumentStore


class BaseService:
    """
    Base class for services that read and write the document store.

    Pure calculators (profitability, line items, assemblers) do not inherit
    from this; only the orchestration services that own side effects do.
    """

    def __init__(
        self,
        service_name: str,
        store: DocumentStore,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the base service.

        Args:
            service_name: Name of the service (e.g., "billing", "tracking")
            store: Document store collaborator
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        self.service_name = service_name
        self.config_manager = config_manager or get_config()
        self.repository = Repository(store)
        self.logger = logger or structlog.get_logger(service=service_name)

    def __repr__(self) -> str:
        """String representation of the service."""
        return f"{self.__class__.__name__}(service_name='{self.service_name}')"
