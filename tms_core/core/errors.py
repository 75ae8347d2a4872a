"""
Error taxonomy for the brokerage core.

- ValidationError: bad input or a business rule violation (never retried)
- NotFoundError: unknown load/customer/carrier/document id
- IntegrationError: provider unreachable, auth failure or non-2xx response
- ComputationError: degenerate numeric input (e.g. target margin >= 100%)
- DuplicateKeyError: best-effort uniqueness conflict raised by a store
"""

from typing import Any, Optional


class TMSError(Exception):
    """Base class for every error raised by the core."""

    error_type = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation for boundary responses and logs."""
        payload: dict[str, Any] = {"error": self.message, "error_type": self.error_type}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(TMSError):
    """Missing field, wrong load status or cross-counterparty conflict."""

    error_type = "validation"


class NotFoundError(TMSError):
    """Referenced record does not exist."""

    error_type = "not_found"

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} not found: {record_id}", collection=collection, id=record_id)
        self.collection = collection
        self.record_id = record_id


class ComputationError(TMSError):
    """Input that collapses a calculation."""

    error_type = "computation"


class IntegrationError(TMSError):
    """External provider failure; carries the provider's raw error text."""

    error_type = "integration"

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"{provider} {message}", provider=provider, status_code=status_code
        )
        self.provider = provider
        self.status_code = status_code
        self.detail = detail

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class DuplicateKeyError(TMSError):
    """A unique field already holds the value being written."""

    error_type = "duplicate"

    def __init__(self, collection: str, field: str, value: Any) -> None:
        super().__init__(
            f"Duplicate {field} in {collection}: {value}",
            collection=collection,
            field=field,
            value=value,
        )
        self.collection = collection
        self.field = field
        self.value = value
