"""
Uniform result shapes.

Domain services raise typed errors from ``tms_core.core.errors``; callers at
the boundary (route handlers, job runners) turn them into one response shape
with ``failure_response`` / ``run_boundary``. Provider adapters return
``IntegrationResult`` directly and never raise.
"""

from typing import Any, Callable, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel

from tms_core.core.errors import IntegrationError, TMSError

T = TypeVar("T")

logger = structlog.get_logger(component="boundary")

SERVICE_UNAVAILABLE = "Service unavailable"


class IntegrationResult(BaseModel, Generic[T]):
    """Outcome of a provider operation: ``{success, data?, error?}``."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, data: Any = None) -> "IntegrationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, status_code: Optional[int] = None) -> "IntegrationResult":
        return cls(success=False, error=error, status_code=status_code)


def failure_response(exc: BaseException) -> dict[str, Any]:
    """
    Convert any exception into the uniform failure payload.

    Business-rule failures keep their precise message; integration failures
    report a generic "service unavailable" plus the provider detail for
    operators; anything else is an internal error.
    """
    if isinstance(exc, IntegrationError):
        return {
            "success": False,
            "error": SERVICE_UNAVAILABLE,
            "detail": exc.detail or exc.message,
            "provider": exc.provider,
            "error_type": exc.error_type,
        }
    if isinstance(exc, TMSError):
        return {"success": False, **exc.to_dict()}
    return {"success": False, "error": "Internal error", "detail": str(exc), "error_type": "internal"}


def run_boundary(func: Callable[..., Any], *args: Any, **kwargs: Any) -> dict[str, Any]:
    """
    Call a service function and always return a response dict.

    Args:
        func: Service callable
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        ``{"success": True, "data": ...}`` or the failure payload
    """
    try:
        data = func(*args, **kwargs)
    except TMSError as e:
        logger.warning("boundary_call_rejected", call=getattr(func, "__name__", str(func)), **e.to_dict())
        return failure_response(e)
    except Exception as e:
        logger.exception("boundary_call_failed", call=getattr(func, "__name__", str(func)))
        return failure_response(e)

    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
    return {"success": True, "data": data}
