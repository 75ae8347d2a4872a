"""
Relationship references.

A related record arrives either as a bare id (``Unresolved``) or as the
expanded record (``Resolved``). The persistence layer resolves references;
core functions only accept resolved values via ``require_resolved``.
"""

from typing import Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel

from tms_core.core.errors import ValidationError

T = TypeVar("T")


class Unresolved(BaseModel):
    """Reference known only by id."""

    kind: Literal["unresolved"] = "unresolved"
    id: str


class Resolved(BaseModel, Generic[T]):
    """Reference carrying the full related record."""

    kind: Literal["resolved"] = "resolved"
    value: T

    @property
    def id(self) -> str:
        return self.value.id  # type: ignore[attr-defined]


def ref_id(ref: Optional[Union[Unresolved, Resolved]]) -> Optional[str]:
    """Id of a reference regardless of resolution state."""
    if ref is None:
        return None
    return ref.id


def require_resolved(ref: Optional[Union[Unresolved, Resolved]], what: str) -> T:
    """
    Return the resolved record or raise.

    Raises:
        ValidationError: If the reference is missing or was never resolved
    """
    if ref is None:
        raise ValidationError(f"{what} is required")
    if isinstance(ref, Unresolved):
        raise ValidationError(f"{what} {ref.id} has not been resolved", id=ref.id)
    return ref.value

