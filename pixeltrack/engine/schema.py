"""
pixeltrack.engine.schema — Member Schema Adapter
=================================================

Member records have gone through a few schema generations:

* the manual adjustment was once stored as ``pixeldelta`` (lowercase),
* the cached total was once stored as ``pixels`` before ``pixelCached``,
* the email once lived only in ``slackEmail``.

All of that is resolved **here**, once, at the store-read boundary.  Every
other module works with the canonical :class:`MemberRecord` and never looks
at a legacy field.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pixeltrack.database.models import Member

__all__ = ["MemberRecord", "coerce_int"]


def coerce_int(value: Any, default: int = 0) -> int:
    """Best-effort integer coercion; malformed values become *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


@dataclass(frozen=True, slots=True)
class MemberRecord:
    """Canonical in-memory view of a member."""

    id: str
    first_name: str
    last_name: str
    email: str
    is_admin: bool
    pixel_delta: int
    pixel_cached: int | None
    slack_id: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Member"

    # -------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------
    @classmethod
    def from_row(cls, row: Member) -> MemberRecord:
        """Build from an ORM row, folding legacy columns into canonical ones."""
        return cls(
            id=row.id,
            first_name=row.first_name or "",
            last_name=row.last_name or "",
            email=row.email or row.slack_email or "",
            is_admin=bool(row.is_admin),
            pixel_delta=coerce_int(_first_present(row.pixel_delta, row.pixeldelta)),
            pixel_cached=_optional_int(_first_present(row.pixel_cached, row.pixels)),
            slack_id=row.slack_id,
        )

    @classmethod
    def from_document(cls, member_id: str, doc: dict[str, Any]) -> MemberRecord:
        """Build from an exported user document (camelCase keys)."""
        return cls(
            id=member_id,
            first_name=doc.get("firstName") or "",
            last_name=doc.get("lastName") or "",
            email=doc.get("email") or doc.get("slackEmail") or "",
            is_admin=bool(doc.get("isAdmin", False)),
            pixel_delta=coerce_int(_first_present(doc.get("pixelDelta"), doc.get("pixeldelta"))),
            pixel_cached=_optional_int(_first_present(doc.get("pixelCached"), doc.get("pixels"))),
            slack_id=doc.get("slackId"),
        )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return coerce_int(value)
