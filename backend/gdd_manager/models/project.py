"""Project and section Pydantic schemas.

These are the wire and snapshot shapes shared by the local store, the
sync endpoint and backups. Field aliases keep the camelCase keys used by
persisted snapshots (``createdAt``, ``parentId`` ...), while Python code
uses snake_case attributes.
"""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(value: datetime) -> str:
    """Render a datetime the same way ``now_iso`` does."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _check_timestamp(value: str) -> str:
    parse_timestamp(value)
    return value


# ISO-8601 string, kept as received.
Timestamp = Annotated[str, AfterValidator(_check_timestamp)]


# ---------------------------------------------------------------------------
# Section schemas
# ---------------------------------------------------------------------------

class Section(BaseModel):
    """A node in a project's section forest."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    content: str = ""
    created_at: Timestamp
    parent_id: str | None = Field(default=None, alias="parentId")
    order: int = 0
    color: str | None = None


class SectionUpdate(BaseModel):
    """Partial update for a section.

    Only fields that were explicitly set are applied. ``parent_id`` and
    ``color`` may be set to ``None`` to move a section to the root or to
    clear its color.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    content: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    order: int | None = None
    color: str | None = None

    def provided(self) -> dict[str, Any]:
        """Return the explicitly-set fields keyed by attribute name."""
        values = {name: getattr(self, name) for name in self.model_fields_set}
        for name in ("title", "content", "order"):
            if values.get(name, 0) is None:
                values.pop(name)
        return values


# ---------------------------------------------------------------------------
# Project schemas
# ---------------------------------------------------------------------------

class Project(BaseModel):
    """Top-level document. ``updated_at`` is the conflict-resolution key."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    sections: list[Section] = Field(default_factory=list)
    created_at: Timestamp = Field(alias="createdAt")
    updated_at: Timestamp = Field(alias="updatedAt")
    mind_map_settings: dict[str, Any] | None = Field(default=None, alias="mindMapSettings")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted/wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def updated_at_dt(self) -> datetime:
        return parse_timestamp(self.updated_at)

    def section(self, section_id: str) -> Section | None:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None
