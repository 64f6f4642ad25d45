"""Search result data models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_COMPACT_OFFSET = re.compile(r"T.*[+-]\d{4}$")


class RawResultItem(BaseModel):
    """One hit as reported by a remote source, validated before merging.

    A missing ``modified_at`` becomes the Unix epoch so the item sorts last
    instead of breaking the ordering.
    """

    id: str
    name: str = ""
    is_folder: bool = False
    is_file: bool = False
    canonical_ref: str = ""
    resource_type: str = ""
    path: str = ""
    modified_at: datetime = EPOCH
    modified_by: str = "Unknown"
    created_at: datetime | None = None
    created_by: str | None = None
    parent_id: str | None = None
    mime_type: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("modified_at", mode="before")
    @classmethod
    def _default_modified_at(cls, value: Any) -> Any:
        return EPOCH if value is None or value == "" else value

    @field_validator("modified_at", "created_at", mode="before")
    @classmethod
    def _normalize_offset(cls, value: Any) -> Any:
        # "2025-02-10T08:30:00.000+0000" -> "...+00:00"
        if isinstance(value, str) and _COMPACT_OFFSET.search(value):
            return f"{value[:-2]}:{value[-2:]}"
        return value

    @field_validator("modified_at", "created_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("attributes", mode="before")
    @classmethod
    def _default_attributes(cls, value: Any) -> Any:
        return {} if value is None else value


@dataclass(frozen=True)
class SearchResultItem:
    """A normalized hit tagged with the source it came from."""

    id: str
    name: str
    is_folder: bool
    is_file: bool
    canonical_ref: str
    resource_type: str
    path: str
    modified_at: datetime
    modified_by: str
    source_id: int
    source_name: str
    created_at: datetime | None = None
    created_by: str | None = None
    parent_id: str | None = None
    mime_type: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def key(self) -> tuple[int, str]:
        return (self.source_id, self.id)
