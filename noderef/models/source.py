"""Source target data model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceTarget:
    """One addressable repository endpoint selected for a federated query."""

    id: int
    address: str
    display_name: str
