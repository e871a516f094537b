"""Domain models shared by the store, resolver and engine.

IDs are kept as opaque strings so the core never depends on discord types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_TEMPLATE = "{count} - {role}"
UNKNOWN_ROLE_NAME = "Unknown Role"


@dataclass(frozen=True)
class Binding:
    """Links a tracked role in one guild to the voice channel showing its count."""

    community_id: str
    group_id: str
    channel_id: str
    template: str = DEFAULT_TEMPLATE
    last_applied_label: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.community_id, self.group_id)


@dataclass(frozen=True)
class LabelVars:
    count: int
    role_name: str
    role_id: str
    community_name: str


@dataclass(frozen=True)
class GroupSnapshot:
    """Result of resolving one role's membership.

    ``found`` is False when the role no longer exists; the count is then 0
    and the name falls back to ``UNKNOWN_ROLE_NAME``.
    """

    count: int
    group_name: str
    community_name: str
    found: bool = True


@dataclass
class PassReport:
    """Per-outcome counters for one reconciliation pass."""

    trigger: str
    renamed: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.renamed + self.unchanged + self.skipped + self.failed

    def summary(self) -> str:
        return (
            f"{self.total} binding(s): {self.renamed} renamed, {self.unchanged} unchanged, "
            f"{self.skipped} skipped, {self.failed} failed"
        )
