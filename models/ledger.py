"""
Ledger row model.

A LedgerRow is one reconciled, display-ready transaction for a material:
either an addition (a group of sheets that arrived or are on order) or a
removal (a usage log). Every row has the same per-length count shape so the
presentation layer never branches on row kind to render columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.inventory import STANDARD_LENGTHS

CUSTOM_LENGTH_KEY = "custom"


def length_key(length: Any) -> str:
    """Count column for a sheet length: '96', '120', '144' or 'custom'."""
    try:
        value = int(length)
    except (TypeError, ValueError):
        return CUSTOM_LENGTH_KEY
    return str(value) if value in STANDARD_LENGTHS else CUSTOM_LENGTH_KEY


def empty_counts() -> Dict[str, int]:
    """Zeroed count columns in display order."""
    counts = {str(length): 0 for length in STANDARD_LENGTHS}
    counts[CUSTOM_LENGTH_KEY] = 0
    return counts


@dataclass
class LedgerRow:
    """One addition or removal in a material's history."""

    id: str
    """Group key for additions, log id for removals."""

    job: str
    customer: str

    date: Optional[str]
    """Effective date: arrivalDate/createdAt for additions, usedAt/createdAt for removals."""

    is_addition: bool
    is_future: bool
    is_deletable: bool = True
    is_fulfillable: bool = False

    kind: str = "addition"
    """'addition' or the LogKind value of the removal."""

    counts: Dict[str, int] = field(default_factory=empty_counts)
    """Per-length sheet counts (negative for removals)."""

    details: List[Dict[str, Any]] = field(default_factory=list)
    """Sheets behind the row (unit documents or log details)."""

    sort_date: Optional[datetime] = None
    """Parsed effective date used for ordering (not serialized)."""

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        """Flatten for JSON: count columns sit beside the flags."""
        result = {
            "id": self.id,
            "job": self.job,
            "customer": self.customer,
            "date": self.date,
            "kind": self.kind,
            "isAddition": self.is_addition,
            "isFuture": self.is_future,
            "isDeletable": self.is_deletable,
            "isFulfillable": self.is_fulfillable,
            "total": self.total,
            "details": [dict(d) for d in self.details],
        }
        result.update(self.counts)
        return result
