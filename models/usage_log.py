"""
Usage log data models.

A UsageLogEntry is one transaction in the "usage_logs" collection. For a
completed usage, `details` holds a structural copy of every sheet that was
consumed, each tagged with `originalId`. Once the sheet document is deleted,
that copy is the only record of it.

Provenance is an explicit tag (LogKind) instead of a string prefix on the
job field. Documents written before the tag existed are classified from
their job prefix when read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from core.exceptions import ValidationError
from models.inventory import (
    CORRECTION_JOB_PREFIX,
    DELETION_JOB_PREFIX,
    STORE_INTERNAL_FIELDS,
    coerce_int,
)


class LogStatus(Enum):
    """
    Status of a usage log.

    Lifecycle:
        SCHEDULED -> COMPLETED   (fulfilment deletes the sheets)
        COMPLETED                (immediate allocation)
        COMPLETED -> ARCHIVED
    """

    COMPLETED = "Completed"
    """Sheets have been removed from stock."""

    SCHEDULED = "Scheduled"
    """Usage planned for a future date; stock not yet touched."""

    ARCHIVED = "Archived"
    """Hidden from the ledger; the sheets it names stay removed."""

    @classmethod
    def parse(cls, value: Any) -> "LogStatus":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.COMPLETED
        for status in cls:
            if status.value.lower() == str(value).lower():
                return status
        raise ValidationError(f"Unknown log status: {value!r}", "status")

    @classmethod
    def from_stored(cls, value: Any) -> Optional["LogStatus"]:
        """Like parse, but None for an unrecognised stored value."""
        try:
            return cls.parse(value)
        except ValidationError:
            return None


class LogKind(Enum):
    """Where a usage log came from."""

    USAGE = "usage"
    """A real usage event (allocation against a job)."""

    CORRECTION = "correction"
    """Out-of-band inventory correction (manual count edit)."""

    GROUP_DELETION = "group_deletion"
    """Audit record of an order group being deleted."""

    @classmethod
    def classify(cls, kind: Any, job: Optional[str]) -> "LogKind":
        """
        Resolve the kind of a stored log.

        An explicit 'kind' field wins; otherwise the legacy job prefix
        decides.
        """
        if isinstance(kind, cls):
            return kind
        if kind:
            for member in cls:
                if member.value == kind:
                    return member
        job = job or ""
        if job.startswith(CORRECTION_JOB_PREFIX):
            return cls.CORRECTION
        if job.startswith(DELETION_JOB_PREFIX):
            return cls.GROUP_DELETION
        return cls.USAGE


def detail_from_unit(unit_id: str, unit_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build one `details` entry from a sheet that is about to be deleted.

    Store-internal fields are dropped, qty is 1 and originalId points at the
    (soon deleted) sheet document.
    """
    detail = {k: v for k, v in unit_data.items() if k not in STORE_INTERNAL_FIELDS}
    detail["qty"] = 1
    detail["originalId"] = unit_id
    return detail


@dataclass
class UsageLogEntry:
    """
    One usage transaction.

    qty is signed: negative means net sheets removed.
    """

    job: str
    customer: str
    used_at: str
    created_at: str
    qty: int
    details: List[Dict[str, Any]] = field(default_factory=list)
    status: LogStatus = LogStatus.COMPLETED
    kind: LogKind = LogKind.USAGE
    id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_FIELDS = frozenset({
        "job", "customer", "usedAt", "createdAt", "qty", "details", "status", "kind",
    })

    @property
    def is_scheduled(self) -> bool:
        return self.status == LogStatus.SCHEDULED

    @property
    def is_archived(self) -> bool:
        return self.status == LogStatus.ARCHIVED

    @property
    def is_reversal(self) -> bool:
        """A non-negative correction: stock put back, not taken out."""
        return self.kind == LogKind.CORRECTION and self.qty >= 0

    def involves_material(self, material_type: str) -> bool:
        return any(d.get("materialType") == material_type for d in self.details)

    def _stored_status(self) -> str:
        # An unrecognised status read from the store is written back as-is
        if self.status == LogStatus.COMPLETED and "status" in self.extra:
            return self.extra["status"]
        return self.status.value

    def to_dict(self, include_id: bool = False) -> Dict[str, Any]:
        """Convert to the store document shape."""
        result = dict(self.extra)
        result.update({
            "job": self.job,
            "customer": self.customer,
            "usedAt": self.used_at,
            "createdAt": self.created_at,
            "qty": self.qty,
            "details": [dict(d) for d in self.details],
            "status": self._stored_status(),
            "kind": self.kind.value,
        })
        if include_id and self.id:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> "UsageLogEntry":
        details = data.get("details")
        if not isinstance(details, list):
            details = []
        extra = {
            k: v for k, v in data.items()
            if k not in cls._KNOWN_FIELDS and k not in STORE_INTERNAL_FIELDS
        }
        status = LogStatus.from_stored(data.get("status"))
        if status is None:
            status = LogStatus.COMPLETED
            extra["status"] = data.get("status")
        return cls(
            id=doc_id or data.get("id"),
            job=data.get("job") or "",
            customer=data.get("customer") or "",
            used_at=data.get("usedAt") or "",
            created_at=data.get("createdAt") or "",
            qty=coerce_int(data.get("qty")),
            details=[d for d in details if isinstance(d, dict)],
            status=status,
            kind=LogKind.classify(data.get("kind"), data.get("job")),
            extra=extra,
        )
