"""
Snapshot (backup) data models.

A snapshot is a point-in-time copy of an explicit list of collections,
stored under snapshots/<id>/<collection>. The id is the UTC creation time
formatted as YYYY-MM-DDTHH-MM-SS, so ids sort lexicographically by age.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

SNAPSHOT_ID_FORMAT = "%Y-%m-%dT%H-%M-%S"
SNAPSHOT_ID_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}$")


def generate_snapshot_id(dt: datetime) -> str:
    """Snapshot id for a moment in time (UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(SNAPSHOT_ID_FORMAT)


def is_snapshot_id(value: str) -> bool:
    return bool(value) and bool(SNAPSHOT_ID_RE.match(value))


def snapshot_id_to_datetime(snapshot_id: str) -> Optional[datetime]:
    """Recover the creation time encoded in a snapshot id (None if malformed)."""
    try:
        return datetime.strptime(snapshot_id, SNAPSHOT_ID_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class SnapshotInfo:
    """One discoverable snapshot."""

    id: str
    created_at: Optional[str]
    total_docs: int
    indexed: bool = True
    """False when found only by scanning snapshot documents."""

    collections: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "totalDocs": self.total_docs,
            "indexed": self.indexed,
            "collections": list(self.collections),
        }


@dataclass(frozen=True)
class BackupResult:
    """Outcome of SnapshotService.backup()."""

    snapshot_id: str
    total_docs: int
    counts: Dict[str, int] = field(default_factory=dict)
    """Documents copied per collection."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshotId": self.snapshot_id,
            "totalDocs": self.total_docs,
            "counts": dict(self.counts),
        }


class RestorePhase(Enum):
    """Phase markers passed to restore/import progress callbacks."""

    READ = "read"
    """Snapshot copy of the collection has been read."""

    DELETE_PROGRESS = "delete-progress"
    """A chunk of live documents has been deleted."""

    WRITE_PROGRESS = "write-progress"
    """A chunk of snapshot documents has been written."""

    COLLECTION_COMPLETE = "collection-complete"
    """Live collection now matches the snapshot."""


@dataclass(frozen=True)
class RestoreProgress:
    """
    One progress event.

    `percent` is per collection and never decreases within a collection:
    read = 0, deletes fill 0-50, writes fill 50-100, complete = 100.
    """

    collection: str
    collection_index: int
    collection_count: int
    phase: RestorePhase
    done: int
    total: int
    percent: float

    @property
    def overall_percent(self) -> float:
        """Coarse percentage across all collections of the operation."""
        if self.collection_count <= 0:
            return 100.0
        return (self.collection_index * 100.0 + self.percent) / self.collection_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "collectionIndex": self.collection_index,
            "collectionCount": self.collection_count,
            "phase": self.phase.value,
            "done": self.done,
            "total": self.total,
            "percent": self.percent,
            "overallPercent": self.overall_percent,
        }


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of a restore or import."""

    snapshot_id: Optional[str]
    restored: Dict[str, int] = field(default_factory=dict)
    """Documents written per collection."""

    deleted: Dict[str, int] = field(default_factory=dict)
    """Live documents removed per collection before writing."""

    @property
    def total_restored(self) -> int:
        return sum(self.restored.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshotId": self.snapshot_id,
            "restored": dict(self.restored),
            "deleted": dict(self.deleted),
            "totalRestored": self.total_restored,
        }

