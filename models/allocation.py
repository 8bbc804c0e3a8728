"""
Allocation request/result models.

A request groups one or more lines (material, length, quantity) under each
job. Requests arrive from the HTTP layer as dicts in either of two shapes:

    {"jobs": [{"job": "J-100", "customer": "ACME",
               "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 4}]}]}

or the order-form shape with one quantity per standard length:

    {"jobs": [{"jobName": "J-100", "customer": "ACME",
               "items": [{"materialType": "16GA-CRS", "qty96": 4, "qty120": 0}]}]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import ValidationError
from models.inventory import STANDARD_LENGTHS


def parse_quantity(value: Any, field_name: str, allow_zero: bool = False) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a whole number", field_name)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a whole number, got {value!r}", field_name)
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{field_name} must be a whole number, got {value!r}", field_name)
    if number < 0 or (number == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be positive, got {number}", field_name)
    return number


@dataclass(frozen=True)
class AllocationLine:
    """Request for `quantity` sheets of one material and length."""

    material_type: str
    length: int
    quantity: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.material_type, self.length)


@dataclass(frozen=True)
class JobAllocation:
    """All lines requested for one job."""

    job: str
    customer: str
    lines: Tuple[AllocationLine, ...]
    used_at: Optional[str] = None
    """Business date of use (defaults to now)."""

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class AllocationRequest:
    """One allocation intent, processed as a single all-or-nothing unit."""

    jobs: Tuple[JobAllocation, ...]

    @property
    def total_quantity(self) -> int:
        return sum(job.total_quantity for job in self.jobs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllocationRequest":
        """
        Parse and validate a request payload.

        Raises:
            ValidationError: On missing jobs/lines or non-positive quantities
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")
        jobs_data = data.get("jobs")
        if not isinstance(jobs_data, list) or not jobs_data:
            raise ValidationError("At least one job is required", "jobs")

        jobs = []
        for job_data in jobs_data:
            if not isinstance(job_data, dict):
                raise ValidationError("Each job must be an object", "jobs")
            lines = _parse_lines(job_data)
            if not lines:
                raise ValidationError("Each job needs at least one line with a quantity", "lines")
            jobs.append(JobAllocation(
                job=str(job_data.get("job", job_data.get("jobName", "")) or "").strip(),
                customer=str(job_data.get("customer") or "").strip(),
                lines=tuple(lines),
                used_at=job_data.get("usedAt") or None,
            ))
        return cls(jobs=tuple(jobs))


def _object_list(job_data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    entries = job_data.get(key) or []
    if not isinstance(entries, list):
        raise ValidationError(f"{key} must be a list", key)
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError(f"Each entry of {key} must be an object", key)
    return entries


def _parse_lines(job_data: Dict[str, Any]) -> List[AllocationLine]:
    lines: List[AllocationLine] = []

    for line in _object_list(job_data, "lines"):
        material_type = str(line.get("materialType") or "").strip()
        if not material_type:
            raise ValidationError("materialType is required", "materialType")
        lines.append(AllocationLine(
            material_type=material_type,
            length=parse_quantity(line.get("length"), "length"),
            quantity=parse_quantity(line.get("quantity"), "quantity"),
        ))

    # Order-form shape: one qty<length> field per standard length, blanks skipped
    for item in _object_list(job_data, "items"):
        material_type = str(item.get("materialType") or "").strip()
        if not material_type:
            raise ValidationError("materialType is required", "materialType")
        for length in STANDARD_LENGTHS:
            raw = item.get(f"qty{length}")
            if raw in (None, ""):
                continue
            quantity = parse_quantity(raw, f"qty{length}", allow_zero=True)
            if quantity:
                lines.append(AllocationLine(material_type, length, quantity))

    return lines


@dataclass
class AllocationResult:
    """Outcome of a committed allocation."""

    log_ids: List[str] = field(default_factory=list)
    """One usage log id per job that consumed sheets."""

    deleted_unit_ids: List[str] = field(default_factory=list)
    counts_by_job: Dict[str, int] = field(default_factory=dict)

    @property
    def total_deleted(self) -> int:
        return len(self.deleted_unit_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logIds": list(self.log_ids),
            "deletedUnitIds": list(self.deleted_unit_ids),
            "countsByJob": dict(self.counts_by_job),
            "totalDeleted": self.total_deleted,
        }
