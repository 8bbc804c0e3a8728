"""
FIFO stock allocation.

Turns a usage request into concrete sheet deletions plus one immutable
usage log per job.

ALL-OR-NOTHING:
    1. Validate every line of every job (quantities, known materials)
    2. Read-only planning pass: select the oldest on-hand sheets for every
       line; if ANY line is short, raise InsufficientStockError before a
       single document is touched
    3. Commit deletions + log inserts. When they fit under the store's
       batch ceiling this is one atomic batch; larger requests fall back to
       chunked batches (logged as a warning)

Concurrency:
    Allocation re-reads on-hand sheets at allocation time and all
    allocations in this process are serialized through one lock, so two
    requests can never plan against the same on-hand sheets. Writers in
    OTHER processes are not covered; that would need a store-side
    conditional delete.

FIFO Order:
    createdAt ascending, ties broken by document id (the store's
    query order), so selection is deterministic.
"""

from __future__ import annotations

import threading
from collections import OrderedDict, defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from core import collections as coll
from core.document_store import Document, DocumentStore, write_in_chunks
from core.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from models.allocation import (
    AllocationLine,
    AllocationRequest,
    AllocationResult,
    JobAllocation,
)
from models.inventory import UnitStatus, coerce_int
from models.timestamps import Clock, parse_timestamp, to_iso, utc_now
from models.usage_log import LogKind, LogStatus, UsageLogEntry, detail_from_unit
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

# A planned job: the request plus the sheets selected for it, in FIFO order
PlannedJob = Tuple[JobAllocation, List[Document]]


class AllocationService:
    """
    Allocates on-hand sheets to jobs, oldest first.

    Usage:
        service = AllocationService(store)
        result = service.allocate({"jobs": [...]})

    Attributes:
        store: Document store handle (injected, never global)
    """

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        """
        Initialize allocation service.

        Args:
            store: Document store shared with the other services
            clock: Returns the current aware datetime (for tests)
        """
        self._store = store
        self._clock = clock or utc_now
        self._lock = threading.Lock()

    @property
    def store(self) -> DocumentStore:
        return self._store

    # =========================================================================
    # IMMEDIATE ALLOCATION
    # =========================================================================

    def allocate(self, request: Union[AllocationRequest, dict]) -> AllocationResult:
        """
        Allocate every line of every job, or nothing at all.

        Args:
            request: AllocationRequest or its dict payload

        Returns:
            AllocationResult with the log ids and deleted sheet ids

        Raises:
            ValidationError: Bad quantities or unknown material
            InsufficientStockError: A line cannot be met (nothing deleted)
        """
        if not isinstance(request, AllocationRequest):
            request = AllocationRequest.from_dict(request)

        with self._lock:
            self._validate_materials(request.jobs)
            plan = self._plan(request.jobs)
            result = self._commit(plan)

        logger.info(
            f"Allocated {result.total_deleted} sheets across "
            f"{len(result.log_ids)} job(s)"
        )
        return result

    # =========================================================================
    # SCHEDULED USAGE
    # =========================================================================

    def schedule(self, request: Union[AllocationRequest, dict]) -> List[str]:
        """
        Record planned usage without touching stock.

        Each job becomes one Scheduled log whose details list the requested
        sheets (material + length, no originalId yet).

        Returns:
            Ids of the scheduled logs
        """
        if not isinstance(request, AllocationRequest):
            request = AllocationRequest.from_dict(request)

        with self._lock:
            self._validate_materials(request.jobs)
            now_iso = to_iso(self._clock())
            operations = []
            log_ids = []
            for job in request.jobs:
                details = [
                    {"materialType": line.material_type, "length": line.length, "qty": 1}
                    for line in job.lines
                    for _ in range(line.quantity)
                ]
                log = UsageLogEntry(
                    job=job.job,
                    customer=job.customer,
                    used_at=job.used_at or now_iso,
                    created_at=now_iso,
                    qty=-len(details),
                    details=details,
                    status=LogStatus.SCHEDULED,
                )
                log_id = self._store.new_id()
                log_ids.append(log_id)
                operations.append(("set", coll.USAGE_LOGS, log_id, log.to_dict()))
            write_in_chunks(self._store, operations)

        logger.info(f"Scheduled {len(log_ids)} usage log(s)")
        return log_ids

    def fulfill(self, log_id: str) -> AllocationResult:
        """
        Allocate the sheets of one Scheduled log and mark it Completed.

        The log's placeholder details are replaced by snapshots of the
        sheets actually consumed.

        Raises:
            NotFoundError: No such log
            ValidationError: Log is not Scheduled
            InsufficientStockError: Not enough stock (nothing changed)
        """
        with self._lock:
            doc = self._store.get(coll.USAGE_LOGS, log_id)
            if doc is None:
                raise NotFoundError(coll.USAGE_LOGS, log_id)
            log = UsageLogEntry.from_dict(doc.data, doc.id)
            if not log.is_scheduled:
                raise ValidationError(f"Log {log_id} is not scheduled", "status")

            job = JobAllocation(
                job=log.job,
                customer=log.customer,
                lines=tuple(self._lines_from_details(log.details)),
                used_at=log.used_at,
            )
            _, units = self._plan([job])[0]

            details = [detail_from_unit(u.id, u.data) for u in units]
            operations = [("delete", coll.INVENTORY, u.id, None) for u in units]
            operations.append(("update", coll.USAGE_LOGS, log_id, {
                "status": LogStatus.COMPLETED.value,
                "details": details,
                "qty": -len(details),
            }))
            self._write(operations)

        logger.info(f"Fulfilled scheduled log {log_id}: {len(units)} sheets")
        return AllocationResult(
            log_ids=[log_id],
            deleted_unit_ids=[u.id for u in units],
            counts_by_job={log.job: len(units)},
        )

    def fulfill_due(self, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """
        Fulfil every Scheduled log whose usedAt has passed.

        Logs that cannot be met are skipped with a warning and stay
        Scheduled, so a later run can pick them up.

        Returns:
            {"fulfilled": [...log ids], "skipped": [...log ids]}
        """
        now = now or self._clock()
        fulfilled: List[str] = []
        skipped: List[str] = []

        scheduled = self._store.query(
            coll.USAGE_LOGS,
            {"status": LogStatus.SCHEDULED.value},
            order_by="usedAt",
        )
        for doc in scheduled:
            used_at = parse_timestamp(doc.data.get("usedAt"))
            if used_at is None or used_at > now:
                continue
            try:
                self.fulfill(doc.id)
                fulfilled.append(doc.id)
            except InsufficientStockError as e:
                logger.warning(f"Cannot fulfill scheduled log {doc.id}: {e.message}")
                skipped.append(doc.id)

        if fulfilled or skipped:
            logger.info(f"Scheduled usage: {len(fulfilled)} fulfilled, {len(skipped)} skipped")
        return {"fulfilled": fulfilled, "skipped": skipped}

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _known_materials(self) -> Set[str]:
        return {doc.id for doc in self._store.list_documents(coll.MATERIALS)}

    def _validate_materials(self, jobs: Sequence[JobAllocation]) -> None:
        known = self._known_materials()
        for job in jobs:
            for line in job.lines:
                if line.quantity <= 0:
                    raise ValidationError(
                        f"Quantity must be positive for {line.material_type} @ {line.length}\"",
                        "quantity",
                    )
                if line.material_type not in known:
                    raise ValidationError(f"Unknown material: {line.material_type}", "materialType")

    def _plan(self, jobs: Sequence[JobAllocation]) -> List[PlannedJob]:
        """
        Read-only pass selecting sheets for every line.

        Demand for the same (material, length) across lines and jobs is
        summed first, so one query per key returns enough sheets for all of
        them and no sheet is selected twice.
        """
        demand: "OrderedDict[Tuple[str, int], int]" = OrderedDict()
        for job in jobs:
            for line in job.lines:
                demand[line.key] = demand.get(line.key, 0) + line.quantity

        pools: Dict[Tuple[str, int], List[Document]] = {}
        for (material_type, length), total in demand.items():
            pools[(material_type, length)] = self._store.query(
                coll.INVENTORY,
                {
                    "materialType": material_type,
                    "length": length,
                    "status": UnitStatus.ON_HAND.value,
                },
                order_by="createdAt",
                limit=total,
            )

        consumed: Dict[Tuple[str, int], int] = defaultdict(int)
        plan: List[PlannedJob] = []
        for job in jobs:
            picked: List[Document] = []
            for line in job.lines:
                pool = pools[line.key]
                start = consumed[line.key]
                available = len(pool) - start
                if available < line.quantity:
                    raise InsufficientStockError(
                        material_type=line.material_type,
                        length=line.length,
                        requested=line.quantity,
                        available=available,
                        job=job.job or None,
                    )
                picked.extend(pool[start:start + line.quantity])
                consumed[line.key] += line.quantity
            plan.append((job, picked))
        return plan

    def _commit(self, plan: List[PlannedJob]) -> AllocationResult:
        now_iso = to_iso(self._clock())
        result = AllocationResult()
        deletes = []
        inserts = []

        for job, units in plan:
            if not units:
                continue
            details = [detail_from_unit(u.id, u.data) for u in units]
            log = UsageLogEntry(
                job=job.job,
                customer=job.customer,
                used_at=job.used_at or now_iso,
                created_at=now_iso,
                qty=-len(details),
                details=details,
                status=LogStatus.COMPLETED,
                kind=LogKind.USAGE,
            )
            log_id = self._store.new_id()
            deletes.extend(("delete", coll.INVENTORY, u.id, None) for u in units)
            inserts.append(("set", coll.USAGE_LOGS, log_id, log.to_dict()))

            result.log_ids.append(log_id)
            result.deleted_unit_ids.extend(u.id for u in units)
            result.counts_by_job[job.job] = result.counts_by_job.get(job.job, 0) + len(units)

        # Deletions precede log inserts when chunked
        self._write(deletes + inserts)
        return result

    def _write(self, operations: list) -> None:
        if len(operations) > self._store.max_batch_operations:
            logger.warning(
                f"Allocation needs {len(operations)} writes, above the batch limit of "
                f"{self._store.max_batch_operations}; committing in chunks"
            )
        write_in_chunks(self._store, operations)

    @staticmethod
    def _lines_from_details(details: List[dict]) -> List[AllocationLine]:
        counts: "OrderedDict[Tuple[str, int], int]" = OrderedDict()
        for detail in details:
            key = (detail.get("materialType", ""), coerce_int(detail.get("length")))
            counts[key] = counts.get(key, 0) + (abs(coerce_int(detail.get("qty"), 1)) or 1)
        return [AllocationLine(m, length, q) for (m, length), q in counts.items()]
