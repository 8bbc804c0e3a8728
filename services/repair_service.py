"""
Best-effort repair of referential drift between inventory and the catalog.

These routines are recovery heuristics, not correctness guarantees. They
log and continue per item: a document that cannot be repaired is counted
and skipped, it never aborts the rest of the run. Writes are chunked; when
a chunk fails its operations are retried one by one so a single bad
document only costs itself.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from core import collections as coll
from core.document_store import DocumentStore, iter_chunks, write_in_chunks
from core.exceptions import NotFoundError, SheetStockError, ValidationError
from models.inventory import gauge_from_material, thickness_from_material
from models.timestamps import Clock, parse_timestamp, to_iso, utc_now
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 450

# lb/in^3
STEEL_DENSITY = 0.2833
ALUMINUM_DENSITY = 0.0975

Operation = Tuple[str, str, str, Optional[Dict[str, Any]]]


def guess_category(material_type: str) -> str:
    """Category from substrings of the material key ('Recovered' if nothing fits)."""
    text = (material_type or "").upper()
    if "GALV" in text:
        return "Galvanized"
    if "SATIN" in text:
        return "Satin Coat"
    if "SS" in text:
        return "Stainless Steel"
    if "WHITE" in text or "PAINT" in text:
        return "Pre-Paint"
    if "ALUM" in text:
        return "Aluminum"
    return "Recovered"


def default_density(category: str) -> float:
    if "ALUM" in (category or "").upper():
        return ALUMINUM_DENSITY
    return STEEL_DENSITY


def material_key_variants(key: str) -> List[str]:
    """Spellings a drifted material key may correspond to (separator and case swaps)."""
    stripped = (key or "").strip()
    variants = [
        key,
        stripped,
        stripped.replace("/", "-"),
        stripped.replace("-", "/"),
        stripped.replace("_", "-"),
        stripped.upper(),
        stripped.upper().replace("/", "-"),
    ]
    return list(OrderedDict.fromkeys(v for v in variants if v))


def resolve_material_key(key: str, catalog_keys: Set[str]) -> Optional[str]:
    """The single catalog key a drifted key maps to, or None (no match or ambiguous)."""
    candidates = [v for v in material_key_variants(key) if v in catalog_keys]
    return candidates[0] if len(candidates) == 1 else None


class RepairService:
    """
    Catalog/inventory repair routines.

    Usage:
        service = RepairService(store)
        service.repair_referential_keys()
        service.rebuild_missing_catalog_entries()
    """

    def __init__(
        self,
        store: DocumentStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._chunk_size = min(chunk_size, store.max_batch_operations)
        self._clock = clock or utc_now

    # =========================================================================
    # REFERENTIAL KEYS
    # =========================================================================

    def repair_referential_keys(self, catalog_keys: Optional[Iterable[str]] = None) -> Dict[str, int]:
        """
        Point drifted materialType values back at canonical catalog keys.

        A value is only rewritten when exactly one variant of it is a
        catalog key; ambiguous values are left untouched.

        Returns:
            Counts: updated, logsUpdated, ambiguous, unmatched, failed
        """
        keys = set(catalog_keys) if catalog_keys is not None else self._catalog_keys()
        counts = {"updated": 0, "logsUpdated": 0, "ambiguous": 0, "unmatched": 0, "failed": 0}
        operations: List[Operation] = []

        for doc in self._store.list_documents(coll.INVENTORY):
            material_type = doc.data.get("materialType")
            if not isinstance(material_type, str) or not material_type or material_type in keys:
                continue
            candidates = [v for v in material_key_variants(material_type) if v in keys]
            if len(candidates) == 1:
                operations.append(("update", coll.INVENTORY, doc.id, {
                    "materialType": candidates[0],
                    "gauge": gauge_from_material(candidates[0]),
                }))
            elif candidates:
                logger.warning(f"Ambiguous material key '{material_type}' on {doc.id}: {candidates}")
                counts["ambiguous"] += 1
            else:
                counts["unmatched"] += 1

        log_operations: List[Operation] = []
        for doc in self._store.list_documents(coll.USAGE_LOGS):
            details = doc.data.get("details")
            if not isinstance(details, list):
                continue
            changed = False
            new_details = []
            for detail in details:
                material_type = detail.get("materialType") if isinstance(detail, dict) else None
                if isinstance(material_type, str) and material_type and material_type not in keys:
                    resolved = resolve_material_key(material_type, keys)
                    if resolved:
                        detail = dict(detail, materialType=resolved)
                        changed = True
                new_details.append(detail)
            if changed:
                log_operations.append(("update", coll.USAGE_LOGS, doc.id, {"details": new_details}))

        committed, failed = self._commit_best_effort(operations)
        counts["updated"] = len(committed)
        counts["failed"] += failed
        committed, failed = self._commit_best_effort(log_operations)
        counts["logsUpdated"] = len(committed)
        counts["failed"] += failed

        logger.info(f"Referential key repair: {counts}")
        return counts

    # =========================================================================
    # CATALOG
    # =========================================================================

    def rebuild_missing_catalog_entries(self, catalog_keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Synthesize catalog entries for materials referenced by inventory
        but missing from the catalog.

        Category is guessed from the key, thickness from its gauge or
        decimal size, density from the category.

        Returns:
            {"created": count, "keys": [...], "failed": count}
        """
        keys = set(catalog_keys) if catalog_keys is not None else self._catalog_keys()
        missing: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

        for doc in self._store.list_documents(coll.INVENTORY):
            material_type = doc.data.get("materialType")
            if not isinstance(material_type, str) or not material_type:
                continue
            if material_type in keys or material_type in missing:
                continue
            if "/" in material_type:
                logger.warning(f"Cannot create catalog entry for '{material_type}': key contains '/'")
                continue
            category = guess_category(material_type)
            missing[material_type] = {
                "category": category,
                "thickness": thickness_from_material(material_type),
                "density": default_density(category),
            }

        operations = [("merge", coll.MATERIALS, key, entry) for key, entry in missing.items()]
        committed, failed = self._commit_best_effort(operations)
        created = [op[2] for op in committed]

        if missing:
            logger.info(f"Rebuilt {len(created)} missing catalog entr{'y' if len(created) == 1 else 'ies'}")
        return {"created": len(created), "keys": created, "failed": failed}

    def rename_material(self, old_key: str, new_key: str) -> Dict[str, int]:
        """
        Move a catalog entry to a new key and rewrite every reference.

        Slashes in new_key become '-'. If new_key already exists its entry
        is kept.

        Raises:
            NotFoundError: old_key is not in the catalog
            ValidationError: Empty new key
        """
        new_key = (new_key or "").strip().replace("/", "-")
        if not new_key:
            raise ValidationError("New material key is required", "newKey")
        old_doc = self._store.get(coll.MATERIALS, old_key)
        if old_doc is None:
            raise NotFoundError(coll.MATERIALS, old_key)
        if new_key == old_key:
            return {"materialsCreated": 0, "inventoryUpdated": 0, "usageLogsUpdated": 0, "materialsDeleted": 0}

        operations: List[Operation] = []
        created = 0
        if self._store.get(coll.MATERIALS, new_key) is None:
            operations.append(("set", coll.MATERIALS, new_key, old_doc.data))
            created = 1

        units = self._store.query(coll.INVENTORY, {"materialType": old_key})
        for doc in units:
            operations.append(("update", coll.INVENTORY, doc.id, {
                "materialType": new_key,
                "gauge": gauge_from_material(new_key),
            }))

        logs_updated = 0
        for doc in self._store.list_documents(coll.USAGE_LOGS):
            details = doc.data.get("details")
            if not isinstance(details, list):
                continue
            if not any(isinstance(d, dict) and d.get("materialType") == old_key for d in details):
                continue
            new_details = [
                dict(d, materialType=new_key) if isinstance(d, dict) and d.get("materialType") == old_key else d
                for d in details
            ]
            operations.append(("update", coll.USAGE_LOGS, doc.id, {"details": new_details}))
            logs_updated += 1

        operations.append(("delete", coll.MATERIALS, old_key, None))
        write_in_chunks(self._store, operations, self._chunk_size)

        logger.info(f"Material renamed: {old_key} -> {new_key}")
        return {
            "materialsCreated": created,
            "inventoryUpdated": len(units),
            "usageLogsUpdated": logs_updated,
            "materialsDeleted": 1,
        }

    # =========================================================================
    # USAGE LOGS
    # =========================================================================

    def backfill_log_created_at(self) -> Dict[str, int]:
        """
        Give usage logs without createdAt one (from usedAt, else now).

        Returns:
            {"updated": count, "failed": count}
        """
        now_iso = to_iso(self._clock())
        operations: List[Operation] = []
        for doc in self._store.list_documents(coll.USAGE_LOGS):
            if doc.data.get("createdAt"):
                continue
            used_at = parse_timestamp(doc.data.get("usedAt"))
            operations.append(("update", coll.USAGE_LOGS, doc.id, {
                "createdAt": to_iso(used_at) if used_at else now_iso,
            }))

        committed, failed = self._commit_best_effort(operations)
        if operations:
            logger.info(f"Backfilled createdAt on {len(committed)} usage log(s)")
        return {"updated": len(committed), "failed": failed}

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _catalog_keys(self) -> Set[str]:
        return {doc.id for doc in self._store.list_documents(coll.MATERIALS)}

    def _commit_best_effort(self, operations: List[Operation]) -> Tuple[List[Operation], int]:
        """
        Commit in chunks; retry a failed chunk one operation at a time.

        Returns:
            (operations committed, number of operations that failed)
        """
        committed: List[Operation] = []
        failed = 0
        for chunk in iter_chunks(operations, self._chunk_size):
            try:
                write_in_chunks(self._store, chunk, self._chunk_size)
                committed.extend(chunk)
                continue
            except SheetStockError as e:
                logger.warning(f"Repair chunk of {len(chunk)} failed ({e.message}); retrying one by one")

            for operation in chunk:
                try:
                    write_in_chunks(self._store, [operation], 1)
                    committed.append(operation)
                except SheetStockError as e:
                    logger.warning(f"Skipping {operation[1]}/{operation[2]}: {e.message}")
                    failed += 1
        return committed, failed
