"""
Chunked snapshot backup, restore, discovery and export.

Layout:
    snapshots/<id>/<collection>/<doc id>   copies of live documents
    backups/<id>                           index entry {id, createdAt, totalDocs, collections}
    backups_meta/latest                    summary of the newest backup

Chunking:
    The store refuses batches above its ceiling, so every copy, delete and
    write is split into chunks of `chunk_size` (default 450 of 500). Each
    chunk commits before the next one starts. A failure part-way through
    leaves earlier chunks committed and raises PartialMigrationError naming
    the collection and phase; the operation must be re-run from the top.

Restore Semantics:
    Full replacement. For each collection: read the snapshot copy, delete
    every live document, then write the snapshot documents. After a
    successful restore the live collection is exactly the snapshot copy.

Discovery:
    list_snapshots() reads the index. When the index is empty (older data,
    or a backup that failed before indexing) it scans the snapshot
    namespace with collection-group reads and recovers ids from document
    paths. backfill_index() writes index entries for anything the scan
    finds that the index lacks, so the index heals itself.
"""

from __future__ import annotations

import json
from collections import OrderedDict
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from core import collections as coll
from core.document_store import DocumentStore, validate_document_id, write_in_chunks
from core.exceptions import (
    PartialMigrationError,
    SnapshotNotFoundError,
    ValidationError,
)
from models.snapshot import (
    BackupResult,
    RestorePhase,
    RestoreProgress,
    RestoreResult,
    SnapshotInfo,
    generate_snapshot_id,
    is_snapshot_id,
    snapshot_id_to_datetime,
)
from models.timestamps import Clock, to_iso, utc_now
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

# Writes per chunk: ~10% under the usual 500-operation ceiling
DEFAULT_CHUNK_SIZE = 450

ProgressCallback = Callable[[RestoreProgress], None]


class SnapshotService:
    """
    Backup/restore of an explicit, ordered list of collections.

    The service never discovers "all collections" on its own; callers pass
    the list (or rely on the configured default list).

    Usage:
        service = SnapshotService(store, chunk_size=450)
        result = service.backup(["materials", "inventory", "usage_logs"])
        service.restore(result.snapshot_id, ["inventory"], on_progress=print)
    """

    def __init__(
        self,
        store: DocumentStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        app_namespace: str = "sheet-stock",
        clock: Optional[Clock] = None,
        default_collections: Sequence[str] = coll.DEFAULT_BACKUP_COLLECTIONS,
    ):
        """
        Initialize snapshot service.

        Args:
            store: Document store shared with the other services
            chunk_size: Operations per committed chunk
            app_namespace: Written into (and checked on) export payloads
            clock: Returns the current aware datetime (for tests)
            default_collections: Used when a call passes no collection list
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if chunk_size > store.max_batch_operations:
            logger.warning(
                f"Chunk size {chunk_size} exceeds the store batch limit "
                f"{store.max_batch_operations}; using the limit"
            )
            chunk_size = store.max_batch_operations

        self._store = store
        self._chunk_size = chunk_size
        self._app_namespace = app_namespace
        self._clock = clock or utc_now
        self._default_collections = self.validate_collections(default_collections)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def default_collections(self) -> Tuple[str, ...]:
        return self._default_collections

    # =========================================================================
    # IDS AND VALIDATION
    # =========================================================================

    @staticmethod
    def _check_snapshot_id(snapshot_id: str) -> None:
        if not isinstance(snapshot_id, str) or not is_snapshot_id(snapshot_id):
            raise ValidationError(f"Malformed snapshot id: {snapshot_id!r}", "snapshotId")

    @staticmethod
    def validate_collections(collections: Iterable[str]) -> Tuple[str, ...]:
        """
        Check a collection list and drop duplicates (order kept).

        Raises:
            ValidationError: Empty list, empty/slashed name, or one of the
                snapshot service's own namespaces
        """
        if isinstance(collections, str):
            collections = [collections]
        names: List[str] = []
        for name in collections or ():
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Collection names must be non-empty strings", "collections")
            name = name.strip()
            if "/" in name:
                raise ValidationError(f"Collection name cannot contain '/': {name}", "collections")
            if name in coll.RESERVED_COLLECTIONS:
                raise ValidationError(f"'{name}' is reserved for snapshot bookkeeping", "collections")
            if name not in names:
                names.append(name)
        if not names:
            raise ValidationError("At least one collection is required", "collections")
        return tuple(names)

    def generate_snapshot_id(self) -> str:
        """
        Sortable id for a new snapshot (YYYY-MM-DDTHH-MM-SS, UTC).

        Advances one second at a time while the id is already taken.
        """
        moment = self._clock()
        snapshot_id = generate_snapshot_id(moment)
        while self._snapshot_exists(snapshot_id):
            moment = moment + timedelta(seconds=1)
            snapshot_id = generate_snapshot_id(moment)
        return snapshot_id

    # =========================================================================
    # BACKUP
    # =========================================================================

    def backup(self, collections: Optional[Iterable[str]] = None) -> BackupResult:
        """
        Copy collections into a new snapshot, then index it.

        Args:
            collections: Ordered collection names (default list when None)

        Returns:
            BackupResult with the snapshot id and document counts

        Raises:
            ValidationError: Bad collection list
            PartialMigrationError: A read, chunk write or the index write
                failed (chunks already written stay written)
        """
        names = self.validate_collections(
            self._default_collections if collections is None else collections
        )
        snapshot_id = self.generate_snapshot_id()
        counts: "OrderedDict[str, int]" = OrderedDict()

        logger.info(f"Backup {snapshot_id} started: {', '.join(names)}")

        for name in names:
            try:
                documents = self._store.list_documents(name)
            except Exception as e:
                raise self._failed("backup", snapshot_id, name, "read", e) from e

            target = coll.snapshot_collection_path(snapshot_id, name)
            operations = [("set", target, doc.id, doc.data) for doc in documents]
            try:
                write_in_chunks(self._store, operations, self._chunk_size)
            except Exception as e:
                raise self._failed("backup", snapshot_id, name, "write", e) from e

            counts[name] = len(documents)
            logger.debug(f"Backup {snapshot_id}: {name} copied ({len(documents)} docs)")

        total_docs = sum(counts.values())
        entry = {
            "id": snapshot_id,
            "createdAt": to_iso(self._clock()),
            "totalDocs": total_docs,
            "collections": list(names),
            "counts": dict(counts),
        }
        try:
            batch = self._store.batch()
            batch.set(coll.BACKUPS_INDEX, snapshot_id, entry)
            batch.set(coll.BACKUPS_META, coll.LATEST_DOC_ID, entry, merge=True)
            batch.commit()
        except Exception as e:
            raise self._failed("backup", snapshot_id, coll.BACKUPS_INDEX, "index", e) from e

        logger.info(f"Backup {snapshot_id} complete: {total_docs} docs")
        return BackupResult(snapshot_id=snapshot_id, total_docs=total_docs, counts=dict(counts))

    # =========================================================================
    # RESTORE
    # =========================================================================

    def restore(
        self,
        snapshot_id: str,
        collections: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Replace live collections with their snapshot copies.

        DESTRUCTIVE: live documents absent from the snapshot are deleted.

        Args:
            snapshot_id: Snapshot to restore from
            collections: Collections to restore, in order (default: the
                collections recorded for the snapshot, else the default list)
            on_progress: Receives RestoreProgress events; percent never
                decreases within a collection

        Raises:
            SnapshotNotFoundError: Unknown snapshot id
            ValidationError: Malformed snapshot id, bad collection list, or a
                collection the snapshot is recorded as not containing
            PartialMigrationError: A read, delete or write failed
        """
        self._check_snapshot_id(snapshot_id)
        entry = self._index_entry(snapshot_id)
        if entry is None and not self._snapshot_exists(snapshot_id):
            raise SnapshotNotFoundError(snapshot_id)

        recorded = tuple((entry or {}).get("collections") or ())
        if collections is None:
            collections = recorded or self._default_collections
        names = self.validate_collections(collections)
        if recorded:
            missing = [n for n in names if n not in recorded]
            if missing:
                raise ValidationError(
                    f"Snapshot {snapshot_id} does not contain: {', '.join(missing)}",
                    "collections",
                )

        logger.info(f"Restore from {snapshot_id} started: {', '.join(names)}")
        restored: Dict[str, int] = {}
        deleted: Dict[str, int] = {}

        for index, name in enumerate(names):
            source = coll.snapshot_collection_path(snapshot_id, name)
            try:
                documents = [(doc.id, doc.data) for doc in self._store.list_documents(source)]
            except Exception as e:
                raise self._failed("restore", snapshot_id, name, "read", e) from e

            deleted[name], restored[name] = self._load_collection(
                "restore", snapshot_id, name, index, len(names),
                documents, replace=True, on_progress=on_progress,
            )

        result = RestoreResult(snapshot_id=snapshot_id, restored=restored, deleted=deleted)
        logger.info(f"Restore from {snapshot_id} complete: {result.total_restored} docs written")
        return result

    def _load_collection(
        self,
        operation: str,
        snapshot_id: Optional[str],
        name: str,
        index: int,
        count: int,
        documents: List[Tuple[str, Dict[str, Any]]],
        replace: bool,
        on_progress: Optional[ProgressCallback],
    ) -> Tuple[int, int]:
        """
        Write documents into one live collection, optionally clearing it first.

        Progress: read = 0%, deletes 0-50%, writes 50-100%, complete = 100%.

        Returns:
            (documents deleted, documents written)
        """
        def emit(phase: RestorePhase, done: int, total: int, percent: float) -> None:
            if on_progress is not None:
                on_progress(RestoreProgress(
                    collection=name,
                    collection_index=index,
                    collection_count=count,
                    phase=phase,
                    done=done,
                    total=total,
                    percent=round(percent, 2),
                ))

        emit(RestorePhase.READ, 0, len(documents), 0.0)

        removed = 0
        if replace:
            try:
                live_ids = [doc.id for doc in self._store.list_documents(name)]
                delete_ops = [("delete", name, doc_id, None) for doc_id in live_ids]
                removed = write_in_chunks(
                    self._store, delete_ops, self._chunk_size,
                    on_chunk=lambda done, total: emit(
                        RestorePhase.DELETE_PROGRESS, done, total, 50.0 * done / total
                    ),
                )
            except Exception as e:
                raise self._failed(operation, snapshot_id, name, "delete", e) from e
            logger.debug(f"{operation.capitalize()}: {name} cleared ({removed} docs)")

        write_ops = [("set", name, doc_id, data) for doc_id, data in documents]
        try:
            written = write_in_chunks(
                self._store, write_ops, self._chunk_size,
                on_chunk=lambda done, total: emit(
                    RestorePhase.WRITE_PROGRESS, done, total, 50.0 + 50.0 * done / total
                ),
            )
        except Exception as e:
            raise self._failed(operation, snapshot_id, name, "write", e) from e

        emit(RestorePhase.COLLECTION_COMPLETE, written, len(documents), 100.0)
        return removed, written

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    def latest(self) -> Optional[Dict[str, Any]]:
        """Summary of the newest backup, or None if none was ever indexed."""
        doc = self._store.get(coll.BACKUPS_META, coll.LATEST_DOC_ID)
        return doc.data if doc else None

    def list_snapshots(self) -> List[SnapshotInfo]:
        """
        Every known snapshot, newest first.

        Uses the index; scans the snapshot namespace only when the index is
        empty.
        """
        indexed = [
            SnapshotInfo(
                id=doc.id,
                created_at=doc.data.get("createdAt"),
                total_docs=int(doc.data.get("totalDocs") or 0),
                indexed=True,
                collections=tuple(doc.data.get("collections") or ()),
            )
            for doc in self._store.list_documents(coll.BACKUPS_INDEX)
        ]
        if indexed:
            return sorted(indexed, key=lambda info: info.id, reverse=True)

        logger.info("Snapshot index is empty; scanning snapshot namespace")
        return self._scan_snapshots()

    def backfill_index(self) -> Dict[str, Any]:
        """
        Create index entries for snapshots that only exist as documents.

        Existing entries are never modified. Running this twice leaves the
        same state as running it once.

        Returns:
            {"created": [ids], "existing": count, "latestSet": bool}
        """
        indexed_ids = {doc.id for doc in self._store.list_documents(coll.BACKUPS_INDEX)}
        scanned = self._scan_snapshots()

        operations = []
        created = []
        for info in scanned:
            if info.id in indexed_ids:
                continue
            operations.append(("set", coll.BACKUPS_INDEX, info.id, {
                "id": info.id,
                "createdAt": info.created_at,
                "totalDocs": info.total_docs,
                "collections": list(info.collections),
                "backfilled": True,
            }))
            created.append(info.id)

        latest_set = False
        all_ids = sorted(indexed_ids | {info.id for info in scanned}, reverse=True)
        if all_ids and self.latest() is None:
            newest = all_ids[0]
            newest_info = next((i for i in scanned if i.id == newest), None)
            if newest_info is None:
                newest_entry = self._index_entry(newest) or {"id": newest}
            else:
                newest_entry = {
                    "id": newest,
                    "createdAt": newest_info.created_at,
                    "totalDocs": newest_info.total_docs,
                }
            operations.append(("set", coll.BACKUPS_META, coll.LATEST_DOC_ID, newest_entry))
            latest_set = True

        try:
            write_in_chunks(self._store, operations, self._chunk_size)
        except Exception as e:
            raise self._failed("backfill", None, coll.BACKUPS_INDEX, "index", e) from e

        if created or latest_set:
            logger.info(f"Backfilled {len(created)} snapshot index entr{'y' if len(created) == 1 else 'ies'}")
        return {"created": created, "existing": len(indexed_ids), "latestSet": latest_set}

    def _scan_snapshots(self) -> List[SnapshotInfo]:
        """
        Recover snapshots from document paths (snapshots/<id>/<collection>/<doc>).

        O(total snapshot documents). Only the default collection names are
        scanned, since collection-group reads need a name.
        """
        found: Dict[str, "OrderedDict[str, int]"] = {}
        for name in self._default_collections:
            for doc in self._store.collection_group(name):
                segments = doc.path.split("/")
                if len(segments) != 4 or segments[0] != coll.SNAPSHOTS:
                    continue
                counts = found.setdefault(segments[1], OrderedDict())
                counts[name] = counts.get(name, 0) + 1

        infos = []
        for snapshot_id, counts in found.items():
            created = snapshot_id_to_datetime(snapshot_id)
            infos.append(SnapshotInfo(
                id=snapshot_id,
                created_at=to_iso(created) if created else None,
                total_docs=sum(counts.values()),
                indexed=False,
                collections=tuple(counts),
            ))
        return sorted(infos, key=lambda info: info.id, reverse=True)

    def _index_entry(self, snapshot_id: str) -> Optional[Dict[str, Any]]:
        validate_document_id(snapshot_id)
        doc = self._store.get(coll.BACKUPS_INDEX, snapshot_id)
        return doc.data if doc else None

    def _snapshot_exists(self, snapshot_id: str) -> bool:
        if self._index_entry(snapshot_id) is not None:
            return True
        return any(
            self._store.query(coll.snapshot_collection_path(snapshot_id, name), limit=1)
            for name in self._default_collections
        )

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    def export_data(
        self,
        collections: Optional[Iterable[str]] = None,
        snapshot_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build a JSON-serializable export of live data or of a snapshot.

        Returns:
            {"appNamespace", "createdAt", "snapshotId", "data": {collection: [documents]}}
            Each document carries its id under "id".
        """
        names = self.validate_collections(
            self._default_collections if collections is None else collections
        )
        if snapshot_id is not None:
            self._check_snapshot_id(snapshot_id)
            if not self._snapshot_exists(snapshot_id):
                raise SnapshotNotFoundError(snapshot_id)

        data: Dict[str, List[Dict[str, Any]]] = {}
        for name in names:
            source = coll.snapshot_collection_path(snapshot_id, name) if snapshot_id else name
            data[name] = [doc.to_dict() for doc in self._store.list_documents(source)]

        total = sum(len(docs) for docs in data.values())
        logger.info(f"Exported {total} docs from {snapshot_id or 'live data'}")
        return {
            "appNamespace": self._app_namespace,
            "createdAt": to_iso(self._clock()),
            "snapshotId": snapshot_id,
            "data": data,
        }

    def write_export_file(self, path: str, payload: Dict[str, Any]) -> Path:
        """Write an export payload to a JSON file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        logger.info(f"Export written to {target}")
        return target

    def read_export_file(self, path: str) -> Dict[str, Any]:
        """
        Read an export payload from a JSON file.

        Raises:
            ValidationError: Not JSON, or not an export payload
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Export file is not valid JSON: {e}", "file")
        self._validate_payload(payload)
        return payload

    def import_data(
        self,
        payload: Dict[str, Any],
        replace: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Write an export payload into the live collections.

        Args:
            payload: Output of export_data() / read_export_file()
            replace: Clear each live collection first (same semantics as
                restore); otherwise documents are upserted by id
            on_progress: Same progress contract as restore()

        Raises:
            ValidationError: Malformed payload (checked before any write)
            PartialMigrationError: A delete or write failed
        """
        self._validate_payload(payload)
        namespace = payload.get("appNamespace")
        if namespace and namespace != self._app_namespace:
            logger.warning(
                f"Importing data exported from namespace '{namespace}' into '{self._app_namespace}'"
            )

        data = payload["data"]
        names = self.validate_collections(list(data.keys()))
        prepared: Dict[str, List[Tuple[str, Dict[str, Any]]]] = {}
        for name in names:
            prepared[name] = []
            for document in data[name]:
                fields = dict(document)
                doc_id = validate_document_id(str(fields.pop("id", "") or ""))
                prepared[name].append((doc_id, fields))

        snapshot_id = payload.get("snapshotId")
        restored: Dict[str, int] = {}
        deleted: Dict[str, int] = {}
        for index, name in enumerate(names):
            deleted[name], restored[name] = self._load_collection(
                "import", snapshot_id, name, index, len(names),
                prepared[name], replace=replace, on_progress=on_progress,
            )

        result = RestoreResult(snapshot_id=snapshot_id, restored=restored, deleted=deleted)
        mode = "replace" if replace else "merge"
        logger.info(f"Import ({mode}) complete: {result.total_restored} docs written")
        return result

    @staticmethod
    def _validate_payload(payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ValidationError("Export payload must be an object", "payload")
        data = payload.get("data")
        if not isinstance(data, dict) or not data:
            raise ValidationError("Export payload has no 'data' collections", "data")
        for name, documents in data.items():
            if not isinstance(documents, list) or not all(isinstance(d, dict) for d in documents):
                raise ValidationError(f"Collection '{name}' must be a list of documents", "data")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _failed(
        operation: str,
        snapshot_id: Optional[str],
        collection: str,
        phase: str,
        error: Exception,
    ) -> PartialMigrationError:
        label = f"{operation} of {snapshot_id}" if snapshot_id else operation
        logger.error(f"{label.capitalize()} failed during {phase} of '{collection}': {error}")
        return PartialMigrationError(operation, snapshot_id, collection, phase, error)
