"""
Logical persisted-state layout.

    inventory/*                       one document per sheet
    usage_logs/*                      one document per usage transaction
    materials/*                       material catalog, keyed by material
    snapshots/{id}/{collection}/*     snapshot copies
    backups_meta/latest               most recent snapshot summary
    backups/{id}                      snapshot index entries
"""

INVENTORY = "inventory"
USAGE_LOGS = "usage_logs"
MATERIALS = "materials"

SNAPSHOTS = "snapshots"
BACKUPS_INDEX = "backups"
BACKUPS_META = "backups_meta"
LATEST_DOC_ID = "latest"

# Namespaces owned by the snapshot service; never valid backup sources
RESERVED_COLLECTIONS = frozenset({SNAPSHOTS, BACKUPS_INDEX, BACKUPS_META})

DEFAULT_BACKUP_COLLECTIONS = (MATERIALS, INVENTORY, USAGE_LOGS)


def snapshot_collection_path(snapshot_id: str, collection: str) -> str:
    """Path of one collection's copy inside a snapshot."""
    return f"{SNAPSHOTS}/{snapshot_id}/{collection}"
