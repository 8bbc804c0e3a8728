"""
Data models for SheetStock.

This module contains dataclasses for:
- InventoryUnit: One physical sheet (one "inventory" document)
- MaterialCatalogEntry: Category/thickness/density of one material
- UsageLogEntry: One usage transaction with consumed-sheet snapshots
- LedgerRow: One reconciled addition/removal for display
- SnapshotInfo / BackupResult / RestoreProgress: Backup subsystem records

Models convert to/from the store's camelCase documents via
to_dict()/from_dict(). The store, not any model instance, is authoritative.
"""

from .inventory import (
    InventoryUnit,
    MaterialCatalogEntry,
    UnitStatus,
    STANDARD_LENGTHS,
)
from .usage_log import UsageLogEntry, LogKind, LogStatus
from .ledger import LedgerRow
from .snapshot import (
    SnapshotInfo,
    BackupResult,
    RestorePhase,
    RestoreProgress,
    RestoreResult,
)

__all__ = [
    # Inventory models
    "InventoryUnit",
    "MaterialCatalogEntry",
    "UnitStatus",
    "STANDARD_LENGTHS",
    # Usage log models
    "UsageLogEntry",
    "LogKind",
    "LogStatus",
    # Ledger
    "LedgerRow",
    # Snapshot models
    "SnapshotInfo",
    "BackupResult",
    "RestorePhase",
    "RestoreProgress",
    "RestoreResult",
]
