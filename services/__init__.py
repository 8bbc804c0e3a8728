"""
Services layer for SheetStock.

This module contains the business logic services:
- AllocationService: FIFO allocation, scheduled usage and fulfilment
- InventoryService: Catalog, order groups, receiving, corrections, reversal
- LedgerService: Ledger reconciliation and inventory summaries (read only)
- SnapshotService: Chunked backup/restore, snapshot index, export/import
- RepairService: Best-effort referential repair of catalog keys
- DueWorkService: Background auto-receive and scheduled fulfilment

Every service receives the same DocumentStore handle in its constructor.
"""

from .allocation_service import AllocationService
from .inventory_service import InventoryService
from .ledger_service import LedgerService, build_ledger
from .snapshot_service import SnapshotService
from .repair_service import RepairService
from .due_work_service import DueWorkService

__all__ = [
    "AllocationService",
    "InventoryService",
    "LedgerService",
    "build_ledger",
    "SnapshotService",
    "RepairService",
    "DueWorkService",
]
