"""
Background runner for date-driven stock changes.

Two things happen purely because time passes:
    - Ordered sheets whose arrivalDate has passed are received
    - Scheduled usage logs whose usedAt has passed are fulfilled

DueWorkService runs both on a daemon thread every `interval_seconds`.
Each pass goes through the same service methods the HTTP routes use, so
allocation still serializes through the allocation lock.

Usage:
    # At app startup
    due_work = DueWorkService(inventory_service, allocation_service, 300)
    due_work.start()

    # At app shutdown
    due_work.stop()
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from services.allocation_service import AllocationService
from services.inventory_service import InventoryService
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class DueWorkService:
    """
    Periodic auto-receive + scheduled-usage fulfilment.

    Attributes:
        interval_seconds: Time between passes
        is_running: Whether the background thread is active
    """

    def __init__(
        self,
        inventory_service: InventoryService,
        allocation_service: AllocationService,
        interval_seconds: float = 300.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._inventory = inventory_service
        self._allocation = allocation_service
        self._interval = interval_seconds

        # Thread control
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._is_running = False

        # Track consecutive failures for logging
        self._consecutive_failures = 0

        logger.info(f"DueWorkService initialized (interval: {interval_seconds}s)")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def start(self) -> None:
        """
        Start the background thread. The first pass runs immediately.

        Safe to call multiple times.
        """
        if self._is_running:
            logger.warning("DueWorkService already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="DueWork",
            daemon=True
        )
        self._is_running = True
        self._thread.start()
        logger.info("Due-work thread started")

    def stop(self) -> None:
        """Signal the thread to stop and wait for it. Safe to call multiple times."""
        if not self._is_running:
            return

        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("Due-work thread did not stop cleanly")

        self._is_running = False
        self._thread = None
        logger.info("Due-work thread stopped")

    def run_once(self) -> Dict[str, Any]:
        """
        One pass in the calling thread.

        Returns:
            {"received": [...unit ids], "fulfilled": [...log ids], "skipped": [...log ids]}
        """
        received = self._inventory.auto_receive_due()
        fulfilment = self._allocation.fulfill_due()
        if received or fulfilment["fulfilled"]:
            logger.info(
                f"Due work: {len(received)} sheet(s) received, "
                f"{len(fulfilment['fulfilled'])} scheduled log(s) fulfilled"
            )
        return {"received": received, **fulfilment}

    def _loop(self) -> None:
        logger.info("Due-work loop starting")

        self._safe_run()
        while not self._stop_event.wait(timeout=self._interval):
            self._safe_run()

        logger.info("Due-work loop exiting")

    def _safe_run(self) -> bool:
        try:
            self.run_once()
        except Exception as e:
            self._consecutive_failures += 1
            if self._consecutive_failures == 1:
                logger.warning(f"Due-work pass failed: {e}")
            elif self._consecutive_failures <= 3:
                logger.error(f"Due-work pass failed ({self._consecutive_failures} consecutive): {e}")
            elif self._consecutive_failures % 5 == 0:
                # Only every 5th failure after that
                logger.error(
                    f"Due-work pass still failing ({self._consecutive_failures} consecutive): {e}"
                )
            return False

        if self._consecutive_failures > 0:
            logger.info(f"Due work recovered after {self._consecutive_failures} failures")
        self._consecutive_failures = 0
        return True
