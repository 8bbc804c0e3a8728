"""
SheetStock - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration (.env via python-dotenv, then a config class)
2. Configures logging
3. Opens ONE document store and injects it into every service
4. Starts the due-work thread (auto-receive + scheduled fulfilment)
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Store + service construction
    ├── Flask request handling (allocations serialized by one lock)
    └── Cleanup on shutdown (stop due-work thread, flush store)

    DueWork Thread (background, optional)
    └── Periodic auto-receive and fulfilment of due scheduled usage

No module-level store handle exists; routes reach services via app.config.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from core.collections import DEFAULT_BACKUP_COLLECTIONS
from core.document_store import DocumentStore, InMemoryDocumentStore, JsonFileDocumentStore
from core.exceptions import (
    BatchLimitExceededError,
    InsufficientStockError,
    NotFoundError,
    PartialMigrationError,
    SheetStockError,
    StoreUnavailableError,
    ValidationError,
)
from services.allocation_service import AllocationService
from services.due_work_service import DueWorkService
from services.inventory_service import InventoryService
from services.ledger_service import LedgerService
from services.repair_service import RepairService
from services.snapshot_service import SnapshotService
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)

# Most specific first: SnapshotNotFoundError is a NotFoundError
ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (StoreUnavailableError, 503),
    (BatchLimitExceededError, 500),
    (PartialMigrationError, 500),
)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In a frozen bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def status_for(error: SheetStockError) -> int:
    """HTTP status code for an application error."""
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def create_store(config) -> DocumentStore:
    """
    Build the document store described by the configuration.

    STORE_PATH set: JsonFileDocumentStore at that path
    STORE_PATH empty: InMemoryDocumentStore
    """
    max_ops = int(config.get("STORE_MAX_BATCH_OPERATIONS", 500))
    store_path = config.get("STORE_PATH")
    if store_path:
        return JsonFileDocumentStore(store_path, max_batch_operations=max_ops)
    logger.warning("STORE_PATH is empty; using an in-memory store (data is not persisted)")
    return InMemoryDocumentStore(max_batch_operations=max_ops)


def create_app(config_object: str = "config.Config", store: Optional[DocumentStore] = None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the config class
        store: Pre-built store (tests); built from config when None

    Returns:
        Configured Flask application

    Raises:
        StoreUnavailableError: If the store file exists but cannot be read
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    if app.config.get("LOG_LEVEL"):
        log_level = getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO)
    else:
        log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        app_name="sheet_stock",
        log_level=log_level,
        log_dir=app.config.get("LOG_DIR"),
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting SheetStock in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # STORE + SERVICES (one store handle, injected everywhere)
    # =========================================================================

    if store is None:
        store = create_store(app.config)
    app.config["DOCUMENT_STORE"] = store

    chunk_size = int(app.config.get("BACKUP_CHUNK_SIZE", 450))

    allocation_service = AllocationService(store)
    inventory_service = InventoryService(store)
    app.config["ALLOCATION_SERVICE"] = allocation_service
    app.config["INVENTORY_SERVICE"] = inventory_service
    app.config["LEDGER_SERVICE"] = LedgerService(store)
    app.config["SNAPSHOT_SERVICE"] = SnapshotService(
        store,
        chunk_size=chunk_size,
        app_namespace=app.config.get("APP_NAMESPACE", "sheet-stock"),
        default_collections=app.config.get("BACKUP_COLLECTIONS") or DEFAULT_BACKUP_COLLECTIONS,
    )
    app.config["REPAIR_SERVICE"] = RepairService(store, chunk_size=chunk_size)
    logger.info("Services initialized")

    # Background due work (disabled when the interval is 0)
    due_work_service = None
    interval = float(app.config.get("DUE_WORK_INTERVAL_SECONDS") or 0)
    if interval > 0:
        due_work_service = DueWorkService(inventory_service, allocation_service, interval)
        due_work_service.start()
    app.config["DUE_WORK_SERVICE"] = due_work_service

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        if due_work_service:
            due_work_service.stop()

        try:
            store.flush()
        except StoreUnavailableError as e:
            logger.error(f"Final store flush failed: {e}")

        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(SheetStockError)
    def handle_app_error(e: SheetStockError):
        status = status_for(e)
        if status >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.warning(f"{type(e).__name__}: {e.message}")
        return jsonify({"error": e.message, "details": e.details}), status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description, "details": {}}), e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"error": "An unexpected error occurred", "details": {}}), 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    # Reloader would start a second due-work thread
    app.run(debug=debug_mode, use_reloader=False)
