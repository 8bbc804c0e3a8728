"""
Configuration for SheetStock.

Values come from the environment (optionally via a .env file).
STORE_PATH selects the persistent JSON-file store; leave it empty to run
against a throwaway in-memory store.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _csv_env(name: str, default: str) -> tuple:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    TESTING = False

    # Identifier written into exported backup files
    APP_NAMESPACE = os.environ.get("APP_NAMESPACE", "sheet-stock")

    # ==========================================================================
    # Document store
    # ==========================================================================
    # STORE_PATH: JSON file backing the store ("" = in-memory only)
    # STORE_MAX_BATCH_OPERATIONS: hard per-batch ceiling of the store
    # BACKUP_CHUNK_SIZE: writes per chunk for backup/restore/repair. Keep it
    #   ~10% under the ceiling (450 of 500).
    # ==========================================================================
    STORE_PATH = os.environ.get("STORE_PATH", str(BASE_DIR / "data" / "store.json"))
    STORE_MAX_BATCH_OPERATIONS = int(os.environ.get("STORE_MAX_BATCH_OPERATIONS", "500"))
    BACKUP_CHUNK_SIZE = int(os.environ.get("BACKUP_CHUNK_SIZE", "450"))

    # Explicit, ordered list of collections covered by backup/restore/export
    BACKUP_COLLECTIONS = _csv_env("BACKUP_COLLECTIONS", "materials,inventory,usage_logs")

    # Seconds between background runs of auto-receive + scheduled fulfilment
    # (0 disables the background thread)
    DUE_WORK_INTERVAL_SECONDS = float(os.environ.get("DUE_WORK_INTERVAL_SECONDS", "300"))

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "")
    LOG_DIR = os.environ.get("LOG_DIR", str(BASE_DIR / "logs"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    ENVIRONMENT = "production"


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    ENVIRONMENT = "testing"
    STORE_PATH = ""
    BACKUP_CHUNK_SIZE = 3
    STORE_MAX_BATCH_OPERATIONS = 5
    DUE_WORK_INTERVAL_SECONDS = 0
