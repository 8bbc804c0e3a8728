"""
Flask route blueprints for SheetStock.

This module contains all route handlers organized by functionality:
- main: Health check
- inventory: Units, order groups, receiving, count corrections, materials
- logs: Usage logs, allocation, scheduling, fulfilment, reversal
- ledger: Per-material ledgers (JSON and CSV)
- backups: Snapshots, restore, index backfill, export/import
- maintenance: Repair tasks and on-demand due work

Each blueprint is registered with the Flask app in create_app().
"""

from .main import main_bp
from .inventory import inventory_bp
from .logs import logs_bp
from .ledger import ledger_bp
from .backups import backups_bp
from .maintenance import maintenance_bp

__all__ = [
    "main_bp",
    "inventory_bp",
    "logs_bp",
    "ledger_bp",
    "backups_bp",
    "maintenance_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(main_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(logs_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(backups_bp)
    app.register_blueprint(maintenance_bp)
