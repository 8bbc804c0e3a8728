"""
Main routes (health check).
"""

from flask import Blueprint, current_app, jsonify

from models.timestamps import utc_now_iso

main_bp = Blueprint("main", __name__)


@main_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint for monitoring."""
    store = current_app.config.get("DOCUMENT_STORE")
    due_work = current_app.config.get("DUE_WORK_SERVICE")
    return jsonify({
        "status": "ok" if store is not None else "degraded",
        "environment": current_app.config.get("ENVIRONMENT"),
        "store": type(store).__name__ if store is not None else None,
        "dueWorkRunning": bool(due_work and due_work.is_running),
        "time": utc_now_iso(),
    })
