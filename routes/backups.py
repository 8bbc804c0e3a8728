"""
Backup routes.

Handles:
- /api/backups                  - List snapshots / create a backup
- /api/backups/<id>/restore     - Restore (DESTRUCTIVE full replacement)
- /api/backups/backfill         - Heal the snapshot index
- /api/backups/export           - Download live data or a snapshot as JSON
- /api/backups/import           - Load an export file (merge, or replace)
"""

import json

from flask import Blueprint, Response, jsonify, request

from routes.helpers import json_body, query_flag, query_list, service
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

backups_bp = Blueprint("backups", __name__)


def _collections(payload: dict):
    # Absent means the default list; an explicit empty list is rejected
    return payload.get("collections")


@backups_bp.route("/api/backups", methods=["GET"])
def list_backups():
    snapshot_service = service("SNAPSHOT_SERVICE")
    return jsonify({
        "snapshots": [info.to_dict() for info in snapshot_service.list_snapshots()],
        "latest": snapshot_service.latest(),
    })


@backups_bp.route("/api/backups", methods=["POST"])
def create_backup():
    payload = json_body(required=False)
    result = service("SNAPSHOT_SERVICE").backup(_collections(payload))
    return jsonify(result.to_dict()), 201


@backups_bp.route("/api/backups/<snapshot_id>/restore", methods=["POST"])
def restore_backup(snapshot_id: str):
    """
    Restore a snapshot over the live collections.

    The response carries the progress events emitted along the way so a
    client can replay coarse progress after the fact.
    """
    payload = json_body(required=False)
    events = []
    logger.info(f"Restore of {snapshot_id} requested")
    result = service("SNAPSHOT_SERVICE").restore(
        snapshot_id,
        _collections(payload),
        on_progress=lambda progress: events.append(progress.to_dict()),
    )
    body = result.to_dict()
    body["progress"] = events
    return jsonify(body)


@backups_bp.route("/api/backups/backfill", methods=["POST"])
def backfill_index():
    return jsonify(service("SNAPSHOT_SERVICE").backfill_index())


@backups_bp.route("/api/backups/export", methods=["GET"])
def export_backup():
    """Export as a downloadable JSON file (?snapshotId=...&collections=a,b)."""
    snapshot_id = request.args.get("snapshotId") or None
    payload = service("SNAPSHOT_SERVICE").export_data(
        query_list("collections"),
        snapshot_id=snapshot_id,
    )
    filename = f"sheet-stock-{snapshot_id or 'live'}.json"
    return Response(
        json.dumps(payload, indent=2, sort_keys=True),
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename=\"{filename}\""},
    )


@backups_bp.route("/api/backups/import", methods=["POST"])
def import_backup():
    """Import an export payload; ?replace=1 clears each collection first."""
    replace = query_flag("replace")
    events = []
    result = service("SNAPSHOT_SERVICE").import_data(
        json_body(),
        replace=replace,
        on_progress=lambda progress: events.append(progress.to_dict()),
    )
    body = result.to_dict()
    body["progress"] = events
    return jsonify(body)
