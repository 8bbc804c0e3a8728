"""
Usage log routes.

Handles:
- /api/logs                 - List usage logs
- /api/logs/use             - Allocate stock now (FIFO)
- /api/logs/schedule        - Record planned usage
- /api/logs/fulfill-due     - Fulfil every due scheduled log
- /api/logs/<id>/fulfill    - Fulfil one scheduled log
- /api/logs/<id>/reverse    - Return a usage log's sheets to stock
- /api/logs/<id>            - Delete a log
"""

from flask import Blueprint, jsonify, request

from routes.helpers import json_body, sanitize_jobs, service

logs_bp = Blueprint("logs", __name__)


def _allocation_payload() -> dict:
    payload = json_body()
    return dict(payload, jobs=sanitize_jobs(payload.get("jobs")))


@logs_bp.route("/api/logs", methods=["GET"])
def list_logs():
    logs = service("INVENTORY_SERVICE").list_logs(status=request.args.get("status") or None)
    return jsonify({"logs": [log.to_dict(include_id=True) for log in logs]})


@logs_bp.route("/api/logs/use", methods=["POST"])
def use_stock():
    """
    Allocate stock for one or more jobs, all or nothing.

    Returns 409 naming the material, length and quantities when any line
    cannot be met; nothing is deleted in that case.
    """
    result = service("ALLOCATION_SERVICE").allocate(_allocation_payload())
    return jsonify(result.to_dict()), 201


@logs_bp.route("/api/logs/schedule", methods=["POST"])
def schedule_usage():
    log_ids = service("ALLOCATION_SERVICE").schedule(_allocation_payload())
    return jsonify({"logIds": log_ids}), 201


@logs_bp.route("/api/logs/fulfill-due", methods=["POST"])
def fulfill_due():
    return jsonify(service("ALLOCATION_SERVICE").fulfill_due())


@logs_bp.route("/api/logs/<log_id>/fulfill", methods=["POST"])
def fulfill(log_id: str):
    result = service("ALLOCATION_SERVICE").fulfill(log_id)
    return jsonify(result.to_dict())


@logs_bp.route("/api/logs/<log_id>/reverse", methods=["POST"])
def reverse(log_id: str):
    payload = json_body(required=False)
    unit_ids = service("INVENTORY_SERVICE").reverse_usage(
        log_id,
        reschedule_to=payload.get("rescheduleTo") or None,
    )
    return jsonify({"unitIds": unit_ids})


@logs_bp.route("/api/logs/<log_id>", methods=["DELETE"])
def delete_log(log_id: str):
    service("INVENTORY_SERVICE").delete_log(log_id)
    return jsonify({"deleted": log_id})
