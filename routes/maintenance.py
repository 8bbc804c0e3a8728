"""
Maintenance routes.

POST /api/maintenance/<task> runs one repair or housekeeping task:
- repair-keys           - Point drifted materialType values at catalog keys
- rebuild-catalog       - Synthesize catalog entries for orphaned materials
- backfill-created-at   - Give usage logs without createdAt one
- rename-material       - Move a catalog key ({oldKey, newKey})
- due-work              - Auto-receive due orders + fulfil due scheduled logs
"""

from flask import Blueprint, jsonify

from core.exceptions import NotFoundError
from routes.helpers import json_body, sanitize_text, service
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

maintenance_bp = Blueprint("maintenance", __name__)


def _due_work():
    due_work = service("DUE_WORK_SERVICE")
    if due_work is not None:
        return due_work.run_once()
    # Background runner disabled: run the same two steps inline
    received = service("INVENTORY_SERVICE").auto_receive_due()
    return {"received": received, **service("ALLOCATION_SERVICE").fulfill_due()}


def _rename_material():
    payload = json_body()
    return service("REPAIR_SERVICE").rename_material(
        sanitize_text(payload.get("oldKey")),
        sanitize_text(payload.get("newKey")),
    )


TASKS = {
    "repair-keys": lambda: service("REPAIR_SERVICE").repair_referential_keys(),
    "rebuild-catalog": lambda: service("REPAIR_SERVICE").rebuild_missing_catalog_entries(),
    "backfill-created-at": lambda: service("REPAIR_SERVICE").backfill_log_created_at(),
    "rename-material": _rename_material,
    "due-work": _due_work,
}


@maintenance_bp.route("/api/maintenance/<task>", methods=["POST"])
def run_task(task: str):
    runner = TASKS.get(task)
    if runner is None:
        raise NotFoundError("maintenance tasks", task)
    logger.info(f"Maintenance task requested: {task}")
    return jsonify({"task": task, "result": runner()})
