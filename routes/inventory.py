"""
Inventory routes.

Handles:
- /api/inventory            - List units (FIFO order)
- /api/inventory/summary    - On-hand / incoming counts and stock value
- /api/inventory/group      - Add, edit or delete an order group
- /api/inventory/receive    - Receive ordered units (explicit or due)
- /api/inventory/adjust     - Manual on-hand count correction
- /api/materials            - Material catalog
"""

from flask import Blueprint, jsonify, request

from core.exceptions import ValidationError
from routes.helpers import json_body, sanitize_jobs, sanitize_text, service

inventory_bp = Blueprint("inventory", __name__)


def _unit_ids(payload) -> list:
    unit_ids = payload.get("unitIds")
    if not isinstance(unit_ids, list) or not all(isinstance(u, str) for u in unit_ids):
        raise ValidationError("unitIds must be a list of ids", "unitIds")
    return unit_ids


@inventory_bp.route("/api/inventory", methods=["GET"])
def list_units():
    units = service("INVENTORY_SERVICE").list_units(
        material_type=request.args.get("materialType") or None,
        status=request.args.get("status") or None,
    )
    return jsonify({"units": [u.to_dict(include_id=True) for u in units]})


@inventory_bp.route("/api/inventory/summary", methods=["GET"])
def summary():
    """Dashboard read model: on-hand and incoming counts plus stock value."""
    ledger_service = service("LEDGER_SERVICE")
    return jsonify({
        "onHand": ledger_service.inventory_summary(),
        "incoming": ledger_service.incoming_summary(),
        "costBySupplier": ledger_service.cost_by_supplier(),
        "analyticsByCategory": ledger_service.analytics_by_category(),
    })


@inventory_bp.route("/api/inventory/group", methods=["POST"])
def add_group():
    payload = json_body()
    unit_ids = service("INVENTORY_SERVICE").add_order_group(sanitize_jobs(payload.get("jobs")))
    return jsonify({"unitIds": unit_ids}), 201


@inventory_bp.route("/api/inventory/group", methods=["PUT"])
def edit_group():
    payload = json_body()
    unit_ids = service("INVENTORY_SERVICE").edit_order_group(
        _unit_ids(payload),
        sanitize_jobs(payload.get("jobs")),
    )
    return jsonify({"unitIds": unit_ids})


@inventory_bp.route("/api/inventory/group", methods=["DELETE"])
def delete_group():
    payload = json_body()
    log_id = service("INVENTORY_SERVICE").delete_group(
        _unit_ids(payload),
        record_log=payload.get("recordLog", True) is not False,
    )
    return jsonify({"logId": log_id})


@inventory_bp.route("/api/inventory/receive", methods=["POST"])
def receive():
    """
    Receive ordered units.

    With unitIds: receive those units. Without: receive every unit whose
    arrival date has passed.
    """
    payload = json_body(required=False)
    inventory_service = service("INVENTORY_SERVICE")
    if "unitIds" in payload:
        received = inventory_service.receive_group(_unit_ids(payload))
    else:
        received = inventory_service.auto_receive_due()
    return jsonify({"received": received})


@inventory_bp.route("/api/inventory/adjust", methods=["POST"])
def adjust():
    payload = json_body()
    log_id = service("INVENTORY_SERVICE").set_on_hand_count(
        sanitize_text(payload.get("materialType")),
        payload.get("length"),
        payload.get("count"),
    )
    return jsonify({"logId": log_id})


@inventory_bp.route("/api/materials", methods=["GET"])
def list_materials():
    inventory_service = service("INVENTORY_SERVICE")
    materials = inventory_service.list_materials()
    return jsonify({
        "materials": {m.key: m.to_dict() for m in materials},
        "categories": inventory_service.categories(),
    })


@inventory_bp.route("/api/materials", methods=["POST"])
def add_material():
    """
    Add one material, or a whole category when "materials" is a list.

    Body: {key, category, thickness, density}
       or {category, materials: [{name, thickness, density}, ...]}
    """
    payload = json_body()
    inventory_service = service("INVENTORY_SERVICE")
    category = sanitize_text(payload.get("category"))

    if isinstance(payload.get("materials"), list):
        materials = [
            dict(m, name=sanitize_text(m.get("name") or m.get("key"))) if isinstance(m, dict) else m
            for m in payload["materials"]
        ]
        if not all(isinstance(m, dict) for m in materials):
            raise ValidationError("materials must be a list of objects", "materials")
        entries = inventory_service.add_category(category, materials)
    else:
        entries = [inventory_service.add_material(
            sanitize_text(payload.get("key")),
            category,
            payload.get("thickness"),
            payload.get("density"),
        )]
    return jsonify({"materials": {e.key: e.to_dict() for e in entries}}), 201
