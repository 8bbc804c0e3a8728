"""
Ledger routes.

Handles:
- /api/ledger/<material>            - Ledger rows, newest first
- /api/ledger/<material>/csv        - Same rows as a CSV download
- /api/ledger/category/<category>   - Ledgers of every material in a category
"""

from flask import Blueprint, Response, jsonify

from routes.helpers import service

ledger_bp = Blueprint("ledger", __name__)


@ledger_bp.route("/api/ledger/<material_type>", methods=["GET"])
def ledger(material_type: str):
    rows = service("LEDGER_SERVICE").ledger_for(material_type)
    return jsonify({"materialType": material_type, "rows": [row.to_dict() for row in rows]})


@ledger_bp.route("/api/ledger/<material_type>/csv", methods=["GET"])
def ledger_csv(material_type: str):
    text = service("LEDGER_SERVICE").ledger_csv(material_type)
    filename = f"ledger-{material_type}.csv".replace(" ", "_")
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{filename}\""},
    )


@ledger_bp.route("/api/ledger/category/<category>", methods=["GET"])
def category_ledgers(category: str):
    ledgers = service("LEDGER_SERVICE").ledgers_for_category(category)
    return jsonify({
        "category": category,
        "ledgers": {
            material_type: [row.to_dict() for row in rows]
            for material_type, rows in ledgers.items()
        },
    })
