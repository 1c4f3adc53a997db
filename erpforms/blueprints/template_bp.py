"""Form template configuration blueprint.

Endpoint groups:
  Templates        GET/POST        /api/v1/templates
                   GET/PUT/DELETE  /api/v1/templates/<tid>
                   GET             /api/v1/templates/<tid>/visible-fields
  Tables           POST            /api/v1/templates/<tid>/tables
                   PUT/DELETE      /api/v1/tables/<table_id>
                   POST            /api/v1/tables/<table_id>/sync
  Fields           GET/POST        /api/v1/tables/<table_id>/fields
                   PUT/DELETE      /api/v1/fields/<field_id>
  Ordering         POST            /api/v1/tables/<table_id>/fields/<field_id>/move
                   POST            /api/v1/tables/<table_id>/fields/group-visible
                   PUT             /api/v1/tables/<table_id>/fields/order
  Catalog          GET             /api/v1/catalog/generic-tables

Mutations accept an optional ``expected_version`` (body or If-Match header);
a mismatch answers 409. Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from erpforms.blueprints import expected_version, json_body, register_error_handlers
from erpforms.integrations.schema_catalog import get_schema_catalog
from erpforms.services import field_ordering, template_service
from erpforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1")
register_error_handlers(template_bp)


def _template_detail(template) -> dict:
    data = template.to_dict(include_tables=False)
    data["tables"] = [t.to_dict(include_fields=True) for t in template.tables]
    return data


def _fields_payload(table_id: str, fields) -> dict:
    return {"table_id": table_id, "items": [f.to_dict() for f in fields], "total": len(fields)}


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@template_bp.route("/templates", methods=["GET"])
def list_templates():
    active_only = request.args.get("active_only", "false").lower() in ("1", "true", "yes")
    items = template_service.list_templates(active_only=active_only)
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)}), 200


@template_bp.route("/templates", methods=["POST"])
def create_template():
    data = json_body()
    if not data.get("table_name"):
        return api_error(E.VALIDATION_REQUIRED, "table_name is required")
    template = template_service.create_template(data)
    return jsonify(_template_detail(template)), 201


@template_bp.route("/templates/<tid>", methods=["GET"])
def get_template(tid):
    return jsonify(_template_detail(template_service.get_template(tid))), 200


@template_bp.route("/templates/<tid>", methods=["PUT"])
def update_template(tid):
    data = json_body()
    template = template_service.update_template(tid, data, expected_version(data))
    return jsonify(template.to_dict()), 200


@template_bp.route("/templates/<tid>", methods=["DELETE"])
def delete_template(tid):
    template_service.delete_template(tid)
    return jsonify({"deleted": True, "id": tid}), 200


@template_bp.route("/templates/<tid>/visible-fields", methods=["GET"])
def visible_fields(tid):
    fields = template_service.get_visible_fields(tid)
    return jsonify({"template_id": tid, "items": [f.to_dict() for f in fields], "total": len(fields)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Tables
# ═════════════════════════════════════════════════════════════════════════


@template_bp.route("/templates/<tid>/tables", methods=["POST"])
def add_table(tid):
    data = json_body()
    table = template_service.add_table(tid, data, expected_version(data))
    return jsonify(table.to_dict(include_fields=True)), 201


@template_bp.route("/tables/<table_id>", methods=["PUT"])
def update_table(table_id):
    data = json_body()
    table = template_service.update_table(table_id, data, expected_version(data))
    return jsonify(table.to_dict()), 200


@template_bp.route("/tables/<table_id>", methods=["DELETE"])
def remove_table(table_id):
    template_service.remove_table(table_id, expected_version())
    return jsonify({"deleted": True, "id": table_id}), 200


@template_bp.route("/tables/<table_id>/sync", methods=["POST"])
def sync_table(table_id):
    data = json_body()
    result = template_service.sync_table_fields(table_id, expected_version(data))
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# Fields
# ═════════════════════════════════════════════════════════════════════════


@template_bp.route("/tables/<table_id>/fields", methods=["GET"])
def list_fields(table_id):
    table = template_service.get_table(table_id)
    return jsonify(_fields_payload(table_id, field_ordering.ordered_fields(table))), 200


@template_bp.route("/tables/<table_id>/fields", methods=["POST"])
def add_custom_field(table_id):
    data = json_body()
    if not data.get("field_name"):
        return api_error(E.VALIDATION_REQUIRED, "field_name is required")
    field = template_service.add_custom_field(table_id, data, expected_version(data))
    return jsonify(field.to_dict()), 201


@template_bp.route("/fields/<field_id>", methods=["PUT"])
def update_field(field_id):
    data = json_body()
    version = expected_version(data)
    data.pop("expected_version", None)
    field = template_service.update_field(field_id, data, version)
    return jsonify(field.to_dict()), 200


@template_bp.route("/fields/<field_id>", methods=["DELETE"])
def delete_custom_field(field_id):
    template_service.delete_custom_field(field_id, expected_version())
    return jsonify({"deleted": True, "id": field_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Ordering
# ═════════════════════════════════════════════════════════════════════════


@template_bp.route("/tables/<table_id>/fields/<field_id>/move", methods=["POST"])
def move_field(table_id, field_id):
    data = json_body()
    if not data.get("direction"):
        return api_error(E.VALIDATION_REQUIRED, "direction is required")
    fields = field_ordering.move_field(table_id, field_id, data["direction"], expected_version(data))
    return jsonify(_fields_payload(table_id, fields)), 200


@template_bp.route("/tables/<table_id>/fields/group-visible", methods=["POST"])
def group_visible(table_id):
    data = json_body()
    fields = field_ordering.group_visible_to_top(table_id, expected_version(data))
    return jsonify(_fields_payload(table_id, fields)), 200


@template_bp.route("/tables/<table_id>/fields/order", methods=["PUT"])
def reorder_fields(table_id):
    data = json_body()
    if "field_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "field_ids is required")
    fields = field_ordering.reorder_fields(table_id, data["field_ids"], expected_version(data))
    return jsonify(_fields_payload(table_id, fields)), 200


# ═════════════════════════════════════════════════════════════════════════
# Catalog
# ═════════════════════════════════════════════════════════════════════════


@template_bp.route("/catalog/generic-tables", methods=["GET"])
def list_generic_tables():
    binding = request.args.get("binding_code") or None
    tables = get_schema_catalog().list_generic_tables(binding)
    return jsonify({"items": [{"code": t.code, "label": t.label} for t in tables]}), 200
