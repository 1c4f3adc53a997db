"""
Template export / import.

Endpoints:
    GET   /api/v1/templates/<tid>/export         : bundle download (JSON)
    POST  /api/v1/templates/import/validate      : dry run, no writes
    POST  /api/v1/templates/import               : delete-and-recreate import

Import bodies carry the bundle under ``bundle`` together with the options
``overwrite_existing`` and ``target_binding``; a bare bundle is accepted too.
"""

import json
import logging

from flask import Blueprint, Response, jsonify, request

from erpforms.blueprints import json_body, register_error_handlers
from erpforms.services import template_export_service
from erpforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

template_transfer_bp = Blueprint("template_transfer", __name__, url_prefix="/api/v1")
register_error_handlers(template_transfer_bp)


def _import_args():
    data = json_body()
    if not data:
        return None, None, False
    if "bundle" in data:
        return data["bundle"], data.get("target_binding") or None, bool(data.get("overwrite_existing", False))
    return data, request.args.get("target_binding") or None, request.args.get(
        "overwrite_existing", "false"
    ).lower() in ("1", "true", "yes")


@template_transfer_bp.route("/templates/<tid>/export", methods=["GET"])
def export_template(tid):
    exported_by = request.headers.get("X-User-Id") or request.args.get("exported_by")
    bundle = template_export_service.export_template(tid, exported_by=exported_by)
    if request.args.get("download", "false").lower() in ("1", "true", "yes"):
        filename = f"{bundle['template']['table_name'].lower()}_template.json"
        return Response(
            json.dumps(bundle, indent=2, ensure_ascii=False),
            mimetype="application/json",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    return jsonify(bundle), 200


@template_transfer_bp.route("/templates/import/validate", methods=["POST"])
def validate_import():
    bundle, target_binding, _ = _import_args()
    if bundle is None:
        return api_error(E.VALIDATION_REQUIRED, "bundle is required")
    report = template_export_service.validate_import(bundle, target_binding=target_binding)
    return jsonify(report), 200


@template_transfer_bp.route("/templates/import", methods=["POST"])
def import_template():
    bundle, target_binding, overwrite = _import_args()
    if bundle is None:
        return api_error(E.VALIDATION_REQUIRED, "bundle is required")
    report = template_export_service.validate_import(bundle, target_binding=target_binding)
    template = template_export_service.import_template(
        bundle, overwrite_existing=overwrite, target_binding=target_binding
    )
    return jsonify({
        "template": template.to_dict(),
        "replaced_template_id": report["existing_template_id"] if overwrite else None,
        "warnings": report["warnings"],
    }), 201
