"""Approval workflow blueprint.

Endpoints:
    GET/POST  /api/v1/templates/<tid>/workflows
    GET       /api/v1/templates/<tid>/workflows/active
    POST      /api/v1/templates/<tid>/workflows/revalidate
    GET/PUT   /api/v1/workflows/<wid>
    POST      /api/v1/workflows/<wid>/deactivate
    GET       /api/v1/workflows/<wid>/levels/<level_order>/approvers
"""

import logging

from flask import Blueprint, jsonify, request

from erpforms.blueprints import expected_version, json_body, register_error_handlers
from erpforms.core.exceptions import NotFoundError
from erpforms.services import template_service, workflow_service
from erpforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflows", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


@workflow_bp.route("/templates/<tid>/workflows", methods=["GET"])
def list_workflows(tid):
    template_service.get_template(tid)
    include_inactive = request.args.get("include_inactive", "true").lower() not in ("0", "false", "no")
    items = workflow_service.list_workflows(tid, include_inactive=include_inactive)
    return jsonify({"items": [w.to_dict() for w in items], "total": len(items)}), 200


@workflow_bp.route("/templates/<tid>/workflows", methods=["POST"])
def create_workflow(tid):
    data = json_body()
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    workflow = workflow_service.save_workflow(
        tid,
        data["name"],
        description=data.get("description", ""),
        active=data.get("is_active", True),
        levels=data.get("levels", []),
        expected_version=expected_version(data),
    )
    return jsonify(workflow.to_dict()), 201


@workflow_bp.route("/templates/<tid>/workflows/active", methods=["GET"])
def active_workflow(tid):
    template_service.get_template(tid)
    workflow = workflow_service.get_active_workflow(tid)
    if workflow is None:
        return api_error(E.NOT_FOUND, "No active workflow for this template")
    return jsonify(workflow.to_dict()), 200


@workflow_bp.route("/templates/<tid>/workflows/revalidate", methods=["POST"])
def revalidate(tid):
    data = json_body()
    flagged = workflow_service.revalidate_workflows(tid, expected_version(data))
    return jsonify({"needs_review": [w.to_dict() for w in flagged], "total": len(flagged)}), 200


@workflow_bp.route("/workflows/<wid>", methods=["GET"])
def get_workflow(wid):
    return jsonify(workflow_service.get_workflow(wid).to_dict()), 200


@workflow_bp.route("/workflows/<wid>", methods=["PUT"])
def replace_workflow(wid):
    data = json_body()
    current = workflow_service.get_workflow(wid)
    workflow = workflow_service.save_workflow(
        current.template_id,
        data.get("name", current.name),
        description=data.get("description", current.description),
        active=data.get("is_active", current.is_active),
        levels=data.get("levels", []),
        workflow_id=wid,
        expected_version=expected_version(data),
    )
    return jsonify(workflow.to_dict()), 200


@workflow_bp.route("/workflows/<wid>/deactivate", methods=["POST"])
def deactivate(wid):
    data = json_body()
    workflow = workflow_service.deactivate_workflow(wid, expected_version(data))
    return jsonify(workflow.to_dict()), 200


@workflow_bp.route("/workflows/<wid>/levels/<int:level_order>/approvers", methods=["GET"])
def level_approvers(wid, level_order):
    workflow = workflow_service.get_workflow(wid)
    level = next((lv for lv in workflow.levels if lv.level_order == level_order), None)
    if level is None:
        raise NotFoundError("WorkflowLevel", level_order)
    approvers = sorted(workflow_service.resolve_level_approvers(level))
    return jsonify({
        "workflow_id": wid,
        "level_order": level_order,
        "approver_user_ids": approvers,
        "required_approvals": workflow_service.required_approvals(level),
    }), 200
