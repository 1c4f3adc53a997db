"""
Approval groups and directory-user mirror.

Endpoints:
    GET/POST    /api/v1/approval-groups
    GET/PUT     /api/v1/approval-groups/<gid>
    POST        /api/v1/approval-groups/<gid>/deactivate
    POST        /api/v1/approval-groups/<gid>/members
    DELETE      /api/v1/approval-groups/<gid>/members/<uid>
    GET         /api/v1/directory/users
    PUT         /api/v1/directory/users/<uid>
"""

import logging

from flask import Blueprint, jsonify, request

from erpforms.blueprints import json_body, register_error_handlers
from erpforms.services import approval_group_service
from erpforms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

approval_group_bp = Blueprint("approval_groups", __name__, url_prefix="/api/v1")
register_error_handlers(approval_group_bp)


def _active_only() -> bool:
    return request.args.get("active_only", "false").lower() in ("1", "true", "yes")


# ── Groups ───────────────────────────────────────────────────────────────

@approval_group_bp.route("/approval-groups", methods=["GET"])
def list_groups():
    groups = approval_group_service.list_groups(active_only=_active_only())
    return jsonify({"items": [g.to_dict() for g in groups], "total": len(groups)}), 200


@approval_group_bp.route("/approval-groups", methods=["POST"])
def create_group():
    data = json_body()
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    group = approval_group_service.create_group(data)
    return jsonify(group.to_dict(include_members=True)), 201


@approval_group_bp.route("/approval-groups/<gid>", methods=["GET"])
def get_group(gid):
    return jsonify(approval_group_service.get_group(gid).to_dict(include_members=True)), 200


@approval_group_bp.route("/approval-groups/<gid>", methods=["PUT"])
def update_group(gid):
    group = approval_group_service.update_group(gid, json_body())
    return jsonify(group.to_dict(include_members=True)), 200


@approval_group_bp.route("/approval-groups/<gid>/deactivate", methods=["POST"])
def deactivate_group(gid):
    return jsonify(approval_group_service.deactivate_group(gid).to_dict()), 200


@approval_group_bp.route("/approval-groups/<gid>/members", methods=["POST"])
def add_member(gid):
    data = json_body()
    if not data.get("user_id"):
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    member = approval_group_service.add_member(gid, data["user_id"], added_by=data.get("added_by"))
    return jsonify(member.to_dict()), 201


@approval_group_bp.route("/approval-groups/<gid>/members/<uid>", methods=["DELETE"])
def remove_member(gid, uid):
    approval_group_service.remove_member(gid, uid)
    return jsonify({"deleted": True, "group_id": gid, "user_id": uid}), 200


# ── Directory users ──────────────────────────────────────────────────────

@approval_group_bp.route("/directory/users", methods=["GET"])
def list_users():
    users = approval_group_service.list_users(active_only=_active_only())
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)}), 200


@approval_group_bp.route("/directory/users/<uid>", methods=["PUT"])
def upsert_user(uid):
    data = json_body()
    data["id"] = uid
    return jsonify(approval_group_service.upsert_user(data).to_dict()), 200
