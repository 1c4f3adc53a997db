"""
Approval workflow configuration: service layer.

A workflow is an ordered list of levels. Each level names approvers by
reference (user ids, group ids), the fields its approvers may edit, and
whether approval is parallel (every resolved approver must approve) or single
(any one resolved approver suffices). Levels are always evaluated in
increasing ``level_order``.

Saving replaces the whole level list in one transaction. At most one workflow
per template is active: activating one deactivates the others in the same
commit.

Revalidation obligations
------------------------
Template changes that hide, rename or delete a field referenced by
``editable_fields`` call ``flag_workflows_for_fields`` inside their own
transaction. The workflow is marked ``needs_review`` with a note per stale
reference; nothing is pruned. A successful save clears the flag.
``revalidate_workflows`` recomputes flags from scratch (stale fields and
levels whose approvers no longer resolve, e.g. after membership changes).
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from erpforms.core.exceptions import (
    EmptyApproverSetError,
    InvariantViolation,
    NotFoundError,
    UnknownEditableFieldError,
    ValidationError,
)
from erpforms.models import db
from erpforms.models.template import FormField, Template
from erpforms.models.workflow import ApprovalGroup, Workflow, WorkflowLevel
from erpforms.services import approval_group_service
from erpforms.services.locking import template_mutation

logger = logging.getLogger(__name__)


# ── Reads ─────────────────────────────────────────────────────────────────

def get_workflow(workflow_id: str) -> Workflow:
    workflow = db.session.get(Workflow, workflow_id)
    if workflow is None:
        raise NotFoundError("Workflow", workflow_id)
    return workflow


def list_workflows(template_id: str, include_inactive: bool = True) -> list[Workflow]:
    stmt = select(Workflow).where(Workflow.template_id == template_id)
    if not include_inactive:
        stmt = stmt.where(Workflow.is_active.is_(True))
    return list(db.session.scalars(stmt.order_by(Workflow.created_at)))


def get_active_workflow(template_id: str) -> Workflow | None:
    """Return the template's active workflow, or None.

    Raises:
        InvariantViolation: More than one workflow is active.
    """
    active = list_workflows(template_id, include_inactive=False)
    if len(active) > 1:
        logger.critical(
            "Multiple active workflows",
            extra={"template_id": template_id, "workflow_ids": [w.id for w in active]},
        )
        raise InvariantViolation(f"Template {template_id} has {len(active)} active workflows")
    return active[0] if active else None


def visible_field_names(template_id: str) -> set[str]:
    return set(
        db.session.scalars(
            select(FormField.field_name).where(
                FormField.template_id == template_id, FormField.is_visible.is_(True)
            )
        )
    )


# ── Approver resolution ───────────────────────────────────────────────────

def resolve_level_approvers(level) -> set[str]:
    """Flatten a level to concrete user ids: active explicit users plus the
    active members of its active groups. Accepts a WorkflowLevel or a dict."""
    if isinstance(level, dict):
        user_ids = level.get("approver_user_ids") or []
        group_ids = level.get("approver_group_ids") or []
    else:
        user_ids = level.approver_user_ids or []
        group_ids = level.approver_group_ids or []
    return approval_group_service.active_user_ids(user_ids) | approval_group_service.resolve_group_user_ids(
        group_ids
    )


def required_approvals(level) -> int:
    """Approvals needed to satisfy a level: all resolved approvers when
    parallel, otherwise one (zero when nobody resolves)."""
    approvers = resolve_level_approvers(level)
    if not approvers:
        return 0
    parallel = level.get("is_parallel", False) if isinstance(level, dict) else level.is_parallel
    return len(approvers) if parallel else 1


# ── Validation (no writes) ────────────────────────────────────────────────

def _id_list(value, key: str, level_order: int) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValidationError(
            f"Level {level_order}: {key} must be a list of ids",
            details={"level_order": level_order, key: value},
        )
    return list(dict.fromkeys(value))


def validate_levels(template_id: str, levels) -> list[dict]:
    """Validate a complete level list and return normalized level dicts.

    Checks, per level and in order: dense 1-based ordering, known users and
    groups, a non-empty resolved approver set (membership read now), and
    editable fields that are currently visible on the template.

    Raises:
        ValidationError: Structural problems (ordering, unknown references).
        EmptyApproverSetError: A level resolves to nobody.
        UnknownEditableFieldError: A level lists a field that is not visible.
    """
    if not isinstance(levels, list) or not levels:
        raise ValidationError("A workflow needs at least one level", details={"levels": "required"})

    visible = visible_field_names(template_id)
    normalized = []
    for index, raw in enumerate(levels, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Level {index} must be an object", details={"level_order": index})
        level_order = raw.get("level_order", index)
        if level_order != index:
            raise ValidationError(
                "Level order must be dense, 1-based and strictly increasing",
                details={"level_order": level_order, "expected": index},
            )

        user_ids = _id_list(raw.get("approver_user_ids"), "approver_user_ids", index)
        group_ids = _id_list(raw.get("approver_group_ids"), "approver_group_ids", index)
        unknown_users = sorted(set(user_ids) - approval_group_service.existing_user_ids(user_ids))
        if unknown_users:
            raise ValidationError(
                f"Level {index}: unknown approver users {unknown_users}",
                details={"level_order": index, "user_ids": unknown_users},
            )
        known_groups = set(
            db.session.scalars(select(ApprovalGroup.id).where(ApprovalGroup.id.in_(group_ids)))
        ) if group_ids else set()
        unknown_groups = sorted(set(group_ids) - known_groups)
        if unknown_groups:
            raise ValidationError(
                f"Level {index}: unknown approver groups {unknown_groups}",
                details={"level_order": index, "group_ids": unknown_groups},
            )

        level = {
            "level_order": index,
            "name": (raw.get("name") or "").strip() or f"Level {index}",
            "approver_user_ids": user_ids,
            "approver_group_ids": group_ids,
            "editable_fields": [],
            "is_parallel": bool(raw.get("is_parallel", False)),
        }
        if not resolve_level_approvers(level):
            raise EmptyApproverSetError(index)

        editable = raw.get("editable_fields") or []
        if not isinstance(editable, list):
            raise ValidationError(
                f"Level {index}: editable_fields must be a list",
                details={"level_order": index},
            )
        for field_name in editable:
            if field_name not in visible:
                raise UnknownEditableFieldError(index, field_name)
        level["editable_fields"] = list(dict.fromkeys(editable))
        normalized.append(level)
    return normalized


# ── Mutations ─────────────────────────────────────────────────────────────

def save_workflow(
    template_id: str,
    name: str,
    description: str = "",
    active: bool = True,
    levels=None,
    workflow_id: str | None = None,
    expected_version: int | None = None,
) -> Workflow:
    """Create or fully replace a workflow.

    Either every level validates and the new list replaces the old one, or
    nothing is written. Saving an active workflow deactivates any other
    active workflow of the template.

    Args:
        template_id: Owning template.
        name: Workflow name (required).
        description: Free text.
        active: Whether this workflow is the template's active one.
        levels: Complete ordered list of level dicts.
        workflow_id: Existing workflow to replace; None creates a new one.
        expected_version: Optional template ``lock_version``.

    Returns:
        The saved Workflow.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})

    with template_mutation(template_id, expected_version) as template:
        if workflow_id is not None:
            workflow = get_workflow(workflow_id)
            if workflow.template_id != template.id:
                raise NotFoundError("Workflow", workflow_id)
        else:
            workflow = None

        normalized = validate_levels(template.id, levels)

        if workflow is None:
            workflow = Workflow(template=template)
            db.session.add(workflow)
        else:
            workflow.levels.clear()
            db.session.flush()

        workflow.name = name.strip()
        workflow.description = description or ""
        workflow.is_active = bool(active)
        workflow.needs_review = False
        workflow.review_notes = []
        for level in normalized:
            workflow.levels.append(WorkflowLevel(**level))

        if workflow.is_active:
            for other in template.workflows:
                if other is not workflow and other.is_active:
                    other.is_active = False
                    logger.info(
                        "Workflow deactivated by activation of another",
                        extra={"template_id": template.id, "workflow_id": other.id},
                    )

    logger.info(
        "Workflow saved",
        extra={"template_id": template_id, "workflow_id": workflow.id, "levels": len(normalized)},
    )
    return workflow


def deactivate_workflow(workflow_id: str, expected_version: int | None = None) -> Workflow:
    """Deactivate a workflow. It is kept, never deleted."""
    workflow = get_workflow(workflow_id)
    with template_mutation(workflow.template_id, expected_version):
        workflow.is_active = False
    logger.info("Workflow deactivated", extra={"workflow_id": workflow_id})
    return workflow


def flag_workflows_for_fields(template: Template, field_names, reason: str) -> list[str]:
    """Mark workflows whose levels reference ``field_names`` as needing review.

    Runs inside the caller's transaction and never commits. Returns the ids of
    the workflows flagged.
    """
    names = set(field_names or [])
    if not names:
        return []
    flagged = []
    for workflow in template.workflows:
        notes = []
        for level in workflow.levels:
            for field_name in level.editable_fields or []:
                if field_name in names:
                    notes.append(
                        {"level_order": level.level_order, "field_name": field_name, "reason": reason}
                    )
        if notes:
            workflow.needs_review = True
            workflow.review_notes = list(workflow.review_notes or []) + notes
            flagged.append(workflow.id)
    if flagged:
        logger.warning(
            "Workflows flagged for review",
            extra={"template_id": template.id, "workflow_ids": flagged, "reason": reason},
        )
    return flagged


def review_notes(levels, visible: set[str]) -> list[dict]:
    """Problems that keep ``levels`` from validating today, one note each.

    Accepts WorkflowLevel rows or level dicts.
    """
    notes = []
    for level in levels:
        if isinstance(level, dict):
            level_order = level["level_order"]
            editable = level.get("editable_fields") or []
        else:
            level_order = level.level_order
            editable = level.editable_fields or []
        if not resolve_level_approvers(level):
            notes.append({"level_order": level_order, "reason": "empty_approver_set"})
        for field_name in editable:
            if field_name not in visible:
                notes.append(
                    {"level_order": level_order, "field_name": field_name, "reason": "field_not_visible"}
                )
    return notes


def revalidate_workflows(template_id: str, expected_version: int | None = None) -> list[Workflow]:
    """Recompute review flags of every workflow of a template.

    Returns:
        The workflows that need review after recomputation.
    """
    with template_mutation(template_id, expected_version) as template:
        visible = visible_field_names(template.id)
        needing_review = []
        for workflow in template.workflows:
            notes = review_notes(workflow.levels, visible)
            if workflow.needs_review != bool(notes) or (workflow.review_notes or []) != notes:
                workflow.needs_review = bool(notes)
                workflow.review_notes = notes
            if notes:
                needing_review.append(workflow)

    logger.info(
        "Workflows revalidated",
        extra={"template_id": template_id, "needs_review": [w.id for w in needing_review]},
    )
    return needing_review
