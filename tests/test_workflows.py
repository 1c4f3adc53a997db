"""
Approval workflow service tests.

Tests cover:
  - Saving workflows (create / replace) and level validation
  - Single active workflow per template
  - Approver resolution through users and groups
  - Revalidation after directory or template changes
"""

import pytest

from erpforms.core.exceptions import (
    EmptyApproverSetError,
    NotFoundError,
    UnknownEditableFieldError,
    ValidationError,
)
from erpforms.models import db
from erpforms.models.workflow import Workflow, WorkflowLevel
from erpforms.services import approval_group_service, workflow_service


@pytest.fixture()
def reviewer():
    return approval_group_service.upsert_user({"id": "u.costa", "name": "Bruno Costa"})


@pytest.fixture()
def two_level(template, approver, approver_group, reviewer):
    return workflow_service.save_workflow(
        template.id,
        "Price approval",
        description="Two-step approval",
        levels=[
            {"name": "Pricing", "approver_group_ids": [approver_group.id], "editable_fields": ["DA0_DESCRI"]},
            {"name": "Direction", "approver_user_ids": [reviewer.id, approver.id], "is_parallel": True},
        ],
    )


# ═════════════════════════════════════════════════════════════════════════
# SAVE
# ═════════════════════════════════════════════════════════════════════════

class TestSaveWorkflow:
    def test_create(self, two_level):
        assert two_level.is_active is True
        assert two_level.needs_review is False
        assert [(lv.level_order, lv.name) for lv in two_level.levels] == [(1, "Pricing"), (2, "Direction")]
        assert two_level.levels[1].is_parallel is True
        assert two_level.levels[0].editable_fields == ["DA0_DESCRI"]

    def test_default_level_name(self, template, approver):
        wf = workflow_service.save_workflow(template.id, "Quick", levels=[{"approver_user_ids": [approver.id]}])
        assert wf.levels[0].name == "Level 1"

    def test_replace_levels(self, template, two_level, approver):
        wf = workflow_service.save_workflow(
            template.id, "Price approval", levels=[{"approver_user_ids": [approver.id]}], workflow_id=two_level.id
        )
        assert wf.id == two_level.id
        assert len(wf.levels) == 1
        assert db.session.query(WorkflowLevel).count() == 1

    def test_activating_deactivates_others(self, template, two_level, approver):
        second = workflow_service.save_workflow(
            template.id, "Fast track", levels=[{"approver_user_ids": [approver.id]}]
        )
        assert second.is_active is True
        assert workflow_service.get_workflow(two_level.id).is_active is False
        assert workflow_service.get_active_workflow(template.id).id == second.id

    def test_inactive_save_leaves_active_alone(self, template, two_level, approver):
        workflow_service.save_workflow(
            template.id, "Draft", active=False, levels=[{"approver_user_ids": [approver.id]}]
        )
        assert workflow_service.get_active_workflow(template.id).id == two_level.id

    def test_name_required(self, template, approver):
        with pytest.raises(ValidationError, match="name"):
            workflow_service.save_workflow(template.id, "  ", levels=[{"approver_user_ids": [approver.id]}])

    def test_levels_required(self, template):
        with pytest.raises(ValidationError, match="at least one level"):
            workflow_service.save_workflow(template.id, "Empty", levels=[])

    def test_level_order_must_be_dense(self, template, approver):
        with pytest.raises(ValidationError, match="dense"):
            workflow_service.save_workflow(
                template.id,
                "Gappy",
                levels=[
                    {"level_order": 1, "approver_user_ids": [approver.id]},
                    {"level_order": 3, "approver_user_ids": [approver.id]},
                ],
            )
        assert db.session.query(Workflow).count() == 0

    def test_unknown_user(self, template):
        with pytest.raises(ValidationError, match="unknown approver users"):
            workflow_service.save_workflow(template.id, "Ghost", levels=[{"approver_user_ids": ["nobody"]}])

    def test_unknown_group(self, template):
        with pytest.raises(ValidationError, match="unknown approver groups"):
            workflow_service.save_workflow(template.id, "Ghost", levels=[{"approver_group_ids": ["g-missing"]}])

    def test_empty_group_is_empty_approver_set(self, template):
        group = approval_group_service.create_group({"name": "Nobody home"})
        with pytest.raises(EmptyApproverSetError) as exc_info:
            workflow_service.save_workflow(template.id, "Empty", levels=[{"approver_group_ids": [group.id]}])
        assert exc_info.value.level_order == 1

    def test_inactive_user_only_is_empty(self, template):
        approval_group_service.upsert_user({"id": "u.gone", "name": "Gone", "is_active": False})
        with pytest.raises(EmptyApproverSetError):
            workflow_service.save_workflow(template.id, "Gone", levels=[{"approver_user_ids": ["u.gone"]}])

    def test_hidden_editable_field_rejected(self, template, approver):
        with pytest.raises(UnknownEditableFieldError) as exc_info:
            workflow_service.save_workflow(
                template.id, "Hidden", levels=[{"approver_user_ids": [approver.id], "editable_fields": ["DA0_ATIVO"]}]
            )
        assert exc_info.value.field_name == "DA0_ATIVO"

    def test_failed_replace_keeps_previous_levels(self, template, two_level):
        with pytest.raises(ValidationError):
            workflow_service.save_workflow(
                template.id, "Broken", levels=[{"approver_user_ids": ["nobody"]}], workflow_id=two_level.id
            )
        wf = workflow_service.get_workflow(two_level.id)
        assert wf.name == "Price approval"
        assert len(wf.levels) == 2

    def test_workflow_of_other_template_not_found(self, two_level, approver):
        from erpforms.services import template_service

        other = template_service.create_template({"table_name": "SA1", "label": "Customers"})
        with pytest.raises(NotFoundError):
            workflow_service.save_workflow(
                other.id, "Steal", levels=[{"approver_user_ids": [approver.id]}], workflow_id=two_level.id
            )

    def test_deactivate(self, template, two_level):
        wf = workflow_service.deactivate_workflow(two_level.id)
        assert wf.is_active is False
        assert workflow_service.get_active_workflow(template.id) is None
        assert len(workflow_service.list_workflows(template.id)) == 1


# ═════════════════════════════════════════════════════════════════════════
# APPROVER RESOLUTION
# ═════════════════════════════════════════════════════════════════════════

class TestApproverResolution:
    def test_group_and_users_resolve_to_union(self, two_level, approver, reviewer):
        assert workflow_service.resolve_level_approvers(two_level.levels[0]) == {approver.id}
        assert workflow_service.resolve_level_approvers(two_level.levels[1]) == {approver.id, reviewer.id}

    def test_required_approvals(self, two_level):
        assert workflow_service.required_approvals(two_level.levels[0]) == 1
        assert workflow_service.required_approvals(two_level.levels[1]) == 2

    def test_membership_read_at_resolution_time(self, two_level, approver_group, reviewer):
        approval_group_service.add_member(approver_group.id, reviewer.id)
        assert reviewer.id in workflow_service.resolve_level_approvers(two_level.levels[0])

    def test_inactive_group_contributes_nobody(self, two_level, approver_group):
        approval_group_service.deactivate_group(approver_group.id)
        assert workflow_service.resolve_level_approvers(two_level.levels[0]) == set()
        assert workflow_service.required_approvals(two_level.levels[0]) == 0

    def test_dict_level(self, approver):
        level = {"approver_user_ids": [approver.id], "approver_group_ids": [], "is_parallel": True}
        assert workflow_service.required_approvals(level) == 1


# ═════════════════════════════════════════════════════════════════════════
# REVALIDATION
# ═════════════════════════════════════════════════════════════════════════

class TestRevalidate:
    def test_clean_workflow_stays_clean(self, template, two_level):
        assert workflow_service.revalidate_workflows(template.id) == []
        assert workflow_service.get_workflow(two_level.id).needs_review is False

    def test_member_removal_empties_level(self, template, two_level, approver_group, approver):
        approval_group_service.remove_member(approver_group.id, approver.id)
        flagged = workflow_service.revalidate_workflows(template.id)
        assert [w.id for w in flagged] == [two_level.id]
        assert flagged[0].review_notes == [{"level_order": 1, "reason": "empty_approver_set"}]

    def test_hidden_field_detected(self, template, two_level):
        from erpforms.models.template import FormField

        field = db.session.query(FormField).filter_by(template_id=template.id, field_name="DA0_DESCRI").one()
        field.is_visible = False
        db.session.commit()

        flagged = workflow_service.revalidate_workflows(template.id)
        assert flagged[0].review_notes == [
            {"level_order": 1, "field_name": "DA0_DESCRI", "reason": "field_not_visible"}
        ]

    def test_save_clears_review_flag(self, template, two_level, approver_group, approver):
        approval_group_service.remove_member(approver_group.id, approver.id)
        workflow_service.revalidate_workflows(template.id)
        wf = workflow_service.save_workflow(
            template.id, "Price approval", levels=[{"approver_user_ids": [approver.id]}], workflow_id=two_level.id
        )
        assert wf.needs_review is False
        assert wf.review_notes == []
