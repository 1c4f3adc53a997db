"""
Approval workflow models: workflows, levels, approval groups, directory users.

Levels store approver *references* (user ids, group ids). Group membership is
flattened at validation/evaluation time and never snapshotted onto a level.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from erpforms.models import _utcnow, db, new_id


# ═══════════════════════════════════════════════════════════════
# 1. DIRECTORY USERS (mirror of the identity directory)
# ═══════════════════════════════════════════════════════════════
class DirectoryUser(db.Model):
    __tablename__ = "directory_users"

    id = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True)
    department = Column(String(200), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    memberships = relationship(
        "ApprovalGroupMember", back_populates="user", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "department": self.department,
            "is_active": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 2. APPROVAL GROUPS + MEMBERSHIP (junction)
# ═══════════════════════════════════════════════════════════════
class ApprovalGroup(db.Model):
    __tablename__ = "approval_groups"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), unique=True, nullable=False)
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    members = relationship(
        "ApprovalGroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="ApprovalGroupMember.added_at",
    )

    def to_dict(self, include_members=False):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "is_active": self.is_active,
            "member_count": len(self.members),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_members:
            data["members"] = [m.to_dict() for m in self.members]
        return data


class ApprovalGroupMember(db.Model):
    __tablename__ = "approval_group_members"

    id = Column(Integer, primary_key=True)
    group_id = Column(
        String(36), ForeignKey("approval_groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        String(100), ForeignKey("directory_users.id", ondelete="CASCADE"), nullable=False
    )
    added_by = Column(String(100), nullable=True)
    added_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        Index("ix_agm_user", "user_id"),
    )

    group = relationship("ApprovalGroup", back_populates="members")
    user = relationship("DirectoryUser", back_populates="memberships")

    def to_dict(self):
        return {
            "group_id": self.group_id,
            "user_id": self.user_id,
            "user": self.user.to_dict() if self.user else None,
            "added_by": self.added_by,
            "added_at": self.added_at.isoformat() if self.added_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. WORKFLOWS + LEVELS
# ═══════════════════════════════════════════════════════════════
class Workflow(db.Model):
    """Approval workflow configured for a template."""

    __tablename__ = "approval_workflows"

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(
        String(36), ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    needs_review = Column(Boolean, default=False, nullable=False)
    review_notes = Column(JSON, default=list)  # [{"level_order", "field_name"?, "reason"}]
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    template = relationship("Template", back_populates="workflows")
    levels = relationship(
        "WorkflowLevel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowLevel.level_order",
    )

    __table_args__ = (
        Index("ix_aw_template_active", "template_id", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description or "",
            "is_active": self.is_active,
            "needs_review": self.needs_review,
            "review_notes": list(self.review_notes or []),
            "levels": [lv.to_dict() for lv in self.levels],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WorkflowLevel(db.Model):
    """One sequential approval gate of a workflow."""

    __tablename__ = "workflow_levels"

    id = Column(String(36), primary_key=True, default=new_id)
    workflow_id = Column(
        String(36), ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False
    )
    level_order = Column(Integer, nullable=False)  # 1-based, dense
    name = Column(String(200), default="")
    approver_user_ids = Column(JSON, default=list)
    approver_group_ids = Column(JSON, default=list)
    editable_fields = Column(JSON, default=list)
    is_parallel = Column(Boolean, default=False, nullable=False)

    workflow = relationship("Workflow", back_populates="levels")

    __table_args__ = (
        UniqueConstraint("workflow_id", "level_order", name="uq_workflow_level_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "level_order": self.level_order,
            "name": self.name or "",
            "approver_user_ids": list(self.approver_user_ids or []),
            "approver_group_ids": list(self.approver_group_ids or []),
            "editable_fields": list(self.editable_fields or []),
            "is_parallel": self.is_parallel,
        }
