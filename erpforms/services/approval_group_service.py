"""
Approval groups and the local directory-user mirror.

Groups are referenced from workflow levels by id and flattened to user ids
only when a workflow is validated or evaluated (``resolve_group_user_ids``).
Nothing here snapshots membership, so a change is seen by every workflow on
its next validation.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select

from erpforms.core.exceptions import ConflictError, NotFoundError, ValidationError
from erpforms.models import db
from erpforms.models.workflow import ApprovalGroup, ApprovalGroupMember, DirectoryUser

logger = logging.getLogger(__name__)


def _commit() -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ═══════════════════════════════════════════════════════════════
# Directory users
# ═══════════════════════════════════════════════════════════════
def upsert_user(data: dict) -> DirectoryUser:
    """Create or refresh a user record mirrored from the identity directory.

    Args:
        data: ``id`` and ``name`` required; optional ``email``, ``department``,
            ``is_active``.
    """
    user_id = data.get("id")
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("id is required", details={"id": "required"})
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})

    email = data.get("email") or None
    if email:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email: {e}", details={"email": data.get("email")}) from e

    user = db.session.get(DirectoryUser, user_id.strip())
    created = user is None
    if created:
        user = DirectoryUser(id=user_id.strip())
        db.session.add(user)
    user.name = name.strip()
    user.email = email
    user.department = data.get("department") or None
    user.is_active = bool(data.get("is_active", True))
    _commit()

    logger.info("Directory user %s id=%s", "created" if created else "updated", user.id)
    return user


def get_user(user_id: str) -> DirectoryUser:
    user = db.session.get(DirectoryUser, user_id)
    if user is None:
        raise NotFoundError("DirectoryUser", user_id)
    return user


def list_users(active_only: bool = False) -> list[DirectoryUser]:
    stmt = select(DirectoryUser).order_by(DirectoryUser.name)
    if active_only:
        stmt = stmt.where(DirectoryUser.is_active.is_(True))
    return list(db.session.scalars(stmt))


def existing_user_ids(user_ids) -> set[str]:
    """Subset of ``user_ids`` known to the directory (active or not)."""
    ids = set(user_ids or [])
    if not ids:
        return set()
    return set(db.session.scalars(select(DirectoryUser.id).where(DirectoryUser.id.in_(ids))))


def active_user_ids(user_ids) -> set[str]:
    ids = set(user_ids or [])
    if not ids:
        return set()
    return set(
        db.session.scalars(
            select(DirectoryUser.id).where(
                DirectoryUser.id.in_(ids), DirectoryUser.is_active.is_(True)
            )
        )
    )


# ═══════════════════════════════════════════════════════════════
# Groups
# ═══════════════════════════════════════════════════════════════
def get_group(group_id: str) -> ApprovalGroup:
    group = db.session.get(ApprovalGroup, group_id)
    if group is None:
        raise NotFoundError("ApprovalGroup", group_id)
    return group


def get_groups_by_name(names) -> dict[str, ApprovalGroup]:
    names = set(names or [])
    if not names:
        return {}
    groups = db.session.scalars(select(ApprovalGroup).where(ApprovalGroup.name.in_(names)))
    return {g.name: g for g in groups}


def list_groups(active_only: bool = False) -> list[ApprovalGroup]:
    stmt = select(ApprovalGroup).order_by(ApprovalGroup.name)
    if active_only:
        stmt = stmt.where(ApprovalGroup.is_active.is_(True))
    return list(db.session.scalars(stmt))


def _check_name_free(name: str, group_id: str | None = None) -> None:
    stmt = select(ApprovalGroup.id).where(ApprovalGroup.name == name)
    if group_id is not None:
        stmt = stmt.where(ApprovalGroup.id != group_id)
    if db.session.scalars(stmt).first() is not None:
        raise ConflictError("ApprovalGroup", "name", name)


def create_group(data: dict) -> ApprovalGroup:
    """Create an approval group.

    Raises:
        ValidationError: Name missing.
        ConflictError: Name already in use.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    _check_name_free(name)

    group = ApprovalGroup(
        name=name,
        description=data.get("description", ""),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(group)
    _commit()
    logger.info("Approval group created id=%s name=%s", group.id, name)
    return group


def update_group(group_id: str, data: dict) -> ApprovalGroup:
    group = get_group(group_id)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        _check_name_free(name, group_id)
        group.name = name
    if "description" in data:
        group.description = data.get("description") or ""
    if "is_active" in data:
        group.is_active = bool(data["is_active"])
    _commit()
    logger.info("Approval group updated id=%s", group_id)
    return group


def deactivate_group(group_id: str) -> ApprovalGroup:
    """Deactivate a group. Levels keep the reference; it resolves to nobody."""
    group = get_group(group_id)
    group.is_active = False
    _commit()
    logger.info("Approval group deactivated id=%s", group_id)
    return group


def add_member(group_id: str, user_id: str, added_by: str | None = None) -> ApprovalGroupMember:
    """Add a directory user to a group.

    Raises:
        NotFoundError: Group or user unknown.
        ConflictError: User already a member.
    """
    group = get_group(group_id)
    get_user(user_id)
    existing = db.session.scalars(
        select(ApprovalGroupMember).where(
            ApprovalGroupMember.group_id == group_id,
            ApprovalGroupMember.user_id == user_id,
        )
    ).first()
    if existing is not None:
        raise ConflictError("ApprovalGroupMember", "user_id", user_id)

    member = ApprovalGroupMember(user_id=user_id, added_by=added_by)
    group.members.append(member)
    _commit()
    logger.info("Member added group=%s user=%s", group_id, user_id)
    return member


def remove_member(group_id: str, user_id: str) -> None:
    group = get_group(group_id)
    member = next((m for m in group.members if m.user_id == user_id), None)
    if member is None:
        raise NotFoundError("ApprovalGroupMember", user_id)
    group.members.remove(member)
    _commit()
    logger.info("Member removed group=%s user=%s", group_id, user_id)


def resolve_group_user_ids(group_ids) -> set[str]:
    """Flatten groups to the ids of their active members.

    Inactive groups and inactive users contribute nothing. Always reads the
    current membership.
    """
    ids = set(group_ids or [])
    if not ids:
        return set()
    rows = db.session.scalars(
        select(ApprovalGroupMember.user_id)
        .join(ApprovalGroup, ApprovalGroup.id == ApprovalGroupMember.group_id)
        .join(DirectoryUser, DirectoryUser.id == ApprovalGroupMember.user_id)
        .where(
            ApprovalGroupMember.group_id.in_(ids),
            ApprovalGroup.is_active.is_(True),
            DirectoryUser.is_active.is_(True),
        )
    )
    return set(rows)
