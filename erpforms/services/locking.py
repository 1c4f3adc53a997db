"""
Per-template serialization point for structural mutations.

Every write to a template's tables, fields or workflows runs inside
``template_mutation``:

    with template_mutation(template_id, expected_version) as tpl:
        ...mutate ORM objects...
    # committed here; lock_version bumped by one if anything changed

Inside the scope:
  - a process-local re-entrant lock serializes writers of the same template
    (threads of one worker);
  - ``SELECT ... FOR UPDATE`` on the template row serializes writers across
    workers on databases that support row locks;
  - an optional ``expected_version`` turns the scope into an optimistic check
    (``StaleVersionError`` when another writer committed first).

Any exception rolls the session back, so no failure leaves partial state.
Post-conditions (dense orders, child/parent consistency) are asserted before
commit; a failure there raises ``InvariantViolation``.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager

from sqlalchemy import event, select
from sqlalchemy.orm import Session

from erpforms.core.exceptions import InvariantViolation, NotFoundError, StaleVersionError
from erpforms.models import db
from erpforms.models.template import FormField, RelationType, Template, TemplateTable

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_template_locks: dict[str, threading.RLock] = {}
_CHANGED_KEY = "erpforms.has_changes"


@event.listens_for(Session, "before_flush")
def _track_changes(session, flush_context, instances):
    if session.new or session.deleted or any(session.is_modified(o) for o in session.dirty):
        session.info[_CHANGED_KEY] = True


def template_lock(template_id: str) -> threading.RLock:
    """Process-local re-entrant lock for one template."""
    with _registry_guard:
        lock = _template_locks.get(template_id)
        if lock is None:
            lock = _template_locks[template_id] = threading.RLock()
        return lock


def assert_template_integrity(template_id: str) -> None:
    """Raise InvariantViolation if any structural invariant does not hold.

    Reads the flushed state straight from the session, so collections loaded
    before the mutation cannot mask a defect. Checks dense table order, dense
    field order per table and child/parent consistency.
    """
    tables = db.session.scalars(
        select(TemplateTable).where(TemplateTable.template_id == template_id)
    ).all()
    orders = sorted(t.table_order for t in tables)
    if orders != list(range(len(tables))):
        raise InvariantViolation(f"Template {template_id}: table order {orders} is not dense")

    field_orders: dict[str, list[int]] = {t.id: [] for t in tables}
    rows = db.session.execute(
        select(FormField.table_id, FormField.field_order).where(
            FormField.template_id == template_id
        )
    ).all()
    for table_id, order in rows:
        field_orders.setdefault(table_id, []).append(order)
    for table_id, values in field_orders.items():
        if sorted(values) != list(range(len(values))):
            raise InvariantViolation(f"Table {table_id}: field order {sorted(values)} is not dense")

    by_id = {t.id: t for t in tables}
    for table in tables:
        is_child = table.relation_type == RelationType.CHILD.value
        if is_child != (table.parent_table_id is not None):
            raise InvariantViolation(f"Table {table.id}: child without parent or parent without child")
        if is_child:
            parent = by_id.get(table.parent_table_id)
            if parent is None or parent.relation_type == RelationType.CHILD.value:
                raise InvariantViolation(f"Table {table.id}: dangling or nested parent reference")
            if not table.foreign_keys:
                raise InvariantViolation(f"Table {table.id}: child without foreign keys")


@contextmanager
def template_mutation(template_id: str, expected_version: int | None = None):
    """Run one validate-then-commit unit against a template.

    Args:
        template_id: Template being mutated.
        expected_version: Optional ``lock_version`` the caller last read.

    Yields:
        The locked Template row.

    Raises:
        NotFoundError: Template does not exist.
        StaleVersionError: ``expected_version`` does not match.
        InvariantViolation: Post-mutation integrity check failed.
    """
    lock = template_lock(template_id)
    with lock:
        try:
            template = db.session.execute(
                select(Template)
                .where(Template.id == template_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if template is None:
                raise NotFoundError("Template", template_id)
            if expected_version is not None and template.lock_version != expected_version:
                raise StaleVersionError(template_id, expected_version, template.lock_version)
            db.session.info.pop(_CHANGED_KEY, None)

            yield template

            db.session.flush()
            changed = db.session.info.pop(_CHANGED_KEY, False)
            try:
                assert_template_integrity(template_id)
            except InvariantViolation:
                logger.critical("Integrity check failed", extra={"template_id": template_id})
                raise
            if changed:
                template.lock_version = (template.lock_version or 0) + 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            db.session.info.pop(_CHANGED_KEY, None)
            raise
