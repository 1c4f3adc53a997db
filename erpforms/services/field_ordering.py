"""
Field ordering engine.

Maintains the per-table presentation order of form fields. Every operation
leaves ``field_order`` as a dense permutation 0..N-1 within the table,
including no-ops, and runs inside the template's mutation scope so two
concurrent moves on the same table cannot interleave.
"""

from __future__ import annotations

import logging
from collections import Counter

from erpforms.core.exceptions import (
    InvalidPermutationError,
    NotFoundError,
    ValidationError,
)
from erpforms.models import db
from erpforms.models.template import FormField, TemplateTable
from erpforms.services.locking import template_mutation

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down")


def ordered_fields(table: TemplateTable) -> list[FormField]:
    """Fields of ``table`` in presentation order (ties broken by id)."""
    return sorted(table.fields, key=lambda f: (f.field_order, f.id))


def compact_order(table: TemplateTable) -> list[FormField]:
    """Reassign 0..N-1 keeping the current relative order. No commit."""
    fields = ordered_fields(table)
    for index, field in enumerate(fields):
        if field.field_order != index:
            field.field_order = index
    return fields


def _get_table(table_id: str) -> TemplateTable:
    table = db.session.get(TemplateTable, table_id)
    if table is None:
        raise NotFoundError("TemplateTable", table_id)
    return table


def move_field(
    table_id: str,
    field_id: str,
    direction: str,
    expected_version: int | None = None,
) -> list[FormField]:
    """Swap a field with its immediate neighbour.

    Moving the first field up or the last field down is a no-op.

    Args:
        table_id: Table owning the field.
        field_id: Field to move.
        direction: "up" or "down".
        expected_version: Optional template ``lock_version`` for optimistic checks.

    Returns:
        The table's fields in their new order.

    Raises:
        NotFoundError: Table or field unknown (or field belongs to another table).
        ValidationError: Direction is not "up"/"down".
    """
    if direction not in DIRECTIONS:
        raise ValidationError(
            f"direction must be one of {DIRECTIONS}", details={"direction": direction}
        )
    table = _get_table(table_id)

    with template_mutation(table.template_id, expected_version):
        fields = compact_order(table)
        index = next((i for i, f in enumerate(fields) if f.id == field_id), None)
        if index is None:
            raise NotFoundError("FormField", field_id)

        target = index - 1 if direction == "up" else index + 1
        if 0 <= target < len(fields):
            current, neighbour = fields[index], fields[target]
            current.field_order, neighbour.field_order = target, index

    logger.info(
        "Field moved",
        extra={"table_id": table_id, "field_id": field_id, "direction": direction},
    )
    return ordered_fields(table)


def group_visible_to_top(table_id: str, expected_version: int | None = None) -> list[FormField]:
    """Stable-partition the table into visible fields followed by hidden ones.

    Relative order inside each partition is preserved, so running this twice
    without changing visibility leaves the order untouched.
    """
    table = _get_table(table_id)

    with template_mutation(table.template_id, expected_version):
        fields = ordered_fields(table)
        partitioned = [f for f in fields if f.is_visible] + [f for f in fields if not f.is_visible]
        for index, field in enumerate(partitioned):
            if field.field_order != index:
                field.field_order = index

    logger.info("Visible fields grouped to top", extra={"table_id": table_id})
    return ordered_fields(table)


def reorder_fields(
    table_id: str,
    field_ids: list[str],
    expected_version: int | None = None,
) -> list[FormField]:
    """Assign ``field_order`` from the position of each id in ``field_ids``.

    Raises:
        InvalidPermutationError: ``field_ids`` is not exactly a permutation of
            the table's current field ids. Stored order is left unchanged.
    """
    if not isinstance(field_ids, list) or not all(isinstance(fid, str) for fid in field_ids):
        raise ValidationError("field_ids must be a list of field ids", details={"field_ids": "invalid"})
    table = _get_table(table_id)

    with template_mutation(table.template_id, expected_version):
        by_id = {f.id: f for f in table.fields}
        counts = Counter(field_ids)
        duplicates = sorted(fid for fid, n in counts.items() if n > 1)
        missing = sorted(set(by_id) - set(counts))
        unexpected = sorted(set(counts) - set(by_id), key=str)
        if duplicates or missing or unexpected:
            raise InvalidPermutationError(table_id, missing, unexpected, duplicates)

        for index, fid in enumerate(field_ids):
            if by_id[fid].field_order != index:
                by_id[fid].field_order = index

    logger.info("Fields reordered", extra={"table_id": table_id, "count": len(field_ids)})
    return ordered_fields(table)
