"""
Field ordering engine: move, group-visible-to-top and full reorder.
"""

import pytest

from erpforms.core.exceptions import InvalidPermutationError, NotFoundError, StaleVersionError, ValidationError
from erpforms.models import db
from erpforms.models.template import Template, TemplateTable
from erpforms.services import field_ordering, template_service


def _names(fields):
    return [f.field_name for f in fields]


def _stored(table_id):
    table = db.session.get(TemplateTable, table_id)
    return [(f.field_name, f.field_order) for f in field_ordering.ordered_fields(table)]


def _version(template_id):
    return db.session.get(Template, template_id).lock_version


def _field_id(table_id, name):
    table = db.session.get(TemplateTable, table_id)
    return next(f.id for f in table.fields if f.field_name == name)


INITIAL = ["DA0_FILIAL", "DA0_CODTAB", "DA0_DESCRI", "DA0_DATDE", "DA0_ATIVO"]


class TestMoveField:
    def test_move_down_swaps_with_neighbour(self, primary_table):
        fields = field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_FILIAL"), "down")
        assert _names(fields) == ["DA0_CODTAB", "DA0_FILIAL", "DA0_DESCRI", "DA0_DATDE", "DA0_ATIVO"]
        assert [f.field_order for f in fields] == [0, 1, 2, 3, 4]

    def test_move_up(self, primary_table):
        fields = field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_ATIVO"), "up")
        assert _names(fields)[-2:] == ["DA0_ATIVO", "DA0_DATDE"]

    def test_first_up_is_noop(self, template, primary_table):
        fields = field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_FILIAL"), "up")
        assert _names(fields) == INITIAL
        assert _version(template.id) == 0

    def test_last_down_is_noop(self, template, primary_table):
        field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_ATIVO"), "down")
        assert [name for name, _ in _stored(primary_table.id)] == INITIAL
        assert _version(template.id) == 0

    def test_successful_move_bumps_version(self, template, primary_table):
        field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_DESCRI"), "up")
        assert _version(template.id) == 1

    def test_field_from_other_table_not_found(self, primary_table, items_table):
        with pytest.raises(NotFoundError):
            field_ordering.move_field(primary_table.id, _field_id(items_table.id, "DA1_ITEM"), "up")

    def test_invalid_direction(self, primary_table):
        with pytest.raises(ValidationError, match="direction"):
            field_ordering.move_field(primary_table.id, _field_id(primary_table.id, "DA0_DESCRI"), "left")

    def test_stale_version(self, primary_table):
        with pytest.raises(StaleVersionError):
            field_ordering.move_field(
                primary_table.id, _field_id(primary_table.id, "DA0_DESCRI"), "up", expected_version=3
            )
        assert [name for name, _ in _stored(primary_table.id)] == INITIAL


class TestGroupVisibleToTop:
    def test_stable_partition(self, template, primary_table):
        template_service.update_field(_field_id(primary_table.id, "DA0_CODTAB"), {"is_visible": False})
        template_service.update_field(_field_id(primary_table.id, "DA0_ATIVO"), {"is_visible": True})

        fields = field_ordering.group_visible_to_top(primary_table.id)

        assert _names(fields) == ["DA0_FILIAL", "DA0_DESCRI", "DA0_ATIVO", "DA0_CODTAB", "DA0_DATDE"]
        assert [f.field_order for f in fields] == [0, 1, 2, 3, 4]

    def test_idempotent(self, template, primary_table):
        first = _names(field_ordering.group_visible_to_top(primary_table.id))
        version = _version(template.id)
        second = _names(field_ordering.group_visible_to_top(primary_table.id))
        assert first == second == INITIAL
        assert _version(template.id) == version


class TestReorderFields:
    def test_full_permutation(self, primary_table):
        table = db.session.get(TemplateTable, primary_table.id)
        ids = [f.id for f in reversed(field_ordering.ordered_fields(table))]
        fields = field_ordering.reorder_fields(primary_table.id, ids)
        assert _names(fields) == list(reversed(INITIAL))
        assert [f.field_order for f in fields] == [0, 1, 2, 3, 4]

    def test_missing_id(self, primary_table):
        table = db.session.get(TemplateTable, primary_table.id)
        ids = [f.id for f in field_ordering.ordered_fields(table)]
        with pytest.raises(InvalidPermutationError) as exc_info:
            field_ordering.reorder_fields(primary_table.id, ids[1:])
        assert exc_info.value.details["missing"] == [ids[0]]
        assert [name for name, _ in _stored(primary_table.id)] == INITIAL

    def test_duplicate_and_unexpected_ids(self, primary_table, items_table):
        table = db.session.get(TemplateTable, primary_table.id)
        ids = [f.id for f in field_ordering.ordered_fields(table)]
        foreign = _field_id(items_table.id, "DA1_ITEM")
        with pytest.raises(InvalidPermutationError) as exc_info:
            field_ordering.reorder_fields(primary_table.id, ids + [ids[0], foreign])
        details = exc_info.value.details
        assert details["duplicates"] == [ids[0]]
        assert details["unexpected"] == [foreign]
        assert details["missing"] == []

    def test_not_a_list(self, primary_table):
        with pytest.raises(ValidationError):
            field_ordering.reorder_fields(primary_table.id, "abc")

    @pytest.mark.parametrize("bad", [[{"id": "x"}], [["a"]], [1, 2]])
    def test_non_string_ids_rejected(self, primary_table, bad):
        with pytest.raises(ValidationError, match="list of field ids"):
            field_ordering.reorder_fields(primary_table.id, bad)
        assert [name for name, _ in _stored(primary_table.id)] == INITIAL


class TestDenseOrder:
    def test_order_dense_after_mixed_operations(self, primary_table):
        extra = template_service.add_custom_field(primary_table.id, {"field_name": "extra", "label": "Extra"})
        field_ordering.move_field(primary_table.id, extra.id, "up")
        field_ordering.move_field(primary_table.id, extra.id, "up")
        template_service.delete_custom_field(extra.id)
        assert [order for _, order in _stored(primary_table.id)] == [0, 1, 2, 3, 4]
        assert [name for name, _ in _stored(primary_table.id)] == INITIAL
