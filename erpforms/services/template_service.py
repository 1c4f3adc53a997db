"""
Template relational model: service layer.

Owns every mutation of Template, TemplateTable and FormField. Each public
mutation validates its whole input first, then writes inside
``template_mutation`` (one commit per call). Blueprints never touch the
session directly.

Schema-sourced fields come from the schema catalog and cannot be deleted by
an admin, only hidden; custom fields are fully admin-owned.

Hiding, renaming or deleting a field that a workflow level lists as editable
does not prune the workflow: the workflow is flagged ``needs_review`` in the
same transaction (see ``workflow_service.flag_workflows_for_fields``).
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import select

from erpforms.core.exceptions import (
    ConflictError,
    FixedFieldImmutableError,
    NotFoundError,
    ValidationError,
)
from erpforms.integrations.schema_catalog import get_schema_catalog
from erpforms.models import db
from erpforms.models.template import (
    FIELD_TYPES,
    RELATION_TYPES,
    FieldType,
    FormField,
    RelationType,
    Template,
    TemplateTable,
)
from erpforms.services import workflow_service
from erpforms.services.field_config import (
    is_valid_name,
    parse_attachment_config,
    parse_data_source,
    parse_lookup_config,
    parse_validation_rules,
)
from erpforms.services.field_ordering import compact_order, ordered_fields
from erpforms.services.locking import template_mutation

logger = logging.getLogger(__name__)

PRIMARY_ALIAS = "main"

# Attributes the schema catalog owns on non-custom fields.
CATALOG_OWNED_ATTRIBUTES = ("field_name", "source_field_name", "field_type", "is_required", "label")

_FIELD_EDITABLE = {
    "field_name",
    "label",
    "field_type",
    "is_required",
    "is_visible",
    "is_enabled",
    "field_group",
    "data_source_type",
    "data_source_config",
    "validation_rules",
    "attachment_config",
    "lookup_config",
    "placeholder",
    "help_text",
}


# ══════════════════════════════════════════════════════════════════════════
# Reads
# ══════════════════════════════════════════════════════════════════════════

def get_template(template_id: str) -> Template:
    template = db.session.get(Template, template_id)
    if template is None:
        raise NotFoundError("Template", template_id)
    return template


def get_template_by_table_name(table_name: str) -> Template | None:
    return db.session.execute(
        select(Template).where(Template.table_name == table_name)
    ).scalar_one_or_none()


def get_table(table_id: str) -> TemplateTable:
    table = db.session.get(TemplateTable, table_id)
    if table is None:
        raise NotFoundError("TemplateTable", table_id)
    return table


def get_field(field_id: str) -> FormField:
    field = db.session.get(FormField, field_id)
    if field is None:
        raise NotFoundError("FormField", field_id)
    return field


def list_templates(active_only: bool = False) -> list[Template]:
    stmt = select(Template).order_by(Template.label)
    if active_only:
        stmt = stmt.where(Template.is_active.is_(True))
    return list(db.session.scalars(stmt))


def get_visible_fields(template_id: str) -> list[FormField]:
    """Visible fields of a template in table order, then field order."""
    template = get_template(template_id)
    result = []
    for table in sorted(template.tables, key=lambda t: t.table_order):
        result.extend(f for f in ordered_fields(table) if f.is_visible)
    return result


# ══════════════════════════════════════════════════════════════════════════
# Validation helpers (no writes)
# ══════════════════════════════════════════════════════════════════════════

def _require_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required", details={key: "required"})
    return value.strip()


def _normalize_table_name(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("table_name is required", details={"table_name": "required"})
    return value.strip().upper()


def _fetch_catalog_fields(table_name: str, binding_code: str | None):
    try:
        return get_schema_catalog().get_table_structure(table_name, binding_code)
    except NotFoundError as exc:
        raise ValidationError(
            f"Table {table_name} is not in the schema catalog",
            details={"table_name": table_name},
        ) from exc


def validate_foreign_keys(value) -> list[dict]:
    if not isinstance(value, list) or not value:
        raise ValidationError(
            "A child table needs at least one foreign-key pair",
            details={"foreign_keys": "required"},
        )
    pairs = []
    for i, pair in enumerate(value):
        if not isinstance(pair, dict):
            raise ValidationError(f"foreign_keys[{i}] must be an object", details={"index": i})
        parent_field = pair.get("parent_field")
        child_field = pair.get("child_field")
        if not isinstance(parent_field, str) or not parent_field.strip() \
                or not isinstance(child_field, str) or not child_field.strip():
            raise ValidationError(
                f"foreign_keys[{i}] needs both parent_field and child_field",
                details={"index": i},
            )
        pairs.append({"parent_field": parent_field.strip(), "child_field": child_field.strip()})
    return pairs


def _resolve_relation(
    template: Template,
    relation_type,
    parent_table_id,
    foreign_keys,
    table: TemplateTable | None = None,
) -> tuple[str | None, str | None, list[dict]]:
    """Validate a relation triple; return the normalized (type, parent_id, fks).

    Non-child relations always come back with no parent and no foreign keys.
    """
    if relation_type in ("", None):
        relation_type = None
    elif relation_type not in RELATION_TYPES:
        raise ValidationError(
            f"relation_type must be one of {sorted(RELATION_TYPES)}",
            details={"relation_type": relation_type},
        )

    if relation_type != RelationType.CHILD.value:
        return relation_type, None, []

    if not parent_table_id:
        raise ValidationError(
            "A child table needs a parent table", details={"parent_table_id": "required"}
        )
    if table is not None and parent_table_id == table.id:
        raise ValidationError(
            "A table cannot be its own parent", details={"parent_table_id": parent_table_id}
        )
    parent = next((t for t in template.tables if t.id == parent_table_id), None)
    if parent is None:
        raise ValidationError(
            "Parent table must belong to the same template",
            details={"parent_table_id": parent_table_id},
        )
    if parent.relation_type == RelationType.CHILD.value:
        raise ValidationError(
            f"Table '{parent.alias}' is a child and cannot be a parent",
            details={"parent_table_id": parent_table_id},
        )
    if table is not None:
        children = [t.alias for t in template.tables if t.parent_table_id == table.id]
        if children:
            raise ValidationError(
                f"Table '{table.alias}' has child tables and cannot become a child",
                details={"table_id": table.id, "children": children},
            )
    return relation_type, parent_table_id, validate_foreign_keys(foreign_keys)


def _validate_alias(template: Template, alias, table: TemplateTable | None = None) -> str:
    if not is_valid_name(alias):
        raise ValidationError(
            "alias may contain only lowercase letters, digits and underscore",
            details={"alias": alias},
        )
    for other in template.tables:
        if other is not table and other.alias == alias:
            raise ValidationError(
                f"alias '{alias}' is already used in this template", details={"alias": alias}
            )
    return alias


def _template_field_names(template_id: str, exclude_id: str | None = None) -> set[str]:
    stmt = select(FormField.field_name).where(FormField.template_id == template_id)
    if exclude_id is not None:
        stmt = stmt.where(FormField.id != exclude_id)
    return set(db.session.scalars(stmt))


def _schema_field(template: Template, catalog_field, order: int) -> FormField:
    field_type = catalog_field.field_type if catalog_field.field_type in FIELD_TYPES else "string"
    return FormField(
        template=template,
        field_name=catalog_field.field_name,
        source_field_name=catalog_field.field_name,
        label=catalog_field.label or catalog_field.field_name,
        field_type=field_type,
        is_required=catalog_field.is_required,
        is_visible=catalog_field.is_required,
        is_enabled=True,
        field_order=order,
        is_custom=False,
        catalog_metadata=catalog_field.metadata(),
    )


def _check_catalog_names(template_id: str, catalog_fields, exclude: set[str] = frozenset()):
    names = [cf.field_name for cf in catalog_fields]
    clashes = sorted((set(names) - exclude) & _template_field_names(template_id))
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if clashes or duplicated:
        raise ValidationError(
            "Catalog field names collide with existing template fields",
            details={"conflicts": clashes, "duplicates": duplicated},
        )


def _refresh_multi_table(template: Template) -> None:
    template.is_multi_table = len(template.tables) > 1


# ══════════════════════════════════════════════════════════════════════════
# Templates
# ══════════════════════════════════════════════════════════════════════════

def create_template(data: dict) -> Template:
    """Create a template with its primary table and the table's schema fields.

    Args:
        data: ``table_name`` and ``label`` required; optional ``description``,
            ``binding_code``, ``alias`` (default "main"), ``table_label``.

    Raises:
        ValidationError: Missing attributes or table unknown to the catalog.
        ConflictError: A template for ``table_name`` already exists.
    """
    table_name = _normalize_table_name(data.get("table_name"))
    label = _require_text(data, "label")
    alias = data.get("alias") or PRIMARY_ALIAS
    if not is_valid_name(alias):
        raise ValidationError(
            "alias may contain only lowercase letters, digits and underscore",
            details={"alias": alias},
        )
    if get_template_by_table_name(table_name) is not None:
        raise ConflictError("Template", "table_name", table_name)

    binding_code = data.get("binding_code") or None
    catalog_fields = _fetch_catalog_fields(table_name, binding_code)
    names = [cf.field_name for cf in catalog_fields]
    if len(names) != len(set(names)):
        raise ValidationError("Catalog returned duplicate field names", details={"table_name": table_name})

    template = Template(
        table_name=table_name,
        label=label,
        description=data.get("description", ""),
        is_active=bool(data.get("is_active", True)),
        is_multi_table=False,
        binding_code=binding_code,
        lock_version=0,
    )
    table = TemplateTable(
        table_name=table_name,
        alias=alias,
        label=data.get("table_label") or label,
        table_order=0,
        relation_type=None,
        foreign_keys=[],
    )
    template.tables.append(table)
    for order, cf in enumerate(catalog_fields):
        table.fields.append(_schema_field(template, cf, order))

    db.session.add(template)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Template created",
        extra={"template_id": template.id, "table_name": table_name, "fields": len(catalog_fields)},
    )
    return template


def update_template(template_id: str, data: dict, expected_version: int | None = None) -> Template:
    """Update label, description, active flag or binding. ``table_name`` is immutable."""
    if "table_name" in data:
        current = get_template(template_id)
        if _normalize_table_name(data["table_name"]) != current.table_name:
            raise ValidationError(
                "table_name cannot be changed", details={"table_name": data["table_name"]}
            )

    with template_mutation(template_id, expected_version) as template:
        if "label" in data:
            template.label = _require_text(data, "label")
        if "description" in data:
            template.description = data.get("description") or ""
        if "is_active" in data:
            template.is_active = bool(data["is_active"])
        if "binding_code" in data:
            template.binding_code = data.get("binding_code") or None

    logger.info("Template updated", extra={"template_id": template_id})
    return template


def delete_template_tree(template: Template) -> None:
    """Delete a template's rows. Children go before their parents. No commit."""
    tables = list(template.tables)
    for table in tables:
        if table.relation_type == RelationType.CHILD.value:
            db.session.delete(table)
    db.session.flush()
    for table in tables:
        if table.relation_type != RelationType.CHILD.value:
            db.session.delete(table)
    db.session.flush()
    db.session.delete(template)
    db.session.flush()


def delete_template(template_id: str) -> None:
    """Delete a template with its tables, fields and inactive workflows.

    Raises:
        ValidationError: The template still has an active workflow.
    """
    template = get_template(template_id)
    active = [w.id for w in template.workflows if w.is_active]
    if active:
        raise ValidationError(
            "Template has an active approval workflow and cannot be deleted",
            details={"workflow_ids": active},
        )
    try:
        delete_template_tree(template)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Template deleted", extra={"template_id": template_id})


# ══════════════════════════════════════════════════════════════════════════
# Tables
# ══════════════════════════════════════════════════════════════════════════

def add_table(template_id: str, data: dict, expected_version: int | None = None) -> TemplateTable:
    """Add an ERP table to a template and populate its schema fields.

    Every TemplateTable invariant is checked before anything is written. A
    child table's parent must be a non-child table of the same template.

    Args:
        data: ``table_name``, ``alias``, ``label`` required; ``relation_type``,
            ``parent_table_id`` and ``foreign_keys`` for relations.

    Raises:
        ValidationError: Invariant violated or table unknown to the catalog.
    """
    table_name = _normalize_table_name(data.get("table_name"))
    label = _require_text(data, "label")

    with template_mutation(template_id, expected_version) as template:
        if any(t.table_name == table_name for t in template.tables):
            raise ValidationError(
                f"Table {table_name} is already part of this template",
                details={"table_name": table_name},
            )
        alias = _validate_alias(template, data.get("alias"))
        relation_type, parent_id, foreign_keys = _resolve_relation(
            template,
            data.get("relation_type"),
            data.get("parent_table_id"),
            data.get("foreign_keys"),
        )
        if relation_type != RelationType.CHILD.value and (
            data.get("parent_table_id") or data.get("foreign_keys")
        ):
            raise ValidationError(
                "parent_table_id and foreign_keys apply only to child tables",
                details={"relation_type": relation_type},
            )

        catalog_fields = _fetch_catalog_fields(table_name, template.binding_code)
        _check_catalog_names(template.id, catalog_fields)

        table = TemplateTable(
            table_name=table_name,
            alias=alias,
            label=label,
            table_order=len(template.tables),
            relation_type=relation_type,
            parent_table_id=parent_id,
            foreign_keys=foreign_keys,
            is_active=bool(data.get("is_active", True)),
        )
        template.tables.append(table)
        for order, cf in enumerate(catalog_fields):
            table.fields.append(_schema_field(template, cf, order))
        _refresh_multi_table(template)

    logger.info(
        "Template table added",
        extra={"template_id": template_id, "table_id": table.id, "table_name": table_name},
    )
    return table


def update_table(table_id: str, data: dict, expected_version: int | None = None) -> TemplateTable:
    """Update alias, label, active flag or relation of a table.

    Moving a table away from ``child`` clears its parent reference and
    foreign keys in the same commit. ``table_name`` cannot change.
    """
    table = get_table(table_id)
    if "table_name" in data and _normalize_table_name(data["table_name"]) != table.table_name:
        raise ValidationError(
            "table_name cannot be changed",
            details={"table_id": table_id, "table_name": data["table_name"]},
        )

    with template_mutation(table.template_id, expected_version) as template:
        alias = _validate_alias(template, data["alias"], table) if "alias" in data else table.alias
        label = _require_text(data, "label") if "label" in data else table.label

        relation_type = data.get("relation_type", table.relation_type)
        explicit_parent = data.get("parent_table_id")
        explicit_fks = data.get("foreign_keys")
        if relation_type != RelationType.CHILD.value and (explicit_parent or explicit_fks):
            raise ValidationError(
                "parent_table_id and foreign_keys apply only to child tables",
                details={"table_id": table_id, "relation_type": relation_type},
            )
        relation_type, parent_id, foreign_keys = _resolve_relation(
            template,
            relation_type,
            data.get("parent_table_id", table.parent_table_id),
            data.get("foreign_keys", table.foreign_keys),
            table=table,
        )

        table.alias = alias
        table.label = label
        table.relation_type = relation_type
        table.parent_table_id = parent_id
        table.foreign_keys = foreign_keys
        if "is_active" in data:
            table.is_active = bool(data["is_active"])

    logger.info("Template table updated", extra={"template_id": table.template_id, "table_id": table_id})
    return table


def remove_table(table_id: str, expected_version: int | None = None) -> None:
    """Remove a table and its fields.

    Raises:
        ValidationError: The table is the template's primary table, or other
            tables still reference it as their parent.
    """
    table = get_table(table_id)

    with template_mutation(table.template_id, expected_version) as template:
        if table.table_name == template.table_name:
            raise ValidationError(
                "The primary table cannot be removed", details={"table_id": table_id}
            )
        children = sorted(t.alias for t in template.tables if t.parent_table_id == table.id)
        if children:
            raise ValidationError(
                f"Table '{table.alias}' still has child tables: {', '.join(children)}",
                details={"table_id": table_id, "children": children},
            )

        field_names = [f.field_name for f in table.fields]
        workflow_service.flag_workflows_for_fields(template, field_names, reason="table_removed")

        template.tables.remove(table)
        for order, remaining in enumerate(sorted(template.tables, key=lambda t: t.table_order)):
            remaining.table_order = order
        _refresh_multi_table(template)

    logger.info("Template table removed", extra={"template_id": template.id, "table_id": table_id})


def sync_table_fields(table_id: str, expected_version: int | None = None) -> dict:
    """Refresh schema fields of a table from the catalog.

    Catalog-owned attributes and metadata are updated in place; visibility and
    order are left alone. Fields new to the catalog are appended, visible only
    when required. Schema fields no longer in the catalog are reported, not
    deleted.

    Returns:
        ``{"added": [...], "updated": [...], "missing": [...]}`` field names.
    """
    table = get_table(table_id)
    template = get_template(table.template_id)
    catalog_fields = _fetch_catalog_fields(table.table_name, template.binding_code)

    with template_mutation(table.template_id, expected_version) as template:
        by_source = {f.source_field_name: f for f in table.fields if not f.is_custom}
        new_fields = [cf for cf in catalog_fields if cf.field_name not in by_source]
        _check_catalog_names(template.id, new_fields)

        updated = []
        for cf in catalog_fields:
            field = by_source.get(cf.field_name)
            if field is None:
                continue
            field_type = cf.field_type if cf.field_type in FIELD_TYPES else "string"
            changed = (
                field.label != (cf.label or cf.field_name)
                or field.field_type != field_type
                or field.is_required != cf.is_required
                or (field.catalog_metadata or {}) != cf.metadata()
            )
            if changed:
                field.label = cf.label or cf.field_name
                field.field_type = field_type
                field.is_required = cf.is_required
                field.catalog_metadata = cf.metadata()
                updated.append(field.field_name)

        next_order = len(table.fields)
        for offset, cf in enumerate(new_fields):
            table.fields.append(_schema_field(template, cf, next_order + offset))

        catalog_names = {cf.field_name for cf in catalog_fields}
        missing = sorted(name for name in by_source if name not in catalog_names)

    result = {
        "added": [cf.field_name for cf in new_fields],
        "updated": updated,
        "missing": missing,
    }
    if missing:
        logger.warning(
            "Schema fields missing from catalog",
            extra={"table_id": table_id, "missing": missing},
        )
    logger.info(
        "Table fields synced",
        extra={"table_id": table_id, "added": len(new_fields), "updated": len(updated)},
    )
    return result


# ══════════════════════════════════════════════════════════════════════════
# Fields
# ══════════════════════════════════════════════════════════════════════════

def allowed_sql_tables() -> tuple[str, ...]:
    """ERP tables that SQL data sources and lookups may read."""
    return tuple(current_app.config.get("SQL_ALLOWED_TABLES") or ())


def _validated_field_config(template: Template, field_type: str, values: dict) -> dict:
    """Validate and normalize the typed JSON payloads of a field."""
    allowed = allowed_sql_tables()
    data_source = parse_data_source(
        field_type,
        values.get("data_source_type"),
        values.get("data_source_config"),
        catalog=get_schema_catalog(),
        binding_code=template.binding_code,
        allowed_tables=allowed,
    )
    attachment = parse_attachment_config(field_type, values.get("attachment_config"))
    lookup = parse_lookup_config(field_type, values.get("lookup_config"), allowed)
    rules = parse_validation_rules(values.get("validation_rules"))
    return {
        "data_source_type": data_source.type.value if data_source else None,
        "data_source_config": data_source.to_dict() if data_source else None,
        "attachment_config": attachment.to_dict() if attachment else None,
        "lookup_config": lookup.to_dict() if lookup else None,
        "validation_rules": rules.to_dict() if rules else None,
    }


def _validate_field_type(value) -> str:
    if value not in FIELD_TYPES:
        raise ValidationError(
            f"field_type must be one of {sorted(FIELD_TYPES)}", details={"field_type": value}
        )
    return value


def add_custom_field(table_id: str, data: dict, expected_version: int | None = None) -> FormField:
    """Append an admin-defined field to a table.

    Raises:
        ValidationError: Bad name, duplicate name in the template, unknown type,
            or an invalid data-source / attachment / lookup / validation payload.
    """
    table = get_table(table_id)

    with template_mutation(table.template_id, expected_version) as template:
        field_name = data.get("field_name")
        if not is_valid_name(field_name):
            raise ValidationError(
                "field_name may contain only lowercase letters, digits and underscore",
                details={"field_name": field_name},
            )
        if field_name in _template_field_names(template.id):
            raise ValidationError(
                f"Field '{field_name}' already exists in this template",
                details={"field_name": field_name},
            )
        label = _require_text(data, "label")
        field_type = _validate_field_type(data.get("field_type", FieldType.STRING.value))
        config = _validated_field_config(template, field_type, data)

        field = FormField(
            template=template,
            field_name=field_name,
            source_field_name=None,
            label=label,
            field_type=field_type,
            is_required=bool(data.get("is_required", False)),
            is_visible=bool(data.get("is_visible", True)),
            is_enabled=bool(data.get("is_enabled", True)),
            field_order=len(table.fields),
            field_group=data.get("field_group") or None,
            is_custom=True,
            placeholder=data.get("placeholder") or None,
            help_text=data.get("help_text") or None,
            **config,
        )
        table.fields.append(field)

    logger.info(
        "Custom field added",
        extra={"template_id": table.template_id, "table_id": table_id, "field_id": field.id},
    )
    return field


def update_field(field_id: str, data: dict, expected_version: int | None = None) -> FormField:
    """Update a field's attributes.

    Catalog-owned attributes of schema fields raise FixedFieldImmutableError;
    order changes go through the ordering engine. Hiding or renaming a field
    referenced by a workflow flags that workflow for review.
    """
    field = get_field(field_id)
    if "field_order" in data:
        raise ValidationError(
            "field_order is managed by move/reorder operations",
            details={"field_id": field_id, "attribute": "field_order"},
        )
    unknown = sorted(set(data) - _FIELD_EDITABLE - {"source_field_name"})
    if unknown:
        raise ValidationError(
            f"Attributes cannot be updated: {unknown}",
            details={"field_id": field_id, "attributes": unknown},
        )
    if not field.is_custom:
        for attribute in CATALOG_OWNED_ATTRIBUTES:
            if attribute in data and data[attribute] != getattr(field, attribute):
                raise FixedFieldImmutableError(field_id, attribute)
    elif data.get("source_field_name") is not None:
        raise ValidationError(
            "Custom fields have no source field", details={"field_id": field_id}
        )

    with template_mutation(field.template_id, expected_version) as template:
        old_name = field.field_name
        was_visible = field.is_visible

        field_name = data.get("field_name", field.field_name)
        if field.is_custom and field_name != old_name:
            if not is_valid_name(field_name):
                raise ValidationError(
                    "field_name may contain only lowercase letters, digits and underscore",
                    details={"field_name": field_name},
                )
            if field_name in _template_field_names(template.id, exclude_id=field.id):
                raise ValidationError(
                    f"Field '{field_name}' already exists in this template",
                    details={"field_name": field_name},
                )
        label = _require_text(data, "label") if "label" in data else field.label
        field_type = _validate_field_type(data.get("field_type", field.field_type))

        current_attachment = field.attachment_config if field_type == FieldType.ATTACHMENT.value else None
        current_lookup = field.lookup_config if field_type == FieldType.LOOKUP.value else None
        config = _validated_field_config(
            template,
            field_type,
            {
                "data_source_type": data.get("data_source_type", field.data_source_type),
                "data_source_config": data.get("data_source_config", field.data_source_config),
                "attachment_config": data.get("attachment_config", current_attachment),
                "lookup_config": data.get("lookup_config", current_lookup),
                "validation_rules": data.get("validation_rules", field.validation_rules),
            },
        )

        field.field_name = field_name
        field.label = label
        field.field_type = field_type
        for key in ("is_required", "is_visible", "is_enabled"):
            if key in data:
                setattr(field, key, bool(data[key]))
        for key in ("field_group", "placeholder", "help_text"):
            if key in data:
                setattr(field, key, data[key] or None)
        for key, value in config.items():
            setattr(field, key, value)

        if field_name != old_name:
            workflow_service.flag_workflows_for_fields(template, [old_name], reason="field_renamed")
        elif was_visible and not field.is_visible:
            workflow_service.flag_workflows_for_fields(template, [old_name], reason="field_hidden")

    logger.info("Field updated", extra={"template_id": field.template_id, "field_id": field_id})
    return field


def delete_custom_field(field_id: str, expected_version: int | None = None) -> None:
    """Delete a custom field and close the gap in its table's order.

    Raises:
        ValidationError: The field is schema-sourced (hide it instead).
    """
    field = get_field(field_id)
    if not field.is_custom:
        raise ValidationError(
            "Schema fields cannot be deleted, only hidden",
            details={"field_id": field_id, "field_name": field.field_name},
        )
    table = field.table

    with template_mutation(field.template_id, expected_version) as template:
        workflow_service.flag_workflows_for_fields(template, [field.field_name], reason="field_deleted")
        table.fields.remove(field)
        compact_order(table)

    logger.info(
        "Custom field deleted",
        extra={"template_id": template.id, "table_id": table.id, "field_id": field_id},
    )
