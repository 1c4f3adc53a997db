"""
Template export / import.

A bundle is a JSON-safe dict carrying one template with its tables, fields and
workflows. Everything inside a bundle references other parts of the bundle by
stable names, never by database id:

    tables     -> parent table by ``parent_alias``
    fields     -> owning table by ``table_alias``
    levels     -> groups by name, users by directory id, fields by field_name

so an import can recreate the template under fresh ids and remap every
reference on the way in.

Bundle layout (format_version "1.0"):

    {
      "format_version": "1.0",
      "exported_at": "2026-01-01T00:00:00+00:00",
      "exported_by": "admin",
      "origin_binding": "01" | null,
      "template":  {table_name, label, description, is_active, is_multi_table, binding_code},
      "tables":    [{alias, table_name, label, table_order, relation_type,
                     parent_alias, foreign_keys, is_active}],
      "fields":    [{table_alias, field_name, source_field_name, label, field_type,
                     data_source_config, attachment_config, lookup_config, ...}],
      "workflows": [{name, description, is_active,
                     levels: [{level_order, name, approver_user_ids,
                               approver_groups, editable_fields, is_parallel}]}]
    }
"""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import nullcontext
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from erpforms.core.exceptions import (
    InvalidBundleError,
    InvariantViolation,
    NotFoundError,
    TemplateAlreadyExistsError,
    UnsupportedVersionError,
    ValidationError,
)
from erpforms.integrations.schema_catalog import get_schema_catalog
from erpforms.models import db
from erpforms.models.template import (
    FIELD_TYPES,
    DataSourceType,
    FormField,
    RelationType,
    Template,
    TemplateTable,
)
from erpforms.models.workflow import Workflow, WorkflowLevel
from erpforms.services import approval_group_service, template_service, workflow_service
from erpforms.services.field_config import (
    is_valid_name,
    parse_attachment_config,
    parse_data_source,
    parse_lookup_config,
    parse_validation_rules,
)
from erpforms.services.locking import assert_template_integrity, template_lock

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
SUPPORTED_VERSIONS = ("1.0",)

_FIELD_EXPORT_KEYS = (
    "field_name",
    "source_field_name",
    "label",
    "field_type",
    "is_required",
    "is_visible",
    "is_enabled",
    "field_order",
    "field_group",
    "is_custom",
    "data_source_type",
    "data_source_config",
    "validation_rules",
    "attachment_config",
    "lookup_config",
    "placeholder",
    "help_text",
    "catalog_metadata",
)


# ══════════════════════════════════════════════════════════════════════════
# Export
# ══════════════════════════════════════════════════════════════════════════

def _export_tables(template: Template) -> list[dict]:
    alias_by_id = {t.id: t.alias for t in template.tables}
    return [
        {
            "alias": t.alias,
            "table_name": t.table_name,
            "label": t.label,
            "table_order": t.table_order,
            "relation_type": t.relation_type,
            "parent_alias": alias_by_id.get(t.parent_table_id),
            "foreign_keys": [dict(fk) for fk in (t.foreign_keys or [])],
            "is_active": t.is_active,
        }
        for t in sorted(template.tables, key=lambda t: t.table_order)
    ]


def _export_fields(template: Template) -> list[dict]:
    rows = []
    for table in sorted(template.tables, key=lambda t: t.table_order):
        for field in sorted(table.fields, key=lambda f: f.field_order):
            row = {"table_alias": table.alias}
            row.update({key: getattr(field, key) for key in _FIELD_EXPORT_KEYS})
            rows.append(row)
    return rows


def _export_workflows(template: Template) -> list[dict]:
    group_ids = {gid for w in template.workflows for lv in w.levels for gid in (lv.approver_group_ids or [])}
    group_names = {}
    if group_ids:
        group_names = {
            g.id: g.name
            for g in (approval_group_service.get_group(gid) for gid in sorted(group_ids))
        }
    return [
        {
            "name": w.name,
            "description": w.description or "",
            "is_active": w.is_active,
            "levels": [
                {
                    "level_order": lv.level_order,
                    "name": lv.name or "",
                    "approver_user_ids": list(lv.approver_user_ids or []),
                    "approver_groups": [group_names[g] for g in (lv.approver_group_ids or [])],
                    "editable_fields": list(lv.editable_fields or []),
                    "is_parallel": lv.is_parallel,
                }
                for lv in w.levels
            ],
        }
        for w in template.workflows
    ]


def export_template(template_id: str, exported_by: str | None = None) -> dict:
    """Serialize a template, its tables, fields and workflows into a bundle."""
    template = template_service.get_template(template_id)
    bundle = {
        "format_version": FORMAT_VERSION,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "exported_by": exported_by,
        "origin_binding": template.binding_code,
        "template": {
            "table_name": template.table_name,
            "label": template.label,
            "description": template.description or "",
            "is_active": template.is_active,
            "is_multi_table": template.is_multi_table,
            "binding_code": template.binding_code,
        },
        "tables": _export_tables(template),
        "fields": _export_fields(template),
        "workflows": _export_workflows(template),
    }
    logger.info(
        "Template exported",
        extra={
            "template_id": template_id,
            "tables": len(bundle["tables"]),
            "fields": len(bundle["fields"]),
            "workflows": len(bundle["workflows"]),
        },
    )
    return bundle


# ══════════════════════════════════════════════════════════════════════════
# Structural validation (dry run, no writes)
# ══════════════════════════════════════════════════════════════════════════

def _bundle_error(message: str, **details) -> InvalidBundleError:
    return InvalidBundleError(message, details=details)


def _list_of_dicts(bundle: dict, key: str, required: bool) -> list[dict]:
    value = bundle.get(key)
    if value is None and not required:
        return []
    if not isinstance(value, list) or (required and not value):
        raise _bundle_error(f"Bundle '{key}' must be a non-empty list", section=key)
    if not all(isinstance(item, dict) for item in value):
        raise _bundle_error(f"Every entry of '{key}' must be an object", section=key)
    return value


def _check_dense(values, message: str, **details) -> None:
    if sorted(values) != list(range(len(values))):
        raise _bundle_error(message, orders=sorted(values), **details)


def _parse_tables(template: dict, tables: list[dict]) -> dict[str, dict]:
    aliases = [t.get("alias") for t in tables]
    for alias in aliases:
        if not is_valid_name(alias):
            raise _bundle_error("Invalid table alias", alias=alias)
    duplicated = sorted(a for a, n in Counter(aliases).items() if n > 1)
    names = [str(t.get("table_name") or "").strip().upper() for t in tables]
    duplicated_names = sorted(n for n, c in Counter(names).items() if c > 1)
    if duplicated or duplicated_names or not all(names):
        raise _bundle_error(
            "Table aliases and names must be present and unique",
            aliases=duplicated,
            table_names=duplicated_names,
        )
    if template["table_name"] not in names:
        raise _bundle_error("Primary table is missing from 'tables'", table_name=template["table_name"])
    if not all(isinstance(t.get("table_order"), int) for t in tables):
        raise _bundle_error("Every table needs an integer table_order")
    _check_dense([t["table_order"] for t in tables], "Table order is not dense")

    by_alias = {t["alias"]: t for t in tables}
    for table in tables:
        if not isinstance(table.get("label"), str) or not table["label"].strip():
            raise _bundle_error("Table label is required", alias=table["alias"])
        relation_type = table.get("relation_type")
        if relation_type == RelationType.CHILD.value:
            parent = by_alias.get(table.get("parent_alias"))
            if parent is None or parent is table:
                raise _bundle_error(
                    "Child table references an unknown parent",
                    alias=table["alias"],
                    parent_alias=table.get("parent_alias"),
                )
            if parent.get("relation_type") == RelationType.CHILD.value:
                raise _bundle_error(
                    "Child table's parent is itself a child",
                    alias=table["alias"],
                    parent_alias=parent["alias"],
                )
            try:
                template_service.validate_foreign_keys(table.get("foreign_keys"))
            except ValidationError as exc:
                raise _bundle_error(str(exc), alias=table["alias"]) from exc
        elif relation_type not in (None, "", RelationType.PARENT.value, RelationType.INDEPENDENT.value):
            raise _bundle_error("Unknown relation_type", alias=table["alias"], relation_type=relation_type)
        elif table.get("parent_alias") or table.get("foreign_keys"):
            raise _bundle_error("Only child tables may have a parent or foreign keys", alias=table["alias"])
    return by_alias


def _parse_fields(fields: list[dict], tables_by_alias: dict[str, dict]) -> None:
    names = [f.get("field_name") for f in fields]
    duplicated = sorted(n for n, c in Counter(names).items() if c > 1 and n)
    if duplicated:
        raise _bundle_error("Field names must be unique within the template", field_names=duplicated)

    allowed = template_service.allowed_sql_tables()
    orders: dict[str, list] = {alias: [] for alias in tables_by_alias}
    for field in fields:
        name = field.get("field_name")
        alias = field.get("table_alias")
        if alias not in tables_by_alias:
            raise _bundle_error("Field references an unknown table", field_name=name, table_alias=alias)
        if not isinstance(name, str) or not name:
            raise _bundle_error("Field name is required", table_alias=alias)
        if field.get("is_custom"):
            if not is_valid_name(name) or field.get("source_field_name"):
                raise _bundle_error("Invalid custom field", field_name=name)
        elif not field.get("source_field_name"):
            raise _bundle_error("Schema field without source_field_name", field_name=name)
        if field.get("field_type") not in FIELD_TYPES:
            raise _bundle_error("Unknown field_type", field_name=name, field_type=field.get("field_type"))
        if not isinstance(field.get("label"), str) or not field["label"].strip():
            raise _bundle_error("Field label is required", field_name=name)
        try:
            parse_data_source(
                field["field_type"],
                field.get("data_source_type"),
                field.get("data_source_config"),
                allowed_tables=allowed,
            )
            parse_attachment_config(field["field_type"], field.get("attachment_config"))
            parse_lookup_config(field["field_type"], field.get("lookup_config"), allowed)
            parse_validation_rules(field.get("validation_rules"))
        except ValidationError as exc:
            raise _bundle_error(str(exc), field_name=name, **exc.details) from exc
        if not isinstance(field.get("field_order"), int):
            raise _bundle_error("Field needs an integer field_order", field_name=name)
        orders[alias].append(field["field_order"])

    for alias, values in orders.items():
        _check_dense(values, "Field order is not dense", table_alias=alias)


def _parse_workflows(workflows: list[dict], fields: list[dict]) -> None:
    """Structure only. Editable fields must exist in the bundle; visibility is
    checked on import, where a hidden field flags the workflow for review."""
    known = {f["field_name"] for f in fields}
    if sum(1 for w in workflows if w.get("is_active")) > 1:
        raise _bundle_error("Bundle has more than one active workflow")
    for workflow in workflows:
        name = workflow.get("name")
        if not isinstance(name, str) or not name.strip():
            raise _bundle_error("Workflow name is required")
        levels = workflow.get("levels")
        if not isinstance(levels, list) or not levels or not all(isinstance(lv, dict) for lv in levels):
            raise _bundle_error("Workflow needs a list of levels", workflow=name)
        for index, level in enumerate(levels, start=1):
            if level.get("level_order") != index:
                raise _bundle_error("Level order is not dense", workflow=name, level_order=level.get("level_order"))
            for key in ("approver_user_ids", "approver_groups", "editable_fields"):
                value = level.get(key, [])
                if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                    raise _bundle_error(f"Level '{key}' must be a list of names", workflow=name, level_order=index)
            for field_name in level.get("editable_fields", []):
                if not isinstance(field_name, str) or field_name not in known:
                    raise _bundle_error(
                        "Editable field is not a field of the bundle",
                        workflow=name,
                        level_order=index,
                        field_name=field_name,
                    )


def _parse_bundle(bundle) -> dict:
    """Check well-formedness and structure. Returns the normalized template header."""
    if not isinstance(bundle, dict):
        raise _bundle_error("Bundle must be a JSON object")
    version = bundle.get("format_version")
    if not version:
        raise _bundle_error("Bundle has no format_version")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersionError(str(version), list(SUPPORTED_VERSIONS))

    template = bundle.get("template")
    if not isinstance(template, dict):
        raise _bundle_error("Bundle has no template")
    table_name = str(template.get("table_name") or "").strip().upper()
    label = template.get("label")
    if not table_name or not isinstance(label, str) or not label.strip():
        raise _bundle_error("Template needs table_name and label")
    header = dict(template, table_name=table_name)

    tables = _list_of_dicts(bundle, "tables", required=True)
    fields = _list_of_dicts(bundle, "fields", required=False)
    workflows = _list_of_dicts(bundle, "workflows", required=False)
    tables_by_alias = _parse_tables(header, tables)
    _parse_fields(fields, tables_by_alias)
    _parse_workflows(workflows, fields)
    return header


# ══════════════════════════════════════════════════════════════════════════
# Destination checks
# ══════════════════════════════════════════════════════════════════════════

def _effective_binding(bundle: dict, header: dict, target_binding: str | None) -> str | None:
    return target_binding or bundle.get("origin_binding") or header.get("binding_code") or None


def _collect_warnings(bundle: dict, header: dict, target_binding: str | None) -> list[dict]:
    warnings = []
    binding = _effective_binding(bundle, header, target_binding)
    if binding and binding not in (current_app.config.get("CONNECTION_BINDINGS") or ()):
        warnings.append({
            "type": "binding_unresolved",
            "binding_code": binding,
            "message": f"Binding {binding} is not configured in this installation",
        })

    catalog = get_schema_catalog()
    for table in bundle["tables"]:
        try:
            catalog.get_table_structure(table["table_name"], binding)
        except NotFoundError:
            warnings.append({
                "type": "catalog_table_missing",
                "table_name": table["table_name"],
                "message": f"Table {table['table_name']} is not in the destination schema catalog",
            })

    for field in bundle.get("fields") or []:
        source_type = field.get("data_source_type")
        config = field.get("data_source_config") or {}
        if source_type == DataSourceType.GENERIC_TABLE.value:
            code = config.get("table_code")
            if not catalog.has_generic_table(code, binding):
                warnings.append({
                    "type": "generic_table_missing",
                    "field_name": field["field_name"],
                    "table_code": code,
                    "message": f"Generic table {code} does not exist in the destination catalog",
                })
        elif source_type == DataSourceType.SQL.value:
            warnings.append({
                "type": "sql_data_source",
                "field_name": field["field_name"],
                "message": "SQL data source must be reviewed against the destination database",
            })
        if (field.get("lookup_config") or {}).get("custom_query"):
            warnings.append({
                "type": "lookup_sql_query",
                "field_name": field["field_name"],
                "message": "Lookup query must be reviewed against the destination database",
            })

    group_names = {g for w in bundle.get("workflows") or [] for lv in w["levels"] for g in lv.get("approver_groups", [])}
    user_ids = {u for w in bundle.get("workflows") or [] for lv in w["levels"] for u in lv.get("approver_user_ids", [])}
    found_groups = approval_group_service.get_groups_by_name(group_names)
    for name in sorted(group_names - set(found_groups)):
        warnings.append({"type": "group_unresolved", "group_name": name, "message": f"Approval group {name} not found"})
    for user_id in sorted(user_ids - approval_group_service.existing_user_ids(user_ids)):
        warnings.append({"type": "user_unresolved", "user_id": user_id, "message": f"User {user_id} not found"})
    return warnings


def validate_import(bundle, target_binding: str | None = None) -> dict:
    """Dry-run an import.

    Returns:
        ``{valid, template_exists, existing_template_id, conflicts, warnings}``.

    Raises:
        InvalidBundleError: Malformed bundle or structural problems.
        UnsupportedVersionError: Unknown ``format_version``.
    """
    header = _parse_bundle(bundle)
    existing = template_service.get_template_by_table_name(header["table_name"])
    conflicts = []
    if existing is not None:
        conflicts.append({
            "type": "template_exists",
            "table_name": header["table_name"],
            "existing_template_id": existing.id,
        })
    return {
        "valid": True,
        "template_exists": existing is not None,
        "existing_template_id": existing.id if existing else None,
        "conflicts": conflicts,
        "warnings": _collect_warnings(bundle, header, target_binding),
    }


# ══════════════════════════════════════════════════════════════════════════
# Import
# ══════════════════════════════════════════════════════════════════════════

def _create_tables(template: Template, tables: list[dict]) -> dict[str, TemplateTable]:
    """Create parents first so children can reference their fresh ids."""
    created: dict[str, TemplateTable] = {}
    ordered = sorted(tables, key=lambda t: (t.get("relation_type") == RelationType.CHILD.value, t["table_order"]))
    for spec in ordered:
        is_child = spec.get("relation_type") == RelationType.CHILD.value
        if is_child and not created:
            raise InvariantViolation("Child table created before any parent")
        if is_child:
            db.session.flush()
        table = TemplateTable(
            table_name=spec["table_name"].strip().upper(),
            alias=spec["alias"],
            label=spec["label"].strip(),
            table_order=spec["table_order"],
            relation_type=spec.get("relation_type") or None,
            parent_table_id=created[spec["parent_alias"]].id if is_child else None,
            foreign_keys=template_service.validate_foreign_keys(spec["foreign_keys"]) if is_child else [],
            is_active=bool(spec.get("is_active", True)),
        )
        template.tables.append(table)
        created[spec["alias"]] = table
    return created


def _create_fields(template: Template, tables: dict[str, TemplateTable], fields: list[dict]) -> None:
    allowed = template_service.allowed_sql_tables()
    for spec in fields:
        field_type = spec["field_type"]
        data_source = parse_data_source(
            field_type, spec.get("data_source_type"), spec.get("data_source_config"), allowed_tables=allowed
        )
        attachment = parse_attachment_config(field_type, spec.get("attachment_config"))
        lookup = parse_lookup_config(field_type, spec.get("lookup_config"), allowed)
        rules = parse_validation_rules(spec.get("validation_rules"))
        tables[spec["table_alias"]].fields.append(
            FormField(
                template=template,
                field_name=spec["field_name"],
                source_field_name=None if spec.get("is_custom") else spec.get("source_field_name"),
                label=spec["label"].strip(),
                field_type=field_type,
                is_required=bool(spec.get("is_required", False)),
                is_visible=bool(spec.get("is_visible", True)),
                is_enabled=bool(spec.get("is_enabled", True)),
                field_order=spec["field_order"],
                field_group=spec.get("field_group") or None,
                is_custom=bool(spec.get("is_custom", False)),
                data_source_type=data_source.type.value if data_source else None,
                data_source_config=data_source.to_dict() if data_source else None,
                validation_rules=rules.to_dict() if rules else None,
                attachment_config=attachment.to_dict() if attachment else None,
                lookup_config=lookup.to_dict() if lookup else None,
                placeholder=spec.get("placeholder") or None,
                help_text=spec.get("help_text") or None,
                catalog_metadata=spec.get("catalog_metadata") or None,
            )
        )


def _create_workflows(template: Template, workflows: list[dict]) -> None:
    """Recreate workflows with group names and user ids mapped to this installation.

    Unresolvable approver references are dropped and noted. A workflow whose
    levels no longer validate (a level without approvers, an editable field
    that is hidden here) is imported inactive and flagged for review.
    """
    visible = workflow_service.visible_field_names(template.id)
    for spec in workflows:
        notes = []
        levels = []
        for raw in spec["levels"]:
            order = raw["level_order"]
            names = list(dict.fromkeys(raw.get("approver_groups", [])))
            groups = approval_group_service.get_groups_by_name(names)
            user_ids = list(dict.fromkeys(raw.get("approver_user_ids", [])))
            known_users = approval_group_service.existing_user_ids(user_ids)
            for name in names:
                if name not in groups:
                    notes.append({"level_order": order, "group_name": name, "reason": "group_unresolved"})
            for user_id in user_ids:
                if user_id not in known_users:
                    notes.append({"level_order": order, "user_id": user_id, "reason": "user_unresolved"})
            levels.append({
                "level_order": order,
                "name": (raw.get("name") or "").strip() or f"Level {order}",
                "approver_user_ids": [u for u in user_ids if u in known_users],
                "approver_group_ids": [groups[n].id for n in names if n in groups],
                "editable_fields": list(dict.fromkeys(raw.get("editable_fields", []))),
                "is_parallel": bool(raw.get("is_parallel", False)),
            })

        is_active = bool(spec.get("is_active"))
        problems = workflow_service.review_notes(levels, visible)
        if problems:
            notes.extend(problems)
            is_active = False

        workflow = Workflow(
            template=template,
            name=spec["name"].strip(),
            description=spec.get("description") or "",
            is_active=is_active,
            needs_review=bool(notes),
            review_notes=notes,
        )
        for level in levels:
            workflow.levels.append(WorkflowLevel(**level))
        db.session.add(workflow)


def import_template(
    bundle,
    overwrite_existing: bool = False,
    target_binding: str | None = None,
) -> Template:
    """Recreate a bundle's template in this installation under fresh ids.

    With ``overwrite_existing`` an existing template for the same primary
    table is deleted first. Delete and recreate share one transaction; any
    failure rolls back to the pre-import state.

    Raises:
        InvalidBundleError / UnsupportedVersionError: Bundle rejected, nothing written.
        TemplateAlreadyExistsError: Template exists and overwrite was not requested.
    """
    header = _parse_bundle(bundle)
    table_name = header["table_name"]
    existing = template_service.get_template_by_table_name(table_name)
    if existing is not None and not overwrite_existing:
        raise TemplateAlreadyExistsError(table_name, existing.id)

    replaced_id = existing.id if existing is not None else None
    with template_lock(replaced_id) if replaced_id else nullcontext():
        try:
            if existing is not None:
                existing = db.session.execute(
                    select(Template).where(Template.id == replaced_id).with_for_update()
                ).scalar_one()
                template_service.delete_template_tree(existing)

            template = Template(
                table_name=table_name,
                label=header["label"].strip(),
                description=header.get("description") or "",
                is_active=bool(header.get("is_active", True)),
                is_multi_table=len(bundle["tables"]) > 1,
                binding_code=_effective_binding(bundle, header, target_binding),
                lock_version=0,
            )
            db.session.add(template)
            tables = _create_tables(template, bundle["tables"])
            _create_fields(template, tables, bundle.get("fields") or [])
            db.session.flush()
            _create_workflows(template, bundle.get("workflows") or [])
            db.session.flush()

            try:
                assert_template_integrity(template.id)
            except InvariantViolation:
                logger.critical("Imported template failed integrity check", extra={"table_name": table_name})
                raise
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise TemplateAlreadyExistsError(table_name) from exc
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Template imported",
        extra={
            "template_id": template.id,
            "table_name": table_name,
            "replaced_template_id": replaced_id,
            "tables": len(bundle["tables"]),
        },
    )
    return template
