"""
Typed payloads for form-field configuration.

Data-source, lookup, attachment and validation-rule settings are stored as JSON on
``FormField`` but enter and leave the service layer only through the
dataclasses below. Each ``parse_*`` function validates the raw dict and
returns the typed payload (or ``None``); ``to_dict`` produces the stored JSON.

Data sources form a tagged union keyed by ``DataSourceType``:

    fixed          -> FixedDataSource(options=[FixedOption(value, label), ...])
    sql            -> SqlDataSource(query, key_field, value_field, label_field)
    generic_table  -> GenericTableDataSource(table_code)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from erpforms.core.exceptions import ValidationError
from erpforms.models.template import (
    DATA_SOURCE_TYPES,
    DataSourceType,
    FieldType,
    OPTION_FIELD_TYPES,
)

NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
_COLUMN_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
_COMPANY_SUFFIX = re.compile(r"\d{3}$")
# FROM/JOIN target, optional alias, then any comma-joined tables
_ALIAS = r"(?:\s+(?:AS\s+)?(?!(?:JOIN|INNER|LEFT|RIGHT|FULL|CROSS|OUTER|WHERE|ON|GROUP|ORDER|HAVING|UNION)\b)\w+)?"
_TABLE_REF = re.compile(
    rf'\b(?:FROM|JOIN)\s+([\w.\[\]"`]+){_ALIAS}((?:\s*,\s*[\w.\[\]"`]+{_ALIAS})*)',
    re.IGNORECASE,
)

# Statements a data-source query may never contain.
_FORBIDDEN_SQL = (
    "DROP", "DELETE", "UPDATE", "INSERT", "ALTER", "TRUNCATE", "EXEC", "EXECUTE",
    "CREATE", "GRANT", "REVOKE", "MERGE", "CALL", "BULK", "OPENROWSET", "OPENDATASOURCE",
)

ALLOWED_ATTACHMENT_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
)
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_FILE_SIZE_LIMIT = 100 * 1024 * 1024
DEFAULT_MAX_FILES = 5
MAX_FILES_LIMIT = 20


def is_valid_name(value) -> bool:
    """Lowercase alphanumerics and underscore only (aliases, custom field names)."""
    return isinstance(value, str) and bool(NAME_PATTERN.match(value))


def _require_str(config: dict, key: str, context: str) -> str:
    value = config.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{context}: '{key}' is required", details={key: "required"})
    return value.strip()


# ── Data sources ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FixedOption:
    value: str
    label: str


@dataclass(frozen=True)
class FixedDataSource:
    options: tuple[FixedOption, ...]
    type: DataSourceType = DataSourceType.FIXED

    def to_dict(self) -> dict:
        return {"options": [{"value": o.value, "label": o.label} for o in self.options]}


@dataclass(frozen=True)
class SqlDataSource:
    query: str
    key_field: str
    value_field: str
    label_field: str
    type: DataSourceType = DataSourceType.SQL

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "key_field": self.key_field,
            "value_field": self.value_field,
            "label_field": self.label_field,
        }


@dataclass(frozen=True)
class GenericTableDataSource:
    table_code: str
    type: DataSourceType = DataSourceType.GENERIC_TABLE

    def to_dict(self) -> dict:
        return {"table_code": self.table_code}


DataSource = FixedDataSource | SqlDataSource | GenericTableDataSource


def _parse_fixed(config: dict) -> FixedDataSource:
    raw = config.get("options")
    if not isinstance(raw, list) or not raw:
        raise ValidationError(
            "fixed data source requires a non-empty 'options' list",
            details={"options": "required"},
        )
    options = []
    seen = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"fixed option #{i} must be an object", details={"index": i})
        value = _require_str(item, "value", f"fixed option #{i}")
        label = _require_str(item, "label", f"fixed option #{i}")
        if value in seen:
            raise ValidationError(
                f"fixed option value {value!r} is duplicated", details={"value": value}
            )
        seen.add(value)
        options.append(FixedOption(value, label))
    return FixedDataSource(options=tuple(options))


def base_table_name(name: str) -> str:
    """``dbo.[SA1010]`` -> ``SA1``: unquoted, unqualified, company suffix stripped."""
    bare = re.sub(r'[\[\]"`]', "", name).rsplit(".", 1)[-1].upper()
    return _COMPANY_SUFFIX.sub("", bare)


def referenced_tables(query: str) -> list[str]:
    """Base names of every table a query reads through FROM, JOIN or comma joins."""
    names = []
    for match in _TABLE_REF.finditer(query):
        refs = [match.group(1)] + re.findall(r',\s*([\w.\[\]"`]+)', match.group(2) or "")
        names.extend(base_table_name(ref) for ref in refs)
    return list(dict.fromkeys(names))


def check_allowed_tables(tables, allowed_tables) -> None:
    """Raise unless every table is on the allow-list (compared by base name)."""
    allowed = {base_table_name(t) for t in allowed_tables}
    denied = sorted(t for t in tables if base_table_name(t) not in allowed)
    if denied:
        raise ValidationError(
            f"Tables not allowed for queries: {denied}", details={"tables": denied}
        )


def validate_select_query(query: str, allowed_tables=None) -> str:
    """Accept only a single read-only SELECT statement.

    With ``allowed_tables`` every table the query reads must be on that list.
    """
    normalized = query.strip()
    if not normalized.upper().startswith("SELECT"):
        raise ValidationError("Only SELECT queries are allowed", details={"query": "not_select"})
    if ";" in normalized.rstrip(";"):
        raise ValidationError("Multiple statements are not allowed", details={"query": "multiple"})
    if "--" in normalized or "/*" in normalized:
        raise ValidationError("Comments are not allowed in queries", details={"query": "comment"})
    for keyword in _FORBIDDEN_SQL:
        if re.search(rf"\b{keyword}\b", normalized, re.IGNORECASE):
            raise ValidationError(
                f"Query contains forbidden keyword {keyword}", details={"query": keyword}
            )
    if re.search(r"\b(XP|SP)_\w+", normalized, re.IGNORECASE):
        raise ValidationError("Stored procedure calls are not allowed", details={"query": "procedure"})
    if allowed_tables is not None:
        check_allowed_tables(referenced_tables(normalized), allowed_tables)
    return normalized


def _parse_sql(config: dict, allowed_tables) -> SqlDataSource:
    query = validate_select_query(_require_str(config, "query", "sql data source"), allowed_tables)
    columns = {}
    for key in ("key_field", "value_field", "label_field"):
        column = _require_str(config, key, "sql data source")
        if not _COLUMN_PATTERN.match(column):
            raise ValidationError(
                f"sql data source: '{key}' must be a column name", details={key: column}
            )
        columns[key] = column
    return SqlDataSource(query=query, **columns)


def _parse_generic_table(config: dict, catalog, binding_code) -> GenericTableDataSource:
    code = _require_str(config, "table_code", "generic_table data source")
    if catalog is not None and not catalog.has_generic_table(code, binding_code):
        raise ValidationError(
            f"Generic table {code!r} is not in the catalog", details={"table_code": code}
        )
    return GenericTableDataSource(table_code=code)


def parse_data_source(
    field_type: str,
    source_type: str | None,
    config,
    *,
    catalog=None,
    binding_code: str | None = None,
    allowed_tables=None,
) -> DataSource | None:
    """Validate a data-source type/config pair for a field of ``field_type``.

    ``catalog`` is consulted for ``generic_table`` codes when given; callers
    that only want shape validation pass ``None``. ``allowed_tables`` restricts
    the tables a ``sql`` query may read.

    Returns:
        The typed data source, or None when no data source is configured.
    """
    if source_type in (None, "", DataSourceType.NONE.value):
        return None
    if source_type not in DATA_SOURCE_TYPES:
        raise ValidationError(
            f"data_source_type must be one of {sorted(DATA_SOURCE_TYPES)}",
            details={"data_source_type": source_type},
        )
    if field_type not in OPTION_FIELD_TYPES:
        raise ValidationError(
            f"data sources apply only to {sorted(OPTION_FIELD_TYPES)} fields",
            details={"field_type": field_type, "data_source_type": source_type},
        )
    if not isinstance(config, dict):
        raise ValidationError(
            "data_source_config is required when data_source_type is set",
            details={"data_source_config": "required"},
        )
    if source_type == DataSourceType.FIXED.value:
        return _parse_fixed(config)
    if source_type == DataSourceType.SQL.value:
        return _parse_sql(config, allowed_tables)
    return _parse_generic_table(config, catalog, binding_code)


# ── Attachments ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AttachmentConfig:
    allowed_types: tuple[str, ...] = ALLOWED_ATTACHMENT_TYPES
    max_size: int = DEFAULT_MAX_FILE_SIZE
    max_files: int = DEFAULT_MAX_FILES

    def to_dict(self) -> dict:
        return {
            "allowed_types": list(self.allowed_types),
            "max_size": self.max_size,
            "max_files": self.max_files,
        }


def _int_in_range(value, key: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(
            f"attachment '{key}' must be an integer in [{low}, {high}]", details={key: value}
        )
    return value


def parse_attachment_config(field_type: str, config) -> AttachmentConfig | None:
    """Attachment config exists exactly for attachment fields; omitted keys take defaults."""
    if field_type != FieldType.ATTACHMENT.value:
        if config:
            raise ValidationError(
                "attachment_config is only allowed on attachment fields",
                details={"field_type": field_type},
            )
        return None
    config = config or {}
    if not isinstance(config, dict):
        raise ValidationError("attachment_config must be an object")

    allowed = config.get("allowed_types", list(ALLOWED_ATTACHMENT_TYPES))
    if not isinstance(allowed, list) or not allowed:
        raise ValidationError(
            "attachment 'allowed_types' must be a non-empty list",
            details={"allowed_types": allowed},
        )
    unknown = [t for t in allowed if t not in ALLOWED_ATTACHMENT_TYPES]
    if unknown:
        raise ValidationError(
            f"MIME types not allowed: {unknown}", details={"allowed_types": unknown}
        )
    return AttachmentConfig(
        allowed_types=tuple(dict.fromkeys(allowed)),
        max_size=_int_in_range(config.get("max_size", DEFAULT_MAX_FILE_SIZE), "max_size", 1, MAX_FILE_SIZE_LIMIT),
        max_files=_int_in_range(config.get("max_files", DEFAULT_MAX_FILES), "max_files", 1, MAX_FILES_LIMIT),
    )


# ── Lookups ──────────────────────────────────────────────────────────────

LOOKUP_FILTER_OPERATORS = ("equals", "like", "in")
LOOKUP_MODAL_WIDTHS = ("sm", "md", "lg", "xl")


@dataclass(frozen=True)
class LookupSearchField:
    field: str
    label: str
    width: int | None = None


@dataclass(frozen=True)
class LookupReturnField:
    source_field: str
    target_field: str


@dataclass(frozen=True)
class LookupFilter:
    field: str
    operator: str
    value: str | tuple[str, ...]


@dataclass(frozen=True)
class LookupConfig:
    """Search-modal lookup over an ERP table.

    The user searches ``source_table`` by ``search_fields``; the picked row
    stores ``value_field``, shows ``display_field`` and copies each
    ``return_fields`` pair into other fields of the form.
    """
    source_table: str
    value_field: str
    display_field: str
    search_fields: tuple[LookupSearchField, ...]
    return_fields: tuple[LookupReturnField, ...] = ()
    filters: tuple[LookupFilter, ...] = ()
    custom_query: str | None = None
    modal_title: str | None = None
    modal_width: str = "md"
    show_advanced_filters: bool = False

    def to_dict(self) -> dict:
        data = {
            "source_table": self.source_table,
            "value_field": self.value_field,
            "display_field": self.display_field,
            "search_fields": [
                {k: v for k, v in (("field", s.field), ("label", s.label), ("width", s.width)) if v is not None}
                for s in self.search_fields
            ],
            "return_fields": [
                {"source_field": r.source_field, "target_field": r.target_field} for r in self.return_fields
            ],
            "filters": [
                {
                    "field": f.field,
                    "operator": f.operator,
                    "value": list(f.value) if isinstance(f.value, tuple) else f.value,
                }
                for f in self.filters
            ],
            "modal_config": {
                "title": self.modal_title,
                "width": self.modal_width,
                "show_advanced_filters": self.show_advanced_filters,
            },
        }
        if self.custom_query:
            data["custom_query"] = self.custom_query
        return data


def _column(config: dict, key: str, context: str) -> str:
    column = _require_str(config, key, context)
    if not _COLUMN_PATTERN.match(column):
        raise ValidationError(f"{context}: '{key}' must be a column name", details={key: column})
    return column


def _objects(config: dict, key: str, required: bool) -> list[dict]:
    raw = config.get(key)
    if raw is None and not required:
        return []
    if not isinstance(raw, list) or (required and not raw) or not all(isinstance(i, dict) for i in raw):
        raise ValidationError(
            f"lookup '{key}' must be a {'non-empty ' if required else ''}list of objects",
            details={key: "invalid"},
        )
    return raw


def _parse_lookup_filter(item: dict, index: int) -> LookupFilter:
    context = f"lookup filter #{index}"
    field = _column(item, "field", context)
    operator = item.get("operator")
    if operator not in LOOKUP_FILTER_OPERATORS:
        raise ValidationError(
            f"{context}: operator must be one of {list(LOOKUP_FILTER_OPERATORS)}",
            details={"operator": operator},
        )
    value = item.get("value")
    if operator == "in":
        if not isinstance(value, list) or not value or not all(isinstance(v, str) for v in value):
            raise ValidationError(f"{context}: 'in' needs a non-empty list of strings", details={"index": index})
        value = tuple(value)
    elif not isinstance(value, str):
        raise ValidationError(f"{context}: value must be a string", details={"index": index})
    return LookupFilter(field, operator, value)


def parse_lookup_config(field_type: str, config, allowed_tables=None) -> LookupConfig | None:
    """Lookup config exists exactly for lookup fields.

    ``allowed_tables`` restricts ``source_table`` and every table read by
    ``custom_query``; ``None`` checks shape only.
    """
    if field_type != FieldType.LOOKUP.value:
        if config:
            raise ValidationError(
                "lookup_config is only allowed on lookup fields", details={"field_type": field_type}
            )
        return None
    if not isinstance(config, dict) or not config:
        raise ValidationError("lookup fields require a lookup_config", details={"lookup_config": "required"})

    source_table = _column(config, "source_table", "lookup").upper()
    custom_query = config.get("custom_query")
    if custom_query is not None:
        if not isinstance(custom_query, str) or not custom_query.strip():
            raise ValidationError("lookup 'custom_query' must be a non-empty string")
        custom_query = validate_select_query(custom_query, allowed_tables)
    if allowed_tables is not None:
        check_allowed_tables([source_table], allowed_tables)

    search_fields = tuple(
        LookupSearchField(
            field=_column(item, "field", f"lookup search field #{i}"),
            label=_require_str(item, "label", f"lookup search field #{i}"),
            width=item.get("width") if isinstance(item.get("width"), int) and item["width"] > 0 else None,
        )
        for i, item in enumerate(_objects(config, "search_fields", required=True))
    )
    return_fields = tuple(
        LookupReturnField(
            source_field=_column(item, "source_field", f"lookup return field #{i}"),
            target_field=_require_str(item, "target_field", f"lookup return field #{i}"),
        )
        for i, item in enumerate(_objects(config, "return_fields", required=False))
    )
    filters = tuple(
        _parse_lookup_filter(item, i) for i, item in enumerate(_objects(config, "filters", required=False))
    )

    modal = config.get("modal_config") or {}
    if not isinstance(modal, dict):
        raise ValidationError("lookup 'modal_config' must be an object")
    width = modal.get("width") or "md"
    if width not in LOOKUP_MODAL_WIDTHS:
        raise ValidationError(
            f"lookup modal width must be one of {list(LOOKUP_MODAL_WIDTHS)}", details={"width": width}
        )

    return LookupConfig(
        source_table=source_table,
        value_field=_column(config, "value_field", "lookup"),
        display_field=_column(config, "display_field", "lookup"),
        search_fields=search_fields,
        return_fields=return_fields,
        filters=filters,
        custom_query=custom_query,
        modal_title=modal.get("title") or None,
        modal_width=width,
        show_advanced_filters=bool(modal.get("show_advanced_filters", False)),
    )


# ── Validation rules ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class ValidationRules:
    min_length: int | None = None
    max_length: int | None = None
    regex: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    mask: str | None = None

    def to_dict(self) -> dict:
        data = {
            "min_length": self.min_length,
            "max_length": self.max_length,
            "regex": self.regex,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "mask": self.mask,
        }
        return {k: v for k, v in data.items() if v is not None}


_RULE_KEYS = {"min_length", "max_length", "regex", "min_value", "max_value", "mask"}


def parse_validation_rules(rules) -> ValidationRules | None:
    if not rules:
        return None
    if not isinstance(rules, dict):
        raise ValidationError("validation_rules must be an object")
    unknown = set(rules) - _RULE_KEYS
    if unknown:
        raise ValidationError(
            f"Unknown validation rules: {sorted(unknown)}", details={"unknown": sorted(unknown)}
        )

    for key in ("min_length", "max_length"):
        value = rules.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            raise ValidationError(f"'{key}' must be a non-negative integer", details={key: value})
    if (
        rules.get("min_length") is not None
        and rules.get("max_length") is not None
        and rules["min_length"] > rules["max_length"]
    ):
        raise ValidationError("min_length cannot exceed max_length")

    for key in ("min_value", "max_value"):
        value = rules.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValidationError(f"'{key}' must be a number", details={key: value})
    if (
        rules.get("min_value") is not None
        and rules.get("max_value") is not None
        and rules["min_value"] > rules["max_value"]
    ):
        raise ValidationError("min_value cannot exceed max_value")

    regex = rules.get("regex")
    if regex is not None:
        if not isinstance(regex, str) or not regex:
            raise ValidationError("'regex' must be a non-empty string")
        try:
            re.compile(regex)
        except re.error as exc:
            raise ValidationError(f"Invalid regex: {exc}", details={"regex": regex}) from exc

    return ValidationRules(**{k: rules.get(k) for k in _RULE_KEYS})
