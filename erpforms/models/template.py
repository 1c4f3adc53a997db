"""Form template models: templates, participating ERP tables and form fields."""

from enum import Enum

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


class RelationType(str, Enum):
    PARENT = "parent"
    CHILD = "child"
    INDEPENDENT = "independent"


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    AUTOCOMPLETE = "autocomplete"
    MULTISELECT = "multiselect"
    ATTACHMENT = "attachment"
    LOOKUP = "lookup"


class DataSourceType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    SQL = "sql"
    GENERIC_TABLE = "generic_table"


RELATION_TYPES = {r.value for r in RelationType}
FIELD_TYPES = {t.value for t in FieldType}
DATA_SOURCE_TYPES = {d.value for d in DataSourceType}

# Field types whose options come from a data source.
OPTION_FIELD_TYPES = {
    FieldType.SELECT.value,
    FieldType.RADIO.value,
    FieldType.AUTOCOMPLETE.value,
    FieldType.MULTISELECT.value,
}


# ── Template ─────────────────────────────────────────────────────────────

class Template(db.Model):
    """A named form definition bound to one or more ERP tables."""

    __tablename__ = "form_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    table_name = Column(String(30), nullable=False, unique=True)
    label = Column(String(200), nullable=False)
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    is_multi_table = Column(Boolean, default=False, nullable=False)
    binding_code = Column(String(20), nullable=True)
    lock_version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tables = relationship(
        "TemplateTable",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateTable.table_order",
    )
    fields = relationship("FormField", viewonly=True, order_by="FormField.field_order")
    workflows = relationship(
        "Workflow",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="Workflow.created_at",
    )

    def to_dict(self, include_tables=True):
        data = {
            "id": self.id,
            "table_name": self.table_name,
            "label": self.label,
            "description": self.description or "",
            "is_active": self.is_active,
            "is_multi_table": self.is_multi_table,
            "binding_code": self.binding_code,
            "lock_version": self.lock_version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_tables:
            data["tables"] = [t.to_dict() for t in self.tables]
        return data


# ── Template Table ───────────────────────────────────────────────────────

class TemplateTable(db.Model):
    """One ERP table participating in a template."""

    __tablename__ = "template_tables"

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(
        String(36), ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False
    )
    table_name = Column(String(30), nullable=False)
    alias = Column(String(50), nullable=False)
    label = Column(String(200), nullable=False)
    table_order = Column(Integer, default=0, nullable=False)
    relation_type = Column(String(20), nullable=True)  # parent | child | independent | NULL
    parent_table_id = Column(
        String(36), ForeignKey("template_tables.id"), nullable=True
    )
    foreign_keys = Column(JSON, default=list)  # [{"parent_field": ..., "child_field": ...}]
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    template = relationship("Template", back_populates="tables")
    parent_table = relationship("TemplateTable", remote_side=[id], backref="child_tables")
    fields = relationship(
        "FormField",
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="FormField.field_order",
    )

    __table_args__ = (
        UniqueConstraint("template_id", "table_name", name="uq_template_table_name"),
        UniqueConstraint("template_id", "alias", name="uq_template_table_alias"),
        Index("ix_tt_template_order", "template_id", "table_order"),
    )

    def to_dict(self, include_fields=False):
        data = {
            "id": self.id,
            "template_id": self.template_id,
            "table_name": self.table_name,
            "alias": self.alias,
            "label": self.label,
            "table_order": self.table_order,
            "relation_type": self.relation_type,
            "parent_table_id": self.parent_table_id,
            "foreign_keys": list(self.foreign_keys or []),
            "is_active": self.is_active,
            "fields_count": len(self.fields),
        }
        if include_fields:
            data["fields"] = [f.to_dict() for f in self.fields]
        return data


# ── Form Field ───────────────────────────────────────────────────────────

class FormField(db.Model):
    """One field presented on a table's portion of the form."""

    __tablename__ = "form_fields"

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(
        String(36), ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False
    )
    table_id = Column(
        String(36), ForeignKey("template_tables.id", ondelete="CASCADE"), nullable=False
    )
    field_name = Column(String(100), nullable=False)
    source_field_name = Column(String(100), nullable=True)  # NULL for custom fields
    label = Column(String(200), nullable=False)
    field_type = Column(String(20), default=FieldType.STRING.value, nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    field_order = Column(Integer, default=0, nullable=False)
    field_group = Column(String(100), nullable=True)
    is_custom = Column(Boolean, default=False, nullable=False)
    data_source_type = Column(String(20), nullable=True)
    data_source_config = Column(JSON, nullable=True)
    validation_rules = Column(JSON, nullable=True)
    attachment_config = Column(JSON, nullable=True)
    lookup_config = Column(JSON, nullable=True)
    placeholder = Column(String(200), nullable=True)
    help_text = Column(Text, nullable=True)
    catalog_metadata = Column(JSON, nullable=True)  # size, decimals, mask, lookup, ...
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    template = relationship("Template")
    table = relationship("TemplateTable", back_populates="fields")

    __table_args__ = (
        UniqueConstraint("template_id", "field_name", name="uq_form_field_name"),
        Index("ix_ff_table_order", "table_id", "field_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "table_id": self.table_id,
            "field_name": self.field_name,
            "source_field_name": self.source_field_name,
            "label": self.label,
            "field_type": self.field_type,
            "is_required": self.is_required,
            "is_visible": self.is_visible,
            "is_enabled": self.is_enabled,
            "field_order": self.field_order,
            "field_group": self.field_group,
            "is_custom": self.is_custom,
            "data_source_type": self.data_source_type,
            "data_source_config": self.data_source_config,
            "validation_rules": self.validation_rules,
            "attachment_config": self.attachment_config,
            "lookup_config": self.lookup_config,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
            "catalog_metadata": self.catalog_metadata or {},
        }
