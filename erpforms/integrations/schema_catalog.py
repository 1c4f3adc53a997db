"""
ERP Schema Catalog Gateway.

All reads of the ERP data dictionary go through a ``SchemaCatalog``:
  - per-table field catalog (SX3-style dictionary)
  - generic code-table catalog (SX5-style), used by ``generic_table`` data sources

Two implementations:
  - ``InMemorySchemaCatalog``: seeded from dicts; used in tests and local dev.
  - ``SqlSchemaCatalog``: reads the dictionary tables of a live ERP database
    through SQLAlchemy, one engine per connection binding when configured.

The active catalog is installed on the Flask app as
``app.extensions["schema_catalog"]`` by ``init_schema_catalog`` and fetched by
services with ``get_schema_catalog()``.

Testability: tests call ``install_schema_catalog(app, InMemorySchemaCatalog(...))``
instead of pointing at a real ERP database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import sqlalchemy as sa
from flask import current_app

from erpforms.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

# ERP dictionary type code -> form field type
_TYPE_MAP = {
    "C": "string",
    "N": "number",
    "D": "date",
    "L": "boolean",
    "M": "textarea",
}


def map_catalog_type(code: str | None) -> str:
    """Map an ERP dictionary type code to a form field type (default: string)."""
    return _TYPE_MAP.get((code or "").strip().upper(), "string")


@dataclass(frozen=True)
class CatalogField:
    """One field of an ERP table as described by the data dictionary."""
    field_name: str
    label: str
    field_type: str = "string"
    is_required: bool = False
    size: int = 0
    decimals: int = 0
    mask: str = ""
    lookup: str = ""
    validation: str = ""
    when: str = ""
    default_value: str = ""

    def metadata(self) -> dict:
        return {
            "size": self.size,
            "decimals": self.decimals,
            "mask": self.mask,
            "lookup": self.lookup,
            "validation": self.validation,
            "when": self.when,
            "default_value": self.default_value,
        }


@dataclass(frozen=True)
class GenericTable:
    code: str
    label: str


class SchemaCatalog:
    """Interface of the schema-sync collaborator."""

    def get_table_structure(self, table_name: str, binding_code: str | None = None) -> list[CatalogField]:
        """Return the ordered field catalog for ``table_name``.

        Raises:
            NotFoundError: If the table is unknown to the dictionary.
        """
        raise NotImplementedError

    def list_generic_tables(self, binding_code: str | None = None) -> list[GenericTable]:
        raise NotImplementedError

    def has_generic_table(self, code: str, binding_code: str | None = None) -> bool:
        return any(t.code == code for t in self.list_generic_tables(binding_code))


class InMemorySchemaCatalog(SchemaCatalog):
    """Catalog seeded from plain data.

    Args:
        tables: ``{"DA0": [CatalogField | dict, ...], ...}``
        generic_tables: ``{"12": "Status", ...}``
    """

    def __init__(self, tables: dict | None = None, generic_tables: dict | None = None) -> None:
        self._tables: dict[str, list[CatalogField]] = {}
        for name, fields in (tables or {}).items():
            self._tables[name.upper()] = [
                f if isinstance(f, CatalogField) else CatalogField(**f) for f in fields
            ]
        self._generic = [GenericTable(code, label) for code, label in (generic_tables or {}).items()]

    def get_table_structure(self, table_name, binding_code=None):
        fields = self._tables.get((table_name or "").upper())
        if fields is None:
            raise NotFoundError("CatalogTable", table_name)
        return list(fields)

    def list_generic_tables(self, binding_code=None):
        return list(self._generic)


class SqlSchemaCatalog(SchemaCatalog):
    """Reads the ERP data dictionary (SX3/SX5 layout) over SQLAlchemy.

    Each connection binding (country/company code) may point at its own ERP
    instance; bindings without an entry read the default database.

    Args:
        url: SQLAlchemy URL of the default ERP database.
        table_suffix: Company suffix appended to dictionary table names ("010").
        binding_urls: ``{"02": "mssql+pyodbc://..."}`` per-binding databases.
    """

    def __init__(self, url: str, table_suffix: str = "010", binding_urls: dict | None = None) -> None:
        self._engine = sa.create_engine(url, pool_pre_ping=True)
        self._suffix = table_suffix
        self._binding_urls = dict(binding_urls or {})
        self._binding_engines: dict[str, sa.engine.Engine] = {}

    def engine_for(self, binding_code: str | None = None):
        """Engine of the instance serving ``binding_code`` (default when unmapped)."""
        url = self._binding_urls.get(binding_code) if binding_code else None
        if url is None:
            return self._engine
        engine = self._binding_engines.get(binding_code)
        if engine is None:
            engine = self._binding_engines[binding_code] = sa.create_engine(url, pool_pre_ping=True)
            logger.info("Catalog engine created binding=%s", binding_code)
        return engine

    def get_table_structure(self, table_name, binding_code=None):
        query = sa.text(
            f"SELECT X3_CAMPO, X3_TITULO, X3_TIPO, X3_TAMANHO, X3_DECIMAL, X3_OBRIGAT, "
            f"X3_PICTURE, X3_F3, X3_VALID, X3_WHEN, X3_RELACAO "
            f"FROM SX3{self._suffix} "
            f"WHERE X3_ARQUIVO = :table AND D_E_L_E_T_ = '' ORDER BY X3_ORDEM"
        )
        with self.engine_for(binding_code).connect() as conn:
            rows = conn.execute(query, {"table": table_name}).mappings().all()
        if not rows:
            raise NotFoundError("CatalogTable", table_name)
        logger.info(
            "Catalog structure loaded table=%s binding=%s fields=%d", table_name, binding_code, len(rows)
        )
        return [
            CatalogField(
                field_name=(r["X3_CAMPO"] or "").strip(),
                label=(r["X3_TITULO"] or "").strip(),
                field_type=map_catalog_type(r["X3_TIPO"]),
                is_required=(r["X3_OBRIGAT"] or "").strip() == "S",
                size=int(r["X3_TAMANHO"] or 0),
                decimals=int(r["X3_DECIMAL"] or 0),
                mask=(r["X3_PICTURE"] or "").strip(),
                lookup=(r["X3_F3"] or "").strip(),
                validation=(r["X3_VALID"] or "").strip(),
                when=(r["X3_WHEN"] or "").strip(),
                default_value=(r["X3_RELACAO"] or "").strip(),
            )
            for r in rows
        ]

    def list_generic_tables(self, binding_code=None):
        query = sa.text(
            f"SELECT X5_CHAVE, X5_DESCRI FROM SX5{self._suffix} "
            f"WHERE X5_TABELA = '00' AND D_E_L_E_T_ = '' ORDER BY X5_CHAVE"
        )
        with self.engine_for(binding_code).connect() as conn:
            rows = conn.execute(query).all()
        return [GenericTable((r[0] or "").strip(), (r[1] or "").strip()) for r in rows]


def install_schema_catalog(app, catalog: SchemaCatalog) -> None:
    app.extensions["schema_catalog"] = catalog


def init_schema_catalog(app) -> None:
    """Install the catalog configured by SCHEMA_CATALOG_URL (in-memory if unset)."""
    url = app.config.get("SCHEMA_CATALOG_URL")
    if url:
        catalog = SqlSchemaCatalog(
            url,
            app.config.get("SCHEMA_TABLE_SUFFIX", "010"),
            binding_urls=app.config.get("SCHEMA_CATALOG_BINDING_URLS"),
        )
    else:
        catalog = InMemorySchemaCatalog()
    install_schema_catalog(app, catalog)
    app.logger.debug("Schema catalog installed: %s", type(catalog).__name__)


def get_schema_catalog() -> SchemaCatalog:
    return current_app.extensions["schema_catalog"]
