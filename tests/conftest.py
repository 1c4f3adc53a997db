"""
Shared pytest fixtures for the ERP Form Templates test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - catalog: In-memory schema catalog with DA0/DA1/SA1 (autouse)
    - client: Flask test client (function-scoped)
    - template / items_table: Pre-created DA0 template and its DA1 child
    - approver / approver_group: Directory user and a group containing them
"""

import pytest

from erpforms import create_app
from erpforms.integrations.schema_catalog import InMemorySchemaCatalog, install_schema_catalog
from erpforms.models import db as _db
from erpforms.services import approval_group_service, template_service

CATALOG_TABLES = {
    "DA0": [
        {"field_name": "DA0_FILIAL", "label": "Branch", "is_required": True, "size": 2},
        {"field_name": "DA0_CODTAB", "label": "Price list", "is_required": True, "size": 3},
        {"field_name": "DA0_DESCRI", "label": "Description", "is_required": True, "size": 30},
        {"field_name": "DA0_DATDE", "label": "Valid from", "field_type": "date"},
        {"field_name": "DA0_ATIVO", "label": "Active", "field_type": "boolean"},
    ],
    "DA1": [
        {"field_name": "DA1_CODTAB", "label": "Price list", "is_required": True, "size": 3},
        {"field_name": "DA1_ITEM", "label": "Item", "is_required": True, "size": 4},
        {"field_name": "DA1_PRCVEN", "label": "Price", "field_type": "number", "decimals": 2},
    ],
    "SA1": [
        {"field_name": "A1_COD", "label": "Customer", "is_required": True, "size": 6},
        {"field_name": "A1_NOME", "label": "Name", "is_required": True, "size": 40},
        {"field_name": "A1_EMAIL", "label": "E-mail"},
    ],
}

GENERIC_TABLES = {"12": "States", "Z1": "Approval status"}


def make_catalog(tables=None, generic_tables=None):
    return InMemorySchemaCatalog(
        CATALOG_TABLES if tables is None else tables,
        GENERIC_TABLES if generic_tables is None else generic_tables,
    )


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def catalog(app):
    """Fresh in-memory schema catalog for every test."""
    cat = make_catalog()
    install_schema_catalog(app, cat)
    return cat


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def template():
    """DA0 price-list template with its primary table."""
    return template_service.create_template({"table_name": "DA0", "label": "Price lists", "binding_code": "01"})


@pytest.fixture()
def primary_table(template):
    return template.tables[0]


@pytest.fixture()
def items_table(template, primary_table):
    """DA1 items attached to the primary table as a child."""
    return template_service.add_table(
        template.id,
        {
            "table_name": "DA1",
            "alias": "items",
            "label": "Items",
            "relation_type": "child",
            "parent_table_id": primary_table.id,
            "foreign_keys": [{"parent_field": "DA0_CODTAB", "child_field": "DA1_CODTAB"}],
        },
    )


@pytest.fixture()
def approver():
    return approval_group_service.upsert_user({"id": "u.silva", "name": "Ana Silva", "email": "ana@acme.com"})


@pytest.fixture()
def approver_group(approver):
    group = approval_group_service.create_group({"name": "Pricing", "description": "Pricing committee"})
    approval_group_service.add_member(group.id, approver.id)
    return group
