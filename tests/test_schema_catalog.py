"""
SQL schema catalog: dictionary reads routed to the database of each binding.
"""

import pytest
import sqlalchemy as sa

from erpforms.core.exceptions import NotFoundError
from erpforms.integrations.schema_catalog import SqlSchemaCatalog

_SX3 = (
    "CREATE TABLE SX3010 (X3_CAMPO TEXT, X3_TITULO TEXT, X3_TIPO TEXT, X3_TAMANHO INTEGER, "
    "X3_DECIMAL INTEGER, X3_OBRIGAT TEXT, X3_PICTURE TEXT, X3_F3 TEXT, X3_VALID TEXT, "
    "X3_WHEN TEXT, X3_RELACAO TEXT, X3_ARQUIVO TEXT, X3_ORDEM TEXT, D_E_L_E_T_ TEXT)"
)
_SX5 = "CREATE TABLE SX5010 (X5_TABELA TEXT, X5_CHAVE TEXT, X5_DESCRI TEXT, D_E_L_E_T_ TEXT)"
_INSERT_SX3 = sa.text(
    "INSERT INTO SX3010 VALUES (:campo, :titulo, :tipo, :tamanho, 0, :obrigat, '', '', '', '', '', "
    ":arquivo, :ordem, :deleted)"
)
_INSERT_SX5 = sa.text("INSERT INTO SX5010 VALUES ('00', :chave, :descri, '')")


def _seed(engine, fields, generic_tables):
    with engine.begin() as conn:
        conn.execute(sa.text(_SX3))
        conn.execute(sa.text(_SX5))
        for i, (name, label, tipo, required) in enumerate(fields):
            conn.execute(
                _INSERT_SX3,
                {
                    "campo": name, "titulo": label, "tipo": tipo, "tamanho": 10, "obrigat": "S" if required else "",
                    "arquivo": "DA0", "ordem": f"{i + 1:02d}", "deleted": "",
                },
            )
        for code, description in generic_tables:
            conn.execute(_INSERT_SX5, {"chave": code, "descri": description})


@pytest.fixture()
def sql_catalog():
    catalog = SqlSchemaCatalog("sqlite://", binding_urls={"02": "sqlite://"})
    _seed(
        catalog.engine_for(None),
        [("DA0_FILIAL", "Branch", "C", True), ("DA0_DESCRI", "Description", "C", True)],
        [("12", "States")],
    )
    _seed(
        catalog.engine_for("02"),
        [("DA0_FILIAL", "Filial", "C", True), ("DA0_DESCRI", "Descricao", "C", False), ("DA0_DATDE", "Data", "D", False)],
        [("12", "Estados"), ("Z1", "Status")],
    )
    return catalog


class TestSqlSchemaCatalog:
    def test_default_database(self, sql_catalog):
        fields = sql_catalog.get_table_structure("DA0")
        assert [(f.field_name, f.label) for f in fields] == [("DA0_FILIAL", "Branch"), ("DA0_DESCRI", "Description")]
        assert all(f.is_required for f in fields)

    def test_binding_reads_its_own_database(self, sql_catalog):
        fields = sql_catalog.get_table_structure("DA0", "02")
        assert [f.label for f in fields] == ["Filial", "Descricao", "Data"]
        assert fields[2].field_type == "date"
        assert [g.code for g in sql_catalog.list_generic_tables("02")] == ["12", "Z1"]

    def test_unmapped_binding_falls_back_to_default(self, sql_catalog):
        assert sql_catalog.engine_for("03") is sql_catalog.engine_for(None)
        assert [f.label for f in sql_catalog.get_table_structure("DA0", "03")] == ["Branch", "Description"]
        assert [g.label for g in sql_catalog.list_generic_tables("03")] == ["States"]

    def test_binding_engine_reused(self, sql_catalog):
        assert sql_catalog.engine_for("02") is sql_catalog.engine_for("02")
        assert sql_catalog.engine_for("02") is not sql_catalog.engine_for(None)

    def test_generic_table_lookup_per_binding(self, sql_catalog):
        assert sql_catalog.has_generic_table("Z1", "02")
        assert not sql_catalog.has_generic_table("Z1")

    def test_unknown_table(self, sql_catalog):
        with pytest.raises(NotFoundError):
            sql_catalog.get_table_structure("SA1", "02")
