"""
Typed field-configuration payloads (no database access).
"""

import pytest

from erpforms.core.exceptions import ValidationError
from erpforms.integrations.schema_catalog import InMemorySchemaCatalog
from erpforms.models.template import DataSourceType
from erpforms.services.field_config import (
    MAX_FILE_SIZE_LIMIT,
    FixedDataSource,
    GenericTableDataSource,
    SqlDataSource,
    is_valid_name,
    parse_attachment_config,
    base_table_name,
    parse_data_source,
    parse_lookup_config,
    parse_validation_rules,
    referenced_tables,
    validate_select_query,
)


class TestNames:
    @pytest.mark.parametrize("name", ["main", "items_2", "a", "_x"])
    def test_valid(self, name):
        assert is_valid_name(name)

    @pytest.mark.parametrize("name", ["Main", "with space", "dash-ed", "", None, 3, "ção"])
    def test_invalid(self, name):
        assert not is_valid_name(name)


class TestDataSource:
    @pytest.mark.parametrize("source_type", [None, "", "none"])
    def test_no_source(self, source_type):
        assert parse_data_source("select", source_type, None) is None

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="data_source_type"):
            parse_data_source("select", "ldap", {})

    def test_config_required(self):
        with pytest.raises(ValidationError, match="data_source_config is required"):
            parse_data_source("radio", "fixed", None)

    def test_fixed(self):
        source = parse_data_source("radio", "fixed", {"options": [{"value": "Y", "label": "Yes"}]})
        assert isinstance(source, FixedDataSource)
        assert source.type is DataSourceType.FIXED
        assert source.to_dict() == {"options": [{"value": "Y", "label": "Yes"}]}

    def test_fixed_duplicate_values(self):
        with pytest.raises(ValidationError, match="duplicated"):
            parse_data_source(
                "select", "fixed", {"options": [{"value": "Y", "label": "Yes"}, {"value": "Y", "label": "Sim"}]}
            )

    def test_fixed_empty_options(self):
        with pytest.raises(ValidationError, match="non-empty"):
            parse_data_source("select", "fixed", {"options": []})

    def test_sql(self):
        source = parse_data_source(
            "multiselect",
            "sql",
            {"query": "SELECT X5_CHAVE, X5_DESCRI FROM SX5010", "key_field": "X5_CHAVE",
             "value_field": "X5_CHAVE", "label_field": "X5_DESCRI"},
        )
        assert isinstance(source, SqlDataSource)
        assert source.to_dict()["query"] == "SELECT X5_CHAVE, X5_DESCRI FROM SX5010"

    def test_sql_column_names_checked(self):
        with pytest.raises(ValidationError, match="column name"):
            parse_data_source(
                "select", "sql",
                {"query": "SELECT a FROM t", "key_field": "a; drop", "value_field": "a", "label_field": "a"},
            )

    def test_generic_table_checked_against_catalog(self):
        catalog = InMemorySchemaCatalog(generic_tables={"12": "States"})
        source = parse_data_source("select", "generic_table", {"table_code": "12"}, catalog=catalog)
        assert source == GenericTableDataSource(table_code="12")
        with pytest.raises(ValidationError):
            parse_data_source("select", "generic_table", {"table_code": "77"}, catalog=catalog)

    def test_generic_table_shape_only_without_catalog(self):
        source = parse_data_source("select", "generic_table", {"table_code": "77"})
        assert source.table_code == "77"


class TestSelectQuery:
    @pytest.mark.parametrize(
        "query",
        [
            "SELECT last_update, created_by FROM audit",
            "select code, name from states where active = 1;",
            "SELECT A1_COD FROM SA1010 WHERE D_E_L_E_T_ = ' '",
        ],
    )
    def test_accepted(self, query):
        assert validate_select_query(query)

    @pytest.mark.parametrize(
        "query,reason",
        [
            ("DELETE FROM SA1010", "Only SELECT"),
            ("SELECT 1; DROP TABLE SA1010", "Multiple statements"),
            ("SELECT * FROM t WHERE x IN (SELECT 1 FROM y) UNION SELECT 1 FROM z; UPDATE t SET a=1", "Multiple"),
            ("SELECT * INTO backup FROM t WHERE 1=1 AND EXEC('x') = 1", "EXEC"),
            ("SELECT xp_cmdshell('dir')", "Stored procedure"),
            ("SELECT A1_COD FROM SA1010 -- trailing", "Comments"),
            ("SELECT A1_COD /* x */ FROM SA1010", "Comments"),
        ],
    )
    def test_rejected(self, query, reason):
        with pytest.raises(ValidationError, match=reason):
            validate_select_query(query)


class TestAllowedTables:
    ALLOWED = ("SA1", "SB1", "SX5")

    @pytest.mark.parametrize(
        "name,base",
        [("SA1010", "SA1"), ("dbo.[SA1010]", "SA1"), ('"sx5020"', "SX5"), ("SYS_COMPANY", "SYS_COMPANY")],
    )
    def test_base_table_name(self, name, base):
        assert base_table_name(name) == base

    def test_referenced_tables_follow_joins(self):
        query = (
            "SELECT A.A1_COD, B.B1_DESC FROM SA1010 A, SX5010 X "
            "INNER JOIN SB1010 B ON B.B1_COD = A.A1_COD WHERE A.D_E_L_E_T_ = ' '"
        )
        assert referenced_tables(query) == ["SA1", "SX5", "SB1"]

    def test_comma_joined_tables(self):
        assert referenced_tables("SELECT 1 FROM SA1010, SE1010 WHERE 1 = 1") == ["SA1", "SE1"]

    def test_allowed_query(self):
        query = "SELECT A1_COD FROM SA1010 A LEFT JOIN SB1010 B ON B.B1_COD = A.A1_COD"
        assert validate_select_query(query, self.ALLOWED) == query

    @pytest.mark.parametrize(
        "query,denied",
        [
            ("SELECT * FROM ZZZ010", ["ZZZ"]),
            ("SELECT * FROM SA1010 A JOIN SYS_USR U ON U.ID = A.A1_COD", ["SYS_USR"]),
            ("SELECT * FROM SA1010, SE1010", ["SE1"]),
        ],
    )
    def test_denied_tables_listed(self, query, denied):
        with pytest.raises(ValidationError, match="not allowed") as exc_info:
            validate_select_query(query, self.ALLOWED)
        assert exc_info.value.details["tables"] == denied

    def test_sql_data_source_uses_allow_list(self):
        config = {"query": "SELECT Z_COD FROM ZZZ010", "key_field": "Z_COD", "value_field": "Z_COD", "label_field": "Z_COD"}
        assert parse_data_source("select", "sql", config) is not None
        with pytest.raises(ValidationError, match="not allowed"):
            parse_data_source("select", "sql", config, allowed_tables=self.ALLOWED)


def _lookup(**overrides):
    config = {
        "source_table": "SA1",
        "value_field": "A1_COD",
        "display_field": "A1_NOME",
        "search_fields": [{"field": "A1_COD", "label": "Code", "width": 120}, {"field": "A1_NOME", "label": "Name"}],
    }
    config.update(overrides)
    return config


class TestLookupConfig:
    def test_minimal(self):
        lookup = parse_lookup_config("lookup", _lookup(), ("SA1",))
        assert lookup.to_dict() == {
            "source_table": "SA1",
            "value_field": "A1_COD",
            "display_field": "A1_NOME",
            "search_fields": [{"field": "A1_COD", "label": "Code", "width": 120}, {"field": "A1_NOME", "label": "Name"}],
            "return_fields": [],
            "filters": [],
            "modal_config": {"title": None, "width": "md", "show_advanced_filters": False},
        }

    def test_full(self):
        lookup = parse_lookup_config(
            "lookup",
            _lookup(
                source_table="sa1010",
                return_fields=[{"source_field": "A1_NOME", "target_field": "customer_name"}],
                filters=[
                    {"field": "A1_MSBLQL", "operator": "equals", "value": "2"},
                    {"field": "A1_EST", "operator": "in", "value": ["SP", "RJ"]},
                ],
                custom_query="SELECT A1_COD, A1_NOME FROM SA1010 WHERE D_E_L_E_T_ = ' '",
                modal_config={"title": "Customers", "width": "lg", "show_advanced_filters": True},
            ),
            ("SA1",),
        )
        data = lookup.to_dict()
        assert data["source_table"] == "SA1010"
        assert data["filters"][1] == {"field": "A1_EST", "operator": "in", "value": ["SP", "RJ"]}
        assert data["modal_config"] == {"title": "Customers", "width": "lg", "show_advanced_filters": True}
        assert data["custom_query"].startswith("SELECT A1_COD")

    def test_non_lookup_field_without_config(self):
        assert parse_lookup_config("text", None) is None

    def test_rejected_on_non_lookup_field(self):
        with pytest.raises(ValidationError, match="only allowed on lookup fields"):
            parse_lookup_config("select", _lookup())

    @pytest.mark.parametrize("config", [None, {}, "SA1"])
    def test_required_on_lookup_field(self, config):
        with pytest.raises(ValidationError, match="require a lookup_config"):
            parse_lookup_config("lookup", config)

    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"search_fields": []}, "search_fields"),
            ({"value_field": "A1_COD; drop"}, "column name"),
            ({"filters": [{"field": "A1_EST", "operator": "between", "value": "x"}]}, "operator"),
            ({"filters": [{"field": "A1_EST", "operator": "in", "value": []}]}, "non-empty list"),
            ({"filters": [{"field": "A1_EST", "operator": "like", "value": 3}]}, "must be a string"),
            ({"modal_config": {"width": "huge"}}, "modal width"),
            ({"custom_query": "DELETE FROM SA1010"}, "Only SELECT"),
        ],
    )
    def test_invalid(self, overrides, reason):
        with pytest.raises(ValidationError, match=reason):
            parse_lookup_config("lookup", _lookup(**overrides))

    def test_source_table_checked_against_allow_list(self):
        with pytest.raises(ValidationError, match="not allowed"):
            parse_lookup_config("lookup", _lookup(source_table="SYS_USR"), ("SA1",))

    def test_custom_query_tables_checked_against_allow_list(self):
        config = _lookup(custom_query="SELECT A1_COD, A1_NOME FROM SA1010 A JOIN ZZZ010 Z ON Z.ID = A.A1_COD")
        with pytest.raises(ValidationError, match="not allowed") as exc_info:
            parse_lookup_config("lookup", config, ("SA1",))
        assert exc_info.value.details["tables"] == ["ZZZ"]


class TestAttachmentConfig:
    def test_non_attachment_without_config(self):
        assert parse_attachment_config("string", None) is None

    def test_partial_config_keeps_defaults(self):
        config = parse_attachment_config("attachment", {"allowed_types": ["application/pdf"], "max_files": 1})
        assert config.to_dict() == {"allowed_types": ["application/pdf"], "max_size": 10 * 1024 * 1024, "max_files": 1}

    def test_size_limit(self):
        with pytest.raises(ValidationError, match="max_size"):
            parse_attachment_config("attachment", {"max_size": MAX_FILE_SIZE_LIMIT + 1})

    @pytest.mark.parametrize("max_files", [0, 21, "3", True])
    def test_max_files_bounds(self, max_files):
        with pytest.raises(ValidationError, match="max_files"):
            parse_attachment_config("attachment", {"max_files": max_files})

    def test_unknown_mime_type(self):
        with pytest.raises(ValidationError, match="not allowed"):
            parse_attachment_config("attachment", {"allowed_types": ["application/x-msdownload"]})


class TestValidationRules:
    def test_empty(self):
        assert parse_validation_rules(None) is None
        assert parse_validation_rules({}) is None

    def test_to_dict_drops_unset(self):
        rules = parse_validation_rules({"min_value": 0, "max_value": 9.5, "mask": "@E 999.99"})
        assert rules.to_dict() == {"min_value": 0, "max_value": 9.5, "mask": "@E 999.99"}

    def test_unknown_key(self):
        with pytest.raises(ValidationError, match="Unknown validation rules"):
            parse_validation_rules({"required": True})

    def test_negative_length(self):
        with pytest.raises(ValidationError, match="non-negative"):
            parse_validation_rules({"max_length": -1})

    def test_value_range(self):
        with pytest.raises(ValidationError, match="min_value cannot exceed"):
            parse_validation_rules({"min_value": 10, "max_value": 1})

    def test_bad_regex(self):
        with pytest.raises(ValidationError, match="Invalid regex"):
            parse_validation_rules({"regex": "([a-z"})
