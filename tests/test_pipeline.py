"""Tests for the extract -> transform -> load pipeline."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sheetbridge.adapters.spreadsheet import SpreadsheetDatabase
from sheetbridge.adapters.sql import SqlDatabase
from sheetbridge.errors import IncompleteConfigurationError
from sheetbridge.pipeline import DataRules, Pipeline, SyncPolicy
from sheetbridge.schema.models import Schema
from sheetbridge.workbook import Workbook, load_workbook


def drop_inactive(data: dict) -> dict:
    return {
        table: [row for row in rows if row.get("active") is not False]
        for table, rows in data.items()
    }


def rename_acme(data: dict) -> dict:
    for row in data.get("party", []):
        if row["name"] == "Acme":
            row["name"] = "Acme Corp"
    return data


class TestDataRules:
    """Rule chaining."""

    def test_empty_rules_are_identity(self, billing_data: dict) -> None:
        assert DataRules().apply(billing_data) == billing_data
        assert len(DataRules()) == 0

    def test_rules_apply_in_order(self, billing_data: dict) -> None:
        calls: list[str] = []

        def first(data: dict) -> dict:
            calls.append("first")
            return data

        def second(data: dict) -> dict:
            calls.append("second")
            return data

        DataRules([first, second])(billing_data)

        assert calls == ["first", "second"]

    def test_nested_rules(self, billing_data: dict) -> None:
        rules = DataRules([drop_inactive]).add(DataRules([rename_acme]))

        result = rules.apply(billing_data)

        assert result["party"] == [{"id": 1, "name": "Acme Corp", "active": True}]
        assert len(rules) == 2

    def test_rule_must_be_callable(self) -> None:
        with pytest.raises(TypeError, match="callable"):
            DataRules().add("drop_inactive")


class TestSyncPolicy:
    """Policy names and legacy flags."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("merge", SyncPolicy.MERGE),
            ("replace", SyncPolicy.REPLACE),
            ("structure-only", SyncPolicy.STRUCTURE_ONLY),
            ("structure_only", SyncPolicy.STRUCTURE_ONLY),
            (" Replace ", SyncPolicy.REPLACE),
        ],
    )
    def test_from_string(self, value: str, expected: SyncPolicy) -> None:
        assert SyncPolicy(value) is expected

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValueError):
            SyncPolicy("truncate")

    def test_from_flags(self) -> None:
        assert SyncPolicy.from_flags(structure_only=True) is SyncPolicy.STRUCTURE_ONLY
        assert SyncPolicy.from_flags(replace=True, structure_only=True) is SyncPolicy.REPLACE
        assert SyncPolicy.from_flags() is SyncPolicy.MERGE

    def test_loads_data(self) -> None:
        assert SyncPolicy.MERGE.loads_data
        assert SyncPolicy.REPLACE.loads_data
        assert not SyncPolicy.STRUCTURE_ONLY.loads_data


class TestPipeline:
    """End-to-end runs between workbooks and sqlite."""

    def test_incomplete_pipeline(self) -> None:
        with pytest.raises(IncompleteConfigurationError, match="rules, target"):
            Pipeline().extract(Workbook()).execute()

    def test_reset_clears_everything(self, billing_workbook: Workbook) -> None:
        pipeline = Pipeline().extract(billing_workbook).transform().load(Workbook())

        pipeline.reset()

        with pytest.raises(IncompleteConfigurationError, match="source, rules, target"):
            pipeline.execute()

    def test_workbook_to_sqlite(self, billing_file: Path, tmp_path: Path) -> None:
        target_path = tmp_path / "billing.sqlite"

        result = (
            Pipeline()
            .extract(billing_file, read_only=True)
            .transform()
            .load(target_path)
            .execute()
        )

        assert isinstance(result.target, SqlDatabase)
        assert result.policy is SyncPolicy.MERGE
        assert result.rows_loaded == 3
        assert len(result.statements) == 3
        assert result.warnings == []
        with SqlDatabase(f"sqlite:///{target_path}") as db:
            assert db.query("SELECT name FROM party ORDER BY id") == [
                {"name": "Acme"},
                {"name": "Globex"},
            ]

    def test_merge_twice_keeps_row_count(self, billing_file: Path, tmp_path: Path) -> None:
        target_path = tmp_path / "billing.sqlite"
        pipeline = Pipeline().extract(billing_file).transform().load(target_path)

        pipeline.execute()
        second = pipeline.execute("merge")

        assert second.statements == []
        assert second.target.query('SELECT COUNT(*) AS n FROM "party"') == [{"n": 2}]
        second.target.close()

    def test_rules_filter_rows(self, billing_workbook: Workbook) -> None:
        target = SpreadsheetDatabase()

        result = (
            Pipeline()
            .extract(billing_workbook)
            .transform([drop_inactive, rename_acme])
            .load(target)
            .execute(SyncPolicy.REPLACE)
        )

        assert result.rows_loaded == 2
        assert target.data(["party"])["party"] == [
            {"id": 1, "name": "Acme Corp", "active": True}
        ]

    def test_table_filter(self, billing_workbook: Workbook) -> None:
        target = SpreadsheetDatabase()

        result = (
            Pipeline()
            .extract(billing_workbook)
            .transform()
            .load(target)
            .execute(tables=["party"])
        )

        assert result.rows_loaded == 2
        assert target.structure().table_names == ["party"]

    def test_structure_only_skips_row_extraction(self, billing_schema: Schema) -> None:
        source = MagicMock()
        source.structure.return_value = billing_schema
        target = SpreadsheetDatabase()

        result = (
            Pipeline()
            .extract(source)
            .transform()
            .load(target)
            .execute("structure_only")
        )

        source.data.assert_not_called()
        assert result.rows_loaded == 0
        assert result.policy is SyncPolicy.STRUCTURE_ONLY
        assert sorted(target.structure().table_names) == ["invoice", "party"]

    def test_sqlite_to_workbook_file(
        self, tmp_path: Path, billing_schema: Schema, billing_data: dict
    ) -> None:
        source_path = tmp_path / "billing.sqlite"
        with SqlDatabase(f"sqlite:///{source_path}") as db:
            db.synchronize(billing_schema, billing_data)
        output = tmp_path / "snapshot.json"

        result = (
            Pipeline()
            .extract(source_path, read_only=True)
            .transform()
            .load(output)
            .execute(SyncPolicy.REPLACE)
        )
        result.target.close()

        assert result.rows_loaded == 3
        workbook = load_workbook(output)
        assert {"__schema", "party", "invoice"} <= set(workbook.sheet_names)
        assert len(workbook.get_sheet("party").records()) == 2
