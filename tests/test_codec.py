"""Tests for the schema <-> tagged-row codec."""

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from sheetbridge.errors import SchemaFormatError, UnresolvedReferenceError
from sheetbridge.schema.codec import (
    SCHEMA_HEADER,
    SCHEMA_SHEET,
    decode_rows,
    decode_schema,
    encode_rows,
    encode_schema,
    sheet_rows,
    write_rows,
)
from sheetbridge.schema.models import Column, ForeignKey, Index, Schema, Table
from sheetbridge.workbook import Workbook, load_workbook, save_workbook


def _row(row_type: str, name: str, properties: Any) -> dict[str, Any]:
    return {"type": row_type, "name": name, "properties": properties}


class TestEncode:
    """Schema -> rows."""

    def test_metadata_row_comes_first(self, billing_schema: Schema) -> None:
        rows = encode_rows(billing_schema)
        row_type, name, props = rows[0]

        assert (row_type, name) == ("metadata", "schema")
        assert props["name"] == "billing"
        assert props["tables_count"] == 2
        assert "generated_at" in props

    def test_table_and_column_rows(self, billing_schema: Schema) -> None:
        rows = {(r[0], r[1]): r[2] for r in encode_rows(billing_schema)}

        assert rows[("table", "invoice")] == {"primary_key": ["id"]}
        assert rows[("column", "invoice.total")] == {
            "type": "decimal",
            "nullable": True,
            "precision": 10,
            "scale": 2,
        }
        assert rows[("column", "invoice.id")] == {
            "type": "string",
            "nullable": False,
            "length": 20,
            "primary_key": True,
        }
        assert rows[("column", "party.active")]["default"] is True

    def test_index_and_foreign_key_rows(self, billing_schema: Schema) -> None:
        rows = {(r[0], r[1]): r[2] for r in encode_rows(billing_schema)}

        assert rows[("index", "party.idx_party_name")] == {
            "columns": ["name"],
            "unique": True,
            "flags": [],
        }
        assert rows[("foreign_key", "invoice.fk_customer")] == {
            "local_columns": ["customer_id"],
            "foreign_table": "party",
            "foreign_columns": ["id"],
            "on_delete": "RESTRICT",
        }

    def test_unnamed_foreign_key_uses_derived_name(self) -> None:
        table = (
            Table(name="invoice")
            .add_column(Column(name="customer_id", type="integer"))
            .add_foreign_key(
                ForeignKey(
                    local_columns=["customer_id"], foreign_table="party", foreign_columns=["id"]
                )
            )
        )
        names = [r[1] for r in encode_rows(Schema().add_table(table)) if r[0] == "foreign_key"]
        assert names == ["invoice.fk_customer_id"]

    def test_unnamed_foreign_key_reads_back_named(self) -> None:
        schema = (
            Schema()
            .add_table(
                Table(name="party")
                .add_column(Column(name="id", type="integer"))
                .set_primary_key(["id"])
            )
            .add_table(
                Table(name="invoice")
                .add_column(Column(name="customer_id", type="integer"))
                .add_foreign_key(
                    ForeignKey(
                        local_columns=["customer_id"], foreign_table="party", foreign_columns=["id"]
                    )
                )
            )
        )

        decoded = decode_schema(encode_schema(schema))

        assert [fk.name for fk in decoded.tables["invoice"].foreign_keys] == ["fk_customer_id"]

    def test_encode_schema_writes_header_sheets(self) -> None:
        """Each table gets a sibling sheet whose only row is its header."""
        table = (
            Table(name="invoice")
            .add_column(Column(name="id", type="string"))
            .add_column(Column(name="total", type="decimal"))
            .set_primary_key(["id"])
        )
        workbook = encode_schema(Schema().add_table(table))

        assert workbook.sheet_names == [SCHEMA_SHEET, "invoice"]
        assert workbook.get_sheet(SCHEMA_SHEET).header == SCHEMA_HEADER
        assert workbook.get_sheet("invoice").rows == [["id", "total"]]

    def test_encode_into_existing_workbook(self, billing_schema: Schema) -> None:
        workbook = Workbook()
        workbook.add_sheet("notes", [["text"]])

        result = encode_schema(billing_schema, workbook, schema_sheet="_meta")

        assert result is workbook
        assert workbook.sheet_names == ["notes", "_meta", "invoice", "party"]


class TestRoundTrip:
    """decode(encode(S)) == S."""

    def test_in_memory(self, billing_schema: Schema) -> None:
        assert decode_schema(encode_schema(billing_schema)) == billing_schema

    def test_foreign_key_actions_survive(self, billing_schema: Schema) -> None:
        decoded = decode_schema(encode_schema(billing_schema))
        fk = decoded.tables["invoice"].foreign_keys[0]

        assert decoded.table_names == ["invoice", "party"]
        assert (fk.foreign_table, fk.local_columns, fk.foreign_columns) == (
            "party",
            ["customer_id"],
            ["id"],
        )
        assert fk.on_delete == "RESTRICT"
        assert fk.on_update is None

    def test_composite_keys_and_flags(self) -> None:
        table = (
            Table(name="line")
            .add_column(Column(name="invoice_id", type="string", nullable=False))
            .add_column(Column(name="line_no", type="smallint", nullable=False))
            .add_column(Column(name="note", type="text", default="n/a"))
            .set_primary_key(["invoice_id", "line_no"])
            .add_index(Index(name="ft_note", columns=["note"], flags=["fulltext"]))
        )
        schema = Schema(name="lines").add_table(table)
        assert decode_schema(encode_schema(schema)) == schema

    @pytest.mark.parametrize("filename", ["schema.json", "schema.xlsx"])
    def test_through_file(self, tmp_path: Path, billing_schema: Schema, filename: str) -> None:
        path = tmp_path / filename
        save_workbook(encode_schema(billing_schema), path)
        assert decode_schema(load_workbook(path)) == billing_schema


class TestDecode:
    """Rows -> schema."""

    def test_rows_are_processed_by_type_not_position(self) -> None:
        rows = [
            _row("foreign_key", "invoice.fk_customer", {
                "local_columns": ["customer_id"],
                "foreign_table": "party",
                "foreign_columns": ["id"],
            }),
            _row("column", "invoice.customer_id", {"type": "integer"}),
            _row("column", "party.id", {"type": "integer", "primary_key": True}),
            _row("table", "invoice", {}),
            _row("table", "party", {}),
        ]
        schema = decode_rows(rows)

        assert schema.table_names == ["invoice", "party"]
        assert schema.tables["invoice"].foreign_keys[0].name == "fk_customer"

    def test_primary_key_from_column_flags(self) -> None:
        """Without a table-level key, flagged columns form it in row order."""
        rows = [
            _row("table", "line", {}),
            _row("column", "line.invoice_id", {"type": "string", "primary_key": True}),
            _row("column", "line.line_no", {"type": "integer", "primary_key": True}),
            _row("column", "line.note", {"type": "text"}),
        ]
        assert decode_rows(rows).tables["line"].primary_key == ["invoice_id", "line_no"]

    def test_json_string_properties(self) -> None:
        rows = [
            _row("metadata", "schema", json.dumps({"name": "billing"})),
            _row("table", "party", json.dumps({"primary_key": ["id"]})),
            _row("column", "party.id", json.dumps({"type": "integer", "nullable": False})),
        ]
        schema = decode_rows(rows)

        assert schema.name == "billing"
        assert schema.tables["party"].primary_key == ["id"]

    def test_foreign_key_without_table_row(self) -> None:
        """An FK row for a table never declared is an error, not a skip."""
        rows = [
            _row("table", "party", {"primary_key": ["id"]}),
            _row("column", "party.id", {"type": "integer"}),
            _row("foreign_key", "invoice.fk_customer", {
                "local_columns": ["customer_id"],
                "foreign_table": "party",
                "foreign_columns": ["id"],
            }),
        ]
        with pytest.raises(UnresolvedReferenceError, match="invoice.fk_customer"):
            decode_rows(rows)

    def test_column_without_table_row(self) -> None:
        with pytest.raises(UnresolvedReferenceError, match="undeclared table 'party'"):
            decode_rows([_row("column", "party.id", {"type": "integer"})])

    def test_foreign_key_to_unknown_column(self) -> None:
        rows = [
            _row("table", "party", {"primary_key": ["id"]}),
            _row("column", "party.id", {"type": "integer"}),
            _row("table", "invoice", {}),
            _row("column", "invoice.customer_id", {"type": "integer"}),
            _row("foreign_key", "invoice.fk_customer", {
                "local_columns": ["customer_id"],
                "foreign_table": "party",
                "foreign_columns": ["code"],
            }),
        ]
        with pytest.raises(UnresolvedReferenceError, match="party.code"):
            decode_rows(rows)

    def test_primary_key_on_unknown_column(self) -> None:
        with pytest.raises(UnresolvedReferenceError, match="unknown column 'id'"):
            decode_rows([_row("table", "party", {"primary_key": ["id"]})])

    @pytest.mark.parametrize("name", ["party", "party.", ".id", "a.b.c"])
    def test_bad_compound_key(self, name: str) -> None:
        rows = [_row("table", "party", {}), _row("column", name, {"type": "integer"})]
        with pytest.raises(SchemaFormatError, match="Row 3"):
            decode_rows(rows)

    def test_invalid_json_properties(self) -> None:
        with pytest.raises(SchemaFormatError, match="not valid JSON"):
            decode_rows([_row("table", "party", "{oops")])

    def test_missing_field(self) -> None:
        with pytest.raises(SchemaFormatError, match="properties"):
            decode_rows([{"type": "table", "name": "party"}])

    def test_column_without_type(self) -> None:
        rows = [_row("table", "party", {}), _row("column", "party.id", {"nullable": False})]
        with pytest.raises(SchemaFormatError, match="has no type"):
            decode_rows(rows)

    def test_invalid_referential_action(self) -> None:
        rows = [
            _row("table", "party", {}),
            _row("column", "party.id", {"type": "integer"}),
            _row("column", "party.parent_id", {"type": "integer"}),
            _row("foreign_key", "party.fk_parent", {
                "local_columns": ["parent_id"],
                "foreign_table": "party",
                "foreign_columns": ["id"],
                "on_delete": "EXPLODE",
            }),
        ]
        with pytest.raises(SchemaFormatError):
            decode_rows(rows)

    def test_unknown_row_type_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        rows = [_row("table", "party", {}), _row("view", "active_party", {})]
        with caplog.at_level(logging.WARNING, logger="sheetbridge.schema.codec"):
            schema = decode_rows(rows)

        assert schema.table_names == ["party"]
        assert "unknown type 'view'" in caplog.text

    def test_without_schema_sheet_infers(self) -> None:
        workbook = Workbook()
        workbook.add_sheet("party", [["id", "name"], [1, "Acme"]])

        schema = decode_schema(workbook)

        assert schema.tables["party"].primary_key == ["id"]
        assert schema.tables["party"].columns["id"].type == "integer"


class TestDataSheets:
    def test_write_and_read_rows(self) -> None:
        sheet = Workbook().add_sheet("invoice", [["id", "total"]])
        write_rows(sheet, [{"id": "INV-1", "total": 31.98}])

        assert sheet.rows == [["id", "total"], ["INV-1", 31.98]]
        assert sheet_rows(sheet) == [{"id": "INV-1", "total": 31.98}]
