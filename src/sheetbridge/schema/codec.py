"""Schema <-> tagged-row encoding stored in a workbook.

A schema travels inside a workbook as a control sheet (``__schema`` by
default) whose header is ``type | name | properties``.  Every other row
describes one entity:

============  ====================  ==========================================
type          name                  properties
============  ====================  ==========================================
metadata      ``schema``            ``{name, tables_count, generated_at}``
table         ``<table>``           ``{primary_key}``
column        ``<table>.<column>``  ``{type, nullable, length?, precision?,
                                    scale?, default?, primary_key?}``
index         ``<table>.<index>``   ``{columns, unique, flags}``
foreign_key   ``<table>.<fk>``      ``{local_columns, foreign_table,
                                    foreign_columns, on_delete?, on_update?}``
============  ====================  ==========================================

Each table also gets a sibling data sheet named after it whose first row is
the column header.

Decoding processes rows strictly table -> column -> index -> foreign_key,
whatever their order in the sheet, so a row may only reference tables that
a ``table`` row declared.

Usage:
    from sheetbridge.schema.codec import decode_schema, encode_schema

    workbook = encode_schema(schema)
    assert decode_schema(workbook) == schema
"""

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from sheetbridge.errors import SchemaFormatError, UnresolvedReferenceError
from sheetbridge.schema.inference import infer_schema
from sheetbridge.schema.models import Column, ForeignKey, Index, Schema, Table
from sheetbridge.workbook import Sheet, Workbook

logger = logging.getLogger(__name__)

SCHEMA_SHEET = "__schema"
SCHEMA_HEADER = ["type", "name", "properties"]
METADATA_NAME = "schema"

# Decode order; each stage may only reference entities of earlier stages
ROW_TYPES = ("table", "column", "index", "foreign_key")


# ============================================================================
# Encode
# ============================================================================


def _column_properties(table: Table, column: Column) -> dict[str, Any]:
    props: dict[str, Any] = {"type": column.type, "nullable": column.nullable}
    if column.length is not None:
        props["length"] = column.length
    if column.precision is not None:
        props["precision"] = column.precision
        if column.scale is not None:
            props["scale"] = column.scale
    if column.default is not None:
        props["default"] = column.default
    if table.is_primary_key(column.name):
        props["primary_key"] = True
    return props


def _foreign_key_properties(fk: ForeignKey) -> dict[str, Any]:
    props: dict[str, Any] = {
        "local_columns": list(fk.local_columns),
        "foreign_table": fk.foreign_table,
        "foreign_columns": list(fk.foreign_columns),
    }
    if fk.on_delete is not None:
        props["on_delete"] = fk.on_delete
    if fk.on_update is not None:
        props["on_update"] = fk.on_update
    return props


def encode_rows(schema: Schema) -> list[list[Any]]:
    """Tagged rows (without header) describing *schema*."""
    rows: list[list[Any]] = [
        [
            "metadata",
            METADATA_NAME,
            {
                "name": schema.name,
                "tables_count": len(schema.tables),
                "generated_at": datetime.now(timezone.utc).isoformat(),
            },
        ]
    ]

    for table in schema.tables.values():
        rows.append(["table", table.name, {"primary_key": list(table.primary_key)}])

        for column in table.columns.values():
            rows.append(
                ["column", f"{table.name}.{column.name}", _column_properties(table, column)]
            )

        for index in table.indexes.values():
            rows.append(
                [
                    "index",
                    f"{table.name}.{index.name}",
                    {
                        "columns": list(index.columns),
                        "unique": index.unique,
                        "flags": list(index.flags),
                    },
                ]
            )

        for fk in table.foreign_keys:
            rows.append(
                [
                    "foreign_key",
                    f"{table.name}.{fk.effective_name}",
                    _foreign_key_properties(fk),
                ]
            )

    return rows


def encode_schema(
    schema: Schema,
    workbook: Workbook | None = None,
    schema_sheet: str = SCHEMA_SHEET,
) -> Workbook:
    """Write *schema* into a workbook.

    Adds (or replaces) the control sheet and one header-only data sheet per
    table.  When *workbook* is given it is modified in place and returned.
    """
    if workbook is None:
        workbook = Workbook()

    workbook.add_sheet(schema_sheet, [list(SCHEMA_HEADER), *encode_rows(schema)])
    for table in schema.tables.values():
        workbook.add_sheet(table.name, [table.column_names])

    logger.debug(
        "Encoded schema with %d table(s) into sheet '%s'", len(schema.tables), schema_sheet
    )
    return workbook


# ============================================================================
# Decode
# ============================================================================


def _split_key(name: str, row_number: int) -> tuple[str, str]:
    parts = name.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise SchemaFormatError(
            f"Row {row_number}: '{name}' is not a '<table>.<name>' key"
        )
    return parts[0], parts[1]


def _parse_properties(raw: Any, row_number: int) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SchemaFormatError(
                f"Row {row_number}: properties are not valid JSON ({e})"
            ) from e
        if isinstance(parsed, dict):
            return parsed
    raise SchemaFormatError(f"Row {row_number}: properties must be a mapping")


def _require_list(props: dict[str, Any], key: str, row_number: int) -> list[str]:
    value = props.get(key)
    if not isinstance(value, list):
        raise SchemaFormatError(f"Row {row_number}: '{key}' must be a list")
    return [str(item) for item in value]


def _resolve_table(schema: Schema, table_name: str, name: str, row_number: int) -> Table:
    table = schema.get_table(table_name)
    if table is None:
        raise UnresolvedReferenceError(
            f"Row {row_number}: '{name}' refers to undeclared table '{table_name}'"
        )
    return table


def _decode_table(schema: Schema, name: str, props: dict, row_number: int) -> bool:
    """Materialize a table; returns True when the row carries its primary key."""
    table = Table(name=name)
    has_key = "primary_key" in props
    if has_key:
        table.set_primary_key(_require_list(props, "primary_key", row_number))
    schema.add_table(table)
    return has_key


def _decode_column(
    schema: Schema, name: str, props: dict, row_number: int
) -> tuple[Table, Column, bool]:
    table_name, column_name = _split_key(name, row_number)
    table = _resolve_table(schema, table_name, name, row_number)
    if "type" not in props:
        raise SchemaFormatError(f"Row {row_number}: column '{name}' has no type")

    precision = props.get("precision")
    column = Column(
        name=column_name,
        type=props["type"],
        nullable=bool(props.get("nullable", True)),
        default=props.get("default"),
        length=props.get("length"),
        precision=precision,
        scale=props.get("scale") if precision is not None else None,
    )
    table.add_column(column)
    return table, column, bool(props.get("primary_key", False))


def _decode_index(schema: Schema, name: str, props: dict, row_number: int) -> None:
    table_name, index_name = _split_key(name, row_number)
    table = _resolve_table(schema, table_name, name, row_number)

    flags = props.get("flags") or []
    if isinstance(flags, str):
        flags = [flags]
    table.add_index(
        Index(
            name=index_name,
            columns=_require_list(props, "columns", row_number),
            unique=bool(props.get("unique", False)),
            flags=flags,
        )
    )


def _decode_foreign_key(schema: Schema, name: str, props: dict, row_number: int) -> None:
    table_name, fk_name = _split_key(name, row_number)
    table = _resolve_table(schema, table_name, name, row_number)

    local_columns = _require_list(props, "local_columns", row_number)
    foreign_columns = _require_list(props, "foreign_columns", row_number)
    foreign_table = props.get("foreign_table")
    if not isinstance(foreign_table, str) or not foreign_table:
        raise SchemaFormatError(f"Row {row_number}: 'foreign_table' must be a table name")
    if not local_columns or len(local_columns) != len(foreign_columns):
        raise SchemaFormatError(
            f"Row {row_number}: foreign key '{name}' needs matching, non-empty "
            f"local_columns and foreign_columns"
        )

    table.add_foreign_key(
        ForeignKey(
            name=fk_name,
            local_columns=local_columns,
            foreign_table=foreign_table,
            foreign_columns=foreign_columns,
            on_delete=props.get("on_delete"),
            on_update=props.get("on_update"),
        )
    )


def decode_rows(rows: Iterable[Mapping[str, Any]]) -> Schema:
    """Rebuild a schema from tagged rows (dicts keyed by the sheet header).

    Raises:
        SchemaFormatError: If a row is malformed.
        UnresolvedReferenceError: If a row refers to an undeclared table, or
            the decoded schema references a missing column.
    """
    schema = Schema()
    grouped: dict[str, list[tuple[int, str, dict]]] = {t: [] for t in ROW_TYPES}

    # Row numbers as a spreadsheet user sees them (header is row 1)
    for row_number, row in enumerate(rows, start=2):
        missing = [key for key in SCHEMA_HEADER if key not in row]
        if missing:
            raise SchemaFormatError(
                f"Row {row_number}: missing field(s) {', '.join(missing)}"
            )
        row_type = str(row["type"] or "").strip().lower()
        name = str(row["name"] or "").strip()
        if not row_type or not name:
            raise SchemaFormatError(f"Row {row_number}: type and name are required")
        props = _parse_properties(row["properties"], row_number)

        if row_type == "metadata":
            if name == METADATA_NAME:
                schema.name = props.get("name")
        elif row_type in grouped:
            grouped[row_type].append((row_number, name, props))
        else:
            logger.warning("Skipping row %d with unknown type '%s'", row_number, row_type)

    try:
        keyed_tables: set[str] = set()
        for row_number, name, props in grouped["table"]:
            if _decode_table(schema, name, props, row_number):
                keyed_tables.add(name)

        flagged: dict[str, list[str]] = {}
        for row_number, name, props in grouped["column"]:
            table, column, is_key = _decode_column(schema, name, props, row_number)
            if is_key:
                flagged.setdefault(table.name, []).append(column.name)
        for table_name, key_columns in flagged.items():
            if table_name not in keyed_tables:
                schema.tables[table_name].set_primary_key(key_columns)

        for row_number, name, props in grouped["index"]:
            _decode_index(schema, name, props, row_number)

        for row_number, name, props in grouped["foreign_key"]:
            _decode_foreign_key(schema, name, props, row_number)
    except ValidationError as e:
        raise SchemaFormatError(f"Invalid schema row: {e}") from e

    errors = schema.reference_errors()
    if errors:
        raise UnresolvedReferenceError("; ".join(errors))

    return schema


def decode_schema(
    workbook: Workbook,
    schema_sheet: str = SCHEMA_SHEET,
    sample_size: int | None = None,
) -> Schema:
    """Read the schema stored in *workbook*.

    Without a control sheet the schema is inferred from the other sheets.
    """
    sheet = workbook.get_sheet(schema_sheet)
    if sheet is None:
        logger.info("No '%s' sheet found; inferring schema from data sheets", schema_sheet)
        return infer_schema(
            (s for s in workbook.sheets.values() if s.name != schema_sheet), sample_size
        )
    return decode_rows(sheet.records())


# ============================================================================
# Data sheets
# ============================================================================


def sheet_rows(sheet: Sheet) -> list[dict[str, Any]]:
    """Data rows of a table sheet, keyed by its header."""
    return sheet.records()


def write_rows(sheet: Sheet, rows: list[dict[str, Any]], header: list[str] | None = None) -> Sheet:
    """Replace a table sheet's data rows, projected onto its header."""
    return sheet.set_records(rows, header)
