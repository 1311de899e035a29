"""Structural comparison of two schemas.

Pure logic -- no I/O, no database connections.

Columns compare by rendered SQL type (when a dialect is given), effective
nullability and normalized default.  Rendering through the dialect keeps a
reduced-affinity engine from reporting ``string`` vs ``TEXT`` as a change
on every run.  Indexes compare by name, columns and uniqueness.  Foreign
keys compare by signature because some engines do not keep their names.

Usage:
    from sheetbridge.schema.comparator import diff_schemas
    from sheetbridge.schema.introspector import SchemaIntrospector

    with SchemaIntrospector(engine) as introspector:
        actual = introspector.introspect()

    diff = diff_schemas(expected, actual, dialect="sqlite")
    if diff.is_empty:
        print("Schema is up to date")
    else:
        print(diff.format_report())
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from sheetbridge.dialects import Dialect, get_dialect
from sheetbridge.schema.models import Column, Schema, SchemaDiff, Table, TableDiff

_CAST_RE = re.compile(r"::[\w\s\"]+(\[\])?$")


def normalize_default(value: Any) -> str | None:
    """Normalize a column default for comparison.

    Engines echo defaults back decorated: wrapped in parentheses, quoted,
    cast (``'a'::character varying``) or as sequence calls.  Booleans and
    numbers are reduced to a canonical text form.

    Examples:
        >>> normalize_default("'active'::character varying")
        'active'
        >>> normalize_default("(0)")
        '0'
        >>> normalize_default(True)
        '1'
        >>> normalize_default("nextval('party_id_seq'::regclass)") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"

    text = str(value).strip()
    if text.lower().startswith("nextval("):
        return None

    previous = None
    while text != previous:
        previous = text
        if text.startswith("(") and text.endswith(")"):
            text = text[1:-1].strip()
        text = _CAST_RE.sub("", text).strip()

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].replace(text[0] * 2, text[0])
    else:
        lower = text.lower()
        if lower == "null":
            return None
        if lower in ("true", "false"):
            return "1" if lower == "true" else "0"
        try:
            return format(Decimal(text).normalize(), "f")
        except InvalidOperation:
            pass
    return text


def _column_signature(column: Column, table: Table, dialect: Dialect | None) -> tuple:
    if dialect is not None:
        col_type: Any = dialect.column_type(column)
    else:
        col_type = (column.type, column.length, column.precision, column.scale)
    nullable = column.nullable and not table.is_primary_key(column.name)
    return (col_type, nullable, normalize_default(column.default))


def columns_differ(
    source_table: Table,
    source_column: Column,
    target_table: Table,
    target_column: Column,
    dialect: Dialect | None = None,
) -> bool:
    """True when two column definitions would render differently."""
    return _column_signature(source_column, source_table, dialect) != _column_signature(
        target_column, target_table, dialect
    )


def diff_tables(source: Table, target: Table, dialect: Dialect | None = None) -> TableDiff:
    """Changes needed to turn *target* into *source*."""
    diff = TableDiff(name=source.name)

    for name, column in source.columns.items():
        existing = target.get_column(name)
        if existing is None:
            diff.added_columns.append(column)
        elif columns_differ(source, column, target, existing, dialect):
            diff.changed_columns.append(column)

    diff.dropped_columns = [name for name in target.columns if name not in source.columns]

    if source.primary_key != target.primary_key:
        diff.primary_key = list(source.primary_key)

    for name, index in source.indexes.items():
        existing_index = target.get_index(name)
        if existing_index is None:
            diff.added_indexes.append(index)
        elif (index.columns, index.unique) != (existing_index.columns, existing_index.unique):
            diff.dropped_indexes.append(name)
            diff.added_indexes.append(index)
    diff.dropped_indexes.extend(
        name for name in target.indexes if name not in source.indexes
    )

    source_signatures = {fk.signature() for fk in source.foreign_keys}
    target_signatures = {fk.signature() for fk in target.foreign_keys}
    diff.added_foreign_keys = [
        fk for fk in source.foreign_keys if fk.signature() not in target_signatures
    ]
    diff.dropped_foreign_keys = [
        fk for fk in target.foreign_keys if fk.signature() not in source_signatures
    ]

    return diff


def diff_schemas(
    source: Schema,
    target: Schema,
    dialect: "str | Dialect | None" = None,
    tables: list[str] | None = None,
) -> SchemaDiff:
    """Compare a source schema against a target schema.

    Args:
        source: Desired structure.
        target: Current structure.
        dialect: Engine the target lives on.  When given, column types are
            compared as rendered SQL types.
        tables: Restrict the comparison to these table names.

    Returns:
        ``SchemaDiff`` with created, dropped and altered tables.  Created and
        altered tables follow source order; dropped tables follow target
        order.

    Raises:
        UnsupportedDialectError: If *dialect* is not a supported engine.

    Examples:
        >>> from sheetbridge.schema.models import Column, Schema, Table
        >>> s = Schema().add_table(Table(name="t").add_column(Column(name="a", type="string")))
        >>> diff_schemas(s, s).is_empty
        True
        >>> diff_schemas(s, Schema()).created_tables[0].name
        't'
    """
    resolved = get_dialect(dialect) if dialect is not None else None
    wanted = set(tables) if tables is not None else None

    def _selected(name: str) -> bool:
        return wanted is None or name in wanted

    diff = SchemaDiff()

    for name, table in source.tables.items():
        if not _selected(name):
            continue
        existing = target.get_table(name)
        if existing is None:
            diff.created_tables.append(table)
            continue
        table_diff = diff_tables(table, existing, resolved)
        if not table_diff.is_empty:
            diff.altered_tables.append(table_diff)

    diff.dropped_tables = [
        name for name in target.tables if _selected(name) and name not in source.tables
    ]

    return diff
