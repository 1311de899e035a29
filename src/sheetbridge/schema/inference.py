"""Best-effort schema inference from sampled sheet rows.

Used when a workbook carries no schema sheet.  Each sheet becomes a table;
each header cell a column.  A column's type comes from its first non-null
value, checked against these candidates in order (first match wins):

1. ``integer``  -- ``int`` or an optionally signed digit string
2. ``decimal``  -- ``float``/``Decimal`` or a numeric string with a fraction
   or exponent
3. ``boolean``  -- ``bool`` or ``"true"``/``"false"`` (any case)
4. ``date`` / ``datetime`` -- date objects or ISO-8601 strings
5. ``string``   -- anything else, and columns with no value at all

A column named ``id`` becomes the primary key.  Inference is lossy: lengths,
precision, indexes and foreign keys are never guessed.

Usage:
    from sheetbridge.schema.inference import infer_schema

    schema = infer_schema(workbook.sheets.values())
"""

import re
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sheetbridge.schema.models import Column, Schema, Table
from sheetbridge.workbook import Sheet

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)$")

PRIMARY_KEY_COLUMN = "id"


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def infer_value_type(value: Any) -> str:
    """Classify a single non-null value.

    Examples:
        >>> infer_value_type("42")
        'integer'
        >>> infer_value_type("3.14")
        'decimal'
        >>> infer_value_type("2024-05-01T10:00:00")
        'datetime'
        >>> infer_value_type("Acme")
        'string'
    """
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, (float, Decimal)):
        return "decimal"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    if not isinstance(value, str):
        return "string"

    text = value.strip()
    if _INTEGER_RE.match(text):
        return "integer"
    if _DECIMAL_RE.match(text):
        return "decimal"
    if text.lower() in ("true", "false"):
        return "boolean"
    try:
        date.fromisoformat(text)
        return "date"
    except ValueError:
        pass
    try:
        datetime.fromisoformat(text)
        return "datetime"
    except ValueError:
        pass
    return "string"


def infer_column_type(values: Iterable[Any]) -> str:
    """Type of the first non-null value, ``string`` when there is none."""
    for value in values:
        if not _is_null(value):
            return infer_value_type(value)
    return "string"


def infer_table(sheet: Sheet, sample_size: int | None = None) -> Table:
    """Infer a table from one sheet's header and (sampled) data rows."""
    records = sheet.records()
    if sample_size is not None:
        records = records[:sample_size]

    table = Table(name=sheet.name)
    for name in sheet.header:
        if not name:
            continue
        col_type = infer_column_type(record.get(name) for record in records)
        is_key = name == PRIMARY_KEY_COLUMN
        table.add_column(Column(name=name, type=col_type, nullable=not is_key))
        if is_key:
            table.set_primary_key([name])
    return table


def infer_schema(
    sheets: Iterable[Sheet], sample_size: int | None = None, name: str | None = None
) -> Schema:
    """Infer one table per sheet.  Sheets without a header are skipped."""
    schema = Schema(name=name)
    for sheet in sheets:
        if not any(sheet.header):
            continue
        schema.add_table(infer_table(sheet, sample_size))
    return schema
