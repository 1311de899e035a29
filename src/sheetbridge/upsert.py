"""Multi-row insert-or-update statements per dialect.

One statement covers a batch of rows sharing the same columns.  Values bind
as named parameters ``:p0, :p1, ...`` in row-major order, ready for
``Connection.execute(text(sql), params)``.

============  ==============================================================
Dialect       Conflict handling
============  ==============================================================
mysql         ``ON DUPLICATE KEY UPDATE col=VALUES(col)`` for non-key columns
              (``INSERT IGNORE`` when every column is a key column)
postgresql    ``ON CONFLICT (pk) DO UPDATE SET col=EXCLUDED.col``
              (``DO NOTHING`` with only key columns, plain INSERT without pk)
sqlite        ``INSERT OR REPLACE``
============  ==============================================================

Usage:
    from sheetbridge.upsert import build_upsert, chunk_rows, group_rows

    for batch in group_rows(rows):
        for chunk in chunk_rows(batch, dialect.max_params):
            stmt = build_upsert("sqlite", "party", chunk, ["id"])
            connection.execute(text(stmt.sql), stmt.params)
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from sheetbridge.dialects import Dialect, get_dialect


@dataclass
class UpsertStatement:
    """SQL text plus its named bind parameters.

    Example:
        stmt = build_upsert("postgresql", "party", [{"id": 1, "name": "Acme"}], ["id"])
        stmt.sql
        # 'INSERT INTO "party" ("id", "name") VALUES (:p0, :p1) '
        # 'ON CONFLICT ("id") DO UPDATE SET "name" = EXCLUDED."name"'
        stmt.params
        # {'p0': 1, 'p1': 'Acme'}
    """

    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    row_count: int = 0


def row_key(row: dict[str, Any], primary_key: list[str]) -> tuple[str, ...] | None:
    """Text form of a row's key; ``None`` when a key column is missing or null."""
    if not primary_key or any(row.get(col) is None for col in primary_key):
        return None
    return tuple(str(row[col]) for col in primary_key)


def dedupe_rows(rows: list[dict[str, Any]], primary_key: list[str]) -> list[dict[str, Any]]:
    """Collapse rows sharing a primary key; the last one wins, at the first one's position.

    Rows without a complete key are kept as they are.

    Example:
        >>> dedupe_rows([{"id": 1, "v": "a"}, {"id": 2, "v": "b"}, {"id": 1, "v": "c"}], ["id"])
        [{'id': 1, 'v': 'c'}, {'id': 2, 'v': 'b'}]
    """
    result: list[dict[str, Any]] = []
    positions: dict[tuple[str, ...], int] = {}
    for row in rows:
        key = row_key(row, primary_key)
        if key is None:
            result.append(row)
        elif key in positions:
            result[positions[key]] = row
        else:
            positions[key] = len(result)
            result.append(row)
    return result


def group_rows(rows: list[dict[str, Any]]) -> list[list[dict[str, Any]]]:
    """Split rows into batches of identical column sets, first-seen order.

    Example:
        >>> group_rows([{"a": 1}, {"a": 2, "b": 3}, {"a": 4}])
        [[{'a': 1}, {'a': 4}], [{'a': 2, 'b': 3}]]
    """
    batches: dict[tuple[str, ...], list[dict[str, Any]]] = {}
    for row in rows:
        batches.setdefault(tuple(row.keys()), []).append(row)
    return list(batches.values())


def chunk_rows(rows: list[dict[str, Any]], max_params: int) -> Iterator[list[dict[str, Any]]]:
    """Yield slices of *rows* whose bind parameter count stays under *max_params*."""
    if not rows:
        return
    width = max(len(rows[0]), 1)
    size = max(max_params // width, 1)
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def build_upsert(
    dialect: "str | Dialect",
    table: str,
    rows: list[dict[str, Any]],
    primary_key: list[str],
) -> UpsertStatement:
    """Build one multi-row upsert for *rows*.

    Args:
        dialect: Target engine.
        table: Table name.
        rows: Non-empty batch; every row must have the same columns.
        primary_key: Conflict key columns (may be empty).

    Raises:
        ValueError: If *rows* is empty or rows differ in their columns.
        UnsupportedDialectError: If *dialect* is not a supported engine.
    """
    resolved = get_dialect(dialect)
    if not rows:
        raise ValueError(f"No rows to upsert into '{table}'")

    columns = list(rows[0].keys())
    if not columns:
        raise ValueError(f"Rows for '{table}' have no columns")
    signature = set(columns)
    for position, row in enumerate(rows):
        if set(row.keys()) != signature:
            raise ValueError(
                f"Row {position} for '{table}' has columns {sorted(row)}, "
                f"expected {sorted(signature)}"
            )

    params: dict[str, Any] = {}
    groups: list[str] = []
    for row in rows:
        placeholders = []
        for col in columns:
            key = f"p{len(params)}"
            params[key] = row[col]
            placeholders.append(f":{key}")
        groups.append(f"({', '.join(placeholders)})")

    q = resolved.quote
    target = f"{q(table)} ({resolved.quote_list(columns)})"
    values = ", ".join(groups)
    keys = list(primary_key) if primary_key and set(primary_key) <= signature else []
    updates = [col for col in columns if col not in primary_key]

    if resolved.name == "sqlite":
        sql = f"INSERT OR REPLACE INTO {target} VALUES {values}"
    elif resolved.name == "mysql":
        if updates:
            assignments = ", ".join(f"{q(col)} = VALUES({q(col)})" for col in updates)
            sql = f"INSERT INTO {target} VALUES {values} ON DUPLICATE KEY UPDATE {assignments}"
        else:
            sql = f"INSERT IGNORE INTO {target} VALUES {values}"
    else:
        sql = f"INSERT INTO {target} VALUES {values}"
        if keys:
            conflict = f" ON CONFLICT ({resolved.quote_list(keys)})"
            if updates:
                assignments = ", ".join(f"{q(col)} = EXCLUDED.{q(col)}" for col in updates)
                sql += f"{conflict} DO UPDATE SET {assignments}"
            else:
                sql += f"{conflict} DO NOTHING"

    return UpsertStatement(sql=sql, params=params, row_count=len(rows))
