"""Spreadsheet storage adapter.

Provides ``SpreadsheetDatabase``, the ``StorageAdapter`` implementation over
a ``Workbook``: the schema lives in the control sheet (see
``sheetbridge.schema.codec``), each table's rows in a sheet named after it.

Writes happen in memory; ``save()`` (called by ``synchronize()`` when the
adapter has a path) writes the workbook file in one go, so a failure before
the save leaves the file untouched.

Usage:
    from sheetbridge.adapters.spreadsheet import SpreadsheetDatabase

    sheet_db = SpreadsheetDatabase.from_file("shop.xlsx")
    schema = sheet_db.structure()
    rows = sheet_db.data()
"""

import logging
from pathlib import Path
from typing import Any

from sheetbridge.adapters.base import SyncOutcome, SyncPolicy, TableData
from sheetbridge.errors import ReadOnlyTargetError
from sheetbridge.schema.codec import SCHEMA_HEADER, SCHEMA_SHEET, decode_schema, encode_rows
from sheetbridge.schema.comparator import diff_schemas
from sheetbridge.schema.models import Schema, Table
from sheetbridge.workbook import Workbook, load_workbook, save_workbook

logger = logging.getLogger(__name__)


def _row_key(table: Table, row: dict[str, Any]) -> tuple:
    # text form so 1 and "1" from different sources collide
    return tuple("" if row.get(col) is None else str(row.get(col)) for col in table.primary_key)


class SpreadsheetDatabase:
    """``StorageAdapter`` over an in-memory workbook.

    Args:
        workbook: Workbook to read and write (an empty one when omitted).
        path: File the workbook is saved to by ``save()``.
        file_format: ``json`` or ``xlsx``; defaults to the path's extension.
        read_only: Refuse every write with ``ReadOnlyTargetError``.
        schema_sheet: Name of the control sheet.

    Example:
        target = SpreadsheetDatabase(path="export.json")
        target.synchronize(source.structure(), source.data(), SyncPolicy.REPLACE)
    """

    def __init__(
        self,
        workbook: Workbook | None = None,
        path: str | Path | None = None,
        file_format: str | None = None,
        read_only: bool = False,
        schema_sheet: str = SCHEMA_SHEET,
    ) -> None:
        self._workbook = workbook if workbook is not None else Workbook()
        self.path = Path(path) if path is not None else None
        self.file_format = file_format
        self.read_only = read_only
        self.schema_sheet = schema_sheet

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        file_format: str | None = None,
        read_only: bool = False,
        schema_sheet: str = SCHEMA_SHEET,
    ) -> "SpreadsheetDatabase":
        """Load a workbook file into a new adapter."""
        return cls(
            load_workbook(path, file_format),
            path=path,
            file_format=file_format,
            read_only=read_only,
            schema_sheet=schema_sheet,
        )

    def __repr__(self) -> str:
        return f"SpreadsheetDatabase(path={str(self.path) if self.path else None!r})"

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    def _check_writable(self) -> None:
        if self.read_only:
            raise ReadOnlyTargetError(
                f"Spreadsheet target {self.path or '<memory>'} is read-only"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def structure(self, tables: list[str] | None = None) -> Schema:
        return decode_schema(self._workbook, self.schema_sheet).subset(tables)

    def data(self, tables: list[str] | None = None) -> TableData:
        """Rows per table, projected onto the table's columns."""
        result: TableData = {}
        for table in self.structure(tables).tables.values():
            sheet = self._workbook.get_sheet(table.name)
            records = sheet.records() if sheet is not None else []
            result[table.name] = [
                {col: record.get(col) for col in table.column_names} for record in records
            ]
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_structure(
        self,
        schema: Schema,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> list[str]:
        """Rewrite the control sheet and table sheets for *schema*.

        REPLACE and STRUCTURE_ONLY reset the affected table sheets to a bare
        header.  MERGE keeps existing rows, re-projected onto the new header.
        Tables outside *tables* are left as they are.
        """
        self._check_writable()
        current = decode_schema(self._workbook, self.schema_sheet)
        wanted = schema.subset(tables)
        changes: list[str] = []

        if policy is SyncPolicy.MERGE:
            diff = diff_schemas(wanted, current, tables=tables)
            changes.extend(f"create sheet '{t.name}'" for t in diff.created_tables)
            changes.extend(f"alter sheet '{t.name}'" for t in diff.altered_tables)
            changes.extend(f"drop sheet '{name}'" for name in diff.dropped_tables)
            dropped = diff.dropped_tables
        else:
            dropped = [
                name
                for name in current.table_names
                if tables is None or name in tables
            ]
            changes.extend(f"drop sheet '{name}'" for name in dropped)
            changes.extend(f"create sheet '{name}'" for name in wanted.table_names)

        result = Schema(name=schema.name or current.name)
        for name, table in current.tables.items():
            if name not in dropped and name not in wanted.tables:
                result.add_table(table)
        for table in wanted.tables.values():
            result.add_table(table)

        # Capture surviving rows before the sheets are rewritten
        kept_rows: dict[str, list[dict[str, Any]]] = {}
        if policy is SyncPolicy.MERGE:
            for name in wanted.table_names:
                sheet = self._workbook.get_sheet(name)
                if sheet is not None and name in current.tables:
                    kept_rows[name] = sheet.records()

        for name in dropped:
            if name not in result.tables:
                self._workbook.remove_sheet(name)
        for table in result.tables.values():
            if table.name not in wanted.tables:
                continue
            sheet = self._workbook.add_sheet(table.name)
            sheet.set_records(kept_rows.get(table.name, []), header=table.column_names)

        self._write_schema(result)
        logger.info("Applied %d sheet change(s)", len(changes))
        return changes

    def _write_schema(self, schema: Schema) -> None:
        self._workbook.add_sheet(self.schema_sheet, [list(SCHEMA_HEADER), *encode_rows(schema)])
        for table in schema.tables.values():
            if not self._workbook.has_sheet(table.name):
                self._workbook.add_sheet(table.name, [table.column_names])

    def apply_data(self, data: TableData, schema: Schema | None = None) -> int:
        """Upsert rows into the table sheets.

        Rows replace existing rows with the same primary key; tables without
        a primary key skip rows identical to an existing one.

        Returns:
            Number of sheet rows added or replaced; repeated keys count once.

        Raises:
            ReadOnlyTargetError: If the adapter is read-only.
            ValueError: If *data* targets the control sheet.
        """
        self._check_writable()
        if self.schema_sheet in data:
            raise ValueError(f"Cannot write rows into the schema sheet '{self.schema_sheet}'")

        if schema is None:
            schema = self.structure()

        total = 0
        for name, rows in data.items():
            table = schema.get_table(name)
            if table is None:
                logger.warning("Skipping rows for unknown table '%s'", name)
                continue

            sheet = self._workbook.get_sheet(name) or self._workbook.add_sheet(
                name, [table.column_names]
            )
            header = table.column_names
            existing = [{col: record.get(col) for col in header} for record in sheet.records()]
            positions: dict[tuple, int] = {}
            if table.primary_key:
                positions = {_row_key(table, row): i for i, row in enumerate(existing)}

            touched: set[int] = set()
            for row in rows:
                projected = {col: row.get(col) for col in header}
                if table.primary_key:
                    key = _row_key(table, projected)
                    if key in positions:
                        existing[positions[key]] = projected
                    else:
                        positions[key] = len(existing)
                        existing.append(projected)
                    touched.add(positions[key])
                elif projected not in existing:
                    touched.add(len(existing))
                    existing.append(projected)

            sheet.set_records(existing, header=header)
            total += len(touched)
            logger.info("Wrote %d row(s) into sheet '%s'", len(touched), name)

        return total

    def synchronize(
        self,
        schema: Schema,
        data: TableData,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> SyncOutcome:
        """Apply *policy*, load rows, then save the file when a path is set."""
        self._check_writable()
        changes = self.apply_structure(schema, policy, tables)
        rows = 0
        if policy.loads_data:
            wanted = schema.subset(tables)
            rows = self.apply_data(
                {name: rows for name, rows in data.items() if name in wanted.tables},
                wanted,
            )
        if self.path is not None:
            self.save()
        return SyncOutcome(statements=changes, rows_loaded=rows)

    def save(self, path: str | Path | None = None) -> Path:
        """Write the workbook to *path* (default: the adapter's path)."""
        self._check_writable()
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No path to save the workbook to")
        save_workbook(self._workbook, target, self.file_format)
        logger.info("Saved workbook to %s", target)
        return target

    def close(self) -> None:
        pass
