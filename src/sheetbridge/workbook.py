"""In-memory workbook model and file load/save.

A ``Workbook`` is an ordered set of named ``Sheet`` objects; each sheet is a
list of rows, the first row being the header.  Two file formats are
supported:

- ``json``: ``{"sheets": {"<name>": [[...], ...]}}``.  Nested cells (dicts,
  lists) are stored as-is.
- ``xlsx``: via openpyxl.  Nested cells are stored as JSON strings since a
  spreadsheet cell holds scalars only.

Usage:
    from sheetbridge.workbook import Workbook, load_workbook, save_workbook

    wb = Workbook()
    wb.add_sheet("party", [["id", "name"], [1, "Acme"]])
    save_workbook(wb, "party.xlsx")

    wb = load_workbook("party.xlsx")
    wb.get_sheet("party").records()
    # [{'id': 1, 'name': 'Acme'}]
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any

import openpyxl

from sheetbridge.errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

FILE_FORMATS: dict[str, str] = {
    ".json": "json",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
}


# ============================================================================
# Model
# ============================================================================


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass
class Sheet:
    """A named grid of rows; ``rows[0]`` is the header when present."""

    name: str
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def header(self) -> list[str]:
        if not self.rows:
            return []
        return ["" if cell is None else str(cell) for cell in self.rows[0]]

    def records(self) -> list[dict[str, Any]]:
        """Data rows as dicts keyed by the header.

        Fully blank rows and unnamed header cells are skipped.
        """
        header = self.header
        records: list[dict[str, Any]] = []
        for row in self.rows[1:]:
            if all(_is_blank(cell) for cell in row):
                continue
            padded = list(row) + [None] * (len(header) - len(row))
            records.append(
                {col: padded[i] for i, col in enumerate(header) if col}
            )
        return records

    def set_records(
        self, records: list[dict[str, Any]], header: list[str] | None = None
    ) -> "Sheet":
        """Replace the data rows, projecting each record onto the header.

        The header defaults to the current one, or to the union of record
        keys (first-seen order) for a sheet without a header.
        """
        if header is None:
            header = self.header
        if not header:
            header = []
            for record in records:
                for key in record:
                    if key not in header:
                        header.append(key)
        self.rows = [list(header)] + [
            [record.get(col) for col in header] for record in records
        ]
        return self


@dataclass
class Workbook:
    """Ordered collection of sheets keyed by name."""

    sheets: dict[str, Sheet] = field(default_factory=dict)

    def get_sheet(self, name: str) -> Sheet | None:
        return self.sheets.get(name)

    def has_sheet(self, name: str) -> bool:
        return name in self.sheets

    def add_sheet(self, name: str, rows: list[list[Any]] | None = None) -> Sheet:
        """Add (or replace, by name) a sheet and return it."""
        sheet = Sheet(name=name, rows=[list(row) for row in rows or []])
        self.sheets[name] = sheet
        return sheet

    def remove_sheet(self, name: str) -> "Workbook":
        self.sheets.pop(name, None)
        return self

    @property
    def sheet_names(self) -> list[str]:
        return list(self.sheets.keys())


# ============================================================================
# File I/O
# ============================================================================


def detect_format(path: str | Path, file_format: str | None = None) -> str:
    """Resolve the workbook file format from an explicit name or the extension.

    Raises:
        UnsupportedFormatError: If the format is not ``json`` or ``xlsx``.
    """
    if file_format is not None:
        fmt = file_format.strip().lower().lstrip(".")
        if fmt in FILE_FORMATS.values():
            return fmt
        raise UnsupportedFormatError(f"Unsupported workbook format '{file_format}'")

    suffix = Path(path).suffix.lower()
    if suffix in FILE_FORMATS:
        return FILE_FORMATS[suffix]
    raise UnsupportedFormatError(
        f"Cannot determine workbook format of '{path}'. "
        f"Supported extensions: {', '.join(sorted(FILE_FORMATS))}"
    )


def load_workbook(path: str | Path, file_format: str | None = None) -> Workbook:
    """Read a workbook file.

    Raises:
        FileNotFoundError: If the file does not exist.
        UnsupportedFormatError: If the format cannot be handled.
    """
    path = Path(path)
    fmt = detect_format(path, file_format)
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {path}")

    if fmt == "json":
        workbook = _load_json(path)
    else:
        workbook = _load_xlsx(path)

    logger.debug("Loaded %d sheet(s) from %s", len(workbook.sheets), path)
    return workbook


def save_workbook(
    workbook: Workbook, path: str | Path, file_format: str | None = None
) -> None:
    """Write a workbook file, replacing any existing file."""
    path = Path(path)
    fmt = detect_format(path, file_format)

    if fmt == "json":
        _save_json(workbook, path)
    else:
        _save_xlsx(workbook, path)

    logger.debug("Saved %d sheet(s) to %s", len(workbook.sheets), path)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def _load_json(path: Path) -> Workbook:
    content = json.loads(path.read_text(encoding="utf-8") or "{}")
    sheets = content.get("sheets", {}) if isinstance(content, dict) else None
    if not isinstance(sheets, dict):
        raise ValueError(f"Invalid workbook file {path}: expected a 'sheets' mapping")

    workbook = Workbook()
    for name, rows in sheets.items():
        workbook.add_sheet(name, rows)
    return workbook


def _save_json(workbook: Workbook, path: Path) -> None:
    content = {"sheets": {name: sheet.rows for name, sheet in workbook.sheets.items()}}
    path.write_text(
        json.dumps(content, indent=2, default=_json_default) + "\n", encoding="utf-8"
    )


def _xlsx_cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=_json_default)
    if isinstance(value, bytes):
        return value.hex()
    return value


def _load_xlsx(path: Path) -> Workbook:
    book = openpyxl.load_workbook(path, read_only=True, data_only=True)
    workbook = Workbook()
    try:
        for worksheet in book.worksheets:
            rows: list[list[Any]] = []
            for values in worksheet.iter_rows(values_only=True):
                row = list(values)
                while row and row[-1] is None:
                    row.pop()
                rows.append(row)
            while rows and not rows[-1]:
                rows.pop()
            workbook.add_sheet(worksheet.title, rows)
    finally:
        book.close()
    return workbook


def _save_xlsx(workbook: Workbook, path: Path) -> None:
    book = openpyxl.Workbook()
    default = book.active
    for sheet in workbook.sheets.values():
        worksheet = book.create_sheet(title=sheet.name)
        for row in sheet.rows:
            worksheet.append([_xlsx_cell(cell) for cell in row])

    # openpyxl refuses to save a workbook without sheets
    if workbook.sheets:
        book.remove(default)
    book.save(path)
