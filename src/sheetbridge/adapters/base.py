"""Storage capability protocol shared by every synchronization target.

Defines ``StorageAdapter``, the ``SyncPolicy`` enumeration that selects how
much of a target is discarded before reconciliation, and ``SyncOutcome``,
what a target reports back after a synchronize call.

Usage:
    from sheetbridge.adapters.base import StorageAdapter, SyncPolicy

    def copy(source: StorageAdapter, target: StorageAdapter) -> int:
        outcome = target.synchronize(
            source.structure(), source.data(), SyncPolicy.MERGE
        )
        return outcome.rows_loaded
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from sheetbridge.schema.models import Schema

TableData = dict[str, list[dict[str, Any]]]


class SyncPolicy(str, Enum):
    """How a target is reconciled with a source.

    - ``REPLACE``: drop the target's tables and recreate them with the
      source's structure and data.
    - ``STRUCTURE_ONLY``: same structural swap, but no rows are loaded.
    - ``MERGE``: apply the structural diff, then upsert every source row
      without deleting rows absent from the source.
    """

    REPLACE = "replace"
    STRUCTURE_ONLY = "structure-only"
    MERGE = "merge"

    @classmethod
    def _missing_(cls, value: object) -> "SyncPolicy | None":
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @classmethod
    def from_flags(cls, replace: bool = False, structure_only: bool = False) -> "SyncPolicy":
        """Collapse legacy drop flags into one policy; REPLACE wins.

        Example:
            >>> SyncPolicy.from_flags(replace=True, structure_only=True)
            <SyncPolicy.REPLACE: 'replace'>
            >>> SyncPolicy.from_flags()
            <SyncPolicy.MERGE: 'merge'>
        """
        if replace:
            return cls.REPLACE
        if structure_only:
            return cls.STRUCTURE_ONLY
        return cls.MERGE

    @property
    def loads_data(self) -> bool:
        return self is not SyncPolicy.STRUCTURE_ONLY


@dataclass
class SyncOutcome:
    """What a target did during one synchronize call.

    Attributes:
        statements: Structural changes applied, in order (SQL text for
            database targets, change descriptions for spreadsheets).
        rows_loaded: Rows written by the upsert phase.
        warnings: Changes that were skipped.
    """

    statements: list[str] = field(default_factory=list)
    rows_loaded: int = 0
    warnings: list[str] = field(default_factory=list)


class StorageAdapter(Protocol):
    """Capability set every source/target implements.

    Implementations: ``SqlDatabase`` (SQLAlchemy engine) and
    ``SpreadsheetDatabase`` (workbook file).
    """

    def structure(self, tables: list[str] | None = None) -> Schema:
        """Current schema, optionally restricted to *tables*."""
        ...

    def data(self, tables: list[str] | None = None) -> TableData:
        """Rows per table as ``{table: [row, ...]}``."""
        ...

    def apply_structure(
        self,
        schema: Schema,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> list[str]:
        """Bring the target's structure in line with *schema*.

        Returns:
            The changes applied, in order.
        """
        ...

    def apply_data(self, data: TableData, schema: Schema | None = None) -> int:
        """Upsert rows by primary key; returns the number of rows written."""
        ...

    def synchronize(
        self,
        schema: Schema,
        data: TableData,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> SyncOutcome:
        """Structural policy then row upserts, atomically where supported."""
        ...

    def close(self) -> None:
        """Release connections or file handles."""
        ...
