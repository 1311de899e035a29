"""Storage adapters package.

Provides the ``StorageAdapter`` Protocol, the ``SyncPolicy`` enumeration and
the concrete adapters for SQL databases and spreadsheet workbooks.

Usage:
    from sheetbridge.adapters import SqlDatabase, SpreadsheetDatabase, SyncPolicy
"""

from sheetbridge.adapters.base import StorageAdapter, SyncOutcome, SyncPolicy, TableData
from sheetbridge.adapters.spreadsheet import SpreadsheetDatabase
from sheetbridge.adapters.sql import SqlDatabase, create_sql_engine

__all__ = [
    "StorageAdapter",
    "SyncOutcome",
    "SyncPolicy",
    "TableData",
    "SpreadsheetDatabase",
    "SqlDatabase",
    "create_sql_engine",
]
