"""sheetbridge: keep a spreadsheet and a SQL database structurally in sync.

Encodes a relational schema into a spreadsheet control sheet, diffs schemas,
synthesizes dialect-specific DDL and upserts, and orchestrates
extract -> transform -> load runs between workbooks and databases.

Usage:
    from sheetbridge import Pipeline, SyncPolicy
    from sheetbridge import Schema, Table, Column, encode_schema, decode_schema
    from sheetbridge import SqlDatabase, SpreadsheetDatabase, connect
    from sheetbridge import load_config, BridgeConfig
"""

__version__ = "0.1.0"

# Adapters
from sheetbridge.adapters.base import StorageAdapter, SyncOutcome, SyncPolicy
from sheetbridge.adapters.spreadsheet import SpreadsheetDatabase
from sheetbridge.adapters.sql import SqlDatabase

# Config
from sheetbridge.config.loader import load_config
from sheetbridge.config.models import BridgeConfig, ConnectionOptions, SyncOptions

# Dialects
from sheetbridge.dialects import Dialect, get_dialect

# Errors
from sheetbridge.errors import (
    IncompleteConfigurationError,
    ProfileNotFoundError,
    ReadOnlyTargetError,
    SchemaFormatError,
    SheetBridgeError,
    UnresolvedReferenceError,
    UnsupportedDialectError,
    UnsupportedFormatError,
)

# Factory
from sheetbridge.factory import connect, resolve_url

# Pipeline
from sheetbridge.pipeline import DataRules, Pipeline, PipelineResult

# Schema
from sheetbridge.schema.codec import decode_schema, encode_schema
from sheetbridge.schema.comparator import diff_schemas
from sheetbridge.schema.ddl import MigrationPlan, build_migration_plan, build_replace_plan
from sheetbridge.schema.models import Column, ForeignKey, Index, Schema, Table

# Upsert
from sheetbridge.upsert import UpsertStatement, build_upsert

# Workbook
from sheetbridge.workbook import Sheet, Workbook, load_workbook, save_workbook

__all__ = [
    # Adapters
    "StorageAdapter",
    "SyncOutcome",
    "SyncPolicy",
    "SpreadsheetDatabase",
    "SqlDatabase",
    # Config
    "load_config",
    "BridgeConfig",
    "ConnectionOptions",
    "SyncOptions",
    # Dialects
    "Dialect",
    "get_dialect",
    # Errors
    "SheetBridgeError",
    "IncompleteConfigurationError",
    "SchemaFormatError",
    "UnresolvedReferenceError",
    "UnsupportedDialectError",
    "UnsupportedFormatError",
    "ReadOnlyTargetError",
    "ProfileNotFoundError",
    # Factory
    "connect",
    "resolve_url",
    # Pipeline
    "Pipeline",
    "PipelineResult",
    "DataRules",
    # Schema
    "Schema",
    "Table",
    "Column",
    "Index",
    "ForeignKey",
    "encode_schema",
    "decode_schema",
    "diff_schemas",
    "MigrationPlan",
    "build_migration_plan",
    "build_replace_plan",
    # Upsert
    "UpsertStatement",
    "build_upsert",
    # Workbook
    "Workbook",
    "Sheet",
    "load_workbook",
    "save_workbook",
]
