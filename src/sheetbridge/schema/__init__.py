"""Schema model, spreadsheet codec, comparison and DDL synthesis.

Provides the relational schema model (``Schema``, ``Table``, ``Column``,
``Index``, ``ForeignKey``), its tagged-row encoding (``encode_schema``,
``decode_schema``), structural comparison (``diff_schemas``), dialect-aware
DDL (``build_migration_plan``, ``build_replace_plan``) and live database
introspection (``SchemaIntrospector``).

Usage:
    from sheetbridge.schema import Schema, Table, Column
    from sheetbridge.schema import decode_schema, encode_schema
    from sheetbridge.schema import diff_schemas, build_migration_plan
"""

from sheetbridge.schema.codec import (
    SCHEMA_SHEET,
    decode_rows,
    decode_schema,
    encode_rows,
    encode_schema,
    sheet_rows,
    write_rows,
)
from sheetbridge.schema.comparator import diff_schemas, diff_tables, normalize_default
from sheetbridge.schema.ddl import (
    MigrationPlan,
    build_migration_plan,
    build_replace_plan,
    topological_sort,
)
from sheetbridge.schema.inference import infer_schema
from sheetbridge.schema.introspector import SchemaIntrospector
from sheetbridge.schema.models import (
    Column,
    ForeignKey,
    Index,
    Schema,
    SchemaDiff,
    Table,
    TableDiff,
)

__all__ = [
    "Column",
    "ForeignKey",
    "Index",
    "Schema",
    "Table",
    "SchemaDiff",
    "TableDiff",
    "SCHEMA_SHEET",
    "encode_schema",
    "decode_schema",
    "encode_rows",
    "decode_rows",
    "sheet_rows",
    "write_rows",
    "infer_schema",
    "diff_schemas",
    "diff_tables",
    "normalize_default",
    "MigrationPlan",
    "build_migration_plan",
    "build_replace_plan",
    "topological_sort",
    "SchemaIntrospector",
]
