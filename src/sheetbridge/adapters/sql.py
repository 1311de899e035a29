"""SQL database storage adapter.

Provides ``SqlDatabase``, the ``StorageAdapter`` implementation for any
engine SQLAlchemy connects to (sqlite, PostgreSQL, MySQL/MariaDB).

``synchronize()`` runs the structural plan and every upsert inside one
``engine.begin()`` block, so a failure anywhere rolls the whole call back.
pysqlite normally commits before DDL; engines created here for sqlite
disable that and issue ``BEGIN`` themselves so DDL joins the transaction.

Usage:
    from sheetbridge.adapters.sql import SqlDatabase

    db = SqlDatabase("sqlite:///shop.sqlite")
    outcome = db.synchronize(schema, {"party": [{"id": 1, "name": "Acme"}]})
    print(outcome.rows_loaded)
    db.close()
"""

import json
import logging
from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from sheetbridge.adapters.base import SyncOutcome, SyncPolicy, TableData
from sheetbridge.dialects import Dialect, get_dialect
from sheetbridge.schema.comparator import diff_schemas
from sheetbridge.schema.ddl import MigrationPlan, build_migration_plan, build_replace_plan, topological_sort
from sheetbridge.schema.introspector import SchemaIntrospector
from sheetbridge.schema.models import Schema, Table
from sheetbridge.upsert import build_upsert, chunk_rows, dedupe_rows, group_rows

logger = logging.getLogger(__name__)

# Column types whose empty-string cells are real values, not blanks
TEXT_TYPES = frozenset({"string", "char", "text"})


def _sqlite_on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    # stop pysqlite from managing transactions (it commits before DDL)
    dbapi_connection.isolation_level = None


def _sqlite_on_begin(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN")


def enable_transactional_ddl(engine: Engine) -> Engine:
    """Make DDL on a sqlite engine part of the surrounding transaction."""
    if engine.dialect.name == "sqlite" and not event.contains(
        engine, "begin", _sqlite_on_begin
    ):
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
    return engine


def create_sql_engine(database_url: str, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine.

    Default settings:

    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``echo=False``: Statements are logged through ``logging`` instead.

    Args:
        database_url: SQLAlchemy URL (``sqlite:///file.sqlite``,
            ``postgresql+psycopg://...``, ``mysql+pymysql://...``).
        **kwargs: Additional keyword arguments forwarded to ``create_engine``.

    Returns:
        Configured ``Engine``.
    """
    defaults: dict[str, Any] = {
        "pool_pre_ping": True,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}
    return enable_transactional_ddl(create_engine(database_url, **merged))


class SqlDatabase:
    """``StorageAdapter`` over a SQLAlchemy engine.

    Args:
        bind: Database URL or an existing ``Engine``.
        **engine_kwargs: Forwarded to ``create_sql_engine`` when *bind* is
            a URL.

    Raises:
        UnsupportedDialectError: If the engine is not sqlite, PostgreSQL or
            MySQL/MariaDB.

    Example:
        with SqlDatabase("sqlite:///shop.sqlite") as db:
            schema = db.structure()
            rows = db.data(["party"])
    """

    def __init__(self, bind: str | Engine, **engine_kwargs: Any) -> None:
        if isinstance(bind, Engine):
            self._engine = enable_transactional_ddl(bind)
        else:
            self._engine = create_sql_engine(bind, **engine_kwargs)
        self._dialect: Dialect = get_dialect(self._engine.dialect.name)

    def __enter__(self) -> "SqlDatabase":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SqlDatabase({self.url!r})"

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def url(self) -> str:
        """Connection URL with the password masked."""
        return self._engine.url.render_as_string(hide_password=True)

    # ------------------------------------------------------------------
    # Raw SQL
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute one statement in its own transaction.

        Example:
            db.execute("CREATE INDEX idx_party_name ON party (name)")
        """
        with self._engine.begin() as conn:
            conn.execute(text(sql), params or {})

    def query(self, sql: str, params: dict | None = None) -> list[dict]:
        """Run a query and return its rows as dicts."""
        with self._engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings()]

    def test_connection(self) -> bool:
        """Run ``SELECT 1`` to verify the connection is alive."""
        with self._engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def structure(self, tables: list[str] | None = None) -> Schema:
        with SchemaIntrospector(self._engine) as introspector:
            return introspector.introspect(tables)

    def plan_structure(
        self,
        schema: Schema,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
        connection: Connection | None = None,
    ) -> MigrationPlan:
        """Statements that would bring the database in line with *schema*.

        REPLACE and STRUCTURE_ONLY drop and recreate the (filtered) tables;
        MERGE applies the structural diff.
        """
        with SchemaIntrospector(connection or self._engine) as introspector:
            current = introspector.introspect()

        if policy is SyncPolicy.MERGE:
            diff = diff_schemas(schema, current, self._dialect, tables)
            return build_migration_plan(diff, schema, current, self._dialect)
        return build_replace_plan(schema, current, self._dialect, tables)

    def _apply_plan(self, conn: Connection, plan: MigrationPlan) -> None:
        for statement in plan.statements:
            logger.debug("DDL: %s", statement)
            conn.execute(text(statement))
        logger.info("Applied %d structural statement(s)", plan.statement_count)

    def apply_structure(
        self,
        schema: Schema,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> list[str]:
        with self._engine.begin() as conn:
            plan = self.plan_structure(schema, policy, tables, conn)
            self._apply_plan(conn, plan)
        return plan.statements

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def data(self, tables: list[str] | None = None) -> TableData:
        """Rows per table, ordered by primary key where there is one."""
        result: TableData = {}
        with self._engine.connect() as conn:
            with SchemaIntrospector(conn) as introspector:
                schema = introspector.introspect(tables)
            for table in schema.tables.values():
                order = (
                    f" ORDER BY {self._dialect.quote_list(table.primary_key)}"
                    if table.primary_key
                    else ""
                )
                rows = conn.execute(
                    text(f"SELECT * FROM {self._dialect.quote(table.name)}{order}")
                )
                result[table.name] = [
                    self._serialize_row(dict(row)) for row in rows.mappings()
                ]
        return result

    def apply_data(self, data: TableData, schema: Schema | None = None) -> int:
        with self._engine.begin() as conn:
            if schema is None:
                with SchemaIntrospector(conn) as introspector:
                    schema = introspector.introspect()
            return self._load(conn, schema, data)

    def _load(self, conn: Connection, schema: Schema, data: TableData) -> int:
        """Upsert every table's rows, referenced tables first."""
        names = [name for name in data if name in schema.tables]
        for name in data:
            if name not in schema.tables:
                logger.warning("Skipping rows for unknown table '%s'", name)

        total = 0
        for name in topological_sort(schema.tables, names):
            table = schema.tables[name]
            rows = [self._prepare_row(table, row) for row in data[name]]
            rows = dedupe_rows([row for row in rows if row], table.primary_key)
            for batch in group_rows(rows):
                for chunk in chunk_rows(batch, self._dialect.max_params):
                    stmt = build_upsert(self._dialect, name, chunk, table.primary_key)
                    logger.debug("Upsert: %s", stmt.sql)
                    conn.execute(text(stmt.sql), stmt.params)
                    total += stmt.row_count
            logger.info("Loaded %d row(s) into '%s'", len(rows), name)
        return total

    # ------------------------------------------------------------------
    # Synchronize
    # ------------------------------------------------------------------

    def synchronize(
        self,
        schema: Schema,
        data: TableData,
        policy: SyncPolicy = SyncPolicy.MERGE,
        tables: list[str] | None = None,
    ) -> SyncOutcome:
        """Apply *policy* then load *data*, all in one transaction."""
        wanted = schema.subset(tables)
        with self._engine.begin() as conn:
            plan = self.plan_structure(schema, policy, tables, conn)
            self._apply_plan(conn, plan)
            rows = 0
            if policy.loads_data:
                rows = self._load(
                    conn,
                    wanted,
                    {name: rows for name, rows in data.items() if name in wanted.tables},
                )
        return SyncOutcome(statements=plan.statements, rows_loaded=rows, warnings=plan.warnings)

    # ------------------------------------------------------------------
    # Serialization Helpers
    # ------------------------------------------------------------------

    def _prepare_row(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        """Project a row onto the table's columns and adapt values for binding."""
        prepared: dict[str, Any] = {}
        for name, column in table.columns.items():
            if name not in row:
                continue
            value = row[name]
            if isinstance(value, str) and not value.strip() and column.type not in TEXT_TYPES:
                value = None
            elif isinstance(value, (dict, list)):
                value = json.dumps(value)
            prepared[name] = value
        return prepared

    def _serialize_value(self, value: Any) -> Any:
        """Convert driver values into plain, file-friendly types."""
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        return value

    def _serialize_row(self, row: dict) -> dict:
        """Serialize all values in a row dict."""
        return {k: self._serialize_value(v) for k, v in row.items()}
