"""Dialect-specific DDL synthesis from a schema diff.

Turns a ``SchemaDiff`` into an ordered list of statements:

1. CREATE TABLE (and its indexes) for new tables, referenced tables first
2. ALTER fragments for changed tables
3. DROP TABLE for removed tables, referrers first

Statements carry no trailing semicolon so they can be passed one by one to
``Connection.execute(text(...))``; ``MigrationPlan.to_sql()`` renders a
script.

SQLite only supports ``ADD COLUMN`` in place.  Any other change to a sqlite
table rebuilds it: create ``__tmp_<table>``, copy the common columns, drop
the original, rename the copy and recreate its indexes.

Usage:
    from sheetbridge.schema.comparator import diff_schemas
    from sheetbridge.schema.ddl import build_migration_plan

    diff = diff_schemas(source, target, dialect="postgresql")
    plan = build_migration_plan(diff, source, target, "postgresql")
    for statement in plan.statements:
        connection.execute(text(statement))
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from sheetbridge.dialects import Dialect, get_dialect
from sheetbridge.schema.comparator import normalize_default
from sheetbridge.schema.models import (
    Column,
    ForeignKey,
    Index,
    Schema,
    SchemaDiff,
    Table,
    TableDiff,
)

logger = logging.getLogger(__name__)

REBUILD_PREFIX = "__tmp_"


# ------------------------------------------------------------------
# Plan data class
# ------------------------------------------------------------------


@dataclass
class MigrationPlan:
    """Ordered DDL statements for one dialect.

    Attributes:
        dialect: Canonical dialect name the statements are written for.
        statements: Statements in execution order.
        create_order: Forward topological order of created tables
            (referenced tables before referrers).
        drop_order: Reverse topological order of dropped tables.
        warnings: Changes that could not be expressed and were skipped.
    """

    dialect: str
    statements: list[str] = field(default_factory=list)
    create_order: list[str] = field(default_factory=list)
    drop_order: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.statements)

    @property
    def statement_count(self) -> int:
        return len(self.statements)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def to_sql(self) -> str:
        """Render the plan as a semicolon-terminated script."""
        return "".join(f"{statement};\n" for statement in self.statements)


# ------------------------------------------------------------------
# Ordering
# ------------------------------------------------------------------


def topological_sort(tables: Mapping[str, Table], names: list[str]) -> list[str]:
    """Order *names* so that referenced tables come before their referrers.

    Depth-first; nodes on the current path are marked while visiting and a
    back edge (a foreign-key cycle) is skipped rather than failing.  Only
    references between the listed tables count.  Each table is emitted once.

    Example:
        >>> # invoice -> party
        >>> topological_sort(schema.tables, ["invoice", "party"])
        ['party', 'invoice']
    """
    relevant = set(names)
    dependencies = {
        name: [
            ref
            for ref in (tables[name].foreign_tables if name in tables else [])
            if ref in relevant and ref != name
        ]
        for name in names
    }

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(name: str) -> None:
        if name in visited or name in visiting:
            return
        visiting.add(name)
        for dep in dependencies.get(name, []):
            visit(dep)
        visiting.discard(name)
        visited.add(name)
        sorted_tables.append(name)

    for name in names:
        visit(name)

    return sorted_tables


# ------------------------------------------------------------------
# Statement builders
# ------------------------------------------------------------------


def column_definition(
    dialect: Dialect, table: Table, column: Column, inline_primary_key: bool = False
) -> str:
    """``"name" TYPE [PRIMARY KEY] [NOT NULL] [DEFAULT ...]``"""
    parts = [dialect.quote(column.name), dialect.column_type(column)]
    if inline_primary_key:
        parts.append("PRIMARY KEY")
    if not column.nullable or table.is_primary_key(column.name):
        parts.append("NOT NULL")
    if column.default is not None:
        parts.append(f"DEFAULT {dialect.literal(column.default)}")
    return " ".join(parts)


def foreign_key_clause(dialect: Dialect, fk: ForeignKey) -> str:
    clause = (
        f"FOREIGN KEY ({dialect.quote_list(fk.local_columns)}) "
        f"REFERENCES {dialect.quote(fk.foreign_table)} "
        f"({dialect.quote_list(fk.foreign_columns)})"
    )
    if fk.name:
        clause = f"CONSTRAINT {dialect.quote(fk.name)} {clause}"
    if fk.on_delete:
        clause += f" ON DELETE {fk.on_delete}"
    if fk.on_update:
        clause += f" ON UPDATE {fk.on_update}"
    return clause


def create_table_sql(dialect: Dialect, table: Table, name: str | None = None) -> str:
    """CREATE TABLE statement with primary key and foreign keys inline.

    A single-column sqlite primary key is declared on the column itself so
    an INTEGER key aliases the rowid.
    """
    inline_key = dialect.name == "sqlite" and len(table.primary_key) == 1
    lines = [
        column_definition(
            dialect, table, column, inline_key and table.is_primary_key(column.name)
        )
        for column in table.columns.values()
    ]
    if table.primary_key and not inline_key:
        lines.append(f"PRIMARY KEY ({dialect.quote_list(table.primary_key)})")
    lines.extend(foreign_key_clause(dialect, fk) for fk in table.foreign_keys)

    body = ",\n    ".join(lines)
    return f"CREATE TABLE {dialect.quote(name or table.name)} (\n    {body}\n)"


def create_index_sql(dialect: Dialect, table_name: str, index: Index) -> str:
    kind = ""
    if dialect.name == "mysql" and "fulltext" in index.flags:
        kind = "FULLTEXT "
    elif index.unique:
        kind = "UNIQUE "
    return (
        f"CREATE {kind}INDEX {dialect.quote(index.name)} "
        f"ON {dialect.quote(table_name)} ({dialect.quote_list(index.columns)})"
    )


def drop_index_sql(dialect: Dialect, table_name: str, index_name: str) -> str:
    if dialect.name == "mysql":
        return f"DROP INDEX {dialect.quote(index_name)} ON {dialect.quote(table_name)}"
    return f"DROP INDEX {dialect.quote(index_name)}"


def drop_table_sql(dialect: Dialect, table_name: str) -> str:
    return f"DROP TABLE {dialect.quote(table_name)}"


def create_statements(dialect: Dialect, table: Table) -> list[str]:
    """CREATE TABLE followed by its CREATE INDEX statements."""
    return [create_table_sql(dialect, table)] + [
        create_index_sql(dialect, table.name, index) for index in table.indexes.values()
    ]


# ------------------------------------------------------------------
# ALTER fragments
# ------------------------------------------------------------------


def _alter_server(
    dialect: Dialect, diff: TableDiff, source: Table, target: Table, plan: MigrationPlan
) -> list[str]:
    """ALTER statements for engines with full ALTER TABLE support."""
    table = dialect.quote(diff.name)
    alter = f"ALTER TABLE {table}"
    is_pg = dialect.name == "postgresql"
    statements: list[str] = []

    for fk in diff.dropped_foreign_keys:
        if not fk.name:
            plan.warn(
                f"Cannot drop unnamed foreign key {fk.effective_name} on '{diff.name}'; skipped"
            )
            continue
        if is_pg:
            statements.append(f"{alter} DROP CONSTRAINT {dialect.quote(fk.name)}")
        else:
            statements.append(f"{alter} DROP FOREIGN KEY {dialect.quote(fk.name)}")

    for index_name in diff.dropped_indexes:
        statements.append(drop_index_sql(dialect, diff.name, index_name))

    if diff.primary_key is not None and target.primary_key:
        if is_pg:
            statements.append(
                f"{alter} DROP CONSTRAINT {dialect.quote(diff.name + '_pkey')}"
            )
        else:
            statements.append(f"{alter} DROP PRIMARY KEY")

    for name in diff.dropped_columns:
        statements.append(f"{alter} DROP COLUMN {dialect.quote(name)}")

    for column in diff.added_columns:
        statements.append(f"{alter} ADD COLUMN {column_definition(dialect, source, column)}")

    for column in diff.changed_columns:
        if not is_pg:
            statements.append(
                f"{alter} MODIFY COLUMN {column_definition(dialect, source, column)}"
            )
            continue

        current = target.columns[column.name]
        quoted = dialect.quote(column.name)
        new_type = dialect.column_type(column)
        if new_type != dialect.column_type(current):
            statements.append(
                f"{alter} ALTER COLUMN {quoted} TYPE {new_type} USING {quoted}::{new_type}"
            )
        wanted_null = column.nullable and not source.is_primary_key(column.name)
        current_null = current.nullable and not target.is_primary_key(current.name)
        if wanted_null != current_null:
            action = "DROP NOT NULL" if wanted_null else "SET NOT NULL"
            statements.append(f"{alter} ALTER COLUMN {quoted} {action}")
        if normalize_default(column.default) != normalize_default(current.default):
            if column.default is None:
                statements.append(f"{alter} ALTER COLUMN {quoted} DROP DEFAULT")
            else:
                statements.append(
                    f"{alter} ALTER COLUMN {quoted} SET DEFAULT {dialect.literal(column.default)}"
                )

    if diff.primary_key:
        statements.append(f"{alter} ADD PRIMARY KEY ({dialect.quote_list(diff.primary_key)})")

    for index in diff.added_indexes:
        statements.append(create_index_sql(dialect, diff.name, index))

    for fk in diff.added_foreign_keys:
        statements.append(f"{alter} ADD {foreign_key_clause(dialect, fk)}")

    return statements


def _sqlite_in_place(diff: TableDiff, source: Table) -> bool:
    """True when sqlite can apply the diff without rebuilding the table."""
    if (
        diff.dropped_columns
        or diff.changed_columns
        or diff.primary_key is not None
        or diff.added_foreign_keys
        or diff.dropped_foreign_keys
    ):
        return False
    return all(
        (column.nullable or column.default is not None)
        and not source.is_primary_key(column.name)
        for column in diff.added_columns
    )


def rebuild_table_sql(dialect: Dialect, source: Table, target: Table) -> list[str]:
    """Recreate *target* with the structure of *source*, keeping common columns."""
    temp_name = REBUILD_PREFIX + source.name
    common = [name for name in source.columns if name in target.columns]
    table = dialect.quote(source.name)
    temp = dialect.quote(temp_name)

    statements = [create_table_sql(dialect, source, name=temp_name)]
    if common:
        columns = dialect.quote_list(common)
        statements.append(f"INSERT INTO {temp} ({columns}) SELECT {columns} FROM {table}")
    statements.append(drop_table_sql(dialect, source.name))
    statements.append(f"ALTER TABLE {temp} RENAME TO {table}")
    statements.extend(
        create_index_sql(dialect, source.name, index) for index in source.indexes.values()
    )
    return statements


def _alter_sqlite(
    dialect: Dialect, diff: TableDiff, source: Table, target: Table
) -> list[str]:
    if not _sqlite_in_place(diff, source):
        logger.debug("Rebuilding sqlite table '%s'", diff.name)
        return rebuild_table_sql(dialect, source, target)

    statements = [drop_index_sql(dialect, diff.name, name) for name in diff.dropped_indexes]
    statements.extend(
        f"ALTER TABLE {dialect.quote(diff.name)} ADD COLUMN "
        f"{column_definition(dialect, source, column)}"
        for column in diff.added_columns
    )
    statements.extend(
        create_index_sql(dialect, diff.name, index) for index in diff.added_indexes
    )
    return statements


def alter_table_sql(
    dialect: "str | Dialect",
    diff: TableDiff,
    source: Table,
    target: Table,
    plan: MigrationPlan | None = None,
) -> list[str]:
    """Statements turning *target* into *source* for one changed table."""
    resolved = get_dialect(dialect)
    if resolved.name == "sqlite":
        return _alter_sqlite(resolved, diff, source, target)
    return _alter_server(
        resolved, diff, source, target, plan or MigrationPlan(dialect=resolved.name)
    )


# ------------------------------------------------------------------
# Plan generation
# ------------------------------------------------------------------


def build_migration_plan(
    diff: SchemaDiff,
    source: Schema,
    target: Schema,
    dialect: "str | Dialect",
) -> MigrationPlan:
    """Generate the statements that apply *diff* to the target.

    Args:
        diff: Result of ``diff_schemas(source, target, ...)``.
        source: Desired structure (supplies full table definitions).
        target: Current structure (supplies the tables being altered/dropped).
        dialect: Engine to write statements for.

    Returns:
        ``MigrationPlan``; an empty diff gives an empty statement list.

    Raises:
        UnsupportedDialectError: If *dialect* is not a supported engine.

    Example:
        plan = build_migration_plan(diff, source, target, "mysql")
        print(plan.to_sql())
    """
    resolved = get_dialect(dialect)
    plan = MigrationPlan(dialect=resolved.name)

    created = {table.name: table for table in diff.created_tables}
    plan.create_order = topological_sort(created, list(created))
    for name in plan.create_order:
        plan.statements.extend(create_statements(resolved, created[name]))

    for table_diff in diff.altered_tables:
        plan.statements.extend(
            alter_table_sql(
                resolved,
                table_diff,
                source.tables[table_diff.name],
                target.tables[table_diff.name],
                plan,
            )
        )

    plan.drop_order = list(
        reversed(topological_sort(target.tables, list(diff.dropped_tables)))
    )
    plan.statements.extend(drop_table_sql(resolved, name) for name in plan.drop_order)

    logger.debug("Migration plan for %s: %d statement(s)", resolved.name, plan.statement_count)
    return plan


def build_replace_plan(
    source: Schema,
    target: Schema,
    dialect: "str | Dialect",
    tables: list[str] | None = None,
) -> MigrationPlan:
    """Drop every target table, then create every source table.

    *tables* restricts both sides to the named tables.
    """
    resolved = get_dialect(dialect)
    plan = MigrationPlan(dialect=resolved.name)
    wanted = source.subset(tables)
    existing = target.subset(tables)

    plan.drop_order = list(
        reversed(topological_sort(existing.tables, existing.table_names))
    )
    plan.statements.extend(drop_table_sql(resolved, name) for name in plan.drop_order)

    plan.create_order = topological_sort(wanted.tables, wanted.table_names)
    for name in plan.create_order:
        plan.statements.extend(create_statements(resolved, wanted.tables[name]))

    return plan
