"""Pydantic models for the relational schema and its structural diffs.

This module contains schema-domain models:
- Structure models: Column, Index, ForeignKey, Table, Schema
- Diff models: TableDiff, SchemaDiff

Structure models are value objects with a builder-style mutation API.  Child
entities live in name-keyed dicts owned by their parent; foreign keys refer to
other tables by name only.  "Add" operations overwrite by name.

No cross-entity validation happens on mutation -- a half-built schema is a
valid intermediate state while decoding.  ``Schema.reference_errors()``
reports broken references; callers decide whether to raise.

Usage:
    from sheetbridge.schema.models import Column, ForeignKey, Schema, Table

    party = Table(name="party").add_column(Column(name="id", type="integer"))
    party.set_primary_key(["id"])

    invoice = (
        Table(name="invoice")
        .add_column(Column(name="id", type="string", length=20))
        .add_column(Column(name="customer_id", type="integer"))
        .set_primary_key(["id"])
        .add_foreign_key(
            ForeignKey(
                name="fk_customer",
                local_columns=["customer_id"],
                foreign_table="party",
                foreign_columns=["id"],
                on_delete="RESTRICT",
            )
        )
    )

    schema = Schema(name="billing").add_table(party).add_table(invoice)
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

FK_ACTIONS: tuple[str, ...] = (
    "CASCADE",
    "RESTRICT",
    "SET NULL",
    "SET DEFAULT",
    "NO ACTION",
)


# ============================================================================
# Structure Models
# ============================================================================


class Column(BaseModel):
    """A table column with a logical (engine-neutral) type.

    Example:
        >>> col = Column(name="total", type="decimal", precision=10, scale=2)
        >>> col.nullable
        True
    """

    name: str
    type: str
    nullable: bool = True
    default: Any = None
    length: int | None = None
    precision: int | None = None
    scale: int | None = None

    @field_validator("type")
    @classmethod
    def _lower_type(cls, value: str) -> str:
        return value.strip().lower()


class Index(BaseModel):
    """A named index over one or more columns of its table."""

    name: str
    columns: list[str]
    unique: bool = False
    flags: list[str] = Field(default_factory=list)

    @field_validator("flags")
    @classmethod
    def _normalize_flags(cls, value: list[str]) -> list[str]:
        # flags are a set; keep a stable order for equality and encoding
        return sorted({flag.strip().lower() for flag in value if flag.strip()})


class ForeignKey(BaseModel):
    """A foreign key from local columns to columns of another table.

    Example:
        >>> fk = ForeignKey(
        ...     local_columns=["customer_id"],
        ...     foreign_table="party",
        ...     foreign_columns=["id"],
        ... )
        >>> fk.effective_name
        'fk_customer_id'
    """

    local_columns: list[str]
    foreign_table: str
    foreign_columns: list[str]
    name: str | None = None
    on_delete: str | None = None
    on_update: str | None = None

    @field_validator("on_delete", "on_update")
    @classmethod
    def _normalize_action(cls, value: str | None) -> str | None:
        if value is None:
            return None
        action = " ".join(value.upper().split())
        if action not in FK_ACTIONS:
            raise ValueError(
                f"Unknown referential action '{value}'. "
                f"Expected one of: {', '.join(FK_ACTIONS)}"
            )
        return action

    @property
    def effective_name(self) -> str:
        """Name used when the key must be addressed (e.g. in a schema sheet).

        Keys decoded from a schema sheet always come back named, so an
        unnamed key reads back with this derived name.
        """
        return self.name or "fk_" + "_".join(self.local_columns)

    def signature(self) -> tuple:
        """Name-independent identity: columns, target and actions.

        ``NO ACTION`` and an unset action are the same thing to every engine,
        so both collapse to ``None``.
        """

        def _action(value: str | None) -> str | None:
            return None if value in (None, "NO ACTION") else value

        return (
            tuple(self.local_columns),
            self.foreign_table,
            tuple(self.foreign_columns),
            _action(self.on_delete),
            _action(self.on_update),
        )


class Table(BaseModel):
    """A table: columns, primary key, indexes and foreign keys."""

    name: str
    columns: dict[str, Column] = Field(default_factory=dict)
    primary_key: list[str] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list)
    indexes: dict[str, Index] = Field(default_factory=dict)

    # -- columns -------------------------------------------------------------

    def add_column(self, column: Column) -> "Table":
        """Add (or replace, by name) a column."""
        self.columns[column.name] = column
        return self

    def get_column(self, name: str) -> Column | None:
        return self.columns.get(name)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def remove_column(self, name: str) -> "Table":
        self.columns.pop(name, None)
        return self

    @property
    def column_names(self) -> list[str]:
        return list(self.columns.keys())

    # -- keys ----------------------------------------------------------------

    def set_primary_key(self, columns: list[str]) -> "Table":
        self.primary_key = list(columns)
        return self

    def is_primary_key(self, column_name: str) -> bool:
        return column_name in self.primary_key

    def add_foreign_key(self, foreign_key: ForeignKey) -> "Table":
        """Add a foreign key.

        A named key replaces any existing key with the same name.  An unnamed
        key is appended unless an identical key is already present.
        """
        if foreign_key.name is not None:
            for i, existing in enumerate(self.foreign_keys):
                if existing.name == foreign_key.name:
                    self.foreign_keys[i] = foreign_key
                    return self
        elif foreign_key in self.foreign_keys:
            return self
        self.foreign_keys.append(foreign_key)
        return self

    def get_foreign_key(self, name: str) -> ForeignKey | None:
        for foreign_key in self.foreign_keys:
            if foreign_key.effective_name == name:
                return foreign_key
        return None

    def remove_foreign_key(self, name: str) -> "Table":
        self.foreign_keys = [
            fk for fk in self.foreign_keys if fk.effective_name != name
        ]
        return self

    @property
    def foreign_tables(self) -> list[str]:
        """Names of the tables this table references, first-seen order."""
        names: list[str] = []
        for foreign_key in self.foreign_keys:
            if foreign_key.foreign_table not in names:
                names.append(foreign_key.foreign_table)
        return names

    # -- indexes -------------------------------------------------------------

    def add_index(self, index: Index) -> "Table":
        self.indexes[index.name] = index
        return self

    def get_index(self, name: str) -> Index | None:
        return self.indexes.get(name)

    def has_index(self, name: str) -> bool:
        return name in self.indexes

    def remove_index(self, name: str) -> "Table":
        self.indexes.pop(name, None)
        return self

    # -- validation ----------------------------------------------------------

    def reference_errors(self) -> list[str]:
        """Describe every reference to a column this table does not have."""
        errors: list[str] = []

        for col in self.primary_key:
            if col not in self.columns:
                errors.append(
                    f"Primary key of table '{self.name}' references unknown column '{col}'"
                )

        for index in self.indexes.values():
            for col in index.columns:
                if col not in self.columns:
                    errors.append(
                        f"Index '{index.name}' on table '{self.name}' "
                        f"references unknown column '{col}'"
                    )

        for fk in self.foreign_keys:
            if not fk.local_columns:
                errors.append(
                    f"Foreign key '{fk.effective_name}' on table '{self.name}' has no columns"
                )
            if len(fk.local_columns) != len(fk.foreign_columns):
                errors.append(
                    f"Foreign key '{fk.effective_name}' on table '{self.name}' maps "
                    f"{len(fk.local_columns)} local column(s) to "
                    f"{len(fk.foreign_columns)} foreign column(s)"
                )
            for col in fk.local_columns:
                if col not in self.columns:
                    errors.append(
                        f"Foreign key '{fk.effective_name}' on table '{self.name}' "
                        f"references unknown column '{col}'"
                    )

        return errors


class Schema(BaseModel):
    """Complete structural description of a relational dataset."""

    name: str | None = None
    tables: dict[str, Table] = Field(default_factory=dict)

    def add_table(self, table: Table) -> "Schema":
        """Add (or replace, by name) a table."""
        self.tables[table.name] = table
        return self

    def get_table(self, name: str) -> Table | None:
        return self.tables.get(name)

    def has_table(self, name: str) -> bool:
        return name in self.tables

    def remove_table(self, name: str) -> "Schema":
        self.tables.pop(name, None)
        return self

    @property
    def table_names(self) -> list[str]:
        return list(self.tables.keys())

    def subset(self, tables: list[str] | None) -> "Schema":
        """Deep copy restricted to *tables* (all tables when ``None``)."""
        if tables is None:
            return self.model_copy(deep=True)
        wanted = set(tables)
        return Schema(
            name=self.name,
            tables={
                name: table.model_copy(deep=True)
                for name, table in self.tables.items()
                if name in wanted
            },
        )

    def reference_errors(self) -> list[str]:
        """Describe every broken reference in the schema.

        Foreign keys pointing at tables outside the schema are allowed (a
        schema may describe part of a database); when the referenced table
        is present its columns must exist.
        """
        errors: list[str] = []
        for table in self.tables.values():
            errors.extend(table.reference_errors())
            for fk in table.foreign_keys:
                foreign = self.tables.get(fk.foreign_table)
                if foreign is None:
                    continue
                for col in fk.foreign_columns:
                    if col not in foreign.columns:
                        errors.append(
                            f"Foreign key '{fk.effective_name}' on table '{table.name}' "
                            f"references unknown column '{fk.foreign_table}.{col}'"
                        )
        return errors


# ============================================================================
# Diff Models
# ============================================================================


class TableDiff(BaseModel):
    """Structural changes needed to turn a target table into the source table.

    Column, index and foreign-key entries carry the source-side definitions.
    ``primary_key`` is set only when the primary key changed.
    """

    name: str
    added_columns: list[Column] = Field(default_factory=list)
    dropped_columns: list[str] = Field(default_factory=list)
    changed_columns: list[Column] = Field(default_factory=list)
    primary_key: list[str] | None = None
    added_indexes: list[Index] = Field(default_factory=list)
    dropped_indexes: list[str] = Field(default_factory=list)
    added_foreign_keys: list[ForeignKey] = Field(default_factory=list)
    dropped_foreign_keys: list[ForeignKey] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_columns
            or self.dropped_columns
            or self.changed_columns
            or self.primary_key is not None
            or self.added_indexes
            or self.dropped_indexes
            or self.added_foreign_keys
            or self.dropped_foreign_keys
        )


class SchemaDiff(BaseModel):
    """Result of comparing a source schema against a target schema.

    Example:
        >>> diff = SchemaDiff()
        >>> diff.is_empty
        True
        >>> diff.format_report()
        'Schemas match'
    """

    created_tables: list[Table] = Field(default_factory=list)
    dropped_tables: list[str] = Field(default_factory=list)
    altered_tables: list[TableDiff] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.created_tables or self.dropped_tables or self.altered_tables)

    @property
    def change_count(self) -> int:
        """Number of tables touched by the diff."""
        return len(self.created_tables) + len(self.dropped_tables) + len(self.altered_tables)

    def format_report(self) -> str:
        """Format the diff as a human-readable report."""
        if self.is_empty:
            return "Schemas match"

        lines = ["Schema differences:"]

        if self.created_tables:
            lines.append(f"\n  New tables ({len(self.created_tables)}):")
            for table in self.created_tables:
                lines.append(f"    + {table.name}")

        if self.altered_tables:
            lines.append(f"\n  Changed tables ({len(self.altered_tables)}):")
            for diff in self.altered_tables:
                lines.append(f"    ~ {diff.name}")
                for col in diff.added_columns:
                    lines.append(f"        + column {col.name}")
                for name in diff.dropped_columns:
                    lines.append(f"        - column {name}")
                for col in diff.changed_columns:
                    lines.append(f"        ~ column {col.name}")
                if diff.primary_key is not None:
                    lines.append(f"        ~ primary key ({', '.join(diff.primary_key)})")
                for index in diff.added_indexes:
                    lines.append(f"        + index {index.name}")
                for name in diff.dropped_indexes:
                    lines.append(f"        - index {name}")
                for fk in diff.added_foreign_keys:
                    lines.append(f"        + foreign key {fk.effective_name}")
                for fk in diff.dropped_foreign_keys:
                    lines.append(f"        - foreign key {fk.effective_name}")

        if self.dropped_tables:
            lines.append(f"\n  Dropped tables ({len(self.dropped_tables)}):")
            for name in self.dropped_tables:
                lines.append(f"    - {name}")

        return "\n".join(lines)
