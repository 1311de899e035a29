"""SQL dialect registry: identifier quoting, type mapping and literals.

Three engine families are supported:

- ``sqlite``: reduced type affinity.  Numeric types collapse into INTEGER and
  REAL, temporal and GUID types are stored as TEXT.
- ``postgresql``: logical types map to their native counterparts.
- ``mysql``: logical types map to their native counterparts (MariaDB shares
  this dialect).

Anything else fails fast with ``UnsupportedDialectError``.

Usage:
    from sheetbridge.dialects import get_dialect
    from sheetbridge.schema.models import Column

    dialect = get_dialect("postgresql+psycopg")
    dialect.column_type(Column(name="total", type="decimal", precision=10, scale=2))
    # 'NUMERIC(10, 2)'
    dialect.quote("order")
    # '"order"'
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sheetbridge.errors import UnsupportedDialectError

if TYPE_CHECKING:
    from sheetbridge.schema.models import Column

TypeRenderer = Callable[["Column"], str]


def _fixed(sql_type: str) -> TypeRenderer:
    return lambda column: sql_type


def _sized(sql_type: str, default_length: int | None = None) -> TypeRenderer:
    def render(column: "Column") -> str:
        length = column.length or default_length
        return f"{sql_type}({length})" if length else sql_type

    return render


def _numeric(
    sql_type: str,
    default_precision: int | None = None,
    default_scale: int | None = None,
) -> TypeRenderer:
    def render(column: "Column") -> str:
        # default scale only pairs with the default precision
        if column.precision is None:
            precision, scale = default_precision, default_scale
        else:
            precision, scale = column.precision, column.scale
        if precision is None:
            return sql_type
        if scale is None:
            return f"{sql_type}({precision})"
        return f"{sql_type}({precision}, {scale})"

    return render


@dataclass(frozen=True)
class Dialect:
    """SQL syntax variant of one relational engine family.

    Attributes:
        name: Canonical dialect name (``sqlite``, ``postgresql``, ``mysql``).
        quote_char: Character wrapping identifiers.
        type_map: Logical column type to SQL type renderer.
        fallback_type: SQL type for logical types missing from ``type_map``.
            ``None`` keeps the logical type name (upper-cased).
        true_literal: SQL literal for boolean true.
        false_literal: SQL literal for boolean false.
        max_params: Bind parameters allowed in one statement.
        escape_backslash: Whether backslashes in string literals must be
            doubled.
    """

    name: str
    quote_char: str
    type_map: dict[str, TypeRenderer] = field(repr=False)
    fallback_type: str | None
    true_literal: str
    false_literal: str
    max_params: int
    escape_backslash: bool = False

    @property
    def reduced_affinity(self) -> bool:
        """True when unknown logical types collapse into one storage class."""
        return self.fallback_type is not None

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def quote_list(self, identifiers: list[str]) -> str:
        return ", ".join(self.quote(i) for i in identifiers)

    def column_type(self, column: "Column") -> str:
        """Render the SQL type of *column* for a CREATE/ALTER statement."""
        renderer = self.type_map.get(column.type)
        if renderer is not None:
            return renderer(column)
        if self.fallback_type is not None:
            return self.fallback_type
        return column.type.upper()

    def literal(self, value: Any) -> str:
        """Render a Python value as an SQL literal (used for DEFAULT clauses)."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.true_literal if value else self.false_literal
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        text = str(value)
        if self.escape_backslash:
            text = text.replace("\\", "\\\\")
        return "'" + text.replace("'", "''") + "'"


SQLITE = Dialect(
    name="sqlite",
    quote_char='"',
    type_map={
        "integer": _fixed("INTEGER"),
        "smallint": _fixed("INTEGER"),
        "bigint": _fixed("INTEGER"),
        "boolean": _fixed("INTEGER"),
        "decimal": _fixed("REAL"),
        "float": _fixed("REAL"),
        "double": _fixed("REAL"),
        "date": _fixed("TEXT"),
        "datetime": _fixed("TEXT"),
        "datetimetz": _fixed("TEXT"),
        "time": _fixed("TEXT"),
        "guid": _fixed("TEXT"),
        "blob": _fixed("BLOB"),
        "binary": _fixed("BLOB"),
    },
    fallback_type="TEXT",
    true_literal="1",
    false_literal="0",
    max_params=999,
)

POSTGRESQL = Dialect(
    name="postgresql",
    quote_char='"',
    type_map={
        "integer": _fixed("INTEGER"),
        "smallint": _fixed("SMALLINT"),
        "bigint": _fixed("BIGINT"),
        "boolean": _fixed("BOOLEAN"),
        "decimal": _numeric("NUMERIC"),
        "float": _fixed("REAL"),
        "double": _fixed("DOUBLE PRECISION"),
        "date": _fixed("DATE"),
        "datetime": _fixed("TIMESTAMP"),
        "datetimetz": _fixed("TIMESTAMP WITH TIME ZONE"),
        "time": _fixed("TIME"),
        "guid": _fixed("UUID"),
        "blob": _fixed("BYTEA"),
        "binary": _fixed("BYTEA"),
        "string": _sized("VARCHAR", 255),
        "char": _sized("CHAR", 1),
        "text": _fixed("TEXT"),
        "json": _fixed("JSON"),
    },
    fallback_type=None,
    true_literal="TRUE",
    false_literal="FALSE",
    max_params=65535,
)

MYSQL = Dialect(
    name="mysql",
    quote_char="`",
    type_map={
        "integer": _fixed("INT"),
        "smallint": _fixed("SMALLINT"),
        "bigint": _fixed("BIGINT"),
        "boolean": _fixed("TINYINT(1)"),
        "decimal": _numeric("DECIMAL", 65, 30),
        "float": _fixed("FLOAT"),
        "double": _fixed("DOUBLE"),
        "date": _fixed("DATE"),
        "datetime": _fixed("DATETIME"),
        "datetimetz": _fixed("DATETIME"),
        "time": _fixed("TIME"),
        "guid": _fixed("CHAR(36)"),
        "blob": _fixed("LONGBLOB"),
        "binary": _sized("VARBINARY", 255),
        "string": _sized("VARCHAR", 255),
        "char": _sized("CHAR", 1),
        "text": _fixed("LONGTEXT"),
        "json": _fixed("JSON"),
    },
    fallback_type=None,
    true_literal="1",
    false_literal="0",
    max_params=65535,
    escape_backslash=True,
)

_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLITE,
    "sqlite3": SQLITE,
    "postgresql": POSTGRESQL,
    "postgres": POSTGRESQL,
    "pg": POSTGRESQL,
    "mysql": MYSQL,
    "mariadb": MYSQL,
}


def get_dialect(name: "str | Dialect") -> Dialect:
    """Resolve a dialect by name.

    Accepts canonical names, common aliases and SQLAlchemy driver names
    (``postgresql+psycopg`` resolves to ``postgresql``).

    Raises:
        UnsupportedDialectError: If the engine family is not supported.
    """
    if isinstance(name, Dialect):
        return name

    key = name.strip().lower().split("+", 1)[0]
    dialect = _DIALECTS.get(key)
    if dialect is None:
        supported = ", ".join(sorted({d.name for d in _DIALECTS.values()}))
        raise UnsupportedDialectError(
            f"Unsupported SQL dialect '{name}'. Supported: {supported}"
        )
    return dialect
