"""Live database introspection via the SQLAlchemy inspector.

Reads tables, columns, primary keys, foreign keys and indexes from any
engine SQLAlchemy can reflect, and maps engine column types back onto the
logical types of ``sheetbridge.schema.models``.

Usage:
    from sqlalchemy import create_engine
    from sheetbridge.schema.introspector import SchemaIntrospector

    engine = create_engine("sqlite:///shop.sqlite")
    with SchemaIntrospector(engine) as introspector:
        schema = introspector.introspect()
        print(schema.table_names)
"""

from typing import Any

from sqlalchemy import inspect
from sqlalchemy import types as sqltypes
from sqlalchemy.engine import Connection, Engine

from sheetbridge.schema.comparator import normalize_default
from sheetbridge.schema.models import Column, ForeignKey, Index, Schema, Table


def logical_type(sa_type: Any) -> dict[str, Any]:
    """Map a reflected SQLAlchemy type onto a logical type and its sizing.

    Returns keyword arguments for ``Column`` (``type`` plus any of
    ``length``, ``precision``, ``scale``).

    Examples:
        >>> logical_type(sqltypes.VARCHAR(40))
        {'type': 'string', 'length': 40}
        >>> logical_type(sqltypes.NUMERIC(10, 2))
        {'type': 'decimal', 'precision': 10, 'scale': 2}
    """
    # MySQL has no boolean type; TINYINT(1) is how it spells one
    if sa_type.__visit_name__ == "TINYINT" and getattr(sa_type, "display_width", None) == 1:
        return {"type": "boolean"}
    if isinstance(sa_type, sqltypes.Boolean):
        return {"type": "boolean"}
    if isinstance(sa_type, sqltypes.BigInteger):
        return {"type": "bigint"}
    if isinstance(sa_type, sqltypes.SmallInteger):
        return {"type": "smallint"}
    if isinstance(sa_type, sqltypes.Integer):
        return {"type": "integer"}
    if isinstance(sa_type, sqltypes.Double):
        return {"type": "double"}
    if isinstance(sa_type, sqltypes.Float):
        return {"type": "float"}
    if isinstance(sa_type, sqltypes.Numeric):
        return {"type": "decimal", "precision": sa_type.precision, "scale": sa_type.scale}
    if isinstance(sa_type, sqltypes.DateTime):
        return {"type": "datetimetz" if sa_type.timezone else "datetime"}
    if isinstance(sa_type, sqltypes.Date):
        return {"type": "date"}
    if isinstance(sa_type, sqltypes.Time):
        return {"type": "time"}
    if isinstance(sa_type, sqltypes.Uuid):
        return {"type": "guid"}
    if isinstance(sa_type, sqltypes.JSON):
        return {"type": "json"}
    if isinstance(sa_type, (sqltypes.BINARY, sqltypes.VARBINARY)):
        return {"type": "binary", "length": sa_type.length}
    if isinstance(sa_type, sqltypes.LargeBinary):
        return {"type": "blob"}
    if isinstance(sa_type, sqltypes.Text):
        return {"type": "text"}
    if isinstance(sa_type, (sqltypes.CHAR, sqltypes.NCHAR)):
        return {"type": "char", "length": sa_type.length}
    if isinstance(sa_type, sqltypes.String):
        return {"type": "string", "length": sa_type.length}

    try:
        if sa_type.python_type is bytes:
            return {"type": "blob"}
    except NotImplementedError:
        pass
    return {"type": sa_type.__visit_name__.lower()}


class SchemaIntrospector:
    """Introspects a database through SQLAlchemy's inspector.

    Accepts an ``Engine`` (a connection is opened on ``__enter__`` and
    closed on ``__exit__``) or an open ``Connection``, which is used as-is
    so introspection can run inside the caller's transaction.

    Usage:
        with SchemaIntrospector(engine) as introspector:
            schema = introspector.introspect()

            # Or only some tables
            schema = introspector.introspect(tables=["party"])
    """

    # Tables to exclude from introspection (engine bookkeeping)
    EXCLUDED_TABLES = {
        "sqlite_sequence",
        "spatial_ref_sys",
    }

    def __init__(self, bind: Engine | Connection):
        self._bind = bind
        self._conn: Connection | None = bind if isinstance(bind, Connection) else None
        self._owns_connection = False

    def __enter__(self) -> "SchemaIntrospector":
        """Context manager entry - opens a connection when given an engine."""
        if self._conn is None:
            self._conn = self._bind.connect()
            self._owns_connection = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes a connection it opened."""
        if self._owns_connection and self._conn is not None:
            self._conn.close()
            self._conn = None
            self._owns_connection = False

    def get_table_names(self) -> list[str]:
        if self._conn is None:
            raise RuntimeError("Introspector not connected. Use with statement.")
        return [
            name
            for name in inspect(self._conn).get_table_names()
            if name not in self.EXCLUDED_TABLES
        ]

    def introspect(self, tables: list[str] | None = None) -> Schema:
        """Introspect the database schema.

        Args:
            tables: Only reflect these tables (missing ones are ignored).

        Returns:
            Schema with columns, primary keys, foreign keys and indexes.
        """
        if self._conn is None:
            raise RuntimeError("Introspector not connected. Use with statement.")

        inspector = inspect(self._conn)
        schema = Schema()

        for table_name in self.get_table_names():
            if tables is not None and table_name not in tables:
                continue

            table = Table(name=table_name)
            for info in inspector.get_columns(table_name):
                table.add_column(
                    Column(
                        name=info["name"],
                        nullable=bool(info.get("nullable", True)),
                        default=normalize_default(info.get("default")),
                        **logical_type(info["type"]),
                    )
                )

            pk = inspector.get_pk_constraint(table_name)
            table.set_primary_key(pk.get("constrained_columns") or [])

            fk_names: set[str] = set()
            for fk in inspector.get_foreign_keys(table_name):
                options = fk.get("options") or {}
                table.add_foreign_key(
                    ForeignKey(
                        name=fk.get("name"),
                        local_columns=fk["constrained_columns"],
                        foreign_table=fk["referred_table"],
                        foreign_columns=fk["referred_columns"],
                        on_delete=options.get("ondelete"),
                        on_update=options.get("onupdate"),
                    )
                )
                if fk.get("name"):
                    fk_names.add(fk["name"])

            for ix in inspector.get_indexes(table_name):
                columns = ix.get("column_names") or []
                # MySQL backs every foreign key with an index of the same name;
                # expression indexes have no column names
                if not ix.get("name") or ix["name"] in fk_names or None in columns:
                    continue
                prefix = (ix.get("dialect_options") or {}).get("mysql_prefix")
                table.add_index(
                    Index(
                        name=ix["name"],
                        columns=columns,
                        unique=bool(ix.get("unique", False)),
                        flags=[prefix] if prefix else [],
                    )
                )

            schema.add_table(table)

        return schema
