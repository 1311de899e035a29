"""Typed failures raised by sheetbridge.

Every error derives from ``SheetBridgeError`` so callers can catch the whole
family in one place.  I/O failures from the storage layers (``OSError``,
``sqlalchemy.exc.SQLAlchemyError``, openpyxl errors) are not wrapped -- they
propagate unchanged.

Usage:
    from sheetbridge.errors import SchemaFormatError, UnresolvedReferenceError

    try:
        schema = decode_schema(workbook)
    except UnresolvedReferenceError as e:
        print(f"Broken schema sheet: {e}")
"""


class SheetBridgeError(Exception):
    """Base class for all sheetbridge errors."""

    pass


class IncompleteConfigurationError(SheetBridgeError):
    """Raised when a pipeline is executed without source, rules or target."""

    pass


class SchemaFormatError(SheetBridgeError, ValueError):
    """Raised when a schema sheet row is malformed.

    Covers compound keys that do not split into ``table.item`` and rows whose
    ``properties`` are missing required keys or have the wrong shape.
    """

    pass


class UnresolvedReferenceError(SheetBridgeError, LookupError):
    """Raised when a schema entity cites a table or column that does not exist."""

    pass


class UnsupportedDialectError(SheetBridgeError, ValueError):
    """Raised when SQL must be synthesized for an unrecognized engine family."""

    pass


class UnsupportedFormatError(SheetBridgeError, ValueError):
    """Raised when a workbook file format has no loader/dumper."""

    pass


class ReadOnlyTargetError(SheetBridgeError):
    """Raised when writing to a storage target opened read-only."""

    pass


class ProfileNotFoundError(SheetBridgeError, KeyError):
    """Raised when a named connection profile is not configured."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""
