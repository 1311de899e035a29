"""Storage adapter factory.

Turns the many ways a source or target can be named into a
``StorageAdapter``:

1. An adapter (returned as-is), a ``Workbook``, or a SQLAlchemy ``Engine``
2. ``ConnectionOptions`` (a config profile entry)
3. ``"profile:<name>"`` (looked up in sheetbridge.toml)
4. A database URL (``scheme://...``)
5. A file path: ``.sqlite``/``.sqlite3``/``.db`` open as sqlite databases,
   ``.json``/``.xlsx`` as spreadsheet workbooks

Usage:
    from sheetbridge.factory import connect

    source = connect("catalog.xlsx", read_only=True)
    target = connect("profile:warehouse")
"""

import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import quote

from sqlalchemy.engine import Engine

from sheetbridge.adapters.base import StorageAdapter
from sheetbridge.adapters.spreadsheet import SpreadsheetDatabase
from sheetbridge.adapters.sql import SqlDatabase
from sheetbridge.config.loader import load_config
from sheetbridge.config.models import BridgeConfig, ConnectionOptions
from sheetbridge.errors import ProfileNotFoundError
from sheetbridge.schema.codec import SCHEMA_SHEET
from sheetbridge.workbook import Workbook, detect_format, save_workbook

logger = logging.getLogger(__name__)

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"
PROFILE_PREFIX = "profile:"
SQLITE_SUFFIXES = frozenset({".sqlite", ".sqlite3", ".db"})


# ============================================================================
# Profiles and URLs
# ============================================================================


def resolve_url(url: str, password: str | None = None) -> str:
    """Normalize a database URL.

    - ``postgres://`` becomes ``postgresql://`` (Heroku, Railway alias)
    - ``[YOUR-PASSWORD]`` is replaced by the URL-quoted *password*

    Example:
        >>> resolve_url("postgres://u:[YOUR-PASSWORD]@h/db", "p@ss")
        'postgresql://u:p%40ss@h/db'
    """
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(password, safe=""))
    return url


def get_profile(name: str, config: BridgeConfig | None = None) -> ConnectionOptions:
    """Look up a connection profile.

    Raises:
        ProfileNotFoundError: If no profile has that name.
        FileNotFoundError: If *config* is omitted and sheetbridge.toml is missing.
    """
    if config is None:
        config = load_config()
    if name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{name}' not found. Available profiles: {available}"
        )
    return config.profiles[name]


# ============================================================================
# Files
# ============================================================================


def validate_file(
    path: str | Path, read_only: bool = False, create_if_missing: bool = False
) -> Path:
    """Check that a file can be used as a source or target.

    A missing file is acceptable only when it may be created (its parent
    directories are created here).  Read-only files need only be readable.

    Raises:
        FileNotFoundError: If the file is missing and may not be created.
        IsADirectoryError: If the path is a directory.
        PermissionError: If the file lacks the required access.
    """
    path = Path(path)
    if not path.exists():
        if read_only or not create_if_missing:
            raise FileNotFoundError(f"File not found: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    if path.is_dir():
        raise IsADirectoryError(f"Expected a file, got a directory: {path}")
    if not os.access(path, os.R_OK):
        raise PermissionError(f"File is not readable: {path}")
    if not read_only and not os.access(path, os.W_OK):
        raise PermissionError(f"File is not writable: {path}")
    return path


def is_sqlite_file(path: str | Path, file_format: str | None = None) -> bool:
    if file_format is not None:
        return file_format.strip().lower() in ("sqlite", "sqlite3")
    return Path(path).suffix.lower() in SQLITE_SUFFIXES


def connect_file(
    path: str | Path,
    file_format: str | None = None,
    read_only: bool = False,
    create_if_missing: bool = False,
    schema_sheet: str = SCHEMA_SHEET,
) -> StorageAdapter:
    """Open a sqlite database file or a spreadsheet workbook file."""
    path = validate_file(path, read_only, create_if_missing)

    if is_sqlite_file(path, file_format):
        if read_only:
            return SqlDatabase(f"sqlite:///file:{path.resolve()}?mode=ro&uri=true")
        return SqlDatabase(f"sqlite:///{path}")

    fmt = detect_format(path, file_format)
    if not path.exists():
        save_workbook(Workbook(), path, fmt)
        logger.info("Created empty workbook %s", path)
    return SpreadsheetDatabase.from_file(path, fmt, read_only, schema_sheet)


# ============================================================================
# Adapter Factory
# ============================================================================


def _is_adapter(obj: Any) -> bool:
    return all(
        callable(getattr(obj, name, None))
        for name in ("structure", "data", "synchronize", "close")
    )


def connect_options(
    options: ConnectionOptions, schema_sheet: str = SCHEMA_SHEET
) -> StorageAdapter:
    if options.url is not None:
        return SqlDatabase(resolve_url(options.url, options.password))
    return connect_file(
        options.file,
        options.format,
        options.read_only,
        options.create_if_missing,
        schema_sheet,
    )


def connect(
    endpoint: Any,
    file_format: str | None = None,
    read_only: bool = False,
    create_if_missing: bool = False,
    config: BridgeConfig | None = None,
) -> StorageAdapter:
    """Resolve *endpoint* into a storage adapter.

    Args:
        endpoint: Adapter, ``Workbook``, ``Engine``, ``ConnectionOptions``,
            ``"profile:<name>"``, database URL or file path.
        file_format: Override the format implied by a file extension.
        read_only: Open files read-only.
        create_if_missing: Create a missing file (empty workbook or sqlite
            database).
        config: Configuration for profile lookups (default: loaded from
            ``./sheetbridge.toml`` when a profile is named).

    Returns:
        ``SqlDatabase`` or ``SpreadsheetDatabase`` (or *endpoint* itself).

    Raises:
        ProfileNotFoundError: If a named profile does not exist.
        FileNotFoundError: If a file is missing and may not be created.
        UnsupportedFormatError: If a file's format cannot be handled.
        UnsupportedDialectError: If a URL names an unsupported engine.

    Example:
        >>> adapter = connect(Workbook())
        >>> type(adapter).__name__
        'SpreadsheetDatabase'
    """
    schema_sheet = config.schema_sheet if config is not None else SCHEMA_SHEET

    if _is_adapter(endpoint):
        return endpoint
    if isinstance(endpoint, Workbook):
        return SpreadsheetDatabase(endpoint, read_only=read_only, schema_sheet=schema_sheet)
    if isinstance(endpoint, Engine):
        return SqlDatabase(endpoint)
    if isinstance(endpoint, ConnectionOptions):
        return connect_options(endpoint, schema_sheet)

    if isinstance(endpoint, str) and endpoint.startswith(PROFILE_PREFIX):
        if config is None:
            config = load_config()
        profile = get_profile(endpoint[len(PROFILE_PREFIX):], config)
        logger.debug("Using profile %s", endpoint)
        return connect_options(profile, config.schema_sheet)

    if isinstance(endpoint, str) and "://" in endpoint:
        return SqlDatabase(resolve_url(endpoint))

    if isinstance(endpoint, (str, Path)):
        return connect_file(endpoint, file_format, read_only, create_if_missing, schema_sheet)

    raise TypeError(f"Cannot connect to {type(endpoint).__name__}: {endpoint!r}")
