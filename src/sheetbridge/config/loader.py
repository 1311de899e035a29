"""Configuration loading from sheetbridge.toml."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from sheetbridge.config.models import BridgeConfig

CONFIG_FILE = "sheetbridge.toml"


def load_config(config_path: Path | str | None = None) -> BridgeConfig:
    """Load configuration from a TOML file.

    Layout::

        schema_sheet = "__schema"

        [profiles.<name>]
        url = "..."            # or: file = "..."

        [sync]
        policy = "merge"       # replace | structure-only | merge
        tables = ["party", "invoice"]

    Args:
        config_path: Path to the TOML file (default: ``./sheetbridge.toml``).

    Returns:
        BridgeConfig with all profiles and sync defaults.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config not found: {config_path}\n"
            f"Create {CONFIG_FILE} with [profiles.<name>] sections."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    try:
        return BridgeConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e
