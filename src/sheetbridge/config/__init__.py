"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from sheetbridge.config import load_config, ConnectionOptions, BridgeConfig
"""

from sheetbridge.config.loader import load_config
from sheetbridge.config.models import BridgeConfig, ConnectionOptions, SyncOptions

__all__ = ["load_config", "BridgeConfig", "ConnectionOptions", "SyncOptions"]
