"""
Configuration module for navgraph.

This module provides configuration management including
loading settings from YAML files and environment variables.

Example:
    >>> from config import Settings, load_config
    >>> 
    >>> # Load default config
    >>> settings = load_config()
    >>> 
    >>> # Access settings
    >>> print(settings.index.connectivity)
    >>> print(settings.storage.checkpoint_interval)
"""

from .settings import (
    Settings,
    IndexSettings,
    StorageSettings,
    load_config,
    get_default_config_path,
)

__all__ = [
    "Settings",
    "IndexSettings",
    "StorageSettings",
    "load_config",
    "get_default_config_path",
]
