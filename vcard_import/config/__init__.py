"""
vcard_import.config - Configuration management module

Contains application configuration loading and the vCard source store.
"""

from vcard_import.config.loader import ConfigError, ConfigLoader
from vcard_import.config.sources import (
    ImportResult,
    SourceConfigError,
    SourceConnection,
    SourceStore,
    VCardSource,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "ImportResult",
    "SourceConfigError",
    "SourceConnection",
    "SourceStore",
    "VCardSource",
]
