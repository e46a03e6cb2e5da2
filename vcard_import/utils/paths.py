"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the vcard-import configuration
directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".vcard-import"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "VCARD_IMPORT_CONFIG_DIR"

# Files kept inside the configuration directory
DEFAULT_SOURCES_FILE = "sources.json"
DEFAULT_ADDRESS_BOOK_FILE = "address_book.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. VCARD_IMPORT_CONFIG_DIR environment variable
        3. Default directory (~/.vcard-import)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_data_file(
    config_dir: Path, configured: str | None, default_name: str
) -> Path:
    """
    Resolve a data file path relative to the configuration directory.

    Absolute (or ~-prefixed) configured paths are used as they are, relative
    ones are placed inside config_dir.
    """
    if not configured:
        return config_dir / default_name

    path = Path(configured).expanduser()
    if path.is_absolute():
        return path
    return config_dir / path
