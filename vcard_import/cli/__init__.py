"""CLI package for vcard_import."""

from vcard_import.cli.formatters import (
    format_import_result,
    show_differences,
    show_sources,
)
from vcard_import.cli.main import (
    DEFAULT_CONFIG_FILE,
    cli,
    get_config_dir,
)
from vcard_import.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "cli",
    "format_import_result",
    "get_config_dir",
    "show_differences",
    "show_sources",
]
