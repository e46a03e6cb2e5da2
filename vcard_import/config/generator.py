"""
Default configuration file generator.

The generated file documents every option in OPTIONS with its default and a
commented-out example, so that loading it unchanged yields no options.
"""

import logging
from itertools import groupby
from pathlib import Path

import yaml

from vcard_import.config.loader import OPTIONS, ConfigOption

logger = logging.getLogger(__name__)

HEADER = """\
# vCard Import Configuration
# ==========================
#
# This file sets default options for vcard-import.
# Command line flags always override these values.
#
# Uncomment and change options as needed. Sources are managed with
# 'vcard-import sources add' and are not configured here.
"""


def _render_option(option: ConfigOption) -> str:
    example = yaml.safe_dump({option.key: option.example}, default_flow_style=False)
    return (
        f"# {option.description}\n"
        f"# Default: {option.default}\n"
        f"# {example.strip()}\n"
    )


def generate_default_config() -> str:
    """YAML text with every option documented and commented out."""
    parts = [HEADER]
    for section, options in groupby(OPTIONS, key=lambda option: option.section):
        parts.append(f"\n# {section}\n# {'-' * len(section)}\n")
        parts.extend(f"\n{_render_option(option)}" for option in options)
    return "".join(parts)


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Write the default configuration file with owner-only permissions.

    Args:
        config_path: Destination; parent directories are created
        overwrite: Replace an existing file instead of failing

    Returns:
        Tuple of (success, error_message); error_message is None on success
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

    logger.info(f"Created configuration file: {config_path}")
    return (True, None)
