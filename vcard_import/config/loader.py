"""
Application configuration for vcard-import.

Options live in a YAML file (config.yaml in the configuration directory).
Every option is declared once in OPTIONS; validation and the generated
default file are both driven by that table. A missing file means "all
defaults", and keys this version does not know are ignored so that newer
config files keep working.
"""

import logging
from pathlib import Path
from typing import Any, NamedTuple

import yaml

from vcard_import.net.http import DEFAULT_CHUNK_SIZE, DEFAULT_REQUEST_TIMEOUT
from vcard_import.utils.paths import (
    DEFAULT_ADDRESS_BOOK_FILE,
    DEFAULT_SOURCES_FILE,
    resolve_config_dir,
)

DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigOption(NamedTuple):
    key: str
    section: str
    description: str
    types: tuple[type, ...]
    default: str
    example: Any
    positive: bool = False

    @property
    def type_name(self) -> str:
        return " or ".join(t.__name__ for t in self.types)

    def check(self, value: Any) -> None:
        # bool is an int subclass, but never a valid number here
        if (isinstance(value, bool) and bool not in self.types) or not isinstance(
            value, self.types
        ):
            raise ConfigError(
                f"Invalid type for '{self.key}': expected {self.type_name}, "
                f"got {type(value).__name__}"
            )
        if self.positive and value <= 0:
            raise ConfigError(f"{self.key} must be > 0, got {value}")


LOGGING_SECTION = "Logging Options"
DATA_SECTION = "Data Files"
NETWORK_SECTION = "Network Options"

OPTIONS: tuple[ConfigOption, ...] = (
    ConfigOption(
        "verbose",
        LOGGING_SECTION,
        "Enable verbose output with detailed logging",
        (bool,),
        "false",
        True,
    ),
    ConfigOption(
        "log_dir",
        LOGGING_SECTION,
        "Directory for daily log files",
        (str,),
        "~/.vcard-import/logs",
        "/path/to/logs",
    ),
    ConfigOption(
        "log_retention_count",
        LOGGING_SECTION,
        "Number of daily log files to keep",
        (int,),
        "10",
        10,
        positive=True,
    ),
    ConfigOption(
        "sources_file",
        DATA_SECTION,
        "vCard sources, relative to the configuration directory or absolute",
        (str,),
        DEFAULT_SOURCES_FILE,
        DEFAULT_SOURCES_FILE,
    ),
    ConfigOption(
        "address_book_path",
        DATA_SECTION,
        "Local address book that sources are imported into",
        (str,),
        DEFAULT_ADDRESS_BOOK_FILE,
        DEFAULT_ADDRESS_BOOK_FILE,
    ),
    ConfigOption(
        "request_timeout",
        NETWORK_SECTION,
        "Timeout in seconds for each HTTP request",
        (int, float),
        f"{DEFAULT_REQUEST_TIMEOUT:g}",
        int(DEFAULT_REQUEST_TIMEOUT),
        positive=True,
    ),
    ConfigOption(
        "download_chunk_size",
        NETWORK_SECTION,
        "Bytes read per chunk while downloading vCard files",
        (int,),
        str(DEFAULT_CHUNK_SIZE),
        DEFAULT_CHUNK_SIZE,
        positive=True,
    ),
)

OPTIONS_BY_KEY = {option.key: option for option in OPTIONS}


class ConfigLoader:
    """
    Loads and validates config.yaml.

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()
        timeout = config.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
    """

    def __init__(
        self, config_dir: Path | str | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Read a YAML configuration file.

        Returns:
            The configuration, or an empty dict if the file does not exist or
            has no options set

        Raises:
            ConfigError: If the file cannot be read, is not valid YAML or is
                         not a mapping
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.debug(f"No configuration file at {path}, using defaults")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}: {sorted(config)}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check the type and range of every known option.

        Raises:
            ConfigError: On the first invalid option
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            option = OPTIONS_BY_KEY.get(key)
            if option is None:
                logger.debug(f"Ignoring unknown configuration option '{key}'")
                continue
            option.check(value)

    def load_and_validate(self) -> dict[str, Any]:
        config = self.load()
        if config:
            self.validate(config)
        return config
