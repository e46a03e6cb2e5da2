"""
vCard source configuration.

A vCard source is a remote vCard file together with the settings needed to
fetch it and the result of its latest import. Sources are kept in an ordered
list persisted as JSON.

Configuration file format (sources.json):

    {
        "version": "1.0",
        "sources": [
            {
                "id": "6f1c...",
                "name": "Team",
                "is_enabled": true,
                "connection": {
                    "vcard_url": "https://example.com/team.vcf",
                    "auth_method": "BasicAuth",
                    "username": "alice",
                    "password": "secret",
                    "login_url": null
                },
                "last_import_result": {
                    "is_success": true,
                    "message": "2 additions, 1 change",
                    "imported_at": "2026-10-19T08:30:00+00:00",
                    "modified_header_stamp": {"etag": "\\"abc\\"", "last_modified": null}
                }
            }
        ]
    }

Notes:
    - The file holds credentials and is written with owner-only permissions
    - Sources are never changed by an import run itself; callers record the
      outcome reported by the importer through SourceStore.record_*()
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from vcard_import.net.http import AuthenticationMethod
from vcard_import.net.stamp import ModifiedHeaderStamp

logger = logging.getLogger(__name__)

# Current configuration schema version
CONFIG_VERSION = "1.0"

# Message recorded for a source whose remote file did not change
UNCHANGED_MESSAGE = "vCard is unchanged since last import"

VALID_AUTH_METHODS = {method.value for method in AuthenticationMethod}


class SourceConfigError(Exception):
    """Raised when source configuration loading or validation fails."""

    pass


def _require_type(data: dict[str, Any], key: str, expected: type, default: Any) -> Any:
    value = data.get(key, default)
    if value is None and default is None:
        return None
    if not isinstance(value, expected):
        raise SourceConfigError(
            f"{key} must be a {expected.__name__}, got {type(value).__name__}"
        )
    return value


@dataclass(frozen=True)
class SourceConnection:
    """
    How to reach a vCard source.

    Attributes:
        vcard_url: URL of the vCard file
        auth_method: Authentication method used when credentials are given
        username: Username, empty for anonymous access
        password: Password
        login_url: Login form URL, used with AuthenticationMethod.POST_FORM
    """

    vcard_url: str
    auth_method: AuthenticationMethod = AuthenticationMethod.BASIC_AUTH
    username: str = ""
    password: str = ""
    login_url: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    def validate(self) -> None:
        """
        Check that the connection can be used.

        Raises:
            SourceConfigError: If a URL is missing or malformed
        """
        if not self.vcard_url.startswith(("http://", "https://")):
            raise SourceConfigError(f"Invalid vCard URL: {self.vcard_url!r}")

        if self.auth_method is AuthenticationMethod.POST_FORM and self.has_credentials:
            if not self.login_url:
                raise SourceConfigError("Post form authentication requires a login URL")
            if not self.login_url.startswith(("http://", "https://")):
                raise SourceConfigError(f"Invalid login URL: {self.login_url!r}")
            if self.login_url == self.vcard_url:
                raise SourceConfigError("Login URL must differ from the vCard URL")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceConnection:
        if not isinstance(data, dict):
            raise SourceConfigError(
                f"connection must be a dictionary, got {type(data).__name__}"
            )

        vcard_url = data.get("vcard_url")
        if not isinstance(vcard_url, str) or not vcard_url.strip():
            raise SourceConfigError("connection.vcard_url must be a non-empty string")

        auth_method = data.get("auth_method", AuthenticationMethod.BASIC_AUTH.value)
        if auth_method not in VALID_AUTH_METHODS:
            raise SourceConfigError(
                f"connection.auth_method must be one of "
                f"{sorted(VALID_AUTH_METHODS)}, got {auth_method!r}"
            )

        return cls(
            vcard_url=vcard_url.strip(),
            auth_method=AuthenticationMethod(auth_method),
            username=_require_type(data, "username", str, ""),
            password=_require_type(data, "password", str, ""),
            login_url=_require_type(data, "login_url", str, None),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "vcard_url": self.vcard_url,
            "auth_method": self.auth_method.value,
            "username": self.username,
            "password": self.password,
            "login_url": self.login_url,
        }


@dataclass(frozen=True)
class ImportResult:
    """Outcome of the latest import of a source."""

    is_success: bool
    message: str
    imported_at: datetime
    modified_header_stamp: ModifiedHeaderStamp | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImportResult | None:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise SourceConfigError(
                f"last_import_result must be a dictionary, got {type(data).__name__}"
            )
        try:
            imported_at = datetime.fromisoformat(data["imported_at"])
        except (KeyError, TypeError, ValueError) as e:
            raise SourceConfigError(
                f"last_import_result.imported_at is invalid: {e}"
            ) from e

        return cls(
            is_success=bool(data.get("is_success", False)),
            message=str(data.get("message", "")),
            imported_at=imported_at,
            modified_header_stamp=ModifiedHeaderStamp.from_dict(
                data.get("modified_header_stamp")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_success": self.is_success,
            "message": self.message,
            "imported_at": self.imported_at.isoformat(),
            "modified_header_stamp": (
                self.modified_header_stamp.to_dict()
                if self.modified_header_stamp
                else None
            ),
        }


@dataclass(frozen=True)
class VCardSource:
    """
    A configured remote vCard file.

    Attributes:
        name: Display name
        connection: How to fetch the vCard file
        is_enabled: Disabled sources are skipped by imports
        id: Opaque identity, stable across edits
        last_import_result: Outcome of the latest import, if any

    Usage:
        source = VCardSource.create("Team", "https://example.com/team.vcf")
        source = source.with_last_import_result(True, "1 addition", stamp)
    """

    name: str
    connection: SourceConnection
    is_enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_import_result: ImportResult | None = None

    @classmethod
    def create(
        cls,
        name: str,
        vcard_url: str,
        auth_method: AuthenticationMethod = AuthenticationMethod.BASIC_AUTH,
        username: str = "",
        password: str = "",
        login_url: str | None = None,
        is_enabled: bool = True,
    ) -> VCardSource:
        """
        Create a new, validated source.

        Raises:
            SourceConfigError: If the name is empty or the connection is invalid
        """
        if not name.strip():
            raise SourceConfigError("Source name cannot be empty")
        connection = SourceConnection(
            vcard_url=vcard_url.strip(),
            auth_method=auth_method,
            username=username,
            password=password,
            login_url=login_url,
        )
        connection.validate()
        return cls(name=name.strip(), connection=connection, is_enabled=is_enabled)

    @property
    def last_stamp(self) -> ModifiedHeaderStamp | None:
        if self.last_import_result is None:
            return None
        return self.last_import_result.modified_header_stamp

    def with_last_import_result(
        self,
        is_success: bool,
        message: str,
        modified_header_stamp: ModifiedHeaderStamp | None,
        at: datetime | None = None,
    ) -> VCardSource:
        result = ImportResult(
            is_success=is_success,
            message=message,
            imported_at=at or datetime.now(timezone.utc),
            modified_header_stamp=modified_header_stamp,
        )
        return replace(self, last_import_result=result)

    def with_enabled(self, is_enabled: bool) -> VCardSource:
        return replace(self, is_enabled=is_enabled)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VCardSource:
        if not isinstance(data, dict):
            raise SourceConfigError(
                f"Source must be a dictionary, got {type(data).__name__}"
            )

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise SourceConfigError("Source name must be a non-empty string")

        source_id = data.get("id")
        if not isinstance(source_id, str) or not source_id:
            raise SourceConfigError(f"Source {name!r} has no id")

        return cls(
            name=name,
            connection=SourceConnection.from_dict(data.get("connection")),
            is_enabled=_require_type(data, "is_enabled", bool, True),
            id=source_id,
            last_import_result=ImportResult.from_dict(data.get("last_import_result")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_enabled": self.is_enabled,
            "connection": self.connection.to_dict(),
            "last_import_result": (
                self.last_import_result.to_dict() if self.last_import_result else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"VCardSource(id={self.id!r}, name={self.name!r}, "
            f"url={self.connection.vcard_url!r}, enabled={self.is_enabled})"
        )


class SourceStore:
    """
    Ordered, file-backed collection of vCard sources.

    Usage:
        store = SourceStore(Path("~/.vcard-import/sources.json"))
        store.load()
        store.add(VCardSource.create("Team", "https://example.com/team.vcf"))
        store.save()

        for source in store.filter_enabled():
            ...
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self._sources: list[VCardSource] = []

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> SourceStore:
        """
        Load sources from the file.

        A missing file yields an empty store.

        Raises:
            SourceConfigError: If the file cannot be read or is invalid
        """
        if not self.path.exists():
            logger.debug(f"Sources file not found: {self.path}, starting empty")
            self._sources = []
            return self

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SourceConfigError(
                f"Failed to parse sources JSON at {self.path}: {e}"
            ) from e
        except OSError as e:
            raise SourceConfigError(f"Failed to read sources file: {e}") from e

        if not isinstance(data, dict):
            raise SourceConfigError(
                f"Sources file must contain a JSON object, got {type(data).__name__}"
            )

        entries = data.get("sources", [])
        if not isinstance(entries, list):
            raise SourceConfigError(
                f"sources must be a list, got {type(entries).__name__}"
            )

        self._sources = [VCardSource.from_dict(entry) for entry in entries]
        logger.debug(f"Loaded {len(self._sources)} sources from {self.path}")
        return self

    def save(self) -> None:
        """
        Write sources to the file with owner-only permissions.

        Raises:
            SourceConfigError: If the file cannot be written
        """
        data = {
            "version": CONFIG_VERSION,
            "sources": [source.to_dict() for source in self._sources],
        }
        try:
            self.path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            self.path.chmod(0o600)
            logger.debug(f"Saved {len(self._sources)} sources to {self.path}")
        except OSError as e:
            raise SourceConfigError(f"Failed to write sources file: {e}") from e

    # =========================================================================
    # Queries
    # =========================================================================

    def __getitem__(self, index: int) -> VCardSource:
        return self._sources[index]

    def __iter__(self):
        return iter(list(self._sources))

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def count_all(self) -> int:
        return len(self._sources)

    @property
    def count_enabled(self) -> int:
        return sum(1 for source in self._sources if source.is_enabled)

    @property
    def is_empty(self) -> bool:
        return not self._sources

    def filter_enabled(self) -> list[VCardSource]:
        return [source for source in self._sources if source.is_enabled]

    def index_of(self, source: VCardSource) -> int | None:
        for index, candidate in enumerate(self._sources):
            if candidate.id == source.id:
                return index
        return None

    def has_source(self, source: VCardSource) -> bool:
        return self.index_of(source) is not None

    def find(self, id_or_name: str) -> VCardSource | None:
        """Find a source by id, or else by case-insensitive name."""
        for source in self._sources:
            if source.id == id_or_name:
                return source
        lowered = id_or_name.strip().lower()
        for source in self._sources:
            if source.name.lower() == lowered:
                return source
        return None

    # =========================================================================
    # Mutations
    # =========================================================================

    def add(self, source: VCardSource) -> None:
        if self.has_source(source):
            raise SourceConfigError(f"Source already exists: {source.name}")
        self._sources.append(source)

    def update(self, source: VCardSource) -> None:
        """Replace the stored source having the same id."""
        index = self.index_of(source)
        if index is None:
            raise SourceConfigError(f"Unknown source: {source.name}")
        self._sources[index] = source

    def remove(self, index: int) -> VCardSource:
        return self._sources.pop(index)

    def move(self, from_index: int, to_index: int) -> None:
        source = self._sources.pop(from_index)
        self._sources.insert(to_index, source)

    # =========================================================================
    # Import results
    # =========================================================================

    def record_error(self, source: VCardSource, error: BaseException) -> None:
        """Record a failed import, keeping the stamp of the last good one."""
        self._record(source, False, str(error), None, keep_stamp=True)

    def record_changed(
        self,
        source: VCardSource,
        description: str,
        modified_header_stamp: ModifiedHeaderStamp | None,
    ) -> None:
        self._record(source, True, description, modified_header_stamp, keep_stamp=False)

    def record_unchanged(self, source: VCardSource) -> None:
        self._record(source, True, UNCHANGED_MESSAGE, None, keep_stamp=True)

    def _record(
        self,
        source: VCardSource,
        is_success: bool,
        message: str,
        stamp: ModifiedHeaderStamp | None,
        keep_stamp: bool,
    ) -> None:
        index = self.index_of(source)
        if index is None:
            # Removed while the import was running
            logger.debug(f"Not recording result for removed source {source.name}")
            return
        current = self._sources[index]
        if keep_stamp:
            stamp = current.last_stamp
        self._sources[index] = current.with_last_import_result(
            is_success, message, stamp
        )
