"""
Freshness stamps for detecting unchanged vCard sources.

A stamp is derived from the cache validators of a probe (HEAD) response. If
the stamp stored from the previous import equals the stamp of a fresh probe,
the remote vCard file is considered unchanged and is not downloaded again.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Freshness(str, Enum):
    """Outcome of comparing a stored stamp against a probe response."""

    UNCHANGED = "unchanged"
    CHANGED = "changed"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # requests gives a case-insensitive mapping, plain dicts need a scan
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class ModifiedHeaderStamp:
    """
    Cache validators of a remote vCard file.

    Attributes:
        etag: Value of the ETag response header, if any
        last_modified: Value of the Last-Modified response header, if any

    Either validator alone is enough to build a stamp; when the server sends
    both, both must match for two stamps to be equal.
    """

    etag: str | None = None
    last_modified: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> ModifiedHeaderStamp | None:
        """
        Build a stamp from response headers.

        Returns:
            The stamp, or None if the response carries no cache validators
        """
        etag = _header(headers, "ETag")
        last_modified = _header(headers, "Last-Modified")
        if etag is None and last_modified is None:
            return None
        return cls(etag=etag, last_modified=last_modified)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ModifiedHeaderStamp | None:
        """Restore a stamp persisted with to_dict()."""
        if not data:
            return None
        etag = data.get("etag")
        last_modified = data.get("last_modified")
        if etag is None and last_modified is None:
            return None
        return cls(etag=etag, last_modified=last_modified)

    def to_dict(self) -> dict[str, Any]:
        return {"etag": self.etag, "last_modified": self.last_modified}

    def __str__(self) -> str:
        parts = []
        if self.etag is not None:
            parts.append(f"ETag: {self.etag}")
        if self.last_modified is not None:
            parts.append(f"Last-Modified: {self.last_modified}")
        return ", ".join(parts)


def check_freshness(
    previous: ModifiedHeaderStamp | None, headers: Mapping[str, str]
) -> tuple[Freshness, ModifiedHeaderStamp | None]:
    """
    Classify a probe response against the stamp of the previous import.

    Args:
        previous: Stamp stored from the previous import, or None
        headers: Headers of the probe response

    Returns:
        Tuple of (freshness, new stamp). UNCHANGED only when a previous stamp
        exists and equals the new one; a source without a previous stamp is
        always CHANGED.
    """
    stamp = ModifiedHeaderStamp.from_headers(headers)
    if previous is not None and stamp == previous:
        return Freshness.UNCHANGED, stamp
    return Freshness.CHANGED, stamp
