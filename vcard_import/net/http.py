"""
HTTP request defaults for vCard sources.

Holds the fixed headers sent with every request, the supported
authentication methods and the progress payload reported while downloading.
"""

from __future__ import annotations

import os
import platform
import re
import sys
from collections.abc import Mapping
from enum import Enum
from typing import NamedTuple

from vcard_import import __version__

# Application identity used in the User-Agent header
APP_IDENTIFIER = "org.vcard-import"

# Connection errors and timeouts carry no detail worth showing to the user
GENERIC_ERROR_DESCRIPTION = "Cannot reach URL"

# Content negotiation for vCard files, most specific types first
VCARD_HTTP_HEADERS = {
    "Accept": (
        "text/vcard,text/x-vcard,text/directory;profile=vCard;q=0.9,"
        "text/directory;q=0.8,*/*;q=0.7"
    )
}

# HTTP timeout configuration
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds

# Bytes read per chunk while downloading
DEFAULT_CHUNK_SIZE = 64 * 1024


class AuthenticationMethod(str, Enum):
    """How a vCard source authenticates its requests."""

    BASIC_AUTH = "BasicAuth"
    POST_FORM = "PostForm"

    @property
    def short_description(self) -> str:
        if self is AuthenticationMethod.BASIC_AUTH:
            return "HTTP Basic Auth"
        return "Post Form"

    @property
    def long_description(self) -> str:
        if self is AuthenticationMethod.BASIC_AUTH:
            return "The standard HTTP authentication with username and password."
        return (
            "Login form authentication with username and password. The "
            "credentials are sent in a POST request to a login URL. The server "
            "must establish a cookie based session upon successful "
            "authentication. The login URL must differ from the vCard file URL. "
            "The outcome of the login is detected from the server's responses."
        )


class ProgressBytes(NamedTuple):
    """
    Download progress.

    Attributes:
        bytes: Bytes received in the latest chunk
        total_bytes: Bytes received so far
        total_bytes_expected: Size announced by the server, or -1 if unknown
    """

    bytes: int
    total_bytes: int
    total_bytes_expected: int


def _without_whitespace(value: str) -> str:
    return re.sub(r"\s+", "", value)


def get_default_user_agent() -> str:
    """
    Build the User-Agent header value.

    Format: ``<executable>/<app id> (<version>; OS <platform>)`` with all
    whitespace removed from the executable name.
    """
    executable = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    executable = _without_whitespace(executable) or "vcard-import"
    return (
        f"{executable}/{APP_IDENTIFIER} "
        f"({__version__}; OS {platform.system()} {platform.release()})"
    )


DEFAULT_HEADERS = {"User-Agent": get_default_user_agent()}


def make_headers(headers: Mapping[str, str] | None = None) -> dict[str, str]:
    """
    Merge per-request headers over the default headers.

    Defaults are kept unless the caller explicitly provides the same header.
    """
    merged = dict(DEFAULT_HEADERS)
    if headers:
        merged.update(headers)
    return merged
