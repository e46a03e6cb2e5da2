"""
HTTP access to vCard sources.

Provides a probe (HEAD) used to read cache validators and a streaming
download into a local file. Both run on a small thread pool and return a
Future, so that a caller can start the requests for many sources at once and
consume the results one at a time.

Each source connection gets its own requests session, reused by the probe and
the download of that source. Post form logins happen once per session.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

import requests
from requests.auth import HTTPBasicAuth

from vcard_import.errors import FetchError
from vcard_import.net.http import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    GENERIC_ERROR_DESCRIPTION,
    VCARD_HTTP_HEADERS,
    AuthenticationMethod,
    ProgressBytes,
    make_headers,
)
from vcard_import.utils.future import Future

if TYPE_CHECKING:
    from vcard_import.config.sources import SourceConnection

logger = logging.getLogger(__name__)

# Network requests of all sources share this many threads
DEFAULT_MAX_WORKERS = 4

# A login response that still asks for a password means the login failed
PASSWORD_INPUT_PATTERN = re.compile(
    r"<input[^>]+type\s*=\s*[\"']?password", re.IGNORECASE
)


class _SourceSession:
    """A requests session bound to one source connection."""

    def __init__(self, session: requests.Session):
        self.session = session
        self.lock = threading.Lock()
        self.is_logged_in = False


class URLConnection:
    """
    Probes and downloads vCard files.

    Usage:
        connection = URLConnection(timeout=30)
        response = connection.head(source.connection).get()
        path = connection.download(source.connection, tmp_path).get()
        connection.close()
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        executor: Executor | None = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        """
        Initialize the connection.

        Args:
            timeout: Timeout in seconds for each HTTP request
            chunk_size: Bytes read per chunk while downloading
            executor: Executor running the requests; a private thread pool
                is created when omitted
            session_factory: Creates the per-source requests sessions
        """
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=DEFAULT_MAX_WORKERS, thread_name_prefix="vcard-import-net"
        )
        self._session_factory = session_factory
        self._sessions: dict[SourceConnection, _SourceSession] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def head(
        self,
        connection: SourceConnection,
        headers: Mapping[str, str] | None = None,
    ) -> Future[requests.Response]:
        """
        Probe the vCard URL without downloading the body.

        Returns:
            Future completing with the response, or failing with FetchError
        """
        return Future.run_async(
            self._executor, lambda: self._head(connection, headers)
        )

    def download(
        self,
        connection: SourceConnection,
        to_path: Path,
        headers: Mapping[str, str] | None = None,
        on_progress: Callable[[ProgressBytes], None] | None = None,
    ) -> Future[Path]:
        """
        Download the vCard file into to_path.

        Args:
            connection: Source connection to download from
            to_path: Local file receiving the body, overwritten if present
            headers: Extra request headers
            on_progress: Called with a ProgressBytes after every chunk

        Returns:
            Future completing with to_path, or failing with FetchError
        """
        return Future.run_async(
            self._executor,
            lambda: self._download(connection, Path(to_path), headers, on_progress),
        )

    def close(self) -> None:
        """Drop all sessions and their cookies."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for source_session in sessions:
            source_session.session.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        logger.debug(f"Closed {len(sessions)} HTTP sessions")

    def __enter__(self) -> URLConnection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Requests
    # =========================================================================

    def _head(
        self, connection: SourceConnection, headers: Mapping[str, str] | None
    ) -> requests.Response:
        logger.debug(f"Probing {connection.vcard_url}")
        response = self._request("HEAD", connection, headers, stream=False)
        self._check_response(response, connection)
        return response

    def _download(
        self,
        connection: SourceConnection,
        to_path: Path,
        headers: Mapping[str, str] | None,
        on_progress: Callable[[ProgressBytes], None] | None,
    ) -> Path:
        logger.debug(f"Downloading {connection.vcard_url} to {to_path}")
        response = self._request("GET", connection, headers, stream=True)
        with response:
            self._check_response(response, connection)
            total_expected = _content_length(response)
            total = 0
            try:
                with open(to_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        total += len(chunk)
                        if on_progress is not None:
                            on_progress(ProgressBytes(len(chunk), total, total_expected))
            except requests.RequestException as e:
                raise _fetch_error(e) from e
            except OSError as e:
                raise FetchError(f"Cannot write downloaded file: {e}") from e

        logger.debug(f"Downloaded {total} bytes from {connection.vcard_url}")
        return to_path

    def _request(
        self,
        method: str,
        connection: SourceConnection,
        headers: Mapping[str, str] | None,
        stream: bool,
    ) -> requests.Response:
        source_session = self._session_for(connection)
        request_headers = make_headers({**VCARD_HTTP_HEADERS, **(headers or {})})
        try:
            self._ensure_logged_in(source_session, connection)
            return source_session.session.request(
                method,
                connection.vcard_url,
                headers=request_headers,
                timeout=self.timeout,
                stream=stream,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise _fetch_error(e) from e

    def _check_response(
        self, response: requests.Response, connection: SourceConnection
    ) -> None:
        status = response.status_code
        if status == 401:
            raise FetchError(f"Authentication failed: HTTP {status} {response.reason}")
        if status >= 400:
            raise FetchError(f"HTTP {status} {response.reason}")

        if (
            connection.auth_method is AuthenticationMethod.POST_FORM
            and connection.has_credentials
        ):
            content_type = response.headers.get("Content-Type", "").lower()
            if content_type.startswith("text/html"):
                # Servers typically redirect to the login page for stale sessions
                raise FetchError("Authentication failed: vCard URL returned a web page")

    # =========================================================================
    # Sessions
    # =========================================================================

    def _session_for(self, connection: SourceConnection) -> _SourceSession:
        with self._lock:
            source_session = self._sessions.get(connection)
            if source_session is None:
                session = self._session_factory()
                if (
                    connection.auth_method is AuthenticationMethod.BASIC_AUTH
                    and connection.has_credentials
                ):
                    session.auth = HTTPBasicAuth(
                        connection.username, connection.password
                    )
                source_session = _SourceSession(session)
                self._sessions[connection] = source_session
            return source_session

    def _ensure_logged_in(
        self, source_session: _SourceSession, connection: SourceConnection
    ) -> None:
        if (
            connection.auth_method is not AuthenticationMethod.POST_FORM
            or not connection.has_credentials
        ):
            return

        with source_session.lock:
            if source_session.is_logged_in:
                return

            if not connection.login_url:
                raise FetchError("Authentication failed: no login URL configured")

            logger.debug(f"Logging in at {connection.login_url}")
            response = source_session.session.post(
                connection.login_url,
                data={
                    "username": connection.username,
                    "password": connection.password,
                },
                headers=make_headers(),
                timeout=self.timeout,
                allow_redirects=True,
            )
            if response.status_code >= 400:
                raise FetchError(
                    f"Authentication failed: HTTP {response.status_code} "
                    f"{response.reason}"
                )
            if PASSWORD_INPUT_PATTERN.search(response.text or ""):
                raise FetchError("Authentication failed: login was rejected")

            source_session.is_logged_in = True
            logger.debug(f"Logged in at {connection.login_url}")


def _content_length(response: requests.Response) -> int:
    value = response.headers.get("Content-Length")
    if value is None:
        return -1
    try:
        return int(value)
    except ValueError:
        return -1


def _fetch_error(error: requests.RequestException) -> FetchError:
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        logger.debug(f"Transport error: {error}")
        return FetchError(GENERIC_ERROR_DESCRIPTION)
    return FetchError(str(error) or GENERIC_ERROR_DESCRIPTION)
