"""
Tests for URLConnection.

HTTP sessions are replaced by mocks and requests run inline on an
ImmediateQueue, so no network access or threads are involved.
"""

from unittest.mock import MagicMock

import pytest
import requests
from requests.auth import HTTPBasicAuth

from vcard_import.config.sources import SourceConnection
from vcard_import.errors import FetchError
from vcard_import.net.connection import URLConnection
from vcard_import.net.http import (
    GENERIC_ERROR_DESCRIPTION,
    AuthenticationMethod,
    ProgressBytes,
)
from vcard_import.utils.queue_execution import ImmediateQueue

VCARD_URL = "https://example.com/team.vcf"
LOGIN_URL = "https://example.com/login"


def make_response(status_code=200, reason="OK", headers=None, chunks=(), text=""):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers if headers is not None else {"Content-Type": "text/vcard"}
    response.iter_content.return_value = list(chunks)
    response.text = text
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.request.return_value = make_response()
    session.post.return_value = make_response(
        headers={"Content-Type": "text/html"}, text="<html>Welcome</html>"
    )
    return session


@pytest.fixture
def connection(session):
    url_connection = URLConnection(
        timeout=5.0,
        chunk_size=4,
        executor=ImmediateQueue(),
        session_factory=MagicMock(return_value=session),
    )
    yield url_connection
    url_connection.close()


class TestHead:
    """Tests for probing a vCard URL."""

    def test_head_sends_vcard_headers(self, connection, session):
        """Test the request made by head()."""
        response = connection.head(SourceConnection(VCARD_URL)).get()

        assert response is session.request.return_value
        args, kwargs = session.request.call_args
        assert args == ("HEAD", VCARD_URL)
        assert kwargs["headers"]["Accept"].startswith("text/vcard")
        assert "User-Agent" in kwargs["headers"]
        assert kwargs["timeout"] == 5.0
        assert kwargs["stream"] is False
        assert kwargs["allow_redirects"] is True

    def test_extra_headers_are_merged(self, connection, session):
        """Test that caller headers are sent along."""
        connection.head(SourceConnection(VCARD_URL), {"If-None-Match": '"abc"'}).get()

        headers = session.request.call_args.kwargs["headers"]
        assert headers["If-None-Match"] == '"abc"'
        assert "Accept" in headers

    def test_unauthorized_is_an_authentication_failure(self, connection, session):
        """Test the error for HTTP 401."""
        session.request.return_value = make_response(401, "Unauthorized")

        with pytest.raises(FetchError, match="Authentication failed: HTTP 401 Unauthorized"):
            connection.head(SourceConnection(VCARD_URL)).get()

    def test_http_error_status(self, connection, session):
        """Test the error for other failing statuses."""
        session.request.return_value = make_response(404, "Not Found")

        with pytest.raises(FetchError, match="HTTP 404 Not Found"):
            connection.head(SourceConnection(VCARD_URL)).get()

    @pytest.mark.parametrize(
        "error", [requests.ConnectionError("refused"), requests.Timeout("slow")]
    )
    def test_transport_errors_use_generic_description(self, connection, session, error):
        """Test that unreachable hosts get a generic message."""
        session.request.side_effect = error

        with pytest.raises(FetchError, match=GENERIC_ERROR_DESCRIPTION):
            connection.head(SourceConnection(VCARD_URL)).get()

    def test_other_request_errors_keep_their_message(self, connection, session):
        """Test that other requests errors are passed on."""
        session.request.side_effect = requests.exceptions.InvalidURL("bad url")

        with pytest.raises(FetchError, match="bad url"):
            connection.head(SourceConnection(VCARD_URL)).get()


class TestAuthentication:
    """Tests for basic auth and post form logins."""

    def test_basic_auth_is_set_on_session(self, connection, session):
        """Test that credentials become an HTTPBasicAuth."""
        connection.head(SourceConnection(VCARD_URL, username="alice", password="pw")).get()

        assert isinstance(session.auth, HTTPBasicAuth)
        assert session.auth.username == "alice"
        assert session.auth.password == "pw"

    def test_post_form_logs_in_once_per_session(self, connection, session):
        """Test that the login form is posted before the first request only."""
        source = SourceConnection(
            VCARD_URL, AuthenticationMethod.POST_FORM, "alice", "pw", LOGIN_URL
        )

        connection.head(source).get()
        connection.head(source).get()

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args == (LOGIN_URL,)
        assert kwargs["data"] == {"username": "alice", "password": "pw"}
        assert session.request.call_count == 2

    def test_login_page_in_response_means_rejected(self, connection, session):
        """Test that a login response asking for a password fails."""
        session.post.return_value = make_response(
            text='<form><input type="password" name="password"></form>'
        )
        source = SourceConnection(
            VCARD_URL, AuthenticationMethod.POST_FORM, "alice", "wrong", LOGIN_URL
        )

        with pytest.raises(FetchError, match="login was rejected"):
            connection.head(source).get()
        session.request.assert_not_called()

    def test_login_http_error(self, connection, session):
        """Test a failing login request."""
        session.post.return_value = make_response(500, "Server Error")
        source = SourceConnection(
            VCARD_URL, AuthenticationMethod.POST_FORM, "alice", "pw", LOGIN_URL
        )

        with pytest.raises(FetchError, match="Authentication failed: HTTP 500"):
            connection.head(source).get()

    def test_web_page_instead_of_vcard_is_an_authentication_failure(
        self, connection, session
    ):
        """Test that an HTML response after login fails."""
        session.request.return_value = make_response(
            headers={"Content-Type": "text/html; charset=utf-8"}
        )
        source = SourceConnection(
            VCARD_URL, AuthenticationMethod.POST_FORM, "alice", "pw", LOGIN_URL
        )

        with pytest.raises(FetchError, match="returned a web page"):
            connection.head(source).get()

    def test_anonymous_post_form_source_does_not_log_in(self, connection, session):
        """Test that no login happens without credentials."""
        connection.head(SourceConnection(VCARD_URL, AuthenticationMethod.POST_FORM)).get()

        session.post.assert_not_called()


class TestSessions:
    """Tests for session reuse and cleanup."""

    def test_one_session_per_source_connection(self):
        """Test that sessions are shared per source connection."""
        first, second = MagicMock(), MagicMock()
        for session in (first, second):
            session.request.return_value = make_response()
        factory = MagicMock(side_effect=[first, second])
        url_connection = URLConnection(executor=ImmediateQueue(), session_factory=factory)

        url_connection.head(SourceConnection(VCARD_URL)).get()
        url_connection.head(SourceConnection(VCARD_URL)).get()
        url_connection.head(SourceConnection("https://example.com/other.vcf")).get()
        url_connection.close()

        assert factory.call_count == 2
        first.close.assert_called_once()
        second.close.assert_called_once()

    def test_context_manager_closes_owned_executor(self):
        """Test that the private thread pool is shut down."""
        with URLConnection(session_factory=MagicMock()) as url_connection:
            executor = url_connection._executor

        with pytest.raises(RuntimeError):
            executor.submit(lambda: None)


class TestDownload:
    """Tests for streaming downloads."""

    def test_download_writes_file_and_reports_progress(self, connection, session, tmp_path):
        """Test the file content and progress reports."""
        session.request.return_value = make_response(
            headers={"Content-Type": "text/vcard", "Content-Length": "7"},
            chunks=[b"abc", b"", b"defg"],
        )
        target = tmp_path / "download.vcf"
        progress = []

        result = connection.download(
            SourceConnection(VCARD_URL), target, on_progress=progress.append
        ).get()

        assert result == target
        assert target.read_bytes() == b"abcdefg"
        assert progress == [ProgressBytes(3, 3, 7), ProgressBytes(4, 7, 7)]
        args, kwargs = session.request.call_args
        assert args == ("GET", VCARD_URL)
        assert kwargs["stream"] is True

    @pytest.mark.parametrize("length", [None, "not-a-number"])
    def test_unknown_length_is_reported_as_minus_one(
        self, connection, session, tmp_path, length
    ):
        """Test total_bytes_expected without a usable Content-Length."""
        headers = {"Content-Type": "text/vcard"}
        if length is not None:
            headers["Content-Length"] = length
        session.request.return_value = make_response(headers=headers, chunks=[b"abc"])
        progress = []

        connection.download(
            SourceConnection(VCARD_URL), tmp_path / "a.vcf", on_progress=progress.append
        ).get()

        assert progress == [ProgressBytes(3, 3, -1)]

    def test_error_while_streaming(self, connection, session, tmp_path):
        """Test a connection dropped during the body."""
        response = make_response()
        response.iter_content.side_effect = requests.ConnectionError("reset")
        session.request.return_value = response

        with pytest.raises(FetchError, match=GENERIC_ERROR_DESCRIPTION):
            connection.download(SourceConnection(VCARD_URL), tmp_path / "a.vcf").get()

    def test_unwritable_target(self, connection, session, tmp_path):
        """Test a download into a missing directory."""
        session.request.return_value = make_response(chunks=[b"abc"])

        with pytest.raises(FetchError, match="Cannot write downloaded file"):
            connection.download(
                SourceConnection(VCARD_URL), tmp_path / "missing" / "a.vcf"
            ).get()

    def test_http_error_does_not_create_file(self, connection, session, tmp_path):
        """Test that failing statuses stop before writing."""
        session.request.return_value = make_response(500, "Server Error")
        target = tmp_path / "a.vcf"

        with pytest.raises(FetchError, match="HTTP 500 Server Error"):
            connection.download(SourceConnection(VCARD_URL), target).get()
        assert not target.exists()
