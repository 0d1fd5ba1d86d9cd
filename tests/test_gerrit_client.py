# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Tests for Gerrit REST client module.

This module tests the GerritRestClient's initialization, request handling,
retry behavior, error mapping, and authentication.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from dls_gerrit.gerrit.client import (
    GerritAuthError,
    GerritConflictError,
    GerritNotFoundError,
    GerritRestClient,
    GerritRestError,
    _calculate_backoff,
    _is_transient_error,
    _mask_secret,
    build_client,
)


def _http_error(status: int, body: str = "") -> requests.exceptions.HTTPError:
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    return requests.exceptions.HTTPError(f"HTTP {status}", response=response)


@pytest.fixture
def mock_api_class():
    """Patch pygerrit2's GerritRestAPI as seen by the client module."""
    with patch("dls_gerrit.gerrit.client.GerritRestAPI") as api_class:
        yield api_class


@pytest.fixture
def mock_api(mock_api_class):
    return mock_api_class.return_value


class TestMaskSecret:
    """Tests for the _mask_secret helper function."""

    def test_empty_string(self):
        assert _mask_secret("") == ""

    def test_short_string(self):
        """Test masking short strings (4 or fewer chars)."""
        assert _mask_secret("abc") == "****"
        assert _mask_secret("abcd") == "****"

    def test_normal_string(self):
        assert _mask_secret("password123") == "pa*******23"
        assert _mask_secret("secret") == "se**et"


class TestIsTransientError:
    """Tests for transient error detection."""

    def test_timeout_exception_is_transient(self):
        assert _is_transient_error(requests.exceptions.ReadTimeout("slow")) is True

    def test_connection_reset(self):
        exc = requests.exceptions.ConnectionError("Connection reset by peer")
        assert _is_transient_error(exc) is True

    def test_connection_refused_is_not_transient(self):
        exc = requests.exceptions.ConnectionError("Connection refused")
        assert _is_transient_error(exc) is False

    def test_non_transient_error(self):
        assert _is_transient_error(Exception("Invalid request")) is False


class TestCalculateBackoff:
    """Tests for backoff calculation."""

    def test_exponential_growth(self):
        delays = [
            _calculate_backoff(n, base_delay=1.0, max_delay=60.0, jitter=0.0)
            for n in range(3)
        ]
        assert delays == [1.0, 2.0, 4.0]

    def test_max_delay_cap(self):
        delay = _calculate_backoff(10, base_delay=1.0, max_delay=30.0, jitter=0.0)
        assert delay == 30.0

    def test_jitter_bounds(self):
        delays = [
            _calculate_backoff(1, base_delay=1.0, max_delay=30.0, jitter=0.5)
            for _ in range(10)
        ]
        assert all(2.0 <= d <= 3.0 for d in delays)


class TestGerritRestClientInit:
    """Tests for GerritRestClient initialization."""

    def test_basic_init(self, mock_api_class):
        client = GerritRestClient(base_url="https://gerrit.example.org")

        assert client.base_url == "https://gerrit.example.org/"
        assert client.is_authenticated is False
        mock_api_class.assert_called_once_with(url="https://gerrit.example.org/")

    def test_init_with_auth(self, mock_api_class):
        client = GerritRestClient(
            base_url="https://gerrit.example.org/",
            auth=("user", "password"),
        )

        assert client.is_authenticated is True
        assert "auth" in mock_api_class.call_args.kwargs

    def test_init_with_partial_auth(self, mock_api_class):
        """Test that partial auth is treated as no auth."""
        client = GerritRestClient(
            base_url="https://gerrit.example.org/",
            auth=("user", ""),
        )

        assert client.is_authenticated is False

    def test_headers_applied_to_session(self, mock_api):
        GerritRestClient(
            base_url="https://gerrit.example.org/",
            headers={"X-Gerrit-RunAs": "1000042"},
        )

        mock_api.session.headers.update.assert_called_once_with(
            {"X-Gerrit-RunAs": "1000042"}
        )

    def test_with_headers_returns_new_client(self, mock_api_class):
        client = GerritRestClient(
            base_url="https://gerrit.example.org/",
            auth=("user", "password"),
        )

        run_as = client.with_headers({"X-Gerrit-RunAs": "bot"})

        assert run_as is not client
        assert run_as.headers == {"X-Gerrit-RunAs": "bot"}
        assert run_as.is_authenticated is True
        assert client.headers == {}

    def test_repr_masks_password(self, mock_api_class):
        client = GerritRestClient(
            base_url="https://gerrit.example.org/",
            auth=("user", "password123"),
        )
        repr_str = repr(client)

        assert "gerrit.example.org" in repr_str
        assert "password123" not in repr_str
        assert "pa*******23" in repr_str


class TestGerritRestClientRequests:
    """Tests for GerritRestClient request methods."""

    def test_get_empty_path_raises(self, mock_api):
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        with pytest.raises(ValueError, match="path is required"):
            client.get("")

    def test_get_success(self, mock_api):
        mock_api.get.return_value = {"key": "value"}
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        result = client.get("changes/12345")

        assert result == {"key": "value"}
        mock_api.get.assert_called_once_with("/changes/12345", timeout=10.0)

    def test_empty_response_becomes_dict(self, mock_api):
        mock_api.post.return_value = ""
        client = GerritRestClient(base_url="https://gerrit.example.org/")
        path = "/changes/1/reviewers/1000001/votes/Verified/delete"

        assert client.post(path) == {}

    def test_post_with_data(self, mock_api):
        mock_api.post.return_value = {"success": True}
        client = GerritRestClient(base_url="https://gerrit.example.org/", timeout=5)

        result = client.post("/changes/1/review", {"labels": {"Verified": 1}})

        assert result == {"success": True}
        mock_api.post.assert_called_once_with(
            "/changes/1/review",
            timeout=5.0,
            json={"labels": {"Verified": 1}},
        )


class TestGerritRestClientErrors:
    """Tests for GerritRestClient error handling."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors(self, mock_api, status):
        mock_api.get.side_effect = _http_error(status)
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        with pytest.raises(GerritAuthError) as exc_info:
            client.get("/changes/12345")

        assert exc_info.value.status_code == status
        assert mock_api.get.call_count == 1

    def test_404_raises_not_found(self, mock_api):
        mock_api.get.side_effect = _http_error(404, "Not found: 12345")
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        with pytest.raises(GerritNotFoundError) as exc_info:
            client.get("/changes/12345")

        assert exc_info.value.response_body == "Not found: 12345"

    def test_409_raises_conflict(self, mock_api):
        mock_api.post.side_effect = _http_error(409, "change is closed")
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        with pytest.raises(GerritConflictError, match="change is closed"):
            client.post("/changes/1/abandon")

    @patch("dls_gerrit.gerrit.client.time.sleep")
    def test_retry_on_503_then_success(self, mock_sleep, mock_api):
        mock_api.get.side_effect = [_http_error(503), {"ok": True}]
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        assert client.get("/config/server/version") == {"ok": True}
        assert mock_api.get.call_count == 2
        mock_sleep.assert_called_once()

    @patch("dls_gerrit.gerrit.client.time.sleep")
    def test_retries_exhausted(self, mock_sleep, mock_api):
        mock_api.get.side_effect = _http_error(500)
        client = GerritRestClient(
            base_url="https://gerrit.example.org/", max_attempts=3
        )

        with pytest.raises(GerritRestError) as exc_info:
            client.get("/changes/")

        assert exc_info.value.status_code == 500
        assert mock_api.get.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("dls_gerrit.gerrit.client.time.sleep")
    def test_transient_network_error_retried(self, mock_sleep, mock_api):
        mock_api.get.side_effect = [
            requests.exceptions.ConnectionError("Connection reset by peer"),
            ["change"],
        ]
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        assert client.get("/changes/") == ["change"]

    def test_non_transient_network_error_wrapped(self, mock_api):
        mock_api.get.side_effect = requests.exceptions.ConnectionError(
            "Connection refused"
        )
        client = GerritRestClient(base_url="https://gerrit.example.org/")

        with pytest.raises(GerritRestError, match="Connection refused"):
            client.get("/changes/")
        assert mock_api.get.call_count == 1


class TestBuildClient:
    """Tests for the build_client factory."""

    def test_hostname_gets_https_scheme(self, mock_api_class, monkeypatch):
        monkeypatch.delenv("GERRIT_USERNAME", raising=False)
        monkeypatch.delenv("GERRIT_PASSWORD", raising=False)
        monkeypatch.delenv("GERRIT_HTTP_USER", raising=False)
        monkeypatch.delenv("GERRIT_HTTP_PASSWORD", raising=False)

        client = build_client("gerrit.example.org")

        assert client.base_url == "https://gerrit.example.org/"
        assert client.is_authenticated is False

    def test_credentials_from_environment(self, mock_api_class, monkeypatch):
        monkeypatch.setenv("GERRIT_USERNAME", "svc")
        monkeypatch.setenv("GERRIT_PASSWORD", "secret")

        client = build_client("https://gerrit.example.org/r/")

        assert client.base_url == "https://gerrit.example.org/r/"
        assert client.is_authenticated is True

    def test_arguments_override_environment(self, mock_api_class, monkeypatch):
        monkeypatch.setenv("GERRIT_USERNAME", "svc")
        monkeypatch.setenv("GERRIT_PASSWORD", "secret")

        client = build_client(
            "https://gerrit.example.org/", username="other", password="pw"
        )

        assert "other:" in repr(client)
