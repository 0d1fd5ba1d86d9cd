# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit REST client with retry, timeout, and transient error handling.

This module provides a typed wrapper around pygerrit2 with:
- Bounded retries using exponential backoff with jitter
- Request timeouts
- Transient error classification (HTTP 5xx/429 and network errors)
- Mapping of HTTP failures onto a small exception hierarchy
- Extra per-client request headers (used for X-Gerrit-RunAs)

Usage:
    from dls_gerrit.gerrit.client import build_client

    client = build_client("https://gerrit.example.org/", timeout=10.0)
    changes = client.get("/changes/?q=status:open&n=10")
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Any, Final

import requests
from pygerrit2 import GerritRestAPI, HTTPBasicAuth

log = logging.getLogger("dls_gerrit.gerrit.client")


_TRANSIENT_ERR_SUBSTRINGS: Final[tuple[str, ...]] = (
    "timed out",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection aborted",
    "broken pipe",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)

_RETRYABLE_HTTP_CODES: Final[frozenset[int]] = frozenset(
    {429, 500, 502, 503, 504}
)


class GerritRestError(RuntimeError):
    """Raised for non-retryable REST errors or exhausted retries."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GerritAuthError(GerritRestError):
    """Raised for authentication failures (401/403)."""


class GerritNotFoundError(GerritRestError):
    """Raised when a resource is not found (404)."""


class GerritConflictError(GerritRestError):
    """Raised when Gerrit refuses a request in the current state (409)."""


@dataclass(frozen=True)
class _Auth:
    user: str
    password: str


def _mask_secret(s: str) -> str:
    """Mask a secret for logging, preserving first/last 2 chars."""
    if not s:
        return s
    if len(s) <= 4:
        return "****"
    return s[:2] + "*" * (len(s) - 4) + s[-2:]


def _is_transient_error(exc: Exception) -> bool:
    """Check if an exception represents a transient/retryable error."""
    if isinstance(exc, requests.exceptions.Timeout):
        return True
    exc_str = str(exc).lower()
    return any(sub in exc_str for sub in _TRANSIENT_ERR_SUBSTRINGS)


def _calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.5,
) -> float:
    """Calculate exponential backoff delay with jitter."""
    delay = min(base_delay * (2**attempt), max_delay)
    jitter_amount = delay * jitter * float(random.random())
    return float(delay + jitter_amount)


def _error_from_http(
    method: str, path: str, exc: requests.exceptions.HTTPError
) -> GerritRestError:
    """Translate a requests HTTPError into the matching GerritRestError."""
    response = exc.response
    status = response.status_code if response is not None else None
    body = response.text if response is not None else None

    if status in (401, 403):
        kind = "Authentication failed" if status == 401 else "Access forbidden"
        return GerritAuthError(
            f"{kind} for {path}", status_code=status, response_body=body
        )
    if status == 404:
        return GerritNotFoundError(
            f"Resource not found: {path}", status_code=status, response_body=body
        )
    if status == 409:
        return GerritConflictError(
            f"Gerrit REST {method} {path} conflict: {body or ''}".rstrip(": "),
            status_code=status,
            response_body=body,
        )
    return GerritRestError(
        f"Gerrit REST {method} {path} failed with HTTP {status}",
        status_code=status,
        response_body=body,
    )


class GerritRestClient:
    """
    REST client for Gerrit with retry and timeout handling.

    Requests go through pygerrit2, which takes care of the ``/a/`` prefix
    for authenticated calls and of Gerrit's XSSI guard on JSON responses.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth: tuple[str, str] | None = None,
        timeout: float = 10.0,
        max_attempts: int = 5,
        headers: dict[str, str] | None = None,
    ) -> None:
        """
        Initialize the Gerrit REST client.

        Args:
            base_url: The base URL of the Gerrit server (e.g.,
                     "https://gerrit.example.org/").
            auth: Optional tuple of (username, password) for HTTP Basic auth.
            timeout: Request timeout in seconds.
            max_attempts: Maximum number of attempts for transient errors.
            headers: Extra headers sent with every request.
        """
        self._base_url: str = base_url.rstrip("/") + "/"
        self._timeout: float = float(timeout)
        self._max_attempts: int = max(1, int(max_attempts))
        self._auth: _Auth | None = None
        self._headers: dict[str, str] = dict(headers or {})

        if auth and auth[0] and auth[1]:
            self._auth = _Auth(auth[0], auth[1])

        if self._auth is not None:
            self._api = GerritRestAPI(
                url=self._base_url,
                auth=HTTPBasicAuth(self._auth.user, self._auth.password),
            )
        else:
            self._api = GerritRestAPI(url=self._base_url)
        if self._headers:
            self._api.session.headers.update(self._headers)

        log.debug(
            "GerritRestClient initialized: base_url=%s, timeout=%.1fs, "
            "max_attempts=%d, auth_user=%s, headers=%s",
            self._base_url,
            self._timeout,
            self._max_attempts,
            self._auth.user if self._auth else "(none)",
            sorted(self._headers),
        )

    @property
    def base_url(self) -> str:
        """Get the base URL of the Gerrit server."""
        return self._base_url

    @property
    def is_authenticated(self) -> bool:
        """Check if the client has authentication credentials."""
        return self._auth is not None

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def with_headers(self, headers: dict[str, str]) -> GerritRestClient:
        """
        Return a new client sharing this client's settings plus extra headers.

        This client keeps its own headers unchanged.
        """
        merged = dict(self._headers)
        merged.update(headers)
        auth = (self._auth.user, self._auth.password) if self._auth else None
        return GerritRestClient(
            base_url=self._base_url,
            auth=auth,
            timeout=self._timeout,
            max_attempts=self._max_attempts,
            headers=merged,
        )

    def get(self, path: str) -> Any:
        """
        Perform an HTTP GET request.

        Raises:
            GerritRestError: On non-retryable errors or exhausted retries.
            GerritAuthError: On authentication failures.
            GerritNotFoundError: When the resource is not found.
        """
        return self._request_with_retry("GET", path)

    def post(self, path: str, data: Any | None = None) -> Any:
        """Perform an HTTP POST request with an optional JSON body."""
        return self._request_with_retry("POST", path, data=data)

    def _request_with_retry(
        self,
        method: str,
        path: str,
        data: Any | None = None,
    ) -> Any:
        """Perform a request with automatic retry on transient failures."""
        for attempt in range(self._max_attempts):
            try:
                return self._request(method, path, data)
            except (GerritAuthError, GerritNotFoundError, GerritConflictError):
                raise
            except GerritRestError as exc:
                if (
                    exc.status_code in _RETRYABLE_HTTP_CODES
                    and attempt < self._max_attempts - 1
                ):
                    delay = _calculate_backoff(attempt)
                    log.warning(
                        "Gerrit REST %s %s failed (HTTP %d), "
                        "retrying in %.1fs (attempt %d/%d)",
                        method,
                        path,
                        exc.status_code,
                        delay,
                        attempt + 1,
                        self._max_attempts,
                    )
                    time.sleep(delay)
                    continue
                raise
            except requests.exceptions.RequestException as exc:
                if _is_transient_error(exc) and attempt < self._max_attempts - 1:
                    delay = _calculate_backoff(attempt)
                    log.warning(
                        "Gerrit REST %s %s failed (%s), "
                        "retrying in %.1fs (attempt %d/%d)",
                        method,
                        path,
                        exc,
                        delay,
                        attempt + 1,
                        self._max_attempts,
                    )
                    time.sleep(delay)
                    continue
                raise GerritRestError(
                    f"Gerrit REST {method} {path} failed: {exc}"
                ) from exc

        raise GerritRestError(f"Gerrit REST {method} {path} failed unexpectedly")

    def _request(
        self,
        method: str,
        path: str,
        data: Any | None = None,
    ) -> Any:
        """Perform a single HTTP request (no retry)."""
        if not path:
            raise ValueError("path is required")

        endpoint = path if path.startswith("/") else f"/{path}"
        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if data is not None:
            kwargs["json"] = data

        log.debug(
            "Gerrit REST %s %s%s (auth=%s)",
            method,
            self._base_url,
            endpoint.lstrip("/"),
            "yes" if self._auth else "no",
        )

        call = {
            "GET": self._api.get,
            "POST": self._api.post,
        }.get(method)
        if call is None:
            raise ValueError(f"Unsupported HTTP method: {method}")

        try:
            result = call(endpoint, **kwargs)
        except requests.exceptions.HTTPError as http_exc:
            raise _error_from_http(method, path, http_exc) from http_exc
        except ValueError as exc:
            # pygerrit2 raises ValueError when a JSON body cannot be decoded
            raise GerritRestError(
                f"Failed to parse JSON response for {path}: {exc}"
            ) from exc

        if isinstance(result, (str, bytes)) and not result.strip():
            return {}
        return result

    def __repr__(self) -> str:
        masked = ""
        if self._auth is not None:
            masked = f"{self._auth.user}:{_mask_secret(self._auth.password)}@"
        return f"GerritRestClient(base_url='{masked}{self._base_url}')"


def build_client(
    base_url: str,
    *,
    timeout: float = 10.0,
    max_attempts: int = 5,
    username: str | None = None,
    password: str | None = None,
) -> GerritRestClient:
    """
    Build a GerritRestClient for a Gerrit server.

    Args:
        base_url: Gerrit base URL. A bare hostname is given an https scheme.
        timeout: Request timeout in seconds.
        max_attempts: Maximum retry attempts for transient failures.
        username: HTTP username. Falls back to GERRIT_USERNAME or
                  GERRIT_HTTP_USER environment variables.
        password: HTTP password. Falls back to GERRIT_PASSWORD or
                  GERRIT_HTTP_PASSWORD environment variables.

    Returns:
        A configured GerritRestClient instance.
    """
    if "://" not in base_url:
        base_url = f"https://{base_url.strip('/')}/"

    user = (
        (username or "").strip()
        or os.getenv("GERRIT_USERNAME", "").strip()
        or os.getenv("GERRIT_HTTP_USER", "").strip()
    )
    passwd = (
        (password or "").strip()
        or os.getenv("GERRIT_PASSWORD", "").strip()
        or os.getenv("GERRIT_HTTP_PASSWORD", "").strip()
    )

    auth: tuple[str, str] | None = None
    if user and passwd:
        auth = (user, passwd)

    return GerritRestClient(
        base_url=base_url,
        auth=auth,
        timeout=timeout,
        max_attempts=max_attempts,
    )


__all__ = [
    "GerritAuthError",
    "GerritConflictError",
    "GerritNotFoundError",
    "GerritRestClient",
    "GerritRestError",
    "build_client",
]
