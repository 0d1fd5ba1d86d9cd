# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit service layer for dls_gerrit.

This module provides a high-level service class over the REST client.
It plays three roles for the handlers:

- Change query service: searching changes and loading a single change
- Vote mutation service: deleting votes while running as a bot account
- Account service: resolving accounts and a caller's group membership
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import quote

from dls_gerrit.gerrit.client import (
    GerritAuthError,
    GerritNotFoundError,
    GerritRestClient,
    GerritRestError,
    build_client,
)
from dls_gerrit.gerrit.models import (
    VERIFIED_LABEL,
    AccountInfo,
    ChangeInfo,
    GroupInfo,
    NotifyHandling,
)

log = logging.getLogger("dls_gerrit.gerrit.service")


# Query options needed to see who voted what on each label
DETAILED_LABEL_OPTIONS: list[str] = [
    "DETAILED_LABELS",
    "DETAILED_ACCOUNTS",
]

RUN_AS_HEADER = "X-Gerrit-RunAs"


class GerritServiceError(Exception):
    """Raised for service-level errors."""


class RunAsSession:
    """
    Mutations performed on behalf of another account.

    Obtained from :meth:`GerritService.open_as`. Every request carries the
    X-Gerrit-RunAs header, so the service account needs the "Run As"
    global capability.
    """

    def __init__(self, client: GerritRestClient, account: AccountInfo) -> None:
        self._client = client
        self.account = account

    def delete_vote(
        self,
        change: int | str,
        voter: AccountInfo,
        label: str = VERIFIED_LABEL,
        notify: NotifyHandling = NotifyHandling.NONE,
    ) -> bool:
        """
        Delete ``voter``'s vote on ``label``.

        Returns:
            True if a vote was deleted, False if there was nothing to delete.

        Raises:
            GerritRestError: If Gerrit refuses the deletion.
        """
        endpoint = (
            f"/changes/{change}/reviewers/"
            f"{quote(voter.reference, safe='')}/votes/{quote(label, safe='')}/delete"
        )
        log.debug(
            "Deleting %s vote of %s on change %s as %s",
            label,
            voter.describe(),
            change,
            self.account.describe(),
        )
        try:
            self._client.post(endpoint, data={"notify": notify.value})
        except GerritNotFoundError:
            # reviewer or vote already gone
            log.debug(
                "No %s vote by %s on change %s to delete",
                label,
                voter.describe(),
                change,
            )
            return False
        return True


class GerritService:
    """
    High-level service for the Gerrit operations used by the handlers.
    """

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 15.0,
        max_attempts: int = 5,
    ) -> None:
        """
        Initialize the Gerrit service.

        Args:
            url: Gerrit base URL (the canonical web URL).
            username: Optional HTTP username for authentication.
            password: Optional HTTP password for authentication.
            timeout: Request timeout in seconds.
            max_attempts: Maximum retry attempts for transient failures.
        """
        self.url = url
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._client = build_client(
            url,
            timeout=timeout,
            max_attempts=max_attempts,
            username=username,
            password=password,
        )

        log.debug(
            "GerritService initialized: url=%s, auth=%s",
            url,
            "yes" if self._client.is_authenticated else "no",
        )

    @property
    def is_authenticated(self) -> bool:
        """Check if the service has authentication credentials."""
        return self._client.is_authenticated

    def query_changes(
        self,
        query: str,
        options: list[str] | None = None,
        limit: int | None = None,
    ) -> list[ChangeInfo]:
        """
        Search for changes.

        Args:
            query: Gerrit search expression.
            options: Query options (e.g. DETAILED_LABELS).
            limit: Optional maximum number of results.

        Returns:
            The matching changes.

        Raises:
            GerritServiceError: If the query fails.
        """
        if options is None:
            options = DETAILED_LABEL_OPTIONS

        params = [f"q={quote(query, safe='')}"]
        params.extend(f"o={opt}" for opt in options)
        if limit is not None:
            params.append(f"n={int(limit)}")
        endpoint = "/changes/?" + "&".join(params)

        log.debug("Querying changes: %s", query)
        try:
            data: Any = self._client.get(endpoint)
        except GerritRestError as exc:
            msg = f"Failed to query changes '{query}': {exc}"
            log.error(msg)
            raise GerritServiceError(msg) from exc

        if not isinstance(data, list):
            return []
        return [ChangeInfo.from_api_response(item) for item in data]

    def get_change(
        self,
        change: int | str,
        options: list[str] | None = None,
    ) -> ChangeInfo:
        """
        Fetch a single change.

        Raises:
            GerritNotFoundError: If the change does not exist or is not visible.
            GerritServiceError: If the change cannot be fetched.
        """
        if options is None:
            options = DETAILED_LABEL_OPTIONS

        endpoint = f"/changes/{change}"
        if options:
            endpoint += "?" + "&".join(f"o={opt}" for opt in options)

        log.debug("Fetching change info: %s", endpoint)
        try:
            data = self._client.get(endpoint)
        except GerritNotFoundError:
            raise
        except GerritRestError as exc:
            msg = f"Failed to fetch change {change}: {exc}"
            log.error(msg)
            raise GerritServiceError(msg) from exc
        return ChangeInfo.from_api_response(data)

    def resolve_account(self, name: str) -> AccountInfo:
        """
        Resolve a username (or any account identifier) to a unique account.

        Raises:
            GerritNotFoundError: If no visible account matches.
        """
        if not name:
            raise GerritNotFoundError("No account name given")
        data = self._client.get(f"/accounts/{quote(name, safe='')}")
        return AccountInfo.from_api_response(data)

    def get_self(self) -> AccountInfo:
        """Return the account the service is authenticated as."""
        return AccountInfo.from_api_response(self._client.get("/accounts/self"))

    def get_account_groups(self, account: str = "self") -> list[GroupInfo]:
        """Return the groups ``account`` is a member of."""
        data = self._client.get(f"/accounts/{quote(account, safe='')}/groups")
        return [GroupInfo.from_api_response(g) for g in data or []]

    @contextmanager
    def open_as(self, account: AccountInfo) -> Iterator[RunAsSession]:
        """
        Open a session whose requests act as ``account``.

        Usage:
            with service.open_as(bot) as session:
                session.delete_vote(change, voter)
        """
        client = self._client.with_headers({RUN_AS_HEADER: account.reference})
        log.debug("Opened run-as session for %s", account.describe())
        yield RunAsSession(client, account)

    def as_caller(self, username: str, password: str) -> GerritService:
        """
        Return a service authenticated with someone else's credentials.

        Used to let Gerrit establish who a caller is and which groups
        they are in.

        Raises:
            GerritAuthError: If either credential is empty, since the
                client would otherwise fall back to the environment.
        """
        if not username or not password:
            raise GerritAuthError("Caller credentials are incomplete")
        return GerritService(
            self.url,
            username=username,
            password=password,
            timeout=self._timeout,
            max_attempts=1,
        )


def create_gerrit_service(
    url: str,
    username: str | None = None,
    password: str | None = None,
    timeout: float = 15.0,
) -> GerritService:
    """
    Factory function to create a GerritService.

    Args:
        url: Gerrit base URL.
        username: Optional HTTP username.
        password: Optional HTTP password.
        timeout: Request timeout in seconds.

    Returns:
        Configured GerritService instance.
    """
    return GerritService(
        url=url,
        username=username,
        password=password,
        timeout=timeout,
    )


__all__ = [
    "DETAILED_LABEL_OPTIONS",
    "RUN_AS_HEADER",
    "GerritService",
    "GerritServiceError",
    "RunAsSession",
    "create_gerrit_service",
]
