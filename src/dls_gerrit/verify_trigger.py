# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Trigger the Jenkins verify job for a change.

A request passes, in order, through these checks:

1. the caller is an identified (not anonymous) user
2. the change is open
3. the change's project starts with a permitted prefix
4. the caller is a member of a permitted group

The first failing check rejects the request with :class:`AuthRejected`.
A request that passes all of them calls the job's ``buildWithParameters``
URL once; the response body is ignored.
"""

from __future__ import annotations

import logging

import requests
from pydantic import BaseModel, Field

from dls_gerrit.config import VerifyTriggerConfig, hostname_from_url
from dls_gerrit.gerrit.models import AccountInfo, ChangeInfo

log = logging.getLogger("dls_gerrit.verify_trigger")


class VerifyTriggerError(Exception):
    """Base for errors reported to the caller of the trigger."""


class AuthRejected(VerifyTriggerError):
    """The caller may not trigger a verify job for this change."""


class UpstreamUnavailable(VerifyTriggerError):
    """The CI job could not be reached."""


class TriggerRequest(BaseModel):
    """One call of the trigger endpoint."""

    caller: AccountInfo | None = Field(
        None, description="Identified caller, None when anonymous"
    )
    caller_groups: list[str] = Field(
        default_factory=list, description="UUIDs of the caller's groups"
    )
    change: ChangeInfo


def _describe_caller(caller: AccountInfo) -> str:
    return f"{caller.account_id}/{caller.name or caller.username or ''}"


class VerifyTrigger:
    """Validates trigger requests and calls the Jenkins job."""

    def __init__(
        self,
        config: VerifyTriggerConfig,
        web_url: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            config: Permitted groups and project prefixes, job URL and token.
            web_url: Gerrit's canonical web URL; its hostname is passed to
                the job.
            session: Optional requests session for the outbound call.
            timeout: Timeout of the outbound call in seconds.
        """
        self._config = config
        self._hostname = hostname_from_url(web_url)
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def gerrit_hostname(self) -> str:
        return self._hostname

    def apply(self, request: TriggerRequest) -> str:
        """
        Validate ``request`` and trigger the verify job.

        Returns:
            An empty string.

        Raises:
            AuthRejected: If any check fails.
            UpstreamUnavailable: If the job URL is malformed or the job
                cannot be found.
        """
        change = request.change
        caller = request.caller

        if caller is None or caller.account_id is None:
            log.warning(
                "Request rejected - change=%d, user not authenticated",
                change.number,
            )
            raise AuthRejected("Request rejected - user not authenticated")

        user_desc = _describe_caller(caller)
        if not change.is_open:
            log.warning(
                "Request rejected - change=%d is not open, user=%s",
                change.number,
                user_desc,
            )
            raise AuthRejected(
                f"Request rejected - change {change.number} is not open"
            )

        if not any(
            change.project.startswith(prefix)
            for prefix in self._config.project_prefixes
        ):
            log.warning(
                "Request rejected - change=%d in non-triggerable project=%s, "
                "user=%s",
                change.number,
                change.project,
                user_desc,
            )
            raise AuthRejected(
                f"Request rejected - change {change.number} is in a "
                f"non-triggerable project {change.project}"
            )

        if not set(request.caller_groups) & set(self._config.permitted_groups):
            log.warning(
                "Request rejected - change=%d, user=%s is not in an "
                "authorised group",
                change.number,
                user_desc,
            )
            raise AuthRejected(
                f"Request rejected - change {change.number}, user {user_desc} "
                "is not in an authorised group"
            )

        self._trigger(change, caller)
        log.info(
            "user=%s triggered verify for change=%d, project=%s, topic=%s",
            user_desc,
            change.number,
            change.project,
            change.topic,
        )
        return ""

    def build_params(self, change: ChangeInfo, caller: AccountInfo) -> dict[str, str]:
        """Query parameters of the buildWithParameters call."""
        return {
            "token": self._config.job_token.get_secret_value(),
            "gerrit_host": self._hostname,
            "gerrit_change_number": str(change.number),
            "gerrit_requesting_user": str(caller.account_id),
            "cause": f"Triggered-from-{self._hostname}",
        }

    def _trigger(self, change: ChangeInfo, caller: AccountInfo) -> None:
        job_url = self._config.job_url
        url = f"{job_url.rstrip('/')}/buildWithParameters"
        if not job_url:
            log.error(
                "Malformed Jenkins URL: no jenkins-job-url for host %s",
                self._hostname,
            )
            raise UpstreamUnavailable(
                "Failure triggering Jenkins test job (malformed URL): "
                f"{job_url}"
            )
        try:
            response = self._session.get(
                url,
                params=self.build_params(change, caller),
                timeout=self._timeout,
            )
            response.raise_for_status()
        except (
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidURL,
        ) as exc:
            log.error("Malformed Jenkins URL: %s (%s)", url, exc)
            raise UpstreamUnavailable(
                "Failure triggering Jenkins test job (malformed URL): "
                f"{job_url}"
            ) from exc
        except requests.exceptions.HTTPError as exc:
            if exc.response is None or exc.response.status_code != 404:
                raise
            log.error("Failed getting URL (is Jenkins down?): %s", url)
            raise UpstreamUnavailable(
                "Failure triggering Jenkins test job (is Jenkins down?): "
                f"{job_url}"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            log.error("Failed getting URL (is Jenkins down?): %s (%s)", url, exc)
            raise UpstreamUnavailable(
                "Failure triggering Jenkins test job (is Jenkins down?): "
                f"{job_url}"
            ) from exc


__all__ = [
    "AuthRejected",
    "TriggerRequest",
    "UpstreamUnavailable",
    "VerifyTrigger",
    "VerifyTriggerError",
]
