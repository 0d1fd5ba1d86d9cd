# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
HTTP endpoint for the verify trigger.

    GET /changes/{change_id}/verifytrigger

The caller authenticates with their Gerrit HTTP credentials. They are
only forwarded to Gerrit, which tells us who the caller is and which
groups they belong to. Requests without credentials, or with credentials
Gerrit refuses, are treated as anonymous and rejected by the trigger.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from dls_gerrit import __version__
from dls_gerrit.config import Settings
from dls_gerrit.gerrit.client import GerritAuthError, GerritNotFoundError
from dls_gerrit.gerrit.models import AccountInfo
from dls_gerrit.gerrit.service import GerritService, create_gerrit_service
from dls_gerrit.verify_trigger import (
    AuthRejected,
    TriggerRequest,
    UpstreamUnavailable,
    VerifyTrigger,
)

log = logging.getLogger("dls_gerrit.web")

_security = HTTPBasic(auto_error=False)


def _identify(
    service: GerritService, credentials: HTTPBasicCredentials | None
) -> tuple[AccountInfo | None, list[str]]:
    """Ask Gerrit who the caller is and which groups they are in."""
    if credentials is None:
        return None, []
    try:
        caller_service = service.as_caller(
            credentials.username, credentials.password
        )
        account = caller_service.get_self()
        groups = [g.id for g in caller_service.get_account_groups("self")]
    except GerritAuthError as exc:
        log.debug("Gerrit refused credentials of %s: %s", credentials.username, exc)
        return None, []
    return account, groups


def create_app(
    settings: Settings,
    service: GerritService | None = None,
    trigger: VerifyTrigger | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Loaded configuration.
        service: Gerrit service acting as the service account. Built from
            ``settings`` when omitted.
        trigger: The verify trigger. Built from ``settings`` when omitted.
    """
    if service is None:
        service = create_gerrit_service(
            settings.gerrit_url,
            username=settings.username,
            password=(
                settings.password.get_secret_value() if settings.password else None
            ),
        )
    if trigger is None:
        trigger = VerifyTrigger(settings.verify_trigger, settings.gerrit_url)

    app = FastAPI(
        title="dls-gerrit verify trigger",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )

    @app.get("/changes/{change_id:path}/verifytrigger")
    def verify_trigger(
        change_id: str,
        credentials: HTTPBasicCredentials | None = Depends(_security),
    ):
        # The router hands over the id with %2F already decoded.
        change_ref = quote(change_id, safe="~")
        caller, groups = _identify(service, credentials)
        try:
            change = service.get_change(change_ref, options=[])
        except GerritNotFoundError as exc:
            raise HTTPException(status_code=404, detail=f"Not found: {change_id}") from exc

        request = TriggerRequest(caller=caller, caller_groups=groups, change=change)
        try:
            return Response(content=trigger.apply(request))
        except AuthRejected as exc:
            return JSONResponse(status_code=403, content={"message": str(exc)})
        except UpstreamUnavailable as exc:
            return JSONResponse(status_code=404, content={"message": str(exc)})

    return app


__all__ = ["create_app"]
