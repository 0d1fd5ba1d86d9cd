# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit integration package for dls_gerrit.

Modules:
    client: REST client with retry and timeout handling
    models: Pydantic models for Gerrit data structures
    service: Change queries, run-as vote deletion and account lookups
    events: Event models built from stream-events JSON
    stream: SSH listener for gerrit stream-events

Usage:
    from dls_gerrit.gerrit import GerritService

    service = GerritService("https://gerrit.example.org/")
    changes = service.query_changes('status:open topic:"my-topic"')
"""

from dls_gerrit.gerrit.client import (
    GerritAuthError,
    GerritConflictError,
    GerritNotFoundError,
    GerritRestClient,
    GerritRestError,
    build_client,
)
from dls_gerrit.gerrit.events import (
    ChangeAbandoned,
    ChangeEvent,
    ChangeRestored,
    RevisionCreated,
    TopicEdited,
    parse_stream_event,
)
from dls_gerrit.gerrit.models import (
    VERIFIED_LABEL,
    AccountInfo,
    ApprovalInfo,
    ChangeInfo,
    ChangeKind,
    ChangeStatus,
    GroupInfo,
    LabelInfo,
    NotifyHandling,
)
from dls_gerrit.gerrit.service import (
    DETAILED_LABEL_OPTIONS,
    GerritService,
    GerritServiceError,
    RunAsSession,
    create_gerrit_service,
)

__all__ = [
    # Client
    "GerritAuthError",
    "GerritConflictError",
    "GerritNotFoundError",
    "GerritRestClient",
    "GerritRestError",
    "build_client",
    # Models
    "VERIFIED_LABEL",
    "AccountInfo",
    "ApprovalInfo",
    "ChangeInfo",
    "ChangeKind",
    "ChangeStatus",
    "GroupInfo",
    "LabelInfo",
    "NotifyHandling",
    # Events
    "ChangeAbandoned",
    "ChangeEvent",
    "ChangeRestored",
    "RevisionCreated",
    "TopicEdited",
    "parse_stream_event",
    # Service
    "DETAILED_LABEL_OPTIONS",
    "GerritService",
    "GerritServiceError",
    "RunAsSession",
    "create_gerrit_service",
]
