# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit data models for dls_gerrit.

This module defines Pydantic models for the parts of Gerrit's REST
entities that the unverify and verify-trigger handlers read:

- Accounts and groups
- Changes with their labels and detailed votes
- Revision kinds and notification settings

Each model offers a ``from_api_response`` factory that accepts the raw
JSON returned by the REST API.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from urllib.parse import unquote

from pydantic import BaseModel, Field

VERIFIED_LABEL = "Verified"


class ChangeStatus(str, Enum):
    """Gerrit change status values."""

    NEW = "NEW"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"


class ChangeKind(str, Enum):
    """Kind of a revision relative to its predecessor."""

    REWORK = "REWORK"
    TRIVIAL_REBASE = "TRIVIAL_REBASE"
    TRIVIAL_REBASE_WITH_MESSAGE_UPDATE = "TRIVIAL_REBASE_WITH_MESSAGE_UPDATE"
    MERGE_FIRST_PARENT_UPDATE = "MERGE_FIRST_PARENT_UPDATE"
    NO_CODE_CHANGE = "NO_CODE_CHANGE"
    NO_CHANGE = "NO_CHANGE"

    @property
    def is_trivial(self) -> bool:
        """True for kinds that leave the code identical to the prior revision."""
        return self in (ChangeKind.NO_CODE_CHANGE, ChangeKind.NO_CHANGE)


class NotifyHandling(str, Enum):
    """Who Gerrit should notify about an operation."""

    NONE = "NONE"
    OWNER = "OWNER"
    OWNER_REVIEWERS = "OWNER_REVIEWERS"
    ALL = "ALL"


class AccountInfo(BaseModel):
    """A Gerrit account as returned with DETAILED_ACCOUNTS."""

    account_id: int | None = Field(None, description="Numeric account id")
    username: str | None = None
    name: str | None = None
    email: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> AccountInfo:
        return cls(
            account_id=data.get("_account_id"),
            username=data.get("username"),
            name=data.get("name"),
            email=data.get("email"),
        )

    @property
    def reference(self) -> str:
        """Identifier usable in REST paths and the X-Gerrit-RunAs header."""
        if self.account_id is not None:
            return str(self.account_id)
        if self.username:
            return self.username
        raise ValueError("account has neither an id nor a username")

    def describe(self) -> str:
        """Short "username/name" form used in log messages."""
        ident = self.username if self.username else self.account_id
        return f"{ident}/{self.name or ''}"


class GroupInfo(BaseModel):
    """A Gerrit group the caller belongs to."""

    id: str = Field(..., description="Group UUID")
    name: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> GroupInfo:
        # REST returns the UUID URL-encoded.
        return cls(id=unquote(data.get("id", "")), name=data.get("name"))


class ApprovalInfo(AccountInfo):
    """A single reviewer's vote on a label."""

    value: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ApprovalInfo:
        return cls(
            account_id=data.get("_account_id"),
            username=data.get("username"),
            name=data.get("name"),
            email=data.get("email"),
            value=data.get("value", 0) or 0,
        )


class LabelInfo(BaseModel):
    """
    Label information for a Gerrit change.

    ``all`` holds the per-reviewer votes and is only populated when the
    change was fetched with DETAILED_LABELS. ``None`` means Gerrit did not
    return any vote detail for the label.
    """

    name: str
    approved: bool = False
    rejected: bool = False
    all: list[ApprovalInfo] | None = None

    @classmethod
    def from_api_response(
        cls, name: str, label_data: dict[str, Any]
    ) -> LabelInfo:
        votes = None
        if "all" in label_data and label_data["all"] is not None:
            votes = [ApprovalInfo.from_api_response(a) for a in label_data["all"]]
        return cls(
            name=name,
            approved="approved" in label_data,
            rejected="rejected" in label_data,
            all=votes,
        )


class ChangeInfo(BaseModel):
    """
    Represents a Gerrit change.

    ``labels`` is ``None`` when the change was loaded without label
    information (for example from a stream event).
    """

    number: int = Field(..., description="Gerrit change number")
    change_id: str = Field("", description="Gerrit Change-Id (I-prefixed)")
    id: str = Field("", description="Triplet id (project~branch~Change-Id)")
    project: str = Field("", description="Gerrit project name")
    branch: str = Field("", description="Target branch")
    subject: str = Field("", description="First line of commit message")
    topic: str | None = Field(None, description="Change topic (if set)")
    status: ChangeStatus = Field(ChangeStatus.NEW, description="Change status")
    owner: AccountInfo | None = None
    labels: dict[str, LabelInfo] | None = None
    url: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ChangeInfo:
        """Create a ChangeInfo from a Gerrit REST API ChangeInfo entity."""
        labels = None
        if "labels" in data:
            labels = {
                name: LabelInfo.from_api_response(name, info)
                for name, info in (data.get("labels") or {}).items()
            }
        owner = data.get("owner")
        return cls(
            number=data.get("_number", 0),
            change_id=data.get("change_id", ""),
            id=data.get("id", ""),
            project=data.get("project", ""),
            branch=data.get("branch", ""),
            subject=data.get("subject", ""),
            topic=data.get("topic"),
            status=data.get("status", ChangeStatus.NEW.value),
            owner=AccountInfo.from_api_response(owner) if owner else None,
            labels=labels,
        )

    @property
    def clean_topic(self) -> str:
        """The topic with surrounding whitespace removed, or ''."""
        return (self.topic or "").strip()

    @property
    def is_open(self) -> bool:
        """Check if the change is open (NEW status)."""
        return self.status == ChangeStatus.NEW

    @property
    def has_label_detail(self) -> bool:
        return self.labels is not None

    def get_label(self, label_name: str) -> LabelInfo | None:
        """Return the named label, or None when the change does not carry it."""
        if not self.labels:
            return None
        return self.labels.get(label_name)


__all__ = [
    "VERIFIED_LABEL",
    "AccountInfo",
    "ApprovalInfo",
    "ChangeInfo",
    "ChangeKind",
    "ChangeStatus",
    "GroupInfo",
    "LabelInfo",
    "NotifyHandling",
]
