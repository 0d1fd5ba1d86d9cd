# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit events consumed by the unverify handlers.

The models mirror the four listener events the handlers react to. They
are built from the JSON objects emitted by ``gerrit stream-events``:

    patchset-created  -> RevisionCreated
    change-abandoned  -> ChangeAbandoned
    change-restored   -> ChangeRestored
    topic-changed     -> TopicEdited

Any other event type is ignored by :func:`parse_stream_event`.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Union
from urllib.parse import quote

from pydantic import BaseModel, Field, ValidationError

from dls_gerrit.gerrit.models import (
    AccountInfo,
    ChangeInfo,
    ChangeKind,
    ChangeStatus,
)

log = logging.getLogger("dls_gerrit.gerrit.events")


class ChangeEvent(BaseModel):
    """Base for events about a single change."""

    event_type: ClassVar[str] = ""

    who: AccountInfo = Field(default_factory=AccountInfo)
    change: ChangeInfo


class RevisionCreated(ChangeEvent):
    """A new patch set was uploaded."""

    event_type: ClassVar[str] = "patchset-created"

    patchset: int = 0
    kind: ChangeKind = ChangeKind.REWORK


class ChangeAbandoned(ChangeEvent):
    event_type: ClassVar[str] = "change-abandoned"


class ChangeRestored(ChangeEvent):
    event_type: ClassVar[str] = "change-restored"


class TopicEdited(ChangeEvent):
    """The topic of a change was set, changed or removed.

    ``change.topic`` holds the new topic.
    """

    event_type: ClassVar[str] = "topic-changed"

    old_topic: str | None = None


Event = Union[RevisionCreated, ChangeAbandoned, ChangeRestored, TopicEdited]

# stream-events names the acting account differently per event type
_ACTOR_KEYS: dict[str, str] = {
    RevisionCreated.event_type: "uploader",
    ChangeAbandoned.event_type: "abandoner",
    ChangeRestored.event_type: "restorer",
    TopicEdited.event_type: "changer",
}


def _account_from_stream(data: dict[str, Any] | None) -> AccountInfo:
    data = data or {}
    return AccountInfo(
        username=data.get("username"),
        name=data.get("name"),
        email=data.get("email"),
    )


def _change_from_stream(data: dict[str, Any]) -> ChangeInfo:
    """Build a ChangeInfo from a stream-events change attribute."""
    project = data.get("project", "")
    branch = data.get("branch", "")
    change_id = data.get("id", "")
    # REST change identifiers carry the project and branch URL-encoded
    triplet = (
        f"{quote(project, safe='')}~{quote(branch, safe='')}~{change_id}"
        if change_id
        else ""
    )
    owner = data.get("owner")
    return ChangeInfo(
        number=data.get("number", 0),
        change_id=change_id,
        id=triplet,
        project=project,
        branch=branch,
        subject=data.get("subject", ""),
        topic=data.get("topic"),
        status=data.get("status", ChangeStatus.NEW.value),
        owner=_account_from_stream(owner) if owner else None,
        url=data.get("url", ""),
    )


def parse_stream_event(data: dict[str, Any]) -> Event | None:
    """
    Convert one stream-events JSON object into an event model.

    Returns:
        The event, or None for event types the handlers do not act on.

    Raises:
        ValueError: If the line is not a JSON object, or a handled event
            type is missing its change data.
    """
    if not isinstance(data, dict):
        raise ValueError(f"stream event is not a JSON object: {type(data).__name__}")
    event_type = data.get("type")
    if event_type not in _ACTOR_KEYS:
        log.debug("Ignoring stream event of type %s", event_type)
        return None
    if "change" not in data:
        raise ValueError(f"{event_type} event has no change attribute")

    try:
        change = _change_from_stream(data["change"])
        who = _account_from_stream(data.get(_ACTOR_KEYS[event_type]))

        if event_type == RevisionCreated.event_type:
            patchset = data.get("patchSet") or {}
            return RevisionCreated(
                who=who,
                change=change,
                patchset=patchset.get("number", 0),
                kind=patchset.get("kind", ChangeKind.REWORK.value),
            )
        if event_type == ChangeAbandoned.event_type:
            return ChangeAbandoned(who=who, change=change)
        if event_type == ChangeRestored.event_type:
            return ChangeRestored(who=who, change=change)
        return TopicEdited(
            who=who, change=change, old_topic=data.get("oldTopic")
        )
    except ValidationError as exc:
        raise ValueError(f"Malformed {event_type} event: {exc}") from exc


__all__ = [
    "ChangeAbandoned",
    "ChangeEvent",
    "ChangeRestored",
    "Event",
    "RevisionCreated",
    "TopicEdited",
    "parse_stream_event",
]
