# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Remove stale Verified votes from changes that share a topic.

Changes in a topic are verified together, so anything that alters the
topic's contents invalidates the Verified votes on every open change in
it. The handlers here react to:

- an existing change having its topic added, removed or changed
- a change with a topic being abandoned or restored
- a change with a topic receiving a new, non-trivial patch set
  (this includes a brand new change joining an existing topic)

When a topic is changed, votes are removed from both the old and the new
topic. Deleting a change is not handled, since Gerrit emits no event for it.

Each handler takes an :class:`UnverifyContext` and an event, and returns
an :class:`UnverifyResult`. Handlers never raise.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, Field

from dls_gerrit.config import ConfigError, UnverifyConfig
from dls_gerrit.gerrit.client import GerritRestError
from dls_gerrit.gerrit.events import (
    ChangeAbandoned,
    ChangeEvent,
    ChangeRestored,
    Event,
    RevisionCreated,
    TopicEdited,
)
from dls_gerrit.gerrit.models import (
    VERIFIED_LABEL,
    AccountInfo,
    ChangeInfo,
    NotifyHandling,
)
from dls_gerrit.gerrit.service import DETAILED_LABEL_OPTIONS

if TYPE_CHECKING:
    from dls_gerrit.gerrit.service import GerritService

log = logging.getLogger("dls_gerrit.unverify")

VERIFIED_VALUES: tuple[int, ...] = (-1, 1)


class ChangeQueryService(Protocol):
    def query_changes(
        self,
        query: str,
        options: list[str] | None = None,
        limit: int | None = None,
    ) -> list[ChangeInfo]: ...

    def get_change(
        self, change: int | str, options: list[str] | None = None
    ) -> ChangeInfo: ...


class VoteSession(Protocol):
    def delete_vote(
        self,
        change: int | str,
        voter: AccountInfo,
        label: str = VERIFIED_LABEL,
        notify: NotifyHandling = NotifyHandling.NONE,
    ) -> bool: ...


class VoteMutationService(Protocol):
    def open_as(
        self, account: AccountInfo
    ) -> AbstractContextManager[VoteSession]: ...


class AccountResolver(Protocol):
    def resolve_account(self, name: str) -> AccountInfo: ...


@dataclass
class UnverifyContext:
    """The services and settings a handler call works with."""

    changes: ChangeQueryService
    votes: VoteMutationService
    accounts: AccountResolver
    config: UnverifyConfig
    dry_run: bool = False

    @classmethod
    def from_service(
        cls, service: GerritService, config: UnverifyConfig, dry_run: bool = False
    ) -> UnverifyContext:
        """Use one GerritService for queries, mutations and accounts."""
        return cls(
            changes=service,
            votes=service,
            accounts=service,
            config=config,
            dry_run=dry_run,
        )

    def resolve_bot(self) -> AccountInfo:
        """
        Resolve the configured bot account.

        Raises:
            ConfigError: If no bot username is configured.
            GerritNotFoundError: If the account cannot be resolved.
        """
        username = self.config.bot_username
        if not username:
            raise ConfigError("gerrit-bot-username is not configured")
        return self.accounts.resolve_account(username)


class UnverifyStatus(str, Enum):
    """Outcome of handling one event."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    ABORTED = "aborted"
    FAILED = "failed"


class UnverifyResult(BaseModel):
    """What a handler did for one event."""

    event_type: str = ""
    change_number: int = 0
    status: UnverifyStatus = UnverifyStatus.COMPLETED
    changes_affected: int = Field(
        0, description="Changes that lost at least one Verified vote"
    )
    votes_removed: int = 0
    aborted_topics: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    reason: str | None = None

    @classmethod
    def for_event(cls, event: ChangeEvent) -> UnverifyResult:
        return cls(event_type=event.event_type, change_number=event.change.number)

    def skip(self, reason: str) -> UnverifyResult:
        self.status = UnverifyStatus.SKIPPED
        self.reason = reason
        return self

    @property
    def succeeded(self) -> bool:
        return self.status in (UnverifyStatus.COMPLETED, UnverifyStatus.SKIPPED)


def build_topic_query(topic: str) -> str:
    """Search for open changes in ``topic`` carrying a non-zero Verified vote."""
    return (
        f'status:open topic:"{topic}" '
        f"(label:{VERIFIED_LABEL}-1 OR label:{VERIFIED_LABEL}+1)"
    )


def unverify_single_change(
    ctx: UnverifyContext,
    change: ChangeInfo,
    result: UnverifyResult | None = None,
) -> int:
    """
    Remove every -1/+1 Verified vote from ``change``.

    ``change`` must have been loaded with DETAILED_LABELS. A deletion that
    Gerrit rejects is logged and recorded on ``result``, and the remaining
    votes are still processed.

    Returns:
        The number of votes removed.
    """
    label = change.get_label(VERIFIED_LABEL)
    if label is None or not label.all:
        log.debug("Change %d - no Verified votes", change.number)
        return 0

    removed = 0
    bot: AccountInfo | None = None
    for approval in label.all:
        if approval.value not in VERIFIED_VALUES:
            log.debug(
                "Change %d - no Verified vote by \"%s\"",
                change.number,
                approval.describe(),
            )
            continue

        log.info(
            "Change %d - removing Verified:%+d vote by \"%s\"",
            change.number,
            approval.value,
            approval.describe(),
        )
        if ctx.dry_run:
            removed += 1
            continue

        if bot is None:
            bot = ctx.resolve_bot()
        try:
            with ctx.votes.open_as(bot) as session:
                if session.delete_vote(
                    change.id or change.number,
                    approval,
                    label=VERIFIED_LABEL,
                    notify=NotifyHandling.NONE,
                ):
                    removed += 1
        except GerritRestError as exc:
            log.error("FAILED Change %d: %s", change.number, exc)
            if result is not None:
                result.errors.append(f"change {change.number}: {exc}")

    if result is not None:
        result.votes_removed += removed
    return removed


def unverify_open_changes_with_topic(
    ctx: UnverifyContext,
    topic: str | None,
    result: UnverifyResult | None = None,
) -> int:
    """
    Remove Verified votes from all open changes in ``topic``.

    Nothing is queried for an empty topic. If the topic matches more
    changes than the configured maximum, nothing is changed and the topic
    is recorded as aborted on ``result``.

    Every change that loses a vote is counted on ``result`` as soon as
    it is processed.

    Returns:
        The number of changes that lost at least one vote.
    """
    topic = (topic or "").strip()
    if not topic:
        return 0

    limit = ctx.config.max_changes
    # one extra result is enough to tell that the limit was exceeded
    matches = ctx.changes.query_changes(
        build_topic_query(topic),
        options=DETAILED_LABEL_OPTIONS,
        limit=limit + 1,
    )

    if not matches:
        log.debug(
            "Topic \"%s\" does not have any open changes with Label:Verified",
            topic,
        )
        return 0

    if len(matches) > limit:
        log.warning(
            "Topic \"%s\" has more than %d open changes with Label:Verified "
            "- not proceeding, as possible internal error",
            topic,
            limit,
        )
        if result is not None:
            result.aborted_topics.append(topic)
        return 0

    affected = 0
    for change in matches:
        if unverify_single_change(ctx, change, result) > 0:
            affected += 1
            if result is not None:
                result.changes_affected += 1
    return affected


def _run(
    ctx: UnverifyContext,
    result: UnverifyResult,
    work: Callable[[], None],
) -> UnverifyResult:
    """
    Run a handler body, folding any failure into ``result``.

    ``work`` records its progress on ``result`` as it goes, so changes
    unverified before a failure are still reported.
    """
    try:
        work()
    except Exception as exc:
        log.exception("Failed to unverify changes")
        result.status = UnverifyStatus.FAILED
        result.reason = str(exc) or type(exc).__name__
        return result

    if result.aborted_topics:
        result.status = UnverifyStatus.ABORTED
        result.reason = "too many changes in topic " + ", ".join(
            f'"{t}"' for t in result.aborted_topics
        )
    verb = "Would remove" if ctx.dry_run else "Removed"
    log.info(
        "%s Label:Verified votes from %d changes",
        verb,
        result.changes_affected,
    )
    return result


def _topic_event(
    ctx: UnverifyContext, event: ChangeEvent, action: str
) -> UnverifyResult:
    """Shared body of the abandon, restore and new-patch-set handlers."""
    result = UnverifyResult.for_event(event)
    topic = event.change.clean_topic
    log.info(
        "Account \"%s\" %s change %d with topic \"%s\"",
        event.who.describe(),
        action,
        event.change.number,
        topic,
    )

    def work() -> None:
        unverify_open_changes_with_topic(ctx, topic, result)

    return _run(ctx, result, work)


def on_revision_created(
    ctx: UnverifyContext, event: RevisionCreated
) -> UnverifyResult:
    """A patch set was uploaded: unverify its topic unless the upload is trivial."""
    if not event.change.clean_topic:
        log.debug(
            "Account \"%s\" uploaded patchset %d of change %d without a topic, "
            "so no unverify required",
            event.who.describe(),
            event.patchset,
            event.change.number,
        )
        return UnverifyResult.for_event(event).skip("change has no topic")
    if event.kind.is_trivial:
        log.debug(
            "Account \"%s\" uploaded patchset %d of change %d which is a "
            "trivial revision (%s), so no unverify required",
            event.who.describe(),
            event.patchset,
            event.change.number,
            event.kind.value,
        )
        return UnverifyResult.for_event(event).skip(
            f"trivial revision ({event.kind.value})"
        )
    return _topic_event(ctx, event, "uploaded a patchset to")


def on_change_restored(
    ctx: UnverifyContext, event: ChangeRestored
) -> UnverifyResult:
    if not event.change.clean_topic:
        log.debug(
            "Account \"%s\" restored change %d without a topic, "
            "so no unverify required",
            event.who.describe(),
            event.change.number,
        )
        return UnverifyResult.for_event(event).skip("change has no topic")
    return _topic_event(ctx, event, "restored")


def on_change_abandoned(
    ctx: UnverifyContext, event: ChangeAbandoned
) -> UnverifyResult:
    if not event.change.clean_topic:
        log.debug(
            "Account \"%s\" abandoned change %d without a topic, "
            "so no unverify required",
            event.who.describe(),
            event.change.number,
        )
        return UnverifyResult.for_event(event).skip("change has no topic")
    return _topic_event(ctx, event, "abandoned")


def on_topic_edited(ctx: UnverifyContext, event: TopicEdited) -> UnverifyResult:
    """
    The topic of an open change was set, changed or removed.

    Both the old and the new topic are unverified. When the topic was
    removed the change itself can no longer be found by a topic search,
    so it is unverified directly first.
    """
    result = UnverifyResult.for_event(event)
    old_topic = (event.old_topic or "").strip()
    new_topic = event.change.clean_topic
    log.info(
        "Account \"%s\" updated the topic in change %d from \"%s\" to \"%s\"",
        event.who.describe(),
        event.change.number,
        old_topic,
        new_topic,
    )

    if not event.change.is_open:
        log.debug(
            "change %d is not Open, so no unverify required",
            event.change.number,
        )
        return result.skip(f"change is {event.change.status.value}")

    def work() -> None:
        if not new_topic:
            change = event.change
            if not change.has_label_detail:
                change = ctx.changes.get_change(
                    change.id or change.number, options=DETAILED_LABEL_OPTIONS
                )
            if unverify_single_change(ctx, change, result) > 0:
                result.changes_affected += 1
        unverify_open_changes_with_topic(ctx, old_topic, result)
        unverify_open_changes_with_topic(ctx, new_topic, result)

    return _run(ctx, result, work)


_HANDLERS: dict[type, Callable[[UnverifyContext, ChangeEvent], UnverifyResult]] = {
    RevisionCreated: on_revision_created,
    ChangeRestored: on_change_restored,
    ChangeAbandoned: on_change_abandoned,
    TopicEdited: on_topic_edited,
}


def handle(ctx: UnverifyContext, event: Event) -> UnverifyResult:
    """Dispatch ``event`` to its handler."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"No unverify handler for {type(event).__name__}")
    return handler(ctx, event)


__all__ = [
    "UnverifyContext",
    "UnverifyResult",
    "UnverifyStatus",
    "build_topic_query",
    "handle",
    "on_change_abandoned",
    "on_change_restored",
    "on_revision_created",
    "on_topic_edited",
    "unverify_open_changes_with_topic",
    "unverify_single_change",
]
