"""
Change-feed notifier for the caregiver session.

The transport (a push stream of relationship row updates) is kept apart from
the decision of what to show: `reduce_status_change` is a pure reducer over
(old_status, new_status) and everything else is session bookkeeping.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

from core.config import AppConfig, get_config
from core.domain.models import (
    Notification,
    NotificationKind,
    RelationshipChange,
    RelationshipStatus,
)
from core.services.store import ChangeFeed, ChangeSubscription

logger = structlog.get_logger(__name__)


def reduce_status_change(
    old_status: RelationshipStatus | None, new_status: RelationshipStatus
) -> NotificationKind | None:
    """Only a transition into approved or rejected is worth telling the caregiver."""
    if new_status is RelationshipStatus.REJECTED and old_status is not RelationshipStatus.REJECTED:
        return NotificationKind.REJECTED
    if new_status is RelationshipStatus.APPROVED and old_status is not RelationshipStatus.APPROVED:
        return NotificationKind.APPROVED
    return None


_MESSAGES = {
    NotificationKind.APPROVED: "{senior_email} has approved your caregiver request",
    NotificationKind.REJECTED: "{senior_email} has rejected your caregiver request",
}


def build_notification(change: RelationshipChange, kind: NotificationKind) -> Notification:
    return Notification(
        id=str(uuid.uuid4()),
        relationship_id=change.relationship_id,
        kind=kind,
        senior_email=change.senior_email,
        message=_MESSAGES[kind].format(senior_email=change.senior_email),
        created_at=change.committed_at,
    )


class NotificationTray:
    """Session-scoped notifications, most recent first. Nothing is ever deleted."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def add(self, notification: Notification) -> None:
        self._items.insert(0, notification)

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if n.unread)

    def mark_all_read(self) -> None:
        for notification in self._items:
            notification.unread = False

    def __len__(self) -> int:
        return len(self._items)


class ToastController:
    """
    Shows the latest notification and hides it after a fixed duration.

    Every show() re-arms the dismiss timer; the previous timer is cancelled
    first, so only the latest one can hide the toast.
    """

    def __init__(
        self,
        duration_seconds: float = 4.0,
        on_hide: Callable[[Notification], None] | None = None,
    ) -> None:
        self.duration_seconds = duration_seconds
        self.current: Notification | None = None
        self._on_hide = on_hide
        self._timer: asyncio.TimerHandle | None = None

    @property
    def visible(self) -> bool:
        return self.current is not None

    def show(self, notification: Notification) -> None:
        self._cancel_timer()
        self.current = notification
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.duration_seconds, self.hide)

    def hide(self) -> None:
        self._cancel_timer()
        hidden, self.current = self.current, None
        if hidden is not None and self._on_hide is not None:
            self._on_hide(hidden)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class ChangeFeedNotifier:
    """
    Consumes relationship updates for one caregiver and turns them into
    deduplicated notifications.

    One long-lived listener per session. Call unsubscribe() (or use
    session()) on teardown so no live subscription leaks.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        caregiver_id: str,
        config: AppConfig | None = None,
    ) -> None:
        self.feed = feed
        self.caregiver_id = caregiver_id
        self.config = config or get_config()
        self.tray = NotificationTray()
        self.toast = ToastController(self.config.notifications.toast_duration_seconds)
        self.logger = logger.bind(component="change_feed_notifier", caregiver_id=caregiver_id)

        self._delivered: set[tuple[str, RelationshipStatus]] = set()
        self._subscription: ChangeSubscription | None = None
        self._listener: asyncio.Task[None] | None = None

    @property
    def is_subscribed(self) -> bool:
        return self._listener is not None and not self._listener.done()

    def handle_change(self, change: RelationshipChange) -> Notification | None:
        """Apply one feed event. Returns the notification emitted, if any."""
        if change.caregiver_id != self.caregiver_id:
            return None

        kind = reduce_status_change(change.old_status, change.new_status)
        if kind is None:
            return None

        # Redelivery of a transition we already announced
        key = (change.relationship_id, change.new_status)
        if key in self._delivered:
            self.logger.debug("duplicate_change_ignored", relationship_id=change.relationship_id)
            return None
        self._delivered.add(key)

        notification = build_notification(change, kind)
        self.tray.add(notification)
        self.toast.show(notification)
        self.logger.info(
            "relationship_status_notified",
            relationship_id=change.relationship_id,
            kind=kind.value,
        )
        return notification

    def open_tray(self) -> list[Notification]:
        """Reading the tray marks everything read without deleting it."""
        items = self.tray.items
        self.tray.mark_all_read()
        return items

    async def subscribe(self) -> None:
        if self.is_subscribed:
            return
        if self._listener is not None or self._subscription is not None:
            failure = await self._teardown()
            self.logger.info(
                "change_feed_resubscribing", error=str(failure) if failure else None
            )
        self._subscription = self.feed.subscribe(self.caregiver_id)
        self._listener = asyncio.create_task(
            self._listen(self._subscription), name=f"change-feed-{self.caregiver_id}"
        )
        self.logger.info("change_feed_subscribed")

    async def unsubscribe(self) -> None:
        try:
            failure = await self._teardown()
        finally:
            self.toast.hide()
        if failure is not None:
            self.logger.warning("change_feed_listener_lost", error=str(failure))
        self.logger.info("change_feed_unsubscribed")

    async def _teardown(self) -> Exception | None:
        """
        Stop the listener and close its subscription.

        The subscription is closed even when the listener already died; the
        listener's error is returned instead of raised.
        """
        listener, self._listener = self._listener, None
        subscription, self._subscription = self._subscription, None
        failure: Exception | None = None
        try:
            if listener is not None:
                listener.cancel()
                try:
                    await listener
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    failure = e
        finally:
            if subscription is not None:
                await subscription.close()
        return failure

    @asynccontextmanager
    async def session(self) -> AsyncIterator["ChangeFeedNotifier"]:
        """Subscribe for the lifetime of a caregiver session."""
        await self.subscribe()
        try:
            yield self
        finally:
            await self.unsubscribe()

    async def _listen(self, subscription: ChangeSubscription) -> None:
        try:
            async for change in subscription:
                self.handle_change(change)
        except asyncio.CancelledError:
            self.logger.debug("change_feed_listener_cancelled")
            raise
        except Exception as e:
            self.logger.exception("change_feed_listener_failed", error=str(e))
            raise
