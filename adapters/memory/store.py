"""
In-memory store and change feed.

Stands in for the managed relational store in tests and the demo. It keeps
the same guarantees the real store gives the core:

- the (caregiver_id, senior_email) uniqueness check and the insert are one
  atomic step
- conditional status updates are compare-and-swap under a lock
- every relationship update is published on the change feed

Outages can be simulated per surface to exercise degraded paths.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import structlog

from core.domain.errors import ConflictError
from core.domain.models import (
    ActivityRecord,
    HealthMetricSample,
    MedicationDefinition,
    MedicationUsageEvent,
    Relationship,
    RelationshipChange,
    RelationshipStatus,
)
from core.services.store import RelationshipOrder

logger = structlog.get_logger(__name__)

_CLOSED = object()


class QueueSubscription:
    """One caregiver's live view of the feed."""

    def __init__(self, feed: "InMemoryChangeFeed", caregiver_id: str) -> None:
        self.feed = feed
        self.caregiver_id = caregiver_id
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def deliver(self, change: RelationshipChange) -> None:
        if not self.closed:
            self._queue.put_nowait(change)

    def __aiter__(self) -> AsyncIterator[RelationshipChange]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RelationshipChange]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed.discard(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryChangeFeed:
    """Fan-out of relationship updates, filtered by caregiver id."""

    def __init__(self) -> None:
        self._subscribers: defaultdict[str, set[QueueSubscription]] = defaultdict(set)

    def subscribe(self, caregiver_id: str) -> QueueSubscription:
        subscription = QueueSubscription(self, caregiver_id)
        self._subscribers[caregiver_id].add(subscription)
        return subscription

    def discard(self, subscription: QueueSubscription) -> None:
        self._subscribers[subscription.caregiver_id].discard(subscription)

    def publish(self, change: RelationshipChange) -> None:
        for subscription in list(self._subscribers[change.caregiver_id]):
            subscription.deliver(change)

    def subscriber_count(self, caregiver_id: str | None = None) -> int:
        if caregiver_id is not None:
            return len(self._subscribers[caregiver_id])
        return sum(len(s) for s in self._subscribers.values())


class InMemoryCareStore:
    """Implements the CareStore protocol over plain dicts and lists."""

    def __init__(
        self,
        feed: InMemoryChangeFeed | None = None,
        *,
        latency_seconds: float = 0.0,
    ) -> None:
        self.feed = feed or InMemoryChangeFeed()
        self.latency_seconds = latency_seconds
        self.available = True
        self.failing_surfaces: set[str] = set()

        self._lock = asyncio.Lock()
        self._relationships: dict[str, Relationship] = {}
        self._medications: dict[str, MedicationDefinition] = {}
        self._usage: list[MedicationUsageEvent] = []
        self._samples: list[HealthMetricSample] = []
        self._activities: list[ActivityRecord] = []
        self.logger = logger.bind(component="memory_store")

    async def _round_trip(self, surface: str) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if not self.available or surface in self.failing_surfaces:
            raise ConnectionError(f"{surface} surface unreachable")

    # Seeding helpers (the senior's own app writes these in production)

    def add_relationship(self, relationship: Relationship) -> None:
        self._relationships[relationship.id] = relationship

    def add_medication(self, definition: MedicationDefinition) -> None:
        self._medications[definition.id] = definition

    def add_usage_event(self, event: MedicationUsageEvent) -> None:
        self._usage.append(event)

    def add_health_sample(self, sample: HealthMetricSample) -> None:
        self._samples.append(sample)

    def add_activity(self, activity: ActivityRecord) -> None:
        self._activities.append(activity)

    # Relationships

    async def insert_relationship(self, relationship: Relationship) -> Relationship:
        await self._round_trip("relationships")
        async with self._lock:
            for existing in self._relationships.values():
                if (
                    existing.caregiver_id == relationship.caregiver_id
                    and existing.senior_email == relationship.senior_email
                    and existing.status is not RelationshipStatus.REJECTED
                ):
                    self.logger.debug("duplicate_relationship_rejected", caregiver_id=relationship.caregiver_id)
                    raise ConflictError("A request for this senior already exists")
            self._relationships[relationship.id] = relationship
        return relationship

    async def get_relationship(self, relationship_id: str) -> Relationship | None:
        await self._round_trip("relationships")
        return self._relationships.get(relationship_id)

    async def find_relationships(
        self,
        *,
        caregiver_id: str | None = None,
        senior_email: str | None = None,
        senior_id: str | None = None,
        status: RelationshipStatus | None = None,
        order_by: RelationshipOrder = "requested_at",
        limit: int | None = None,
    ) -> list[Relationship]:
        await self._round_trip("relationships")
        matches = [
            r
            for r in self._relationships.values()
            if (caregiver_id is None or r.caregiver_id == caregiver_id)
            and (senior_email is None or r.senior_email == senior_email)
            and (senior_id is None or r.senior_id == senior_id)
            and (status is None or r.status is status)
        ]
        # Newest first, rows without the ordering column last
        with_value = [r for r in matches if getattr(r, order_by) is not None]
        without_value = [r for r in matches if getattr(r, order_by) is None]
        with_value.sort(key=lambda r: getattr(r, order_by), reverse=True)
        ordered = with_value + without_value
        return ordered[:limit] if limit is not None else ordered

    async def update_relationship_if_pending(
        self,
        relationship_id: str,
        changes: dict[str, Any],
        *,
        verification_code: str | None = None,
    ) -> int:
        await self._round_trip("relationships")
        async with self._lock:
            current = self._relationships.get(relationship_id)
            if current is None or current.status is not RelationshipStatus.PENDING:
                return 0
            if verification_code is not None and current.verification_code != verification_code:
                return 0
            updated = current.model_copy(update=changes)
            self._relationships[relationship_id] = updated
            self.logger.debug(
                "relationship_status_swapped",
                relationship_id=relationship_id,
                status=updated.status.value,
            )

        self.feed.publish(
            RelationshipChange(
                relationship_id=updated.id,
                caregiver_id=updated.caregiver_id,
                senior_email=updated.senior_email,
                old_status=current.status,
                new_status=updated.status,
                committed_at=updated.updated_at,
            )
        )
        return 1

    # Medications

    async def list_medications(
        self, owner_id: str, *, active_only: bool = False
    ) -> list[MedicationDefinition]:
        await self._round_trip("medications")
        medications = [
            m
            for m in self._medications.values()
            if m.owner_id == owner_id and (m.is_active or not active_only)
        ]
        return sorted(medications, key=lambda m: m.created_at, reverse=True)

    async def get_medication(self, medication_id: str) -> MedicationDefinition | None:
        await self._round_trip("medications")
        return self._medications.get(medication_id)

    async def save_medication(self, definition: MedicationDefinition) -> MedicationDefinition:
        await self._round_trip("medications")
        self._medications[definition.id] = definition
        return definition

    async def list_usage_events(
        self, owner_id: str, start: datetime, end: datetime
    ) -> list[MedicationUsageEvent]:
        await self._round_trip("medication_usage")
        return [e for e in self._usage if e.owner_id == owner_id and start <= e.taken_at < end]

    # Health and activity

    async def list_health_samples(
        self, owner_id: str, since: datetime, limit: int
    ) -> list[HealthMetricSample]:
        await self._round_trip("health_metrics")
        samples = [s for s in self._samples if s.owner_id == owner_id and s.recorded_at >= since]
        samples.sort(key=lambda s: s.recorded_at, reverse=True)
        return samples[:limit]

    async def latest_activity(self, owner_id: str) -> ActivityRecord | None:
        await self._round_trip("activities")
        activities = [a for a in self._activities if a.owner_id == owner_id]
        return max(activities, key=lambda a: a.created_at, default=None)

    async def list_activities(self, owner_id: str, since: datetime) -> list[ActivityRecord]:
        await self._round_trip("activities")
        activities = [a for a in self._activities if a.owner_id == owner_id and a.created_at >= since]
        return sorted(activities, key=lambda a: a.created_at, reverse=True)
