"""
Protocols for the persistence collaborator and its change feed.

The managed relational store is reached through network calls. The core only
needs filter+sort+limit reads and single-row conditional updates, so that is
all these protocols expose.

Protocols are structural: the store client and test doubles never import
the core.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable
from datetime import datetime
from typing import Any, Literal, Protocol, TypeVar

from core.domain.errors import StoreUnavailableError
from core.domain.models import (
    ActivityRecord,
    HealthMetricSample,
    MedicationDefinition,
    MedicationUsageEvent,
    Relationship,
    RelationshipChange,
    RelationshipStatus,
)

T = TypeVar("T")

RelationshipOrder = Literal["requested_at", "approved_at"]


class CareStore(Protocol):
    """Read/write surfaces keyed by owner or caregiver id."""

    async def insert_relationship(self, relationship: Relationship) -> Relationship:
        """
        Insert a new relationship.

        Raises ConflictError when a non-rejected relationship already exists
        for (caregiver_id, senior_email).
        """
        ...

    async def get_relationship(self, relationship_id: str) -> Relationship | None: ...

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
        """Filtered relationships, newest first on `order_by`."""
        ...

    async def update_relationship_if_pending(
        self,
        relationship_id: str,
        changes: dict[str, Any],
        *,
        verification_code: str | None = None,
    ) -> int:
        """
        Atomic `UPDATE ... WHERE id=? AND status='pending' [AND code=?]`.

        Returns the number of rows affected (0 or 1).
        """
        ...

    async def list_medications(
        self, owner_id: str, *, active_only: bool = False
    ) -> list[MedicationDefinition]: ...

    async def get_medication(self, medication_id: str) -> MedicationDefinition | None: ...

    async def save_medication(self, definition: MedicationDefinition) -> MedicationDefinition: ...

    async def list_usage_events(
        self, owner_id: str, start: datetime, end: datetime
    ) -> list[MedicationUsageEvent]:
        """Usage events with start <= taken_at < end."""
        ...

    async def list_health_samples(
        self, owner_id: str, since: datetime, limit: int
    ) -> list[HealthMetricSample]:
        """Samples recorded at or after `since`, newest first."""
        ...

    async def latest_activity(self, owner_id: str) -> ActivityRecord | None: ...

    async def list_activities(self, owner_id: str, since: datetime) -> list[ActivityRecord]:
        """Activities created at or after `since`, newest first."""
        ...


class ChangeSubscription(Protocol):
    """A live, cancellable stream of relationship updates."""

    def __aiter__(self) -> AsyncIterator[RelationshipChange]: ...

    async def close(self) -> None: ...


class ChangeFeed(Protocol):
    def subscribe(self, caregiver_id: str) -> ChangeSubscription:
        """Stream of updates to relationships owned by `caregiver_id`."""
        ...


async def store_call(operation: Awaitable[T], timeout_seconds: float) -> T:
    """
    Run one store round trip with a timeout.

    Connection failures and timeouts surface as StoreUnavailableError; any
    CareError raised by the store passes through untouched.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout_seconds)
    except TimeoutError as e:
        raise StoreUnavailableError(
            f"Store did not answer within {timeout_seconds}s"
        ) from e
    except OSError as e:
        raise StoreUnavailableError(f"Store unreachable: {e}") from e
