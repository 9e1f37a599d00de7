"""Shared fixtures: a fixed clock, default config and a seeded in-memory store."""

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from adapters.memory.store import InMemoryCareStore, InMemoryChangeFeed
from core.config import AppConfig
from core.domain.models import Relationship, RelationshipStatus

NOW = datetime(2024, 5, 14, 8, 5, tzinfo=UTC)

CAREGIVER_ID = "caregiver-1"
CAREGIVER_EMAIL = "carol@example.com"
SENIOR_ID = "senior-1"
SENIOR_EMAIL = "sam@example.com"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def store(feed: InMemoryChangeFeed) -> InMemoryCareStore:
    return InMemoryCareStore(feed)


def make_relationship(
    relationship_id: str = "rel-1",
    *,
    caregiver_id: str = CAREGIVER_ID,
    senior_email: str = SENIOR_EMAIL,
    senior_id: str | None = SENIOR_ID,
    status: RelationshipStatus = RelationshipStatus.APPROVED,
    approved_at: datetime | None = NOW,
) -> Relationship:
    return Relationship(
        id=relationship_id,
        caregiver_id=caregiver_id,
        caregiver_email=CAREGIVER_EMAIL,
        senior_email=senior_email,
        senior_id=senior_id if status is RelationshipStatus.APPROVED else None,
        status=status,
        verification_code="123456",
        requested_at=NOW,
        approved_at=approved_at if status is RelationshipStatus.APPROVED else None,
        updated_at=NOW,
    )


@pytest.fixture
def approved_store(store: InMemoryCareStore) -> InMemoryCareStore:
    """Store where CAREGIVER_ID already has approved access to SENIOR_EMAIL."""
    store.add_relationship(make_relationship())
    return store
