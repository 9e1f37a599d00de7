"""
Caregiver dashboard service.

Wires the authorization gate, schedule resolver, alert engine and change-feed
notifier behind the operations the UI calls:

1. Verify the caregiver's approved relationship once
2. Resolve today's schedule and ranked alerts concurrently
3. Report whichever sub-queries failed so the rest can still render
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field, computed_field

from core.config import AppConfig, get_config
from core.domain.errors import CareError
from core.domain.models import (
    DailyActivity,
    DashboardStats,
    EmergencyAlert,
    HealthTrend,
    InactivityAlert,
    MedicationAlert,
    Relationship,
    ScheduleItem,
)
from core.services.alerts import AlertDigest, AlertService
from core.services.authorization import (
    AccessRequest,
    ApprovalOutcome,
    RelationshipAuthorizationService,
)
from core.services.notifier import ChangeFeedNotifier
from core.services.result import Result
from core.services.schedule import ScheduleService
from core.services.store import CareStore, ChangeFeed
from core.services.trends import Timeframe, TrendsService

logger = structlog.get_logger(__name__)


class DashboardSnapshot(BaseModel):
    """Everything the caregiver's dashboard shows for one senior."""

    relationship: Relationship
    schedule: list[ScheduleItem] | None = None
    alerts: AlertDigest | None = None
    failures: dict[str, str] = Field(default_factory=dict)
    generated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def degraded(self) -> bool:
        return bool(self.failures) or bool(self.alerts and self.alerts.degraded)


class CaregiverDashboardService:
    """
    Main entry point for a caregiver client.

    Every data read goes through the approved-relationship check; change-feed
    listeners are tracked per caregiver so close() can tear them all down.
    """

    def __init__(
        self,
        store: CareStore,
        feed: ChangeFeed,
        config: AppConfig | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.config = config or get_config()
        self.feed = feed
        self._clock = clock
        self.logger = logger.bind(component="caregiver_dashboard")

        self.authorization = RelationshipAuthorizationService(store, self.config, clock=clock)
        self.schedule = ScheduleService(store, self.authorization, self.config, clock=clock)
        self.alerts = AlertService(store, self.authorization, self.config, clock=clock)
        self.trends = TrendsService(store, self.authorization, self.config, clock=clock)

        self._notifiers: dict[str, ChangeFeedNotifier] = {}

    # Authorization

    async def request_access(
        self, senior_email: str, caregiver_id: str, caregiver_email: str
    ) -> Result[AccessRequest, CareError]:
        return await self.authorization.request_access(senior_email, caregiver_id, caregiver_email)

    async def approve(
        self, relationship_id: str, senior_id: str, code: str | None = None
    ) -> Result[ApprovalOutcome, CareError]:
        return await self.authorization.approve(relationship_id, senior_id, code)

    async def reject(self, relationship_id: str, senior_id: str) -> Result[ApprovalOutcome, CareError]:
        return await self.authorization.reject(relationship_id, senior_id)

    async def verify_access(
        self, caregiver_id: str, senior_email: str
    ) -> Result[Relationship, CareError]:
        return await self.authorization.verify_access(caregiver_id, senior_email)

    async def list_relationships(self, caregiver_id: str) -> Result[list[Relationship], CareError]:
        return await self.authorization.list_relationships(caregiver_id)

    # Reads

    async def get_today_schedule(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[ScheduleItem], CareError]:
        return await self.schedule.get_today_schedule(caregiver_id, senior_email, now)

    async def get_emergency_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[EmergencyAlert], CareError]:
        return await self.alerts.get_emergency_alerts(caregiver_id, senior_email, now)

    async def get_medication_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[MedicationAlert], CareError]:
        return await self.alerts.get_medication_alerts(caregiver_id, senior_email, now)

    async def get_inactivity_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[InactivityAlert], CareError]:
        return await self.alerts.get_inactivity_alerts(caregiver_id, senior_email, now)

    async def get_health_trends(
        self, caregiver_id: str, senior_email: str, timeframe: Timeframe = "7d"
    ) -> Result[list[HealthTrend], CareError]:
        return await self.trends.get_health_trends(caregiver_id, senior_email, timeframe)

    async def get_daily_activities(
        self, caregiver_id: str, senior_email: str, timeframe: Timeframe = "7d"
    ) -> Result[list[DailyActivity], CareError]:
        return await self.trends.get_daily_activities(caregiver_id, senior_email, timeframe)

    async def get_dashboard_stats(
        self, caregiver_id: str, senior_email: str, timeframe: Timeframe = "7d"
    ) -> Result[DashboardStats, CareError]:
        return await self.trends.get_dashboard_stats(caregiver_id, senior_email, timeframe)

    async def load_dashboard(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[DashboardSnapshot, CareError]:
        """Schedule and ranked alerts for one senior, degrading per sub-query."""
        now = now or self._clock()
        access = await self.authorization.verify_access(caregiver_id, senior_email)
        if access.is_err():
            return Result.err(access.unwrap_err())

        relationship = access.unwrap()
        owner_id = relationship.senior_id or ""

        schedule_result, alerts_result = await asyncio.gather(
            self.schedule.schedule_for_owner(owner_id, now),
            self.alerts.rank_for_owner(owner_id, now),
        )

        failures: dict[str, str] = {}
        if schedule_result.is_err():
            failures["schedule"] = schedule_result.unwrap_err().kind.value
        if alerts_result.is_err():
            failures["alerts"] = alerts_result.unwrap_err().kind.value

        snapshot = DashboardSnapshot(
            relationship=relationship,
            schedule=schedule_result.unwrap_or(None),  # type: ignore[arg-type]
            alerts=alerts_result.unwrap_or(None),  # type: ignore[arg-type]
            failures=failures,
            generated_at=now,
        )
        self.logger.info(
            "dashboard_loaded",
            caregiver_id=caregiver_id,
            relationship_id=relationship.id,
            degraded=snapshot.degraded,
        )
        return Result.ok(snapshot)

    # Change feed

    async def subscribe(self, caregiver_id: str) -> ChangeFeedNotifier:
        """Start (or reuse) the caregiver's change-feed listener."""
        notifier = self._notifiers.get(caregiver_id)
        if notifier is None:
            notifier = ChangeFeedNotifier(self.feed, caregiver_id, self.config)
            self._notifiers[caregiver_id] = notifier
        await notifier.subscribe()
        return notifier

    async def unsubscribe(self, caregiver_id: str) -> None:
        notifier = self._notifiers.pop(caregiver_id, None)
        if notifier is not None:
            await notifier.unsubscribe()

    async def close(self) -> None:
        """Tear down every live subscription."""
        for caregiver_id in list(self._notifiers):
            await self.unsubscribe(caregiver_id)
        self.logger.info("caregiver_dashboard_closed")
