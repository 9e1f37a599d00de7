"""
Health trends, daily activity summaries and headline stats.

Each view covers a 7, 30 or 90 day window ending at `now`. The builders are
pure functions over store snapshots; `TrendsService` puts the
approved-relationship check in front of them. Days are calendar days in the
timezone `now` carries.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any, Literal, TypeVar

import structlog

from core.config import AppConfig, get_config
from core.domain.errors import CareError, ValidationError
from core.domain.models import (
    ActivityRecord,
    DailyActivity,
    DashboardStats,
    HealthMetricSample,
    HealthTrend,
    MedicationDefinition,
    MedicationUsageEvent,
    MetricType,
)
from core.services.authorization import RelationshipAuthorizationService
from core.services.result import Result
from core.services.schedule import as_local, day_bounds
from core.services.store import CareStore, store_call

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Timeframe = Literal["7d", "30d", "90d"]

TIMEFRAME_DAYS: dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}

WALK_TYPES = frozenset({"walk", "walking"})
STRETCHING_TYPE = "exercise"
BREATHING_TYPE = "breathing"
GAME_TYPE = "game"
SLEEP_TYPE = "sleep"

_TREND_FIELDS = {
    MetricType.HEART_RATE: "heart_rate",
    MetricType.WEIGHT: "weight",
    MetricType.BODY_TEMPERATURE: "temperature",
    MetricType.OXYGEN_LEVEL: "oxygen_level",
    MetricType.BLOOD_SUGAR: "blood_sugar",
}


def window_start(timeframe: str, now: datetime) -> datetime:
    days = TIMEFRAME_DAYS.get(timeframe)
    if days is None:
        raise ValidationError(f"Unknown timeframe: {timeframe}. Use 7d, 30d or 90d")
    return now - timedelta(days=days)


def build_health_trends(
    samples: Iterable[HealthMetricSample], now: datetime
) -> list[HealthTrend]:
    """One entry per day with readings, oldest first; the day's latest reading wins."""
    by_day: dict[date, dict[str, Any]] = defaultdict(dict)

    for sample in sorted(samples, key=lambda s: s.recorded_at):
        reading = by_day[as_local(sample.recorded_at, now).date()]
        if sample.metric_type is MetricType.BLOOD_PRESSURE:
            if sample.systolic is not None and sample.diastolic is not None:
                reading["blood_pressure"] = f"{sample.systolic:g}/{sample.diastolic:g}"
        elif sample.value is not None:
            reading[_TREND_FIELDS[sample.metric_type]] = sample.value

    return [HealthTrend(day=day, **reading) for day, reading in sorted(by_day.items())]


def activity_score(
    walking_minutes: float,
    stretching_completed: bool,
    breathing_sessions: int,
    brain_games_played: int,
    medications_taken: int,
    total_medications: int,
) -> int:
    """Five equally weighted habits, 20 points each."""
    adherence = medications_taken / total_medications if total_medications else 0.0
    habits = (
        (walking_minutes > 0)
        + stretching_completed
        + (breathing_sessions > 0)
        + (brain_games_played > 0)
    )
    return round((habits + adherence) * 20)


def build_daily_activities(
    owner_id: str,
    activities: Iterable[ActivityRecord],
    definitions: Iterable[MedicationDefinition],
    usage_events: Iterable[MedicationUsageEvent],
    samples: Iterable[HealthMetricSample],
    now: datetime,
) -> list[DailyActivity]:
    """
    Summarize each day that has at least one recorded activity.

    Medications taken counts the distinct active medications with a usage
    event that day. Most recent day first.
    """
    active_ids = {m.id for m in definitions if m.is_active}

    activities_by_day: dict[date, list[ActivityRecord]] = defaultdict(list)
    for activity in activities:
        activities_by_day[as_local(activity.created_at, now).date()].append(activity)

    taken_by_day: dict[date, set[str]] = defaultdict(set)
    for event in usage_events:
        if event.medication_id in active_ids:
            taken_by_day[as_local(event.taken_at, now).date()].add(event.medication_id)

    readings_by_day: dict[date, int] = defaultdict(int)
    for sample in samples:
        readings_by_day[as_local(sample.recorded_at, now).date()] += 1

    summaries: list[DailyActivity] = []
    for day, day_activities in activities_by_day.items():
        walking_seconds = sum(a.duration_seconds for a in day_activities if a.type in WALK_TYPES)
        sleep_seconds = sum(a.duration_seconds for a in day_activities if a.type == SLEEP_TYPE)
        stretching = any(a.type == STRETCHING_TYPE for a in day_activities)
        breathing = sum(1 for a in day_activities if a.type == BREATHING_TYPE)
        games = sum(1 for a in day_activities if a.type == GAME_TYPE)
        taken = len(taken_by_day[day])

        summaries.append(
            DailyActivity(
                id=f"{owner_id}_{day.isoformat()}",
                owner_id=owner_id,
                day=day,
                walking_minutes=round(walking_seconds / 60),
                stretching_completed=stretching,
                breathing_sessions=breathing,
                sleep_hours=round(sleep_seconds / 3600, 1),
                brain_games_played=games,
                medications_taken=taken,
                total_medications=len(active_ids),
                health_readings=readings_by_day[day],
                activity_score=activity_score(
                    walking_seconds / 60, stretching, breathing, games, taken, len(active_ids)
                ),
            )
        )

    summaries.sort(key=lambda s: s.day, reverse=True)
    return summaries


def compute_dashboard_stats(
    activities: list[ActivityRecord],
    definitions: list[MedicationDefinition],
    samples: list[HealthMetricSample],
    today: date,
    *,
    critical_days: int = 3,
) -> DashboardStats:
    active = [m for m in definitions if m.is_active]
    return DashboardStats(
        walk_distance=sum(a.distance for a in activities if a.type in WALK_TYPES),
        sleep_hours=round(
            sum(a.duration_seconds for a in activities if a.type == SLEEP_TYPE) / 3600, 1
        ),
        games_played=sum(1 for a in activities if a.type == GAME_TYPE),
        is_active=bool(activities),
        active_medications=len(active),
        critical_refills=sum(
            1
            for m in active
            if m.refill_date is not None and (m.refill_date - today).days <= critical_days
        ),
        health_readings=len(samples),
    )


class TrendsService:
    """Access-gated trend views over a senior's recent history."""

    def __init__(
        self,
        store: CareStore,
        authorization: RelationshipAuthorizationService,
        config: AppConfig | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.authorization = authorization
        self.config = config or get_config()
        self._clock = clock
        self.logger = logger.bind(component="trends")

    async def _call(self, operation: Awaitable[T]) -> T:
        return await store_call(operation, self.config.store.timeout_seconds)

    async def _window(
        self, caregiver_id: str, senior_email: str, timeframe: str, now: datetime
    ) -> tuple[str, datetime]:
        relationship = (await self.authorization.verify_access(caregiver_id, senior_email)).unwrap()
        return relationship.senior_id or "", window_start(timeframe, now)

    async def _samples(self, owner_id: str, since: datetime) -> list[HealthMetricSample]:
        return await self._call(
            self.store.list_health_samples(
                owner_id, since, limit=self.config.alerts.trend_sample_limit
            )
        )

    async def get_health_trends(
        self,
        caregiver_id: str,
        senior_email: str,
        timeframe: Timeframe = "7d",
        now: datetime | None = None,
    ) -> Result[list[HealthTrend], CareError]:
        now = now or self._clock()
        try:
            owner_id, since = await self._window(caregiver_id, senior_email, timeframe, now)
            trends = build_health_trends(await self._samples(owner_id, since), now)
        except CareError as e:
            self.logger.warning("health_trends_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)

        self.logger.debug("health_trends_built", timeframe=timeframe, days=len(trends))
        return Result.ok(trends)

    async def get_daily_activities(
        self,
        caregiver_id: str,
        senior_email: str,
        timeframe: Timeframe = "7d",
        now: datetime | None = None,
    ) -> Result[list[DailyActivity], CareError]:
        now = now or self._clock()
        try:
            owner_id, since = await self._window(caregiver_id, senior_email, timeframe, now)
            activities = await self._call(self.store.list_activities(owner_id, since))
            definitions = await self._call(self.store.list_medications(owner_id, active_only=True))
            usage = await self._call(
                self.store.list_usage_events(owner_id, since, day_bounds(now)[1])
            )
            samples = await self._samples(owner_id, since)
        except CareError as e:
            self.logger.warning("daily_activities_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)

        summaries = build_daily_activities(owner_id, activities, definitions, usage, samples, now)
        self.logger.debug("daily_activities_built", timeframe=timeframe, days=len(summaries))
        return Result.ok(summaries)

    async def get_dashboard_stats(
        self,
        caregiver_id: str,
        senior_email: str,
        timeframe: Timeframe = "7d",
        now: datetime | None = None,
    ) -> Result[DashboardStats, CareError]:
        now = now or self._clock()
        try:
            owner_id, since = await self._window(caregiver_id, senior_email, timeframe, now)
            activities = await self._call(self.store.list_activities(owner_id, since))
            definitions = await self._call(self.store.list_medications(owner_id, active_only=True))
            samples = await self._samples(owner_id, since)
        except CareError as e:
            self.logger.warning("dashboard_stats_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)

        stats = compute_dashboard_stats(
            activities,
            definitions,
            samples,
            now.date(),
            critical_days=self.config.alerts.refill_critical_days,
        )
        return Result.ok(stats)
