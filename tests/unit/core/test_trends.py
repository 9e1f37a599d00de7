"""Tests for health trends, daily activity summaries and dashboard stats."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest
from conftest import CAREGIVER_ID, NOW, SENIOR_EMAIL, SENIOR_ID

from adapters.memory.store import InMemoryCareStore
from core.config import AppConfig
from core.domain.errors import ErrorKind, ValidationError
from core.domain.models import (
    ActivityRecord,
    HealthMetricSample,
    MedicationDefinition,
    MedicationUsageEvent,
    MetricType,
)
from core.services.authorization import RelationshipAuthorizationService
from core.services.trends import (
    TrendsService,
    activity_score,
    build_daily_activities,
    build_health_trends,
    compute_dashboard_stats,
    window_start,
)

TODAY = NOW.date()
YESTERDAY = TODAY - timedelta(days=1)


def _reading(
    sample_id: str,
    metric_type: MetricType,
    recorded_at: datetime,
    value: float | None = None,
    **kwargs,
) -> HealthMetricSample:
    return HealthMetricSample(
        id=sample_id,
        owner_id=SENIOR_ID,
        metric_type=metric_type,
        value=value,
        unit=kwargs.pop("unit", ""),
        recorded_at=recorded_at,
        **kwargs,
    )


def _activity(
    activity_id: str, kind: str, recorded_at: datetime, seconds: int = 600, distance: float = 0.0
) -> ActivityRecord:
    return ActivityRecord(
        id=activity_id,
        owner_id=SENIOR_ID,
        type=kind,
        duration_seconds=seconds,
        distance=distance,
        created_at=recorded_at,
    )


def _medication(medication_id: str, **kwargs) -> MedicationDefinition:
    return MedicationDefinition(
        id=medication_id,
        owner_id=SENIOR_ID,
        name=f"Medication {medication_id}",
        dosage="10mg",
        times=["08:00"],
        **kwargs,
    )


class TestWindow:
    @pytest.mark.parametrize("timeframe,days", [("7d", 7), ("30d", 30), ("90d", 90)])
    def test_timeframes(self, timeframe: str, days: int) -> None:
        assert window_start(timeframe, NOW) == NOW - timedelta(days=days)

    def test_unknown_timeframe(self) -> None:
        with pytest.raises(ValidationError, match="Unknown timeframe"):
            window_start("1y", NOW)


class TestHealthTrends:
    def test_latest_reading_per_day_oldest_day_first(self) -> None:
        samples = [
            _reading("hr-late", MetricType.HEART_RATE, NOW - timedelta(hours=1), 88),
            _reading("hr-early", MetricType.HEART_RATE, NOW - timedelta(hours=3), 72),
            _reading(
                "bp", MetricType.BLOOD_PRESSURE, NOW - timedelta(days=1),
                systolic=135, diastolic=85,
            ),
            _reading("o2", MetricType.OXYGEN_LEVEL, NOW - timedelta(days=1), 97),
        ]

        trends = build_health_trends(samples, NOW)

        assert [t.day for t in trends] == [YESTERDAY, TODAY]
        assert trends[0].blood_pressure == "135/85"
        assert trends[0].oxygen_level == 97
        assert trends[0].heart_rate is None
        assert trends[1].heart_rate == 88
        assert trends[1].blood_pressure is None

    def test_blood_pressure_without_both_values_is_skipped(self) -> None:
        sample = _reading("bp", MetricType.BLOOD_PRESSURE, NOW, systolic=135)

        trends = build_health_trends([sample], NOW)

        assert len(trends) == 1
        assert trends[0].blood_pressure is None

    def test_naive_readings_are_grouped_as_utc(self) -> None:
        naive = datetime(2024, 5, 13, 23, 30)
        trends = build_health_trends([_reading("w", MetricType.WEIGHT, naive, 70.5)], NOW)

        assert [(t.day, t.weight) for t in trends] == [(YESTERDAY, 70.5)]


class TestDailyActivities:
    def test_full_day_summary_and_score(self) -> None:
        morning = NOW - timedelta(hours=1)
        activities = [
            _activity("walk", "walk", morning, seconds=1800),
            _activity("stretch", "exercise", morning),
            _activity("breath-1", "breathing", morning),
            _activity("breath-2", "breathing", morning),
            _activity("game", "game", morning),
            _activity("sleep", "sleep", morning, seconds=27000),
            _activity("walk-y", "walking", NOW - timedelta(days=1), seconds=600),
        ]
        definitions = [_medication("med-1"), _medication("med-2")]
        usage = [
            MedicationUsageEvent(id="u1", medication_id="med-1", owner_id=SENIOR_ID, taken_at=morning),
            MedicationUsageEvent(id="u2", medication_id="med-1", owner_id=SENIOR_ID, taken_at=NOW),
            MedicationUsageEvent(id="u3", medication_id="gone", owner_id=SENIOR_ID, taken_at=NOW),
        ]
        samples = [_reading("hr", MetricType.HEART_RATE, morning, 70)]

        days = build_daily_activities(SENIOR_ID, activities, definitions, usage, samples, NOW)

        assert [d.day for d in days] == [TODAY, YESTERDAY]
        today = days[0]
        assert today.id == f"{SENIOR_ID}_{TODAY.isoformat()}"
        assert today.walking_minutes == 30
        assert today.stretching_completed
        assert today.breathing_sessions == 2
        assert today.brain_games_played == 1
        assert today.sleep_hours == 7.5
        assert (today.medications_taken, today.total_medications) == (1, 2)
        assert today.health_readings == 1
        assert today.activity_score == 90

        yesterday = days[1]
        assert yesterday.walking_minutes == 10
        assert yesterday.health_readings == 0
        assert yesterday.activity_score == 20

    def test_days_without_activity_are_omitted(self) -> None:
        samples = [_reading("hr", MetricType.HEART_RATE, NOW, 70)]
        assert build_daily_activities(SENIOR_ID, [], [], [], samples, NOW) == []

    @pytest.mark.parametrize(
        "args,expected",
        [
            ((0, False, 0, 0, 0, 0), 0),
            ((15, True, 1, 1, 2, 2), 100),
            ((0, False, 0, 0, 1, 3), 7),
        ],
    )
    def test_activity_score(self, args: tuple, expected: int) -> None:
        assert activity_score(*args) == expected


class TestDashboardStats:
    def test_totals(self) -> None:
        activities = [
            _activity("w1", "walk", NOW, distance=1.5),
            _activity("w2", "walking", NOW, distance=0.75),
            _activity("s", "sleep", NOW, seconds=25200),
            _activity("g1", "game", NOW),
            _activity("g2", "game", NOW),
        ]
        definitions = [
            _medication("soon", refill_date=TODAY + timedelta(days=3)),
            _medication("later", refill_date=TODAY + timedelta(days=4)),
            _medication("none"),
            _medication("retired", is_active=False, refill_date=TODAY),
        ]
        samples = [_reading("hr", MetricType.HEART_RATE, NOW, 70)]

        stats = compute_dashboard_stats(activities, definitions, samples, TODAY)

        assert stats.walk_distance == 2.25
        assert stats.sleep_hours == 7.0
        assert stats.games_played == 2
        assert stats.is_active
        assert stats.active_medications == 3
        assert stats.critical_refills == 1
        assert stats.health_readings == 1

    def test_quiet_senior(self) -> None:
        stats = compute_dashboard_stats([], [], [], TODAY)

        assert not stats.is_active
        assert stats.walk_distance == 0.0


class TestTrendsService:
    @pytest.fixture
    def service(
        self, approved_store: InMemoryCareStore, config: AppConfig, clock: Callable[[], datetime]
    ) -> TrendsService:
        authorization = RelationshipAuthorizationService(approved_store, config, clock=clock)
        return TrendsService(approved_store, authorization, config, clock=clock)

    @pytest.fixture
    def seeded(self, approved_store: InMemoryCareStore) -> InMemoryCareStore:
        approved_store.add_health_sample(
            _reading("recent", MetricType.HEART_RATE, NOW - timedelta(days=2), 80)
        )
        approved_store.add_health_sample(
            _reading("older", MetricType.HEART_RATE, NOW - timedelta(days=10), 76)
        )
        approved_store.add_health_sample(
            HealthMetricSample(
                id="theirs",
                owner_id="senior-2",
                metric_type=MetricType.WEIGHT,
                value=80,
                unit="kg",
                recorded_at=NOW,
            )
        )
        approved_store.add_activity(_activity("walk", "walk", NOW - timedelta(hours=2), distance=2.0))
        approved_store.add_activity(_activity("old-walk", "walk", NOW - timedelta(days=20)))
        approved_store.add_medication(_medication("med-1", refill_date=TODAY))
        return approved_store

    async def test_trends_follow_the_timeframe(
        self, service: TrendsService, seeded: InMemoryCareStore
    ) -> None:
        week = (await service.get_health_trends(CAREGIVER_ID, SENIOR_EMAIL, "7d")).unwrap()
        month = (await service.get_health_trends(CAREGIVER_ID, SENIOR_EMAIL, "30d")).unwrap()

        assert [t.heart_rate for t in week] == [80]
        assert [t.heart_rate for t in month] == [76, 80]

    async def test_daily_activities_through_service(
        self, service: TrendsService, seeded: InMemoryCareStore
    ) -> None:
        days = (await service.get_daily_activities(CAREGIVER_ID, SENIOR_EMAIL, "7d")).unwrap()

        assert [d.day for d in days] == [TODAY]
        assert days[0].total_medications == 1
        assert days[0].activity_score == 20

    async def test_dashboard_stats_through_service(
        self, service: TrendsService, seeded: InMemoryCareStore
    ) -> None:
        stats = (await service.get_dashboard_stats(CAREGIVER_ID, SENIOR_EMAIL, "30d")).unwrap()

        assert stats.walk_distance == 2.0
        assert stats.critical_refills == 1
        assert stats.health_readings == 2

    async def test_unapproved_caregiver_is_denied(
        self, service: TrendsService, seeded: InMemoryCareStore
    ) -> None:
        results = [
            await service.get_health_trends("caregiver-2", SENIOR_EMAIL),
            await service.get_daily_activities("caregiver-2", SENIOR_EMAIL),
            await service.get_dashboard_stats("caregiver-2", SENIOR_EMAIL),
        ]

        assert all(r.unwrap_err().kind is ErrorKind.NOT_APPROVED for r in results)

    async def test_unknown_timeframe_is_a_validation_error(self, service: TrendsService) -> None:
        result = await service.get_health_trends(CAREGIVER_ID, SENIOR_EMAIL, "1y")  # type: ignore[arg-type]
        assert result.unwrap_err().kind is ErrorKind.VALIDATION_ERROR

    async def test_activity_outage_is_store_unavailable(
        self, service: TrendsService, seeded: InMemoryCareStore
    ) -> None:
        seeded.failing_surfaces.add("activities")

        result = await service.get_daily_activities(CAREGIVER_ID, SENIOR_EMAIL)

        assert result.unwrap_err().kind is ErrorKind.STORE_UNAVAILABLE
