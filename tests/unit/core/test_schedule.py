"""
Tests for today's medication schedule.

The resolver is pure, so most cases run without a store; the service tests
cover the access gate and the store round trips.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from conftest import CAREGIVER_ID, SENIOR_EMAIL, SENIOR_ID
from hypothesis import given
from hypothesis import strategies as st

from adapters.memory.store import InMemoryCareStore
from core.config import AppConfig
from core.domain.errors import ErrorKind, ValidationError
from core.domain.models import MedicationDefinition, MedicationUsageEvent, ScheduleStatus
from core.services.authorization import RelationshipAuthorizationService
from core.services.schedule import (
    ScheduleService,
    classify_dose,
    compute_medication_stats,
    parse_clock_time,
    resolve_today_schedule,
    validate_medication_input,
)

TODAY = date(2024, 5, 14)


def _at(hour: int, minute: int = 0, day: date = TODAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def _daily(medication_id: str = "med-1", times: list[str] | None = None, **kwargs) -> MedicationDefinition:
    return MedicationDefinition(
        id=medication_id,
        owner_id=SENIOR_ID,
        name=kwargs.pop("name", "Metformin"),
        dosage="500mg",
        times=times if times is not None else ["08:00"],
        **kwargs,
    )


def _prn(medication_id: str = "prn-1") -> MedicationDefinition:
    return MedicationDefinition(
        id=medication_id,
        owner_id=SENIOR_ID,
        name="Ibuprofen",
        dosage="200mg",
        frequency="as needed",
        is_daily=False,
    )


def _usage(medication_id: str, taken_at: datetime, event_id: str = "use-1") -> MedicationUsageEvent:
    return MedicationUsageEvent(
        id=event_id, medication_id=medication_id, owner_id=SENIOR_ID, taken_at=taken_at
    )


class TestClockTimes:
    @pytest.mark.parametrize(
        "value,minutes", [("08:00", 480), ("8:05", 485), ("00:00", 0), ("23:59", 1439)]
    )
    def test_valid_times(self, value: str, minutes: int) -> None:
        assert parse_clock_time(value) == minutes

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "", "8"])
    def test_invalid_times(self, value: str) -> None:
        with pytest.raises(ValidationError, match="Invalid time format"):
            parse_clock_time(value)

    @pytest.mark.parametrize(
        "offset,expected",
        [
            (-31, ScheduleStatus.OVERDUE),
            (-30, ScheduleStatus.DUE_NOW),
            (0, ScheduleStatus.DUE_NOW),
            (30, ScheduleStatus.DUE_NOW),
            (31, ScheduleStatus.UPCOMING),
        ],
    )
    def test_due_window_boundaries(self, offset: int, expected: ScheduleStatus) -> None:
        assert classify_dose(600 + offset, 600) is expected


class TestResolveTodaySchedule:
    def test_dose_five_minutes_late_is_due_now(self) -> None:
        schedule = resolve_today_schedule([_daily()], [], _at(8, 5))

        assert len(schedule) == 1
        item = schedule[0]
        assert item.id == "med-1_08:00"
        assert item.status is ScheduleStatus.DUE_NOW
        assert item.is_daily is True

    def test_dose_forty_five_minutes_late_is_overdue(self) -> None:
        schedule = resolve_today_schedule([_daily()], [], _at(8, 45))
        assert schedule[0].status is ScheduleStatus.OVERDUE

    def test_one_item_per_time_sorted_by_time(self) -> None:
        definitions = [
            _daily("med-b", ["20:00", "08:00"]),
            _daily("med-a", ["08:00", "12:30"]),
        ]

        schedule = resolve_today_schedule(definitions, [], _at(7))

        assert [(i.scheduled_time, i.medication_id) for i in schedule] == [
            ("08:00", "med-a"),
            ("08:00", "med-b"),
            ("12:30", "med-a"),
            ("20:00", "med-b"),
        ]

    def test_morning_and_evening_doses_at_five_past_eight(self) -> None:
        schedule = resolve_today_schedule([_daily(times=["08:00", "20:00"])], [], _at(8, 5))

        assert [(i.scheduled_time, i.status) for i in schedule] == [
            ("08:00", ScheduleStatus.DUE_NOW),
            ("20:00", ScheduleStatus.UPCOMING),
        ]

    def test_equivalent_times_collapse_to_one_item(self) -> None:
        schedule = resolve_today_schedule([_daily(times=["08:00", "8:00", " 08:00"])], [], _at(7))

        assert [i.id for i in schedule] == ["med-1_08:00"]

    def test_naive_usage_times_are_read_as_utc(self) -> None:
        event = _usage("prn-1", datetime(2024, 5, 14, 9, 15))

        schedule = resolve_today_schedule([_prn()], [event], _at(10))

        assert event.taken_at.tzinfo is UTC
        assert [i.scheduled_time for i in schedule] == ["09:15"]

    def test_inactive_medications_are_skipped(self) -> None:
        assert resolve_today_schedule([_daily(is_active=False)], [], _at(8)) == []

    def test_prn_appears_only_when_taken_today(self) -> None:
        definitions = [_prn()]
        usage = [
            _usage("prn-1", _at(7, 30), "use-1"),
            _usage("prn-1", _at(9, 15), "use-2"),
        ]

        schedule = resolve_today_schedule(definitions, usage, _at(10))

        assert len(schedule) == 1
        item = schedule[0]
        assert item.name == "Ibuprofen (PRN)"
        assert item.scheduled_time == "09:15"
        assert item.status is ScheduleStatus.UPCOMING
        assert item.is_daily is False

    def test_prn_taken_yesterday_is_hidden(self) -> None:
        usage = [_usage("prn-1", _at(22, 0, TODAY - timedelta(days=1)))]
        assert resolve_today_schedule([_prn()], usage, _at(10)) == []

    def test_day_follows_the_timezone_of_now(self) -> None:
        local = timezone(timedelta(hours=-5))
        now = datetime(2024, 5, 14, 21, 0, tzinfo=local)
        # 01:30 UTC on the 15th is 20:30 on the 14th at UTC-5
        usage = [_usage("prn-1", datetime(2024, 5, 15, 1, 30, tzinfo=UTC))]

        schedule = resolve_today_schedule([_prn()], usage, now)

        assert [i.scheduled_time for i in schedule] == ["20:30"]

    @given(
        times=st.lists(
            st.tuples(st.integers(0, 23), st.integers(0, 59)), min_size=1, max_size=6, unique=True
        ),
        now_minutes=st.integers(0, 1439),
    )
    def test_schedule_is_always_sorted(
        self, times: list[tuple[int, int]], now_minutes: int
    ) -> None:
        clock_times = [f"{h:02d}:{m:02d}" for h, m in times]
        now = _at(now_minutes // 60, now_minutes % 60)

        schedule = resolve_today_schedule([_daily(times=clock_times)], [], now)

        assert len(schedule) == len(clock_times)
        assert [i.scheduled_time for i in schedule] == sorted(clock_times)


class TestMedicationStats:
    def test_counts(self) -> None:
        definitions = [
            _daily("med-1", ["08:00", "20:00"]),
            _daily("med-2", ["06:00"]),
            _daily("med-3", ["09:00"], is_active=False),
            _prn(),
        ]
        usage = [_usage("prn-1", _at(7))]

        stats = compute_medication_stats(definitions, usage, _at(8, 10))

        assert stats.total_medications == 4
        assert stats.active_daily_medications == 2
        assert stats.active_prn_medications == 1
        assert stats.total_reminders == 3
        assert stats.overdue_medications == 1
        assert stats.medications_due_now == 1
        assert stats.prn_used_today == 1

    def test_prn_usage_counts_only_active_as_needed_medications(self) -> None:
        retired = _prn("prn-old").model_copy(update={"is_active": False})
        usage = [
            _usage("prn-1", _at(7), "use-1"),
            _usage("med-1", _at(8), "use-2"),
            _usage("prn-old", _at(9), "use-3"),
        ]

        stats = compute_medication_stats([_daily(), _prn(), retired], usage, _at(10))

        assert stats.prn_used_today == 1

    def test_equivalent_times_count_as_one_reminder(self) -> None:
        stats = compute_medication_stats([_daily(times=["08:00", "8:00"])], [], _at(7))
        assert stats.total_reminders == 1


class TestValidation:
    def test_valid_definition_passes(self) -> None:
        validate_medication_input(_daily(refill_date=TODAY), TODAY)

    def test_every_problem_is_reported(self) -> None:
        definition = _daily(
            times=["08:00", "8:00", "25:00"], name=" ", refill_date=TODAY - timedelta(days=1)
        )

        with pytest.raises(ValidationError) as exc_info:
            validate_medication_input(definition, TODAY)

        problems = exc_info.value.problems
        assert "Medication name is required" in problems
        assert "Duplicate time: 8:00" in problems
        assert any("25:00" in p for p in problems)
        assert "Refill date cannot be in the past" in problems

    def test_daily_needs_a_time(self) -> None:
        with pytest.raises(ValidationError, match="At least one time"):
            validate_medication_input(_daily(times=[]), TODAY)

    def test_prn_cannot_carry_times(self) -> None:
        definition = _prn().model_copy(update={"times": ["08:00"]})
        with pytest.raises(ValidationError, match="As-needed"):
            validate_medication_input(definition, TODAY)


class TestScheduleService:
    @pytest.fixture
    def service(
        self, approved_store: InMemoryCareStore, config: AppConfig, clock: Callable[[], datetime]
    ) -> ScheduleService:
        authorization = RelationshipAuthorizationService(approved_store, config, clock=clock)
        return ScheduleService(approved_store, authorization, config, clock=clock)

    async def test_schedule_for_approved_caregiver(
        self, service: ScheduleService, approved_store: InMemoryCareStore
    ) -> None:
        approved_store.add_medication(_daily("med-1", ["08:00", "09:00"]))
        approved_store.add_medication(
            MedicationDefinition(id="other", owner_id="senior-2", name="X", dosage="1", times=["08:00"])
        )

        result = await service.get_today_schedule(CAREGIVER_ID, SENIOR_EMAIL)

        schedule = result.unwrap()
        assert [i.id for i in schedule] == ["med-1_08:00", "med-1_09:00"]
        assert [i.status for i in schedule] == [ScheduleStatus.DUE_NOW, ScheduleStatus.UPCOMING]

    async def test_unapproved_caregiver_gets_no_data(self, service: ScheduleService) -> None:
        result = await service.get_today_schedule("caregiver-2", SENIOR_EMAIL)
        assert result.unwrap_err().kind is ErrorKind.NOT_APPROVED

    async def test_medication_outage_is_store_unavailable(
        self, service: ScheduleService, approved_store: InMemoryCareStore
    ) -> None:
        approved_store.failing_surfaces.add("medications")

        result = await service.get_today_schedule(CAREGIVER_ID, SENIOR_EMAIL)

        assert result.unwrap_err().kind is ErrorKind.STORE_UNAVAILABLE

    async def test_stats_through_service(
        self, service: ScheduleService, approved_store: InMemoryCareStore
    ) -> None:
        approved_store.add_medication(_daily())

        stats = (await service.get_medication_stats(CAREGIVER_ID, SENIOR_EMAIL)).unwrap()

        assert stats.medications_due_now == 1

    async def test_save_medication(
        self, service: ScheduleService, approved_store: InMemoryCareStore
    ) -> None:
        result = await service.save_medication(CAREGIVER_ID, SENIOR_EMAIL, _daily())

        assert result.is_ok()
        assert [m.id for m in await approved_store.list_medications(SENIOR_ID)] == ["med-1"]

    async def test_save_for_another_senior_is_denied(self, service: ScheduleService) -> None:
        foreign = _daily().model_copy(update={"owner_id": "senior-2"})

        result = await service.save_medication(CAREGIVER_ID, SENIOR_EMAIL, foreign)

        assert result.unwrap_err().kind is ErrorKind.NOT_APPROVED

    async def test_save_rejects_invalid_definition(self, service: ScheduleService) -> None:
        result = await service.save_medication(CAREGIVER_ID, SENIOR_EMAIL, _daily(times=["99:99"]))
        assert result.unwrap_err().kind is ErrorKind.VALIDATION_ERROR

    async def test_save_cannot_take_over_another_seniors_medication(
        self, service: ScheduleService, approved_store: InMemoryCareStore
    ) -> None:
        theirs = _daily("med-9").model_copy(update={"owner_id": "senior-2"})
        approved_store.add_medication(theirs)

        result = await service.save_medication(
            CAREGIVER_ID, SENIOR_EMAIL, _daily("med-9", name="Renamed")
        )

        assert result.unwrap_err().kind is ErrorKind.NOT_APPROVED
        assert await approved_store.get_medication("med-9") == theirs
        assert await approved_store.list_medications(SENIOR_ID) == []
