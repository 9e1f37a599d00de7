"""
Today's medication schedule.

`resolve_today_schedule` is a pure function of (definitions, usage events,
now): it can be tested without a store. `ScheduleService` wraps it with the
authorization gate and the store reads.
"""

import re
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar

import structlog

from core.config import AppConfig, get_config
from core.domain.errors import CareError, NotApprovedError, ValidationError
from core.domain.models import (
    MedicationDefinition,
    MedicationStats,
    MedicationUsageEvent,
    ScheduleItem,
    ScheduleStatus,
)
from core.services.authorization import RelationshipAuthorizationService
from core.services.result import Result
from core.services.store import CareStore, store_call

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_CLOCK_TIME = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_clock_time(value: str) -> int:
    """`HH:MM` to minutes since midnight."""
    match = _CLOCK_TIME.match(value.strip())
    if match is None:
        raise ValidationError(f"Invalid time format: {value}. Use HH:MM format")
    return int(match.group(1)) * 60 + int(match.group(2))


def classify_dose(scheduled_minutes: int, now_minutes: int, window_minutes: int = 30) -> ScheduleStatus:
    diff = scheduled_minutes - now_minutes
    if diff < -window_minutes:
        return ScheduleStatus.OVERDUE
    if diff <= window_minutes:
        return ScheduleStatus.DUE_NOW
    return ScheduleStatus.UPCOMING


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """[start_of_day, end_of_day) in the timezone `now` carries."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def as_local(moment: datetime, now: datetime) -> datetime:
    """`moment` in the timezone `now` carries."""
    if moment.tzinfo is not None and now.tzinfo is not None:
        return moment.astimezone(now.tzinfo)
    return moment


def _used_today(
    events: Iterable[MedicationUsageEvent], now: datetime
) -> dict[str, datetime]:
    """Latest usage today per medication id."""
    start, end = day_bounds(now)
    latest: dict[str, datetime] = {}
    for event in events:
        taken_at = as_local(event.taken_at, now)
        if not start <= taken_at < end:
            continue
        if event.medication_id not in latest or taken_at > latest[event.medication_id]:
            latest[event.medication_id] = taken_at
    return latest


def resolve_today_schedule(
    definitions: Iterable[MedicationDefinition],
    usage_events: Iterable[MedicationUsageEvent],
    now: datetime,
    *,
    due_window_minutes: int = 30,
) -> list[ScheduleItem]:
    """
    Expand medication definitions into today's time-stamped schedule.

    Daily medications yield one item per clock-time, classified against
    `now`. As-needed medications only appear once taken today, at the time of
    the latest dose and always as upcoming. Sorted by time of day, then
    medication id.
    """
    now_minutes = now.hour * 60 + now.minute
    prn_usage = _used_today(usage_events, now)
    keyed: list[tuple[int, str, ScheduleItem]] = []

    for medication in definitions:
        if not medication.is_active:
            continue

        if medication.is_daily:
            for minutes in dict.fromkeys(parse_clock_time(t) for t in medication.times):
                clock = f"{minutes // 60:02d}:{minutes % 60:02d}"
                keyed.append(
                    (
                        minutes,
                        medication.id,
                        ScheduleItem(
                            id=f"{medication.id}_{clock}",
                            medication_id=medication.id,
                            name=medication.name,
                            dosage=medication.dosage,
                            type=medication.type,
                            scheduled_time=clock,
                            status=classify_dose(minutes, now_minutes, due_window_minutes),
                            is_daily=True,
                            instruction=medication.instruction,
                        ),
                    )
                )
            continue

        taken_at = prn_usage.get(medication.id)
        if taken_at is None:
            continue
        keyed.append(
            (
                taken_at.hour * 60 + taken_at.minute,
                medication.id,
                ScheduleItem(
                    id=f"{medication.id}_prn_{taken_at.isoformat()}",
                    medication_id=medication.id,
                    name=f"{medication.name} (PRN)",
                    dosage=medication.dosage,
                    type=medication.type,
                    scheduled_time=taken_at.strftime("%H:%M"),
                    status=ScheduleStatus.UPCOMING,
                    is_daily=False,
                    instruction=medication.instruction,
                ),
            )
        )

    keyed.sort(key=lambda entry: (entry[0], entry[1]))
    return [item for _, _, item in keyed]


def compute_medication_stats(
    definitions: list[MedicationDefinition],
    usage_events: list[MedicationUsageEvent],
    now: datetime,
    *,
    due_window_minutes: int = 30,
) -> MedicationStats:
    active_daily = [m for m in definitions if m.is_active and m.is_daily]
    active_prn = {m.id for m in definitions if m.is_active and not m.is_daily}
    start, end = day_bounds(now)
    schedule = resolve_today_schedule(
        definitions, usage_events, now, due_window_minutes=due_window_minutes
    )

    return MedicationStats(
        total_medications=len(definitions),
        active_daily_medications=len(active_daily),
        active_prn_medications=len(active_prn),
        total_reminders=sum(len({parse_clock_time(t) for t in m.times}) for m in active_daily),
        overdue_medications=sum(1 for i in schedule if i.status is ScheduleStatus.OVERDUE),
        medications_due_now=sum(1 for i in schedule if i.status is ScheduleStatus.DUE_NOW),
        prn_used_today=sum(
            1
            for e in usage_events
            if e.medication_id in active_prn and start <= as_local(e.taken_at, now) < end
        ),
    )


def validate_medication_input(definition: MedicationDefinition, today: date) -> None:
    """Raise ValidationError listing every problem with a medication definition."""
    problems: list[str] = []

    if not definition.name.strip():
        problems.append("Medication name is required")
    if not definition.dosage.strip():
        problems.append("Dosage is required")
    if not definition.frequency.strip():
        problems.append("Frequency is required")

    if definition.is_daily:
        if not definition.times:
            problems.append("At least one time is required")
        seen: set[int] = set()
        for clock in definition.times:
            try:
                minutes = parse_clock_time(clock)
            except ValidationError as e:
                problems.append(e.message)
                continue
            if minutes in seen:
                problems.append(f"Duplicate time: {clock}")
            seen.add(minutes)
    elif definition.times:
        problems.append("As-needed medications cannot carry scheduled times")

    if definition.refill_date is not None and definition.refill_date < today:
        problems.append("Refill date cannot be in the past")

    if problems:
        raise ValidationError("; ".join(problems), problems)


class ScheduleService:
    """Access-gated schedule reads and medication writes for a caregiver."""

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
        self.logger = logger.bind(component="schedule")

    async def _call(self, operation: Awaitable[T]) -> T:
        return await store_call(operation, self.config.store.timeout_seconds)

    async def _owner_snapshot(
        self, owner_id: str, now: datetime
    ) -> tuple[list[MedicationDefinition], list[MedicationUsageEvent]]:
        start, end = day_bounds(now)
        definitions = await self._call(self.store.list_medications(owner_id))
        usage = await self._call(self.store.list_usage_events(owner_id, start, end))
        return definitions, usage

    async def _snapshot(
        self, caregiver_id: str, senior_email: str, now: datetime
    ) -> tuple[list[MedicationDefinition], list[MedicationUsageEvent]]:
        relationship = (await self.authorization.verify_access(caregiver_id, senior_email)).unwrap()
        return await self._owner_snapshot(relationship.senior_id or "", now)

    async def get_today_schedule(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[ScheduleItem], CareError]:
        now = now or self._clock()
        try:
            relationship = (
                await self.authorization.verify_access(caregiver_id, senior_email)
            ).unwrap()
        except CareError as e:
            self.logger.warning("schedule_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        return await self.schedule_for_owner(relationship.senior_id or "", now)

    async def schedule_for_owner(
        self, owner_id: str, now: datetime
    ) -> Result[list[ScheduleItem], CareError]:
        """Resolve the schedule for an owner whose access was already verified."""
        try:
            definitions, usage = await self._owner_snapshot(owner_id, now)
            schedule = resolve_today_schedule(
                definitions,
                usage,
                now,
                due_window_minutes=self.config.schedule.due_window_minutes,
            )
        except CareError as e:
            self.logger.warning("schedule_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)

        self.logger.debug("schedule_resolved", items=len(schedule))
        return Result.ok(schedule)

    async def get_medication_stats(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[MedicationStats, CareError]:
        now = now or self._clock()
        try:
            definitions, usage = await self._snapshot(caregiver_id, senior_email, now)
            stats = compute_medication_stats(
                definitions,
                usage,
                now,
                due_window_minutes=self.config.schedule.due_window_minutes,
            )
        except CareError as e:
            self.logger.warning("medication_stats_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        return Result.ok(stats)

    async def save_medication(
        self,
        caregiver_id: str,
        senior_email: str,
        definition: MedicationDefinition,
        today: date | None = None,
    ) -> Result[MedicationDefinition, CareError]:
        """Create or update one of the senior's medications on their behalf."""
        today = today or self._clock().date()
        try:
            relationship = (
                await self.authorization.verify_access(caregiver_id, senior_email)
            ).unwrap()
            if definition.owner_id != relationship.senior_id:
                raise NotApprovedError("Medication does not belong to the approved senior")
            existing = await self._call(self.store.get_medication(definition.id))
            if existing is not None and existing.owner_id != relationship.senior_id:
                raise NotApprovedError("Medication belongs to another senior")
            validate_medication_input(definition, today)
            saved = await self._call(self.store.save_medication(definition))
        except CareError as e:
            self.logger.warning("medication_save_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)

        self.logger.info("medication_saved", medication_id=saved.id, caregiver_id=caregiver_id)
        return Result.ok(saved)
