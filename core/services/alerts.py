"""
Health alert rule engine.

Three independent evaluators, each a pure function of its input slice and
`now`:

- vital signs against a per-metric threshold table
- medication refill dates
- activity recency

`AlertService` puts the authorization gate in front of them and merges their
output into one list ranked by severity, then recency. A failing evaluator
never blocks the other two; the merged list degrades to what succeeded.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar

import structlog
from pydantic import BaseModel, Field, computed_field

from core.config import AppConfig, get_config
from core.domain.errors import CareError
from core.domain.models import (
    ActivityRecord,
    EmergencyAlert,
    HealthMetricSample,
    InactivityAlert,
    MedicationAlert,
    MedicationDefinition,
    MetricType,
    RankedAlert,
    Severity,
)
from core.services.authorization import RelationshipAuthorizationService
from core.services.result import Result
from core.services.store import CareStore, store_call

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Threshold:
    """Crossed when a value is strictly above `above` or strictly below `below`."""

    above: float | None = None
    below: float | None = None

    def crossed(self, value: float) -> bool:
        if self.above is not None and value > self.above:
            return True
        return self.below is not None and value < self.below


@dataclass(frozen=True)
class VitalRule:
    critical: Threshold
    critical_message: str
    high: Threshold | None = None
    high_message: str = ""


VITAL_RULES: dict[MetricType, VitalRule] = {
    MetricType.HEART_RATE: VitalRule(
        critical=Threshold(above=120, below=40),
        critical_message="Critical heart rate: {value:g} bpm",
        high=Threshold(above=100, below=50),
        high_message="Abnormal heart rate: {value:g} bpm",
    ),
    MetricType.BODY_TEMPERATURE: VitalRule(
        critical=Threshold(above=103, below=95),
        critical_message="Critical body temperature: {value:g}°F",
        high=Threshold(above=101, below=97),
        high_message="Abnormal body temperature: {value:g}°F",
    ),
    MetricType.OXYGEN_LEVEL: VitalRule(
        critical=Threshold(below=90),
        critical_message="Low oxygen level: {value:g}%",
    ),
}

# (systolic, diastolic) limits; either one crossing counts
BLOOD_PRESSURE_CRITICAL = (180, 110)
BLOOD_PRESSURE_HIGH = (160, 100)

_CELSIUS_UNITS = {"°c", "c", "celsius"}


def _fahrenheit(sample: HealthMetricSample) -> float | None:
    if sample.value is None:
        return None
    if sample.unit.strip().lower() in _CELSIUS_UNITS:
        return round(sample.value * 9 / 5 + 32, 1)
    return sample.value


def _blood_pressure_severity(sample: HealthMetricSample) -> tuple[Severity, str] | None:
    if sample.systolic is None or sample.diastolic is None:
        return None
    reading = f"{sample.systolic:g}/{sample.diastolic:g}"
    if sample.systolic > BLOOD_PRESSURE_CRITICAL[0] or sample.diastolic > BLOOD_PRESSURE_CRITICAL[1]:
        return Severity.CRITICAL, f"Critical blood pressure reading: {reading}"
    if sample.systolic > BLOOD_PRESSURE_HIGH[0] or sample.diastolic > BLOOD_PRESSURE_HIGH[1]:
        return Severity.HIGH, f"High blood pressure reading: {reading}"
    return None


def classify_sample(sample: HealthMetricSample) -> tuple[Severity, str] | None:
    """Severity and message for an out-of-range sample, None when in range."""
    if sample.metric_type is MetricType.BLOOD_PRESSURE:
        return _blood_pressure_severity(sample)

    rule = VITAL_RULES.get(sample.metric_type)
    if rule is None:
        return None

    value = _fahrenheit(sample) if sample.metric_type is MetricType.BODY_TEMPERATURE else sample.value
    if value is None:
        return None
    if rule.critical.crossed(value):
        return Severity.CRITICAL, rule.critical_message.format(value=value)
    if rule.high is not None and rule.high.crossed(value):
        return Severity.HIGH, rule.high_message.format(value=value)
    return None


def evaluate_health_samples(
    samples: Iterable[HealthMetricSample],
    now: datetime,
    *,
    lookback_hours: int = 24,
) -> list[EmergencyAlert]:
    """One alert per out-of-range sample recorded within the lookback window."""
    since = now - timedelta(hours=lookback_hours)
    alerts: list[EmergencyAlert] = []

    for sample in samples:
        if sample.recorded_at < since:
            continue
        verdict = classify_sample(sample)
        if verdict is None:
            continue
        severity, message = verdict
        alerts.append(
            EmergencyAlert(
                id=f"{sample.owner_id}_{sample.id}_{sample.metric_type.value}",
                owner_id=sample.owner_id,
                metric_type=sample.metric_type,
                message=message,
                severity=severity,
                timestamp=sample.recorded_at,
                sample_id=sample.id,
            )
        )

    alerts.sort(key=lambda a: (a.severity.rank, a.timestamp), reverse=True)
    return alerts


def evaluate_refills(
    definitions: Iterable[MedicationDefinition],
    today: date,
    generated_at: datetime,
    *,
    warning_days: int = 7,
    critical_days: int = 3,
) -> list[MedicationAlert]:
    """Refill alerts for active medications due within `warning_days`."""
    alerts: list[MedicationAlert] = []

    for medication in definitions:
        if not medication.is_active or medication.refill_date is None:
            continue
        days_until_refill = (medication.refill_date - today).days
        if days_until_refill > warning_days:
            continue
        is_critical = days_until_refill <= critical_days
        alerts.append(
            MedicationAlert(
                id=medication.id,
                owner_id=medication.owner_id,
                medication_id=medication.id,
                medication_name=medication.name,
                refill_date=medication.refill_date,
                days_until_refill=days_until_refill,
                is_critical=is_critical,
                is_upcoming=not is_critical,
                generated_at=generated_at,
            )
        )

    # Critical first, then soonest
    alerts.sort(key=lambda a: (not a.is_critical, a.days_until_refill))
    return alerts


def inactivity_level(days_inactive: int) -> Severity:
    if days_inactive >= 7:
        return Severity.CRITICAL
    if days_inactive >= 5:
        return Severity.HIGH
    if days_inactive >= 3:
        return Severity.MEDIUM
    return Severity.LOW


def evaluate_inactivity(
    last_activity: ActivityRecord | None,
    owner_id: str,
    now: datetime,
    *,
    min_days: int = 2,
) -> InactivityAlert | None:
    if last_activity is None:
        return InactivityAlert(
            id=f"{owner_id}_no_activity",
            owner_id=owner_id,
            days_inactive=None,
            last_activity_at=None,
            alert_level=Severity.CRITICAL,
            generated_at=now,
        )

    days_inactive = (now - last_activity.created_at) // timedelta(days=1)
    if days_inactive < min_days:
        return None
    return InactivityAlert(
        id=f"{owner_id}_inactivity_{days_inactive}",
        owner_id=owner_id,
        days_inactive=days_inactive,
        last_activity_at=last_activity.created_at,
        alert_level=inactivity_level(days_inactive),
        generated_at=now,
    )


# Ranking


def _refill_message(alert: MedicationAlert) -> str:
    days = alert.days_until_refill
    if days < 0:
        return f"{alert.medication_name} refill is overdue by {-days} day(s)"
    if days == 0:
        return f"{alert.medication_name} needs a refill today"
    return f"{alert.medication_name} needs a refill in {days} day(s)"


def rank_health(alert: EmergencyAlert) -> RankedAlert:
    return RankedAlert(
        id=alert.id,
        kind="health",
        severity=alert.severity,
        message=alert.message,
        timestamp=alert.timestamp,
    )


def rank_refill(alert: MedicationAlert) -> RankedAlert:
    return RankedAlert(
        id=alert.id,
        kind="medication",
        severity=Severity.HIGH if alert.is_critical else Severity.MEDIUM,
        message=_refill_message(alert),
        timestamp=alert.generated_at,
    )


def rank_inactivity(alert: InactivityAlert) -> RankedAlert:
    if alert.never_active:
        message = "No physical activity has ever been recorded"
    else:
        message = f"No physical activity recorded for {alert.days_inactive} days"
    return RankedAlert(
        id=alert.id,
        kind="inactivity",
        severity=alert.alert_level,
        message=message,
        timestamp=alert.generated_at,
    )


def rank_alerts(alerts: Iterable[RankedAlert]) -> list[RankedAlert]:
    """Most severe first; within a severity, most recent first."""
    return sorted(alerts, key=lambda a: (a.severity.rank, a.timestamp), reverse=True)


class AlertDigest(BaseModel):
    """Merged, ranked alerts plus the evaluators that failed to contribute."""

    alerts: list[RankedAlert]
    failures: dict[str, str] = Field(
        default_factory=dict, description="Evaluator name -> error kind"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def degraded(self) -> bool:
        return bool(self.failures)


class AlertService:
    """
    Access-gated alert queries for a caregiver.

    Design principles:
    - Verify the approved relationship before touching senior data
    - Evaluators are independent (partial failures OK)
    - Computed on demand, nothing cached or stored
    """

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
        self.logger = logger.bind(component="alert_engine")

    async def _call(self, operation: Awaitable[T]) -> T:
        return await store_call(operation, self.config.store.timeout_seconds)

    async def _owner_id(self, caregiver_id: str, senior_email: str) -> str:
        relationship = (await self.authorization.verify_access(caregiver_id, senior_email)).unwrap()
        return relationship.senior_id or ""

    # Evaluators over fresh snapshots

    async def _health(self, owner_id: str, now: datetime) -> list[EmergencyAlert]:
        lookback = self.config.alerts.health_lookback_hours
        samples = await self._call(
            self.store.list_health_samples(
                owner_id,
                now - timedelta(hours=lookback),
                self.config.alerts.max_health_samples,
            )
        )
        return evaluate_health_samples(samples, now, lookback_hours=lookback)

    async def _refills(self, owner_id: str, now: datetime) -> list[MedicationAlert]:
        definitions = await self._call(self.store.list_medications(owner_id, active_only=True))
        return evaluate_refills(
            definitions,
            now.date(),
            now,
            warning_days=self.config.alerts.refill_warning_days,
            critical_days=self.config.alerts.refill_critical_days,
        )

    async def _inactivity(self, owner_id: str, now: datetime) -> list[InactivityAlert]:
        last_activity = await self._call(self.store.latest_activity(owner_id))
        alert = evaluate_inactivity(
            last_activity, owner_id, now, min_days=self.config.alerts.inactivity_min_days
        )
        return [alert] if alert else []

    # Public queries

    async def get_emergency_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[EmergencyAlert], CareError]:
        now = now or self._clock()
        try:
            alerts = await self._health(await self._owner_id(caregiver_id, senior_email), now)
        except CareError as e:
            self.logger.warning("emergency_alerts_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        self.logger.info("emergency_alerts_evaluated", count=len(alerts))
        return Result.ok(alerts)

    async def get_medication_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[MedicationAlert], CareError]:
        now = now or self._clock()
        try:
            alerts = await self._refills(await self._owner_id(caregiver_id, senior_email), now)
        except CareError as e:
            self.logger.warning("medication_alerts_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        self.logger.info("medication_alerts_evaluated", count=len(alerts))
        return Result.ok(alerts)

    async def get_inactivity_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[list[InactivityAlert], CareError]:
        now = now or self._clock()
        try:
            alerts = await self._inactivity(await self._owner_id(caregiver_id, senior_email), now)
        except CareError as e:
            self.logger.warning("inactivity_alerts_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        self.logger.info("inactivity_alerts_evaluated", count=len(alerts))
        return Result.ok(alerts)

    async def get_ranked_alerts(
        self, caregiver_id: str, senior_email: str, now: datetime | None = None
    ) -> Result[AlertDigest, CareError]:
        """
        Run all three evaluators concurrently and merge their output.

        Fails only when access is denied or every evaluator failed.
        """
        now = now or self._clock()
        try:
            owner_id = await self._owner_id(caregiver_id, senior_email)
        except CareError as e:
            return Result.err(e)

        return await self.rank_for_owner(owner_id, now)

    async def rank_for_owner(self, owner_id: str, now: datetime) -> Result[AlertDigest, CareError]:
        """Merge evaluator output for an owner whose access was already verified."""
        evaluators: dict[str, tuple[Awaitable[list], Callable]] = {
            "health": (self._health(owner_id, now), rank_health),
            "medication": (self._refills(owner_id, now), rank_refill),
            "inactivity": (self._inactivity(owner_id, now), rank_inactivity),
        }

        # Structured concurrency; each task returns a Result so none cancels the others
        async with asyncio.TaskGroup() as task_group:
            tasks = {
                name: task_group.create_task(_capture(operation), name=name)
                for name, (operation, _) in evaluators.items()
            }

        ranked: list[RankedAlert] = []
        failures: dict[str, str] = {}
        errors: list[CareError] = []
        for name, task in tasks.items():
            result = task.result()
            if result.is_err():
                error = result.unwrap_err()
                failures[name] = error.kind.value
                errors.append(error)
                self.logger.warning(
                    "alert_evaluator_failed", evaluator=name, kind=error.kind.value
                )
                continue
            to_ranked = evaluators[name][1]
            ranked.extend(to_ranked(alert) for alert in result.unwrap())

        if len(errors) == len(evaluators):
            return Result.err(errors[0])

        digest = AlertDigest(alerts=rank_alerts(ranked), failures=failures)
        self.logger.info(
            "alerts_ranked",
            total_alerts=len(digest.alerts),
            degraded=digest.degraded,
        )
        return Result.ok(digest)


async def _capture(operation: Awaitable[list]) -> Result[list, CareError]:
    try:
        return Result.ok(await operation)
    except CareError as e:
        return Result.err(e)
