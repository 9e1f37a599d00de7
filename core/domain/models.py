"""
Domain models for caregiver health monitoring.

These models represent the core business concepts and are framework-agnostic.
Persisted records are immutable; derived entities are computed on read and
never stored.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def normalize_email(email: str) -> str:
    """Emails are compared trimmed and lower-cased everywhere."""
    return email.strip().lower()


def assume_utc(value: datetime) -> datetime:
    """Naive timestamps coming out of the store are UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


UtcDatetime = Annotated[datetime, AfterValidator(assume_utc)]


class RelationshipStatus(str, Enum):
    """Lifecycle of a caregiver's claim over a senior's data."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MetricType(str, Enum):
    """Types of health metrics a senior can record."""

    BLOOD_PRESSURE = "blood_pressure"
    HEART_RATE = "heart_rate"
    BODY_TEMPERATURE = "body_temperature"
    WEIGHT = "weight"
    BLOOD_SUGAR = "blood_sugar"
    OXYGEN_LEVEL = "oxygen_level"


class Severity(str, Enum):
    """Alert severity levels, ordered by rank."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class ScheduleStatus(str, Enum):
    OVERDUE = "overdue"
    DUE_NOW = "due_now"
    UPCOMING = "upcoming"


MedicationKind = Literal["pill", "liquid", "injection", "cream", "inhaler"]


# Persisted records


class Relationship(BaseModel):
    """Authorization record linking one caregiver to one senior."""

    model_config = ConfigDict(frozen=True)

    id: str
    caregiver_id: str
    caregiver_email: str
    senior_email: str
    senior_id: str | None = None
    status: RelationshipStatus = RelationshipStatus.PENDING
    verification_code: str = Field(pattern=r"^\d{6}$")
    requested_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))
    approved_at: UtcDatetime | None = None
    updated_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_resolved(self) -> bool:
        return self.status is not RelationshipStatus.PENDING


class MedicationDefinition(BaseModel):
    """A medication the senior takes, daily at fixed times or as needed (PRN)."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    name: str
    dosage: str
    type: MedicationKind = "pill"
    frequency: str = "daily"
    times: list[str] = Field(default_factory=list, description="Daily clock-times as HH:MM")
    is_daily: bool = True
    is_active: bool = True
    refill_date: date | None = None
    instruction: str | None = None
    created_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))


class MedicationUsageEvent(BaseModel):
    """A single as-needed dose taken."""

    model_config = ConfigDict(frozen=True)

    id: str
    medication_id: str
    owner_id: str
    taken_at: UtcDatetime


class HealthMetricSample(BaseModel):
    """One vital-sign reading. Blood pressure carries systolic/diastolic."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    metric_type: MetricType
    value: float | None = None
    systolic: float | None = None
    diastolic: float | None = None
    unit: str
    recorded_at: UtcDatetime


class ActivityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    type: str
    duration_seconds: int = Field(ge=0)
    calories_burned: float = 0.0
    distance: float = 0.0
    created_at: UtcDatetime


# Derived entities


class ScheduleItem(BaseModel):
    """One dose on today's schedule."""

    model_config = ConfigDict(frozen=True)

    id: str
    medication_id: str
    name: str
    dosage: str
    type: MedicationKind
    scheduled_time: str
    status: ScheduleStatus
    is_daily: bool
    instruction: str | None = None


class MedicationStats(BaseModel):
    total_medications: int = 0
    active_daily_medications: int = 0
    active_prn_medications: int = 0
    total_reminders: int = 0
    overdue_medications: int = 0
    medications_due_now: int = 0
    prn_used_today: int = 0


class HealthTrend(BaseModel):
    """Latest reading of each vital on one calendar day. None when not recorded."""

    model_config = ConfigDict(frozen=True)

    day: date
    blood_pressure: str | None = None
    heart_rate: float | None = None
    weight: float | None = None
    temperature: float | None = None
    oxygen_level: float | None = None
    blood_sugar: float | None = None


class DailyActivity(BaseModel):
    """One day of the senior's routine, scored 0-100."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    day: date
    walking_minutes: int = 0
    stretching_completed: bool = False
    breathing_sessions: int = 0
    sleep_hours: float = 0.0
    brain_games_played: int = 0
    medications_taken: int = 0
    total_medications: int = 0
    health_readings: int = 0
    activity_score: int = Field(default=0, ge=0, le=100)


class DashboardStats(BaseModel):
    """Headline numbers for one senior over a timeframe."""

    walk_distance: float = 0.0
    sleep_hours: float = 0.0
    games_played: int = 0
    is_active: bool = False
    active_medications: int = 0
    critical_refills: int = 0
    health_readings: int = 0


class EmergencyAlert(BaseModel):
    """Out-of-range vital sign."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    metric_type: MetricType
    message: str
    severity: Severity
    timestamp: UtcDatetime
    sample_id: str


class MedicationAlert(BaseModel):
    """Medication whose refill date is close or already passed."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    medication_id: str
    medication_name: str
    refill_date: date
    days_until_refill: int
    is_critical: bool
    is_upcoming: bool
    generated_at: UtcDatetime


class InactivityAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    days_inactive: int | None = Field(
        description="Whole days since the last activity; None if never active"
    )
    last_activity_at: UtcDatetime | None = None
    alert_level: Severity
    generated_at: UtcDatetime

    @property
    def never_active(self) -> bool:
        return self.last_activity_at is None


AlertKind = Literal["health", "medication", "inactivity"]


class RankedAlert(BaseModel):
    """Common shape used to merge and rank alerts from every evaluator."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: AlertKind
    severity: Severity
    message: str
    timestamp: UtcDatetime


class NotificationKind(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class RelationshipChange(BaseModel):
    """Row-level update event pushed through the change feed."""

    model_config = ConfigDict(frozen=True)

    relationship_id: str
    caregiver_id: str
    senior_email: str
    old_status: RelationshipStatus | None
    new_status: RelationshipStatus
    committed_at: UtcDatetime = Field(default_factory=lambda: datetime.now(UTC))


class Notification(BaseModel):
    """Displayable notification kept for the caregiver session."""

    id: str
    relationship_id: str
    kind: NotificationKind
    senior_email: str
    message: str
    created_at: UtcDatetime
    unread: bool = True
