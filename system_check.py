"""
End-to-end walkthrough of the caregiver companion over the in-memory store.

This script exercises:
1. Configuration loading and validation
2. The request -> approve workflow, with a live change-feed session
3. Today's medication schedule
4. Ranked health, refill and inactivity alerts, plus 7-day stats
5. Degraded rendering when one store surface is down

Run with: uv run python system_check.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.memory.store import InMemoryCareStore, InMemoryChangeFeed
from core.config import get_config, print_config_summary, validate_config
from core.domain.models import (
    ActivityRecord,
    HealthMetricSample,
    MedicationDefinition,
    MedicationUsageEvent,
    MetricType,
)
from core.services import CaregiverDashboardService, configure_logging

console = Console()

CAREGIVER_ID = "caregiver-demo"
CAREGIVER_EMAIL = "carol@example.com"
SENIOR_ID = "senior-demo"
SENIOR_EMAIL = "sam@example.com"

_SEVERITY_STYLES = {"Critical": "bold red", "High": "red", "Medium": "yellow", "Low": "white"}


def seed_senior_data(store: InMemoryCareStore, now: datetime) -> None:
    """What the senior's own app would have written."""
    store.add_medication(
        MedicationDefinition(
            id="med-lisinopril",
            owner_id=SENIOR_ID,
            name="Lisinopril",
            dosage="10mg",
            times=["08:00", "20:00"],
            refill_date=now.date() + timedelta(days=2),
            instruction="Take with water",
        )
    )
    store.add_medication(
        MedicationDefinition(
            id="med-metformin",
            owner_id=SENIOR_ID,
            name="Metformin",
            dosage="500mg",
            times=["07:30", "12:00", "18:30"],
            refill_date=now.date() + timedelta(days=6),
        )
    )
    store.add_medication(
        MedicationDefinition(
            id="med-ibuprofen",
            owner_id=SENIOR_ID,
            name="Ibuprofen",
            dosage="200mg",
            frequency="as needed",
            is_daily=False,
        )
    )
    store.add_usage_event(
        MedicationUsageEvent(
            id="use-1",
            medication_id="med-ibuprofen",
            owner_id=SENIOR_ID,
            taken_at=now.replace(hour=6, minute=45),
        )
    )
    store.add_health_sample(
        HealthMetricSample(
            id="bp-1",
            owner_id=SENIOR_ID,
            metric_type=MetricType.BLOOD_PRESSURE,
            systolic=190,
            diastolic=115,
            unit="mmHg",
            recorded_at=now - timedelta(hours=2),
        )
    )
    store.add_health_sample(
        HealthMetricSample(
            id="temp-1",
            owner_id=SENIOR_ID,
            metric_type=MetricType.BODY_TEMPERATURE,
            value=38.6,
            unit="°C",
            recorded_at=now - timedelta(hours=1),
        )
    )
    store.add_activity(
        ActivityRecord(
            id="walk-1",
            owner_id=SENIOR_ID,
            type="walking",
            duration_seconds=1800,
            created_at=now - timedelta(days=4, hours=3),
        )
    )


async def check_configuration() -> bool:
    console.print(Panel("Checking Configuration", style="blue"))

    try:
        validate_config()
        print_config_summary()
        configure_logging(get_config().logging)
        console.print("Configuration loaded successfully", style="green")
        return True
    except Exception as e:
        console.print(f"Configuration check failed: {e}", style="red")
        return False


async def check_access_workflow(dashboard: CaregiverDashboardService) -> bool:
    console.print(Panel("Checking Access Workflow", style="blue"))

    denied = await dashboard.load_dashboard(CAREGIVER_ID, SENIOR_EMAIL)
    console.print(f"Before approval: {denied.unwrap_err().kind.value}", style="yellow")

    notifier = await dashboard.subscribe(CAREGIVER_ID)
    request = await dashboard.request_access(SENIOR_EMAIL, CAREGIVER_ID, CAREGIVER_EMAIL)
    if request.is_err():
        console.print(f"Request failed: {request.unwrap_err().message}", style="red")
        return False

    access = request.unwrap()
    console.print(f"Verification code sent to senior: {access.verification_code}")

    outcome = await dashboard.approve(access.relationship_id, SENIOR_ID, access.verification_code)
    repeat = await dashboard.approve(access.relationship_id, SENIOR_ID, access.verification_code)
    console.print(
        f"Approve: changed={outcome.unwrap().changed}, repeat: changed={repeat.unwrap().changed}"
    )

    await asyncio.sleep(0.05)
    for notification in notifier.open_tray():
        console.print(f"Notification: {notification.message}", style="green")

    return notifier.tray.unread_count == 0 and len(notifier.tray) == 1


async def check_dashboard(dashboard: CaregiverDashboardService, now: datetime) -> bool:
    console.print(Panel("Checking Dashboard", style="blue"))

    result = await dashboard.load_dashboard(CAREGIVER_ID, SENIOR_EMAIL, now)
    if result.is_err():
        console.print(f"Dashboard failed: {result.unwrap_err().message}", style="red")
        return False

    snapshot = result.unwrap()

    schedule_table = Table(title=f"Today's Schedule ({now:%H:%M})")
    schedule_table.add_column("Time", style="cyan")
    schedule_table.add_column("Medication", style="white")
    schedule_table.add_column("Dosage", style="white")
    schedule_table.add_column("Status", style="magenta")
    for item in snapshot.schedule or []:
        schedule_table.add_row(item.scheduled_time, item.name, item.dosage, item.status.value)
    console.print(schedule_table)

    alert_table = Table(title="Ranked Alerts")
    alert_table.add_column("Severity")
    alert_table.add_column("Kind", style="cyan")
    alert_table.add_column("Message", style="white")
    for alert in snapshot.alerts.alerts if snapshot.alerts else []:
        alert_table.add_row(
            alert.severity.value,
            alert.kind,
            alert.message,
            style=_SEVERITY_STYLES[alert.severity.value],
        )
    console.print(alert_table)

    stats = (await dashboard.get_dashboard_stats(CAREGIVER_ID, SENIOR_EMAIL, "7d")).unwrap()
    console.print(
        f"Last 7 days: active={stats.is_active}, "
        f"critical refills={stats.critical_refills}, readings={stats.health_readings}"
    )

    return not snapshot.degraded


async def check_degraded_rendering(
    dashboard: CaregiverDashboardService, store: InMemoryCareStore, now: datetime
) -> bool:
    console.print(Panel("Checking Degraded Rendering", style="blue"))

    store.failing_surfaces.add("health_metrics")
    try:
        snapshot = (await dashboard.load_dashboard(CAREGIVER_ID, SENIOR_EMAIL, now)).unwrap()
    finally:
        store.failing_surfaces.clear()

    alerts = snapshot.alerts.alerts if snapshot.alerts else []
    console.print(f"Degraded: {snapshot.degraded}", style="yellow")
    console.print(f"Failures: {snapshot.alerts.failures if snapshot.alerts else snapshot.failures}")
    console.print(f"Alerts still shown: {len(alerts)}")
    return snapshot.degraded and bool(alerts)


async def run_all_checks() -> None:
    console.print(Panel("Caregiver Companion - System Check", style="bold blue"))

    now = datetime.now(UTC).replace(hour=8, minute=5, second=0, microsecond=0)
    feed = InMemoryChangeFeed()
    store = InMemoryCareStore(feed, latency_seconds=0.01)
    seed_senior_data(store, now)
    dashboard = CaregiverDashboardService(store, feed, get_config(), clock=lambda: now)

    checks = [
        ("Configuration", check_configuration()),
        ("Access Workflow", check_access_workflow(dashboard)),
        ("Dashboard", check_dashboard(dashboard, now)),
        ("Degraded Rendering", check_degraded_rendering(dashboard, store, now)),
    ]

    results = []
    try:
        for name, check in checks:
            console.print(f"\n{'=' * 60}")
            try:
                results.append((name, await check))
            except Exception as e:
                console.print(f"{name} failed with exception: {e}", style="red")
                results.append((name, False))
    finally:
        await dashboard.close()

    console.print(f"\n{'=' * 60}")
    summary_table = Table(title="Check Results")
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for name, ok in results:
        summary_table.add_row(name, "PASSED" if ok else "FAILED")
        passed += int(ok)
    console.print(summary_table)

    console.print(f"\nResults: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_checks())
    except KeyboardInterrupt:
        console.print("\nChecks stopped by user", style="yellow")
