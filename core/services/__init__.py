"""
Core services for the caregiver companion.

This package contains the authorization workflow, the schedule resolver, the
alert rule engine, the trend views and the change-feed notifier, plus the dashboard service
that wires them together.
"""

from core.observability import configure_logging

from .alerts import AlertDigest, AlertService
from .authorization import AccessRequest, ApprovalOutcome, RelationshipAuthorizationService
from .dashboard import CaregiverDashboardService, DashboardSnapshot
from .notifier import ChangeFeedNotifier, NotificationTray, ToastController
from .result import Result
from .schedule import ScheduleService
from .store import CareStore, ChangeFeed, ChangeSubscription
from .trends import TrendsService

__all__ = [
    "AccessRequest",
    "AlertDigest",
    "AlertService",
    "ApprovalOutcome",
    "CareStore",
    "CaregiverDashboardService",
    "ChangeFeed",
    "ChangeFeedNotifier",
    "ChangeSubscription",
    "DashboardSnapshot",
    "NotificationTray",
    "RelationshipAuthorizationService",
    "Result",
    "ScheduleService",
    "ToastController",
    "TrendsService",
    "configure_logging",
]
