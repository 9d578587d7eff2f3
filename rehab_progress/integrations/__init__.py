"""Clients for the case store and notification service."""

from rehab_progress.integrations.case_store import (
    CaseStore,
    HttpCaseStore,
    InMemoryCaseStore,
    build_case_store,
)
from rehab_progress.integrations.notifications import (
    HttpNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    build_notification_sink,
)

__all__ = [
    "CaseStore",
    "HttpCaseStore",
    "InMemoryCaseStore",
    "build_case_store",
    "NotificationSink",
    "HttpNotificationSink",
    "LoggingNotificationSink",
    "build_notification_sink",
]
