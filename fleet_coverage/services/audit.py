"""
Audit and notification sinks for tier transitions.

Both are fire-and-forget from the engine's perspective: a failed write is
logged and never undoes the transition that triggered it.
"""

from typing import Dict, Any, Protocol
from datetime import datetime
import json
import logging

logger = logging.getLogger("fleet_coverage")


class AuditSink(Protocol):
    def record(self, entity_type: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        ...


class NotificationSink(Protocol):
    def notify(self, host_id: str, category: str, subject: str, body: str) -> None:
        ...


class ActivityLogSink:
    """Writes audit records to the activity_log table."""

    def __init__(self, db_session):
        self.db_session = db_session

    def record(self, entity_type: str, entity_id: str, action: str, metadata: Dict[str, Any]) -> None:
        from fleet_coverage.models import ActivityLog

        entry = ActivityLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            metadata_json=json.dumps(metadata, default=_json_default)
        )
        self.db_session.add(entry)
        self.db_session.commit()


class HostNotificationSink:
    """Queues host-facing notifications in the host_notification table."""

    def __init__(self, db_session, notification_type: str = "INSURANCE_UPDATED"):
        self.db_session = db_session
        self.notification_type = notification_type

    def notify(self, host_id: str, category: str, subject: str, body: str) -> None:
        from fleet_coverage.models import HostNotification

        notification = HostNotification(
            host_id=host_id,
            type=self.notification_type,
            category=category,
            subject=subject,
            message=body
        )
        self.db_session.add(notification)
        self.db_session.commit()


def emit_side_effects(
    db_session,
    audit_sink: AuditSink,
    notification_sink: NotificationSink,
    host_id: str,
    action: str,
    metadata: Dict[str, Any],
    subject: str,
    body: str
) -> None:
    """
    Emit the audit record and the host notification for a committed transition.
    """
    try:
        audit_sink.record("HOST", host_id, action, metadata)
    except Exception as e:
        db_session.rollback()
        logger.error(
            f"Audit write failed | host_id={host_id} | action={action} | error={str(e)}"
        )

    try:
        notification_sink.notify(host_id, "documents", subject, body)
    except Exception as e:
        db_session.rollback()
        logger.error(
            f"Notification write failed | host_id={host_id} | action={action} | error={str(e)}"
        )


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
