"""
Practical Training Management System
Notification Service.

Creates and queries in-app notifications. Registered as a post-commit
transition hook so applicants hear about every status change.
"""

from datetime import datetime, timezone

from ptms.models import db
from ptms.models.application import ApplicationStatus
from ptms.models.notification import Notification
from ptms.services.hooks import register_transition_hook

_STATUS_SEVERITY = {
    ApplicationStatus.APPROVED: "success",
    ApplicationStatus.CHANGES_REQUESTED: "warning",
    ApplicationStatus.REJECTED: "error",
    ApplicationStatus.OFFER_REJECTED: "info",
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, title, message="", category="system", severity="info",
               entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient_id=recipient_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Returns None if not the recipient's."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient_id != recipient_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    # ── Workflow Integration ──────────────────────────────────────────────

    @staticmethod
    def notify_status_change(application_id, previous, current, *, user_id):
        current = ApplicationStatus(current)
        previous = ApplicationStatus(previous)
        label = current.value.replace("_", " ").title()
        return NotificationService.create(
            recipient_id=user_id,
            title=f"Application {label}",
            message=f"Your internship application moved from {previous.value} to {current.value}.",
            category="application",
            severity=_STATUS_SEVERITY.get(current, "info"),
            entity_type="application",
            entity_id=application_id,
        )


register_transition_hook(NotificationService.notify_status_change)
