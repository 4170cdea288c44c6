"""Fire-and-forget notification records for appointment status changes."""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import Notification


def notify(user_id: int, appointment_id: int | None, title: str, message: str, notification_type: str) -> Notification | None:
    """Queue a notification for delivery.

    Runs after the booking change has committed. A failure here is logged and
    dropped so it never undoes or fails the change that triggered it.
    """
    notification = Notification(
        user_id=user_id,
        appointment_id=appointment_id,
        title=title,
        message=message,
        notification_type=notification_type,
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to record %s notification for user %s", notification_type, user_id, exc_info=exc)
        return None
    return notification


def list_notifications(user_id: int, unread_only: bool = False) -> list[Notification]:
    query = Notification.query.filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.notification_id.desc()).all()
