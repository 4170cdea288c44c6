"""Booking transaction and the status changes staff and users make afterwards."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .availability import (ClosedWindow, ensure_bookable_date, find_conflict,
                           generate_slots, load_bookable_service, pin_worker,
                           qualified_workers, resolve_window, select_worker,
                           slot_step_minutes)
from .errors import (ConflictError, InternalError, NotFoundError,
                     PolicyViolation, ValidationError)
from .extensions import db
from .models import (ACTIVE_APPOINTMENT_STATUSES, APPOINTMENT_STATUSES,
                     Appointment, Worker)
from .notifications import notify
from .schedules import parse_date, parse_time

SLOT_TAKEN_MESSAGE = "The requested slot is no longer available; please check availability again"

# action -> (statuses it may start from, resulting status)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "approve": (frozenset({"pending"}), "confirmed"),
    "reject": (frozenset({"pending"}), "rejected"),
    "complete": (frozenset({"confirmed"}), "completed"),
    "no_show": (frozenset({"confirmed"}), "no_show"),
    "cancel_by_user": (frozenset(ACTIVE_APPOINTMENT_STATUSES), "cancelled_by_user"),
    "cancel_by_vendor": (frozenset(ACTIVE_APPOINTMENT_STATUSES), "cancelled_by_vendor"),
}

NOTIFICATION_TEXT = {
    "pending": ("Appointment requested", "Your appointment request for {when} was received and awaits confirmation."),
    "confirmed": ("Appointment confirmed", "Your appointment for {when} has been confirmed."),
    "rejected": ("Appointment rejected", "Your appointment request for {when} was rejected."),
    "cancelled_by_vendor": ("Appointment cancelled", "Your appointment for {when} was cancelled by the salon."),
    "cancelled_by_user": ("Appointment cancelled", "You cancelled your appointment for {when}."),
    "completed": ("Appointment completed", "Thank you for visiting on {when}."),
    "no_show": ("Missed appointment", "You were marked as a no-show for {when}."),
}


def _lock_worker(worker_id: int) -> None:
    """Take the per-worker write lock for the rest of the current transaction."""
    db.session.execute(
        update(Worker)
        .where(Worker.worker_id == worker_id)
        .values(booking_version=Worker.booking_version + 1)
    )


def _notify_status(appointment: Appointment) -> None:
    title, template = NOTIFICATION_TEXT[appointment.status]
    when = appointment.starts_at.strftime("%B %d, %Y at %H:%M")
    notify(
        user_id=appointment.user_id,
        appointment_id=appointment.appointment_id,
        title=title,
        message=template.format(when=when),
        notification_type=f"appointment_{appointment.status}",
    )


def _commit_or_raise(action: str, appointment_id: int | None = None) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning("Store rejected %s for appointment %s: %s", action, appointment_id, exc.orig)
        raise ConflictError(SLOT_TAKEN_MESSAGE) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to %s appointment %s", action, appointment_id, exc_info=exc)
        raise InternalError(f"Failed to {action} appointment") from exc


def _slot_open_for(worker: Worker, day: date, slot: time, duration_minutes: int, step_minutes: int) -> bool:
    window = resolve_window(worker, day)
    if isinstance(window, ClosedWindow):
        return False
    return slot in generate_slots(window, duration_minutes, step_minutes)


def book_appointment(
    vendor_id: int,
    service_id: int,
    worker_id: int | None,
    day: date | str,
    slot: time | str,
    user_id: int,
    notes: str | None = None,
    today: date | None = None,
) -> Appointment:
    """Reserve one slot with one qualified, free worker.

    Every precondition is re-checked against live rows: the service duration,
    the date policy, qualification, the worker's window and their current
    appointments. The conflict check and the insert run in one transaction that
    holds each tried worker's lock, so two concurrent requests for the same
    worker and time cannot both succeed.

    Raises ValidationError, NotFoundError, PolicyViolation, ConflictError or
    InternalError; nothing is written when any of them is raised.
    """
    day = parse_date(day)
    slot = parse_time(slot, "slot")

    try:
        vendor, service = load_bookable_service(vendor_id, service_id)
        ensure_bookable_date(day, today)

        candidates = qualified_workers(vendor, service)
        if worker_id is not None:
            candidates = [pin_worker(vendor, candidates, worker_id)]
        if not candidates:
            raise PolicyViolation("No qualified worker available for this service")

        duration = service.duration_minutes
        step = slot_step_minutes(service, vendor)
        starts_at = datetime.combine(day, slot)
        ends_at = starts_at + timedelta(minutes=duration)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to validate booking request", exc_info=exc)
        raise InternalError("Failed to create appointment") from exc

    def free_under_lock(worker: Worker) -> bool:
        _lock_worker(worker.worker_id)
        if not _slot_open_for(worker, day, slot, duration, step):
            return False
        return find_conflict(worker.worker_id, starts_at, ends_at) is None

    try:
        # Candidates come ordered by worker_id, so locks are always taken in the same order.
        chosen = select_worker(candidates, free_under_lock, preferred_worker_id=worker_id)

        if chosen is None:
            db.session.rollback()
            current_app.logger.warning(
                "Booking conflict: vendor %s service %s at %s (worker %s)",
                vendor_id, service_id, starts_at.isoformat(), worker_id,
            )
            raise ConflictError(SLOT_TAKEN_MESSAGE)

        appointment = Appointment(
            vendor_id=vendor.vendor_id,
            service_id=service.service_id,
            worker_id=chosen.worker_id,
            user_id=user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            status="pending",
            notes=(notes or "").strip() or None,
        )
        db.session.add(appointment)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to book appointment", exc_info=exc)
        raise InternalError("Failed to create appointment") from exc

    _commit_or_raise("create")
    current_app.logger.info(
        "Booked appointment %s with worker %s at %s",
        appointment.appointment_id, appointment.worker_id, starts_at.isoformat(),
    )
    _notify_status(appointment)
    return appointment


def get_appointment(appointment_id: int) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found")
    return appointment


def transition_appointment(appointment_id: int, action: str, user_id: int | None = None) -> Appointment:
    """Apply a status change such as ``approve`` or ``cancel_by_user``.

    ``user_id`` is required for ``cancel_by_user`` and must own the appointment.
    """
    if action not in TRANSITIONS:
        raise ValidationError(f"Unknown action: {action}")
    allowed_from, target = TRANSITIONS[action]

    appointment = get_appointment(appointment_id)
    if action == "cancel_by_user" and appointment.user_id != user_id:
        # Someone else's appointment looks the same as a missing one.
        raise NotFoundError("Appointment not found")
    if appointment.status not in allowed_from:
        raise PolicyViolation(f"Cannot {action.replace('_', ' ')} an appointment that is {appointment.status}")
    if target == "confirmed" and appointment.worker_id is None:
        raise PolicyViolation("Assign a worker before confirming the appointment")

    appointment.status = target
    _commit_or_raise(action, appointment_id)
    current_app.logger.info("Appointment %s is now %s", appointment_id, target)
    _notify_status(appointment)
    return appointment


def list_vendor_appointments(vendor_id: int, status: str | None = None) -> list[Appointment]:
    """Appointments of one vendor, soonest first, optionally narrowed to one status."""
    if status is not None and status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")

    query = Appointment.query.filter(Appointment.vendor_id == vendor_id)
    if status is not None:
        query = query.filter(Appointment.status == status)
    return query.order_by(Appointment.starts_at, Appointment.appointment_id).all()


def bulk_approve(vendor_id: int) -> list[Appointment]:
    """Confirm every pending appointment of a vendor in one commit.

    Rows without a worker stay pending; workers are only changed through
    ``assign_worker``.
    """
    pending = (
        Appointment.query
        .filter(
            Appointment.vendor_id == vendor_id,
            Appointment.status == "pending",
            Appointment.worker_id.isnot(None),
        )
        .order_by(Appointment.starts_at, Appointment.appointment_id)
        .all()
    )
    if not pending:
        return []

    for appointment in pending:
        appointment.status = "confirmed"
    _commit_or_raise("bulk approve")
    current_app.logger.info("Approved %s pending appointments for vendor %s", len(pending), vendor_id)

    for appointment in pending:
        _notify_status(appointment)
    return pending


def assign_worker(appointment_id: int, worker_id: Any) -> Appointment:
    """Reassign an active appointment to another qualified worker of the same vendor."""
    if worker_id is None:
        raise ValidationError("worker_id is required")
    try:
        worker_id = int(worker_id)
    except (TypeError, ValueError):
        raise ValidationError("worker_id must be an integer") from None

    appointment = get_appointment(appointment_id)
    if not appointment.is_active:
        raise PolicyViolation(f"Cannot reassign an appointment that is {appointment.status}")

    worker = Worker.query.filter_by(worker_id=worker_id, vendor_id=appointment.vendor_id).first()
    if worker is None:
        raise NotFoundError("Worker not found at this vendor")
    if not worker.is_active or appointment.service not in worker.services:
        raise PolicyViolation("Worker is not qualified for this service")

    try:
        _lock_worker(worker.worker_id)
        conflict = find_conflict(
            worker.worker_id, appointment.starts_at, appointment.ends_at,
            exclude_appointment_id=appointment.appointment_id,
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to reassign appointment %s", appointment_id, exc_info=exc)
        raise InternalError("Failed to reassign appointment") from exc
    if conflict is not None:
        db.session.rollback()
        raise ConflictError("Worker already has an appointment at that time")

    appointment.worker_id = worker.worker_id
    _commit_or_raise("reassign", appointment_id)
    return appointment


def change_duration(appointment_id: int, duration_minutes: Any) -> Appointment:
    """Staff edit of an appointment's length; the start stays, the end moves."""
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise ValidationError("duration_minutes must be a positive integer")

    appointment = get_appointment(appointment_id)
    new_end = appointment.starts_at + timedelta(minutes=duration_minutes)

    if appointment.is_active and appointment.worker_id is not None:
        try:
            _lock_worker(appointment.worker_id)
            conflict = find_conflict(
                appointment.worker_id, appointment.starts_at, new_end,
                exclude_appointment_id=appointment.appointment_id,
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to change duration of appointment %s", appointment_id, exc_info=exc)
            raise InternalError("Failed to change appointment duration") from exc
        if conflict is not None:
            db.session.rollback()
            raise ConflictError("New duration overlaps another appointment of this worker")

    appointment.ends_at = new_end
    _commit_or_raise("change duration of", appointment_id)
    return appointment


def cleanup_appointments(vendor_id: int | None = None, now: datetime | None = None) -> int:
    """Delete rejected, cancelled and no-show appointments plus long-completed ones."""
    now = now or datetime.now()
    cutoff = now - timedelta(days=current_app.config.get("CLEANUP_COMPLETED_AFTER_DAYS", 30))

    query = Appointment.query.filter(
        or_(
            Appointment.status.in_(("rejected", "cancelled_by_user", "cancelled_by_vendor", "no_show")),
            (Appointment.status == "completed") & (Appointment.ends_at < cutoff),
        )
    )
    if vendor_id is not None:
        query = query.filter(Appointment.vendor_id == vendor_id)

    try:
        deleted = query.delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to clean up appointments", exc_info=exc)
        raise InternalError("Failed to clean up appointments") from exc

    current_app.logger.info("Cleaned up %s appointments (vendor %s)", deleted, vendor_id)
    return deleted
