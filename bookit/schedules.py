"""Worker schedule authoring: weekly availability, date overrides and qualifications."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import InternalError, ValidationError
from .extensions import db
from .models import (ACTIVE_APPOINTMENT_STATUSES, Appointment, Service, Worker,
                     WorkerAvailability, WorkerScheduleOverride)


def parse_time(value: Any, field: str = "time") -> time:
    """Parse an ``HH:MM`` string (or pass through a ``time``)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be in HH:MM format") from None


def parse_date(value: Any, field: str = "date") -> date:
    """Parse a ``YYYY-MM-DD`` string (or pass through a ``date``)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be in YYYY-MM-DD format") from None


def day_of_week(day: date) -> int:
    """Weekday number as stored in the schedule tables (0=Sunday)."""
    return (day.weekday() + 1) % 7


def validate_availabilities(entries: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    cleaned = []
    seen_days: set[int] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("each availability must be an object")
        weekday = entry.get("day_of_week")
        if not isinstance(weekday, int) or isinstance(weekday, bool) or not 0 <= weekday <= 6:
            raise ValidationError("day_of_week must be an integer between 0 and 6")
        if weekday in seen_days:
            raise ValidationError(f"duplicate availability for day_of_week {weekday}")
        seen_days.add(weekday)

        start = parse_time(entry.get("start_time"), "start_time")
        end = parse_time(entry.get("end_time"), "end_time")
        if start >= end:
            raise ValidationError("start_time must be before end_time")

        cleaned.append({
            "day_of_week": weekday,
            "start_time": start,
            "end_time": end,
            "is_available": bool(entry.get("is_available", True)),
        })
    return cleaned


def validate_overrides(entries: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    cleaned = []
    seen_dates: set[date] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("each override must be an object")
        override_date = parse_date(entry.get("date"))
        if override_date in seen_dates:
            raise ValidationError(f"duplicate override for {override_date.isoformat()}")
        seen_dates.add(override_date)

        is_day_off = bool(entry.get("is_day_off", False))
        start = end = None
        if not is_day_off:
            # A working-hours override must carry both bounds.
            start = parse_time(entry.get("start_time"), "start_time")
            end = parse_time(entry.get("end_time"), "end_time")
            if start >= end:
                raise ValidationError("start_time must be before end_time")

        cleaned.append({
            "date": override_date,
            "start_time": start,
            "end_time": end,
            "is_day_off": is_day_off,
            "notes": (entry.get("notes") or "").strip() or None,
        })
    return cleaned


def replace_worker_schedule(
    worker: Worker,
    availabilities: list[dict[str, Any]] | None = None,
    overrides: list[dict[str, Any]] | None = None,
) -> Worker:
    """Replace the weekly rows and/or the override rows of a worker in one transaction.

    ``None`` leaves that part of the schedule untouched; an empty list clears it.
    Everything is validated before the first write.
    """
    weekly = validate_availabilities(availabilities) if availabilities is not None else None
    dated = validate_overrides(overrides) if overrides is not None else None

    try:
        if weekly is not None:
            WorkerAvailability.query.filter_by(worker_id=worker.worker_id).delete()
            db.session.add_all(
                WorkerAvailability(worker_id=worker.worker_id, **row) for row in weekly
            )
        if dated is not None:
            WorkerScheduleOverride.query.filter_by(worker_id=worker.worker_id).delete()
            db.session.add_all(
                WorkerScheduleOverride(worker_id=worker.worker_id, **row) for row in dated
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to replace schedule for worker %s", worker.worker_id, exc_info=exc)
        raise InternalError("Failed to update worker schedule") from exc

    return worker


def set_worker_services(worker: Worker, service_ids: Iterable[Any]) -> Worker:
    """Set which of the vendor's services a worker is qualified for."""
    try:
        wanted = {int(service_id) for service_id in service_ids}
    except (TypeError, ValueError):
        raise ValidationError("service_ids must be a list of integers") from None

    services = Service.query.filter(
        Service.service_id.in_(wanted),
        Service.vendor_id == worker.vendor_id,
    ).all() if wanted else []

    missing = wanted - {service.service_id for service in services}
    if missing:
        raise ValidationError(
            f"services {sorted(missing)} do not exist or do not belong to this vendor"
        )

    try:
        worker.services = services
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update services for worker %s", worker.worker_id, exc_info=exc)
        raise InternalError("Failed to update worker services") from exc
    return worker


def worker_schedule(worker: Worker, today: date | None = None, limit: int = 20) -> dict[str, object]:
    """Weekly pattern, upcoming overrides and upcoming active appointments of a worker."""
    today = today or date.today()
    overrides = (
        WorkerScheduleOverride.query
        .filter(WorkerScheduleOverride.worker_id == worker.worker_id, WorkerScheduleOverride.date >= today)
        .order_by(WorkerScheduleOverride.date)
        .all()
    )
    appointments = (
        Appointment.query
        .filter(
            Appointment.worker_id == worker.worker_id,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.starts_at >= datetime.combine(today, time.min),
        )
        .order_by(Appointment.starts_at)
        .limit(limit)
        .all()
    )
    return {
        "worker": worker.to_dict(),
        "availabilities": [row.to_dict() for row in worker.availabilities],
        "overrides": [row.to_dict() for row in overrides],
        "appointments": [appointment.to_dict() for appointment in appointments],
    }
