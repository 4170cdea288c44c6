"""Availability engine: effective windows, slot generation, conflicts and worker selection.

A worker's day is resolved in two tiers. A schedule override for the exact date
wins outright (day off, or its own hours); only without one does the weekly
pattern apply. The two are never merged.

Slots are start times on a fixed step inside the window whose whole service
duration fits before the window closes. Slots overlapping a pending or
confirmed appointment of the same worker are dropped, and the remaining slots
of all qualified workers are merged into one list annotated with the workers
free at each time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Sequence

from flask import current_app

from .errors import NotFoundError, PolicyViolation, ValidationError
from .models import (ACTIVE_APPOINTMENT_STATUSES, Appointment, Service, Vendor,
                     Worker, WorkerAvailability, WorkerScheduleOverride)
from .schedules import day_of_week

REASON_NO_QUALIFIED_WORKER = "no qualified worker available"
REASON_WORKER_UNAVAILABLE = "worker unavailable that date"
REASON_VENDOR_CLOSED = "vendor closed that day"
REASON_FULLY_BOOKED = "no free slots remaining"

# Any fixed date works; it only anchors time-of-day arithmetic.
_ANCHOR = date(2000, 1, 1)


@dataclass(frozen=True)
class OpenWindow:
    start: time
    end: time


@dataclass(frozen=True)
class ClosedWindow:
    pass


CLOSED = ClosedWindow()


@dataclass
class SlotQueryResult:
    date: date
    slots: list[dict[str, object]] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {"date": self.date.isoformat(), "slots": self.slots, "reason": self.reason}


def resolve_window_from(
    override: WorkerScheduleOverride | None,
    weekly: WorkerAvailability | None,
) -> OpenWindow | ClosedWindow:
    if override is not None:
        if override.is_day_off or override.start_time is None or override.end_time is None:
            return CLOSED
        return OpenWindow(override.start_time, override.end_time)

    if weekly is None or not weekly.is_available:
        return CLOSED
    return OpenWindow(weekly.start_time, weekly.end_time)


def resolve_window(worker: Worker, day: date) -> OpenWindow | ClosedWindow:
    """Effective working window of ``worker`` on ``day``."""
    override = WorkerScheduleOverride.query.filter_by(worker_id=worker.worker_id, date=day).first()
    weekly = None
    if override is None:
        weekly = WorkerAvailability.query.filter_by(
            worker_id=worker.worker_id, day_of_week=day_of_week(day)
        ).first()
    return resolve_window_from(override, weekly)


def generate_slots(window: OpenWindow, duration_minutes: int, step_minutes: int) -> list[time]:
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")
    if step_minutes is None or step_minutes <= 0:
        raise ValidationError("step_minutes must be positive")

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    current = datetime.combine(_ANCHOR, window.start)
    window_end = datetime.combine(_ANCHOR, window.end)

    slots = []
    while current + duration <= window_end:
        slots.append(current.time())
        current += step
    return slots


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap."""
    return start < other_end and other_start < end


def filter_conflicts(
    day: date,
    slots: Iterable[time],
    duration_minutes: int,
    appointments: Iterable[Appointment],
) -> list[time]:
    """Drop slots that collide with one worker's pending or confirmed appointments."""
    busy = [
        (appointment.starts_at, appointment.ends_at)
        for appointment in appointments
        if appointment.status in ACTIVE_APPOINTMENT_STATUSES
    ]
    duration = timedelta(minutes=duration_minutes)

    free = []
    for slot in slots:
        start = datetime.combine(day, slot)
        end = start + duration
        if not any(overlaps(start, end, busy_start, busy_end) for busy_start, busy_end in busy):
            free.append(slot)
    return free


def active_appointments(worker_ids: Sequence[int], day: date) -> dict[int, list[Appointment]]:
    """Pending/confirmed appointments touching ``day``, grouped by worker."""
    if not worker_ids:
        return {}
    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)
    rows = (
        Appointment.query
        .filter(
            Appointment.worker_id.in_(worker_ids),
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.starts_at < day_end,
            Appointment.ends_at > day_start,
        )
        .order_by(Appointment.starts_at)
        .all()
    )
    grouped: dict[int, list[Appointment]] = {worker_id: [] for worker_id in worker_ids}
    for appointment in rows:
        grouped[appointment.worker_id].append(appointment)
    return grouped


def find_conflict(
    worker_id: int,
    starts_at: datetime,
    ends_at: datetime,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    query = Appointment.query.filter(
        Appointment.worker_id == worker_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.starts_at < ends_at,
        Appointment.ends_at > starts_at,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.appointment_id != exclude_appointment_id)
    return query.first()


def load_bookable_service(vendor_id: int, service_id: int) -> tuple[Vendor, Service]:
    """Active vendor and an active service of that vendor, freshly read."""
    vendor = Vendor.query.filter_by(vendor_id=vendor_id, status="active").first()
    if vendor is None:
        raise NotFoundError("Vendor not found or not active")

    service = Service.query.filter_by(service_id=service_id, vendor_id=vendor_id, active=True).first()
    if service is None:
        raise NotFoundError("Service not found, not active, or not offered by this vendor")
    return vendor, service


def qualified_workers(vendor: Vendor, service: Service) -> list[Worker]:
    """Active workers of the vendor who can perform the service, in creation order."""
    return (
        Worker.query
        .filter(
            Worker.vendor_id == vendor.vendor_id,
            Worker.is_active.is_(True),
            Worker.services.any(Service.service_id == service.service_id),
        )
        .order_by(Worker.worker_id)
        .all()
    )


def pin_worker(vendor: Vendor, workers: list[Worker], worker_id: int) -> Worker:
    """The requested worker, provided they are qualified for the service."""
    for worker in workers:
        if worker.worker_id == worker_id:
            return worker

    exists = Worker.query.filter_by(worker_id=worker_id, vendor_id=vendor.vendor_id).first()
    if exists is None:
        raise NotFoundError("Worker not found at this vendor")
    raise PolicyViolation("Worker is not qualified for this service")


def slot_step_minutes(service: Service, vendor: Vendor) -> int:
    return service.slot_step_minutes or vendor.slot_step_minutes or current_app.config.get("SLOT_STEP_MINUTES", 15)


def vendor_closed_on(vendor: Vendor, day: date) -> bool:
    hours = vendor.operating_hours or {}
    key = str(day_of_week(day))
    return key in hours and not hours[key]


def ensure_bookable_date(day: date, today: date | None = None) -> None:
    """Bookings open from tomorrow; today and past dates are refused."""
    today = today or date.today()
    if day <= today:
        raise PolicyViolation("Appointments can only be booked from tomorrow onwards")


def worker_slots(worker: Worker, day: date, service: Service, step: int, appointments: Iterable[Appointment]) -> list[time] | None:
    """Free slots of one worker, or ``None`` when the worker is closed that day."""
    window = resolve_window(worker, day)
    if isinstance(window, ClosedWindow):
        return None
    candidates = generate_slots(window, service.duration_minutes, step)
    return filter_conflicts(day, candidates, service.duration_minutes, appointments)


def find_available_slots(
    vendor_id: int,
    service_id: int,
    day: date,
    worker_id: int | None = None,
    today: date | None = None,
) -> SlotQueryResult:
    """Bookable start times for a service on a date, each with the workers free at that time.

    ``worker_id`` narrows the result to times when that worker is free; it never
    reorders. The query takes no locks: booking re-validates at commit time.
    """
    vendor, service = load_bookable_service(vendor_id, service_id)
    ensure_bookable_date(day, today)

    workers = qualified_workers(vendor, service)
    preferred = pin_worker(vendor, workers, worker_id) if worker_id is not None else None
    if not workers:
        return SlotQueryResult(day, reason=REASON_NO_QUALIFIED_WORKER)

    step = slot_step_minutes(service, vendor)
    booked = active_appointments([worker.worker_id for worker in workers], day)

    by_time: dict[time, list[Worker]] = {}
    open_workers = set()
    for worker in workers:
        free = worker_slots(worker, day, service, step, booked[worker.worker_id])
        if free is None:
            continue
        open_workers.add(worker.worker_id)
        for slot in free:
            by_time.setdefault(slot, []).append(worker)

    if preferred is not None:
        by_time = {
            slot: free_workers for slot, free_workers in by_time.items()
            if preferred in free_workers
        }

    slots = [
        {
            "time": slot.strftime("%H:%M"),
            "availableWorkers": [worker.to_dict_basic() for worker in by_time[slot]],
        }
        for slot in sorted(by_time)
    ]
    if slots:
        return SlotQueryResult(day, slots=slots)

    considered = {preferred.worker_id} if preferred is not None else {w.worker_id for w in workers}
    if not considered & open_workers:
        reason = REASON_VENDOR_CLOSED if vendor_closed_on(vendor, day) else REASON_WORKER_UNAVAILABLE
    else:
        reason = REASON_FULLY_BOOKED
    current_app.logger.info(
        "No slots for vendor %s service %s on %s: %s", vendor_id, service_id, day.isoformat(), reason
    )
    return SlotQueryResult(day, reason=reason)


def select_worker(
    workers: Sequence[Worker],
    is_free: Callable[[Worker], bool],
    preferred_worker_id: int | None = None,
) -> Worker | None:
    """Worker to assign for a slot: the preferred one if still free, else the first free one.

    ``workers`` must already be in creation order. ``is_free`` is called lazily,
    one worker at a time, and never again once a worker is chosen.
    """
    if preferred_worker_id is not None:
        workers = [worker for worker in workers if worker.worker_id == preferred_worker_id]
    for worker in workers:
        if is_free(worker):
            return worker
    return None
