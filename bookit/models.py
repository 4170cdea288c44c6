"""Database models for the BookIt booking service."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db

ACTIVE_APPOINTMENT_STATUSES = ("pending", "confirmed")
APPOINTMENT_STATUSES = (
    "pending",
    "confirmed",
    "cancelled_by_user",
    "cancelled_by_vendor",
    "rejected",
    "completed",
    "no_show",
)


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _hhmm(value) -> str | None:
    return value.strftime("%H:%M") if value else None


# Qualification of workers for services (many-to-many).
worker_services = db.Table(
    "worker_services",
    db.Column("worker_id", db.Integer, db.ForeignKey("workers.worker_id"), primary_key=True),
    db.Column("service_id", db.Integer, db.ForeignKey("services.service_id"), primary_key=True),
)


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "user",
            "vendor_owner",
            "worker",
            "super_admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="user",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }


class Vendor(db.Model):
    __tablename__ = "vendors"

    vendor_id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    name = db.Column(db.String(150), nullable=False)
    address = db.Column(db.String(255))
    status = db.Column(
        db.Enum(
            "pending_approval",
            "active",
            "suspended",
            "rejected",
            name="vendor_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending_approval",
    )
    # Informational only: {"0": {"open": "09:00", "close": "17:00"}, "1": null, ...}
    operating_hours = db.Column(db.JSON, nullable=True, default=dict)
    slot_step_minutes = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    owner = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.vendor_id,
            "name": self.name,
            "address": self.address,
            "status": self.status,
            "operating_hours": self.operating_hours or {},
        }


class Service(db.Model):
    """Services offered by a vendor."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    slot_step_minutes = db.Column(db.Integer, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
    )

    vendor = db.relationship("Vendor")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "vendor_id": self.vendor_id,
            "name": self.name,
            "description": self.description,
            "price": str(self.price) if self.price is not None else None,
            "duration_minutes": self.duration_minutes,
            "active": bool(self.active),
        }


class Worker(db.Model):
    __tablename__ = "workers"

    worker_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    bio = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Bumped inside every booking transaction; the UPDATE is the per-worker lock.
    booking_version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    vendor = db.relationship("Vendor")
    user = db.relationship("User")
    services = db.relationship("Service", secondary=worker_services, backref="workers", lazy="selectin")
    availabilities = db.relationship(
        "WorkerAvailability",
        back_populates="worker",
        cascade="all, delete-orphan",
        order_by="WorkerAvailability.day_of_week",
    )
    schedule_overrides = db.relationship(
        "WorkerScheduleOverride",
        back_populates="worker",
        cascade="all, delete-orphan",
        order_by="WorkerScheduleOverride.date",
    )

    def to_dict_basic(self) -> dict[str, object]:
        return {"id": self.worker_id, "name": self.name}

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.worker_id,
            "vendor_id": self.vendor_id,
            "user_id": self.user_id,
            "name": self.name,
            "bio": self.bio,
            "is_active": bool(self.is_active),
            "service_ids": sorted(service.service_id for service in self.services),
        }


class WorkerAvailability(db.Model):
    """Weekly recurring availability for a worker."""

    __tablename__ = "worker_availabilities"

    availability_id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.worker_id"), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0=Sunday, 1=Monday, etc.
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint("worker_id", "day_of_week", name="uq_worker_availabilities_worker_day"),
    )

    worker = db.relationship("Worker", back_populates="availabilities")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.availability_id,
            "worker_id": self.worker_id,
            "day_of_week": self.day_of_week,
            "start_time": _hhmm(self.start_time),
            "end_time": _hhmm(self.end_time),
            "is_available": bool(self.is_available),
        }


class WorkerScheduleOverride(db.Model):
    """Date-specific replacement of a worker's weekly pattern (day off or special hours)."""

    __tablename__ = "worker_schedule_overrides"

    override_id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.worker_id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)
    is_day_off = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("worker_id", "date", name="uq_worker_schedule_overrides_worker_date"),
    )

    worker = db.relationship("Worker", back_populates="schedule_overrides")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.override_id,
            "worker_id": self.worker_id,
            "date": self.date.isoformat() if self.date else None,
            "start_time": _hhmm(self.start_time),
            "end_time": _hhmm(self.end_time),
            "is_day_off": bool(self.is_day_off),
            "notes": self.notes,
        }


class Appointment(db.Model):
    """Client appointments with a worker at a vendor."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.vendor_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.worker_id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    starts_at = db.Column(db.DateTime, nullable=False)
    ends_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
        server_default="pending",
    )
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.CheckConstraint("ends_at > starts_at", name="ck_appointments_ends_after_start"),
        # Two active bookings of one worker can never share a start time.
        db.Index(
            "uq_appointments_active_worker_start",
            "worker_id",
            "starts_at",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'confirmed')"),
            postgresql_where=db.text("status IN ('pending', 'confirmed')"),
        ),
        db.Index("ix_appointments_worker_starts_at", "worker_id", "starts_at"),
    )

    vendor = db.relationship("Vendor")
    service = db.relationship("Service")
    worker = db.relationship("Worker")
    user = db.relationship("User")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_APPOINTMENT_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor.name if self.vendor else None,
            "service_id": self.service_id,
            "service": {
                "id": self.service.service_id,
                "name": self.service.name,
                "duration_minutes": self.service.duration_minutes,
            } if self.service else None,
            "worker_id": self.worker_id,
            "worker": self.worker.to_dict_basic() if self.worker else None,
            "user_id": self.user_id,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "status": self.status,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Notification(db.Model):
    """Status-change notices queued for users; delivery happens elsewhere."""

    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id", ondelete="SET NULL"), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    notification_type = db.Column(db.String(50), nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "user_id": self.user_id,
            "appointment_id": self.appointment_id,
            "title": self.title,
            "message": self.message,
            "notification_type": self.notification_type,
            "is_read": bool(self.is_read),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
