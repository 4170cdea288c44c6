"""pytest configuration: path management, app fixtures and data builders."""
from __future__ import annotations

import sys
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure the project root is available on sys.path so tests can import the bookit package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bookit import create_app  # noqa: E402
from bookit.auth import build_token  # noqa: E402
from bookit.extensions import db  # noqa: E402
from bookit.models import (Appointment, Service, User, Vendor, Worker,  # noqa: E402
                           WorkerAvailability, WorkerScheduleOverride)

# 2024-01-08 is a Monday; bookings against it are made "as of" the week before.
MONDAY = date(2024, 1, 8)
BEFORE_MONDAY = date(2024, 1, 1)
MONDAY_DOW = 1  # 0=Sunday


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def add_weekly(worker, day_of_week, start, end, is_available=True):
    row = WorkerAvailability(
        worker_id=worker.worker_id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        is_available=is_available,
    )
    db.session.add(row)
    db.session.commit()
    return row


def add_override(worker, day, start=None, end=None, is_day_off=False):
    row = WorkerScheduleOverride(
        worker_id=worker.worker_id,
        date=day,
        start_time=start,
        end_time=end,
        is_day_off=is_day_off,
    )
    db.session.add(row)
    db.session.commit()
    return row


def add_appointment(salon, worker, day, start, minutes=30, status="confirmed", user=None):
    starts_at = datetime.combine(day, start)
    appointment = Appointment(
        vendor_id=salon.vendor.vendor_id,
        service_id=salon.service.service_id,
        worker_id=worker.worker_id,
        user_id=(user or salon.customer).user_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=minutes),
        status=status,
    )
    db.session.add(appointment)
    db.session.commit()
    return appointment


def add_worker(salon, name, services=None):
    worker = Worker(
        vendor_id=salon.vendor.vendor_id,
        name=name,
        services=[salon.service] if services is None else services,
    )
    db.session.add(worker)
    db.session.commit()
    return worker


def auth_header(user):
    return {"Authorization": f"Bearer {build_token(user.user_id)}"}


def upcoming(python_weekday, after=None):
    """First date strictly after ``after`` (default today) falling on a Python weekday (0=Monday)."""
    after = after or date.today()
    days_ahead = (python_weekday - after.weekday()) % 7 or 7
    return after + timedelta(days=days_ahead)


def build_salon():
    owner = User(name="Vera Owner", email="owner@example.com", role="vendor_owner")
    customer = User(name="Charlie Customer", email="charlie@example.com", role="user")
    db.session.add_all([owner, customer])
    db.session.flush()

    vendor = Vendor(owner_id=owner.user_id, name="FrizNaKlik", status="active")
    db.session.add(vendor)
    db.session.flush()

    service = Service(
        vendor_id=vendor.vendor_id,
        name="Haircut",
        price=Decimal("15.00"),
        duration_minutes=30,
        slot_step_minutes=30,
    )
    db.session.add(service)
    db.session.flush()

    worker = Worker(vendor_id=vendor.vendor_id, name="Ana", services=[service])
    db.session.add(worker)
    db.session.commit()

    return SimpleNamespace(owner=owner, customer=customer, vendor=vendor, service=service, worker=worker)


@pytest.fixture
def salon(app):
    """Active vendor with one 30-minute service (30-minute step) and one qualified worker."""
    return build_salon()


@pytest.fixture
def monday_salon(salon):
    """``salon`` whose worker works Mondays 09:00-17:00."""
    add_weekly(salon.worker, MONDAY_DOW, time(9, 0), time(17, 0))
    return salon
