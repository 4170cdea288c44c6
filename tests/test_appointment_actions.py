"""Status transitions, reassignment, duration edits and cleanup."""
from __future__ import annotations

from datetime import datetime, time

import pytest

from bookit.booking import (assign_worker, bulk_approve, change_duration,
                            cleanup_appointments, list_vendor_appointments,
                            transition_appointment)
from bookit.errors import (ConflictError, NotFoundError, PolicyViolation,
                           ValidationError)
from bookit.extensions import db
from bookit.models import Appointment, Notification, User, Vendor, Worker
from tests.conftest import MONDAY, add_appointment, add_worker


@pytest.mark.parametrize("action,start,end", [
    ("approve", "pending", "confirmed"),
    ("reject", "pending", "rejected"),
    ("complete", "confirmed", "completed"),
    ("no_show", "confirmed", "no_show"),
    ("cancel_by_vendor", "pending", "cancelled_by_vendor"),
    ("cancel_by_vendor", "confirmed", "cancelled_by_vendor"),
])
def test_allowed_transitions(salon, action, start, end):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status=start)

    updated = transition_appointment(appointment.appointment_id, action)

    assert updated.status == end
    notification = Notification.query.filter_by(appointment_id=appointment.appointment_id).one()
    assert notification.notification_type == f"appointment_{end}"


@pytest.mark.parametrize("action,start", [
    ("approve", "confirmed"),
    ("reject", "cancelled_by_user"),
    ("complete", "pending"),
    ("no_show", "completed"),
    ("cancel_by_vendor", "rejected"),
])
def test_disallowed_transitions_leave_status_alone(salon, action, start):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status=start)

    with pytest.raises(PolicyViolation):
        transition_appointment(appointment.appointment_id, action)

    db.session.expire_all()
    assert db.session.get(Appointment, appointment.appointment_id).status == start


def test_unknown_action_is_a_validation_error(salon):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status="pending")

    with pytest.raises(ValidationError):
        transition_appointment(appointment.appointment_id, "teleport")


def test_missing_appointment_is_not_found(app):
    with pytest.raises(NotFoundError):
        transition_appointment(404, "approve")


def test_customer_can_cancel_only_their_own(salon):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status="pending")

    with pytest.raises(NotFoundError):
        transition_appointment(appointment.appointment_id, "cancel_by_user", user_id=salon.owner.user_id)

    updated = transition_appointment(appointment.appointment_id, "cancel_by_user", user_id=salon.customer.user_id)
    assert updated.status == "cancelled_by_user"


def test_confirming_needs_an_assigned_worker(salon):
    appointment = Appointment(
        vendor_id=salon.vendor.vendor_id,
        service_id=salon.service.service_id,
        worker_id=None,
        user_id=salon.customer.user_id,
        starts_at=datetime(2024, 1, 8, 10, 0),
        ends_at=datetime(2024, 1, 8, 10, 30),
        status="pending",
    )
    db.session.add(appointment)
    db.session.commit()

    with pytest.raises(PolicyViolation):
        transition_appointment(appointment.appointment_id, "approve")


def test_reassign_to_free_qualified_worker(salon):
    ben = add_worker(salon, "Ben")
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))

    updated = assign_worker(appointment.appointment_id, str(ben.worker_id))

    assert updated.worker_id == ben.worker_id


def test_reassign_to_busy_worker_conflicts(salon):
    ben = add_worker(salon, "Ben")
    add_appointment(salon, ben, MONDAY, time(10, 15), status="pending")
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))

    with pytest.raises(ConflictError):
        assign_worker(appointment.appointment_id, ben.worker_id)

    db.session.expire_all()
    assert db.session.get(Appointment, appointment.appointment_id).worker_id == salon.worker.worker_id


def test_reassign_rejects_unqualified_foreign_or_malformed_workers(salon):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))
    unqualified = add_worker(salon, "Nina", services=[])

    other_owner = User(name="Other", email="other@example.com", role="vendor_owner")
    db.session.add(other_owner)
    db.session.flush()
    other_vendor = Vendor(owner_id=other_owner.user_id, name="Elsewhere", status="active")
    db.session.add(other_vendor)
    db.session.flush()
    stranger = Worker(vendor_id=other_vendor.vendor_id, name="Stranger")
    db.session.add(stranger)
    db.session.commit()

    with pytest.raises(PolicyViolation):
        assign_worker(appointment.appointment_id, unqualified.worker_id)
    with pytest.raises(NotFoundError):
        assign_worker(appointment.appointment_id, stranger.worker_id)
    with pytest.raises(ValidationError):
        assign_worker(appointment.appointment_id, "ben")
    with pytest.raises(ValidationError):
        assign_worker(appointment.appointment_id, None)


def test_finished_appointment_cannot_be_reassigned(salon):
    ben = add_worker(salon, "Ben")
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status="completed")

    with pytest.raises(PolicyViolation):
        assign_worker(appointment.appointment_id, ben.worker_id)


def test_change_duration_moves_the_end(salon):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))

    updated = change_duration(appointment.appointment_id, 50)

    assert updated.starts_at == datetime(2024, 1, 8, 10, 0)
    assert updated.ends_at == datetime(2024, 1, 8, 10, 50)


def test_longer_duration_may_not_run_into_the_next_appointment(salon):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))
    add_appointment(salon, salon.worker, MONDAY, time(10, 30))

    with pytest.raises(ConflictError):
        change_duration(appointment.appointment_id, 45)

    db.session.expire_all()
    assert db.session.get(Appointment, appointment.appointment_id).ends_at == datetime(2024, 1, 8, 10, 30)


@pytest.mark.parametrize("value", [0, -15, "30", 12.5, True, None])
def test_duration_must_be_a_positive_integer(salon, value):
    appointment = add_appointment(salon, salon.worker, MONDAY, time(10, 0))

    with pytest.raises(ValidationError):
        change_duration(appointment.appointment_id, value)


def test_cleanup_removes_terminal_and_old_completed_only(salon):
    keep = [
        add_appointment(salon, salon.worker, MONDAY, time(9, 0), status="pending"),
        add_appointment(salon, salon.worker, MONDAY, time(9, 30), status="confirmed"),
    ]
    recent_completed = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status="completed")
    for index, status in enumerate(["rejected", "cancelled_by_user", "cancelled_by_vendor", "no_show"]):
        add_appointment(salon, salon.worker, MONDAY, time(11 + index, 0), status=status)

    deleted = cleanup_appointments(vendor_id=salon.vendor.vendor_id, now=datetime(2024, 1, 20))

    assert deleted == 4
    remaining = {a.appointment_id for a in Appointment.query.all()}
    assert remaining == {keep[0].appointment_id, keep[1].appointment_id, recent_completed.appointment_id}

    assert cleanup_appointments(now=datetime(2024, 3, 1)) == 1
    assert Appointment.query.count() == 2


def test_vendor_appointments_are_listed_soonest_first(salon):
    later = add_appointment(salon, salon.worker, MONDAY, time(14, 0), status="pending")
    earlier = add_appointment(salon, salon.worker, MONDAY, time(9, 0), status="confirmed")
    rejected = add_appointment(salon, salon.worker, MONDAY, time(11, 0), status="rejected")

    everything = list_vendor_appointments(salon.vendor.vendor_id)
    queue = list_vendor_appointments(salon.vendor.vendor_id, status="pending")

    assert [a.appointment_id for a in everything] == [
        earlier.appointment_id,
        rejected.appointment_id,
        later.appointment_id,
    ]
    assert [a.appointment_id for a in queue] == [later.appointment_id]
    assert list_vendor_appointments(salon.vendor.vendor_id + 1) == []


def test_unknown_status_filter_is_a_validation_error(salon):
    with pytest.raises(ValidationError):
        list_vendor_appointments(salon.vendor.vendor_id, status="approved")


def test_bulk_approve_confirms_every_pending_row_and_notifies_each(salon):
    ben = add_worker(salon, "Ben")
    first = add_appointment(salon, salon.worker, MONDAY, time(9, 0), status="pending")
    second = add_appointment(salon, ben, MONDAY, time(9, 0), status="pending")
    untouched = add_appointment(salon, salon.worker, MONDAY, time(10, 0), status="cancelled_by_user")

    approved = bulk_approve(salon.vendor.vendor_id)

    assert {a.appointment_id for a in approved} == {first.appointment_id, second.appointment_id}
    db.session.expire_all()
    assert db.session.get(Appointment, first.appointment_id).status == "confirmed"
    assert db.session.get(Appointment, second.appointment_id).worker_id == ben.worker_id
    assert db.session.get(Appointment, untouched.appointment_id).status == "cancelled_by_user"
    assert Notification.query.filter_by(notification_type="appointment_confirmed").count() == 2


def test_bulk_approve_leaves_unassigned_rows_and_other_vendors_alone(salon):
    unassigned = Appointment(
        vendor_id=salon.vendor.vendor_id,
        service_id=salon.service.service_id,
        worker_id=None,
        user_id=salon.customer.user_id,
        starts_at=datetime(2024, 1, 8, 12, 0),
        ends_at=datetime(2024, 1, 8, 12, 30),
        status="pending",
    )
    db.session.add(unassigned)
    db.session.commit()

    assert bulk_approve(salon.vendor.vendor_id) == []
    assert bulk_approve(salon.vendor.vendor_id + 1) == []
    db.session.expire_all()
    assert db.session.get(Appointment, unassigned.appointment_id).status == "pending"
    assert Notification.query.count() == 0
