"""HTTP routes for the BookIt booking service."""
from __future__ import annotations

from flask import Blueprint, Flask, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth import can_manage_vendor, current_user
from .availability import (find_available_slots, load_bookable_service,
                           qualified_workers)
from .booking import (assign_worker, book_appointment, bulk_approve,
                      change_duration, cleanup_appointments, get_appointment,
                      list_vendor_appointments, transition_appointment)
from .errors import BookingError, ValidationError
from .extensions import db
from .models import Appointment, Worker
from .notifications import list_notifications
from .schedules import (parse_date, replace_worker_schedule,
                        set_worker_services, worker_schedule)

bp = Blueprint("api", __name__)

STAFF_ACTIONS = {
    "approve": "approve",
    "reject": "reject",
    "complete": "complete",
    "no-show": "no_show",
    "cancel": "cancel_by_vendor",
}


def register_routes(app: Flask) -> None:
    app.register_blueprint(bp)


@bp.errorhandler(BookingError)
def handle_booking_error(exc: BookingError) -> tuple[dict[str, str], int]:
    return jsonify(exc.to_dict()), exc.status_code


def _unauthorized() -> tuple[dict[str, str], int]:
    return jsonify({"error": "unauthorized", "message": "Invalid or missing token"}), 401


def _forbidden() -> tuple[dict[str, str], int]:
    return jsonify({"error": "forbidden", "message": "You cannot manage this vendor"}), 403


def _json_body() -> dict[str, object]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _optional_int(value: object, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.get("/vendors/<int:vendor_id>/services/<int:service_id>/workers")
def list_service_workers(vendor_id: int, service_id: int) -> tuple[dict[str, object], int]:
    """List the workers qualified to perform a service.
    ---
    tags:
      - Availability
    responses:
      200:
        description: Qualified workers in creation order
      404:
        description: Vendor or service not found or not active
    """
    try:
        vendor, service = load_bookable_service(vendor_id, service_id)
        workers = qualified_workers(vendor, service)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch qualified workers", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"workers": [worker.to_dict_basic() for worker in workers]}), 200


@bp.get("/vendors/<int:vendor_id>/services/<int:service_id>/availability")
def get_availability(vendor_id: int, service_id: int) -> tuple[dict[str, object], int]:
    """Bookable start times for a service on a date.
    ---
    tags:
      - Availability
    parameters:
      - name: date
        in: query
        type: string
        required: true
        description: YYYY-MM-DD, tomorrow or later
      - name: worker_id
        in: query
        type: integer
        description: Only return times when this worker is free
    responses:
      200:
        description: Ordered slots with the workers free at each time
      400:
        description: Invalid parameters
      401:
        description: Missing or invalid token
      404:
        description: Vendor, service or worker not found
      422:
        description: Date not bookable or worker not qualified
    """
    if current_user() is None:
        return _unauthorized()

    day = parse_date(request.args.get("date"))
    worker_id = _optional_int(request.args.get("worker_id"), "worker_id")

    try:
        result = find_available_slots(vendor_id, service_id, day, worker_id=worker_id)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute availability", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify(result.to_dict()), 200


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book a slot.
    ---
    tags:
      - Appointments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            vendor_id:
              type: integer
            service_id:
              type: integer
            worker_id:
              type: integer
            date:
              type: string
              format: date
            slot:
              type: string
              example: "10:30"
            notes:
              type: string
          required:
            - vendor_id
            - service_id
            - date
            - slot
    responses:
      201:
        description: Pending appointment created
      400:
        description: Invalid payload
      401:
        description: Missing or invalid token
      404:
        description: Vendor, service or worker not found
      409:
        description: Slot taken meanwhile; query availability again
      422:
        description: Same-day booking or unqualified worker
    """
    user = current_user()
    if user is None:
        return _unauthorized()

    payload = _json_body()
    vendor_id = _optional_int(payload.get("vendor_id"), "vendor_id")
    service_id = _optional_int(payload.get("service_id"), "service_id")
    worker_id = _optional_int(payload.get("worker_id"), "worker_id")

    if vendor_id is None or service_id is None or not payload.get("date") or not payload.get("slot"):
        return (
            jsonify({
                "error": "invalid_payload",
                "message": "vendor_id, service_id, date, and slot are required",
            }),
            400,
        )

    appointment = book_appointment(
        vendor_id=vendor_id,
        service_id=service_id,
        worker_id=worker_id,
        day=payload["date"],
        slot=payload["slot"],
        user_id=user.user_id,
        notes=payload.get("notes"),
    )
    return jsonify({"message": "Appointment requested", "appointment": appointment.to_dict()}), 201


@bp.get("/appointments/my")
def list_my_appointments() -> tuple[dict[str, object], int]:
    """Appointments of the authenticated user, newest first."""
    user = current_user()
    if user is None:
        return _unauthorized()

    try:
        appointments = (
            Appointment.query
            .filter_by(user_id=user.user_id)
            .order_by(Appointment.starts_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointments": [appointment.to_dict() for appointment in appointments]}), 200


@bp.put("/appointments/<int:appointment_id>/cancel")
def cancel_my_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Cancel one of the authenticated user's pending or confirmed appointments."""
    user = current_user()
    if user is None:
        return _unauthorized()

    appointment = transition_appointment(appointment_id, "cancel_by_user", user_id=user.user_id)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.get("/notifications")
def get_notifications() -> tuple[dict[str, object], int]:
    user = current_user()
    if user is None:
        return _unauthorized()

    unread_only = request.args.get("unread_only", "false").lower() == "true"
    try:
        notifications = list_notifications(user.user_id, unread_only=unread_only)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch notifications", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200


# --- Vendor staff ---


@bp.put("/admin/appointments/<int:appointment_id>/<string:action>")
def update_appointment_status(appointment_id: int, action: str) -> tuple[dict[str, object], int]:
    """Approve, reject, complete, mark no-show, or cancel an appointment.
    ---
    tags:
      - Admin Appointments
    parameters:
      - in: path
        name: action
        required: true
        type: string
        enum: [approve, reject, complete, no-show, cancel]
    responses:
      200:
        description: Appointment updated
      403:
        description: Not staff of this vendor
      404:
        description: Appointment not found
      422:
        description: Transition not allowed from the current status
    """
    user = current_user()
    if user is None:
        return _unauthorized()
    if action not in STAFF_ACTIONS:
        return jsonify({"error": "not_found", "message": f"Unknown action: {action}"}), 404

    appointment = get_appointment(appointment_id)
    if not can_manage_vendor(user, appointment.vendor_id):
        return _forbidden()

    appointment = transition_appointment(appointment_id, STAFF_ACTIONS[action])
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.put("/admin/appointments/<int:appointment_id>/assign-worker")
def reassign_appointment_worker(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an active appointment to another qualified, free worker."""
    user = current_user()
    if user is None:
        return _unauthorized()

    appointment = get_appointment(appointment_id)
    if not can_manage_vendor(user, appointment.vendor_id):
        return _forbidden()

    payload = _json_body()
    appointment = assign_worker(appointment_id, payload.get("worker_id"))
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.put("/admin/appointments/<int:appointment_id>/duration")
def update_appointment_duration(appointment_id: int) -> tuple[dict[str, object], int]:
    """Change how long an appointment lasts; its start time is kept."""
    user = current_user()
    if user is None:
        return _unauthorized()

    appointment = get_appointment(appointment_id)
    if not can_manage_vendor(user, appointment.vendor_id):
        return _forbidden()

    payload = _json_body()
    appointment = change_duration(appointment_id, payload.get("duration_minutes"))
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/admin/appointments/cleanup")
def cleanup_old_appointments() -> tuple[dict[str, object], int]:
    """Purge terminal appointments. Super admins may omit vendor_id to purge every vendor."""
    user = current_user()
    if user is None:
        return _unauthorized()

    payload = _json_body()
    vendor_id = _optional_int(payload.get("vendor_id"), "vendor_id")

    if vendor_id is None and user.role != "super_admin":
        return jsonify({"error": "invalid_payload", "message": "vendor_id is required"}), 400
    if vendor_id is not None and not can_manage_vendor(user, vendor_id):
        return _forbidden()

    deleted = cleanup_appointments(vendor_id=vendor_id)
    return jsonify({"deleted_count": deleted}), 200


@bp.post("/admin/appointments/bulk-approve")
def bulk_approve_appointments() -> tuple[dict[str, object], int]:
    """Confirm every pending appointment of a vendor at once.
    ---
    tags:
      - Admin Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            vendor_id:
              type: integer
    responses:
      200:
        description: Number and list of confirmed appointments
      400:
        description: vendor_id missing
      403:
        description: Not staff of this vendor
    """
    user = current_user()
    if user is None:
        return _unauthorized()

    vendor_id = _optional_int(_json_body().get("vendor_id"), "vendor_id")
    if vendor_id is None:
        return jsonify({"error": "invalid_payload", "message": "vendor_id is required"}), 400
    if not can_manage_vendor(user, vendor_id):
        return _forbidden()

    approved = bulk_approve(vendor_id)
    return jsonify({
        "approved_count": len(approved),
        "appointments": [appointment.to_dict() for appointment in approved],
    }), 200


@bp.get("/admin/vendors/<int:vendor_id>/appointments")
def list_vendor_appointments_for_staff(vendor_id: int) -> tuple[dict[str, object], int]:
    """Appointments of a vendor, soonest first; ``?status=pending`` gives the approval queue.
    ---
    tags:
      - Admin Appointments
    parameters:
      - name: status
        in: query
        type: string
        enum: [pending, confirmed, cancelled_by_user, cancelled_by_vendor, rejected, completed, no_show]
    responses:
      200:
        description: Appointments of the vendor
      400:
        description: Unknown status
      403:
        description: Not staff of this vendor
    """
    user = current_user()
    if user is None:
        return _unauthorized()
    if not can_manage_vendor(user, vendor_id):
        return _forbidden()

    status = request.args.get("status") or None
    try:
        appointments = list_vendor_appointments(vendor_id, status=status)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch appointments for vendor %s", vendor_id, exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointments": [appointment.to_dict() for appointment in appointments]}), 200


@bp.put("/admin/vendors/<int:vendor_id>/workers/<int:worker_id>/schedule")
def update_worker_schedule(vendor_id: int, worker_id: int) -> tuple[dict[str, object], int]:
    """Replace a worker's weekly availability and/or date overrides.
    ---
    tags:
      - Worker Schedules
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            availabilities:
              type: array
              items:
                properties:
                  day_of_week:
                    type: integer
                    description: 0=Sunday ... 6=Saturday
                  start_time:
                    type: string
                  end_time:
                    type: string
                  is_available:
                    type: boolean
            overrides:
              type: array
              items:
                properties:
                  date:
                    type: string
                  start_time:
                    type: string
                  end_time:
                    type: string
                  is_day_off:
                    type: boolean
                  notes:
                    type: string
    responses:
      200:
        description: Schedule replaced
      400:
        description: Invalid input
      403:
        description: Not staff of this vendor
      404:
        description: Worker not found at this vendor
    """
    user = current_user()
    if user is None:
        return _unauthorized()
    if not can_manage_vendor(user, vendor_id):
        return _forbidden()

    worker = Worker.query.filter_by(worker_id=worker_id, vendor_id=vendor_id).first()
    if worker is None:
        return jsonify({"error": "not_found", "message": "Worker not found at this vendor"}), 404

    payload = _json_body()
    availabilities = payload.get("availabilities")
    overrides = payload.get("overrides")
    if availabilities is None and overrides is None:
        return (
            jsonify({"error": "invalid_payload", "message": "availabilities or overrides is required"}),
            400,
        )
    if not isinstance(availabilities, (list, type(None))) or not isinstance(overrides, (list, type(None))):
        return jsonify({"error": "invalid_payload", "message": "availabilities and overrides must be lists"}), 400

    worker = replace_worker_schedule(worker, availabilities=availabilities, overrides=overrides)
    return jsonify({
        "worker": worker.to_dict(),
        "availabilities": [row.to_dict() for row in worker.availabilities],
        "overrides": [row.to_dict() for row in worker.schedule_overrides],
    }), 200


@bp.put("/admin/workers/<int:worker_id>/services")
def update_worker_services(worker_id: int) -> tuple[dict[str, object], int]:
    """Set which services a worker is qualified for."""
    user = current_user()
    if user is None:
        return _unauthorized()

    worker = db.session.get(Worker, worker_id)
    if worker is None:
        return jsonify({"error": "not_found", "message": "Worker not found"}), 404
    if not can_manage_vendor(user, worker.vendor_id):
        return _forbidden()

    payload = _json_body()
    service_ids = payload.get("service_ids")
    if not isinstance(service_ids, list):
        return jsonify({"error": "invalid_payload", "message": "service_ids must be a list"}), 400

    worker = set_worker_services(worker, service_ids)
    return jsonify({"worker": worker.to_dict()}), 200


@bp.get("/workers/<int:worker_id>/schedule")
def get_worker_schedule(worker_id: int) -> tuple[dict[str, object], int]:
    """Weekly pattern, upcoming overrides and upcoming appointments of a worker.

    Visible to the worker's own user account and to staff of the vendor.
    """
    user = current_user()
    if user is None:
        return _unauthorized()

    try:
        worker = db.session.get(Worker, worker_id)
        if worker is None:
            return jsonify({"error": "not_found", "message": "Worker not found"}), 404
        if worker.user_id != user.user_id and not can_manage_vendor(user, worker.vendor_id):
            return _forbidden()
        payload = worker_schedule(worker)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch worker schedule", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify(payload), 200
