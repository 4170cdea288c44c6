"""Bearer-token identity for API requests.

Tokens are issued by the surrounding identity service; this module only signs
test/dev tokens and resolves the ``user_id`` they carry.
"""
from __future__ import annotations

from flask import current_app, request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .extensions import db
from .models import User, Vendor

STAFF_ROLES = ("vendor_owner", "super_admin")


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(user_id: int) -> str:
    return _serializer().dumps({"user_id": user_id})


def get_jwt_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns the user_id if the token is valid, None if missing, expired or tampered with.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = _serializer().loads(token, max_age=current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400))
    except BadSignature:
        # Covers SignatureExpired as well.
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("user_id")


def current_user() -> User | None:
    user_id = get_jwt_identity()
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def can_manage_vendor(user: User, vendor_id: int) -> bool:
    """Super admins manage every vendor; vendor owners only their own."""
    if user.role not in STAFF_ROLES:
        return False
    if user.role == "super_admin":
        return True
    return Vendor.query.filter_by(vendor_id=vendor_id, owner_id=user.user_id).first() is not None
