"""Default configuration for the BookIt booking service."""
from __future__ import annotations

import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "bookit-dev-secret")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///bookit.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Granularity used when neither the service nor the vendor sets one.
    SLOT_STEP_MINUTES = int(os.environ.get("SLOT_STEP_MINUTES", 15))

    AUTH_TOKEN_MAX_AGE = 86400
    CLEANUP_COMPLETED_AFTER_DAYS = 30
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
