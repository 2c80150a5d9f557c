# backend/quoteflow/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    value = os.environ.get(name)
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/quoteflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///quoteflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        (
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        ),
    )

    # Authentication
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_MINUTES = int(os.environ.get("SESSION_IDLE_TIMEOUT_MINUTES", "120"))

    # Quotation lifecycle
    QUOTATION_DRAFT_VALIDITY_DAYS = int(os.environ.get("QUOTATION_DRAFT_VALIDITY_DAYS", "3"))
    QUOTATION_VALIDITY_DAYS = int(os.environ.get("QUOTATION_VALIDITY_DAYS", "7"))

    # Payment proofs may exceed the outstanding balance by this much (rounding)
    PAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_TOLERANCE_CENTS", "1"))

    # Step-up authentication policy (see services/stepup_service.StepUpPolicy)
    STEPUP_ACTION_REQUIREMENTS = {
        "quotation.approve": ("password",),
        "payment_proof.submit": ("password",),
    }
    STEPUP_SESSION_TTL_SECONDS = int(os.environ.get("STEPUP_SESSION_TTL_SECONDS", "600"))
    STEPUP_MAX_PASSWORD_ATTEMPTS = int(os.environ.get("STEPUP_MAX_PASSWORD_ATTEMPTS", "3"))
    STEPUP_ALWAYS_REQUIRE_HUMAN_VERIFICATION = _env_bool("STEPUP_ALWAYS_REQUIRE_HUMAN_VERIFICATION")
    STEPUP_HUMAN_VERIFICATION_ACTIONS = _env_list("STEPUP_HUMAN_VERIFICATION_ACTIONS")

    # Risk signals that escalate a challenge to human verification
    RISK_FAILURE_THRESHOLD = int(os.environ.get("RISK_FAILURE_THRESHOLD", "3"))
    RISK_FAILURE_WINDOW_MINUTES = int(os.environ.get("RISK_FAILURE_WINDOW_MINUTES", "60"))
    RISK_VELOCITY_THRESHOLD = int(os.environ.get("RISK_VELOCITY_THRESHOLD", "5"))
    RISK_VELOCITY_WINDOW_MINUTES = int(os.environ.get("RISK_VELOCITY_WINDOW_MINUTES", "5"))
    RISK_AMOUNT_VARIANCE_THRESHOLD = float(os.environ.get("RISK_AMOUNT_VARIANCE_THRESHOLD", "0.5"))
    RISK_TRACK_CLIENT_IP = _env_bool("RISK_TRACK_CLIENT_IP", True)

    # Human-verification (reCAPTCHA compatible siteverify endpoint)
    HUMAN_VERIFICATION_URL = os.environ.get(
        "HUMAN_VERIFICATION_URL",
        "https://www.google.com/recaptcha/api/siteverify",
    )
    HUMAN_VERIFICATION_SECRET = os.environ.get("HUMAN_VERIFICATION_SECRET", "")
    HUMAN_VERIFICATION_TIMEOUT_SECONDS = float(os.environ.get("HUMAN_VERIFICATION_TIMEOUT_SECONDS", "5"))
