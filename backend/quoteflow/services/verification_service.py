# Overview: Service-layer operations for verification; encapsulates business logic and database work.

"""
Opaque verifiers used by the Risk Gate.

- verify_human_token: checks a client-supplied human-verification token
  against a reCAPTCHA-compatible siteverify endpoint.
- verify_credentials: checks an actor's password re-confirmation with bcrypt.

Both return booleans for "match / no match". A verifier that cannot answer
raises VerifierUnavailableError; that is an infrastructure failure and is
never reported as a wrong answer.
"""

from __future__ import annotations

import httpx
from flask import current_app

from ..errors import VerifierUnavailableError
from ..extensions import db
from ..models import User
from .auth_service import verify_password


def verify_human_token(
    token: str | None,
    remote_ip: str | None = None,
    *,
    client: httpx.Client | None = None,
) -> bool:
    if not token:
        return False

    config = current_app.config
    form = {
        "secret": config.get("HUMAN_VERIFICATION_SECRET", ""),
        "response": token,
    }
    if remote_ip:
        form["remoteip"] = remote_ip

    url = config["HUMAN_VERIFICATION_URL"]
    try:
        if client is None:
            with httpx.Client(timeout=config.get("HUMAN_VERIFICATION_TIMEOUT_SECONDS", 5)) as http:
                response = http.post(url, data=form)
        else:
            response = client.post(url, data=form)
        response.raise_for_status()
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        current_app.logger.warning("Human verification request failed: %s", exc)
        raise VerifierUnavailableError("Human verification service unavailable") from exc

    if not isinstance(body, dict):
        current_app.logger.warning("Human verification returned an unexpected body: %r", body)
        raise VerifierUnavailableError("Human verification service unavailable")

    if not body.get("success"):
        current_app.logger.info(
            "Human verification rejected: %s", body.get("error-codes") or "no error codes"
        )
    return body.get("success") is True


def verify_credentials(user_id: int, password: str | None) -> bool:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return False
    return verify_password(password or "", user.password_hash)
