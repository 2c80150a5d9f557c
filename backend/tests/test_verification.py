"""
Verifier tests.

Verifies:
- Human-verification tokens are checked against the siteverify endpoint
- Transport and HTTP failures surface as VerifierUnavailableError
- Password re-confirmation uses the stored bcrypt hash
"""

import httpx
import pytest

from quoteflow.errors import VerifierUnavailableError
from quoteflow.extensions import db
from quoteflow.services import verification_service


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestHumanVerification:

    def test_success(self, app):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = dict(httpx.QueryParams(request.content.decode()))
            return httpx.Response(200, json={"success": True})

        with _client(handler) as client:
            assert verification_service.verify_human_token("tok", "203.0.113.9", client=client) is True

        assert seen["url"] == app.config["HUMAN_VERIFICATION_URL"]
        assert seen["form"] == {"secret": "test-secret", "response": "tok", "remoteip": "203.0.113.9"}

    def test_rejected_token(self, app):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})

        with _client(handler) as client:
            assert verification_service.verify_human_token("tok", client=client) is False

    def test_empty_token_is_rejected_without_request(self, app):
        def handler(request):
            raise AssertionError("verifier should not be called")

        with _client(handler) as client:
            assert verification_service.verify_human_token("", client=client) is False
            assert verification_service.verify_human_token(None, client=client) is False

    def test_server_error_is_unavailable(self, app):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        with _client(handler) as client:
            with pytest.raises(VerifierUnavailableError):
                verification_service.verify_human_token("tok", client=client)

    def test_connection_error_is_unavailable(self, app):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with _client(handler) as client:
            with pytest.raises(VerifierUnavailableError):
                verification_service.verify_human_token("tok", client=client)

    def test_malformed_body_is_unavailable(self, app):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        with _client(handler) as client:
            with pytest.raises(VerifierUnavailableError):
                verification_service.verify_human_token("tok", client=client)

    def test_non_object_body_is_unavailable(self, app):
        def handler(request):
            return httpx.Response(200, json=["unexpected"])

        with _client(handler) as client:
            with pytest.raises(VerifierUnavailableError):
                verification_service.verify_human_token("tok", client=client)


class TestCredentials:

    def test_password_check(self, buyer):
        assert verification_service.verify_credentials(buyer.id, "Password123!") is True
        assert verification_service.verify_credentials(buyer.id, "password123!") is False
        assert verification_service.verify_credentials(buyer.id, None) is False

    def test_inactive_or_unknown_user(self, buyer):
        assert verification_service.verify_credentials(987654, "Password123!") is False

        buyer.is_active = False
        db.session.commit()
        assert verification_service.verify_credentials(buyer.id, "Password123!") is False
