"""
API route tests.

Verifies:
- Protected routes require a bearer session and the right permission
- The quotation lifecycle works end to end over HTTP, including the
  403 requires_step_up round trip through /api/challenges
- Business errors map to their status codes; verifier outages to 503
"""

from quoteflow.errors import VerifierUnavailableError
from quoteflow.extensions import db
from quoteflow.models import SecurityEvent
from quoteflow.services import conversion_service, verification_service


class TestAuthentication:

    def test_protected_route_requires_token(self, client):
        assert client.get('/api/quotations/my').status_code == 401
        response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})
        assert response.status_code == 401
        assert response.json['error'] == 'Invalid or expired token'

    def test_login_failure_is_logged(self, client, buyer):
        response = client.post('/api/auth/login', json={'username': 'acme', 'password': 'wrong'})

        assert response.status_code == 401
        assert db.session.query(SecurityEvent).filter_by(event_type='LOGIN_FAILED').count() == 1

    def test_login_with_email_returns_permissions(self, client, buyer):
        response = client.post('/api/auth/login', json={'email': 'buyer@acme.test', 'password': 'Password123!'})

        assert response.status_code == 200
        assert response.json['user']['roles'] == ['buyer']
        assert 'DECIDE_QUOTATION' in response.json['permissions']
        assert 'VERIFY_PAYMENT' not in response.json['permissions']

    def test_logout_revokes_token(self, client, buyer, auth_headers):
        headers = auth_headers('acme')

        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401


class TestPermissions:

    def test_staff_cannot_request_quotation(self, client, staff, marble, auth_headers):
        response = client.post('/api/quotations/', headers=auth_headers('sales'), json={
            'items': [{'catalog_item_id': marble.id, 'quantity': 1}],
        })

        assert response.status_code == 403
        assert response.json['required_permission'] == 'REQUEST_QUOTATION'
        assert db.session.query(SecurityEvent).filter_by(event_type='PERMISSION_DENIED').count() == 1

    def test_buyer_cannot_issue(self, client, buyer, submit_quotation, marble, auth_headers):
        quotation = submit_quotation(buyer, [{'catalog_item_id': marble.id, 'quantity': 1}])

        response = client.put(f'/api/quotations/{quotation.id}/issue', headers=auth_headers('acme'), json={})
        assert response.status_code == 403

    def test_buyer_cannot_view_other_buyers_quotation(self, client, buyer, other_buyer, marble,
                                                      submit_quotation, auth_headers):
        quotation = submit_quotation(buyer, [{'catalog_item_id': marble.id, 'quantity': 1}])

        assert client.get(f'/api/quotations/{quotation.id}', headers=auth_headers('acme')).status_code == 200
        response = client.get(f'/api/quotations/{quotation.id}', headers=auth_headers('globex'))
        assert response.status_code == 403
        assert response.json['error'] == 'NOT_OWNER'

    def test_staff_sees_queue(self, client, buyer, staff, marble, submit_quotation, auth_headers):
        submit_quotation(buyer, [{'catalog_item_id': marble.id, 'quantity': 1}])

        response = client.get('/api/quotations/?status=submitted', headers=auth_headers('sales'))
        assert response.status_code == 200
        assert response.json['count'] == 1

        response = client.get('/api/quotations/?status=bogus', headers=auth_headers('sales'))
        assert response.status_code == 400


class TestQuotationFlow:

    def test_submit_returns_201(self, client, buyer, marble, auth_headers):
        response = client.post('/api/quotations/', headers=auth_headers('acme'), json={
            'items': [{'catalog_item_id': marble.id, 'quantity': 3}],
            'notes': 'Deliver to site B',
        })

        assert response.status_code == 201
        assert response.json['outcome'] == 'submitted'
        assert response.json['quotation']['status'] == 'submitted'
        assert response.json['quotation']['reference_number'] == 'QT-000001'

    def test_shortfall_returns_409_with_items(self, client, buyer, marble, auth_headers):
        response = client.post('/api/quotations/', headers=auth_headers('acme'), json={
            'items': [{'catalog_item_id': marble.id, 'quantity': 12}],
        })

        assert response.status_code == 409
        assert response.json['error'] == 'ITEMS_UNAVAILABLE'
        assert response.json['items'][0]['type'] == 'adjusted'
        assert response.json['items'][0]['available_quantity'] == 10

    def test_invalid_items_return_400(self, client, buyer, auth_headers):
        response = client.post('/api/quotations/', headers=auth_headers('acme'), json={'items': []})
        assert response.status_code == 400
        assert response.json['error'] == 'INVALID_REQUEST'

    def test_issue_approve_with_step_up(self, client, buyer, staff, marble, submit_quotation, auth_headers):
        quotation = submit_quotation(buyer, [{'catalog_item_id': marble.id, 'quantity': 10}])
        buyer_headers = auth_headers('acme')

        issued = client.put(f'/api/quotations/{quotation.id}/issue', headers=auth_headers('sales'), json={
            'tax_rate_bps': 1200,
            'shipping_cents': 5000,
        })
        assert issued.status_code == 200
        assert issued.json['quotation']['financials']['grand_total_cents'] == 145000

        challenge = client.put(f'/api/quotations/{quotation.id}/approve', headers=buyer_headers, json={})
        assert challenge.status_code == 403
        assert challenge.json['requires_step_up'] is True
        assert challenge.json['required_kinds'] == ['password']
        session_ref = challenge.json['session_ref']

        wrong = client.post(f'/api/challenges/{session_ref}/satisfy', headers=buyer_headers,
                            json={'password': 'nope'})
        assert wrong.status_code == 401
        assert wrong.json['error'] == 'CREDENTIAL_REJECTED'
        assert wrong.json['attempts_remaining'] == 2

        resumed = client.post(f'/api/challenges/{session_ref}/satisfy', headers=buyer_headers,
                              json={'password': 'Password123!'})
        assert resumed.status_code == 200
        assert resumed.json['outcome'] == 'resumed'
        order_number = resumed.json['result']['order']['order_number']
        assert order_number == 'SO-000001'

        again = client.put(f'/api/quotations/{quotation.id}/approve', headers=buyer_headers, json={})
        assert again.status_code == 409
        assert again.json['error'] == 'ALREADY_FINALIZED'
        assert again.json['order_number'] == order_number

    def test_reject_runs_without_step_up(self, client, buyer, issued_quotation, auth_headers):
        response = client.put(f'/api/quotations/{issued_quotation.id}/reject', headers=auth_headers('acme'),
                              json={'comment': 'Over budget'})

        assert response.status_code == 200
        assert response.json['outcome'] == 'allowed'
        assert response.json['result']['status'] == 'rejected'

    def test_revision_requires_comment(self, client, buyer, issued_quotation, auth_headers):
        response = client.put(f'/api/quotations/{issued_quotation.id}/request-revision',
                              headers=auth_headers('acme'), json={})
        assert response.status_code == 400

    def test_cancel_challenge(self, client, buyer, issued_quotation, auth_headers):
        headers = auth_headers('acme')
        challenge = client.put(f'/api/quotations/{issued_quotation.id}/approve', headers=headers, json={})
        session_ref = challenge.json['session_ref']

        assert client.delete(f'/api/challenges/{session_ref}', headers=headers).status_code == 200
        assert client.delete(f'/api/challenges/{session_ref}', headers=headers).status_code == 404

        expired = client.post(f'/api/challenges/{session_ref}/satisfy', headers=headers,
                              json={'password': 'Password123!'})
        assert expired.status_code == 410
        assert expired.json['restart_required'] is True

    def test_verifier_outage_returns_503(self, app, client, buyer, issued_quotation, auth_headers, monkeypatch):
        monkeypatch.setitem(app.config, 'STEPUP_HUMAN_VERIFICATION_ACTIONS', ('quotation.approve',))

        def unavailable(token, remote_ip=None):
            raise VerifierUnavailableError('Human verification service unavailable')

        monkeypatch.setattr(verification_service, 'verify_human_token', unavailable)
        headers = auth_headers('acme')
        challenge = client.put(f'/api/quotations/{issued_quotation.id}/approve', headers=headers, json={})

        response = client.post(f"/api/challenges/{challenge.json['session_ref']}/satisfy", headers=headers, json={
            'human_verification_token': 'tok',
            'password': 'Password123!',
        })

        assert response.status_code == 503
        assert response.json['error'] == 'SERVICE_UNAVAILABLE'


class TestOrders:

    def _order(self, buyer, issued_quotation):
        return conversion_service.convert_quotation(issued_quotation.id, actor_user_id=buyer.id).order

    def test_order_visibility(self, client, buyer, other_buyer, staff, issued_quotation, auth_headers):
        order = self._order(buyer, issued_quotation)
        url = f'/api/orders/{order.order_number}'

        own = client.get(url, headers=auth_headers('acme'))
        assert own.status_code == 200
        assert own.json['order']['outstanding_balance_cents'] == 145000
        assert own.json['order']['timeline'][0]['action'] == 'order_confirmed'

        assert client.get(url, headers=auth_headers('globex')).status_code == 403
        assert client.get(url, headers=auth_headers('sales')).status_code == 200
        assert client.get('/api/orders/SO-999999', headers=auth_headers('acme')).status_code == 404

    def test_overpayment_returns_422(self, client, buyer, issued_quotation, auth_headers):
        order = self._order(buyer, issued_quotation)

        response = client.post(f'/api/orders/{order.id}/payment-proofs', headers=auth_headers('acme'), json={
            'amount_cents': 145500,
            'proof_reference': 'TRX-001',
        })

        assert response.status_code == 422
        assert response.json['error'] == 'AMOUNT_EXCEEDS_BALANCE'
        assert response.json['outstanding_balance_cents'] == 145000

    def test_payment_proof_round_trip(self, client, buyer, staff, issued_quotation, auth_headers):
        order = self._order(buyer, issued_quotation)
        buyer_headers = auth_headers('acme')

        challenge = client.post(f'/api/orders/{order.id}/payment-proofs', headers=buyer_headers, json={
            'amount_cents': 145000,
            'proof_reference': 'TRX-001',
        })
        assert challenge.status_code == 403
        assert challenge.json['action_type'] == 'payment_proof.submit'

        resumed = client.post(f"/api/challenges/{challenge.json['session_ref']}/satisfy", headers=buyer_headers,
                              json={'password': 'Password123!'})
        assert resumed.status_code == 200
        proof_id = resumed.json['result']['id']

        # Buyers cannot verify their own proofs
        url = f'/api/orders/{order.id}/payment-proofs/{proof_id}/verify'
        assert client.put(url, headers=buyer_headers, json={}).status_code == 403

        verified = client.put(url, headers=auth_headers('sales'), json={'notes': 'Bank confirmed'})
        assert verified.status_code == 200
        assert verified.json['order']['payment_status'] == 'fully_paid'
        assert verified.json['order']['outstanding_balance_cents'] == 0

    def test_my_orders(self, client, buyer, issued_quotation, auth_headers):
        self._order(buyer, issued_quotation)

        response = client.get('/api/orders/my', headers=auth_headers('acme'))
        assert response.status_code == 200
        assert response.json['count'] == 1
        assert client.get('/api/orders/', headers=auth_headers('acme')).status_code == 403


class TestCatalogAndSystem:

    def test_catalog_lists_availability(self, client, buyer, marble, auth_headers):
        response = client.get('/api/catalog/', headers=auth_headers('acme'))

        assert response.status_code == 200
        assert response.json['items'][0]['sku'] == 'MRB-001'
        assert response.json['items'][0]['available_quantity'] == 10

    def test_availability_endpoint(self, client, buyer, marble, auth_headers):
        headers = auth_headers('acme')
        assert client.get(f'/api/catalog/{marble.id}/availability', headers=headers).json['available_quantity'] == 10
        assert client.get('/api/catalog/987654/availability', headers=headers).status_code == 404

    def test_health(self, client, setup_roles):
        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert set(response.json['checks']) == {'database', 'stepup', 'auth'}

    def test_health_degraded_without_roles(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        assert response.json['status'] == 'degraded'

    def test_version(self, client):
        assert client.get('/api/version').json['api_version'] == '1.0.0'
