"""
CLI command tests.

Verifies:
- system init is idempotent; users deactivate revokes open sessions
- catalog add / restock / list drive the catalog service
- maintenance commands expire quotations and reclaim step-up sessions
"""

from datetime import timedelta

from quoteflow.extensions import db
from quoteflow.models import CatalogItem, Quotation, SessionToken, User
from quoteflow.services.permission_service import log_security_event
from quoteflow.services.session_service import create_session
from quoteflow.time_utils import utcnow


class TestSystemCommands:

    def test_init_creates_default_users_once(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['system', 'init'])
        assert first.exit_code == 0
        assert 'PASS Created user: buyer' in first.output
        assert db.session.query(User).count() == 3

        second = runner.invoke(args=['system', 'init'])
        assert "SKIP User 'admin' already exists" in second.output
        assert db.session.query(User).count() == 3

    def test_init_rejects_weak_password(self, app):
        result = app.test_cli_runner().invoke(args=['system', 'init', '--password', 'weak'])

        assert 'FAIL Password validation failed' in result.output
        assert db.session.query(User).count() == 0

    def test_users_create_and_list(self, app):
        runner = app.test_cli_runner()
        created = runner.invoke(args=[
            'users', 'create',
            '--username', 'initech', '--email', 'buyer@initech.test',
            '--password', 'Password123!', '--role', 'buyer', '--company', 'Initech',
        ])
        assert 'PASS Created user: initech' in created.output

        listed = runner.invoke(args=['users', 'list'])
        assert 'initech' in listed.output
        assert 'buyer' in listed.output

    def test_deactivate_revokes_sessions(self, app, buyer):
        create_session(buyer.id)
        create_session(buyer.id)

        result = app.test_cli_runner().invoke(args=['users', 'deactivate', '--username', 'acme'])

        assert 'PASS Deactivated acme; revoked 2 sessions' in result.output
        assert db.session.get(User, buyer.id).is_active is False
        assert db.session.query(SessionToken).filter_by(user_id=buyer.id, is_revoked=False).count() == 0


class TestCatalogCommands:

    def test_add_restock_list(self, app):
        runner = app.test_cli_runner()

        added = runner.invoke(args=[
            'catalog', 'add', '--sku', 'SLT-001', '--name', 'Slate Tile',
            '--price-cents', '4500', '--unit', 'sqm', '--stock', '20',
        ])
        assert 'PASS Created catalog item SLT-001' in added.output

        restocked = runner.invoke(args=['catalog', 'restock', '--sku', 'SLT-001', '--quantity', '5'])
        assert 'stock is now 25' in restocked.output

        listed = runner.invoke(args=['catalog', 'list'])
        assert 'Slate Tile' in listed.output
        assert '45.00/sqm' in listed.output

    def test_duplicate_and_unknown_sku(self, app, marble):
        runner = app.test_cli_runner()

        duplicate = runner.invoke(args=['catalog', 'add', '--sku', 'MRB-001', '--name', 'Copy', '--price-cents', '1'])
        assert 'FAIL SKU MRB-001 already exists' in duplicate.output
        assert db.session.query(CatalogItem).count() == 1

        unknown = runner.invoke(args=['catalog', 'restock', '--sku', 'NOPE', '--quantity', '1'])
        assert 'FAIL SKU NOPE not found' in unknown.output


class TestMaintenanceCommands:

    def test_expire_quotations(self, app, issued_quotation):
        issued_quotation.valid_until = utcnow() - timedelta(minutes=1)
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['maintenance', 'expire-quotations'])

        assert 'Expired 1 quotations.' in result.output
        assert db.session.get(Quotation, issued_quotation.id).status == 'expired'

    def test_cleanup_challenges(self, app):
        result = app.test_cli_runner().invoke(args=['maintenance', 'cleanup-challenges', '--retention-days', '7'])
        assert 'Expired 0 open challenges; deleted 0 closed challenges.' in result.output

    def test_cleanup_security_events(self, app, buyer):
        old = log_security_event(buyer.id, 'LOGIN_SUCCESS', True)
        old.occurred_at = utcnow() - timedelta(days=120)
        db.session.commit()
        log_security_event(buyer.id, 'LOGIN_SUCCESS', True)

        result = app.test_cli_runner().invoke(args=['maintenance', 'cleanup-security-events'])

        assert 'Deleted 1 security events older than 90 days.' in result.output
