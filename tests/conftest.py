"""
Pytest configuration and shared fixtures for the access governance tests
"""
import pytest
import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import jwt

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import TEST_TOKEN_SECRET, FakeExchange, reset_database

# The engine is bound at import time, so the database and identity secret
# must be in the environment before server is imported.
_db_fd, _db_path = tempfile.mkstemp(suffix='.db')
os.environ['DATABASE_URL'] = f'sqlite:///{_db_path}'
os.environ['IDENTITY_TOKEN_SECRET'] = TEST_TOKEN_SECRET
os.environ['GITHUB_API_URL'] = 'https://github.test/api'
os.environ['TESTING'] = 'true'


@pytest.fixture(scope='session')
def app():
    """Create and configure a test Flask application instance"""
    from server import app as flask_app
    from models import db
    from rate_limiter import limiter

    flask_app.config.update({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
    })

    # Disable rate limiting for tests (must be done after init_limiter ran)
    limiter.enabled = False

    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()

    os.close(_db_fd)
    os.unlink(_db_path)


@pytest.fixture(autouse=True)
def _clean_db(app):
    """Clean up data between tests to avoid UNIQUE constraint violations."""
    from models import db
    yield
    reset_database(db)


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


# ---------------------------------------------------------------------------
# Organization and members
# ---------------------------------------------------------------------------

def _make_user(login):
    from models import User, db

    user = User(login=login, email=f'{login}@example.com', created_at=datetime.utcnow())
    db.session.add(user)
    db.session.commit()
    return user


def _add_member(org, user, role='member'):
    from models import OrganizationMember, db

    db.session.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=role))
    db.session.commit()


@pytest.fixture
def org(app):
    """Organization with installation 1001"""
    from models import Organization, db

    o = Organization(login='acme', installation_id=1001, created_at=datetime.utcnow())
    db.session.add(o)
    db.session.commit()
    return o


@pytest.fixture
def other_org(app):
    """A second organization for isolation tests"""
    from models import Organization, db

    o = Organization(login='globex', installation_id=2002, created_at=datetime.utcnow())
    db.session.add(o)
    db.session.commit()
    return o


@pytest.fixture
def requester(app, org):
    user = _make_user('alice')
    _add_member(org, user)
    return user


@pytest.fixture
def approver(app, org):
    user = _make_user('bob')
    _add_member(org, user)
    return user


@pytest.fixture
def org_admin(app, org):
    user = _make_user('carol')
    _add_member(org, user, role='admin')
    return user


@pytest.fixture
def outsider(app, org):
    """Member of the organization with no special role and no stake in requests"""
    user = _make_user('dave')
    _add_member(org, user)
    return user


@pytest.fixture
def pending_request(app, org, requester):
    """A pending repository access request by `requester`"""
    from core.governance.requests import create_request

    return create_request(
        requester_id=requester.id,
        organization_id=org.id,
        resource_type='repository',
        resource_id='acme/api',
        justification='On-call rotation',
        access_level='write',
    )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

@pytest.fixture
def make_token():
    """Build an HS256 bearer token the way the identity provider does"""
    def _make(user_id, installation_id, expires_in=3600, secret=TEST_TOKEN_SECRET, **claims):
        payload = {
            'sub': str(user_id),
            'installation_id': installation_id,
            'exp': datetime.utcnow() + timedelta(seconds=expires_in),
        }
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm='HS256')
    return _make


@pytest.fixture
def auth_headers(make_token):
    """Authorization headers for a user acting through an organization's installation"""
    def _headers(user, organization):
        token = make_token(user.id, organization.installation_id)
        return {'Authorization': f'Bearer {token}'}
    return _headers


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_exchange(app):
    """Install an IdentityBridge backed by FakeExchange for one test"""
    from core.identity.bridge import EXTENSION_KEY, init_identity_bridge

    previous = app.extensions[EXTENSION_KEY]
    exchange = FakeExchange()
    init_identity_bridge(app, exchange=exchange)
    yield exchange
    app.extensions[EXTENSION_KEY] = previous


# ---------------------------------------------------------------------------
# Audit helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def audit_entries(app):
    """Fetch audit rows with a fresh read"""
    def _entries(**filters):
        from models import AuditLog, db

        db.session.expire_all()
        return (
            AuditLog.query.filter_by(**filters)
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .all()
        )
    return _entries
