"""
Test doubles shared by the test modules
"""
import threading
from datetime import datetime, timedelta

TEST_TOKEN_SECRET = 'test-identity-secret'


class FakeExchange:
    """Stand-in for the GitHub App token exchange"""

    def __init__(self, ttl_seconds=3600):
        self.ttl_seconds = ttl_seconds
        self.calls = []
        self.error = None
        self.gate = None  # threading.Event the exchange waits on, if set
        self._lock = threading.Lock()

    def __call__(self, installation_id):
        from core.identity.github_app import InstallationCredential

        with self._lock:
            self.calls.append(installation_id)
            n = len(self.calls)
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return InstallationCredential(
            installation_id=installation_id,
            token=f'ghs_test_{installation_id}_{n}',
            expires_at=datetime.utcnow() + timedelta(seconds=self.ttl_seconds),
        )


def reset_database(db):
    """Delete every row and drop the session so no stale identities survive"""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.remove()
