"""
Tests for the governance audit ledger.

Covers: append and result type, failure channel (result, counter, logger,
listeners), write timeouts, history reads and the paginated query.
"""
import logging
import threading
import time
from datetime import datetime, timedelta

import pytest

from models import db, AuditLog
from core.governance.governance_audit import AuditLedger, AuditWriteResult, _PendingWrite


@pytest.fixture
def ledger(app):
    """A private ledger so counters start at zero"""
    led = AuditLedger(app=app, write_timeout=5.0, max_workers=2)
    yield led
    led.shutdown(wait=False)


def _log(ledger, org_id, action='thing_happened', resource_id='1', **kw):
    return ledger.log_event(
        organization_id=org_id,
        action=action,
        resource_type=kw.pop('resource_type', 'access_request'),
        resource_id=resource_id,
        **kw,
    )


@pytest.mark.audit
class TestLogEvent:

    def test_successful_write(self, app, org, ledger):
        result = _log(ledger, org.id, details={'k': 'v'}, user_id=7)

        assert isinstance(result, AuditWriteResult)
        assert result.ok
        assert result
        row = db.session.get(AuditLog, result.entry_id)
        assert row.action == 'thing_happened'
        assert row.details == {'k': 'v'}
        assert row.user_id == 7
        assert row.resource_id == '1'

    def test_resource_id_stored_as_string(self, app, org, ledger):
        result = _log(ledger, org.id, resource_id=42)
        assert db.session.get(AuditLog, result.entry_id).resource_id == '42'

    def test_system_event_without_user(self, app, org, ledger):
        result = _log(ledger, org.id)
        assert db.session.get(AuditLog, result.entry_id).user_id is None

    def test_details_are_copied(self, app, org, ledger):
        details = {'a': 1}
        _log(ledger, org.id, details=details)
        details['a'] = 2
        assert AuditLog.query.one().details == {'a': 1}

    def test_policy_violation_shape(self, app, org, ledger):
        result = ledger.log_policy_violation(
            organization_id=org.id, user_id=5, policy_name='separation_of_duties',
            resource_type='access_request', resource_id=3, details={'reason': 'x'},
        )
        row = db.session.get(AuditLog, result.entry_id)
        assert row.action == 'policy_violated'
        assert row.details['policyName'] == 'separation_of_duties'
        assert row.details['reason'] == 'x'
        assert 'timestamp' in row.details

    def test_resource_access_action_name(self, app, org, ledger):
        result = ledger.log_resource_access(
            organization_id=org.id, user_id=5, access_type='read',
            resource_type='repository', resource_id='acme/api',
        )
        row = db.session.get(AuditLog, result.entry_id)
        assert row.action == 'repository_read'
        assert row.details['accessType'] == 'read'


@pytest.mark.audit
class TestFailureChannel:

    def test_failed_write_is_reported_not_raised(self, app, org, ledger, monkeypatch, caplog):
        def boom(app, entry, pending):
            raise RuntimeError('disk full')

        monkeypatch.setattr(AuditLedger, '_write', staticmethod(boom))
        seen = []
        ledger.add_failure_listener(lambda entry, reason: seen.append((entry, reason)))

        with caplog.at_level(logging.ERROR, logger='access_governance.audit.failures'):
            result = _log(ledger, org.id, action='access_request_approved', resource_id='9')

        assert not result
        assert result.ok is False
        assert result.entry_id is None
        assert 'disk full' in result.reason
        assert ledger.failure_count == 1
        assert len(seen) == 1
        assert seen[0][0]['action'] == 'access_request_approved'
        assert any('access_request_approved' in r.getMessage() for r in caplog.records)

    def test_broken_listener_does_not_propagate(self, app, org, ledger, monkeypatch):
        def boom(app, entry, pending):
            raise RuntimeError('nope')

        def bad_listener(entry, reason):
            raise ValueError('listener bug')

        monkeypatch.setattr(AuditLedger, '_write', staticmethod(boom))
        ledger.add_failure_listener(bad_listener)

        assert _log(ledger, org.id).ok is False
        assert ledger.failure_count == 1

    def test_timeout_returns_failure(self, app, org, monkeypatch):
        release = threading.Event()

        def slow(app, entry, pending):
            release.wait(5)
            return None

        monkeypatch.setattr(AuditLedger, '_write', staticmethod(slow))
        led = AuditLedger(app=app, write_timeout=0.05, max_workers=1)
        try:
            result = _log(led, org.id)
            assert result.ok is False
            assert 'timed out' in result.reason
            assert led.failure_count == 1
        finally:
            release.set()
            led.shutdown(wait=True)

    def test_timed_out_write_is_never_committed(self, app, org, monkeypatch):
        write = AuditLedger._write

        def late(app, entry, pending):
            time.sleep(0.3)
            return write(app, entry, pending)

        monkeypatch.setattr(AuditLedger, '_write', staticmethod(late))
        led = AuditLedger(app=app, write_timeout=0.05, max_workers=1)
        try:
            result = _log(led, org.id, action='late_entry')
        finally:
            led.shutdown(wait=True)

        assert result.ok is False
        assert led.failure_count == 1
        db.session.expire_all()
        assert AuditLog.query.filter_by(action='late_entry').count() == 0

    def test_write_already_committing_is_reported_as_logged(self, app, org, monkeypatch):
        begin_commit = _PendingWrite.begin_commit

        def slow_begin(self):
            claimed = begin_commit(self)
            time.sleep(0.3)
            return claimed

        monkeypatch.setattr(_PendingWrite, 'begin_commit', slow_begin)
        led = AuditLedger(app=app, write_timeout=0.05, max_workers=1)
        try:
            result = _log(led, org.id, action='slow_commit')
        finally:
            led.shutdown(wait=True)

        assert result.ok is True
        assert led.failure_count == 0
        db.session.expire_all()
        assert db.session.get(AuditLog, result.entry_id).action == 'slow_commit'

    def test_shut_down_ledger_reports_failure(self, app, org):
        led = AuditLedger(app=app)
        led.shutdown()
        result = _log(led, org.id)
        assert result.ok is False
        assert led.failure_count == 1

    def test_workflow_survives_audit_failure(self, app, org, approver, pending_request,
                                             monkeypatch):
        from core.governance.approvals import approve_request
        from core.governance.governance_audit import get_audit_ledger

        def boom(app, entry, pending):
            raise RuntimeError('ledger down')

        monkeypatch.setattr(AuditLedger, '_write', staticmethod(boom))
        before = get_audit_ledger().failure_count

        pcr = approve_request(pending_request.id, org.id, approver.id)

        assert pcr.status == 'approved'
        assert get_audit_ledger().failure_count == before + 1


@pytest.mark.audit
class TestHistory:

    def test_history_order_and_filter(self, app, org, ledger):
        _log(ledger, org.id, action='first', resource_id='7')
        _log(ledger, org.id, action='other', resource_id='8')
        _log(ledger, org.id, action='second', resource_id='7')
        _log(ledger, org.id, action='template', resource_id='7', resource_type='access_template')

        assert [e.action for e in ledger.get_history('7', 'access_request')] == ['first', 'second']
        assert [e.action for e in ledger.get_history(7)] == ['first', 'second', 'template']

    def test_history_is_lazy(self, app, org, ledger):
        history = ledger.get_history('7')
        _log(ledger, org.id, action='late', resource_id='7')
        assert [e.action for e in history] == ['late']

    def test_empty_history(self, app, ledger):
        assert list(ledger.get_history('nothing')) == []


@pytest.mark.audit
class TestQueryAuditLogs:

    def _seed(self, org_id, n=5):
        base = datetime(2026, 1, 1)
        for i in range(n):
            db.session.add(AuditLog(
                organization_id=org_id,
                user_id=i % 2,
                action='access_request_created' if i % 2 == 0 else 'access_template_created',
                resource_type='access_request' if i % 2 == 0 else 'access_template',
                resource_id=f'res-{i}',
                details={},
                created_at=base + timedelta(days=i),
            ))
        db.session.commit()

    def test_pagination_newest_first(self, app, org, ledger):
        self._seed(org.id)

        page1 = ledger.query_audit_logs(org.id, page=1, limit=2)
        page3 = ledger.query_audit_logs(org.id, page=3, limit=2)

        assert page1['total'] == 5
        assert page1['total_pages'] == 3
        assert [e.resource_id for e in page1['logs']] == ['res-4', 'res-3']
        assert [e.resource_id for e in page3['logs']] == ['res-0']

    def test_filters(self, app, org, ledger):
        self._seed(org.id)

        by_action = ledger.query_audit_logs(org.id, action='access_template_created')
        assert {e.resource_id for e in by_action['logs']} == {'res-1', 'res-3'}

        by_type = ledger.query_audit_logs(org.id, resource_type='access_request')
        assert by_type['total'] == 3

        by_user = ledger.query_audit_logs(org.id, user_id=1)
        assert by_user['total'] == 2

        dated = ledger.query_audit_logs(
            org.id, start_date=datetime(2026, 1, 2), end_date=datetime(2026, 1, 3),
        )
        assert {e.resource_id for e in dated['logs']} == {'res-1', 'res-2'}

        searched = ledger.query_audit_logs(org.id, search='res-4')
        assert [e.resource_id for e in searched['logs']] == ['res-4']

    def test_scoped_to_organization(self, app, org, other_org, ledger):
        self._seed(org.id)
        result = ledger.query_audit_logs(other_org.id)
        assert result['total'] == 0
        assert result['total_pages'] == 0
        assert result['logs'] == []

    def test_limit_is_clamped(self, app, org, ledger):
        self._seed(org.id, n=1)
        assert ledger.query_audit_logs(org.id, limit=5000)['limit'] == 200
        assert ledger.query_audit_logs(org.id, limit=0)['limit'] == 1
        assert ledger.query_audit_logs(org.id, page=-3)['page'] == 1
