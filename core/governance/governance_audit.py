"""
Governance audit ledger — append-only trail for all governance events.

Every access-request transition, policy violation and template change is
written here. Writes are best-effort and never block the business
transition that triggered them:

- The caller commits its own state change first, then logs (log-after-commit).
- The write runs on a small worker pool in its own app context and session,
  and the caller waits at most ``write_timeout`` seconds for it.
- A failed or timed-out write is returned as ``AuditWriteResult(ok=False)``
  and surfaced on the ``access_governance.audit.failures`` logger, the
  ``failure_count`` counter and any registered failure listeners.
- A write reported as timed out is rolled back, never committed late. A
  write whose commit had already started when the wait ran out is waited
  for and reported by its real outcome.

Entries are never updated or deleted.
"""
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator

from flask import current_app

logger = logging.getLogger(__name__)
failure_logger = logging.getLogger('access_governance.audit.failures')

DEFAULT_WRITE_TIMEOUT_SECONDS = 5.0
DEFAULT_WORKERS = 4

# Action names written by the engine.
ACTION_REQUEST_CREATED = 'access_request_created'
ACTION_REQUEST_APPROVED = 'access_request_approved'
ACTION_REQUEST_REJECTED = 'access_request_rejected'
ACTION_REQUEST_CANCELLED = 'access_request_cancelled'
ACTION_REQUEST_COMMENTED = 'access_request_commented'
ACTION_POLICY_VIOLATED = 'policy_violated'
ACTION_TEMPLATE_CREATED = 'access_template_created'
ACTION_TEMPLATE_UPDATED = 'access_template_updated'
ACTION_TEMPLATE_DELETED = 'access_template_deleted'

EXTENSION_KEY = 'audit_ledger'


@dataclass(frozen=True)
class AuditWriteResult:
    """Outcome of a single ledger write."""
    ok: bool
    entry_id: int | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


class _PendingWrite:
    """Decides who owns a write once the caller's wait runs out.

    Exactly one of ``begin_commit`` (worker) and ``abandon`` (caller) wins,
    so an entry reported as dropped is never committed afterwards.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = 'queued'

    def begin_commit(self) -> bool:
        with self._lock:
            if self._state == 'abandoned':
                return False
            self._state = 'committing'
            return True

    def abandon(self) -> bool:
        with self._lock:
            if self._state == 'committing':
                return False
            self._state = 'abandoned'
            return True


class AuditLedger:
    """Append-only event store every other component writes through."""

    def __init__(self, app=None, write_timeout: float = DEFAULT_WRITE_TIMEOUT_SECONDS,
                 max_workers: int = DEFAULT_WORKERS) -> None:
        self._app = app
        self.write_timeout = write_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='audit-ledger',
        )
        self._lock = threading.Lock()
        self._failure_count = 0
        self._listeners: list[Callable[[dict, str], None]] = []

    # --- writes ----------------------------------------------------------

    def log_event(self, organization_id, action, resource_type, resource_id,
                  details=None, user_id=None) -> AuditWriteResult:
        """Append one entry. Never raises for storage problems.

        Args:
            organization_id: Organization scope.
            action: Action name, e.g. 'access_request_created'.
            resource_type: Type of the affected resource.
            resource_id: Identifier of the affected resource (stored as str).
            details: JSON-serialisable mapping with event-specific data.
            user_id: Acting user, or None for system-originated events.

        Returns:
            AuditWriteResult
        """
        entry = {
            'user_id': user_id,
            'organization_id': organization_id,
            'action': action,
            'resource_type': resource_type,
            'resource_id': str(resource_id),
            'details': dict(details or {}),
            'created_at': datetime.utcnow(),
        }
        app = self._app or current_app._get_current_object()
        pending = _PendingWrite()

        try:
            future = self._executor.submit(self._write, app, entry, pending)
        except RuntimeError as e:
            # Executor already shut down.
            return self._record_failure(entry, f'audit writer unavailable: {e}')

        try:
            entry_id = future.result(timeout=self.write_timeout)
        except FutureTimeoutError:
            if future.cancel() or pending.abandon():
                return self._record_failure(
                    entry, f'audit write timed out after {self.write_timeout}s',
                )
            # The worker is already committing; its outcome is the answer.
            try:
                entry_id = future.result()
            except Exception as e:
                return self._record_failure(entry, f'audit write failed: {e}', exc=e)
        except Exception as e:
            return self._record_failure(entry, f'audit write failed: {e}', exc=e)

        return AuditWriteResult(ok=True, entry_id=entry_id)

    def log_policy_violation(self, organization_id, user_id, policy_name,
                             resource_type, resource_id, details=None) -> AuditWriteResult:
        """Record a policy violation as a first-class 'policy_violated' event."""
        enhanced = dict(details or {})
        enhanced['policyName'] = policy_name
        enhanced['timestamp'] = datetime.utcnow().isoformat()
        return self.log_event(
            organization_id=organization_id,
            action=ACTION_POLICY_VIOLATED,
            resource_type=resource_type,
            resource_id=resource_id,
            details=enhanced,
            user_id=user_id,
        )

    def log_resource_access(self, organization_id, user_id, access_type,
                            resource_type, resource_id, details=None) -> AuditWriteResult:
        """Record a read/write/delete access; action is '<resource_type>_<access_type>'."""
        enhanced = dict(details or {})
        enhanced['accessType'] = access_type
        enhanced['timestamp'] = datetime.utcnow().isoformat()
        return self.log_event(
            organization_id=organization_id,
            action=f'{resource_type}_{access_type}',
            resource_type=resource_type,
            resource_id=resource_id,
            details=enhanced,
            user_id=user_id,
        )

    @staticmethod
    def _write(app, entry, pending):
        from models import db, AuditLog

        with app.app_context():
            row = AuditLog(**entry)
            db.session.add(row)
            try:
                db.session.flush()
                if not pending.begin_commit():
                    # The caller gave up and reported this entry as dropped.
                    db.session.rollback()
                    return None
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return row.id

    # --- operational error channel ---------------------------------------

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def add_failure_listener(self, callback: Callable[[dict, str], None]) -> None:
        """Register ``callback(entry, reason)``, invoked for every failed write."""
        with self._lock:
            self._listeners.append(callback)

    def _record_failure(self, entry, reason, exc=None) -> AuditWriteResult:
        with self._lock:
            self._failure_count += 1
            listeners = list(self._listeners)

        failure_logger.error(
            'audit write failed action=%s resource=%s:%s org=%s: %s',
            entry['action'], entry['resource_type'], entry['resource_id'],
            entry['organization_id'], reason,
            exc_info=exc,
        )
        for callback in listeners:
            try:
                callback(entry, reason)
            except Exception:
                logger.exception('audit failure listener %r raised', callback)

        return AuditWriteResult(ok=False, reason=reason)

    # --- reads -----------------------------------------------------------

    def get_history(self, resource_id, resource_type=None) -> Iterator[Any]:
        """Yield entries for a resource ordered by created_at ascending.

        Lazy and restartable: nothing is queried until the first item is
        requested, and each call starts a fresh read.
        """
        from models import AuditLog

        q = AuditLog.query.filter_by(resource_id=str(resource_id))
        if resource_type is not None:
            q = q.filter_by(resource_type=resource_type)
        q = q.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())

        for entry in q.yield_per(100):
            yield entry

    def query_audit_logs(self, organization_id, action=None, resource_type=None,
                         resource_id=None, user_id=None, start_date=None,
                         end_date=None, search=None, page=1, limit=20) -> dict:
        """Paginated audit log query for an organization, newest first.

        Returns:
            dict with logs (list[AuditLog]), total, page, limit, total_pages.
        """
        from models import db, AuditLog

        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 200)

        q = AuditLog.query.filter_by(organization_id=organization_id)
        if action is not None:
            q = q.filter_by(action=action)
        if resource_type is not None:
            q = q.filter_by(resource_type=resource_type)
        if resource_id is not None:
            q = q.filter_by(resource_id=str(resource_id))
        if user_id is not None:
            q = q.filter_by(user_id=user_id)
        if start_date is not None:
            q = q.filter(AuditLog.created_at >= start_date)
        if end_date is not None:
            q = q.filter(AuditLog.created_at <= end_date)
        if search:
            pattern = f'%{search}%'
            q = q.filter(db.or_(
                AuditLog.resource_id.ilike(pattern),
                AuditLog.action.ilike(pattern),
                AuditLog.resource_type.ilike(pattern),
            ))

        total = q.count()
        logs = (
            q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            'logs': logs,
            'total': total,
            'page': page,
            'limit': limit,
            'total_pages': math.ceil(total / limit) if total else 0,
        }

    def shutdown(self, wait=True) -> None:
        self._executor.shutdown(wait=wait)


def init_audit_ledger(app):
    """Create the app's AuditLedger from config and register it."""
    ledger = AuditLedger(
        app=app,
        write_timeout=float(app.config.get(
            'AUDIT_WRITE_TIMEOUT_SECONDS', DEFAULT_WRITE_TIMEOUT_SECONDS,
        )),
        max_workers=int(app.config.get('AUDIT_WORKERS', DEFAULT_WORKERS)),
    )
    app.extensions[EXTENSION_KEY] = ledger
    return ledger


def get_audit_ledger() -> AuditLedger:
    """Return the AuditLedger bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]
