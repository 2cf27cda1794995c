"""
Access request pipeline — requesters submit, approvers decide.

Requests are created with status='pending'. Leaving pending is only possible
through core.governance.approvals (approve, reject, cancel).

Enforces:
- Organization isolation (all queries scoped by organization_id).
- Template references resolve within the same organization, and the
  template version is captured at request time.
- Log-after-commit: the audit entry is written once the request row is
  committed.
"""
from datetime import datetime, timedelta

from core.governance.errors import NotFound, Unavailable, ValidationError
from core.governance.governance_audit import (
    ACTION_REQUEST_COMMENTED,
    ACTION_REQUEST_CREATED,
    get_audit_ledger,
)

AUDIT_RESOURCE_TYPE = 'access_request'

MAX_COMMENT_LENGTH = 5000
MAX_TREND_DAYS = 365

VALID_RESOURCE_TYPES = frozenset({'repository', 'team', 'organization'})

# GitHub repository permissions plus team/org roles.
VALID_ACCESS_LEVELS = frozenset({
    'read', 'triage', 'write', 'maintain', 'admin', 'member', 'maintainer',
})


def create_request(requester_id, organization_id, resource_type, resource_id,
                   justification, template_id=None, access_level=None,
                   duration=None):
    """Submit an access request.

    Args:
        requester_id: The user asking for access.
        organization_id: Organization owning the resource.
        resource_type: 'repository', 'team' or 'organization'.
        resource_id: Identifier of the resource (non-empty).
        justification: Free-text reason.
        template_id: Optional access template of the same organization.
        access_level: Optional requested permission/role.
        duration: Optional requested duration (free text).

    Returns:
        AccessRequest with status 'pending'.

    Raises:
        ValidationError: Malformed input or unknown template.
    """
    from models import db, AccessRequest, AccessTemplate

    if isinstance(resource_id, bool) or not isinstance(resource_id, (str, int)):
        raise ValidationError('resource_id is required')
    resource_id = str(resource_id).strip()
    if not resource_id:
        raise ValidationError('resource_id is required')

    if not isinstance(resource_type, str) or resource_type not in VALID_RESOURCE_TYPES:
        raise ValidationError(
            f'resource_type must be one of: {", ".join(sorted(VALID_RESOURCE_TYPES))}'
        )

    if justification is None:
        justification = ''
    if not isinstance(justification, str):
        raise ValidationError('justification must be a string')

    if access_level is not None and (
            not isinstance(access_level, str) or access_level not in VALID_ACCESS_LEVELS):
        raise ValidationError(f'Invalid access_level: {access_level!r}')

    if duration is not None and not isinstance(duration, str):
        raise ValidationError('duration must be a string')

    template_version = None
    if template_id is not None:
        if isinstance(template_id, bool):
            raise ValidationError('template_id must be an integer')
        try:
            template_id = int(template_id)
        except (TypeError, ValueError):
            raise ValidationError('template_id must be an integer')

        # Row lock keeps a concurrent delete from passing its
        # "no pending references" guard before this request commits.
        template = (
            AccessTemplate.query
            .filter_by(id=template_id, organization_id=organization_id)
            .filter(AccessTemplate.deleted_at.is_(None))
            .with_for_update()
            .first()
        )
        if template is None:
            raise ValidationError('Template not found in this organization')
        template_version = template.version

    pcr = AccessRequest(
        organization_id=organization_id,
        requester_id=requester_id,
        resource_type=resource_type,
        resource_id=resource_id,
        access_level=access_level,
        duration=duration,
        template_id=template_id,
        template_version=template_version,
        justification=justification.strip(),
        status=AccessRequest.STATUS_PENDING,
        created_at=datetime.utcnow(),
    )
    db.session.add(pcr)

    if template_id is not None:
        # The insert holds the write lock now; a delete that committed after
        # the template was read above is visible to this statement.
        db.session.flush()
        still_live = AccessTemplate.query.filter(
            AccessTemplate.id == template_id,
            AccessTemplate.deleted_at.is_(None),
        ).count()
        if not still_live:
            db.session.rollback()
            raise ValidationError('Template not found in this organization')

    db.session.commit()

    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_REQUEST_CREATED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details={
            'status': pcr.status,
            'resource_type': resource_type,
            'resource_id': resource_id,
            'access_level': access_level,
            'template_id': template_id,
            'template_version': template_version,
            'justification': pcr.justification,
        },
        user_id=requester_id,
    )
    return pcr


def get_request(request_id, organization_id):
    """Get a single access request, scoped to an organization.

    Raises:
        NotFound
    """
    from models import AccessRequest

    pcr = AccessRequest.query.filter_by(
        id=request_id, organization_id=organization_id
    ).first()
    if pcr is None:
        raise NotFound('Access request not found')
    return pcr


def list_requests(organization_id, status=None, requester_id=None,
                  resource_type=None, limit=50):
    """List access requests for an organization, newest first.

    Raises:
        ValidationError: Unknown status filter.
    """
    from models import AccessRequest

    q = AccessRequest.query.filter_by(organization_id=organization_id)

    if status is not None:
        if status not in AccessRequest.VALID_STATUSES:
            raise ValidationError(f'Invalid status filter: {status}')
        q = q.filter_by(status=status)
    if requester_id is not None:
        q = q.filter_by(requester_id=requester_id)
    if resource_type is not None:
        q = q.filter_by(resource_type=resource_type)

    return (
        q.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc())
        .limit(limit)
        .all()
    )


def get_request_stats(organization_id):
    """Summary counts for an organization's requests.

    Returns:
        dict: total, one count per status, and by_resource_type.
    """
    from models import db, AccessRequest

    rows = (
        db.session.query(
            AccessRequest.status,
            AccessRequest.resource_type,
            db.func.count(AccessRequest.id),
        )
        .filter(AccessRequest.organization_id == organization_id)
        .group_by(AccessRequest.status, AccessRequest.resource_type)
        .all()
    )

    stats = {status: 0 for status in sorted(AccessRequest.VALID_STATUSES)}
    stats['total'] = 0
    by_resource_type = {}
    for status, resource_type, count in rows:
        stats[status] += count
        stats['total'] += count
        by_resource_type[resource_type] = by_resource_type.get(resource_type, 0) + count
    stats['by_resource_type'] = by_resource_type
    return stats


def get_request_history(request_id, organization_id):
    """Audit entries for a request, oldest first.

    The request is looked up eagerly (NotFound raises here); the entries are
    read lazily from the returned iterator.
    """
    pcr = get_request(request_id, organization_id)
    return get_audit_ledger().get_history(pcr.id, resource_type=AUDIT_RESOURCE_TYPE)


def get_request_trends(organization_id, days=30):
    """Requests created per day over the last `days` days, oldest day first.

    Each day counts the requests created that day by their current status.
    Days without requests are omitted.
    """
    from models import db, AccessRequest

    if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_TREND_DAYS:
        raise ValidationError(f'days must be an integer between 1 and {MAX_TREND_DAYS}')

    since = datetime.utcnow() - timedelta(days=days)
    day = db.func.date(AccessRequest.created_at)
    rows = (
        db.session.query(day, AccessRequest.status, db.func.count(AccessRequest.id))
        .filter(
            AccessRequest.organization_id == organization_id,
            AccessRequest.created_at >= since,
        )
        .group_by(day, AccessRequest.status)
        .all()
    )

    trends = {}
    for created_on, status, count in rows:
        # SQLite returns 'YYYY-MM-DD', PostgreSQL a date.
        key = str(created_on)
        bucket = trends.get(key)
        if bucket is None:
            bucket = {s: 0 for s in sorted(AccessRequest.VALID_STATUSES)}
            bucket['date'] = key
            bucket['total'] = 0
            trends[key] = bucket
        bucket[status] += count
        bucket['total'] += count
    return [trends[key] for key in sorted(trends)]


def add_request_comment(request_id, organization_id, author_id, comment):
    """Attach a comment to a request in any status.

    Comments are ledger entries ('access_request_commented') and show up in
    the request history. The entry is the only record of the comment, so a
    failed write is raised instead of only reported.

    Returns:
        AuditLog entry of the comment.

    Raises:
        NotFound: Request not in this organization.
        ValidationError: Empty or oversized comment.
        Unavailable: The ledger could not record the comment.
    """
    from models import db, AuditLog

    if not isinstance(comment, str) or not comment.strip():
        raise ValidationError('comment is required')
    comment = comment.strip()
    if len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(f'comment cannot exceed {MAX_COMMENT_LENGTH} characters')

    pcr = get_request(request_id, organization_id)

    result = get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_REQUEST_COMMENTED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details={'comment': comment, 'status': pcr.status},
        user_id=author_id,
    )
    if not result:
        raise Unavailable('Comment could not be recorded; retry later')
    return db.session.get(AuditLog, result.entry_id)


def list_request_comments(request_id, organization_id):
    """Comments on a request, oldest first."""
    return [
        entry for entry in get_request_history(request_id, organization_id)
        if entry.action == ACTION_REQUEST_COMMENTED
    ]
