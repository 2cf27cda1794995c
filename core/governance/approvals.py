"""
Decision gate — the only path to move a request out of pending.

    approve  — pending → approved (separation of duties enforced)
    reject   — pending → rejected (self-rejection allowed; grants nothing)
    cancel   — pending → cancelled (requester or organization admin only)

Critical constraints:
    - Every transition is a conditional UPDATE on status='pending'. When two
      callers race, exactly one UPDATE matches; the other gets
      InvalidTransition and nothing is overwritten.
    - Policy rules run before the write. A violation changes nothing, is
      audited as 'policy_violated' and raised as PolicyViolation.
    - The audit entry is written after the transition commits.
"""
import logging
from datetime import datetime

from core.governance.errors import (
    Forbidden,
    InvalidTransition,
    PolicyViolation,
    ValidationError,
)
from core.governance.governance_audit import (
    ACTION_REQUEST_APPROVED,
    ACTION_REQUEST_CANCELLED,
    ACTION_REQUEST_REJECTED,
    get_audit_ledger,
)
from core.governance.policy import (
    ACTION_APPROVE,
    ACTION_CANCEL,
    ACTION_REJECT,
    get_policy_engine,
)
from core.governance.requests import AUDIT_RESOURCE_TYPE, get_request
from core.identity.caller_context import is_organization_admin

logger = logging.getLogger(__name__)


def approve_request(request_id, organization_id, approver_id, approval_data=None):
    """Approve a pending access request.

    Args:
        request_id: The request to approve.
        organization_id: Organization scope (enforced).
        approver_id: The user approving.
        approval_data: Optional dict (e.g. comments) folded into the audit
                       details and stored on the request.

    Returns:
        The updated AccessRequest.

    Raises:
        NotFound, ValidationError, InvalidTransition, PolicyViolation
    """
    approval_data = _clean_decision_data(approval_data, 'approval_data')
    pcr = get_request(request_id, organization_id)
    _ensure_pending(pcr, 'approve')
    _enforce_policies(ACTION_APPROVE, pcr, approver_id)

    decided_at = _commit_transition(
        pcr, 'approved', 'approve',
        approver_id=approver_id, decision_data=approval_data,
    )

    details = dict(approval_data)
    details.update({
        'status': 'approved',
        'previous_status': 'pending',
        'approver_id': approver_id,
        'requester_id': pcr.requester_id,
        'decided_at': decided_at.isoformat(),
    })
    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_REQUEST_APPROVED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details=details,
        user_id=approver_id,
    )
    return pcr


def reject_request(request_id, organization_id, approver_id, rejection_data=None):
    """Reject a pending access request.

    Rejecting one's own request is permitted: it grants nothing.

    Raises:
        NotFound, ValidationError, InvalidTransition, PolicyViolation
    """
    rejection_data = _clean_decision_data(rejection_data, 'rejection_data')
    pcr = get_request(request_id, organization_id)
    _ensure_pending(pcr, 'reject')
    _enforce_policies(ACTION_REJECT, pcr, approver_id)

    decided_at = _commit_transition(
        pcr, 'rejected', 'reject',
        approver_id=approver_id, decision_data=rejection_data,
    )

    details = dict(rejection_data)
    details.update({
        'status': 'rejected',
        'previous_status': 'pending',
        'approver_id': approver_id,
        'requester_id': pcr.requester_id,
        'decided_at': decided_at.isoformat(),
    })
    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_REQUEST_REJECTED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details=details,
        user_id=approver_id,
    )
    return pcr


def cancel_request(request_id, organization_id, caller_id):
    """Cancel a pending access request.

    Raises:
        NotFound
        Forbidden: caller is neither the requester nor an organization admin.
        InvalidTransition, PolicyViolation
    """
    pcr = get_request(request_id, organization_id)

    if caller_id != pcr.requester_id and not is_organization_admin(organization_id, caller_id):
        raise Forbidden('Only the requester or an organization admin can cancel a request')

    _ensure_pending(pcr, 'cancel')
    _enforce_policies(ACTION_CANCEL, pcr, caller_id)

    decided_at = _commit_transition(pcr, 'cancelled', 'cancel')

    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_REQUEST_CANCELLED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details={
            'status': 'cancelled',
            'previous_status': 'pending',
            'cancelled_by': caller_id,
            'requester_id': pcr.requester_id,
            'decided_at': decided_at.isoformat(),
        },
        user_id=caller_id,
    )
    return pcr


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

def _ensure_pending(pcr, verb):
    if pcr.status != 'pending':
        raise InvalidTransition(
            f'Request is already {pcr.status}, cannot {verb}',
            status=pcr.status,
        )


def _enforce_policies(action, pcr, actor_id):
    """Run the policy engine; audit and raise on the first violation."""
    decision = get_policy_engine().evaluate(action, pcr, actor_id)
    if decision.allowed:
        return

    logger.info(
        'policy %s refused %s on access request %s by user %s',
        decision.rule, action, pcr.id, actor_id,
    )
    get_audit_ledger().log_policy_violation(
        organization_id=pcr.organization_id,
        user_id=actor_id,
        policy_name=decision.rule,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=pcr.id,
        details={
            'attempted_action': action,
            'reason': decision.reason,
            'requester_id': pcr.requester_id,
            'actor_id': actor_id,
            'status': pcr.status,
        },
    )
    raise PolicyViolation(decision.reason, rule=decision.rule)


def _commit_transition(pcr, new_status, verb, approver_id=None, decision_data=None):
    """Compare-and-swap pcr from pending to new_status and commit.

    Returns:
        datetime: decided_at of the committed transition.

    Raises:
        InvalidTransition: another writer moved the request first.
    """
    from models import db, AccessRequest

    now = datetime.utcnow()
    values = {'status': new_status, 'decided_at': now}
    if approver_id is not None:
        values['approver_id'] = approver_id
    if decision_data:
        values['decision_data'] = decision_data

    updated = AccessRequest.query.filter_by(
        id=pcr.id, status=AccessRequest.STATUS_PENDING,
    ).update(values, synchronize_session=False)

    if updated == 0:
        db.session.rollback()
        db.session.refresh(pcr)
        raise InvalidTransition(
            f'Request is already {pcr.status}, cannot {verb}',
            status=pcr.status,
        )

    db.session.commit()
    db.session.refresh(pcr)
    return now


def _clean_decision_data(data, field_name):
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f'{field_name} must be an object')
    return dict(data)
