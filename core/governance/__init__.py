"""
core.governance — Access Governance Engine.

Access request state machine, policy checks, versioned access templates and
the append-only audit ledger. Every state transition is audited.

Public API:
    create_request, get_request, list_requests,
    get_request_stats, get_request_history,
    get_request_trends, add_request_comment,
    list_request_comments                         — access requests
    approve_request, reject_request, cancel_request — decision gate
    PolicyEngine, SeparationOfDutiesRule          — governance rules
    create_template, update_template, delete_template,
    get_template, get_template_version,
    list_templates, get_template_usage            — template catalog
    AuditLedger, AuditWriteResult, get_audit_ledger — audit trail
"""

from core.governance.requests import (
    create_request,
    get_request,
    list_requests,
    get_request_stats,
    get_request_history,
    get_request_trends,
    add_request_comment,
    list_request_comments,
)
from core.governance.approvals import (
    approve_request,
    reject_request,
    cancel_request,
)
from core.governance.policy import (
    PolicyEngine,
    PolicyRule,
    SeparationOfDutiesRule,
    Allowed,
    Violation,
    init_policy_engine,
    get_policy_engine,
)
from core.governance.templates import (
    create_template,
    update_template,
    delete_template,
    get_template,
    get_template_version,
    list_templates,
    get_template_usage,
)
from core.governance.governance_audit import (
    AuditLedger,
    AuditWriteResult,
    init_audit_ledger,
    get_audit_ledger,
)

__all__ = [
    'create_request',
    'get_request',
    'list_requests',
    'get_request_stats',
    'get_request_history',
    'get_request_trends',
    'add_request_comment',
    'list_request_comments',
    'approve_request',
    'reject_request',
    'cancel_request',
    'PolicyEngine',
    'PolicyRule',
    'SeparationOfDutiesRule',
    'Allowed',
    'Violation',
    'init_policy_engine',
    'get_policy_engine',
    'create_template',
    'update_template',
    'delete_template',
    'get_template',
    'get_template_version',
    'list_templates',
    'get_template_usage',
    'AuditLedger',
    'AuditWriteResult',
    'init_audit_ledger',
    'get_audit_ledger',
]
