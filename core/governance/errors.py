"""
Governance error taxonomy.

Every error carries the HTTP status it maps to and a short machine code.
Routes never build error responses by hand; the error handler registered in
server.py turns these into JSON.
"""


class GovernanceError(Exception):
    status_code = 500
    code = 'governance_error'

    def __init__(self, message=None, **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self):
        body = {'error': self.message, 'code': self.code}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(GovernanceError):
    """Malformed or unknown input. Not retried."""
    status_code = 400
    code = 'validation_error'


class NotFound(ValidationError):
    status_code = 404
    code = 'not_found'


class Unauthorized(GovernanceError):
    status_code = 401
    code = 'unauthorized'


class Forbidden(GovernanceError):
    status_code = 403
    code = 'forbidden'


class InvalidTransition(GovernanceError):
    """State machine precondition failed; re-read state before retrying."""
    status_code = 409
    code = 'invalid_transition'


class PolicyViolation(GovernanceError):
    """A governance rule refused the action. Always audited."""
    status_code = 403
    code = 'policy_violation'

    def __init__(self, message=None, rule=None, **details):
        super().__init__(message, rule=rule, **details)
        self.rule = rule


class Conflict(GovernanceError):
    status_code = 409
    code = 'conflict'


class UpstreamError(GovernanceError):
    """Credential exchange or upstream API failure.

    Idempotent reads may be retried with backoff. Never retry approve/reject
    blindly.
    """
    status_code = 502
    code = 'upstream_error'


class Unavailable(GovernanceError):
    """A write the action depends on could not be completed. Safe to retry."""
    status_code = 503
    code = 'unavailable'
