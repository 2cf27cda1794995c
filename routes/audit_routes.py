"""
Organization read routes — audit log query and installation repositories.

    GET /organizations/<org_id>/audit-logs     — paginated audit query
    GET /organizations/<org_id>/repositories   — upstream repository listing
"""
from datetime import datetime

from flask import jsonify, request

from core.governance.errors import ValidationError
from core.identity.bridge import require_caller


def register_audit_routes(app):

    @app.route('/organizations/<int:org_id>/audit-logs', methods=['GET'])
    @require_caller
    def audit_logs_query(ctx, org_id):
        """Query the organization's audit trail, newest first.

        Query params:
            action, resource_type, resource_id, user_id (optional filters)
            start_date, end_date (ISO 8601, optional)
            search (str, optional): Substring of resource id, action or type.
            page (int, default 1), limit (int, default 20, max 200)
        """
        from core.governance.governance_audit import get_audit_ledger

        result = get_audit_ledger().query_audit_logs(
            organization_id=org_id,
            action=request.args.get('action'),
            resource_type=request.args.get('resource_type'),
            resource_id=request.args.get('resource_id'),
            user_id=request.args.get('user_id', type=int),
            start_date=_parse_date('start_date'),
            end_date=_parse_date('end_date'),
            search=request.args.get('search'),
            page=request.args.get('page', 1, type=int),
            limit=request.args.get('limit', 20, type=int),
        )
        result['logs'] = [entry.to_dict() for entry in result['logs']]
        return jsonify(result)

    @app.route('/organizations/<int:org_id>/repositories', methods=['GET'])
    @require_caller
    def organization_repositories(ctx, org_id):
        """Repositories visible to the organization's installation.

        Uses the installation credential, never the caller's token.
        """
        page = max(request.args.get('page', 1, type=int), 1)
        per_page = min(max(request.args.get('per_page', 30, type=int), 1), 100)

        return jsonify(ctx.client.list_repositories(page=page, per_page=per_page))


def _parse_date(arg):
    value = request.args.get(arg)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{arg} must be an ISO 8601 date')
    # Stored timestamps are naive UTC.
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    return parsed
