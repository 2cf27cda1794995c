"""
Access request routes — create, read, decide and audit access requests.

    POST /organizations/<org_id>/access-requests                 — create
    GET  /organizations/<org_id>/access-requests                 — list
    GET  /organizations/<org_id>/access-requests/stats/summary   — counts
    GET  /organizations/<org_id>/access-requests/stats/trends    — counts per day
    GET  /organizations/<org_id>/access-requests/<id>            — read
    POST /organizations/<org_id>/access-requests/<id>/approve    — approve
    POST /organizations/<org_id>/access-requests/<id>/reject     — reject
    POST /organizations/<org_id>/access-requests/<id>/cancel     — cancel
    GET  /organizations/<org_id>/access-requests/<id>/history    — audit trail
    GET  /organizations/<org_id>/access-requests/<id>/comments   — comments
    POST /organizations/<org_id>/access-requests/<id>/comments   — add comment

Every route authenticates through the IdentityBridge and receives the
CallerContext explicitly. Engine errors propagate to the JSON error handler.
"""
from flask import jsonify, request

from core.governance.errors import ValidationError
from core.identity.bridge import require_caller


def register_access_request_routes(app):

    @app.route('/organizations/<int:org_id>/access-requests', methods=['POST'])
    @require_caller
    def access_request_create(ctx, org_id):
        """Submit an access request as the calling user.

        Body:
            resource_type (str): 'repository', 'team' or 'organization'.
            resource_id (str): The resource identifier.
            justification (str): Why access is needed.
            template_id (int, optional): Access template to apply.
            access_level (str, optional): Requested permission/role.
            duration (str, optional): Requested duration.
        """
        data = _json_body()

        from core.governance.requests import create_request

        pcr = create_request(
            requester_id=ctx.user_id,
            organization_id=org_id,
            resource_type=data.get('resource_type'),
            resource_id=data.get('resource_id'),
            justification=data.get('justification', ''),
            template_id=data.get('template_id'),
            access_level=data.get('access_level'),
            duration=data.get('duration'),
        )
        return jsonify(pcr.to_dict()), 201

    @app.route('/organizations/<int:org_id>/access-requests', methods=['GET'])
    @require_caller
    def access_request_list(ctx, org_id):
        """List requests.

        Query params:
            status (str, optional), requester_id (int, optional),
            resource_type (str, optional), limit (int, optional, default 50).
        """
        limit = request.args.get('limit', 50, type=int)
        limit = min(max(limit, 1), 200)

        from core.governance.requests import list_requests

        results = list_requests(
            organization_id=org_id,
            status=request.args.get('status'),
            requester_id=request.args.get('requester_id', type=int),
            resource_type=request.args.get('resource_type'),
            limit=limit,
        )
        return jsonify({
            'requests': [r.to_dict() for r in results],
            'count': len(results),
        })

    @app.route('/organizations/<int:org_id>/access-requests/stats/summary', methods=['GET'])
    @require_caller
    def access_request_stats(ctx, org_id):
        from core.governance.requests import get_request_stats

        return jsonify(get_request_stats(org_id))

    @app.route('/organizations/<int:org_id>/access-requests/stats/trends', methods=['GET'])
    @require_caller
    def access_request_trends(ctx, org_id):
        """Query params: days (int, optional, default 30, max 365)."""
        days = request.args.get('days', 30, type=int)

        from core.governance.requests import get_request_trends

        return jsonify({'days': days, 'trends': get_request_trends(org_id, days=days)})

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>', methods=['GET'])
    @require_caller
    def access_request_get(ctx, org_id, request_id):
        from core.governance.requests import get_request

        return jsonify(get_request(request_id, org_id).to_dict())

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/approve',
               methods=['POST'])
    @require_caller
    def access_request_approve(ctx, org_id, request_id):
        """Approve as the calling user. The body is stored as approval data."""
        data = _json_body()

        from core.governance.approvals import approve_request

        pcr = approve_request(
            request_id=request_id,
            organization_id=org_id,
            approver_id=ctx.user_id,
            approval_data=data,
        )
        return jsonify(pcr.to_dict())

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/reject',
               methods=['POST'])
    @require_caller
    def access_request_reject(ctx, org_id, request_id):
        """Reject as the calling user. The body is stored as rejection data."""
        data = _json_body()

        from core.governance.approvals import reject_request

        pcr = reject_request(
            request_id=request_id,
            organization_id=org_id,
            approver_id=ctx.user_id,
            rejection_data=data,
        )
        return jsonify(pcr.to_dict())

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/cancel',
               methods=['POST'])
    @require_caller
    def access_request_cancel(ctx, org_id, request_id):
        from core.governance.approvals import cancel_request

        pcr = cancel_request(
            request_id=request_id,
            organization_id=org_id,
            caller_id=ctx.user_id,
        )
        return jsonify(pcr.to_dict())

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/history',
               methods=['GET'])
    @require_caller
    def access_request_history(ctx, org_id, request_id):
        from core.governance.requests import get_request_history

        entries = [entry.to_dict() for entry in get_request_history(request_id, org_id)]
        return jsonify({
            'request_id': request_id,
            'history': entries,
            'count': len(entries),
        })

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/comments',
               methods=['GET'])
    @require_caller
    def access_request_comments(ctx, org_id, request_id):
        from core.governance.requests import list_request_comments

        comments = [entry.to_dict() for entry in list_request_comments(request_id, org_id)]
        return jsonify({'request_id': request_id, 'comments': comments, 'count': len(comments)})

    @app.route('/organizations/<int:org_id>/access-requests/<int:request_id>/comments',
               methods=['POST'])
    @require_caller
    def access_request_comment_create(ctx, org_id, request_id):
        """Comment on a request as the calling user.

        Body:
            comment (str): Comment text.
        """
        data = _json_body()

        from core.governance.requests import add_request_comment

        entry = add_request_comment(
            request_id=request_id,
            organization_id=org_id,
            author_id=ctx.user_id,
            comment=data.get('comment'),
        )
        return jsonify(entry.to_dict()), 201


def _json_body():
    """Parsed JSON object body; an absent body counts as {}."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
