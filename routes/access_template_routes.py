"""
Access template routes — versioned permission bundles per organization.

    GET    /organizations/<org_id>/access-templates                        — list
    POST   /organizations/<org_id>/access-templates                        — create
    GET    /organizations/<org_id>/access-templates/<id>                   — read
    PUT    /organizations/<org_id>/access-templates/<id>                   — update
    DELETE /organizations/<org_id>/access-templates/<id>                   — soft delete
    GET    /organizations/<org_id>/access-templates/<id>/usage             — request counts
    GET    /organizations/<org_id>/access-templates/<id>/versions/<ver>    — frozen version
"""
from flask import jsonify

from core.identity.bridge import require_caller
from routes.access_request_routes import _json_body


def register_access_template_routes(app):

    @app.route('/organizations/<int:org_id>/access-templates', methods=['GET'])
    @require_caller
    def access_template_list(ctx, org_id):
        from core.governance.templates import list_templates

        templates = [t.to_dict() for t in list_templates(org_id)]
        return jsonify({'templates': templates, 'count': len(templates)})

    @app.route('/organizations/<int:org_id>/access-templates', methods=['POST'])
    @require_caller
    def access_template_create(ctx, org_id):
        """Create a template.

        Body:
            name (str): Unique among the organization's live templates.
            permissions (list): [{"scope": str, "permission": str}, ...].
            description (str, optional)
        """
        data = _json_body()

        from core.governance.templates import create_template

        template = create_template(
            organization_id=org_id,
            name=data.get('name'),
            permissions=data.get('permissions'),
            description=data.get('description'),
            actor_id=ctx.user_id,
        )
        return jsonify(template.to_dict()), 201

    @app.route('/organizations/<int:org_id>/access-templates/<int:template_id>',
               methods=['GET'])
    @require_caller
    def access_template_get(ctx, org_id, template_id):
        from core.governance.templates import get_template

        return jsonify(get_template(template_id, org_id).to_dict())

    @app.route('/organizations/<int:org_id>/access-templates/<int:template_id>',
               methods=['PUT'])
    @require_caller
    def access_template_update(ctx, org_id, template_id):
        """Update a template. Omitted or null fields keep their value; an
        empty description clears it.

        Body:
            name, permissions, description (optional)
            expected_version (int, optional): Reject with 409 if the
                template has moved past this version.
        """
        data = _json_body()

        from core.governance.templates import update_template

        template = update_template(
            template_id=template_id,
            organization_id=org_id,
            name=data.get('name'),
            permissions=data.get('permissions'),
            description=data.get('description'),
            expected_version=data.get('expected_version'),
            actor_id=ctx.user_id,
        )
        return jsonify(template.to_dict())

    @app.route('/organizations/<int:org_id>/access-templates/<int:template_id>',
               methods=['DELETE'])
    @require_caller
    def access_template_delete(ctx, org_id, template_id):
        from core.governance.templates import delete_template

        template = delete_template(template_id, org_id, actor_id=ctx.user_id)
        return jsonify({'success': True, 'template': template.to_dict()})

    @app.route('/organizations/<int:org_id>/access-templates/<int:template_id>/usage',
               methods=['GET'])
    @require_caller
    def access_template_usage(ctx, org_id, template_id):
        from core.governance.templates import get_template_usage

        return jsonify(get_template_usage(template_id, org_id))

    @app.route('/organizations/<int:org_id>/access-templates/<int:template_id>'
               '/versions/<int:version>', methods=['GET'])
    @require_caller
    def access_template_version(ctx, org_id, template_id, version):
        from core.governance.templates import get_template_version

        return jsonify(get_template_version(template_id, org_id, version).to_dict())
