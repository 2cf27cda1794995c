"""
Access template catalog — named, versioned permission bundles.

Templates are scoped to an organization. Every content change bumps the
version by exactly one and freezes the new content into
access_template_versions, so a request that captured (template_id, version)
keeps its historical meaning after later edits or deletion.

Deletion is a soft delete, refused while any pending request references the
template.
"""
from datetime import datetime

from core.governance.errors import Conflict, NotFound, ValidationError
from core.governance.governance_audit import (
    ACTION_TEMPLATE_CREATED,
    ACTION_TEMPLATE_DELETED,
    ACTION_TEMPLATE_UPDATED,
    get_audit_ledger,
)

AUDIT_RESOURCE_TYPE = 'access_template'

MAX_NAME_LENGTH = 255


def create_template(organization_id, name, permissions, description=None,
                    actor_id=None):
    """Create a template at version 1.

    Args:
        organization_id: Owning organization.
        name: Unique (among live templates) name within the organization.
        permissions: Ordered list of {"scope": str, "permission": str}.
        description: Optional free text.
        actor_id: User performing the change (for the audit trail).

    Returns:
        AccessTemplate

    Raises:
        ValidationError: Bad name/permissions or duplicate name.
    """
    from models import db, AccessTemplate

    name = _clean_name(name)
    permissions = _clean_permissions(permissions)
    description = None if description is None else _clean_description(description)
    _ensure_name_available(organization_id, name)

    now = datetime.utcnow()
    template = AccessTemplate(
        organization_id=organization_id,
        name=name,
        description=description,
        permissions=permissions,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.session.add(template)
    db.session.flush()
    db.session.add(_freeze(template.id, 1, name, description, permissions, now))
    db.session.commit()

    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_TEMPLATE_CREATED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=template.id,
        details={
            'name': name,
            'version': 1,
            'permissions': permissions,
        },
        user_id=actor_id,
    )
    return template


def update_template(template_id, organization_id, name=None, permissions=None,
                    description=None, expected_version=None, actor_id=None):
    """Update template content, bumping the version when anything changed.

    Fields passed as None keep their current value. An empty description
    clears it.

    Raises:
        NotFound: Template missing, deleted, or in another organization.
        ValidationError: Bad name/permissions/description, duplicate name,
                         or a non-integer expected_version.
        Conflict: expected_version is stale, or a concurrent update won.
    """
    from models import db, AccessTemplate

    if expected_version is not None:
        if isinstance(expected_version, bool):
            raise ValidationError('expected_version must be an integer')
        try:
            expected_version = int(expected_version)
        except (TypeError, ValueError):
            raise ValidationError('expected_version must be an integer')

    template = get_template(template_id, organization_id)
    read_version = template.version

    if expected_version is not None and expected_version != read_version:
        raise Conflict(
            f'Template is at version {read_version}, not {expected_version}',
            current_version=read_version,
        )

    new_name = template.name if name is None else _clean_name(name)
    new_permissions = (
        list(template.permissions or []) if permissions is None
        else _clean_permissions(permissions)
    )
    new_description = (
        template.description if description is None
        else _clean_description(description)
    )

    if (new_name == template.name
            and new_permissions == list(template.permissions or [])
            and new_description == template.description):
        return template

    if new_name != template.name:
        _ensure_name_available(organization_id, new_name)

    now = datetime.utcnow()
    new_version = read_version + 1
    updated = AccessTemplate.query.filter(
        AccessTemplate.id == template.id,
        AccessTemplate.version == read_version,
        AccessTemplate.deleted_at.is_(None),
    ).update({
        'name': new_name,
        'permissions': new_permissions,
        'description': new_description,
        'version': new_version,
        'updated_at': now,
    }, synchronize_session=False)

    if updated == 0:
        db.session.rollback()
        raise Conflict('Template was modified concurrently; re-read and retry')

    db.session.add(_freeze(template.id, new_version, new_name, new_description,
                           new_permissions, now))
    db.session.commit()
    db.session.refresh(template)

    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_TEMPLATE_UPDATED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=template.id,
        details={
            'previous_version': read_version,
            'version': new_version,
            'name': new_name,
            'permissions': new_permissions,
        },
        user_id=actor_id,
    )
    return template


def delete_template(template_id, organization_id, actor_id=None):
    """Soft-delete a template that no pending request references.

    The template row is locked before pending references are counted, so a
    create_request holding the same lock has committed (and is counted) or
    has not read the template yet. create_request rechecks the template after
    its insert for backends without row locks.

    Raises:
        NotFound: Template missing, already deleted, or in another organization.
        Conflict: A pending access request references the template.
    """
    from models import db, AccessTemplate, AccessRequest

    template = (
        AccessTemplate.query
        .filter_by(id=template_id, organization_id=organization_id)
        .filter(AccessTemplate.deleted_at.is_(None))
        .with_for_update()
        .first()
    )
    if template is None:
        db.session.rollback()
        raise NotFound('Template not found')

    pending = _count_pending_references(template.id)
    if pending:
        db.session.rollback()
        raise Conflict(
            f'Template is referenced by {pending} pending access request(s)',
            pending_requests=pending,
        )

    pending_refs = db.session.query(AccessRequest.id).filter(
        AccessRequest.template_id == template.id,
        AccessRequest.status == AccessRequest.STATUS_PENDING,
    ).exists()

    now = datetime.utcnow()
    deleted = AccessTemplate.query.filter(
        AccessTemplate.id == template.id,
        AccessTemplate.deleted_at.is_(None),
        ~pending_refs,
    ).update({'deleted_at': now}, synchronize_session=False)

    if deleted == 0:
        db.session.rollback()
        pending = _count_pending_references(template.id)
        if pending:
            raise Conflict(
                f'Template is referenced by {pending} pending access request(s)',
                pending_requests=pending,
            )
        raise NotFound('Template not found')

    db.session.commit()

    get_audit_ledger().log_event(
        organization_id=organization_id,
        action=ACTION_TEMPLATE_DELETED,
        resource_type=AUDIT_RESOURCE_TYPE,
        resource_id=template.id,
        details={'name': template.name, 'version': template.version},
        user_id=actor_id,
    )
    return template


def get_template(template_id, organization_id, include_deleted=False):
    """Get a template scoped to an organization.

    Raises:
        NotFound
    """
    from models import AccessTemplate

    q = AccessTemplate.query.filter_by(id=template_id, organization_id=organization_id)
    if not include_deleted:
        q = q.filter(AccessTemplate.deleted_at.is_(None))
    template = q.first()
    if template is None:
        raise NotFound('Template not found')
    return template


def get_template_version(template_id, organization_id, version):
    """Return the frozen content of one version, deleted templates included."""
    from models import AccessTemplateVersion

    template = get_template(template_id, organization_id, include_deleted=True)
    frozen = AccessTemplateVersion.query.filter_by(
        template_id=template.id, version=version,
    ).first()
    if frozen is None:
        raise NotFound(f'Template version {version} not found')
    return frozen


def list_templates(organization_id):
    """Live templates of an organization ordered by name."""
    from models import AccessTemplate

    return (
        AccessTemplate.query
        .filter_by(organization_id=organization_id)
        .filter(AccessTemplate.deleted_at.is_(None))
        .order_by(AccessTemplate.name.asc())
        .all()
    )


def get_template_usage(template_id, organization_id):
    """Count requests referencing a template, grouped by status.

    Returns:
        dict: {template_id, total, by_status: {pending, approved, rejected, cancelled}}
    """
    from models import db, AccessRequest

    template = get_template(template_id, organization_id, include_deleted=True)

    rows = (
        db.session.query(AccessRequest.status, db.func.count(AccessRequest.id))
        .filter(AccessRequest.template_id == template.id)
        .group_by(AccessRequest.status)
        .all()
    )
    by_status = {status: 0 for status in sorted(AccessRequest.VALID_STATUSES)}
    for status, count in rows:
        by_status[status] = count

    return {
        'template_id': template.id,
        'total': sum(by_status.values()),
        'by_status': by_status,
    }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _freeze(template_id, version, name, description, permissions, now):
    from models import AccessTemplateVersion

    return AccessTemplateVersion(
        template_id=template_id,
        version=version,
        name=name,
        description=description,
        permissions=permissions,
        created_at=now,
    )


def _clean_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Template name is required')
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f'Template name cannot exceed {MAX_NAME_LENGTH} characters')
    return name


def _clean_description(description):
    if not isinstance(description, str):
        raise ValidationError('description must be a string')
    return description.strip() or None


def _clean_permissions(permissions):
    if not isinstance(permissions, list):
        raise ValidationError('permissions must be a list')

    cleaned = []
    for index, grant in enumerate(permissions):
        if not isinstance(grant, dict):
            raise ValidationError(f'permissions[{index}] must be an object')
        scope = grant.get('scope')
        permission = grant.get('permission')
        if not isinstance(scope, str) or not scope.strip():
            raise ValidationError(f'permissions[{index}].scope is required')
        if not isinstance(permission, str) or not permission.strip():
            raise ValidationError(f'permissions[{index}].permission is required')
        cleaned.append({'scope': scope.strip(), 'permission': permission.strip()})
    return cleaned


def _ensure_name_available(organization_id, name):
    from models import AccessTemplate

    clash = AccessTemplate.query.filter(
        AccessTemplate.organization_id == organization_id,
        AccessTemplate.name == name,
        AccessTemplate.deleted_at.is_(None),
    ).first()
    if clash is not None:
        raise ValidationError(f'A template named "{name}" already exists')


def _count_pending_references(template_id):
    from models import AccessRequest

    return AccessRequest.query.filter_by(
        template_id=template_id, status=AccessRequest.STATUS_PENDING,
    ).count()
