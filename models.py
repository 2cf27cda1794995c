"""
Database models for the access governance engine
"""
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class User(db.Model):
    """GitHub user known to the engine"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    login = db.Column(db.String(255), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    memberships = db.relationship('OrganizationMember', backref='user', lazy='dynamic')

    def __repr__(self):
        return f'<User {self.login}>'

    def to_dict(self):
        return {
            'id': self.id,
            'login': self.login,
            'email': self.email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Organization(db.Model):
    """GitHub organization with the app installed"""
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    login = db.Column(db.String(255), unique=True, nullable=False, index=True)
    # GitHub App installation id; bearer tokens carry this claim
    installation_id = db.Column(db.BigInteger, unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    members = db.relationship('OrganizationMember', backref='organization', lazy='dynamic')

    def __repr__(self):
        return f'<Organization {self.login} installation={self.installation_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'login': self.login,
            'installation_id': self.installation_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class OrganizationMember(db.Model):
    """Membership of a user in an organization ('member' or 'admin')"""
    __tablename__ = 'organization_members'

    VALID_ROLES = frozenset({'member', 'admin'})

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='member')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('organization_id', 'user_id', name='_org_member_uc'),)

    @property
    def is_admin(self):
        return self.role == 'admin'


class AccessTemplate(db.Model):
    """Named, versioned bundle of permissions that requests may reference"""
    __tablename__ = 'access_templates'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    # Ordered list of {"scope": ..., "permission": ...}
    permissions = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    deleted_at = db.Column(db.DateTime)  # soft delete; closed requests keep referencing it

    versions = db.relationship(
        'AccessTemplateVersion', backref='template', lazy='dynamic',
        order_by='AccessTemplateVersion.version',
    )

    def __repr__(self):
        return f'<AccessTemplate {self.name} v{self.version}>'

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'permissions': list(self.permissions or []),
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class AccessTemplateVersion(db.Model):
    """Frozen content of one template version"""
    __tablename__ = 'access_template_versions'

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('access_templates.id'), nullable=False)
    version = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('template_id', 'version', name='_template_version_uc'),)

    def to_dict(self):
        return {
            'template_id': self.template_id,
            'version': self.version,
            'name': self.name,
            'description': self.description,
            'permissions': list(self.permissions or []),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class AccessRequest(db.Model):
    """A request for access to an organization resource"""
    __tablename__ = 'access_requests'

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_CANCELLED = 'cancelled'

    VALID_STATUSES = frozenset({'pending', 'approved', 'rejected', 'cancelled'})
    TERMINAL_STATUSES = frozenset({'approved', 'rejected', 'cancelled'})

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    requester_id = db.Column(db.Integer, nullable=False, index=True)
    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(255), nullable=False)
    access_level = db.Column(db.String(50))
    duration = db.Column(db.String(100))
    template_id = db.Column(db.Integer, db.ForeignKey('access_templates.id'), nullable=True, index=True)
    template_version = db.Column(db.Integer)
    justification = db.Column(db.Text, nullable=False, default='')
    status = db.Column(db.String(20), nullable=False, default='pending')
    approver_id = db.Column(db.Integer)
    decision_data = db.Column(db.JSON)
    decided_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_access_request_org_status', 'organization_id', 'status'),
    )

    template = db.relationship('AccessTemplate')

    def __repr__(self):
        return f'<AccessRequest {self.id} {self.resource_type}:{self.resource_id} {self.status}>'

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'requester_id': self.requester_id,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'access_level': self.access_level,
            'duration': self.duration or 'Permanent',
            'template_id': self.template_id,
            'template_version': self.template_version,
            'justification': self.justification,
            'status': self.status,
            'approver_id': self.approver_id,
            'decision_data': self.decision_data,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class AuditLog(db.Model):
    """Append-only record of a governance-relevant action.

    Rows are only ever inserted. Nothing in the codebase updates or deletes
    them.
    """
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.Integer, nullable=True)  # None = system event
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_audit_log_resource_created', 'resource_id', 'created_at'),
        db.Index('ix_audit_log_org_created', 'organization_id', 'created_at'),
    )

    def __repr__(self):
        return f'<AuditLog {self.action} {self.resource_type}:{self.resource_id}>'

    def to_dict(self):
        """Stable record shape consumed by reporting."""
        return {
            'id': self.id,
            'userId': self.user_id,
            'organizationId': self.organization_id,
            'action': self.action,
            'resourceType': self.resource_type,
            'resourceId': self.resource_id,
            'details': dict(self.details or {}),
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
