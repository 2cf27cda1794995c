"""Add access governance tables.

Creates users, organizations, organization_members, access_templates,
access_template_versions, access_requests and audit_logs.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # -- users --
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('login', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_users_login', 'users', ['login'], unique=True)

    # -- organizations --
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('login', sa.String(255), nullable=False),
        sa.Column('installation_id', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_organizations_login', 'organizations', ['login'], unique=True)
    op.create_index('ix_organizations_installation_id', 'organizations', ['installation_id'], unique=True)

    # -- organization_members --
    op.create_table(
        'organization_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'user_id', name='_org_member_uc'),
    )

    # -- access_templates --
    op.create_table(
        'access_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_access_templates_organization_id', 'access_templates', ['organization_id'])

    # -- access_template_versions --
    op.create_table(
        'access_template_versions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('access_templates.id'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint('template_id', 'version', name='_template_version_uc'),
    )

    # -- access_requests --
    op.create_table(
        'access_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=False),
        sa.Column('access_level', sa.String(50), nullable=True),
        sa.Column('duration', sa.String(100), nullable=True),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('access_templates.id'), nullable=True),
        sa.Column('template_version', sa.Integer(), nullable=True),
        sa.Column('justification', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('decision_data', sa.JSON(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_access_requests_requester_id', 'access_requests', ['requester_id'])
    op.create_index('ix_access_requests_template_id', 'access_requests', ['template_id'])
    op.create_index('ix_access_request_org_status', 'access_requests', ['organization_id', 'status'])

    # -- audit_logs (append-only) --
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_organization_id', 'audit_logs', ['organization_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_log_resource_created', 'audit_logs', ['resource_id', 'created_at'])
    op.create_index('ix_audit_log_org_created', 'audit_logs', ['organization_id', 'created_at'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('access_requests')
    op.drop_table('access_template_versions')
    op.drop_table('access_templates')
    op.drop_table('organization_members')
    op.drop_table('organizations')
    op.drop_table('users')
