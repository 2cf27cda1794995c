"""
Organization management utility
Register organizations/installations and manage members and admins
"""
from server import app
from models import db, User, Organization, OrganizationMember
import sys


def init_db():
    """Create all tables (development; use alembic in production)"""
    with app.app_context():
        db.create_all()
        print("✅ Database tables created")


def add_org(login, installation_id):
    """Register an organization and its app installation"""
    with app.app_context():
        existing = Organization.query.filter_by(login=login).first()
        if existing:
            print(f"ℹ️  Organization {login} already registered (ID: {existing.id})")
            return existing.id

        org = Organization(login=login, installation_id=int(installation_id))
        db.session.add(org)
        db.session.commit()
        print(f"✅ Registered {login} with installation {installation_id} (ID: {org.id})")
        return org.id


def add_member(org_login, user_login, role='member'):
    """Add a user to an organization, creating the user if needed"""
    if role not in OrganizationMember.VALID_ROLES:
        print(f"❌ Invalid role: {role}")
        return False

    with app.app_context():
        org = Organization.query.filter_by(login=org_login).first()
        if not org:
            print(f"❌ Organization not found: {org_login}")
            return False

        user = User.query.filter_by(login=user_login).first()
        if not user:
            user = User(login=user_login)
            db.session.add(user)
            db.session.flush()

        member = OrganizationMember.query.filter_by(
            organization_id=org.id, user_id=user.id
        ).first()
        if member:
            print(f"ℹ️  {user_login} is already a {member.role} of {org_login}")
            return True

        db.session.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=role))
        db.session.commit()
        print(f"✅ Added {user_login} (ID: {user.id}) to {org_login} as {role}")
        return True


def set_role(org_login, user_login, role):
    """Promote or demote an existing member"""
    with app.app_context():
        member = (
            OrganizationMember.query
            .join(Organization, Organization.id == OrganizationMember.organization_id)
            .join(User, User.id == OrganizationMember.user_id)
            .filter(Organization.login == org_login, User.login == user_login)
            .first()
        )
        if not member:
            print(f"❌ {user_login} is not a member of {org_login}")
            return False

        if member.role == role:
            print(f"ℹ️  {user_login} is already {role} of {org_login}")
            return True

        member.role = role
        db.session.commit()
        print(f"✅ {user_login} is now {role} of {org_login}")
        return True


def list_members(org_login):
    """List members of an organization"""
    with app.app_context():
        org = Organization.query.filter_by(login=org_login).first()
        if not org:
            print(f"❌ Organization not found: {org_login}")
            return

        members = org.members.order_by(OrganizationMember.role, OrganizationMember.id).all()
        if not members:
            print(f"No members in {org_login}")
            return

        print(f"Members of {org_login} (installation {org.installation_id}):")
        for m in members:
            print(f"  - {m.user.login} (ID: {m.user_id}) [{m.role}]")


def show_usage():
    """Show usage information"""
    print("""
Access Governance Organization Utility

Usage:
    python manage_org.py init-db                              - Create tables
    python manage_org.py add-org <login> <installation_id>    - Register organization
    python manage_org.py add-member <org> <user> [role]       - Add member (member|admin)
    python manage_org.py promote <org> <user>                 - Make member an admin
    python manage_org.py demote <org> <user>                  - Make admin a member
    python manage_org.py list-members <org>                   - List members

Examples:
    python manage_org.py add-org acme 12345678
    python manage_org.py add-member acme octocat admin
    """)


if __name__ == '__main__':
    if len(sys.argv) < 2:
        show_usage()
        sys.exit(1)

    command = sys.argv[1].lower()
    args = sys.argv[2:]

    if command == 'init-db':
        init_db()
    elif command == 'add-org' and len(args) == 2:
        add_org(args[0], args[1])
    elif command == 'add-member' and len(args) in (2, 3):
        ok = add_member(*args)
        sys.exit(0 if ok else 1)
    elif command == 'promote' and len(args) == 2:
        sys.exit(0 if set_role(args[0], args[1], 'admin') else 1)
    elif command == 'demote' and len(args) == 2:
        sys.exit(0 if set_role(args[0], args[1], 'member') else 1)
    elif command == 'list-members' and len(args) == 1:
        list_members(args[0])
    else:
        print(f"❌ Unknown command or wrong arguments: {' '.join(sys.argv[1:])}")
        show_usage()
        sys.exit(1)
