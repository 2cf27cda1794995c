"""
Immutable caller context — who is calling, for which installation.

A CallerContext is built by the IdentityBridge from a verified bearer token
and passed explicitly into every route handler and engine call that needs
it. Nothing is stashed on the request object or in globals.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Identity:
    """Verified claims of a bearer token."""

    user_id: int
    installation_id: int
    claims: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CallerContext:
    """Scope token for one authenticated call.

    Frozen so a handler cannot switch organization or escalate to admin by
    mutating it.
    """

    user_id: int
    installation_id: int
    organization_id: int
    is_org_admin: bool = False

    # Upstream API client bound to this installation. Fetches its
    # installation credential lazily, so building a context never calls
    # upstream.
    client: Any = field(default=None, repr=False, compare=False)

    def can_act_on(self, organization_id: int) -> bool:
        return self.organization_id == organization_id

    def as_dict(self) -> dict:
        """Serialise to a plain dict (useful for logging)."""
        return {
            'user_id': self.user_id,
            'installation_id': self.installation_id,
            'organization_id': self.organization_id,
            'is_org_admin': self.is_org_admin,
        }


def is_organization_admin(organization_id, user_id) -> bool:
    """True if user_id holds the 'admin' role in the organization."""
    from models import OrganizationMember

    if user_id is None:
        return False
    member = OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id,
    ).first()
    return member is not None and member.is_admin
