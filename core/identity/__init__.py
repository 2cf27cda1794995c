"""
core.identity — Caller identity and installation credentials.

Public API:
    caller_context — Identity / CallerContext, organization admin lookup
    bridge         — IdentityBridge (token verification, credential cache),
                     require_caller route decorator
    github_app     — GitHub App token exchange, installation-bound client
"""

from core.identity.caller_context import (
    Identity,
    CallerContext,
    is_organization_admin,
)
from core.identity.github_app import (
    GitHubAppAuth,
    InstallationClient,
    InstallationCredential,
)
from core.identity.bridge import (
    IdentityBridge,
    init_identity_bridge,
    get_identity_bridge,
    require_caller,
)

__all__ = [
    'Identity',
    'CallerContext',
    'is_organization_admin',
    'GitHubAppAuth',
    'InstallationClient',
    'InstallationCredential',
    'IdentityBridge',
    'init_identity_bridge',
    'get_identity_bridge',
    'require_caller',
]
