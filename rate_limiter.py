"""
Rate limiting configuration for the Access Governance API
"""
from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import os


def get_limiter_storage_uri():
    """
    Get storage URI for rate limiter
    Uses Redis in production, memory in development
    """
    redis_url = os.environ.get('REDIS_URL')
    if redis_url:
        return redis_url
    return "memory://"


def caller_key():
    """
    Rate limit key: the verified caller (user and installation) when the
    bearer token checks out, so callers behind one proxy do not share a
    bucket. Unverified tokens are keyed by remote address like anonymous
    traffic.
    """
    from core.governance.errors import Unauthorized
    from core.identity.bridge import get_identity_bridge

    authorization = request.headers.get('Authorization')
    if authorization:
        try:
            identity = get_identity_bridge().authenticate_header(authorization)
        except Unauthorized:
            return get_remote_address()
        return f'user:{identity.user_id}:installation:{identity.installation_id}'
    return get_remote_address()


limiter = Limiter(
    key_func=caller_key,
    storage_uri=get_limiter_storage_uri(),
    default_limits=["1000 per hour", "100 per minute"],
    storage_options={"socket_connect_timeout": 30},
    strategy="fixed-window",
)


def init_limiter(app):
    """Initialize rate limiter with Flask app"""
    limiter.init_app(app)
    return limiter
