"""
Identity bridge — verifies caller tokens and brokers installation credentials.

Callers present ``Authorization: Bearer <jwt>``. The token is HS256-signed
with IDENTITY_TOKEN_SECRET and carries ``sub`` (user id) and
``installation_id``. The bridge resolves the installation to an
organization and returns a CallerContext with an API client bound to that
installation.

Installation credentials are cached in memory and refreshed
``refresh_margin_seconds`` before they expire. Concurrent requests for the
same installation are coalesced: one caller runs the upstream exchange,
the others wait on the same future and get the same credential or the same
UpstreamError.
"""
from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable

import jwt
from flask import current_app, request

from core.governance.errors import Forbidden, Unauthorized, UpstreamError
from core.identity.caller_context import CallerContext, Identity, is_organization_admin
from core.identity.github_app import (
    DEFAULT_API_URL,
    DEFAULT_TIMEOUT_SECONDS,
    GitHubAppAuth,
    InstallationClient,
    InstallationCredential,
)

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN_SECONDS = 60
TOKEN_ALGORITHMS = ['HS256']

EXTENSION_KEY = 'identity_bridge'


class IdentityBridge:
    """Authenticates callers and hands out installation credentials."""

    def __init__(self, token_secret: str | None,
                 exchange: Callable[[int], InstallationCredential],
                 refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 api_url: str = DEFAULT_API_URL,
                 clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self._token_secret = token_secret
        self._exchange = exchange
        self.refresh_margin_seconds = refresh_margin_seconds
        self.timeout = timeout
        self.api_url = api_url
        self._clock = clock

        self._lock = threading.Lock()
        self._cache: dict[int, InstallationCredential] = {}
        self._inflight: dict[int, Future] = {}

    # --- caller authentication -------------------------------------------

    def authenticate(self, bearer_token: str | None) -> Identity:
        """Verify a bearer token and extract its identity.

        Raises:
            Unauthorized: Missing, malformed, badly signed or expired token,
                          or missing sub/installation_id claims.
        """
        if not bearer_token:
            raise Unauthorized('No token provided')
        if not self._token_secret:
            logger.error('IDENTITY_TOKEN_SECRET is not configured; rejecting all tokens')
            raise Unauthorized('Token verification is not configured')

        try:
            claims = jwt.decode(
                bearer_token,
                self._token_secret,
                algorithms=TOKEN_ALGORITHMS,
                options={'require': ['exp', 'sub']},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthorized('Token has expired')
        except jwt.PyJWTError as e:
            logger.info('rejected bearer token: %s', e)
            raise Unauthorized('Invalid token')

        installation_id = claims.get('installation_id')
        if installation_id is None:
            raise Unauthorized('Token is missing the installation_id claim')

        try:
            return Identity(
                user_id=int(claims['sub']),
                installation_id=int(installation_id),
                claims=claims,
            )
        except (TypeError, ValueError):
            raise Unauthorized('Token claims are malformed')

    def authenticate_header(self, authorization: str | None) -> Identity:
        """Authenticate an ``Authorization`` header value."""
        if not authorization:
            raise Unauthorized('No token provided')
        scheme, _, token = authorization.partition(' ')
        if scheme.lower() != 'bearer' or not token.strip():
            raise Unauthorized('Authorization header must be "Bearer <token>"')
        return self.authenticate(token.strip())

    def build_context(self, identity: Identity) -> CallerContext:
        """Resolve the installation to its organization and build the context.

        Raises:
            Unauthorized: The installation is not registered.
        """
        from models import Organization

        org = Organization.query.filter_by(installation_id=identity.installation_id).first()
        if org is None:
            raise Unauthorized('Unknown installation')

        return CallerContext(
            user_id=identity.user_id,
            installation_id=identity.installation_id,
            organization_id=org.id,
            is_org_admin=is_organization_admin(org.id, identity.user_id),
            client=InstallationClient(
                self, identity.installation_id,
                api_url=self.api_url, timeout=self.timeout,
            ),
        )

    # --- installation credentials ----------------------------------------

    def get_installation_credential(self, installation_id) -> InstallationCredential:
        """Return a fresh cached credential or perform one coalesced exchange.

        Raises:
            UpstreamError: The exchange failed, or waiting for it timed out.
        """
        installation_id = int(installation_id)

        with self._lock:
            cached = self._cache.get(installation_id)
            if cached is not None and cached.is_fresh(self._clock(), self.refresh_margin_seconds):
                return cached
            future = self._inflight.get(installation_id)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[installation_id] = future

        if leader:
            self._run_exchange(installation_id, future)

        try:
            # The leader's exchange is itself bounded by the HTTP timeout;
            # followers allow for connect + read.
            return future.result(timeout=self.timeout * 2)
        except FutureTimeoutError:
            raise UpstreamError(
                f'Timed out waiting for installation {installation_id} credential'
            )

    def invalidate(self, installation_id) -> None:
        """Drop a cached credential so the next call exchanges again."""
        with self._lock:
            self._cache.pop(int(installation_id), None)

    def _run_exchange(self, installation_id, future) -> None:
        credential = None
        error = None
        try:
            credential = self._exchange(installation_id)
        except UpstreamError as e:
            error = e
        except Exception as e:
            logger.exception('installation token exchange crashed installation=%s',
                             installation_id)
            error = UpstreamError(f'Installation token exchange failed: {e}')
        if credential is None and error is None:
            error = UpstreamError('Installation token exchange returned no credential')

        with self._lock:
            if credential is not None:
                self._cache[installation_id] = credential
            self._inflight.pop(installation_id, None)

        if credential is not None:
            future.set_result(credential)
        else:
            logger.warning('installation token exchange failed installation=%s: %s',
                           installation_id, error)
            future.set_exception(error)


def init_identity_bridge(app, exchange=None):
    """Create the app's IdentityBridge from config and register it.

    Args:
        app: Flask app.
        exchange: Optional callable(installation_id) -> InstallationCredential;
                  defaults to the GitHub App token exchange.
    """
    timeout = float(app.config.get('UPSTREAM_TIMEOUT_SECONDS', DEFAULT_TIMEOUT_SECONDS))
    api_url = app.config.get('GITHUB_API_URL') or DEFAULT_API_URL

    if exchange is None:
        exchange = GitHubAppAuth(
            app_id=app.config.get('GITHUB_APP_ID'),
            private_key=app.config.get('GITHUB_APP_PRIVATE_KEY'),
            api_url=api_url,
            timeout=timeout,
        ).exchange

    bridge = IdentityBridge(
        token_secret=app.config.get('IDENTITY_TOKEN_SECRET'),
        exchange=exchange,
        refresh_margin_seconds=float(app.config.get(
            'CREDENTIAL_REFRESH_MARGIN_SECONDS', DEFAULT_REFRESH_MARGIN_SECONDS,
        )),
        timeout=timeout,
        api_url=api_url,
    )
    app.extensions[EXTENSION_KEY] = bridge
    return bridge


def get_identity_bridge() -> IdentityBridge:
    return current_app.extensions[EXTENSION_KEY]


def require_caller(view):
    """Route decorator: authenticate and pass a CallerContext as first argument.

    When the route has an ``org_id`` parameter, the caller's installation
    must belong to that organization.
    """
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        bridge = get_identity_bridge()
        identity = bridge.authenticate_header(request.headers.get('Authorization'))
        ctx = bridge.build_context(identity)

        org_id = kwargs.get('org_id')
        if org_id is not None and not ctx.can_act_on(org_id):
            raise Forbidden('Token is not valid for this organization')

        return view(ctx, *args, **kwargs)
    return wrapper
