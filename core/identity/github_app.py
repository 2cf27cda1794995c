"""
GitHub App upstream — installation token exchange and an API client bound
to one installation.

The engine never stores long-lived secrets. The App private key comes from
configuration, installation tokens live only in the bridge's memory cache.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import jwt
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from core.governance.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://api.github.com'
DEFAULT_TIMEOUT_SECONDS = 10.0

# GitHub caps App JWTs at 10 minutes; iat is backdated for clock drift.
APP_JWT_TTL_SECONDS = 540
APP_JWT_BACKDATE_SECONDS = 60

GITHUB_ACCEPT = 'application/vnd.github+json'
GITHUB_API_VERSION = '2022-11-28'

# Only idempotent reads are retried.
RETRY_STATUSES = (500, 502, 503, 504)
RETRY_METHODS = frozenset({'GET', 'HEAD'})


@dataclass(frozen=True)
class InstallationCredential:
    """Short-lived token scoped to one app installation. Never persisted."""

    installation_id: int
    token: str = field(repr=False)
    expires_at: datetime  # naive UTC

    def is_fresh(self, now: datetime, margin_seconds: float) -> bool:
        """True if the token is still valid ``margin_seconds`` from now."""
        return now + timedelta(seconds=margin_seconds) < self.expires_at


class GitHubAppAuth:
    """Exchanges the App identity for installation access tokens."""

    def __init__(self, app_id, private_key, api_url=DEFAULT_API_URL,
                 timeout=DEFAULT_TIMEOUT_SECONDS, session=None) -> None:
        self.app_id = app_id
        self.private_key = private_key
        self.api_url = (api_url or DEFAULT_API_URL).rstrip('/')
        self.timeout = timeout
        self._session = session or requests.Session()

    def app_jwt(self, now: int | None = None) -> str:
        """Sign a short-lived RS256 JWT identifying the App."""
        now = int(time.time()) if now is None else now
        payload = {
            'iat': now - APP_JWT_BACKDATE_SECONDS,
            'exp': now + APP_JWT_TTL_SECONDS,
            'iss': str(self.app_id),
        }
        return jwt.encode(payload, self.private_key, algorithm='RS256')

    def exchange(self, installation_id) -> InstallationCredential:
        """Create an installation access token.

        Raises:
            UpstreamError: Missing configuration, network failure, non-2xx
                           response or malformed body.
        """
        if not self.app_id or not self.private_key:
            raise UpstreamError('GitHub App credentials are not configured')

        try:
            app_token = self.app_jwt()
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise UpstreamError(f'Could not sign GitHub App JWT: {e}') from e

        url = f'{self.api_url}/app/installations/{installation_id}/access_tokens'
        try:
            resp = self._session.post(
                url,
                headers={
                    'Authorization': f'Bearer {app_token}',
                    'Accept': GITHUB_ACCEPT,
                    'X-GitHub-Api-Version': GITHUB_API_VERSION,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f'Installation token exchange failed: {e}') from e

        if not resp.ok:
            raise UpstreamError(
                f'Installation token exchange returned {resp.status_code}',
                status=resp.status_code,
            )

        try:
            body = resp.json()
            token = body['token']
            expires_at = parse_github_timestamp(body['expires_at'])
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError('Malformed installation token response') from e

        logger.info('exchanged installation token installation=%s expires_at=%s',
                    installation_id, expires_at.isoformat())
        return InstallationCredential(
            installation_id=int(installation_id),
            token=token,
            expires_at=expires_at,
        )


class InstallationClient:
    """Upstream API client that authenticates as one installation.

    The installation credential is resolved through the bridge on every
    call, so an expiring token is refreshed transparently. The caller's own
    bearer token is never forwarded upstream.
    """

    def __init__(self, bridge, installation_id, api_url=DEFAULT_API_URL,
                 timeout=DEFAULT_TIMEOUT_SECONDS, session=None,
                 max_retries=3, backoff_factor=0.5) -> None:
        self._bridge = bridge
        self.installation_id = installation_id
        self.api_url = (api_url or DEFAULT_API_URL).rstrip('/')
        self.timeout = timeout
        self._session = session or _retrying_session(max_retries, backoff_factor)

    def request(self, method, path, **kwargs) -> requests.Response:
        credential = self._bridge.get_installation_credential(self.installation_id)
        headers = dict(kwargs.pop('headers', None) or {})
        headers.update({
            'Authorization': f'token {credential.token}',
            'Accept': GITHUB_ACCEPT,
            'X-GitHub-Api-Version': GITHUB_API_VERSION,
        })

        url = f'{self.api_url}/{path.lstrip("/")}'
        try:
            resp = self._session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as e:
            raise UpstreamError(f'GitHub API {method} {path} failed: {e}') from e

        if resp.status_code == 401:
            # Token revoked or rotated upstream; force a fresh exchange next time.
            self._bridge.invalidate(self.installation_id)

        if not resp.ok:
            raise UpstreamError(
                f'GitHub API {method} {path} returned {resp.status_code}',
                status=resp.status_code,
            )
        return resp

    def get_json(self, path, params=None):
        resp = self.request('GET', path, params=params)
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f'GitHub API GET {path} returned invalid JSON') from e

    def list_repositories(self, page=1, per_page=30) -> dict:
        """Repositories the installation can access.

        Returns:
            dict: {total_count, repositories: [{id, name, full_name, private}]}
        """
        body = self.get_json(
            '/installation/repositories',
            params={'page': page, 'per_page': per_page},
        )
        if not isinstance(body, dict):
            raise UpstreamError('GitHub API returned an unexpected repository listing')
        repositories = [
            {
                'id': repo.get('id'),
                'name': repo.get('name'),
                'full_name': repo.get('full_name'),
                'private': repo.get('private'),
            }
            for repo in body.get('repositories', [])
        ]
        return {
            'total_count': body.get('total_count', len(repositories)),
            'repositories': repositories,
        }


def parse_github_timestamp(value: str) -> datetime:
    """Parse '2026-01-01T00:00:00Z' into a naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _retrying_session(max_retries, backoff_factor) -> requests.Session:
    retry = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=RETRY_METHODS,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session
