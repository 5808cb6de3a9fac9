"""
OAuth2 Token Manager

Obtains and caches the bearer token used for outbound calls to the downstream
SCIM API, using the OAuth2 client-credentials grant.

Concurrent callers that find the cache empty or about to expire share one
in-flight refresh: the first caller performs the network request and every
other caller waits on the same future for its result.
"""

import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests

from ..errors import TokenAcquisitionError

logger = logging.getLogger(__name__)

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """
    Single-flight OAuth2 access token cache.

    Example usage:
        manager = TokenManager(
            token_url="https://app.launchdarkly.com/trust/oauth/token",
            client_id="client-id",
            client_secret="client-secret",
        )
        token = manager.get_token()

        # After the downstream rejected ``token`` with a 401
        token = manager.force_refresh(rejected_token=token)
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "scim",
        refresh_buffer_seconds: int = 60,
        default_lifetime_seconds: int = ONE_YEAR_SECONDS,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.refresh_buffer = timedelta(seconds=refresh_buffer_seconds)
        self.default_lifetime = timedelta(seconds=default_lifetime_seconds)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

        # Guards the fields below; never held across the token request
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._refresh_future: Optional[Future] = None

    def get_token(self) -> str:
        """
        Return a valid access token, refreshing it if necessary.

        Raises:
            TokenAcquisitionError: If the refresh this call waited on failed
        """
        return self._refresh()

    def force_refresh(self, rejected_token: Optional[str] = None) -> str:
        """
        Invalidate the cached token and acquire a new one.

        Args:
            rejected_token: The token the downstream just refused. If another
                caller has already replaced it, the newer token is returned
                without another network call.

        Raises:
            TokenAcquisitionError: If the token endpoint call fails
        """
        logger.info("Forcing downstream access token refresh")
        return self._refresh(invalidate=True, rejected_token=rejected_token)

    def has_valid_token(self) -> bool:
        """Check if a token is cached and not about to expire"""
        with self._lock:
            return self._access_token is not None and not self._expiring_soon()

    def _expiring_soon(self) -> bool:
        if self._expires_at is None:
            return True
        return self._clock() >= self._expires_at - self.refresh_buffer

    def _refresh(self, invalidate: bool = False, rejected_token: Optional[str] = None) -> str:
        with self._lock:
            future = self._refresh_future
            owner = future is None
            if owner:
                # The cache is checked under the same lock that claims the refresh
                cached = self._access_token if not self._expiring_soon() else None
                if cached and (not invalidate or (rejected_token is not None and cached != rejected_token)):
                    return cached
                if invalidate:
                    self._access_token = None
                    self._expires_at = None

                future = Future()
                self._refresh_future = future

        if not owner:
            # Another caller is already talking to the token endpoint
            return future.result()

        try:
            token, expires_at = self._request_token()
        except Exception as e:
            with self._lock:
                self._refresh_future = None
            future.set_exception(e)
            raise

        with self._lock:
            self._access_token = token
            self._expires_at = expires_at
            self._refresh_future = None
        future.set_result(token)
        return token

    def _request_token(self):
        logger.debug(f"Requesting OAuth2 access token (scope: {self.scope})")

        try:
            response = self._session.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                    "scope": self.scope,
                },
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Token endpoint request failed: {e}")
            raise TokenAcquisitionError(f"Token endpoint request failed: {e}") from e

        if not response.ok:
            logger.error(f"Failed to obtain access token: HTTP {response.status_code}")
            raise TokenAcquisitionError(
                f"Failed to obtain access token: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Token endpoint returned a non-JSON body")
            raise TokenAcquisitionError("Token endpoint returned a non-JSON body") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            logger.error("Token endpoint response has no access_token")
            raise TokenAcquisitionError("Token endpoint response has no access_token")

        expires_in = data.get("expires_in")
        now = self._clock()
        if expires_in is not None:
            try:
                expires_at = now + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError) as e:
                raise TokenAcquisitionError(f"Invalid expires_in value: {expires_in!r}") from e
            logger.info(f"Access token obtained, expires at {expires_at.isoformat()}")
        else:
            expires_at = now + self.default_lifetime
            logger.info("Access token obtained without expires_in, treating as long-lived")

        return token, expires_at


class StaticTokenProvider:
    """
    Serves a pre-obtained downstream access token.

    Used when no client credentials are configured. It has the same interface
    as TokenManager but cannot mint a new token, so a forced refresh returns
    the same value and a revoked token surfaces as an authorization error.
    """

    def __init__(self, access_token: str):
        if not access_token:
            raise ValueError("access_token cannot be empty")
        self._access_token = access_token

    def get_token(self) -> str:
        return self._access_token

    def force_refresh(self, rejected_token: Optional[str] = None) -> str:
        logger.warning("Static downstream access token cannot be refreshed")
        return self._access_token

    def has_valid_token(self) -> bool:
        return True
