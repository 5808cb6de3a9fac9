"""
Downstream SCIM API Client

Issues authenticated SCIM requests to the downstream authorization service.
Every request carries the current OAuth2 bearer token; a 401 triggers one
forced token refresh and one retry of the same request.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError as PydanticValidationError

from ..errors import DownstreamAuthorizationError, DownstreamError, TokenAcquisitionError
from ..models import DOWNSTREAM_EXTENSION_SCHEMA, SCIM_PATCH_SCHEMA, DownstreamUser

logger = logging.getLogger(__name__)

SCIM_CONTENT_TYPE = "application/scim+json"


class DownstreamClient:
    """
    HTTP client for the downstream SCIM Users endpoint.

    Args:
        base_url: Downstream SCIM base URL (e.g. https://app.launchdarkly.com/trust/scim/v2)
        token_provider: Object with ``get_token()`` and ``force_refresh()``
            (TokenManager or StaticTokenProvider)
        timeout: Per-request timeout in seconds
        session: Optional requests session (shared connection pool)

    Example usage:
        client = DownstreamClient(base_url, token_manager)
        user = client.find_user_by_username("jane@example.com")
        if user is None:
            user = client.create_user(payload)
    """

    def __init__(
        self,
        base_url: str,
        token_provider,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self._session = session or requests.Session()

    def create_user(self, payload: Dict[str, Any]) -> DownstreamUser:
        logger.info(f"Creating downstream user: {payload.get('userName')}")
        return _to_user(self._request("POST", "/Users", payload))

    def get_user(self, user_id: str) -> DownstreamUser:
        logger.debug(f"Getting downstream user: {user_id}")
        return _to_user(self._request("GET", f"/Users/{quote(user_id, safe='')}"))

    def list_users(
        self, filter: Optional[str] = None, start_index: int = 1, count: int = 100
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"startIndex": start_index, "count": count}
        if filter:
            params["filter"] = filter
        return self._request("GET", "/Users", params=params) or {}

    def find_user_by_username(self, user_name: str) -> Optional[DownstreamUser]:
        """
        Look up a downstream user by userName.

        Returns:
            The first matching user, or None if the downstream has no match
        """
        escaped = user_name.replace("\\", "\\\\").replace('"', '\\"')
        try:
            result = self.list_users(filter=f'userName eq "{escaped}"', count=1)
        except DownstreamError as e:
            if e.status == 404:
                return None
            raise

        resources: List[Dict[str, Any]] = result.get("Resources") or []
        if not resources:
            return None
        return _to_user(resources[0])

    def replace_user(self, user_id: str, payload: Dict[str, Any]) -> DownstreamUser:
        logger.info(f"Replacing downstream user: {user_id}")
        return _to_user(self._request("PUT", f"/Users/{quote(user_id, safe='')}", payload))

    def patch_user(self, user_id: str, operations: List[Dict[str, Any]]) -> Optional[DownstreamUser]:
        """
        Apply PATCH operations to a downstream user.

        Returns:
            The updated user, or None if the downstream answered 204 No Content
        """
        logger.info(f"Patching downstream user {user_id} ({len(operations)} operations)")
        body = {"schemas": [SCIM_PATCH_SCHEMA], "Operations": operations}
        data = self._request("PATCH", f"/Users/{quote(user_id, safe='')}", body)
        return _to_user(data) if data else None

    def delete_user(self, user_id: str) -> None:
        logger.info(f"Deleting downstream user: {user_id}")
        self._request("DELETE", f"/Users/{quote(user_id, safe='')}")

    def update_user_custom_roles(self, user_id: str, custom_roles: List[str]) -> Optional[DownstreamUser]:
        return self.patch_user(
            user_id,
            [
                {
                    "op": "replace",
                    "path": DOWNSTREAM_EXTENSION_SCHEMA,
                    "value": {"customRole": list(custom_roles)},
                }
            ],
        )

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"

        token = self._current_token()
        response = self._send(method, url, token, body, params)

        if response.status_code == 401:
            logger.warning(f"Downstream rejected access token for {method} {path}, refreshing")
            token = self.token_provider.force_refresh(rejected_token=token)
            response = self._send(method, url, token, body, params)
            if response.status_code == 401:
                logger.error(f"Downstream rejected refreshed access token for {method} {path}")
                raise DownstreamAuthorizationError()

        return _parse_response(method, path, response)

    def _current_token(self) -> str:
        try:
            return self.token_provider.get_token()
        except TokenAcquisitionError as e:
            logger.warning(f"Token acquisition failed, retrying once: {e.detail}")
            return self.token_provider.force_refresh()

    def _send(self, method, url, token, body, params) -> requests.Response:
        logger.debug(f"{method} {url}")
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": SCIM_CONTENT_TYPE,
        }
        if body is not None:
            headers["Content-Type"] = SCIM_CONTENT_TYPE
        try:
            return self._session.request(
                method,
                url,
                headers=headers,
                json=body,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Downstream request {method} {url} failed: {e}")
            raise DownstreamError(502, f"Downstream request failed: {e.__class__.__name__}") from e


def _parse_response(method: str, path: str, response: requests.Response) -> Optional[Dict[str, Any]]:
    if response.status_code == 204 or not response.content:
        if not response.ok:
            raise DownstreamError(response.status_code, response.reason or f"HTTP {response.status_code}")
        return None

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.ok:
        detail = None
        if isinstance(data, dict):
            detail = data.get("detail")
        if not detail:
            detail = response.reason or f"HTTP {response.status_code}"
        logger.error(f"Downstream {method} {path} failed: HTTP {response.status_code} {detail}")
        raise DownstreamError(response.status_code, str(detail))

    if data is None:
        logger.error(f"Downstream {method} {path} returned an unparseable body")
        raise DownstreamError(502, "Failed to parse downstream response")

    return data


def _to_user(data: Optional[Dict[str, Any]]) -> DownstreamUser:
    if not data:
        raise DownstreamError(502, "Downstream returned an empty user representation")
    try:
        return DownstreamUser.model_validate(data)
    except PydanticValidationError as e:
        logger.error(f"Downstream returned an invalid user representation: {e}")
        raise DownstreamError(502, "Downstream returned an invalid user representation") from e
