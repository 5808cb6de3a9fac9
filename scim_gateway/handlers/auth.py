"""
Bearer token authentication handler for SCIM Gateway.

This module provides the FastAPI dependency that authenticates SCIM requests
from the upstream identity provider with a static bearer token.
"""

import logging
import secrets
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import get_settings
from ..errors import AuthenticationError

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials are reported by us as 401
security = HTTPBearer(auto_error=False)


def verify_bearer_token(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """
    Verify the bearer token of a SCIM request against the configured token.

    Used as a FastAPI dependency on every /scim/v2 route. The comparison is
    constant-time.

    Returns:
        str: The verified token value

    Raises:
        AuthenticationError: If the token is missing, uses another scheme, or
            doesn't match
    """
    expected_token = get_settings().gateway_bearer_token

    if credentials is None:
        logger.warning(f"Missing bearer token: {request.method} {request.url.path}")
        raise AuthenticationError("Missing or invalid Authorization header")

    provided_token = credentials.credentials
    if not provided_token or not secrets.compare_digest(
        expected_token.encode("utf-8"), provided_token.encode("utf-8")
    ):
        logger.warning(f"Invalid bearer token: {request.method} {request.url.path}")
        raise AuthenticationError("Invalid bearer token")

    return provided_token
