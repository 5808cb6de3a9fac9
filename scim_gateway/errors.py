"""
Gateway exception hierarchy.

Every error raised by the gateway core derives from GatewayError and carries
the HTTP status and human-readable detail used to build the SCIM error
response returned to the upstream identity provider.
"""

from typing import Optional


# Downstream statuses that mean the same thing to the upstream caller.
# Anything else is normalized to 502 Bad Gateway.
PASSTHROUGH_DOWNSTREAM_STATUSES = {400, 404, 409, 413, 429, 503}


class GatewayError(Exception):
    """Base exception for all gateway operations."""

    status_code = 500
    scim_type: Optional[str] = None

    def __init__(self, detail: str, scim_type: Optional[str] = None):
        self.detail = detail
        if scim_type is not None:
            self.scim_type = scim_type
        super().__init__(detail)


class ValidationError(GatewayError):
    """Inbound payload is malformed or incomplete."""

    status_code = 400
    scim_type = "invalidValue"


class AuthenticationError(GatewayError):
    """Inbound bearer token is missing or invalid."""

    status_code = 401


class NotFoundError(GatewayError):
    """No correlation record exists for the requested internal id."""

    status_code = 404
    scim_type = "noTarget"


class ConflictError(GatewayError):
    """A correlation record with the same unique key already exists."""

    status_code = 409
    scim_type = "uniqueness"


class StorageError(GatewayError):
    """Correlation store I/O failed."""

    status_code = 500


class TokenAcquisitionError(GatewayError):
    """The OAuth2 token endpoint did not return a usable access token."""

    status_code = 502


class DownstreamError(GatewayError):
    """
    Non-2xx response from the downstream SCIM API.

    Attributes:
        status: Status code reported by the downstream service
        status_code: Status code surfaced to the upstream caller
    """

    def __init__(self, status: int, detail: str):
        self.status = status
        self.status_code = status if status in PASSTHROUGH_DOWNSTREAM_STATUSES else 502
        super().__init__(detail)

    def __str__(self) -> str:
        return f"Downstream SCIM error ({self.status}): {self.detail}"


class DownstreamAuthorizationError(DownstreamError):
    """Downstream rejected the bearer token again after a forced refresh."""

    def __init__(self, detail: str = "Downstream rejected the access token"):
        super().__init__(401, detail)
