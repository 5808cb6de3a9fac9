"""
Authentication and request handlers for SCIM Gateway.
"""

from .auth import verify_bearer_token

__all__ = ["verify_bearer_token"]
