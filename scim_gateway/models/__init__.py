"""
SCIM Gateway Models Package

Pydantic models for upstream SCIM 2.0 resources, the downstream extended
schema, PATCH classification and correlation records.
"""

from .correlation import CorrelationRecord
from .downstream_user import (
    BaseRole,
    DownstreamExtension,
    DownstreamUser,
    DOWNSTREAM_EXTENSION_SCHEMA,
)
from .patch import ActivePatch, ClassifiedPatch, PassthroughPatch, RolesPatch
from .scim_user import (
    SCIMUser,
    SCIMUserPatch,
    SCIMEmail,
    SCIMName,
    SCIMRole,
    SCIMMeta,
    SCIMPatchOperation,
    SCIMListResponse,
    SCIMError,
    SCIM_USER_SCHEMA,
    SCIM_PATCH_SCHEMA,
    SCIM_LIST_RESPONSE_SCHEMA,
    SCIM_ERROR_SCHEMA,
)

__all__ = [
    "ActivePatch",
    "BaseRole",
    "ClassifiedPatch",
    "CorrelationRecord",
    "DownstreamExtension",
    "DownstreamUser",
    "DOWNSTREAM_EXTENSION_SCHEMA",
    "PassthroughPatch",
    "RolesPatch",
    "SCIMUser",
    "SCIMUserPatch",
    "SCIMEmail",
    "SCIMName",
    "SCIMRole",
    "SCIMMeta",
    "SCIMPatchOperation",
    "SCIMListResponse",
    "SCIMError",
    "SCIM_USER_SCHEMA",
    "SCIM_PATCH_SCHEMA",
    "SCIM_LIST_RESPONSE_SCHEMA",
    "SCIM_ERROR_SCHEMA",
]
