"""
SCIM 2.0 User Resource Models

Pydantic models for the core SCIM 2.0 User resource (RFC 7643) as sent by the
upstream identity provider, plus the PATCH, ListResponse and Error messages
(RFC 7644) exchanged with it.
"""

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


# SCIM 2.0 Schema URNs
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
SCIM_LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class SCIMEmail(BaseModel):
    """SCIM email object"""
    value: str
    type: Optional[str] = None
    primary: Optional[bool] = None


class SCIMName(BaseModel):
    """SCIM name complex attribute"""
    givenName: Optional[str] = None
    familyName: Optional[str] = None
    formatted: Optional[str] = None


class SCIMRole(BaseModel):
    """SCIM role object"""
    value: str
    type: Optional[str] = None
    display: Optional[str] = None
    primary: Optional[bool] = None


class SCIMMeta(BaseModel):
    """SCIM resource metadata"""
    resourceType: str = "User"
    created: Optional[str] = None
    lastModified: Optional[str] = None
    location: Optional[str] = None
    version: Optional[str] = None


class SCIMUser(BaseModel):
    """
    SCIM 2.0 User Resource

    Represents a user as provisioned by the upstream identity provider. The
    ``id`` is always the gateway's internal id when returned upstream; any id
    sent by the upstream on create is ignored.
    """
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "schemas": [SCIM_USER_SCHEMA],
                "externalId": "00u1a2b3c4d5e6f7g8h9",
                "userName": "jane.example@contoso.com",
                "name": {"givenName": "Jane", "familyName": "Example"},
                "emails": [
                    {
                        "value": "jane.example@contoso.com",
                        "type": "work",
                        "primary": True
                    }
                ],
                "active": True,
                "roles": [{"value": "ld-developer"}]
            }
        },
    )

    schemas: List[str] = Field(default=[SCIM_USER_SCHEMA])
    id: Optional[str] = None
    externalId: Optional[str] = None
    userName: str
    name: Optional[SCIMName] = None
    displayName: Optional[str] = None
    active: Optional[bool] = None
    emails: Optional[List[SCIMEmail]] = None
    roles: Optional[List[SCIMRole]] = None
    meta: Optional[SCIMMeta] = None


class SCIMPatchOperation(BaseModel):
    """
    SCIM PATCH operation

    Represents a single operation in a PATCH request (add, remove, replace).
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "op": "replace",
                "path": "roles",
                "value": [{"value": "ld-developer"}]
            }
        },
    )

    op: str
    path: Optional[str] = None
    value: Optional[Any] = None


class SCIMUserPatch(BaseModel):
    """
    SCIM 2.0 PATCH Request

    Used for partial updates to user resources, including role changes.
    """
    schemas: List[str] = Field(default=[SCIM_PATCH_SCHEMA])
    Operations: List[SCIMPatchOperation]


class SCIMListResponse(BaseModel):
    """
    SCIM 2.0 List Response

    Used for GET /Users to return a page of translated user resources.
    """
    schemas: List[str] = Field(default=[SCIM_LIST_RESPONSE_SCHEMA])
    totalResults: int
    startIndex: int = 1
    itemsPerPage: int
    Resources: List[dict]


class SCIMError(BaseModel):
    """
    SCIM 2.0 Error Response

    Standard error format for SCIM API responses.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "schemas": [SCIM_ERROR_SCHEMA],
                "status": 401,
                "detail": "Invalid bearer token"
            }
        },
    )

    schemas: List[str] = Field(default=[SCIM_ERROR_SCHEMA])
    status: int
    detail: Optional[str] = None
    scimType: Optional[str] = None
