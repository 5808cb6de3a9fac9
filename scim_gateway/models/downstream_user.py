"""
Downstream SCIM User Models

The downstream authorization service extends the core User schema with a
vendor extension carrying its two-tier role model: a base ``role`` and a list
of ``customRole`` keys. Custom roles, when present, supersede the base role.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .scim_user import SCIMEmail, SCIMMeta, SCIMName


DOWNSTREAM_EXTENSION_SCHEMA = "urn:ietf:params:scim:schemas:extension:launchdarkly:2.0:User"


class BaseRole(str, Enum):
    """Built-in downstream roles"""
    READER = "reader"
    WRITER = "writer"
    ADMIN = "admin"
    NO_ACCESS = "no_access"


class DownstreamExtension(BaseModel):
    """Vendor extension attributes for role assignment"""
    # Read side also sees base roles we never assign, such as "owner"
    role: Optional[str] = None
    customRole: Optional[List[str]] = None


class DownstreamUser(BaseModel):
    """
    User resource as returned by the downstream SCIM API.

    The extension attributes live under the extension schema URN key, so the
    model is populated and dumped by alias.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schemas: List[str] = Field(default_factory=list)
    id: str
    externalId: Optional[str] = None
    userName: str
    name: Optional[SCIMName] = None
    active: Optional[bool] = None
    emails: Optional[List[SCIMEmail]] = None
    meta: Optional[SCIMMeta] = None
    extension: Optional[DownstreamExtension] = Field(
        None, alias=DOWNSTREAM_EXTENSION_SCHEMA
    )
