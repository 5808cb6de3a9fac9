"""
Attribute Translator

Pure functions mapping between the upstream core SCIM User and the downstream
extended User:

- ``to_downstream`` turns the upstream ``roles`` list into downstream custom
  roles (or the default base role) and fills the attributes the downstream
  requires.
- ``to_upstream`` rebuilds an upstream-shaped resource from a downstream user,
  exposing only the gateway's internal id.
- ``derive_role_update`` rewrites a PATCH on ``roles`` into a replace of the
  downstream extension.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ValidationError
from ..models import (
    DOWNSTREAM_EXTENSION_SCHEMA,
    SCIM_USER_SCHEMA,
    ActivePatch,
    ClassifiedPatch,
    DownstreamUser,
    PassthroughPatch,
    RolesPatch,
    SCIMPatchOperation,
    SCIMUser,
)
from .role_mapping import RoleMappingTable

logger = logging.getLogger(__name__)

# Type tag on roles reported back upstream; they are read-only information
DOWNSTREAM_ROLE_TYPE = "launchdarkly"
DEFAULT_EMAIL_TYPE = "work"


def derive_custom_roles(role_values: Iterable[str], table: RoleMappingTable) -> List[str]:
    """
    Map upstream role values to downstream custom role keys.

    The result keeps first-seen order and contains no duplicates.

    Raises:
        ValidationError: If the table is strict and a role matches no rule
    """
    custom_roles: List[str] = []
    for value in role_values:
        mapped = table.lookup(value)
        if mapped is None:
            if table.strict:
                raise ValidationError(f"No role mapping for role: {value}")
            logger.info(f"No mapping found for upstream role '{value}', ignoring")
            continue
        logger.debug(f"Role mapping matched: {value} -> {mapped}")
        for role in mapped:
            if role not in custom_roles:
                custom_roles.append(role)
    return custom_roles


def to_downstream(user: SCIMUser, table: RoleMappingTable) -> Dict[str, Any]:
    """
    Build the downstream create/replace payload for an upstream user.

    Raises:
        ValidationError: If no contact email can be determined, or a role is
            unmapped under strict mapping
    """
    custom_roles = derive_custom_roles([role.value for role in user.roles or []], table)

    if custom_roles:
        extension: Dict[str, Any] = {"customRole": custom_roles}
        logger.debug(f"Mapped roles for {user.userName} to custom roles {custom_roles}")
    else:
        extension = {"role": table.default_role.value}
        logger.debug(
            f"No role mappings matched for {user.userName}, "
            f"using default role {table.default_role.value}"
        )

    if user.emails:
        emails = []
        for email in user.emails:
            entry: Dict[str, Any] = {"value": email.value, "type": email.type or DEFAULT_EMAIL_TYPE}
            if email.primary is not None:
                entry["primary"] = email.primary
            emails.append(entry)
    elif user.userName and user.userName.strip():
        emails = [{"value": user.userName, "primary": True, "type": DEFAULT_EMAIL_TYPE}]
    else:
        raise ValidationError("User must have either emails or a userName usable as email")

    payload: Dict[str, Any] = {
        "schemas": [SCIM_USER_SCHEMA, DOWNSTREAM_EXTENSION_SCHEMA],
        "userName": user.userName,
        "emails": emails,
        "active": True if user.active is None else user.active,
        DOWNSTREAM_EXTENSION_SCHEMA: extension,
    }

    if user.name is not None:
        name = {}
        if user.name.givenName is not None:
            name["givenName"] = user.name.givenName
        if user.name.familyName is not None:
            name["familyName"] = user.name.familyName
        if name:
            payload["name"] = name

    if user.externalId is not None:
        payload["externalId"] = user.externalId

    return payload


def to_upstream(downstream_user: DownstreamUser, internal_id: str, base_url: str) -> Dict[str, Any]:
    """
    Build the upstream-facing resource for a downstream user.

    The resource ``id`` and ``meta.location`` use ``internal_id``; the
    downstream id is never copied into the result.
    """
    extension = downstream_user.extension
    custom_roles = (extension.customRole if extension else None) or []
    location = f"{base_url.rstrip('/')}/Users/{internal_id}"

    resource: Dict[str, Any] = {
        "schemas": [SCIM_USER_SCHEMA],
        "id": internal_id,
        "userName": downstream_user.userName,
        "roles": [{"value": role, "type": DOWNSTREAM_ROLE_TYPE} for role in custom_roles],
        "meta": {
            "resourceType": "User",
            "location": location,
        },
    }

    if downstream_user.externalId is not None:
        resource["externalId"] = downstream_user.externalId
    if downstream_user.name is not None:
        resource["name"] = downstream_user.name.model_dump(exclude_none=True)
    if downstream_user.active is not None:
        resource["active"] = downstream_user.active
    if downstream_user.emails:
        resource["emails"] = [email.model_dump(exclude_none=True) for email in downstream_user.emails]

    meta = downstream_user.meta
    if meta is not None:
        if meta.created:
            resource["meta"]["created"] = meta.created
        if meta.lastModified:
            resource["meta"]["lastModified"] = meta.lastModified

    return resource


def derive_role_update(roles_value: Any, table: RoleMappingTable) -> Dict[str, Any]:
    """
    Translate the value of a PATCH on ``roles`` into a downstream operation.

    Returns:
        A replace operation on the downstream extension carrying either the
        mapped custom roles or, when nothing matches, the default base role
    """
    custom_roles = derive_custom_roles(_role_values(roles_value), table)
    if custom_roles:
        value: Dict[str, Any] = {"customRole": custom_roles}
    else:
        value = {"role": table.default_role.value}
    return {"op": "replace", "path": DOWNSTREAM_EXTENSION_SCHEMA, "value": value}


def classify_patch_operation(operation: SCIMPatchOperation) -> ClassifiedPatch:
    """
    Sort an inbound PATCH operation into roles / active / passthrough.

    Raises:
        ValidationError: On an unknown op, a non-boolean ``active`` value, or
            a ``remove`` on ``roles`` that names specific roles
    """
    op = operation.op.lower() if operation.op else ""
    if op not in ("add", "remove", "replace"):
        raise ValidationError(f"Unsupported patch op: {operation.op}", scim_type="invalidSyntax")

    path = operation.path.strip() if operation.path else None

    if path == "roles":
        if op == "remove":
            if operation.value is not None:
                raise ValidationError(
                    "Removing individual roles is not supported; replace the role list instead"
                )
            return RolesPatch(op=op, roles=[])
        return RolesPatch(op=op, roles=_role_values(operation.value))

    if path == "active":
        if op == "remove":
            raise ValidationError("The active attribute cannot be removed")
        return ActivePatch(op=op, active=_to_bool(operation.value))

    return PassthroughPatch(op=op, path=operation.path, value=operation.value)


def to_downstream_operation(patch: ClassifiedPatch, table: RoleMappingTable) -> Dict[str, Any]:
    """Render a classified PATCH operation as a downstream operation."""
    if isinstance(patch, RolesPatch):
        return derive_role_update(patch.roles, table)
    if isinstance(patch, ActivePatch):
        return {"op": "replace", "path": "active", "value": patch.active}
    return patch.to_operation()


def should_update_roles(current: Optional[Iterable[str]], desired: Iterable[str]) -> bool:
    """Check whether two custom role collections differ as sets."""
    return set(current or []) != set(desired)


def _role_values(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError("roles value must be a list of role objects")

    values = []
    for item in value:
        if isinstance(item, str):
            values.append(item)
        elif isinstance(item, dict) and isinstance(item.get("value"), str):
            values.append(item["value"])
        else:
            raise ValidationError("Each role must be an object with a string value")
    return values


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValidationError(f"active must be a boolean, got {value!r}")
