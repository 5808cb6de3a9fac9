"""
Classified PATCH operations.

Inbound PATCH operations are sorted into one of three shapes before they are
forwarded downstream: role changes (rewritten onto the downstream extension),
activation changes (value normalized to a boolean), and everything else
(forwarded untouched).
"""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel


class RolesPatch(BaseModel):
    """Operation on the ``roles`` path"""
    kind: Literal["roles"] = "roles"
    op: str
    roles: List[str]


class ActivePatch(BaseModel):
    """Operation on the ``active`` path"""
    kind: Literal["active"] = "active"
    op: str
    active: bool


class PassthroughPatch(BaseModel):
    """Any other operation, forwarded as received"""
    kind: Literal["passthrough"] = "passthrough"
    op: str
    path: Optional[str] = None
    value: Optional[Any] = None

    def to_operation(self) -> Dict[str, Any]:
        operation: Dict[str, Any] = {"op": self.op}
        if self.path is not None:
            operation["path"] = self.path
        if self.value is not None:
            operation["value"] = self.value
        return operation


ClassifiedPatch = Union[RolesPatch, ActivePatch, PassthroughPatch]
