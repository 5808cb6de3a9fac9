"""
Identity correlation record.

One record maps the gateway's internal id (the only id ever shown upstream)
to the upstream externalId and the downstream user id.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class CorrelationRecord(BaseModel):
    """Persistent mapping between the upstream and downstream identity spaces"""
    internal_id: str
    upstream_external_id: Optional[str] = None
    downstream_id: str
    downstream_user_name: str
    created_at: datetime
    updated_at: datetime
