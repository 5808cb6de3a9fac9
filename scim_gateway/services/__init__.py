"""
SCIM Gateway Services

Token lifecycle, correlation storage, role mapping, translation, the
downstream client and the orchestrating user gateway.
"""

from .correlation_store import CorrelationStore
from .downstream_client import DownstreamClient
from .gateway import UserGateway
from .role_mapping import RoleMappingRule, RoleMappingTable
from .token_manager import StaticTokenProvider, TokenManager

__all__ = [
    "CorrelationStore",
    "DownstreamClient",
    "RoleMappingRule",
    "RoleMappingTable",
    "StaticTokenProvider",
    "TokenManager",
    "UserGateway",
]
