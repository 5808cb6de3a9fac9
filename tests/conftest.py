"""
Shared fixtures for the SCIM Gateway tests.

Provides an in-memory stand-in for the downstream SCIM API, a role mapping
table, an in-memory correlation store and a FastAPI test client wired to them.
"""

import os
import sys
import threading
import uuid
from typing import Any, Dict, List, Optional

import pytest

# Add the project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

os.environ.setdefault("GATEWAY_BEARER_TOKEN", "test-gateway-token")
os.environ.setdefault("DOWNSTREAM_ACCESS_TOKEN", "test-downstream-token")
os.environ.setdefault("DATABASE_PATH", ":memory:")

from scim_gateway.errors import DownstreamError
from scim_gateway.models import DOWNSTREAM_EXTENSION_SCHEMA, DownstreamUser
from scim_gateway.services import CorrelationStore, RoleMappingTable, UserGateway

GATEWAY_TOKEN = "test-gateway-token"
BASE_URL = "https://gateway.example.com/scim/v2"


class FakeDownstream:
    """
    In-memory downstream SCIM API with the DownstreamClient interface.

    ``fail_on`` maps a method name to a DownstreamError raised on its next
    calls (until cleared).
    """

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, DownstreamError] = {}
        self._lock = threading.Lock()

    def add_user(self, user_name: str, custom_roles: Optional[List[str]] = None, **fields) -> str:
        user_id = f"ld-{uuid.uuid4().hex[:12]}"
        extension = {"customRole": custom_roles} if custom_roles else {"role": "reader"}
        self.users[user_id] = {
            "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User", DOWNSTREAM_EXTENSION_SCHEMA],
            "id": user_id,
            "userName": user_name,
            "active": True,
            "emails": [{"value": user_name, "primary": True, "type": "work"}],
            DOWNSTREAM_EXTENSION_SCHEMA: extension,
            "meta": {
                "resourceType": "User",
                "created": "2024-01-01T00:00:00Z",
                "lastModified": "2024-01-02T00:00:00Z",
            },
            **fields,
        }
        return user_id

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _get(self, user_id: str) -> Dict[str, Any]:
        if user_id not in self.users:
            raise DownstreamError(404, "User not found")
        return self.users[user_id]

    def find_user_by_username(self, user_name: str) -> Optional[DownstreamUser]:
        self._record("find_user_by_username", user_name)
        for user in self.users.values():
            if user["userName"] == user_name:
                return DownstreamUser.model_validate(user)
        return None

    def create_user(self, payload: Dict[str, Any]) -> DownstreamUser:
        self._record("create_user", payload)
        user_id = f"ld-{uuid.uuid4().hex[:12]}"
        user = dict(payload, id=user_id, meta={
            "resourceType": "User",
            "created": "2024-03-01T10:00:00Z",
            "lastModified": "2024-03-01T10:00:00Z",
        })
        self.users[user_id] = user
        return DownstreamUser.model_validate(user)

    def get_user(self, user_id: str) -> DownstreamUser:
        self._record("get_user", user_id)
        return DownstreamUser.model_validate(self._get(user_id))

    def replace_user(self, user_id: str, payload: Dict[str, Any]) -> DownstreamUser:
        self._record("replace_user", user_id, payload)
        existing = self._get(user_id)
        user = dict(payload, id=user_id, meta=existing.get("meta"))
        self.users[user_id] = user
        return DownstreamUser.model_validate(user)

    def patch_user(self, user_id: str, operations: List[Dict[str, Any]]) -> Optional[DownstreamUser]:
        self._record("patch_user", user_id, operations)
        user = self._get(user_id)
        for operation in operations:
            if operation.get("path"):
                user[operation["path"]] = operation.get("value")
        return DownstreamUser.model_validate(user)

    def update_user_custom_roles(self, user_id: str, custom_roles: List[str]) -> Optional[DownstreamUser]:
        return self.patch_user(
            user_id,
            [{"op": "replace", "path": DOWNSTREAM_EXTENSION_SCHEMA, "value": {"customRole": custom_roles}}],
        )

    def delete_user(self, user_id: str) -> None:
        self._record("delete_user", user_id)
        self._get(user_id)
        del self.users[user_id]


@pytest.fixture
def role_table():
    """Mapping table used across tests"""
    return RoleMappingTable.from_dict({
        "default_role": "reader",
        "role_mappings": [
            {"role": "ld-developer", "custom_roles": ["developer"]},
            {"role": "ld-viewer", "custom_roles": ["viewer"]},
            {"role": "ld-release-manager", "custom_roles": ["release-manager", "developer"]},
        ],
    })


@pytest.fixture
def store():
    correlation_store = CorrelationStore(":memory:")
    yield correlation_store
    correlation_store.close()


@pytest.fixture
def downstream():
    return FakeDownstream()


@pytest.fixture
def gateway(store, downstream, role_table):
    return UserGateway(store=store, client=downstream, role_mappings=role_table, list_concurrency=4)


@pytest.fixture
def api_client(gateway, monkeypatch):
    """FastAPI test client using the in-memory gateway"""
    from fastapi.testclient import TestClient

    from scim_gateway import config
    from scim_gateway.main import app, get_gateway

    monkeypatch.setenv("GATEWAY_BEARER_TOKEN", GATEWAY_TOKEN)
    monkeypatch.setenv("DOWNSTREAM_ACCESS_TOKEN", "test-downstream-token")
    monkeypatch.setenv("DATABASE_PATH", ":memory:")
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.setattr(config, "settings", None)

    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {GATEWAY_TOKEN}"}


@pytest.fixture
def sample_scim_user():
    """Sample upstream SCIM user for creation requests"""
    return {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"],
        "externalId": "00u1a2b3c4",
        "userName": "alice@example.com",
        "name": {"givenName": "Alice", "familyName": "Example"},
        "emails": [{"value": "alice@example.com", "type": "work", "primary": True}],
        "active": True,
        "roles": [{"value": "ld-developer"}],
    }
