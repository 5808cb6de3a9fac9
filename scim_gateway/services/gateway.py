"""
User Gateway

Orchestrates each upstream SCIM User operation: correlation lookup,
translation, the downstream call, the correlation write and the shaping of
the upstream response.
"""

import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from ..errors import (
    ConflictError,
    DownstreamError,
    GatewayError,
    NotFoundError,
    TokenAcquisitionError,
    ValidationError,
)
from ..models import (
    SCIM_LIST_RESPONSE_SCHEMA,
    CorrelationRecord,
    DownstreamUser,
    SCIMListResponse,
    SCIMPatchOperation,
    SCIMUser,
)
from .correlation_store import CorrelationStore
from .downstream_client import DownstreamClient
from .role_mapping import RoleMappingTable
from .translator import (
    classify_patch_operation,
    derive_custom_roles,
    should_update_roles,
    to_downstream,
    to_downstream_operation,
    to_upstream,
)

logger = logging.getLogger(__name__)

USERNAME_FILTER = re.compile(r'^\s*userName\s+eq\s+"((?:[^"\\]|\\.)*)"\s*$', re.IGNORECASE)


def parse_username_filter(filter: Optional[str]) -> Optional[str]:
    """
    Extract the value of a ``userName eq "<value>"`` filter.

    Returns:
        The userName, or None if the filter has any other shape
    """
    if not filter:
        return None
    match = USERNAME_FILTER.match(filter)
    if not match:
        return None
    return re.sub(r'\\(.)', r'\1', match.group(1))


class UserGateway:
    """
    Bridges upstream SCIM User operations to the downstream SCIM API.

    All public methods take the upstream-facing SCIM base URL (for example
    ``https://gateway.example.com/scim/v2``) so resource locations point back
    at the gateway, and they raise GatewayError subclasses that map directly
    to SCIM error responses.
    """

    def __init__(
        self,
        store: CorrelationStore,
        client: DownstreamClient,
        role_mappings: RoleMappingTable,
        list_concurrency: int = 10,
    ):
        self.store = store
        self.client = client
        self.role_mappings = role_mappings
        self.list_concurrency = max(1, list_concurrency)

    def create_user(self, user: SCIMUser, base_url: str) -> Tuple[Dict[str, Any], str]:
        """
        Provision a user downstream, or link an existing downstream user.

        Returns:
            The upstream resource and its Location URL
        """
        logger.info(f"Creating user: {user.userName} (externalId: {user.externalId})")

        if user.externalId and self.store.find_by_upstream_external_id(user.externalId):
            logger.warning(f"User with externalId {user.externalId} already exists")
            raise ConflictError("User already exists")

        # Validate the payload before touching the downstream
        self.role_mappings.reload_if_modified()
        payload = to_downstream(user, self.role_mappings)

        existing = self.client.find_user_by_username(user.userName)
        internal_id = str(uuid.uuid4())

        if existing is not None:
            if self.store.find_by_downstream_id(existing.id):
                logger.warning(f"Downstream user {user.userName} is already linked")
                raise ConflictError("User already exists")

            self.store.create(internal_id, user.externalId, existing.id, existing.userName)
            logger.info(f"Linked existing downstream user {user.userName} as {internal_id}")
            downstream_user = self._sync_linked_roles(existing, user)
        else:
            downstream_user = self.client.create_user(payload)
            try:
                self.store.create(
                    internal_id, user.externalId, downstream_user.id, downstream_user.userName
                )
            except GatewayError:
                # Retrying the create will find and link the downstream user
                logger.error(
                    f"Downstream user {user.userName} created but correlation write failed"
                )
                raise
            logger.info(f"User created successfully: {user.userName} as {internal_id}")

        resource = to_upstream(downstream_user, internal_id, base_url)
        return resource, resource["meta"]["location"]

    def get_user(self, internal_id: str, base_url: str) -> Dict[str, Any]:
        record = self._require_record(internal_id)
        downstream_user = self.client.get_user(record.downstream_id)
        self._sync_cached_username(record, downstream_user)
        return to_upstream(downstream_user, internal_id, base_url)

    def list_users(
        self,
        base_url: str,
        filter: Optional[str] = None,
        start_index: int = 1,
        count: int = 100,
    ) -> Dict[str, Any]:
        """
        List correlated users, optionally filtered by userName.

        Downstream lookups for the page run concurrently; users that can no
        longer be fetched are left out of the page.
        """
        records = self.store.list_all()

        if filter:
            user_name = parse_username_filter(filter)
            if user_name is None:
                logger.info(f"Unsupported filter, matching nothing: {filter}")
                records = []
            else:
                wanted = user_name.casefold()
                records = [r for r in records if r.downstream_user_name.casefold() == wanted]

        start_index = max(1, start_index)
        count = max(0, count)
        page = records[start_index - 1:start_index - 1 + count]

        resources: List[Dict[str, Any]] = []
        if page:
            workers = min(self.list_concurrency, len(page))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                fetched = list(executor.map(lambda r: self._fetch_for_list(r, base_url), page))
            resources = [resource for resource in fetched if resource is not None]

        response = SCIMListResponse(
            schemas=[SCIM_LIST_RESPONSE_SCHEMA],
            totalResults=len(records),
            startIndex=start_index,
            itemsPerPage=len(resources),
            Resources=resources,
        )
        return response.model_dump()

    def replace_user(self, internal_id: str, user: SCIMUser, base_url: str) -> Dict[str, Any]:
        logger.info(f"Replacing user {internal_id} ({user.userName})")
        record = self._require_record(internal_id)

        if user.externalId is not None and user.externalId != record.upstream_external_id:
            raise ValidationError("externalId cannot be changed", scim_type="mutability")

        self.role_mappings.reload_if_modified()
        payload = to_downstream(user, self.role_mappings)
        downstream_user = self.client.replace_user(record.downstream_id, payload)
        self._sync_cached_username(record, downstream_user)
        return to_upstream(downstream_user, internal_id, base_url)

    def patch_user(
        self, internal_id: str, operations: List[SCIMPatchOperation], base_url: str
    ) -> Dict[str, Any]:
        logger.info(f"Patching user {internal_id} ({len(operations)} operations)")
        record = self._require_record(internal_id)

        if not operations:
            raise ValidationError("PATCH request has no operations", scim_type="invalidSyntax")

        self.role_mappings.reload_if_modified()
        downstream_operations = [
            to_downstream_operation(classify_patch_operation(op), self.role_mappings)
            for op in operations
        ]

        downstream_user = self.client.patch_user(record.downstream_id, downstream_operations)
        if downstream_user is None:
            downstream_user = self.client.get_user(record.downstream_id)

        self._sync_cached_username(record, downstream_user)
        return to_upstream(downstream_user, internal_id, base_url)

    def delete_user(self, internal_id: str) -> None:
        """
        Delete a user downstream and drop its correlation record.

        Deleting an unknown id succeeds without contacting the downstream. If
        the downstream delete fails for any reason other than not-found, the
        record is kept so a retry can finish the job.
        """
        logger.info(f"Deleting user: {internal_id}")
        record = self.store.find_by_internal_id(internal_id)
        if record is None:
            logger.info(f"User {internal_id} not correlated, treating as already deleted")
            return

        try:
            self.client.delete_user(record.downstream_id)
        except DownstreamError as e:
            if e.status != 404:
                logger.error(f"Downstream delete failed for {internal_id}, keeping correlation: {e}")
                raise
            logger.info(f"Downstream user for {internal_id} already absent")

        self.store.delete(internal_id)
        logger.info(f"User deleted successfully: {internal_id}")

    def _require_record(self, internal_id: str) -> CorrelationRecord:
        record = self.store.find_by_internal_id(internal_id)
        if record is None:
            raise NotFoundError(f"User not found: {internal_id}")
        return record

    def _sync_linked_roles(self, existing: DownstreamUser, user: SCIMUser) -> DownstreamUser:
        desired = derive_custom_roles([role.value for role in user.roles or []], self.role_mappings)
        current = existing.extension.customRole if existing.extension else None
        if not desired or not should_update_roles(current, desired):
            return existing

        logger.info(f"Syncing custom roles for linked user {existing.userName}: {desired}")
        updated = self.client.update_user_custom_roles(existing.id, desired)
        return updated if updated is not None else self.client.get_user(existing.id)

    def _sync_cached_username(self, record: CorrelationRecord, downstream_user: DownstreamUser) -> None:
        if downstream_user.userName != record.downstream_user_name:
            logger.info(f"Username changed for {record.internal_id}, updating correlation")
            self.store.update(record.internal_id, downstream_user_name=downstream_user.userName)

    def _fetch_for_list(self, record: CorrelationRecord, base_url: str) -> Optional[Dict[str, Any]]:
        try:
            downstream_user = self.client.get_user(record.downstream_id)
        except (DownstreamError, TokenAcquisitionError) as e:
            logger.warning(f"Dropping {record.internal_id} from list: {e}")
            return None
        self._sync_cached_username(record, downstream_user)
        return to_upstream(downstream_user, record.internal_id, base_url)
