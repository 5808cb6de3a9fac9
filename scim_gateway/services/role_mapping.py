"""
Role Mapping Table

Reloadable rules translating upstream role values into downstream
custom role keys, plus the base role applied when no rule matches.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ..models import BaseRole

logger = logging.getLogger(__name__)


class RoleMappingRule(BaseModel):
    """One upstream role value and the downstream custom roles it grants"""
    role: str
    custom_roles: List[str] = Field(default_factory=list)


class MappingConfig(BaseModel):
    """Validated contents of the mapping YAML file"""
    default_role: BaseRole = BaseRole.READER
    strict: Optional[bool] = None
    role_mappings: List[RoleMappingRule] = Field(default_factory=list)


class RoleMappingTable:
    """
    Ordered role mapping rules with a default base role.

    Rules are matched in file order; the first rule whose ``role`` equals an
    upstream role value wins. A table loaded from YAML picks up edits to its
    source file through ``reload_if_modified``, which the gateway calls before
    every translation.

    Example usage:
        table = RoleMappingTable.from_yaml("config/mappings.yaml")
        table.lookup("ld-developer")   # ["developer"]
        table.default_role             # BaseRole.READER
    """

    def __init__(
        self,
        rules: Optional[List[RoleMappingRule]] = None,
        default_role: BaseRole = BaseRole.READER,
        strict: bool = False,
        source: Optional[Path] = None,
    ):
        self._lock = threading.Lock()
        self._rules: List[RoleMappingRule] = list(rules or [])
        self._default_role = BaseRole(default_role)
        self._strict = strict
        self.source = Path(source) if source else None
        self._source_mtime: Optional[float] = None

    @classmethod
    def from_yaml(cls, path, strict: bool = False) -> "RoleMappingTable":
        """
        Load a mapping table from a YAML file.

        A missing file yields an empty table with the ``reader`` default role.
        ``strict`` in the file, when present, overrides the ``strict`` argument.

        Raises:
            ValueError: If the file exists but is not a valid mapping document
        """
        table = cls(strict=strict, source=Path(path))
        table.reload()
        return table

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "RoleMappingTable":
        config = _parse_config(data)
        return cls(
            rules=config.role_mappings,
            default_role=config.default_role,
            strict=config.strict if config.strict is not None else strict,
        )

    def reload(self) -> None:
        """Re-read the rules from the source file, replacing them atomically."""
        if self.source is None:
            raise ValueError("Mapping table has no source file to reload from")

        mtime = _modified_time(self.source)
        if mtime is None:
            logger.warning(f"Mapping config not found at {self.source}, using defaults")
            config = MappingConfig()
        else:
            with open(self.source, "r", encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"Invalid mapping YAML in {self.source}: {e}") from e
            config = _parse_config(data)

        with self._lock:
            self._rules = list(config.role_mappings)
            self._source_mtime = mtime
            self._default_role = config.default_role
            if config.strict is not None:
                self._strict = config.strict

        logger.info(
            f"Loaded {len(config.role_mappings)} role mappings from {self.source} "
            f"(default role: {config.default_role.value})"
        )

    def reload_if_modified(self) -> bool:
        """
        Reload the rules if the source file changed since the last load.

        An unreadable or invalid file is logged and the current rules stay in
        effect.

        Returns:
            True if the rules were reloaded
        """
        if self.source is None:
            return False
        with self._lock:
            loaded_mtime = self._source_mtime
        mtime = _modified_time(self.source)
        if mtime == loaded_mtime:
            return False

        try:
            self.reload()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to reload role mappings from {self.source}, keeping current rules: {e}")
            with self._lock:
                self._source_mtime = mtime
            return False
        return True

    @property
    def rules(self) -> List[RoleMappingRule]:
        with self._lock:
            return list(self._rules)

    @property
    def default_role(self) -> BaseRole:
        with self._lock:
            return self._default_role

    @property
    def strict(self) -> bool:
        with self._lock:
            return self._strict

    def lookup(self, upstream_role: str) -> Optional[List[str]]:
        """
        Find the custom roles granted by an upstream role value.

        Returns:
            The custom role keys of the first matching rule, or None if no rule
            matches
        """
        with self._lock:
            for rule in self._rules:
                if rule.role == upstream_role:
                    return list(rule.custom_roles)
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)


def _modified_time(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None


def _parse_config(data: Any) -> MappingConfig:
    if not isinstance(data, dict):
        raise ValueError("Mapping config must be a YAML mapping")
    try:
        return MappingConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid mapping config: {e}") from e
