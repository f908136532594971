"""Resolved identity for one request or conversation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any


class Permission(str, Enum):
    """Capability tokens granted to an identity."""

    TAG_READ = "tag:read"
    TAG_CREATE = "tag:create"
    TAG_UPDATE = "tag:update"
    TAG_DELETE = "tag:delete"
    TAG_WRITE_VALUE = "tag:write_value"

    VIEW_READ = "view:read"
    VIEW_CREATE = "view:create"
    VIEW_UPDATE = "view:update"
    VIEW_DELETE = "view:delete"

    SCRIPT_READ = "script:read"
    SCRIPT_CREATE = "script:create"
    SCRIPT_UPDATE = "script:update"
    SCRIPT_DELETE = "script:delete"
    SCRIPT_EXECUTE = "script:execute"

    PROJECT_READ = "project:read"
    PROJECT_CREATE = "project:create"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"

    NAMED_QUERY_READ = "named_query:read"
    NAMED_QUERY_CREATE = "named_query:create"
    NAMED_QUERY_UPDATE = "named_query:update"
    NAMED_QUERY_DELETE = "named_query:delete"
    NAMED_QUERY_EXECUTE = "named_query:execute"

    ADMIN = "admin"
    DRY_RUN_ONLY = "dry_run_only"
    READ_ALL = "read_all"

    @classmethod
    def from_code(cls, code: str) -> "Permission":
        normalized = code.strip().lower()
        if normalized == "*":
            return cls.ADMIN
        for permission in cls:
            if permission.value == normalized:
                return permission
        raise ValueError(f"Unknown permission code: {code}")

    @property
    def is_read(self) -> bool:
        return self.value.endswith(":read")


PERMISSION_DESCRIPTIONS: Mapping[Permission, str] = MappingProxyType(
    {
        Permission.TAG_READ: "Read tag configurations and values",
        Permission.TAG_CREATE: "Create new tags",
        Permission.TAG_UPDATE: "Modify tag configurations",
        Permission.TAG_DELETE: "Delete tags (requires confirmation)",
        Permission.TAG_WRITE_VALUE: "Write values to existing tags",
        Permission.VIEW_READ: "Read view definitions",
        Permission.VIEW_CREATE: "Create new views",
        Permission.VIEW_UPDATE: "Modify views",
        Permission.VIEW_DELETE: "Delete views (requires confirmation)",
        Permission.SCRIPT_READ: "Read script contents",
        Permission.SCRIPT_CREATE: "Create new scripts",
        Permission.SCRIPT_UPDATE: "Modify scripts",
        Permission.SCRIPT_DELETE: "Delete scripts (requires confirmation)",
        Permission.SCRIPT_EXECUTE: "Execute scripts (use with extreme caution)",
        Permission.PROJECT_READ: "Read project configurations",
        Permission.PROJECT_CREATE: "Create new projects",
        Permission.PROJECT_UPDATE: "Modify project configurations",
        Permission.PROJECT_DELETE: "Delete projects (requires confirmation)",
        Permission.NAMED_QUERY_READ: "Read named query configurations",
        Permission.NAMED_QUERY_CREATE: "Create named queries",
        Permission.NAMED_QUERY_UPDATE: "Modify named queries",
        Permission.NAMED_QUERY_DELETE: "Delete named queries (requires confirmation)",
        Permission.NAMED_QUERY_EXECUTE: "Execute named queries",
        Permission.ADMIN: "Full administrative access",
        Permission.DRY_RUN_ONLY: "Dry-run operations only",
        Permission.READ_ALL: "Read access to all resources",
    }
)


@dataclass(frozen=True)
class AuthContext:
    """
    Immutable authenticated identity.

    Created once per authenticated request and passed explicitly through the
    orchestrator, executor and handlers. ``attributes`` is copied into a
    read-only mapping so callers cannot mutate it after construction.
    """

    user_id: str
    permissions: frozenset[Permission] = frozenset()
    key_id: str | None = None
    user_name: str | None = None
    user_source: str | None = None
    client_address: str | None = None
    authenticated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        object.__setattr__(
            self,
            "permissions",
            frozenset(_coerce_permission(p) for p in self.permissions),
        )
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __repr__(self) -> str:
        return (
            f"AuthContext("
            f"user_id={self.user_id!r}, "
            f"key_id={self.key_id!r}, "
            f"user_source={self.user_source!r}, "
            f"permissions={len(self.permissions)}, "
            f"client_address={self.client_address!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()

    @classmethod
    def from_codes(
        cls,
        user_id: str,
        codes: Iterable[str],
        **kwargs: Any,
    ) -> "AuthContext":
        return cls(
            user_id=user_id,
            permissions=frozenset(Permission.from_code(code) for code in codes),
            **kwargs,
        )

    @classmethod
    def anonymous(cls, client_address: str | None = None) -> "AuthContext":
        return cls(user_id="anonymous", client_address=client_address)

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_id

    @property
    def is_admin(self) -> bool:
        return Permission.ADMIN in self.permissions

    @property
    def dry_run_only(self) -> bool:
        return Permission.DRY_RUN_ONLY in self.permissions

    @property
    def rate_limit_key(self) -> str:
        return self.key_id or self.user_id

    def has_permission(self, permission: Permission) -> bool:
        if self.is_admin:
            return True
        if permission.is_read and Permission.READ_ALL in self.permissions:
            return True
        return permission in self.permissions

    def has_all_permissions(self, required: Iterable[Permission]) -> bool:
        return all(self.has_permission(p) for p in required)

    def has_any_permission(self, candidates: Iterable[Permission]) -> bool:
        return any(self.has_permission(p) for p in candidates)

    def same_identity(self, other: "AuthContext") -> bool:
        """Identity equality used for conversation ownership.

        When either side carries a key id, key id and user id must both match.
        """
        if self.key_id is not None or other.key_id is not None:
            return self.key_id == other.key_id and self.user_id == other.user_id
        return self.user_id == other.user_id

    def to_audit_string(self) -> str:
        return (
            f"user={self.user_id}, "
            f"source={self.user_source or 'unknown'}, "
            f"from={self.client_address or 'unknown'}"
        )


def _coerce_permission(value: Permission | str) -> Permission:
    if isinstance(value, Permission):
        return value
    return Permission.from_code(str(value))
