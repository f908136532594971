"""Domain objects for gateway actions and their results."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from llm_action_gateway.utils.time import utc_now_iso


class ActionType(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


class ResourceType(str, Enum):
    TAG = "tag"
    PROJECT = "project"
    VIEW = "view"
    SCRIPT = "script"
    NAMED_QUERY = "named-query"
    GATEWAY_CONFIG = "gateway-config"

    @classmethod
    def parse(cls, value: str) -> "ResourceType":
        normalized = value.strip().lower().replace("_", "-")
        if normalized == "perspective-view":
            return cls.VIEW
        return cls(normalized)

    @property
    def permission_prefix(self) -> str:
        return self.value.replace("-", "_")


class ActionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PARTIAL = "PARTIAL"
    DRY_RUN = "DRY_RUN"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"


class ErrorCode(str, Enum):
    """Machine-readable failure markers carried on FAILURE results."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    HANDLER_NOT_FOUND = "HANDLER_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    TIMEOUT = "TIMEOUT"


def new_correlation_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ActionOptions:
    dry_run: bool = False
    force: bool = False
    comment: str | None = None
    irreversible: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "ActionOptions":
        if not data:
            return cls()
        comment = data.get("comment")
        return cls(
            dry_run=bool(data.get("dryRun", data.get("dry_run", False))),
            force=bool(data.get("force", False)),
            comment=str(comment) if comment is not None else None,
            irreversible=bool(data.get("irreversible", False)),
        )


@dataclass(frozen=True)
class Action:
    """A single proposed operation against a managed resource.

    Enum fields accept their string values and are coerced on construction.
    Business rules (UUID format, path traversal) are reported by the action
    validator so that they surface as FAILURE results instead of exceptions.
    """

    correlation_id: str
    action_type: ActionType
    resource_type: ResourceType
    resource_path: str
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    options: ActionOptions = field(default_factory=ActionOptions)
    merge: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.action_type, ActionType):
            object.__setattr__(self, "action_type", ActionType(str(self.action_type).lower()))
        if not isinstance(self.resource_type, ResourceType):
            object.__setattr__(
                self, "resource_type", ResourceType.parse(str(self.resource_type))
            )
        if self.resource_path is None:
            raise ValueError("resource_path cannot be None")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload or {})))

    @classmethod
    def create(
        cls,
        action_type: ActionType | str,
        resource_type: ResourceType | str,
        resource_path: str,
        payload: Mapping[str, Any] | None = None,
        options: ActionOptions | None = None,
        *,
        correlation_id: str | None = None,
        merge: bool = True,
    ) -> "Action":
        return cls(
            correlation_id=correlation_id or new_correlation_id(),
            action_type=action_type,  # type: ignore[arg-type]
            resource_type=resource_type,  # type: ignore[arg-type]
            resource_path=resource_path,
            payload=payload or {},
            options=options or ActionOptions(),
            merge=merge,
        )

    @property
    def key(self) -> str:
        return f"{self.resource_type.value}:{self.action_type.value}:{self.resource_path}"

    @property
    def is_value_write(self) -> bool:
        return self.action_type is ActionType.UPDATE and bool(self.payload.get("_writeValueOnly"))

    @property
    def is_mutating(self) -> bool:
        return self.action_type in _MUTATING_TYPES

    def with_options(self, **changes: object) -> "Action":
        return replace(self, options=replace(self.options, **changes))

    def describe(self) -> str:
        return f"{self.action_type.value} {self.resource_type.value} '{self.resource_path}'"


_MUTATING_TYPES = frozenset({ActionType.CREATE, ActionType.UPDATE, ActionType.DELETE})

# Single declaration of which actions need explicit confirmation.
DESTRUCTIVE_RULES: Mapping[ActionType, Callable[[Action], bool]] = MappingProxyType(
    {
        ActionType.DELETE: lambda action: True,
        ActionType.UPDATE: lambda action: (not action.merge) or action.options.irreversible,
    }
)


def is_destructive(action: Action) -> bool:
    rule = DESTRUCTIVE_RULES.get(action.action_type)
    return bool(rule and rule(action))


@dataclass(frozen=True)
class ActionResult:
    """Outcome of executing an action."""

    correlation_id: str
    status: ActionStatus
    message: str
    data: Mapping[str, Any] | None = None
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    error_code: ErrorCode | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    duration_ms: int = 0
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        object.__setattr__(self, "warnings", tuple(self.warnings))
        object.__setattr__(self, "errors", tuple(self.errors))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        if self.data is not None:
            object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    @property
    def is_success(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.DRY_RUN)

    @property
    def needs_confirmation(self) -> bool:
        return self.status is ActionStatus.PENDING_CONFIRMATION

    def with_duration(self, duration_ms: int) -> "ActionResult":
        return replace(self, duration_ms=duration_ms)

    def with_warnings(self, warnings: list[str] | tuple[str, ...]) -> "ActionResult":
        if not warnings:
            return self
        return replace(self, warnings=tuple(self.warnings) + tuple(warnings))

    @classmethod
    def success(
        cls,
        correlation_id: str,
        message: str,
        data: Mapping[str, Any] | None = None,
        warnings: list[str] | tuple[str, ...] = (),
    ) -> "ActionResult":
        return cls(correlation_id, ActionStatus.SUCCESS, message, data, tuple(warnings))

    @classmethod
    def failure(
        cls,
        correlation_id: str,
        message: str,
        errors: list[str] | tuple[str, ...] = (),
        error_code: ErrorCode | None = None,
        warnings: list[str] | tuple[str, ...] = (),
        data: Mapping[str, Any] | None = None,
    ) -> "ActionResult":
        return cls(
            correlation_id,
            ActionStatus.FAILURE,
            message,
            data,
            tuple(warnings),
            tuple(errors) or (message,),
            error_code,
        )

    @classmethod
    def dry_run(
        cls,
        correlation_id: str,
        message: str,
        preview: Mapping[str, Any] | None = None,
        warnings: list[str] | tuple[str, ...] = (),
    ) -> "ActionResult":
        return cls(correlation_id, ActionStatus.DRY_RUN, message, preview, tuple(warnings))

    @classmethod
    def pending_confirmation(
        cls,
        correlation_id: str,
        message: str,
        preview: Mapping[str, Any] | None = None,
        warnings: list[str] | tuple[str, ...] = (),
    ) -> "ActionResult":
        return cls(
            correlation_id,
            ActionStatus.PENDING_CONFIRMATION,
            message,
            preview,
            tuple(warnings),
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "correlationId": self.correlation_id,
            "status": self.status.value,
            "message": self.message,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            payload["data"] = dict(self.data)
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.error_code is not None:
            payload["errorCode"] = self.error_code.value
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload
