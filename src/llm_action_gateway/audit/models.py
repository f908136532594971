"""Data models for audit records."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from llm_action_gateway.utils.serialization import json_default
from llm_action_gateway.utils.time import utc_now_iso


class AuditCategory(str, Enum):
    ACTION = "action"
    AUTH = "auth"
    POLICY = "policy"
    SYSTEM = "system"
    CONVERSATION = "conversation"


class AuditEvent(str, Enum):
    ACTION_REQUEST = "ACTION_REQUEST"
    ACTION_RESULT = "ACTION_RESULT"
    AUTHORIZATION_GRANTED = "AUTHORIZATION_GRANTED"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    AUTH_FAILURE = "AUTH_FAILURE"
    POLICY_DECISION = "POLICY_DECISION"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    RATE_LIMITED = "RATE_LIMITED"
    RESOURCE_CREATED = "RESOURCE_CREATED"
    RESOURCE_UPDATED = "RESOURCE_UPDATED"
    RESOURCE_DELETED = "RESOURCE_DELETED"
    CONVERSATION_MESSAGE = "CONVERSATION_MESSAGE"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    SYSTEM_EVENT = "SYSTEM_EVENT"


@dataclass(frozen=True)
class AuditEntry:
    correlation_id: str
    category: AuditCategory
    event_type: str
    user_id: str | None = None
    resource_type: str | None = None
    resource_path: str | None = None
    action_type: str | None = None
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    timestamp: str = field(default_factory=utc_now_iso)
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", MappingProxyType(dict(self.details)))

    def details_json(self) -> str:
        return json.dumps(dict(self.details), default=json_default, sort_keys=True)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AuditEntry":
        details = json.loads(row["details"]) if row["details"] else {}
        return cls(
            correlation_id=row["correlation_id"],
            category=AuditCategory(row["category"]),
            event_type=row["event_type"],
            user_id=row["user_id"],
            resource_type=row["resource_type"],
            resource_path=row["resource_path"],
            action_type=row["action_type"],
            details=details,
            timestamp=row["timestamp"],
            entry_id=row["entry_id"],
        )
