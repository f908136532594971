"""Append-only audit trail keyed by correlation id."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.audit.models import AuditCategory, AuditEntry, AuditEvent
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import Action, ActionResult, ActionType
from llm_action_gateway.logging_utils import sanitize_log_value
from llm_action_gateway.utils.masking import redact_sensitive_fields

logger = logging.getLogger(__name__)

_RESOURCE_EVENTS = {
    ActionType.CREATE: AuditEvent.RESOURCE_CREATED,
    ActionType.UPDATE: AuditEvent.RESOURCE_UPDATED,
    ActionType.DELETE: AuditEvent.RESOURCE_DELETED,
}

_ELEVATED_EVENTS = frozenset(
    {
        AuditEvent.AUTHORIZATION_DENIED.value,
        AuditEvent.AUTH_FAILURE.value,
        AuditEvent.SECURITY_VIOLATION.value,
        AuditEvent.RATE_LIMITED.value,
    }
)


class AuditSink(Protocol):
    def append(self, entry: AuditEntry) -> None: ...

    def entries_for(self, correlation_id: str) -> list[AuditEntry]: ...


class InMemoryAuditSink:
    """Process-local sink; entries are kept for the lifetime of the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []
        self._by_correlation: dict[str, list[AuditEntry]] = defaultdict(list)

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            self._by_correlation[entry.correlation_id].append(entry)

    def entries_for(self, correlation_id: str) -> list[AuditEntry]:
        with self._lock:
            return list(self._by_correlation.get(correlation_id, ()))

    def all_entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AuditTrail:
    """Records requests, decisions and results.

    Every entry is redacted, written to each configured sink, and mirrored to
    the Python logger as a single ``[AUDIT]`` line. A sink failure is logged
    and does not interrupt the caller; the remaining sinks still receive the
    entry.
    """

    def __init__(self, sinks: Sequence[AuditSink], log_events: bool = True) -> None:
        if not sinks:
            raise ValueError("AuditTrail requires at least one sink")
        self._sinks = list(sinks)
        self._log_events = log_events
        self._lock = threading.Lock()

    @property
    def sinks(self) -> list[AuditSink]:
        return list(self._sinks)

    def record(
        self,
        category: AuditCategory,
        event_type: AuditEvent | str,
        correlation_id: str,
        *,
        user_id: str | None = None,
        resource_type: str | None = None,
        resource_path: str | None = None,
        action_type: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        event = event_type.value if isinstance(event_type, AuditEvent) else str(event_type)
        redacted = redact_sensitive_fields(dict(details or {}))
        entry = AuditEntry(
            correlation_id=correlation_id,
            category=category,
            event_type=event,
            user_id=user_id,
            resource_type=resource_type,
            resource_path=resource_path,
            action_type=action_type,
            details=redacted if isinstance(redacted, dict) else {},
        )
        # Serialize appends so entries for one correlation id keep their order
        # across every sink.
        with self._lock:
            for sink in self._sinks:
                try:
                    sink.append(entry)
                except Exception:
                    logger.exception(
                        "Audit sink %s failed for entry %s",
                        type(sink).__name__,
                        entry.entry_id,
                    )
        if self._log_events:
            self._log(entry)
        return entry

    def entries_for(self, correlation_id: str) -> list[AuditEntry]:
        return self._sinks[0].entries_for(correlation_id)

    # ------------------------------------------------------------------
    # Action lifecycle
    # ------------------------------------------------------------------

    def log_action_request(
        self,
        action: Action,
        auth: AuthContext,
        correlation: CorrelationContext,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.ACTION,
            AuditEvent.ACTION_REQUEST,
            action.correlation_id,
            **_action_fields(action, auth),
            details={
                "dryRun": action.options.dry_run,
                "force": action.options.force,
                "comment": action.options.comment,
                "payloadKeys": sorted(action.payload.keys()),
                "parentCorrelationId": correlation.parent_id,
            },
        )

    def log_action_result(
        self,
        action: Action,
        auth: AuthContext,
        result: ActionResult,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.ACTION,
            AuditEvent.ACTION_RESULT,
            action.correlation_id,
            **_action_fields(action, auth),
            details={
                "status": result.status.value,
                "message": result.message,
                "errorCode": result.error_code.value if result.error_code else None,
                "errors": list(result.errors),
                "warnings": list(result.warnings),
                "durationMs": result.duration_ms,
            },
        )

    def log_resource_change(
        self,
        action: Action,
        auth: AuthContext,
        details: Mapping[str, Any] | None = None,
    ) -> AuditEntry | None:
        event = _RESOURCE_EVENTS.get(action.action_type)
        if event is None:
            return None
        return self.record(
            AuditCategory.ACTION,
            event,
            action.correlation_id,
            **_action_fields(action, auth),
            details={"comment": action.options.comment, **dict(details or {})},
        )

    # ------------------------------------------------------------------
    # Authorization and policy
    # ------------------------------------------------------------------

    def log_authorization(
        self,
        action: Action,
        auth: AuthContext,
        *,
        granted: bool,
        reason: str,
        required_permission: str | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.AUTH,
            AuditEvent.AUTHORIZATION_GRANTED if granted else AuditEvent.AUTHORIZATION_DENIED,
            action.correlation_id,
            **_action_fields(action, auth),
            details={
                "granted": granted,
                "reason": reason,
                "requiredPermission": required_permission,
                "identity": auth.to_audit_string(),
            },
        )

    def log_auth_failure(
        self,
        correlation_id: str,
        reason: str,
        client_address: str | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.AUTH,
            AuditEvent.AUTH_FAILURE,
            correlation_id,
            details={"reason": reason, "clientAddress": client_address},
        )

    def log_policy_decision(
        self,
        action: Action,
        auth: AuthContext,
        decision: str,
        details: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.POLICY,
            AuditEvent.POLICY_DECISION,
            action.correlation_id,
            **_action_fields(action, auth),
            details={"decision": decision, **dict(details or {})},
        )

    def log_security_violation(
        self,
        action: Action,
        auth: AuthContext,
        violations: Sequence[Mapping[str, Any]],
    ) -> AuditEntry:
        return self.record(
            AuditCategory.POLICY,
            AuditEvent.SECURITY_VIOLATION,
            action.correlation_id,
            **_action_fields(action, auth),
            details={"violations": [dict(v) for v in violations]},
        )

    def log_rate_limited(
        self,
        correlation: CorrelationContext,
        auth: AuthContext,
        reason: str,
        details: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.POLICY,
            AuditEvent.RATE_LIMITED,
            correlation.correlation_id,
            user_id=auth.user_id,
            details={"reason": reason, "keyId": auth.key_id, **dict(details or {})},
        )

    # ------------------------------------------------------------------
    # Conversation and system
    # ------------------------------------------------------------------

    def log_conversation_message(
        self,
        correlation: CorrelationContext,
        auth: AuthContext,
        conversation_id: str,
        role: str,
        content_length: int,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.CONVERSATION,
            AuditEvent.CONVERSATION_MESSAGE,
            correlation.correlation_id,
            user_id=auth.user_id,
            details={
                "conversationId": conversation_id,
                "role": role,
                "contentLength": content_length,
            },
        )

    def log_tool_execution(
        self,
        correlation: CorrelationContext,
        auth: AuthContext,
        conversation_id: str,
        tool_name: str,
        tool_call_id: str,
        result: ActionResult | None,
        error: str | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditCategory.CONVERSATION,
            AuditEvent.TOOL_EXECUTION,
            correlation.correlation_id,
            user_id=auth.user_id,
            details={
                "conversationId": conversation_id,
                "tool": tool_name,
                "toolCallId": tool_call_id,
                "actionCorrelationId": result.correlation_id if result else None,
                "status": result.status.value if result else None,
                "error": error,
            },
        )

    def log_system_event(
        self,
        event_type: str,
        message: str,
        details: Mapping[str, Any] | None = None,
        correlation_id: str = "system",
    ) -> AuditEntry:
        return self.record(
            AuditCategory.SYSTEM,
            event_type,
            correlation_id,
            details={"message": message, **dict(details or {})},
        )

    def _log(self, entry: AuditEntry) -> None:
        level = logging.WARNING if entry.event_type in _ELEVATED_EVENTS else logging.INFO
        resource = (
            f"{entry.resource_type}:{entry.resource_path}" if entry.resource_type else "-"
        )
        logger.log(
            level,
            "[AUDIT] %s | %s | %s | corr=%s | user=%s | resource=%s",
            entry.category.value,
            entry.event_type,
            entry.action_type or "-",
            entry.correlation_id,
            sanitize_log_value(entry.user_id),
            sanitize_log_value(resource),
        )


def _action_fields(action: Action, auth: AuthContext) -> dict[str, str | None]:
    return {
        "user_id": auth.user_id,
        "resource_type": action.resource_type.value,
        "resource_path": action.resource_path,
        "action_type": action.action_type.value,
    }
