from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.audit.db import SqliteStore
from llm_action_gateway.audit.models import AuditCategory, AuditEntry, AuditEvent
from llm_action_gateway.audit.trail import AuditTrail
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import Action, ActionResult
from llm_action_gateway.utils.masking import is_sensitive_key, redact_sensitive_fields


@pytest.fixture
def auth() -> AuthContext:
    return AuthContext.from_codes("alice", ["tag:read"], key_id="key-1")


class TestCorrelationContext:
    def test_new_generates_id(self):
        ctx = CorrelationContext.new(user_id="alice", channel="chat")
        assert ctx.correlation_id
        assert ctx.user_id == "alice"
        assert ctx.attributes["channel"] == "chat"

    def test_child_links_to_parent(self):
        parent = CorrelationContext.new(user_id="alice")
        child = parent.child()
        assert child.parent_id == parent.correlation_id
        assert child.correlation_id != parent.correlation_id
        assert child.user_id == "alice"

    def test_attributes_are_read_only(self):
        ctx = CorrelationContext.new()
        with pytest.raises(TypeError):
            ctx.attributes["x"] = 1  # type: ignore[index]

    def test_with_attribute_returns_copy(self):
        ctx = CorrelationContext.new()
        updated = ctx.with_attribute("conversationId", "c1")
        assert "conversationId" not in ctx.attributes
        assert updated.attributes["conversationId"] == "c1"


class TestAuditTrail:
    def test_requires_a_sink(self):
        with pytest.raises(ValueError):
            AuditTrail([])

    def test_action_lifecycle_is_ordered(self, audit, sink, auth):
        action = Action.create("read", "tag", "[default]A")
        correlation = CorrelationContext.new(user_id=auth.user_id)
        audit.log_action_request(action, auth, correlation)
        audit.log_action_result(action, auth, ActionResult.success(action.correlation_id, "ok"))

        entries = audit.entries_for(action.correlation_id)
        assert [e.event_type for e in entries] == ["ACTION_REQUEST", "ACTION_RESULT"]
        assert entries[0].resource_path == "[default]A"
        assert entries[1].details["status"] == "SUCCESS"

    def test_resource_change_only_for_mutations(self, audit, auth):
        read = Action.create("read", "tag", "[default]A")
        assert audit.log_resource_change(read, auth) is None

        delete = Action.create("delete", "tag", "[default]A")
        entry = audit.log_resource_change(delete, auth, {"message": "gone"})
        assert entry is not None
        assert entry.event_type == AuditEvent.RESOURCE_DELETED.value

    def test_details_are_redacted(self, audit, sink):
        audit.log_system_event("STARTUP", "boot", {"apiKey": "sk-123", "inputTokens": 7})
        entry = sink.all_entries()[-1]
        assert entry.details["apiKey"] == "***"
        assert entry.details["inputTokens"] == 7

    def test_failing_sink_does_not_block_others(self, sink):
        broken = MagicMock()
        broken.append.side_effect = RuntimeError("disk full")
        trail = AuditTrail([sink, broken], log_events=False)

        trail.log_system_event("STARTUP", "boot")

        assert len(sink) == 1
        broken.append.assert_called_once()

    def test_security_events_logged_at_warning(self, sink, auth, caplog):
        trail = AuditTrail([sink], log_events=True)
        action = Action.create("create", "script", "proj/library/x")
        with caplog.at_level("INFO", logger="llm_action_gateway.audit.trail"):
            trail.log_security_violation(action, auth, [{"description": "eval()"}])
            trail.log_system_event("STARTUP", "boot")
        levels = {r.getMessage().split(" | ")[1]: r.levelname for r in caplog.records}
        assert levels["SECURITY_VIOLATION"] == "WARNING"
        assert levels["STARTUP"] == "INFO"

    def test_rate_limited_and_tool_execution(self, audit, sink, auth):
        correlation = CorrelationContext.new(user_id=auth.user_id)
        audit.log_rate_limited(correlation, auth, "Too many requests", {"retryAfter": 3})
        audit.log_tool_execution(correlation, auth, "c1", "read_tag", "call-1", None, "boom")
        entries = audit.entries_for(correlation.correlation_id)
        assert entries[0].details["keyId"] == "key-1"
        assert entries[1].category is AuditCategory.CONVERSATION
        assert entries[1].details["error"] == "boom"


class TestSqliteStore:
    def test_append_and_query(self, tmp_path):
        store = SqliteStore(str(tmp_path / "audit" / "trail.sqlite"))
        trail = AuditTrail([store], log_events=False)
        trail.log_auth_failure("corr-1", "Invalid API key", "10.0.0.1")
        trail.log_system_event("STARTUP", "boot", correlation_id="corr-1")

        entries = store.entries_for("corr-1")
        assert [e.event_type for e in entries] == ["AUTH_FAILURE", "STARTUP"]
        assert entries[0].details["clientAddress"] == "10.0.0.1"
        assert store.count_entries() == 2
        assert store.count_entries("AUTH_FAILURE") == 1
        store.close()
        store.close()

    def test_entries_are_append_only(self):
        store = SqliteStore(":memory:")
        store.append(AuditEntry(correlation_id="c", category=AuditCategory.SYSTEM, event_type="X"))
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            store.execute("DELETE FROM audit_entries", ())
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            store.execute("UPDATE audit_entries SET event_type = 'Y'", ())
        store.close()


class TestMasking:
    @pytest.mark.parametrize("key", ["password", "x_api_key", "client_secret", "Authorization"])
    def test_sensitive_keys(self, key):
        assert is_sensitive_key(key)

    @pytest.mark.parametrize("key", ["estimatedTokens", "max_tokens", "path"])
    def test_allowed_keys(self, key):
        assert not is_sensitive_key(key)

    def test_nested_redaction(self):
        data = {"outer": [{"token": "abc", "name": "x"}], "plain": 1}
        assert redact_sensitive_fields(data) == {
            "outer": [{"token": "***", "name": "x"}],
            "plain": 1,
        }

    def test_depth_limit(self):
        assert redact_sensitive_fields({"a": {"b": 1}}, max_depth=1) == {"a": "***"}
