from __future__ import annotations

import asyncio

import pytest

from llm_action_gateway.domain.actions import (
    Action,
    ActionOptions,
    ActionResult,
    ActionStatus,
    ErrorCode,
    ResourceType,
)
from llm_action_gateway.execution.executor import ActionExecutor
from llm_action_gateway.policy.engine import PolicyEngine
from llm_action_gateway.policy.models import PolicyConfig
from llm_action_gateway.resources.base import ResourceNotFoundError
from llm_action_gateway.resources.memory import InMemoryResourceHandler
from llm_action_gateway.resources.registry import HandlerRegistry

SPEED = "[default]Line1/Speed"


class CountingHandler(InMemoryResourceHandler):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.dispatched = 0
        self.existence_checks = 0

    async def exists(self, resource_path, auth):
        self.existence_checks += 1
        return await super().exists(resource_path, auth)

    async def dispatch(self, action, auth, correlation):
        self.dispatched += 1
        return await super().dispatch(action, auth, correlation)


class SlowHandler(InMemoryResourceHandler):
    async def read(self, action, auth, correlation):
        await asyncio.sleep(1)
        return ActionResult.success(action.correlation_id, "late")


class SlowPreviewHandler(InMemoryResourceHandler):
    async def preview(self, action, auth):
        await asyncio.sleep(1)
        return await super().preview(action, auth)


class BrokenHandler(InMemoryResourceHandler):
    async def read(self, action, auth, correlation):
        raise RuntimeError("backend offline")

    async def update(self, action, auth, correlation):
        raise ResourceNotFoundError(self.resource_type, action.resource_path)


@pytest.fixture
def tags() -> CountingHandler:
    return CountingHandler(
        ResourceType.TAG,
        {
            "[default]Line1": {"tagType": "Folder"},
            SPEED: {"tagType": "AtomicTag", "dataType": "Float8", "value": 1.5},
        },
    )


@pytest.fixture
def scripts() -> CountingHandler:
    return CountingHandler(ResourceType.SCRIPT)


@pytest.fixture
def executor(tags, scripts, audit) -> ActionExecutor:
    policy = PolicyEngine(PolicyConfig(), audit=audit)
    return ActionExecutor(policy, HandlerRegistry([tags, scripts]), audit)


def _event_types(sink, action):
    return [entry.event_type for entry in sink.entries_for(action.correlation_id)]


class TestGates:
    @pytest.mark.asyncio
    async def test_permission_denied(self, executor, tags, make_auth):
        action = Action.create("delete", "tag", SPEED, options=ActionOptions(force=True))
        result = await executor.execute(action, make_auth("tag:read"))

        assert result.status is ActionStatus.FAILURE
        assert result.error_code is ErrorCode.PERMISSION_DENIED
        assert tags.dispatched == 0

    @pytest.mark.asyncio
    async def test_handler_not_found(self, executor, make_auth):
        action = Action.create("read", "view", "Plant/Main")
        result = await executor.execute(action, make_auth("view:read"))
        assert result.error_code is ErrorCode.HANDLER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_validation_failed(self, executor, tags, make_auth):
        action = Action.create(
            "create", "tag", "[default]New", {"name": "New", "tagType": "Bogus"}
        )
        result = await executor.execute(action, make_auth("tag:create"))

        assert result.error_code is ErrorCode.VALIDATION_FAILED
        assert any("Invalid tag type" in error for error in result.errors)
        assert tags.existence_checks == 0

    @pytest.mark.asyncio
    async def test_path_traversal_is_a_validation_failure(self, executor, make_auth):
        action = Action.create("read", "tag", "[default]../etc/passwd")
        result = await executor.execute(action, make_auth("tag:read"))
        assert result.error_code is ErrorCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_security_violation_never_reaches_handler(
        self, executor, scripts, sink, make_auth
    ):
        action = Action.create(
            "create",
            "script",
            "Plant/library/cleanup",
            {"scriptType": "library", "code": "import os\ndef f():\n    os.system('rm -rf /')\n"},
        )
        result = await executor.execute(action, make_auth("script:create"))

        assert result.error_code is ErrorCode.SECURITY_VIOLATION
        assert result.errors[0].startswith("[SECURITY_VIOLATION]")
        assert scripts.dispatched == 0
        assert scripts.existence_checks == 0
        assert "SECURITY_VIOLATION" in _event_types(sink, action)

    @pytest.mark.asyncio
    async def test_create_existing_is_conflict(self, executor, tags, make_auth):
        action = Action.create("create", "tag", SPEED, {"name": "Speed"})
        result = await executor.execute(action, make_auth("tag:create"))

        assert result.error_code is ErrorCode.CONFLICT
        assert tags.dispatched == 0

    @pytest.mark.asyncio
    async def test_read_missing_is_not_found(self, executor, make_auth):
        action = Action.create("read", "tag", "[default]Ghost")
        result = await executor.execute(action, make_auth("tag:read"))
        assert result.error_code is ErrorCode.NOT_FOUND
        assert result.message == "tag not found: [default]Ghost"


class TestDryRunAndConfirmation:
    @pytest.mark.asyncio
    async def test_dry_run_returns_preview_without_mutation(self, executor, tags, make_auth):
        action = Action.create(
            "update",
            "tag",
            SPEED,
            {"changes": {"engUnit": "rpm"}},
            ActionOptions(dry_run=True),
        )
        result = await executor.execute(action, make_auth("tag:update"))

        assert result.status is ActionStatus.DRY_RUN
        assert result.is_success
        assert result.data["destructive"] is False
        assert result.data["current"]["value"] == 1.5
        assert tags.dispatched == 0
        assert "engUnit" not in tags.snapshot()[SPEED]

    @pytest.mark.asyncio
    async def test_dry_run_takes_precedence_over_confirmation(self, executor, make_auth):
        action = Action.create("delete", "tag", SPEED, options=ActionOptions(dry_run=True))
        result = await executor.execute(action, make_auth("tag:delete"))

        assert result.status is ActionStatus.DRY_RUN
        assert result.data["destructive"] is True

    @pytest.mark.asyncio
    async def test_read_ignores_dry_run(self, executor, tags, make_auth):
        action = Action.create("read", "tag", SPEED, options=ActionOptions(dry_run=True))
        result = await executor.execute(action, make_auth("tag:read"))

        assert result.status is ActionStatus.SUCCESS
        assert tags.dispatched == 1

    @pytest.mark.asyncio
    async def test_delete_without_force_needs_confirmation(self, executor, tags, make_auth):
        action = Action.create("delete", "tag", SPEED)
        result = await executor.execute(action, make_auth("tag:delete"))

        assert result.status is ActionStatus.PENDING_CONFIRMATION
        assert result.needs_confirmation
        assert "force=true" in result.message
        assert SPEED in tags.snapshot()

    @pytest.mark.asyncio
    async def test_replacing_update_needs_confirmation(self, executor, make_auth):
        action = Action.create(
            "update", "tag", SPEED, {"tagType": "AtomicTag"}, merge=False
        )
        result = await executor.execute(action, make_auth("tag:update"))
        assert result.status is ActionStatus.PENDING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_forced_delete_runs_and_audits_change(self, executor, tags, sink, make_auth):
        action = Action.create("delete", "tag", SPEED, options=ActionOptions(force=True))
        result = await executor.execute(action, make_auth("tag:delete"))

        assert result.status is ActionStatus.SUCCESS
        assert SPEED not in tags.snapshot()
        assert any("dryRun" in warning for warning in result.warnings)
        assert _event_types(sink, action)[-2:] == ["RESOURCE_DELETED", "ACTION_RESULT"]


class TestDispatchFailures:
    @pytest.fixture
    def broken_executor(self, audit) -> ActionExecutor:
        handler = BrokenHandler(ResourceType.TAG, {SPEED: {"tagType": "AtomicTag"}})
        return ActionExecutor(PolicyEngine(PolicyConfig()), HandlerRegistry([handler]), audit)

    @pytest.mark.asyncio
    async def test_handler_exception_keeps_message(self, broken_executor, make_auth):
        result = await broken_executor.execute(
            Action.create("read", "tag", SPEED), make_auth("tag:read")
        )
        assert result.error_code is ErrorCode.EXECUTION_ERROR
        assert result.message == "backend offline"

    @pytest.mark.asyncio
    async def test_resource_vanishing_mid_flight_is_not_found(self, broken_executor, make_auth):
        action = Action.create("update", "tag", SPEED, {"changes": {"tooltip": "x"}})
        result = await broken_executor.execute(action, make_auth("tag:update"))
        assert result.error_code is ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_timeout(self, audit, make_auth):
        handler = SlowHandler(ResourceType.TAG, {SPEED: {"tagType": "AtomicTag"}})
        executor = ActionExecutor(
            PolicyEngine(PolicyConfig()), HandlerRegistry([handler]), audit, handler_timeout=0.05
        )
        result = await executor.execute(Action.create("read", "tag", SPEED), make_auth("tag:read"))

        assert result.error_code is ErrorCode.TIMEOUT
        assert "timed out" in result.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "options", [ActionOptions(dry_run=True), ActionOptions()], ids=["dry-run", "confirm"]
    )
    async def test_slow_preview_times_out(self, audit, make_auth, options):
        handler = SlowPreviewHandler(ResourceType.TAG, {SPEED: {"tagType": "AtomicTag"}})
        executor = ActionExecutor(
            PolicyEngine(PolicyConfig()), HandlerRegistry([handler]), audit, handler_timeout=0.05
        )
        action = Action.create("delete", "tag", SPEED, options=options)
        result = await executor.execute(action, make_auth("tag:delete"))

        assert result.error_code is ErrorCode.TIMEOUT
        assert SPEED in handler.snapshot()


class TestAuditBracketing:
    @pytest.mark.asyncio
    async def test_successful_create(self, executor, tags, sink, make_auth):
        action = Action.create(
            "create",
            "tag",
            "[default]Line1/Temp",
            {"name": "Temp", "tagType": "AtomicTag", "dataType": "Float4"},
        )
        result = await executor.execute(action, make_auth("tag:create", user_id="bob"))

        assert result.status is ActionStatus.SUCCESS
        assert tags.snapshot()["[default]Line1/Temp"]["_meta"]["createdBy"] == "bob"
        events = _event_types(sink, action)
        assert events[0] == "ACTION_REQUEST"
        assert events[-1] == "ACTION_RESULT"
        assert "AUTHORIZATION_GRANTED" in events
        assert "RESOURCE_CREATED" in events

    @pytest.mark.asyncio
    async def test_failures_are_bracketed_too(self, executor, sink, make_auth):
        action = Action.create("read", "tag", SPEED)
        result = await executor.execute(action, make_auth())

        entries = sink.entries_for(action.correlation_id)
        assert entries[0].event_type == "ACTION_REQUEST"
        assert entries[-1].event_type == "ACTION_RESULT"
        assert entries[-1].details["errorCode"] == "PERMISSION_DENIED"
        assert entries[-1].details["durationMs"] == result.duration_ms

    @pytest.mark.asyncio
    async def test_reads_do_not_log_resource_changes(self, executor, sink, make_auth):
        action = Action.create("read", "tag", SPEED)
        await executor.execute(action, make_auth("tag:read"))
        assert not any(e.startswith("RESOURCE_") for e in _event_types(sink, action))
