from __future__ import annotations

import dataclasses

import pytest

from llm_action_gateway.domain.actions import (
    Action,
    ActionOptions,
    ActionResult,
    ActionStatus,
    ActionType,
    ErrorCode,
    ResourceType,
    is_destructive,
)


class TestAction:
    def test_create_coerces_strings(self):
        action = Action.create("UPDATE", "perspective_view", "proj/Main")
        assert action.action_type is ActionType.UPDATE
        assert action.resource_type is ResourceType.VIEW
        assert action.correlation_id

    def test_is_immutable(self):
        action = Action.create("read", "tag", "[default]A", {"k": 1})
        with pytest.raises(dataclasses.FrozenInstanceError):
            action.resource_path = "other"  # type: ignore[misc]
        with pytest.raises(TypeError):
            action.payload["k"] = 2  # type: ignore[index]

    def test_none_path_rejected(self):
        with pytest.raises(ValueError):
            Action.create("read", "tag", None)  # type: ignore[arg-type]

    def test_key_and_describe(self):
        action = Action.create("delete", "named-query", "proj/Q")
        assert action.key == "named-query:delete:proj/Q"
        assert action.describe() == "delete named-query 'proj/Q'"

    def test_value_write_flag(self):
        write = Action.create("update", "tag", "[default]A", {"value": 1, "_writeValueOnly": True})
        assert write.is_value_write
        assert not Action.create("update", "tag", "[default]A", {"value": 1}).is_value_write

    def test_mutating(self):
        assert Action.create("create", "tag", "[default]A").is_mutating
        assert not Action.create("list", "tag", "*").is_mutating

    def test_with_options(self):
        action = Action.create("delete", "tag", "[default]A")
        forced = action.with_options(force=True)
        assert forced.options.force
        assert not action.options.force


class TestOptions:
    def test_from_mapping_accepts_both_spellings(self):
        assert ActionOptions.from_mapping({"dryRun": True}).dry_run
        assert ActionOptions.from_mapping({"dry_run": True}).dry_run
        assert ActionOptions.from_mapping(None) == ActionOptions()

    def test_comment_is_stringified(self):
        assert ActionOptions.from_mapping({"comment": 42}).comment == "42"


@pytest.mark.parametrize(
    "action, expected",
    [
        (Action.create("delete", "tag", "[default]A"), True),
        (Action.create("update", "view", "p/V", merge=False), True),
        (Action.create("update", "view", "p/V", options=ActionOptions(irreversible=True)), True),
        (Action.create("update", "view", "p/V"), False),
        (Action.create("create", "tag", "[default]A"), False),
        (Action.create("read", "tag", "[default]A"), False),
    ],
)
def test_is_destructive(action, expected):
    assert is_destructive(action) is expected


class TestActionResult:
    def test_failure_defaults_errors_to_message(self):
        result = ActionResult.failure("c", "boom", error_code=ErrorCode.TIMEOUT)
        assert result.errors == ("boom",)
        assert not result.is_success

    def test_dry_run_counts_as_success(self):
        assert ActionResult.dry_run("c", "preview").is_success
        assert ActionResult.pending_confirmation("c", "confirm").needs_confirmation

    def test_with_warnings_appends(self):
        result = ActionResult.success("c", "ok", warnings=["a"]).with_warnings(["b"])
        assert result.warnings == ("a", "b")
        assert ActionResult.success("c", "ok").with_warnings([]).warnings == ()

    def test_to_dict_omits_empty_fields(self):
        payload = ActionResult.success("c", "ok").with_duration(12).to_dict()
        assert payload["status"] == ActionStatus.SUCCESS.value
        assert payload["durationMs"] == 12
        assert "errors" not in payload
        assert "data" not in payload

    def test_to_dict_includes_error_code(self):
        payload = ActionResult.failure(
            "c", "nope", error_code=ErrorCode.PERMISSION_DENIED
        ).to_dict()
        assert payload["errorCode"] == "PERMISSION_DENIED"
        assert payload["errors"] == ["nope"]


def test_resource_type_parse():
    assert ResourceType.parse("NAMED_QUERY") is ResourceType.NAMED_QUERY
    assert ResourceType.GATEWAY_CONFIG.permission_prefix == "gateway_config"
    with pytest.raises(ValueError):
        ResourceType.parse("alarm")
