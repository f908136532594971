from __future__ import annotations

import pytest

from llm_action_gateway.domain.actions import Action, ActionOptions
from llm_action_gateway.validators.dispatch import scan_action, script_type_for, validate_action
from llm_action_gateway.validators.results import IssueCode
from llm_action_gateway.validators.script import ScriptType


def test_envelope_rejects_non_uuid_correlation_id():
    action = Action.create("read", "tag", "[default]A", correlation_id="not-a-uuid")
    result = validate_action(action)
    assert IssueCode.INVALID_FORMAT in result.codes()


@pytest.mark.parametrize("path", ["[default]../secret", "proj//views"])
def test_envelope_rejects_traversal(path):
    result = validate_action(Action.create("read", "view", path))
    assert IssueCode.SECURITY_VIOLATION in result.codes()


def test_force_without_dry_run_on_destructive_warns():
    action = Action.create("delete", "tag", "[default]A", options=ActionOptions(force=True))
    result = validate_action(action)
    assert result.is_valid
    assert any("Force mode enabled" in w for w in result.warnings)


def test_reads_skip_payload_validation():
    action = Action.create("read", "script", "proj/library/util", {"code": ""})
    assert validate_action(action).is_valid


def test_tag_value_write_requires_value():
    action = Action.create("update", "tag", "[default]A", {"_writeValueOnly": True})
    result = validate_action(action)
    assert "value" in {issue.field for issue in result.errors}


def test_tag_value_write_skips_config_checks():
    action = Action.create(
        "update", "tag", "[default]A", {"value": 5, "_writeValueOnly": True}
    )
    assert validate_action(action).is_valid


def test_empty_update_payload_is_rejected():
    result = validate_action(Action.create("update", "view", "proj/Main", {}))
    assert IssueCode.REQUIRED_FIELD in result.codes()


def test_view_update_without_root_is_accepted():
    action = Action.create("update", "view", "proj/Main", {"changes": {"params": {}}})
    assert validate_action(action).is_valid


def test_script_type_from_payload_and_path():
    assert script_type_for(
        Action.create("create", "script", "proj/library/util", {"scriptType": "gateway"})
    ) is ScriptType.GATEWAY_EVENT
    assert script_type_for(
        Action.create("create", "script", "proj/library/util")
    ) is ScriptType.PROJECT_LIBRARY


def test_unknown_script_type_is_a_validation_error():
    action = Action.create(
        "create", "script", "proj/cron/job", {"code": "def f():\n    pass\n"}
    )
    result = validate_action(action)
    assert "scriptType" in {issue.field for issue in result.errors}


def test_named_query_create_vs_update():
    create = Action.create("create", "named-query", "proj/Batches", {"query": "SELECT 1"})
    update = Action.create("update", "named-query", "proj/Batches", {"query": "SELECT 1"})
    assert not validate_action(create).is_valid
    assert validate_action(update).is_valid


def test_scan_blocks_script_code():
    action = Action.create(
        "create", "script", "proj/library/util", {"code": "import os\nos.system('rm -rf /')\n"}
    )
    assert scan_action(action).is_blocked


def test_scan_blocks_named_query_sql():
    action = Action.create(
        "update", "named-query", "proj/Cleanup", {"query": "DROP TABLE batches"}
    )
    assert scan_action(action).is_blocked


def test_scan_ignores_reads_and_non_code_resources():
    assert not scan_action(
        Action.create("read", "script", "proj/library/util", {"code": "eval('x')"})
    ).is_blocked
    assert not scan_action(
        Action.create("create", "tag", "[default]A", {"name": "eval('x')"})
    ).is_blocked
