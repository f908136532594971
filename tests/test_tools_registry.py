from __future__ import annotations

import pytest

from llm_action_gateway.domain.actions import ActionType, ResourceType
from llm_action_gateway.policy.engine import PolicyEngine
from llm_action_gateway.policy.models import PolicyConfig
from llm_action_gateway.tools import ToolRegistry, get_tool_specs
from llm_action_gateway.tools.schemas import TOOL_DESCRIPTIONS, TOOL_SCHEMAS


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def policy() -> PolicyEngine:
    return PolicyEngine(PolicyConfig())


def test_every_tool_has_schema_and_description() -> None:
    specs = get_tool_specs()
    assert len(specs) == 23
    assert {spec.name for spec in specs} == set(TOOL_SCHEMAS) == set(TOOL_DESCRIPTIONS)


def test_schemas_reject_unknown_properties() -> None:
    for name, schema in TOOL_SCHEMAS.items():
        assert schema["type"] == "object", name
        assert schema["additionalProperties"] is False, name


def test_lookup(registry) -> None:
    spec = registry.get("list_projects")
    assert spec.action_type is ActionType.LIST
    assert spec.resource_type is ResourceType.PROJECT
    assert "read_project" in registry
    assert "drop_database" not in registry
    assert registry.get("drop_database") is None
    assert len(registry) == 23


def test_only_write_tag_value_is_a_value_write(registry) -> None:
    flagged = [name for name in registry.names() if registry.get(name).value_write]
    assert flagged == ["write_tag_value"]


def test_to_definition(registry) -> None:
    definition = registry.get("read_tag").to_definition().to_dict()
    assert definition["name"] == "read_tag"
    assert definition["input_schema"]["required"] == ["tagPath"]


def test_definitions_filtered_by_permission(registry, policy, make_auth) -> None:
    names = [d.name for d in registry.definitions_for(make_auth("tag:read"), policy)]
    assert names == ["read_tag", "list_tags"]


def test_write_value_holder_sees_only_value_write(registry, policy, make_auth) -> None:
    names = [d.name for d in registry.definitions_for(make_auth("tag:write_value"), policy)]
    assert names == ["write_tag_value"]


def test_read_all_sees_every_read_and_list(registry, policy, make_auth) -> None:
    names = {d.name for d in registry.definitions_for(make_auth("read_all"), policy)}
    assert names == {
        spec.name
        for spec in get_tool_specs()
        if spec.action_type in (ActionType.READ, ActionType.LIST)
    }


def test_admin_sees_everything(registry, policy, admin) -> None:
    assert len(registry.definitions_for(admin, policy)) == 23


def test_custom_spec_subset() -> None:
    subset = [spec for spec in get_tool_specs() if spec.resource_type is ResourceType.VIEW]
    assert ToolRegistry(subset).names() == [
        "create_view",
        "read_view",
        "update_view",
        "delete_view",
        "list_views",
    ]
