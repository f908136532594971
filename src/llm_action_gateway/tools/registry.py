"""Tool registry: tool name -> schema, description and the action it maps to."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import ActionType, ResourceType
from llm_action_gateway.providers.base import ToolDefinition
from llm_action_gateway.tools.schemas import TOOL_DESCRIPTIONS, TOOL_SCHEMAS

if TYPE_CHECKING:
    from llm_action_gateway.policy.engine import PolicyEngine


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: Mapping[str, Any]
    action_type: ActionType
    resource_type: ResourceType
    value_write: bool = False

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.input_schema)


_TOOL_ACTIONS: Mapping[str, tuple[ActionType, ResourceType]] = {
    "create_tag": (ActionType.CREATE, ResourceType.TAG),
    "read_tag": (ActionType.READ, ResourceType.TAG),
    "update_tag": (ActionType.UPDATE, ResourceType.TAG),
    "delete_tag": (ActionType.DELETE, ResourceType.TAG),
    "write_tag_value": (ActionType.UPDATE, ResourceType.TAG),
    "list_tags": (ActionType.LIST, ResourceType.TAG),
    "create_view": (ActionType.CREATE, ResourceType.VIEW),
    "read_view": (ActionType.READ, ResourceType.VIEW),
    "update_view": (ActionType.UPDATE, ResourceType.VIEW),
    "delete_view": (ActionType.DELETE, ResourceType.VIEW),
    "list_views": (ActionType.LIST, ResourceType.VIEW),
    "list_projects": (ActionType.LIST, ResourceType.PROJECT),
    "read_project": (ActionType.READ, ResourceType.PROJECT),
    "create_script": (ActionType.CREATE, ResourceType.SCRIPT),
    "read_script": (ActionType.READ, ResourceType.SCRIPT),
    "update_script": (ActionType.UPDATE, ResourceType.SCRIPT),
    "delete_script": (ActionType.DELETE, ResourceType.SCRIPT),
    "list_scripts": (ActionType.LIST, ResourceType.SCRIPT),
    "create_named_query": (ActionType.CREATE, ResourceType.NAMED_QUERY),
    "read_named_query": (ActionType.READ, ResourceType.NAMED_QUERY),
    "update_named_query": (ActionType.UPDATE, ResourceType.NAMED_QUERY),
    "delete_named_query": (ActionType.DELETE, ResourceType.NAMED_QUERY),
    "list_named_queries": (ActionType.LIST, ResourceType.NAMED_QUERY),
}


def get_tool_specs() -> list[ToolSpec]:
    specs = []
    for name, (action_type, resource_type) in _TOOL_ACTIONS.items():
        specs.append(
            ToolSpec(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                input_schema=TOOL_SCHEMAS[name],
                action_type=action_type,
                resource_type=resource_type,
                value_write=name == "write_tag_value",
            )
        )
    return specs


class ToolRegistry:
    """Lookup of tool specs by name, filtered per identity for the model."""

    def __init__(self, specs: Iterable[ToolSpec] | None = None) -> None:
        self._specs = {
            spec.name: spec for spec in (get_tool_specs() if specs is None else specs)
        }

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def definitions_for(self, auth: AuthContext, policy: PolicyEngine) -> list[ToolDefinition]:
        """Tools the identity could use, in registration order.

        Tools an identity cannot invoke are not offered to the model at all.
        A value write is offered to holders of ``tag:write_value``, which is
        the permission the policy engine checks for it.
        """
        return [
            spec.to_definition()
            for spec in self._specs.values()
            if policy.permitted(
                auth, spec.resource_type, spec.action_type, value_write=spec.value_write
            )
        ]
