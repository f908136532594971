"""Pydantic models for the YAML policy file."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from llm_action_gateway.domain.actions import ResourceType
from llm_action_gateway.policy.environment import EnvironmentMode


class PolicyRules(BaseModel):
    deny: list[str] = Field(
        default_factory=list,
        description="Regexes searched against '<resource>:<action>:<path>'.",
    )

    @field_validator("deny", mode="before")
    @classmethod
    def _null_deny_is_empty(cls, value: Any) -> Any:
        # "deny:" with no entries parses as None
        return value if value is not None else []


class PolicyConfig(BaseModel):
    """Top-level policy document.

    ``environment`` and ``disabled_resource_types`` accept the same spellings
    as :meth:`EnvironmentMode.parse` and :meth:`ResourceType.parse`.
    """

    version: int = 1
    environment: EnvironmentMode = EnvironmentMode.DEVELOPMENT
    rules: PolicyRules = Field(default_factory=PolicyRules)
    disabled_resource_types: list[ResourceType] = Field(default_factory=list)

    @field_validator("environment", mode="before")
    @classmethod
    def _parse_environment(cls, value: Any) -> Any:
        if value is None:
            return EnvironmentMode.DEVELOPMENT
        return EnvironmentMode.parse(value) if isinstance(value, str) else value

    @field_validator("disabled_resource_types", mode="before")
    @classmethod
    def _parse_resource_types(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        return [ResourceType.parse(item) if isinstance(item, str) else item for item in value]

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> PolicyConfig:
        return cls.model_validate(data)
