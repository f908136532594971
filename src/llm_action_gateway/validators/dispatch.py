"""Routes an action to the validators and scanners for its resource type."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from llm_action_gateway.domain.actions import Action, ActionType, ResourceType
from llm_action_gateway.validators.action import ActionValidator
from llm_action_gateway.validators.results import IssueCode, SecurityScanResult, ValidationResult
from llm_action_gateway.validators.script import ScriptType, ScriptValidator
from llm_action_gateway.validators.sql import NamedQueryValidator
from llm_action_gateway.validators.tag import TagConfigValidator
from llm_action_gateway.validators.view import ViewConfigValidator

_action_validator = ActionValidator()
_script_validator = ScriptValidator()
_query_validator = NamedQueryValidator()
_tag_validator = TagConfigValidator()
_view_validator = ViewConfigValidator()

_WRITE_ACTIONS = frozenset({ActionType.CREATE, ActionType.UPDATE})


def validate_action(action: Action) -> ValidationResult:
    """Structural validation: the action envelope plus its payload.

    Payload checks run only for create and update; other action types carry
    no resource definition.
    """
    result = _action_validator.validate(action)
    if action.action_type not in _WRITE_ACTIONS:
        return result
    validator = _PAYLOAD_VALIDATORS.get(action.resource_type)
    if validator is not None:
        result.merge(validator(action))
    return result


def scan_action(action: Action) -> SecurityScanResult:
    """Security scan of any code or SQL the action would store.

    Resources that carry no executable text always scan clean.
    """
    if action.action_type not in _WRITE_ACTIONS:
        return SecurityScanResult()
    if action.resource_type is ResourceType.SCRIPT:
        code = action.payload.get("code")
        return _script_validator.security_scan(code if isinstance(code, str) else None)
    if action.resource_type is ResourceType.NAMED_QUERY:
        sql = action.payload.get("query")
        return _query_validator.security_scan(sql if isinstance(sql, str) else None)
    return SecurityScanResult()


def script_type_for(action: Action) -> ScriptType:
    """Script type from the payload, else the second segment of ``project/type/path``."""
    declared = action.payload.get("scriptType")
    if declared:
        return ScriptType.parse(str(declared))
    segments = action.resource_path.split("/")
    return ScriptType.parse(segments[1] if len(segments) > 2 else None)


def _validate_tag(action: Action) -> ValidationResult:
    payload = action.payload
    if action.action_type is ActionType.UPDATE:
        if not payload:
            return ValidationResult().add_error(
                "payload", "Update payload cannot be empty", IssueCode.REQUIRED_FIELD
            )
        if action.is_value_write:
            if "value" not in payload:
                return ValidationResult().add_error(
                    "value", "Value is required for a tag value write", IssueCode.REQUIRED_FIELD
                )
            return ValidationResult()
    return _tag_validator.validate(_definition(payload))


def _validate_view(action: Action) -> ValidationResult:
    payload = action.payload
    if action.action_type is ActionType.CREATE:
        return _view_validator.validate(_definition(payload))
    if not payload:
        return ValidationResult().add_error(
            "payload", "Update payload cannot be empty", IssueCode.REQUIRED_FIELD
        )
    changes = payload.get("changes")
    candidate = changes if isinstance(changes, Mapping) else payload
    if "root" in candidate:
        return _view_validator.validate(candidate)
    return ValidationResult()


def _validate_script(action: Action) -> ValidationResult:
    try:
        script_type = script_type_for(action)
    except ValueError as exc:
        return ValidationResult().add_error("scriptType", str(exc), IssueCode.INVALID_VALUE)
    code = action.payload.get("code")
    return _script_validator.validate(code if isinstance(code, str) else None, script_type)


def _validate_named_query(action: Action) -> ValidationResult:
    payload = _definition(action.payload)
    if action.action_type is ActionType.CREATE:
        return _query_validator.validate(payload)
    return _query_validator.validate_update(payload)


def _definition(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Strip the underscore-prefixed control keys the parser adds."""
    return {key: value for key, value in payload.items() if not str(key).startswith("_")}


_PAYLOAD_VALIDATORS: Mapping[ResourceType, Callable[[Action], ValidationResult]] = {
    ResourceType.TAG: _validate_tag,
    ResourceType.VIEW: _validate_view,
    ResourceType.SCRIPT: _validate_script,
    ResourceType.NAMED_QUERY: _validate_named_query,
}
