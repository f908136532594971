"""JSON Schema validation wrapper for tool-call arguments."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as _JsonSchemaError

_VALIDATOR_TO_TYPE = {
    "required": "missing_required",
    "type": "invalid_type",
    "enum": "enum_violation",
    "pattern": "pattern_mismatch",
    "minLength": "min_length_violation",
    "maxLength": "max_length_violation",
    "minimum": "minimum_violation",
    "maximum": "maximum_violation",
    "additionalProperties": "additional_property",
}


@dataclass
class SchemaViolation:
    """Structured schema violation.

    Attributes:
        type: Violation category (missing_required, invalid_type, enum_violation, ...).
        message: Human-readable message from the validator.
        path: Dotted path to the offending argument, or None for the root object.
        hint: Actionable suggestion for the model to fix its call.
    """

    type: str
    message: str
    path: str | None = None
    hint: str | None = None

    def render(self) -> str:
        location = self.path or "arguments"
        text = f"{location}: {self.message}"
        if self.hint:
            text = f"{text} ({self.hint})"
        return text


@lru_cache(maxsize=128)
def _validator_for(schema_json: str) -> Draft202012Validator:
    return Draft202012Validator(json.loads(schema_json))


def validate_arguments(
    schema: Mapping[str, object],
    payload: Mapping[str, object],
) -> list[SchemaViolation]:
    """Validate tool arguments against a JSON Schema.

    Args:
        schema: JSON Schema to validate against.
        payload: Decoded tool arguments.

    Returns:
        List of SchemaViolation objects, empty when the payload is valid.
    """
    validator = _validator_for(json.dumps(schema, sort_keys=True))
    violations: list[SchemaViolation] = []
    for error in sorted(validator.iter_errors(dict(payload)), key=_error_sort_key):
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else None
        violations.append(
            SchemaViolation(
                type=_VALIDATOR_TO_TYPE.get(str(error.validator), "validation_error"),
                message=error.message,
                path=path,
                hint=_hint_for(error),
            )
        )
    return violations


def describe_violations(violations: list[SchemaViolation]) -> str:
    return "; ".join(violation.render() for violation in violations)


def _error_sort_key(error: _JsonSchemaError) -> tuple[str, str]:
    return (".".join(str(p) for p in error.absolute_path), error.message)


def _hint_for(error: _JsonSchemaError) -> str | None:
    if error.validator == "required":
        return "add the missing field"
    if error.validator == "type":
        return f"expected type '{error.validator_value}'"
    if error.validator == "enum" and error.validator_value:
        return "use one of: " + ", ".join(str(v) for v in error.validator_value)
    if error.validator == "additionalProperties":
        return "remove the unexpected property or check for typos"
    return None
