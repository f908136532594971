"""Tag configuration checks."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from llm_action_gateway.validators.results import IssueCode, ValidationResult

VALID_TAG_TYPES = frozenset(
    {
        "AtomicTag",
        "UdtInstance",
        "UdtDefinition",
        "Folder",
        "OpcTag",
        "ExpressionTag",
        "QueryTag",
        "DerivedTag",
        "ReferenceTag",
    }
)

VALID_DATA_TYPES = frozenset(
    {
        "Int1",
        "Int2",
        "Int4",
        "Int8",
        "Float4",
        "Float8",
        "Boolean",
        "String",
        "DateTime",
        "DataSet",
        "Document",
        "Text",
        "BooleanArray",
        "IntegerArray",
        "LongArray",
        "FloatArray",
        "DoubleArray",
        "StringArray",
        "DateTimeArray",
    }
)

VALID_OPC_ACCESS_MODES = frozenset({"ReadWrite", "ReadOnly", "WriteOnly"})

# Tag types that cannot exist without one of the listed fields.
_TYPE_REQUIREMENTS: Mapping[str, tuple[str, tuple[str, ...], str]] = {
    "UdtInstance": ("typeId", ("typeId",), "UDT Instance requires typeId to be specified"),
    "ExpressionTag": (
        "expression",
        ("expression",),
        "Expression tag requires expression to be specified",
    ),
    "OpcTag": ("opcItemPath", ("opcItemPath",), "OPC tag requires opcItemPath to be specified"),
    "QueryTag": ("query", ("query", "queryType"), "Query tag requires query configuration"),
}

_TAG_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_INVALID_NAME_CHARS = re.compile(r"[\\<>\"'|?*]")
_MAX_RECOMMENDED_NAME = 100


def _sorted(values: frozenset[str]) -> str:
    return ", ".join(sorted(values))


class TagConfigValidator:
    def validate(self, config: Mapping[str, Any] | None) -> ValidationResult:
        result = ValidationResult()
        if config is None:
            return result.add_error(
                "config", "Tag configuration cannot be null", IssueCode.REQUIRED_FIELD
            )
        self._check_name(config, result)
        self._check_tag_type(config, result)
        self._check_data_type(config, result)
        self._check_opc(config, result)
        self._check_expression(config, result)
        self._check_engineering_range(config, result)
        self._check_alarms(config, result)
        return result

    @staticmethod
    def _check_name(config: Mapping[str, Any], result: ValidationResult) -> None:
        if "name" not in config or config["name"] is None:
            result.add_warning("Tag name not specified. Will be derived from path if creating.")
            return
        name = str(config["name"])
        if not name:
            result.add_error("name", "Tag name cannot be empty", IssueCode.REQUIRED_FIELD)
            return
        if "/" in name or "\\" in name:
            result.add_error(
                "name",
                "Tag name cannot contain path separators (/ or \\)",
                IssueCode.INVALID_FORMAT,
            )
        if _INVALID_NAME_CHARS.search(name):
            result.add_error("name", "Tag name contains invalid characters", IssueCode.INVALID_FORMAT)
        if not _TAG_NAME.match(name):
            result.add_warning(
                "name: Tag name contains special characters. Recommended: use only letters, "
                "numbers, and underscores, starting with a letter or underscore."
            )
        if len(name) > _MAX_RECOMMENDED_NAME:
            result.add_warning(
                "name: Tag name is very long (>100 chars). Consider a shorter name for clarity."
            )

    @staticmethod
    def _check_tag_type(config: Mapping[str, Any], result: ValidationResult) -> None:
        tag_type = config.get("tagType")
        if tag_type is None:
            return
        tag_type = str(tag_type)
        if tag_type not in VALID_TAG_TYPES:
            result.add_error(
                "tagType",
                f"Invalid tag type: {tag_type}. Valid types: {_sorted(VALID_TAG_TYPES)}",
                IssueCode.INVALID_VALUE,
            )
            return
        requirement = _TYPE_REQUIREMENTS.get(tag_type)
        if requirement is not None:
            field_name, any_of, message = requirement
            if not any(key in config for key in any_of):
                result.add_error(field_name, message, IssueCode.REQUIRED_FIELD)

    @staticmethod
    def _check_data_type(config: Mapping[str, Any], result: ValidationResult) -> None:
        data_type = config.get("dataType")
        if data_type is not None and str(data_type) not in VALID_DATA_TYPES:
            result.add_error(
                "dataType",
                f"Invalid data type: {data_type}. Valid types: {_sorted(VALID_DATA_TYPES)}",
                IssueCode.INVALID_VALUE,
            )

    @staticmethod
    def _check_opc(config: Mapping[str, Any], result: ValidationResult) -> None:
        item_path = config.get("opcItemPath")
        if item_path is not None:
            item_path = str(item_path)
            if not item_path:
                result.add_error(
                    "opcItemPath", "OPC item path cannot be empty", IssueCode.REQUIRED_FIELD
                )
            if "[" not in item_path or "]" not in item_path:
                result.add_warning(
                    "opcItemPath: OPC item path may be malformed. "
                    "Expected format: [ConnectionName]path/to/item"
                )
        read_type = config.get("opcReadType")
        if read_type is not None and str(read_type) not in VALID_OPC_ACCESS_MODES:
            result.add_warning(
                f"opcReadType: Unknown OPC read type: {read_type}. "
                f"Expected: {_sorted(VALID_OPC_ACCESS_MODES)}"
            )

    @staticmethod
    def _check_expression(config: Mapping[str, Any], result: ValidationResult) -> None:
        expression = config.get("expression")
        if expression is None:
            return
        expression = str(expression)
        if not expression:
            result.add_error("expression", "Expression cannot be empty", IssueCode.REQUIRED_FIELD)
            return
        for opener, closer, label in (
            ("{", "}", "curly braces {}"),
            ("[", "]", "square brackets []"),
            ("(", ")", "parentheses ()"),
        ):
            if expression.count(opener) != expression.count(closer):
                result.add_warning(f"expression: Expression may have unbalanced {label}")
        if "runscript" in expression.lower():
            result.add_warning(
                "expression: Expression uses runScript(). Consider using expression "
                "functions instead for better performance."
            )

    @staticmethod
    def _check_engineering_range(config: Mapping[str, Any], result: ValidationResult) -> None:
        low = config.get("engLow")
        high = config.get("engHigh")
        if low is None or high is None:
            return
        try:
            low_value = float(low)
            high_value = float(high)
        except (TypeError, ValueError):
            result.add_error(
                "engRange", "Engineering limits must be numeric values", IssueCode.INVALID_TYPE
            )
            return
        if low_value >= high_value:
            result.add_error(
                "engRange",
                f"Engineering low ({low_value}) must be less than high ({high_value})",
                IssueCode.INVALID_RANGE,
            )

    @staticmethod
    def _check_alarms(config: Mapping[str, Any], result: ValidationResult) -> None:
        alarms = config.get("alarms")
        if alarms is None:
            return
        if not isinstance(alarms, Mapping):
            result.add_error("alarms", "Alarms must be an object", IssueCode.INVALID_TYPE)
            return
        for alarm_name, alarm in alarms.items():
            if not isinstance(alarm, Mapping):
                result.add_error(
                    f"alarms.{alarm_name}",
                    "Alarm configuration must be an object",
                    IssueCode.INVALID_TYPE,
                )
                continue
            if "setpointA" not in alarm and "setpoint" not in alarm:
                result.add_warning(f"alarms.{alarm_name}: Alarm should have a setpoint defined")
