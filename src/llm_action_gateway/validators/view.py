"""View (component tree) configuration checks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from llm_action_gateway.validators.results import IssueCode, ValidationResult

KNOWN_COMPONENT_TYPES = frozenset(
    {
        "ia.container.flex",
        "ia.container.coord",
        "ia.container.column",
        "ia.container.row",
        "ia.container.split",
        "ia.container.tab",
        "ia.container.card",
        "ia.container.breakpoint",
        "ia.display.label",
        "ia.display.icon",
        "ia.display.image",
        "ia.display.markdown",
        "ia.display.gauge",
        "ia.display.led-display",
        "ia.display.progress-bar",
        "ia.display.view",
        "ia.display.iframe",
        "ia.input.button",
        "ia.input.text-field",
        "ia.input.text-area",
        "ia.input.dropdown",
        "ia.input.checkbox",
        "ia.input.radio-group",
        "ia.input.slider",
        "ia.input.toggle-switch",
        "ia.input.date-time-input",
        "ia.input.numeric-entry-field",
        "ia.chart.pie",
        "ia.chart.bar",
        "ia.chart.xy-chart",
        "ia.chart.time-series",
        "ia.table.table",
        "ia.table.power-table",
    }
)

_CODE_BINDINGS = frozenset({"expr", "script"})
_PATH_BINDINGS = {"tag": "Tag binding requires a path", "property": "Property binding requires a path"}


class ViewConfigValidator:
    """Walks a view definition and reports structural problems.

    A definition either wraps its component tree in ``root`` or is itself
    the root component (it carries a ``type``). Unknown component types are
    warnings because custom components are legitimate; bindings and event
    actions that run code are flagged for review.
    """

    def validate(self, config: Mapping[str, Any] | None) -> ValidationResult:
        result = ValidationResult()
        if not config:
            return result.add_error(
                "root", "View configuration cannot be empty", IssueCode.REQUIRED_FIELD
            )

        if "root" in config:
            root = config["root"]
            if isinstance(root, Mapping):
                self._check_component(root, "root", result)
            else:
                result.add_error("root", "Root component must be an object", IssueCode.INVALID_TYPE)
        elif "type" in config:
            self._check_component(config, "root", result)
        else:
            result.add_error("root", "View must have a root component", IssueCode.REQUIRED_FIELD)

        params = config.get("params")
        if params is not None and not isinstance(params, Mapping):
            result.add_error("params", "Params must be an object", IssueCode.INVALID_TYPE)
        return result

    def _check_component(
        self, component: Mapping[str, Any], path: str, result: ValidationResult
    ) -> None:
        if "type" not in component:
            result.add_error(f"{path}.type", "Component must have a type", IssueCode.REQUIRED_FIELD)
            return

        component_type = str(component["type"])
        if component_type not in KNOWN_COMPONENT_TYPES and not component_type.startswith("ia."):
            result.add_warning(
                f"{path}.type: Unknown component type: {component_type}. "
                "This may be a custom component."
            )

        props = component.get("props")
        if props is not None:
            if isinstance(props, Mapping):
                self._check_props(props, f"{path}.props", result)
            else:
                result.add_error(f"{path}.props", "Props must be an object", IssueCode.INVALID_TYPE)

        children = component.get("children")
        if isinstance(children, list):
            for index, child in enumerate(children):
                if isinstance(child, Mapping):
                    self._check_component(child, f"{path}.children[{index}]", result)

        events = component.get("events")
        if isinstance(events, Mapping):
            self._check_events(events, f"{path}.events", result)

    @staticmethod
    def _check_props(props: Mapping[str, Any], path: str, result: ValidationResult) -> None:
        for name, value in props.items():
            if isinstance(value, Mapping) and "type" in value and "config" in value:
                _check_binding(value, f"{path}.{name}", result)

    @staticmethod
    def _check_events(events: Mapping[str, Any], path: str, result: ValidationResult) -> None:
        for event_name, event in events.items():
            if not isinstance(event, Mapping):
                continue
            actions = event.get("actions")
            if not isinstance(actions, list):
                continue
            for index, action in enumerate(actions):
                if isinstance(action, Mapping) and action.get("type") == "script":
                    result.add_warning(
                        f"{path}.{event_name}.actions[{index}]: Script action detected. "
                        "Review for security implications."
                    )


def _check_binding(binding: Mapping[str, Any], path: str, result: ValidationResult) -> None:
    binding_type = str(binding.get("type"))
    if binding_type in _CODE_BINDINGS:
        result.add_warning(f"{path}: Binding type '{binding_type}' executes code. Review carefully.")
    message = _PATH_BINDINGS.get(binding_type)
    if message is None:
        return
    binding_config = binding.get("config")
    if isinstance(binding_config, Mapping) and not binding_config.get("path"):
        result.add_error(f"{path}.config.path", message, IssueCode.REQUIRED_FIELD)
