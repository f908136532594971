"""Turns model tool calls into validated :class:`Action` objects."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from llm_action_gateway.domain.actions import Action, ActionOptions
from llm_action_gateway.providers.base import ToolArgumentParseError, ToolCall
from llm_action_gateway.tools.registry import ToolRegistry, ToolSpec
from llm_action_gateway.utils.jsonschema import describe_violations, validate_arguments

logger = logging.getLogger(__name__)

# Used when create_view is called without a root component.
DEFAULT_VIEW_ROOT: Mapping[str, Any] = {
    "type": "ia.container.flex",
    "props": {"direction": "column"},
}

_OPTION_KEYS = ("dryRun", "force", "comment")

_TAG_CONFIG_KEYS = (
    "tagType",
    "dataType",
    "value",
    "engUnit",
    "documentation",
    "opcItemPath",
    "expression",
    "typeId",
)
_TAG_UPDATE_KEYS = ("documentation", "engUnit", "expression", "value")
_SCRIPT_KEYS = ("code", "documentation", "acknowledgeWarnings")
_NAMED_QUERY_KEYS = (
    "queryType",
    "database",
    "query",
    "parameters",
    "fallbackValue",
    "cacheEnabled",
    "cacheExpiry",
)

PayloadBuilder = Callable[[Mapping[str, Any]], tuple[str, dict[str, Any]]]


def _pick(args: Mapping[str, Any], keys: Iterable[str]) -> dict[str, Any]:
    return {key: args[key] for key in keys if key in args}


def _join(*segments: str | None) -> str:
    return "/".join(segment.strip("/") for segment in segments if segment)


def _listing(*segments: str | None) -> str:
    return _join(*segments) + "/*"


def tag_name_from_path(tag_path: str) -> str:
    """Last path element of ``[provider]Folder/Tag``, without the provider."""
    path = tag_path.rsplit("]", 1)[-1] if tag_path.startswith("[") else tag_path
    return path.rstrip("/").rsplit("/", 1)[-1]


class ActionParser:
    """Maps a tool call onto an action.

    Arguments are decoded, checked against the tool's JSON Schema, and then
    shaped into a resource path and payload. Any failure raises
    :class:`ToolArgumentParseError`; the orchestrator reports it back to the
    model as a tool result instead of executing anything.
    """

    def __init__(self, registry: ToolRegistry | None = None) -> None:
        self._registry = registry or ToolRegistry()
        self._builders: dict[str, PayloadBuilder] = {
            "create_tag": self._create_tag,
            "read_tag": self._read_tag,
            "update_tag": self._update_tag,
            "delete_tag": self._delete_tag,
            "write_tag_value": self._write_tag_value,
            "list_tags": self._list_tags,
            "create_view": self._create_view,
            "read_view": self._view,
            "update_view": self._update_view,
            "delete_view": self._view,
            "list_views": self._list_views,
            "list_projects": self._list_projects,
            "read_project": self._read_project,
            "create_script": self._write_script,
            "read_script": self._script,
            "update_script": self._write_script,
            "delete_script": self._script,
            "list_scripts": self._list_scripts,
            "create_named_query": self._write_named_query,
            "read_named_query": self._named_query,
            "update_named_query": self._write_named_query,
            "delete_named_query": self._named_query,
            "list_named_queries": self._list_named_queries,
        }

    def parse(self, tool_call: ToolCall, correlation_id: str | None = None) -> Action:
        spec = self._registry.get(tool_call.name)
        builder = self._builders.get(tool_call.name)
        if spec is None or builder is None:
            raise ToolArgumentParseError(f"Unknown tool: {tool_call.name}")

        args = tool_call.parsed_arguments()
        self._check_schema(spec, args)
        resource_path, payload = builder(args)
        logger.debug("Parsed tool call %s -> %s", tool_call.name, resource_path)
        return Action.create(
            spec.action_type,
            spec.resource_type,
            resource_path,
            payload,
            ActionOptions.from_mapping(_pick(args, _OPTION_KEYS)),
            correlation_id=correlation_id,
        )

    @staticmethod
    def _check_schema(spec: ToolSpec, args: Mapping[str, Any]) -> None:
        violations = validate_arguments(spec.input_schema, args)
        if violations:
            raise ToolArgumentParseError(
                f"Invalid arguments for {spec.name}: {describe_violations(violations)}"
            )

    # Tags

    @staticmethod
    def _create_tag(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        tag_path = args["tagPath"]
        payload = _pick(args, _TAG_CONFIG_KEYS)
        payload["name"] = tag_name_from_path(tag_path)
        return tag_path, payload

    @staticmethod
    def _read_tag(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return args["tagPath"], _pick(args, ("includeValue", "includeConfig"))

    @staticmethod
    def _update_tag(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        payload = dict(args.get("changes") or {})
        payload.update(_pick(args, _TAG_UPDATE_KEYS))
        return args["tagPath"], payload

    @staticmethod
    def _delete_tag(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return args["tagPath"], {"recursive": bool(args.get("recursive", False))}

    @staticmethod
    def _write_tag_value(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return args["tagPath"], {"value": args["value"], "_writeValueOnly": True}

    @staticmethod
    def _list_tags(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        parent = args["parentPath"]
        payload = {"recursive": bool(args.get("recursive", False))}
        payload.update(_pick(args, ("filter",)))
        # "*" alone lists the providers themselves.
        return ("*" if parent == "*" else f"{parent.rstrip('/')}/*"), payload

    # Views

    @staticmethod
    def _view(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _join(args["projectName"], args["viewPath"]), {}

    @staticmethod
    def _create_view(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        payload: dict[str, Any] = {"root": args.get("root") or dict(DEFAULT_VIEW_ROOT)}
        payload.update(_pick(args, ("params",)))
        return _join(args["projectName"], args["viewPath"]), payload

    @staticmethod
    def _update_view(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _join(args["projectName"], args["viewPath"]), _pick(args, ("changes", "jsonPatch"))

    @staticmethod
    def _list_views(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        path = _listing(args["projectName"], args.get("parentPath"))
        return path, {"recursive": bool(args.get("recursive", True))}

    # Projects

    @staticmethod
    def _list_projects(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return "*", {"includeDisabled": bool(args.get("includeDisabled", False))}

    @staticmethod
    def _read_project(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return args["projectName"], {}

    # Scripts

    @staticmethod
    def _script_path(args: Mapping[str, Any]) -> str:
        return _join(args["projectName"], args["scriptType"], args["scriptPath"])

    def _script(self, args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return self._script_path(args), {}

    def _write_script(self, args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        payload = _pick(args, _SCRIPT_KEYS)
        payload["scriptType"] = args["scriptType"]
        return self._script_path(args), payload

    @staticmethod
    def _list_scripts(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _listing(args["projectName"], args["scriptType"], args.get("parentPath")), {}

    # Named queries

    @staticmethod
    def _named_query(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _join(args["projectName"], args["queryPath"]), {}

    @staticmethod
    def _write_named_query(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _join(args["projectName"], args["queryPath"]), _pick(args, _NAMED_QUERY_KEYS)

    @staticmethod
    def _list_named_queries(args: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        return _listing(args["projectName"], args.get("parentPath")), {}
