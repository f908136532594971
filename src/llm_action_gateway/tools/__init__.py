"""Model-facing tool definitions."""

from __future__ import annotations

from llm_action_gateway.tools.registry import ToolRegistry, ToolSpec, get_tool_specs

__all__ = ["ToolRegistry", "ToolSpec", "get_tool_specs"]
