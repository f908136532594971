"""Dictionary-backed resource handler.

Stores one configuration mapping per resource path. It backs the test suite
and lets the engine run end to end without a live platform; production
deployments register their own :class:`ResourceHandler` per resource type.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from typing import Any

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import Action, ActionResult, ResourceType
from llm_action_gateway.resources.base import (
    ResourceConflictError,
    ResourceHandler,
    ResourceNotFoundError,
)
from llm_action_gateway.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_LIST_ALL = "*"
_LIST_SUFFIX = "/*"
_PATCH_OPS = frozenset({"add", "replace", "remove"})


def _definition(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in payload.items() if not str(k).startswith("_")}


def _children_prefix(path: str) -> str:
    """Prefix shared by everything below ``path``; tag providers end in ``]``."""
    base = path.rstrip("/")
    return base if base.endswith("]") else base + "/"


def _apply_patch(document: dict[str, Any], operations: list[Mapping[str, Any]]) -> list[str]:
    """Apply add/replace/remove JSON Patch operations in place.

    Returns a warning per operation that could not be applied.
    """
    warnings = []
    for index, operation in enumerate(operations):
        op = operation.get("op")
        pointer = str(operation.get("path", ""))
        if op not in _PATCH_OPS or not pointer.startswith("/"):
            warnings.append(f"jsonPatch[{index}]: unsupported operation {op!r} at {pointer!r}")
            continue
        *parents, leaf = [
            part.replace("~1", "/").replace("~0", "~") for part in pointer[1:].split("/")
        ]
        target: Any = document
        for part in parents:
            target = target.get(part) if isinstance(target, dict) else None
            if target is None:
                break
        if not isinstance(target, dict):
            warnings.append(f"jsonPatch[{index}]: path not found: {pointer}")
            continue
        if op == "remove":
            if target.pop(leaf, None) is None:
                warnings.append(f"jsonPatch[{index}]: path not found: {pointer}")
        else:
            target[leaf] = copy.deepcopy(operation.get("value"))
    return warnings


class InMemoryResourceHandler(ResourceHandler):
    def __init__(
        self,
        resource_type: ResourceType,
        initial: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self._resource_type = resource_type
        self._lock = threading.Lock()
        self._store: dict[str, dict[str, Any]] = {
            path: _definition(config) for path, config in (initial or {}).items()
        }

    @property
    def resource_type(self) -> ResourceType:
        return self._resource_type

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._store)

    async def exists(self, resource_path: str, auth: AuthContext) -> bool:
        with self._lock:
            return resource_path in self._store

    async def preview(self, action: Action, auth: AuthContext) -> dict[str, Any]:
        preview = await super().preview(action, auth)
        with self._lock:
            current = self._store.get(action.resource_path)
        if current is not None:
            preview["current"] = copy.deepcopy(current)
        return preview

    async def create(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        path = action.resource_path
        record = _definition(action.payload)
        record["_meta"] = {"createdBy": auth.user_id, "createdAt": utc_now_iso(), "version": 1}
        with self._lock:
            if path in self._store:
                raise ResourceConflictError(self._resource_type, path)
            self._store[path] = record
        logger.info(
            "Created %s %s (corr=%s)", self._resource_type.value, path, correlation.correlation_id
        )
        return ActionResult.success(
            action.correlation_id,
            f"Created {self._resource_type.value} '{path}'",
            {"path": path, "config": copy.deepcopy(record)},
        )

    async def read(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        path = action.resource_path
        with self._lock:
            record = self._store.get(path)
            if record is None:
                raise ResourceNotFoundError(self._resource_type, path)
            record = copy.deepcopy(record)
        if action.payload.get("includeValue") is False:
            record.pop("value", None)
        return ActionResult.success(
            action.correlation_id,
            f"Read {self._resource_type.value} '{path}'",
            {"path": path, "config": record},
        )

    async def update(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        path = action.resource_path
        payload = action.payload
        warnings: list[str] = []
        with self._lock:
            current = self._store.get(path)
            if current is None:
                raise ResourceNotFoundError(self._resource_type, path)
            meta = dict(current.get("_meta", {}))
            if action.is_value_write:
                updated = copy.deepcopy(current)
                updated["value"] = copy.deepcopy(payload["value"])
            else:
                changes = payload.get("changes")
                definition = _definition(payload)
                definition.pop("changes", None)
                patch = definition.pop("jsonPatch", None)
                if isinstance(changes, Mapping):
                    definition.update(copy.deepcopy(dict(changes)))
                if action.merge:
                    updated = copy.deepcopy(current)
                    updated.update(definition)
                else:
                    updated = definition
                if isinstance(patch, list):
                    warnings.extend(_apply_patch(updated, patch))
            meta.update(
                {
                    "modifiedBy": auth.user_id,
                    "modifiedAt": utc_now_iso(),
                    "version": int(meta.get("version", 0)) + 1,
                }
            )
            updated["_meta"] = meta
            self._store[path] = updated
            result_config = copy.deepcopy(updated)
        return ActionResult.success(
            action.correlation_id,
            f"Updated {self._resource_type.value} '{path}'",
            {"path": path, "config": result_config},
            warnings,
        )

    async def delete(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        path = action.resource_path
        prefix = _children_prefix(path)
        with self._lock:
            if path not in self._store:
                raise ResourceNotFoundError(self._resource_type, path)
            removed = [path]
            del self._store[path]
            if action.payload.get("recursive"):
                children = [key for key in self._store if key.startswith(prefix)]
                for key in children:
                    del self._store[key]
                removed.extend(children)
        return ActionResult.success(
            action.correlation_id,
            f"Deleted {self._resource_type.value} '{path}'",
            {"path": path, "deleted": removed},
        )

    async def list(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        path = action.resource_path
        recursive = bool(action.payload.get("recursive", True))
        name_filter = str(action.payload.get("filter") or "").lower()
        if path == _LIST_ALL:
            parent = ""
        elif path.endswith(_LIST_SUFFIX):
            parent = _children_prefix(path[: -len(_LIST_SUFFIX)])
        else:
            parent = _children_prefix(path)

        with self._lock:
            paths = sorted(self._store)
        items = []
        for key in paths:
            if parent and not key.startswith(parent):
                continue
            remainder = key[len(parent):]
            if not recursive and "/" in remainder:
                continue
            if name_filter and name_filter not in remainder.rsplit("/", 1)[-1].lower():
                continue
            items.append({"path": key, "name": remainder.rsplit("/", 1)[-1]})
        return ActionResult.success(
            action.correlation_id,
            f"Found {len(items)} {self._resource_type.value} item(s)",
            {"items": items, "count": len(items)},
        )
