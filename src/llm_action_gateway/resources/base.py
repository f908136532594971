"""Contract for the back-ends that actually mutate managed resources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import Action, ActionResult, ActionType, ResourceType


class ResourceNotFoundError(LookupError):
    def __init__(self, resource_type: ResourceType, resource_path: str) -> None:
        super().__init__(f"{resource_type.value} not found: {resource_path}")
        self.resource_type = resource_type
        self.resource_path = resource_path


class ResourceConflictError(Exception):
    def __init__(self, resource_type: ResourceType, resource_path: str) -> None:
        super().__init__(f"{resource_type.value} already exists: {resource_path}")
        self.resource_type = resource_type
        self.resource_path = resource_path


class ResourceHandler(ABC):
    """One implementation per resource type.

    Operations receive the action, the caller's identity and the correlation
    context, and return an :class:`ActionResult`. Handlers own path parsing
    and the mutation itself; policy, validation and confirmation have already
    happened by the time they are called. Raise
    :class:`ResourceNotFoundError` or :class:`ResourceConflictError` for the
    matching outcomes; anything else is reported as an execution error.
    """

    @property
    @abstractmethod
    def resource_type(self) -> ResourceType: ...

    @abstractmethod
    async def create(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult: ...

    @abstractmethod
    async def read(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult: ...

    @abstractmethod
    async def update(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult: ...

    @abstractmethod
    async def delete(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult: ...

    @abstractmethod
    async def list(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult: ...

    @abstractmethod
    async def exists(self, resource_path: str, auth: AuthContext) -> bool: ...

    async def preview(self, action: Action, auth: AuthContext) -> dict[str, Any]:
        """Describe what ``action`` would do, without side effects."""
        return {
            "action": action.action_type.value,
            "resourceType": action.resource_type.value,
            "resourcePath": action.resource_path,
            "changes": dict(action.payload),
        }

    async def dispatch(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        operation = {
            ActionType.CREATE: self.create,
            ActionType.READ: self.read,
            ActionType.UPDATE: self.update,
            ActionType.DELETE: self.delete,
            ActionType.LIST: self.list,
        }[action.action_type]
        return await operation(action, auth, correlation)
