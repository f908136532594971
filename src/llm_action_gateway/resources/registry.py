"""Handler lookup keyed by resource type."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from llm_action_gateway.domain.actions import ResourceType
from llm_action_gateway.resources.base import ResourceHandler

logger = logging.getLogger(__name__)


class HandlerRegistrationError(Exception):
    """Raised for duplicate registrations or missing required handlers."""

    def __init__(self, message: str, resource_types: Iterable[ResourceType] = ()) -> None:
        super().__init__(message)
        self.resource_types = tuple(resource_types)


class HandlerRegistry:
    def __init__(self, handlers: Iterable[ResourceHandler] = ()) -> None:
        self._handlers: dict[ResourceType, ResourceHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: ResourceHandler, replace: bool = False) -> None:
        resource_type = handler.resource_type
        if resource_type in self._handlers and not replace:
            raise HandlerRegistrationError(
                f"Handler already registered for resource type '{resource_type.value}'",
                (resource_type,),
            )
        self._handlers[resource_type] = handler
        logger.debug(
            "Registered %s for resource type %s", type(handler).__name__, resource_type.value
        )

    def get(self, resource_type: ResourceType) -> ResourceHandler | None:
        return self._handlers.get(resource_type)

    def resource_types(self) -> list[ResourceType]:
        return list(self._handlers)

    def validate(self, required: Iterable[ResourceType]) -> None:
        """Fail fast at startup when a required resource type has no handler."""
        missing = [rt for rt in required if rt not in self._handlers]
        if missing:
            names = ", ".join(rt.value for rt in missing)
            raise HandlerRegistrationError(f"No handler registered for: {names}", missing)

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
