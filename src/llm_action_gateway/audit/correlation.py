"""Per-operation correlation carrier.

The context is an explicit value handed down the call chain (orchestrator ->
executor -> handler -> audit). Nothing is stored in thread-local or
context-variable state, so one event loop can serve many logical requests.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from llm_action_gateway.domain.actions import new_correlation_id
from llm_action_gateway.utils.time import utc_now_iso


@dataclass(frozen=True)
class CorrelationContext:
    correlation_id: str
    user_id: str | None = None
    parent_id: str | None = None
    started_at: str = field(default_factory=utc_now_iso)
    started_monotonic: float = field(default_factory=time.monotonic, repr=False)
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @classmethod
    def new(
        cls,
        user_id: str | None = None,
        correlation_id: str | None = None,
        **attributes: Any,
    ) -> "CorrelationContext":
        return cls(
            correlation_id=correlation_id or new_correlation_id(),
            user_id=user_id,
            attributes=attributes,
        )

    def child(self, correlation_id: str | None = None) -> "CorrelationContext":
        """Context for a sub-operation (e.g. one tool call inside a turn)."""
        return CorrelationContext(
            correlation_id=correlation_id or new_correlation_id(),
            user_id=self.user_id,
            parent_id=self.correlation_id,
            attributes=self.attributes,
        )

    def with_attribute(self, key: str, value: Any) -> "CorrelationContext":
        merged = dict(self.attributes)
        merged[key] = value
        return replace(self, attributes=merged)

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)
