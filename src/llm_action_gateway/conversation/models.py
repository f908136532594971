"""Conversation state, turn results and the streaming listener contract."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import ActionResult
from llm_action_gateway.providers.base import LLMMessage, ToolCall


class ConversationOwnershipError(PermissionError):
    """Raised when an identity touches a conversation it does not own."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} belongs to a different identity")
        self.conversation_id = conversation_id


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


@dataclass
class Conversation:
    """In-memory state of one conversation.

    ``messages`` is only read or appended while ``lock`` is held, and that
    lock is never held across a provider or handler call. ``turn_lock`` is
    held for a whole turn so turns on one conversation run one at a time.
    """

    id: str
    owner: AuthContext
    created_at: float
    last_activity: float
    messages: list[LLMMessage] = field(default_factory=list)
    current_project: str | None = None
    current_path: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def is_owned_by(self, auth: AuthContext) -> bool:
        return self.owner.same_identity(auth)

    def is_expired(self, now: float, timeout_seconds: float) -> bool:
        return now - self.last_activity > timeout_seconds

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class ConversationResponse:
    conversation_id: str
    message: str | None
    action_results: tuple[ActionResult, ...] = ()
    tokens_used: int = 0
    tool_iterations: int = 0
    correlation_id: str | None = None
    iteration_limit_reached: bool = False
    cancelled: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "action_results", tuple(self.action_results))


class StreamListener(Protocol):
    def on_token(self, token: str) -> None: ...

    def on_tool_call_start(self, tool_call: ToolCall) -> None: ...

    def on_tool_call_complete(
        self, tool_call: ToolCall, result: ActionResult | None, content: str
    ) -> None: ...

    def on_complete(self, response: ConversationResponse) -> None: ...

    def on_error(self, error: Exception) -> None: ...


class StreamCancellation:
    """Cooperative cancellation handle for one streaming turn.

    After :meth:`cancel` no further listener events are emitted and no new
    provider request is made. An action already executing runs to completion;
    tool calls not yet started are recorded as cancelled.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled
