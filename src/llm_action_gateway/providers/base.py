"""Model provider contract and the message types exchanged with it."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from llm_action_gateway.providers.tokens import CharacterRatioEstimator, TokenEstimator


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class ToolCallingSupport(str, Enum):
    NATIVE = "native"
    NONE = "none"


class ToolArgumentParseError(ValueError):
    """Raised when tool-call arguments are not a JSON object or fail their schema."""


class ProviderError(Exception):
    """Upstream model failure.

    ``retryable`` is true for rate limiting and server-side failures and false
    for authentication and malformed-request failures.
    """

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def rate_limited(cls, provider_id: str, message: str = "Rate limited") -> "ProviderError":
        return cls(message, provider_id, 429, retryable=True)

    @classmethod
    def unauthorized(cls, provider_id: str, message: str = "Unauthorized") -> "ProviderError":
        return cls(message, provider_id, 401, retryable=False)

    @classmethod
    def server_error(
        cls, provider_id: str, status_code: int = 500, message: str = "Server error"
    ) -> "ProviderError":
        return cls(message, provider_id, status_code, retryable=True)

    @classmethod
    def bad_request(cls, provider_id: str, message: str = "Bad request") -> "ProviderError":
        return cls(message, provider_id, 400, retryable=False)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (provider={self.provider_id}, status={self.status_code})"
        return base


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str | Mapping[str, Any] | None = None

    def parsed_arguments(self) -> dict[str, Any]:
        """Return the arguments as a dict, decoding JSON text when needed."""
        raw = self.arguments
        if raw is None:
            return {}
        if isinstance(raw, Mapping):
            return dict(raw)
        if not raw.strip():
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ToolArgumentParseError(f"Invalid JSON in tool arguments: {exc.msg}") from exc
        if not isinstance(value, dict):
            raise ToolArgumentParseError(
                f"Tool arguments must be a JSON object, got {type(value).__name__}"
            )
        return value

    def __repr__(self) -> str:
        text = self.arguments if isinstance(self.arguments, str) else repr(self.arguments)
        if text and len(text) > 100:
            text = text[:100] + "..."
        return f"ToolCall(id={self.id!r}, name={self.name!r}, arguments={text!r})"


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Mapping[str, Any]

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool name is required")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
        }


@dataclass(frozen=True)
class LLMMessage:
    role: MessageRole
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def user(cls, content: str) -> "LLMMessage":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: Sequence[ToolCall] = ()
    ) -> "LLMMessage":
        return cls(MessageRole.ASSISTANT, content, tuple(tool_calls))

    @classmethod
    def system(cls, content: str) -> "LLMMessage":
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def tool_result(
        cls,
        tool_call_id: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> "LLMMessage":
        return cls(MessageRole.TOOL_RESULT, content, (), tool_call_id, metadata or {})

    def text_for_estimate(self) -> str:
        parts = [self.content or ""]
        for call in self.tool_calls:
            parts.append(call.name)
            if isinstance(call.arguments, str):
                parts.append(call.arguments)
            elif call.arguments:
                parts.append(json.dumps(dict(call.arguments), default=str))
        return "".join(parts)

    def __repr__(self) -> str:
        content = self.content
        if content and len(content) > 50:
            content = content[:50] + "..."
        return (
            f"LLMMessage(role={self.role.value}, content={content!r}, "
            f"tool_calls={len(self.tool_calls)})"
        )


@dataclass(frozen=True)
class LLMRequest:
    conversation_id: str
    messages: tuple[LLMMessage, ...]
    tools: tuple[ToolDefinition, ...] = ()
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    provider_options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "provider_options", MappingProxyType(dict(self.provider_options)))


@dataclass(frozen=True)
class LLMResponse:
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    id: str | None = None
    model: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_tool_use(self) -> bool:
        return self.stop_reason == "tool_use"


class StreamingCallback(Protocol):
    def on_token(self, token: str) -> None: ...

    def on_tool_call(self, tool_call: ToolCall) -> None: ...

    def on_complete(self, response: LLMResponse) -> None: ...

    def on_error(self, error: ProviderError) -> None: ...


class LLMProvider(ABC):
    """A chat model that can be asked to call tools.

    Implementations raise :class:`ProviderError` for upstream failures. The
    default :meth:`chat_streaming` replays a non-streaming :meth:`chat`
    response through the callback, so only providers with a real streaming
    transport need to override it.
    """

    def __init__(self, estimator: TokenEstimator | None = None) -> None:
        self._estimator = estimator or CharacterRatioEstimator()

    @property
    @abstractmethod
    def provider_id(self) -> str: ...

    @property
    def display_name(self) -> str:
        return self.provider_id

    @property
    def tool_calling_support(self) -> ToolCallingSupport:
        return ToolCallingSupport.NATIVE

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse: ...

    async def chat_streaming(
        self, request: LLMRequest, callback: StreamingCallback
    ) -> LLMResponse:
        try:
            response = await self.chat(request)
        except ProviderError as exc:
            callback.on_error(exc)
            raise
        if response.content:
            callback.on_token(response.content)
        for tool_call in response.tool_calls:
            callback.on_tool_call(tool_call)
        callback.on_complete(response)
        return response

    def estimate_tokens(self, text: str | None) -> int:
        return self._estimator.estimate(text)
