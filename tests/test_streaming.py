from __future__ import annotations

from collections.abc import Callable

import pytest

from llm_action_gateway.conversation.manager import CANCELLED_TOOL_RESULT, ConversationManager
from llm_action_gateway.conversation.models import (
    ConversationOwnershipError,
    StreamCancellation,
)
from llm_action_gateway.domain.actions import ActionStatus, ResourceType
from llm_action_gateway.execution.executor import ActionExecutor
from llm_action_gateway.policy.engine import PolicyEngine
from llm_action_gateway.policy.models import PolicyConfig
from llm_action_gateway.providers.base import LLMResponse, MessageRole, ProviderError, ToolCall
from llm_action_gateway.rate_limit import RateLimitConfig, RateLimiter, RateLimitExceededError
from llm_action_gateway.resources.memory import InMemoryResourceHandler
from llm_action_gateway.resources.registry import HandlerRegistry

SPEED = "[default]Line1/Speed"


class Recorder:
    """Stream listener that records every event it receives."""

    def __init__(self, on_event: Callable[[str, tuple], None] | None = None) -> None:
        self.events: list[tuple[str, tuple]] = []
        self._on_event = on_event

    def _record(self, name: str, *args) -> None:
        self.events.append((name, args))
        if self._on_event is not None:
            self._on_event(name, args)

    def on_token(self, token):
        self._record("on_token", token)

    def on_tool_call_start(self, tool_call):
        self._record("on_tool_call_start", tool_call)

    def on_tool_call_complete(self, tool_call, result, content):
        self._record("on_tool_call_complete", tool_call, result, content)

    def on_complete(self, response):
        self._record("on_complete", response)

    def on_error(self, error):
        self._record("on_error", error)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def _read_tag(call_id: str) -> ToolCall:
    return ToolCall(id=call_id, name="read_tag", arguments={"tagPath": SPEED})


@pytest.fixture
def tags() -> InMemoryResourceHandler:
    return InMemoryResourceHandler(ResourceType.TAG, {SPEED: {"tagType": "AtomicTag"}})


@pytest.fixture
def build(tags, audit):
    def _build(provider, rate_limiter=None) -> ConversationManager:
        policy = PolicyEngine(PolicyConfig(), audit=audit)
        executor = ActionExecutor(policy, HandlerRegistry([tags]), audit)
        return ConversationManager(provider, executor, policy, audit, rate_limiter=rate_limiter)

    return _build


@pytest.mark.asyncio
async def test_text_response_streams_tokens_then_completes(build, make_provider, make_auth):
    manager = build(make_provider([LLMResponse(content="Hello")]))
    listener = Recorder()

    response = await manager.process_message_streaming("c1", "hi", make_auth(), listener)

    assert response.message == "Hello"
    assert listener.names == ["on_token", "on_complete"]
    assert listener.events[0][1] == ("Hello",)
    assert listener.events[1][1] == (response,)


@pytest.mark.asyncio
async def test_tool_calls_are_announced(build, make_provider, make_auth):
    provider = make_provider(
        [LLMResponse(tool_calls=(_read_tag("t1"),)), LLMResponse(content="It is there")]
    )
    listener = Recorder()

    response = await build(provider).process_message_streaming(
        "c1", "read speed", make_auth("tag:read"), listener
    )

    assert listener.names == [
        "on_tool_call_start",
        "on_tool_call_complete",
        "on_token",
        "on_complete",
    ]
    _, (call, result, content) = listener.events[1]
    assert call.id == "t1"
    assert result.status is ActionStatus.SUCCESS
    assert content.startswith("Status: SUCCESS")
    assert response.tool_iterations == 1


@pytest.mark.asyncio
async def test_cancel_between_tool_calls(build, make_provider, make_auth):
    cancel = StreamCancellation()

    def cancel_on_first_start(name, args):
        if name == "on_tool_call_start":
            cancel.cancel("user pressed stop")

    provider = make_provider(
        [
            LLMResponse(tool_calls=(_read_tag("t1"), _read_tag("t2"))),
            LLMResponse(content="never requested"),
        ]
    )
    listener = Recorder(cancel_on_first_start)
    manager = build(provider)
    auth = make_auth("tag:read")

    response = await manager.process_message_streaming("c1", "read", auth, listener, cancel)

    assert response.cancelled
    assert len(provider.requests) == 1
    # The action already underway finished; the second never started.
    assert [r.status for r in response.action_results] == [ActionStatus.SUCCESS]
    assert listener.names == ["on_tool_call_start"]

    history = await manager.get_history("c1", auth)
    assert [m.role for m in history] == [
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.TOOL_RESULT,
        MessageRole.TOOL_RESULT,
    ]
    assert history[2].content.startswith("Status: SUCCESS")
    assert history[3].content == CANCELLED_TOOL_RESULT
    assert history[3].metadata["cancelled"] is True


@pytest.mark.asyncio
async def test_cancel_while_streaming_tokens(build, make_provider, make_auth):
    cancel = StreamCancellation()
    listener = Recorder(lambda name, args: cancel.cancel())
    provider = make_provider(
        [LLMResponse(content="Let me check", tool_calls=(_read_tag("t1"),))]
    )
    manager = build(provider)
    auth = make_auth("tag:read")

    response = await manager.process_message_streaming("c1", "read", auth, listener, cancel)

    assert response.cancelled
    assert response.message == "Let me check"
    assert response.action_results == ()
    assert listener.names == ["on_token"]
    history = await manager.get_history("c1", auth)
    assert history[-1].content == CANCELLED_TOOL_RESULT
    assert history[-2].tool_calls[0].id == "t1"


@pytest.mark.asyncio
async def test_cancelled_before_start(build, make_provider, make_auth):
    cancel = StreamCancellation()
    cancel.cancel()
    provider = make_provider([LLMResponse(content="unused")])
    listener = Recorder()

    response = await build(provider).process_message_streaming(
        "c1", "hi", make_auth(), listener, cancel
    )

    assert response.cancelled
    assert provider.requests == []
    assert listener.events == []


@pytest.mark.asyncio
async def test_provider_error_goes_to_listener(build, make_provider, make_auth):
    error = ProviderError.unauthorized("scripted")
    listener = Recorder()

    result = await build(make_provider([error])).process_message_streaming(
        "c1", "hi", make_auth(), listener
    )

    assert result is None
    assert listener.events == [("on_error", (error,))]
    assert not error.retryable


@pytest.mark.asyncio
async def test_ownership_error_goes_to_listener(build, make_provider, make_auth):
    manager = build(make_provider([LLMResponse(content="ok")]))
    await manager.process_message("c1", "hi", make_auth(user_id="alice"))
    listener = Recorder()

    result = await manager.process_message_streaming(
        "c1", "mine now", make_auth(user_id="mallory"), listener
    )

    assert result is None
    assert isinstance(listener.events[0][1][0], ConversationOwnershipError)


@pytest.mark.asyncio
async def test_rate_limit_goes_to_listener(build, make_provider, make_auth):
    limiter = RateLimiter(RateLimitConfig(requests_per_minute=0, burst_allowance=0))
    listener = Recorder()

    result = await build(
        make_provider([LLMResponse(content="ok")]), rate_limiter=limiter
    ).process_message_streaming("c1", "hi", make_auth(), listener)

    assert result is None
    assert isinstance(listener.events[0][1][0], RateLimitExceededError)


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_turn(build, make_provider, make_auth):
    def explode(name, args):
        raise RuntimeError("listener bug")

    response = await build(make_provider([LLMResponse(content="fine")])).process_message_streaming(
        "c1", "hi", make_auth(), Recorder(explode)
    )

    assert response.message == "fine"
