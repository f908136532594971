"""Multi-turn tool-calling loop between a user, a model provider and the executor."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.audit.trail import AuditTrail
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.config import ConversationSettings
from llm_action_gateway.conversation.models import (
    Conversation,
    ConversationNotFoundError,
    ConversationOwnershipError,
    ConversationResponse,
    StreamCancellation,
    StreamListener,
)
from llm_action_gateway.domain.actions import ActionResult, ActionType, ResourceType
from llm_action_gateway.execution.executor import ActionExecutor
from llm_action_gateway.execution.parser import ActionParser
from llm_action_gateway.logging_utils import sanitize_log_value
from llm_action_gateway.policy.engine import PolicyEngine
from llm_action_gateway.providers.base import (
    LLMMessage,
    LLMProvider,
    LLMRequest,
    LLMResponse,
    MessageRole,
    ProviderError,
    ToolArgumentParseError,
    ToolCall,
    ToolCallingSupport,
    ToolDefinition,
)
from llm_action_gateway.providers.prompt import (
    build_resource_context_prompt,
    build_system_prompt,
)
from llm_action_gateway.rate_limit import RateLimiter, RateLimitExceededError
from llm_action_gateway.tools.registry import ToolRegistry
from llm_action_gateway.utils.serialization import to_json

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10

MAX_ITERATIONS_MESSAGE = (
    "I've reached the maximum number of operations. "
    "Please review the results and let me know if you need anything else."
)

CONTEXT_SUMMARY_MESSAGE = (
    "Earlier context has been summarized. "
    "Continue assisting the user with their gateway tasks."
)

CANCELLED_TOOL_RESULT = "CANCELLED: The user stopped the response before this operation ran."

# Resource types whose paths start with the project name.
_PROJECT_SCOPED = frozenset(
    {ResourceType.VIEW, ResourceType.SCRIPT, ResourceType.NAMED_QUERY, ResourceType.PROJECT}
)


def format_action_result(result: ActionResult) -> str:
    """Render an action result as the text handed back to the model."""
    parts = [f"Status: {result.status.value}\n", f"Message: {result.message}\n"]
    if result.data is not None:
        parts.append("Data:\n")
        parts.append(to_json(dict(result.data), indent=2))
    if result.warnings:
        parts.append("\nWarnings:\n")
        parts.extend(f"- {warning}\n" for warning in result.warnings)
    if result.errors:
        parts.append("\nErrors:\n")
        parts.extend(f"- {error}\n" for error in result.errors)
    return "".join(parts)


@dataclass
class _Stream:
    listener: StreamListener
    cancel: StreamCancellation

    @property
    def cancelled(self) -> bool:
        return self.cancel.cancelled

    def emit(self, event: str, *args: object) -> None:
        if self.cancel.cancelled:
            return
        try:
            getattr(self.listener, event)(*args)
        except Exception:
            logger.exception("Stream listener %s failed", event)


class _TokenBridge:
    """Provider streaming callback that forwards tokens to the listener."""

    def __init__(self, stream: _Stream) -> None:
        self._stream = stream

    def on_token(self, token: str) -> None:
        self._stream.emit("on_token", token)

    def on_tool_call(self, tool_call: ToolCall) -> None:
        # Tool calls are announced when they execute, after the response completes.
        return None

    def on_complete(self, response: LLMResponse) -> None:
        return None

    def on_error(self, error: ProviderError) -> None:
        # Reported once by the manager when the error propagates.
        return None


@dataclass
class _TurnState:
    correlation: CorrelationContext
    tools: tuple[ToolDefinition, ...]
    results: list[ActionResult]
    tokens_used: int = 0
    follow_ups: int = 0


class ConversationManager:
    """Runs conversation turns.

    One turn appends the user message, asks the provider for a response, and
    while the response carries tool calls executes them in order, feeds the
    results back and asks again, up to ``max_tool_iterations`` follow-up
    requests. Tool failures become tool-result messages; only provider,
    rate-limit and ownership failures escape a turn.
    """

    def __init__(
        self,
        provider: LLMProvider,
        executor: ActionExecutor,
        policy: PolicyEngine,
        audit: AuditTrail,
        rate_limiter: RateLimiter | None = None,
        tools: ToolRegistry | None = None,
        settings: ConversationSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._executor = executor
        self._policy = policy
        self._audit = audit
        self._rate_limiter = rate_limiter
        self._tools = tools or ToolRegistry()
        self._parser = ActionParser(self._tools)
        self._settings = settings or ConversationSettings()
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._cleanup_task: asyncio.Task[None] | None = None
        logger.info(
            "ConversationManager initialized with provider %s (max %d tool iterations)",
            provider.display_name,
            self._settings.max_tool_iterations,
        )

    @property
    def max_tool_iterations(self) -> int:
        return self._settings.max_tool_iterations

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_message(
        self, conversation_id: str, message: str, auth: AuthContext
    ) -> ConversationResponse:
        """Run one turn and return the final assistant text.

        Raises:
            ConversationOwnershipError: The conversation belongs to another identity.
            RateLimitExceededError: The identity is over its request or token budget.
            ProviderError: The model provider failed or timed out.
        """
        conversation = self._get_or_create(conversation_id, auth)
        correlation = CorrelationContext.new(user_id=auth.user_id, conversation_id=conversation_id)
        async with conversation.turn_lock:
            await self._start_turn(conversation, message, auth, correlation)
            try:
                return await self._run_turn(conversation, auth, correlation, None)
            except (ProviderError, RateLimitExceededError) as exc:
                logger.error(
                    "Turn failed in conversation %s: %s", sanitize_log_value(conversation_id), exc
                )
                raise
            finally:
                await self._finish_turn(conversation)

    async def process_message_streaming(
        self,
        conversation_id: str,
        message: str,
        auth: AuthContext,
        listener: StreamListener,
        cancel: StreamCancellation | None = None,
    ) -> ConversationResponse | None:
        """Streaming variant of :meth:`process_message`.

        Failures are delivered to ``listener.on_error`` and the call returns
        ``None``. A cancelled turn returns a response with ``cancelled`` set
        and emits nothing after the cancellation.
        """
        stream = _Stream(listener, cancel or StreamCancellation())
        try:
            conversation = self._get_or_create(conversation_id, auth)
        except ConversationOwnershipError as exc:
            stream.emit("on_error", exc)
            return None

        correlation = CorrelationContext.new(user_id=auth.user_id, conversation_id=conversation_id)
        async with conversation.turn_lock:
            await self._start_turn(conversation, message, auth, correlation)
            try:
                response = await self._run_turn(conversation, auth, correlation, stream)
            except (ProviderError, RateLimitExceededError) as exc:
                logger.error(
                    "Streaming turn failed in conversation %s: %s",
                    sanitize_log_value(conversation_id),
                    exc,
                )
                stream.emit("on_error", exc)
                return None
            finally:
                await self._finish_turn(conversation)
        stream.emit("on_complete", response)
        return response

    async def get_history(self, conversation_id: str, auth: AuthContext) -> list[LLMMessage]:
        conversation = self._require(conversation_id, auth)
        async with conversation.lock:
            return list(conversation.messages)

    async def set_context(
        self,
        conversation_id: str,
        auth: AuthContext,
        project: str | None,
        path: str | None = None,
    ) -> None:
        conversation = self._require(conversation_id, auth)
        async with conversation.lock:
            conversation.current_project = project
            conversation.current_path = path

    def end_conversation(self, conversation_id: str, auth: AuthContext) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return False
        self._check_owner(conversation, auth)
        del self._conversations[conversation_id]
        logger.info(
            "Ended conversation %s (%d messages)",
            sanitize_log_value(conversation_id),
            conversation.message_count,
        )
        return True

    def active_conversation_count(self) -> int:
        return len(self._conversations)

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [
            cid
            for cid, conversation in self._conversations.items()
            if conversation.is_expired(now, self._settings.timeout_seconds)
        ]
        for cid in expired:
            del self._conversations[cid]
            logger.info("Cleaned up expired conversation: %s", sanitize_log_value(cid))
        if expired:
            logger.info("Cleaned up %d expired conversations", len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(), name="conversation-cleanup"
        )

    async def shutdown(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._conversations.clear()
        logger.info("ConversationManager shutdown complete")

    # ------------------------------------------------------------------
    # Conversation bookkeeping
    # ------------------------------------------------------------------

    def _get_or_create(self, conversation_id: str, auth: AuthContext) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            now = self._clock()
            conversation = Conversation(
                id=conversation_id, owner=auth, created_at=now, last_activity=now
            )
            self._conversations[conversation_id] = conversation
            logger.debug(
                "Created conversation %s for %s",
                sanitize_log_value(conversation_id),
                sanitize_log_value(auth.display_name),
            )
            return conversation
        self._check_owner(conversation, auth)
        return conversation

    def _require(self, conversation_id: str, auth: AuthContext) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        self._check_owner(conversation, auth)
        return conversation

    def _check_owner(self, conversation: Conversation, auth: AuthContext) -> None:
        if conversation.is_owned_by(auth):
            return
        logger.warning(
            "Identity %s attempted to access conversation %s owned by another identity",
            sanitize_log_value(auth.display_name),
            sanitize_log_value(conversation.id),
        )
        self._audit.log_auth_failure(
            conversation.id,
            "Conversation belongs to a different identity",
            auth.client_address,
        )
        raise ConversationOwnershipError(conversation.id)

    async def _start_turn(
        self,
        conversation: Conversation,
        message: str,
        auth: AuthContext,
        correlation: CorrelationContext,
    ) -> None:
        async with conversation.lock:
            conversation.messages.append(LLMMessage.user(message))
            conversation.last_activity = self._clock()
        self._audit.log_conversation_message(
            correlation, auth, conversation.id, MessageRole.USER.value, len(message)
        )

    async def _finish_turn(self, conversation: Conversation) -> None:
        async with conversation.lock:
            conversation.last_activity = self._clock()
            self._prune(conversation)

    def _prune(self, conversation: Conversation) -> None:
        """Replace older history with a summary marker once over the token budget.

        An over-budget history always becomes the summary message followed by
        the last ``retained_messages`` messages (or all of them, if fewer).
        The caller holds the conversation lock.
        """
        messages = conversation.messages
        total = sum(self._provider.estimate_tokens(m.text_for_estimate()) for m in messages)
        if total <= self._settings.max_context_tokens:
            return
        logger.info(
            "Pruning conversation %s context (%d estimated tokens)",
            sanitize_log_value(conversation.id),
            total,
        )
        retained = messages[-self._settings.retained_messages:]
        conversation.messages = [LLMMessage.system(CONTEXT_SUMMARY_MESSAGE), *retained]

    async def _append(self, conversation: Conversation, *messages: LLMMessage) -> None:
        async with conversation.lock:
            conversation.messages.extend(messages)

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _run_turn(
        self,
        conversation: Conversation,
        auth: AuthContext,
        correlation: CorrelationContext,
        stream: _Stream | None,
    ) -> ConversationResponse:
        state = _TurnState(correlation, self._tool_definitions(auth), [])
        if stream is not None and stream.cancelled:
            return self._response(conversation, None, state, cancelled=True)

        response = await self._request(conversation, auth, state, stream)
        while True:
            if stream is not None and stream.cancelled:
                return await self._cancel_turn(conversation, response, state)
            if not response.has_tool_calls:
                break
            if state.follow_ups >= self.max_tool_iterations:
                logger.warning(
                    "Max tool iterations reached for conversation %s",
                    sanitize_log_value(conversation.id),
                )
                await self._append(conversation, LLMMessage.assistant(MAX_ITERATIONS_MESSAGE))
                return self._response(
                    conversation, MAX_ITERATIONS_MESSAGE, state, iteration_limit_reached=True
                )

            await self._append(
                conversation, LLMMessage.assistant(response.content, response.tool_calls)
            )
            tool_messages = await self._run_tool_calls(
                conversation, auth, response.tool_calls, state, stream
            )
            await self._append(conversation, *tool_messages)
            if stream is not None and stream.cancelled:
                return self._response(conversation, None, state, cancelled=True)

            response = await self._request(conversation, auth, state, stream)
            state.follow_ups += 1

        await self._append(conversation, LLMMessage.assistant(response.content))
        self._audit.log_conversation_message(
            correlation,
            auth,
            conversation.id,
            MessageRole.ASSISTANT.value,
            len(response.content or ""),
        )
        return self._response(conversation, response.content, state)

    async def _cancel_turn(
        self, conversation: Conversation, response: LLMResponse, state: _TurnState
    ) -> ConversationResponse:
        logger.info(
            "Streaming turn cancelled in conversation %s", sanitize_log_value(conversation.id)
        )
        messages = [LLMMessage.assistant(response.content, response.tool_calls)]
        messages.extend(
            LLMMessage.tool_result(call.id, CANCELLED_TOOL_RESULT, {"cancelled": True})
            for call in response.tool_calls
        )
        await self._append(conversation, *messages)
        return self._response(conversation, response.content, state, cancelled=True)

    async def _run_tool_calls(
        self,
        conversation: Conversation,
        auth: AuthContext,
        tool_calls: Sequence[ToolCall],
        state: _TurnState,
        stream: _Stream | None,
    ) -> list[LLMMessage]:
        messages = []
        for call in tool_calls:
            if stream is not None and stream.cancelled:
                messages.append(
                    LLMMessage.tool_result(call.id, CANCELLED_TOOL_RESULT, {"cancelled": True})
                )
                continue
            if stream is not None:
                stream.emit("on_tool_call_start", call)
            result, content = await self._execute_tool_call(conversation, auth, call, state)
            messages.append(
                LLMMessage.tool_result(
                    call.id,
                    content,
                    {"tool": call.name, "status": result.status.value if result else "ERROR"},
                )
            )
            if stream is not None:
                stream.emit("on_tool_call_complete", call, result, content)
        return messages

    async def _execute_tool_call(
        self,
        conversation: Conversation,
        auth: AuthContext,
        call: ToolCall,
        state: _TurnState,
    ) -> tuple[ActionResult | None, str]:
        logger.debug("Processing tool call %s (%s)", call.name, call.id)
        try:
            action = self._parser.parse(call)
        except ToolArgumentParseError as exc:
            logger.warning("Failed to parse tool call %s: %s", call.name, exc)
            self._audit.log_tool_execution(
                state.correlation, auth, conversation.id, call.name, call.id, None, str(exc)
            )
            return None, f"ERROR: Failed to parse tool arguments - {exc}"

        correlation = state.correlation.child(action.correlation_id)
        # An action that has started runs to completion even if the turn is cancelled.
        result = await asyncio.shield(self._executor.execute(action, auth, correlation))
        state.results.append(result)
        self._audit.log_tool_execution(
            state.correlation, auth, conversation.id, call.name, call.id, result
        )
        if result.is_success and action.action_type is not ActionType.LIST:
            await self._track_location(conversation, action.resource_type, action.resource_path)
        return result, format_action_result(result)

    async def _track_location(
        self, conversation: Conversation, resource_type: ResourceType, path: str
    ) -> None:
        if resource_type not in _PROJECT_SCOPED:
            return
        async with conversation.lock:
            conversation.current_project = path.split("/", 1)[0]
            conversation.current_path = path if resource_type is not ResourceType.PROJECT else None

    # ------------------------------------------------------------------
    # Provider access
    # ------------------------------------------------------------------

    def _tool_definitions(self, auth: AuthContext) -> tuple[ToolDefinition, ...]:
        if self._provider.tool_calling_support is ToolCallingSupport.NONE:
            return ()
        return tuple(self._tools.definitions_for(auth, self._policy))

    async def _request(
        self,
        conversation: Conversation,
        auth: AuthContext,
        state: _TurnState,
        stream: _Stream | None,
    ) -> LLMResponse:
        async with conversation.lock:
            messages = tuple(conversation.messages)
            system_prompt = build_system_prompt(
                auth, self._policy.environment_mode
            ) + build_resource_context_prompt(
                conversation.current_project, conversation.current_path
            )

        request = LLMRequest(
            conversation_id=conversation.id,
            messages=messages,
            tools=state.tools,
            system_prompt=system_prompt,
            model=self._settings.model,
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )
        self._consume_rate_limit(auth, request, state.correlation)

        timeout = self._settings.provider_timeout_seconds
        try:
            if stream is None:
                response = await asyncio.wait_for(self._provider.chat(request), timeout)
            else:
                response = await asyncio.wait_for(
                    self._provider.chat_streaming(request, _TokenBridge(stream)), timeout
                )
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Provider did not respond within {timeout:g} seconds",
                self._provider.provider_id,
                retryable=True,
            ) from exc

        state.tokens_used += response.total_tokens
        if self._rate_limiter is not None and response.total_tokens > 0:
            self._rate_limiter.record_usage(auth.rate_limit_key, response.total_tokens)
        return response

    def _consume_rate_limit(
        self, auth: AuthContext, request: LLMRequest, correlation: CorrelationContext
    ) -> None:
        if self._rate_limiter is None:
            return
        estimate = self._provider.estimate_tokens(request.system_prompt) + sum(
            self._provider.estimate_tokens(m.text_for_estimate()) for m in request.messages
        )
        result = self._rate_limiter.try_consume(auth.rate_limit_key, estimate)
        if result.allowed:
            return
        logger.warning(
            "Rate limit exceeded for %s: %s",
            sanitize_log_value(auth.rate_limit_key),
            result.message,
        )
        self._audit.log_rate_limited(
            correlation,
            auth,
            result.message or "Rate limit exceeded",
            {"retryAfterSeconds": result.retry_after_seconds, "estimatedTokens": estimate},
        )
        raise RateLimitExceededError(result)

    def _response(
        self,
        conversation: Conversation,
        message: str | None,
        state: _TurnState,
        *,
        iteration_limit_reached: bool = False,
        cancelled: bool = False,
    ) -> ConversationResponse:
        return ConversationResponse(
            conversation_id=conversation.id,
            message=message,
            action_results=tuple(state.results),
            tokens_used=state.tokens_used,
            tool_iterations=state.follow_ups,
            correlation_id=state.correlation.correlation_id,
            iteration_limit_reached=iteration_limit_reached,
            cancelled=cancelled,
        )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.cleanup_interval_seconds)
            try:
                self.cleanup_expired()
            except Exception:
                logger.exception("Conversation cleanup failed")
