"""Action execution pipeline: authorize, validate, scan, gate, dispatch, audit."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import TypeVar

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.audit.trail import AuditTrail
from llm_action_gateway.auth.context import AuthContext
from llm_action_gateway.domain.actions import (
    Action,
    ActionResult,
    ActionType,
    ErrorCode,
    is_destructive,
)
from llm_action_gateway.logging_utils import sanitize_log_value
from llm_action_gateway.policy.engine import AuthorizationError, PolicyEngine
from llm_action_gateway.resources.base import (
    ResourceConflictError,
    ResourceHandler,
    ResourceNotFoundError,
)
from llm_action_gateway.resources.registry import HandlerRegistry
from llm_action_gateway.utils.time import elapsed_ms
from llm_action_gateway.validators.dispatch import scan_action, validate_action

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")

_MUST_EXIST = frozenset({ActionType.READ, ActionType.UPDATE, ActionType.DELETE})


class ActionExecutor:
    """Runs one action through the full pipeline.

    The first failing step short-circuits the rest: authorization, handler
    lookup, structural validation, security scan, existence check, dry run,
    destructive confirmation, then dispatch. :meth:`execute` never raises;
    every outcome is an :class:`ActionResult` bracketed by ACTION_REQUEST and
    ACTION_RESULT audit entries.
    """

    def __init__(
        self,
        policy: PolicyEngine,
        handlers: HandlerRegistry,
        audit: AuditTrail,
        handler_timeout: float = DEFAULT_HANDLER_TIMEOUT_SECONDS,
    ) -> None:
        self._policy = policy
        self._handlers = handlers
        self._audit = audit
        self._handler_timeout = handler_timeout

    async def execute(
        self,
        action: Action,
        auth: AuthContext,
        correlation: CorrelationContext | None = None,
    ) -> ActionResult:
        correlation = correlation or CorrelationContext.new(
            user_id=auth.user_id, correlation_id=action.correlation_id
        )
        started = time.perf_counter()
        self._audit.log_action_request(action, auth, correlation)
        try:
            result = await self._run(action, auth, correlation)
        except Exception as exc:
            logger.exception(
                "Unexpected failure executing %s (corr=%s)",
                sanitize_log_value(action.describe()),
                action.correlation_id,
            )
            result = ActionResult.failure(
                action.correlation_id,
                f"Execution failed: {exc}",
                error_code=ErrorCode.EXECUTION_ERROR,
            )
        result = result.with_duration(elapsed_ms(started))
        self._audit.log_action_result(action, auth, result)
        return result

    async def _run(
        self, action: Action, auth: AuthContext, correlation: CorrelationContext
    ) -> ActionResult:
        cid = action.correlation_id
        try:
            self._policy.authorize(auth, action, correlation)
        except AuthorizationError as exc:
            return ActionResult.failure(
                cid,
                f"Permission denied: {exc.reason}",
                error_code=ErrorCode.PERMISSION_DENIED,
            )

        handler = self._handlers.get(action.resource_type)
        if handler is None:
            return ActionResult.failure(
                cid,
                f"No handler registered for resource type: {action.resource_type.value}",
                error_code=ErrorCode.HANDLER_NOT_FOUND,
            )

        validation = validate_action(action)
        if not validation.is_valid:
            return ActionResult.failure(
                cid,
                "Validation failed",
                errors=validation.error_messages(),
                error_code=ErrorCode.VALIDATION_FAILED,
                warnings=validation.warnings,
            )

        scan = scan_action(action)
        if scan.is_blocked:
            logger.warning(
                "Security violation in %s by %s: %s",
                sanitize_log_value(action.describe()),
                sanitize_log_value(auth.display_name),
                "; ".join(scan.blocked_summaries()),
            )
            self._audit.log_security_violation(
                action, auth, [match.to_dict() for match in scan.blocked]
            )
            return ActionResult.failure(
                cid,
                "Security violation: action contains forbidden patterns",
                errors=[f"[SECURITY_VIOLATION] {s}" for s in scan.blocked_summaries()],
                error_code=ErrorCode.SECURITY_VIOLATION,
                warnings=validation.warnings + scan.warning_summaries(),
            )
        warnings = validation.warnings + scan.warning_summaries()

        try:
            missing = await self._check_existence(handler, action, auth)
        except asyncio.TimeoutError:
            return self._timed_out(action)
        if missing is not None:
            return missing.with_warnings(warnings)

        destructive = is_destructive(action)
        dry_run = action.is_mutating and action.options.dry_run
        if dry_run or (destructive and not action.options.force):
            try:
                preview = await self._with_timeout(handler.preview(action, auth))
            except asyncio.TimeoutError:
                return self._timed_out(action)
            preview["destructive"] = destructive

        if dry_run:
            return ActionResult.dry_run(
                cid, f"Dry run: would {action.describe()}", preview, warnings
            )

        if destructive and not action.options.force:
            return ActionResult.pending_confirmation(
                cid,
                f"Confirmation required to {action.describe()}. "
                "Re-issue the request with force=true to proceed.",
                preview,
                warnings,
            )

        return (await self._dispatch(handler, action, auth, correlation)).with_warnings(warnings)

    async def _check_existence(
        self, handler: ResourceHandler, action: Action, auth: AuthContext
    ) -> ActionResult | None:
        if action.action_type is ActionType.CREATE:
            if await self._with_timeout(handler.exists(action.resource_path, auth)):
                return ActionResult.failure(
                    action.correlation_id,
                    f"{action.resource_type.value} already exists: {action.resource_path}",
                    error_code=ErrorCode.CONFLICT,
                )
        elif action.action_type in _MUST_EXIST:
            if not await self._with_timeout(handler.exists(action.resource_path, auth)):
                return ActionResult.failure(
                    action.correlation_id,
                    f"{action.resource_type.value} not found: {action.resource_path}",
                    error_code=ErrorCode.NOT_FOUND,
                )
        return None

    async def _dispatch(
        self,
        handler: ResourceHandler,
        action: Action,
        auth: AuthContext,
        correlation: CorrelationContext,
    ) -> ActionResult:
        cid = action.correlation_id
        try:
            result = await self._with_timeout(handler.dispatch(action, auth, correlation))
        except asyncio.TimeoutError:
            return self._timed_out(action)
        except ResourceNotFoundError as exc:
            return ActionResult.failure(cid, str(exc), error_code=ErrorCode.NOT_FOUND)
        except ResourceConflictError as exc:
            return ActionResult.failure(cid, str(exc), error_code=ErrorCode.CONFLICT)
        except Exception as exc:
            logger.error(
                "Handler %s failed for %s: %s",
                type(handler).__name__,
                sanitize_log_value(action.describe()),
                exc,
            )
            return ActionResult.failure(
                cid, str(exc) or type(exc).__name__, error_code=ErrorCode.EXECUTION_ERROR
            )

        if result.is_success and action.is_mutating:
            self._audit.log_resource_change(action, auth, {"message": result.message})
        return result

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._handler_timeout)

    def _timed_out(self, action: Action) -> ActionResult:
        logger.warning(
            "Handler timed out after %.1fs for %s (corr=%s)",
            self._handler_timeout,
            sanitize_log_value(action.describe()),
            action.correlation_id,
        )
        return ActionResult.failure(
            action.correlation_id,
            f"Operation timed out after {self._handler_timeout:g} seconds",
            error_code=ErrorCode.TIMEOUT,
        )
