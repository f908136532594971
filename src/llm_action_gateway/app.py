"""Application context assembly."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from llm_action_gateway.audit.db import SqliteStore
from llm_action_gateway.audit.trail import AuditSink, AuditTrail, InMemoryAuditSink
from llm_action_gateway.config import Settings, default_policy_path, load_settings
from llm_action_gateway.conversation.manager import ConversationManager
from llm_action_gateway.domain.actions import ResourceType
from llm_action_gateway.execution.executor import ActionExecutor
from llm_action_gateway.logging_utils import get_logger
from llm_action_gateway.policy.engine import PolicyEngine
from llm_action_gateway.policy.environment import EnvironmentMode
from llm_action_gateway.policy.loader import load_policy
from llm_action_gateway.policy.models import PolicyConfig
from llm_action_gateway.providers.base import LLMProvider
from llm_action_gateway.rate_limit import RateLimitConfig, RateLimiter
from llm_action_gateway.resources.base import ResourceHandler
from llm_action_gateway.resources.registry import HandlerRegistry
from llm_action_gateway.tools.registry import ToolRegistry


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once by :func:`create_app_context`. :meth:`start` launches the
    background sweeps on the running loop and :meth:`shutdown` stops them and
    closes the audit store.
    """

    settings: Settings
    policy_engine: PolicyEngine
    audit: AuditTrail
    store: SqliteStore | None
    handlers: HandlerRegistry
    tools: ToolRegistry
    executor: ActionExecutor
    rate_limiter: RateLimiter
    conversations: ConversationManager

    def start(self) -> None:
        self.rate_limiter.start()
        self.conversations.start()

    async def shutdown(self) -> None:
        await self.conversations.shutdown()
        await self.rate_limiter.shutdown()
        if self.store is not None:
            self.store.close()


def create_app_context(
    provider: LLMProvider,
    handlers: Iterable[ResourceHandler],
    settings: Settings | None = None,
    required_resource_types: Iterable[ResourceType] = (),
) -> AppContext:
    """Wire settings, policy, audit, handlers, executor, limiter and conversations.

    Raises:
        FileNotFoundError: A non-default policy path does not exist.
        RuntimeError: The environment requires a persistent audit log but the
            SQLite sink is disabled.
        HandlerRegistrationError: A required resource type has no handler.
    """
    logger = get_logger(__name__)
    settings = settings or load_settings()

    policy_config = _load_policy_config(settings)
    environment = (
        EnvironmentMode.parse(settings.policy.environment)
        if settings.policy.environment
        else policy_config.environment
    )

    store: SqliteStore | None = None
    sinks: list[AuditSink] = [InMemoryAuditSink()]
    if settings.audit.sqlite_enabled:
        store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
        sinks.append(store)
    elif environment.requires_audit_log:
        raise RuntimeError(
            f"A persistent audit log is required in {environment} mode; "
            "set AUDIT_SQLITE_ENABLED=true"
        )
    audit = AuditTrail(sinks, log_events=settings.audit.log_events)

    policy_engine = PolicyEngine(policy_config, audit=audit, environment=environment)

    registry = HandlerRegistry(handlers)
    registry.validate(required_resource_types)

    tools = ToolRegistry()
    executor = ActionExecutor(
        policy_engine,
        registry,
        audit,
        handler_timeout=settings.execution.handler_timeout_seconds,
    )
    rate_limiter = RateLimiter(RateLimitConfig.from_settings(settings.rate_limit))
    conversations = ConversationManager(
        provider,
        executor,
        policy_engine,
        audit,
        rate_limiter=rate_limiter,
        tools=tools,
        settings=settings.conversation,
    )

    audit.log_system_event(
        "STARTUP",
        "Gateway context initialized",
        {
            "environment": environment.value,
            "provider": provider.provider_id,
            "resourceTypes": [rt.value for rt in registry.resource_types()],
        },
    )
    logger.info(
        "Gateway ready in %s mode with %d handlers and %d tools",
        environment.value,
        len(registry),
        len(tools),
    )

    return AppContext(
        settings=settings,
        policy_engine=policy_engine,
        audit=audit,
        store=store,
        handlers=registry,
        tools=tools,
        executor=executor,
        rate_limiter=rate_limiter,
        conversations=conversations,
    )


def _load_policy_config(settings: Settings) -> PolicyConfig:
    path = settings.policy.path
    if not Path(path).exists() and path == default_policy_path():
        get_logger(__name__).warning("No policy file at %s, using default policy", path)
        return PolicyConfig()
    return load_policy(path)
