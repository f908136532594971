from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Sequence

import pytest

from llm_action_gateway.audit.trail import AuditTrail, InMemoryAuditSink
from llm_action_gateway.auth.context import AuthContext, Permission
from llm_action_gateway.config import _load_settings_cached
from llm_action_gateway.providers.base import (
    LLMProvider,
    LLMRequest,
    LLMResponse,
    ToolCallingSupport,
)


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep unit runs off the filesystem audit database.
    os.environ.setdefault("AUDIT_SQLITE_ENABLED", "false")
    os.environ.setdefault("GATEWAY_ENVIRONMENT", "development")


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    _load_settings_cached.cache_clear()
    yield
    _load_settings_cached.cache_clear()


@pytest.fixture
def sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(sink: InMemoryAuditSink) -> AuditTrail:
    return AuditTrail([sink], log_events=False)


@pytest.fixture
def make_auth() -> Callable[..., AuthContext]:
    def _make(*codes: str, user_id: str = "alice", **kwargs) -> AuthContext:
        return AuthContext.from_codes(user_id, codes, **kwargs)

    return _make


@pytest.fixture
def admin() -> AuthContext:
    return AuthContext(user_id="root", permissions=frozenset({Permission.ADMIN}))


class ScriptedProvider(LLMProvider):
    """Returns queued responses in order, repeating the last one once exhausted."""

    def __init__(
        self,
        responses: Sequence[LLMResponse | Exception],
        tool_calling_support: ToolCallingSupport = ToolCallingSupport.NATIVE,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self._responses = list(responses)
        self._support = tool_calling_support
        self._delay = delay
        self.requests: list[LLMRequest] = []

    @property
    def provider_id(self) -> str:
        return "scripted"

    @property
    def tool_calling_support(self) -> ToolCallingSupport:
        return self._support

    async def chat(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        outcome = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def make_provider() -> Callable[..., ScriptedProvider]:
    return ScriptedProvider
