"""Configuration management for the LLM action gateway."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)

EnvironmentName = Literal["development", "test", "production"]


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/gateway_audit.sqlite")
    sqlite_wal: bool = Field(default=True)


class AuditSettings(BaseModel):
    sqlite_enabled: bool = Field(
        default=True,
        description="Persist audit entries to SQLite in addition to the in-memory trail.",
    )
    log_events: bool = Field(
        default=True,
        description="Emit one log line per audit entry.",
    )


class PolicySettings(BaseModel):
    path: str = Field(default="./policy.yaml")
    environment: EnvironmentName | None = Field(
        default=None,
        description="Overrides the environment declared in the policy file.",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value


class RateLimitSettings(BaseModel):
    requests_per_minute: int = Field(default=60, ge=1)
    tokens_per_minute: int = Field(default=100_000, ge=1)
    burst_allowance: int = Field(default=10, ge=0)
    cleanup_interval_seconds: float = Field(default=60.0, gt=0)
    bucket_idle_seconds: float = Field(default=300.0, gt=0)


class ConversationSettings(BaseModel):
    max_tool_iterations: int = Field(default=10, ge=1, le=100)
    max_context_tokens: int = Field(default=100_000, ge=1)
    retained_messages: int = Field(default=10, ge=1)
    timeout_seconds: float = Field(default=3600.0, gt=0)
    cleanup_interval_seconds: float = Field(default=60.0, gt=0)
    provider_timeout_seconds: float = Field(default=120.0, gt=0)
    model: str | None = Field(default=None)
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class ExecutionSettings(BaseModel):
    handler_timeout_seconds: float = Field(default=30.0, gt=0)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "audit_sqlite_enabled": "AUDIT_SQLITE_ENABLED",
    "audit_log_events": "AUDIT_LOG_EVENTS",
    "policy_path": "POLICY_PATH",
    "environment": "GATEWAY_ENVIRONMENT",
    "requests_per_minute": "RATE_LIMIT_REQUESTS_PER_MINUTE",
    "tokens_per_minute": "RATE_LIMIT_TOKENS_PER_MINUTE",
    "burst_allowance": "RATE_LIMIT_BURST_ALLOWANCE",
    "max_tool_iterations": "CONVERSATION_MAX_TOOL_ITERATIONS",
    "max_context_tokens": "CONVERSATION_MAX_CONTEXT_TOKENS",
    "retained_messages": "CONVERSATION_RETAINED_MESSAGES",
    "conversation_timeout": "CONVERSATION_TIMEOUT_SECONDS",
    "provider_timeout": "CONVERSATION_PROVIDER_TIMEOUT_SECONDS",
    "model": "CONVERSATION_MODEL",
    "handler_timeout": "HANDLER_TIMEOUT_SECONDS",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def default_policy_path() -> str:
    return _resolve_path(PolicySettings().path)


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "audit": {
            "sqlite_enabled": _env_bool(
                ENV_KEYS["audit_sqlite_enabled"], AuditSettings().sqlite_enabled
            ),
            "log_events": _env_bool(ENV_KEYS["audit_log_events"], AuditSettings().log_events),
        },
        "policy": {
            "path": _resolve_path(os.getenv(ENV_KEYS["policy_path"], PolicySettings().path)),
            "environment": os.getenv(ENV_KEYS["environment"]),
        },
        "rate_limit": {
            "requests_per_minute": _env_int(
                ENV_KEYS["requests_per_minute"],
                RateLimitSettings().requests_per_minute,
            ),
            "tokens_per_minute": _env_int(
                ENV_KEYS["tokens_per_minute"],
                RateLimitSettings().tokens_per_minute,
            ),
            "burst_allowance": _env_int(
                ENV_KEYS["burst_allowance"],
                RateLimitSettings().burst_allowance,
            ),
        },
        "conversation": {
            "max_tool_iterations": _env_int(
                ENV_KEYS["max_tool_iterations"],
                ConversationSettings().max_tool_iterations,
            ),
            "max_context_tokens": _env_int(
                ENV_KEYS["max_context_tokens"],
                ConversationSettings().max_context_tokens,
            ),
            "retained_messages": _env_int(
                ENV_KEYS["retained_messages"],
                ConversationSettings().retained_messages,
            ),
            "timeout_seconds": _env_float(
                ENV_KEYS["conversation_timeout"],
                ConversationSettings().timeout_seconds,
            ),
            "provider_timeout_seconds": _env_float(
                ENV_KEYS["provider_timeout"],
                ConversationSettings().provider_timeout_seconds,
            ),
            "model": os.getenv(ENV_KEYS["model"]) or None,
        },
        "execution": {
            "handler_timeout_seconds": _env_float(
                ENV_KEYS["handler_timeout"],
                ExecutionSettings().handler_timeout_seconds,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.audit.sqlite_enabled:
        Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
