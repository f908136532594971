"""Deployment environment modes."""

from __future__ import annotations

from enum import Enum


class EnvironmentMode(str, Enum):
    """Where the gateway runs.

    The mode never grants access. Production tightens destructive actions and
    every mode above development requires a durable audit log.
    """

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @property
    def requires_audit_log(self) -> bool:
        return self is not EnvironmentMode.DEVELOPMENT

    @property
    def requires_destructive_confirmation(self) -> bool:
        return self is EnvironmentMode.PRODUCTION

    @classmethod
    def parse(cls, value: str) -> "EnvironmentMode":
        normalized = value.strip().lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown environment mode: {value}")

    def __str__(self) -> str:
        return self.value
