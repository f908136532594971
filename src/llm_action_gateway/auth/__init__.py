"""Identity and capability model."""

from llm_action_gateway.auth.context import (
    PERMISSION_DESCRIPTIONS,
    AuthContext,
    Permission,
)

__all__ = [
    "AuthContext",
    "PERMISSION_DESCRIPTIONS",
    "Permission",
]
