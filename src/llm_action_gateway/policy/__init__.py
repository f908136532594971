"""Authorization policy."""

from llm_action_gateway.policy.engine import (
    AuthorizationError,
    PolicyDecision,
    PolicyEngine,
    required_permission,
)
from llm_action_gateway.policy.environment import EnvironmentMode
from llm_action_gateway.policy.loader import load_policy
from llm_action_gateway.policy.models import PolicyConfig

__all__ = [
    "AuthorizationError",
    "EnvironmentMode",
    "PolicyConfig",
    "PolicyDecision",
    "PolicyEngine",
    "load_policy",
    "required_permission",
]
