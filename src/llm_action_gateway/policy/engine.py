"""Authorization and policy evaluation for proposed actions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from llm_action_gateway.audit.correlation import CorrelationContext
from llm_action_gateway.audit.trail import AuditTrail
from llm_action_gateway.auth.context import AuthContext, Permission
from llm_action_gateway.domain.actions import Action, ActionType, ResourceType, is_destructive
from llm_action_gateway.policy.environment import EnvironmentMode
from llm_action_gateway.policy.models import PolicyConfig

logger = logging.getLogger(__name__)

_MAX_POLICY_REGEX_LENGTH = 256
_BACKREFERENCE_PATTERN = re.compile(r"\\[1-9]")
_NESTED_QUANTIFIER_PATTERN = re.compile(
    r"\((?:[^()\\]|\\.)*[+*](?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d+(?:,\d*)?\})"
)
_LOOKBEHIND_TOKENS = ("(?<=", "(?<!")

# list is authorized as read.
_PERMISSION_ACTIONS = {
    ActionType.CREATE: "create",
    ActionType.READ: "read",
    ActionType.LIST: "read",
    ActionType.UPDATE: "update",
    ActionType.DELETE: "delete",
}


class AuthorizationError(Exception):
    """Raised when an identity may not perform an action."""

    def __init__(self, reason: str, required_permission: Permission | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.required_permission = required_permission


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str
    required_permission: Permission | None = None
    destructive: bool = False
    environment: EnvironmentMode = EnvironmentMode.DEVELOPMENT


def required_permission(resource_type: ResourceType, action_type: ActionType) -> Permission:
    """Map ``(resource, action)`` to the one permission that authorizes it."""
    if resource_type is ResourceType.GATEWAY_CONFIG:
        return Permission.ADMIN
    code = f"{resource_type.permission_prefix}:{_PERMISSION_ACTIONS[action_type]}"
    return Permission.from_code(code)


class PolicyEngine:
    """Decides whether an identity may perform an action.

    Checks run in a fixed order and the first failing check wins:
    admin bypass, disabled resource types, deny rules, the dry-run-only
    restriction, the mapped permission, and finally the production rule that
    destructive actions also need the resource's delete permission.
    """

    def __init__(
        self,
        config: PolicyConfig,
        audit: AuditTrail | None = None,
        environment: EnvironmentMode | None = None,
    ) -> None:
        self._config = config
        self._audit = audit
        self._environment = environment or config.environment
        self._deny_patterns = self._compile_patterns(config.rules.deny, "deny")
        self._disabled = frozenset(config.disabled_resource_types)
        logger.info(
            "PolicyEngine initialized for %s mode (%d deny rules, %d disabled resource types)",
            self._environment.value,
            len(self._deny_patterns),
            len(self._disabled),
        )

    @property
    def environment_mode(self) -> EnvironmentMode:
        return self._environment

    @classmethod
    def _compile_patterns(cls, patterns: list[str], label: str) -> list[re.Pattern[str]]:
        compiled: list[re.Pattern[str]] = []
        for pat in patterns:
            cls._validate_pattern_safety(pat, label)
            try:
                compiled.append(re.compile(pat))
            except re.error as exc:
                raise ValueError(f"Invalid regex in {label} policy pattern '{pat}': {exc}") from exc
        return compiled

    @staticmethod
    def _validate_pattern_safety(pattern: str, label: str) -> None:
        if len(pattern) > _MAX_POLICY_REGEX_LENGTH:
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': exceeds "
                f"{_MAX_POLICY_REGEX_LENGTH} characters"
            )
        if any(token in pattern for token in _LOOKBEHIND_TOKENS):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': look-behind is not allowed"
            )
        if _BACKREFERENCE_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "backreferences are not allowed"
            )
        if _NESTED_QUANTIFIER_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "nested quantifiers are not allowed"
            )

    def authorize(
        self,
        auth: AuthContext,
        action: Action,
        correlation: CorrelationContext | None = None,
    ) -> PolicyDecision:
        """Authorize ``action`` for ``auth`` and audit the decision.

        Returns the granting decision or raises :class:`AuthorizationError`.
        """
        decision = self.evaluate(auth, action)
        if self._audit is not None:
            self._audit.log_authorization(
                action,
                auth,
                granted=decision.allowed,
                reason=decision.reason,
                required_permission=(
                    decision.required_permission.value if decision.required_permission else None
                ),
            )
        if not decision.allowed:
            logger.warning(
                "Authorization denied for %s: %s (corr=%s)",
                auth.display_name,
                decision.reason,
                correlation.correlation_id if correlation else action.correlation_id,
            )
            raise AuthorizationError(decision.reason, decision.required_permission)
        logger.debug("Authorized %s for %s", action.describe(), auth.display_name)
        return decision

    def evaluate(self, auth: AuthContext, action: Action) -> PolicyDecision:
        """Compute the decision without auditing or raising."""
        destructive = is_destructive(action)
        if auth.is_admin:
            return self._decision(True, "Administrative access", Permission.ADMIN, destructive)

        if action.resource_type in self._disabled:
            return self._decision(
                False,
                f"Resource type '{action.resource_type.value}' is disabled by policy",
                None,
                destructive,
            )

        deny_match = self._matches(self._deny_patterns, action.key)
        if deny_match:
            return self._decision(
                False, f"Denied by policy rule: {deny_match}", None, destructive
            )

        if (
            auth.dry_run_only
            and action.action_type not in (ActionType.READ, ActionType.LIST)
            and not action.options.dry_run
        ):
            return self._decision(
                False,
                "This identity can only perform dry-run operations. Set dryRun=true.",
                Permission.DRY_RUN_ONLY,
                destructive,
            )

        required = (
            Permission.TAG_WRITE_VALUE
            if action.resource_type is ResourceType.TAG and action.is_value_write
            else required_permission(action.resource_type, action.action_type)
        )
        if not auth.has_permission(required):
            return self._decision(
                False,
                f"Missing permission {required.value} for {action.action_type.value} "
                f"on {action.resource_type.value}",
                required,
                destructive,
            )

        if destructive and self._environment is EnvironmentMode.PRODUCTION:
            delete_permission = required_permission(action.resource_type, ActionType.DELETE)
            if not auth.has_permission(delete_permission):
                return self._decision(
                    False,
                    "Destructive actions require explicit "
                    f"{delete_permission.value} permission in production mode",
                    delete_permission,
                    destructive,
                )

        return self._decision(True, f"Granted by {required.value}", required, destructive)

    def permitted(
        self,
        auth: AuthContext,
        resource_type: ResourceType,
        action_type: ActionType,
        value_write: bool = False,
    ) -> bool:
        """Non-auditing check used to decide which tools an identity can see."""
        if auth.is_admin:
            return True
        if resource_type in self._disabled:
            return False
        if value_write and resource_type is ResourceType.TAG:
            return auth.has_permission(Permission.TAG_WRITE_VALUE)
        return auth.has_permission(required_permission(resource_type, action_type))

    def _decision(
        self,
        allowed: bool,
        reason: str,
        permission: Permission | None,
        destructive: bool,
    ) -> PolicyDecision:
        return PolicyDecision(
            allowed=allowed,
            reason=reason,
            required_permission=permission,
            destructive=destructive,
            environment=self._environment,
        )

    @staticmethod
    def _matches(patterns: list[re.Pattern[str]], key: str) -> str | None:
        for pattern in patterns:
            if pattern.search(key):
                return pattern.pattern
        return None
