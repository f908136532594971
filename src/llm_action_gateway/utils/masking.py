"""Sensitive-field masking for audit details and log output.

The audit trail runs every ``details`` mapping through
:func:`redact_sensitive_fields` before an entry is stored, so credentials that
show up in action payloads (script environments, connection settings) never
reach the sinks.
"""

from __future__ import annotations

from collections.abc import Mapping

REDACTED = "***"
DEFAULT_MAX_DEPTH = 20

# Matched as case-insensitive substrings of the key.
SENSITIVE_KEY_MARKERS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "credential",
    "authorization",
    "privatekey",
    "private_key",
)

# Token accounting keys contain "token" but are not secrets.
_ACCOUNTING_KEYS = frozenset(
    {
        "estimatedtokens",
        "actualtokens",
        "inputtokens",
        "outputtokens",
        "tokensremaining",
        "maxtokens",
    }
)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered.replace("_", "") in _ACCOUNTING_KEYS:
        return False
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = REDACTED,
    depth: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> object:
    """Copy of ``value`` with sensitive mapping entries replaced by ``mask``.

    Mappings become plain dicts and tuples become lists. Anything nested
    deeper than ``max_depth`` is masked whole.
    """
    if depth >= max_depth:
        return mask

    def walk(child: object) -> object:
        return redact_sensitive_fields(child, mask=mask, depth=depth + 1, max_depth=max_depth)

    if isinstance(value, Mapping):
        return {
            str(key): mask if is_sensitive_key(str(key)) else walk(child)
            for key, child in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [walk(child) for child in value]
    return value
