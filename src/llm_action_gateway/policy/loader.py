"""Reads the YAML policy file into a :class:`PolicyConfig`."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from llm_action_gateway.policy.models import PolicyConfig

logger = logging.getLogger(__name__)


def load_policy(path: str | Path) -> PolicyConfig:
    """Load and validate a policy file.

    An empty file yields the default policy. Raises ``FileNotFoundError`` when
    the file is absent, ``ValueError`` when it is not a YAML mapping, and
    pydantic's ``ValidationError`` for unknown environments or resource types.
    """
    policy_path = Path(path)
    if not policy_path.is_file():
        raise FileNotFoundError(f"Policy file not found: {policy_path}")
    try:
        data = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Policy file is not valid YAML: {policy_path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Policy file must contain a mapping: {policy_path}")

    config = PolicyConfig.from_yaml(data)
    logger.info(
        "Loaded policy %s: environment=%s, %d deny rules, %d disabled resource types",
        policy_path,
        config.environment.value,
        len(config.rules.deny),
        len(config.disabled_resource_types),
    )
    return config
