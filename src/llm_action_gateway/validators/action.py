"""Envelope checks applied to every action regardless of resource type."""

from __future__ import annotations

import uuid

from llm_action_gateway.domain.actions import Action, is_destructive
from llm_action_gateway.validators.results import IssueCode, ValidationResult

MAX_RESOURCE_PATH_LENGTH = 1000
MAX_COMMENT_LENGTH = 1000


class ActionValidator:
    def validate(self, action: Action) -> ValidationResult:
        result = ValidationResult()
        self._check_correlation_id(action.correlation_id, result)
        self._check_resource_path(action.resource_path, result)
        self._check_options(action, result)
        return result

    @staticmethod
    def _check_correlation_id(correlation_id: str | None, result: ValidationResult) -> None:
        if not correlation_id or not correlation_id.strip():
            result.add_error("correlationId", "Correlation ID is required", IssueCode.REQUIRED_FIELD)
            return
        try:
            uuid.UUID(correlation_id)
        except ValueError:
            result.add_error(
                "correlationId", "Correlation ID must be a valid UUID", IssueCode.INVALID_FORMAT
            )

    @staticmethod
    def _check_resource_path(resource_path: str | None, result: ValidationResult) -> None:
        if not resource_path or not resource_path.strip():
            result.add_error("resourcePath", "Resource path is required", IssueCode.REQUIRED_FIELD)
            return
        if len(resource_path) > MAX_RESOURCE_PATH_LENGTH:
            result.add_error(
                "resourcePath",
                f"Resource path exceeds maximum length of {MAX_RESOURCE_PATH_LENGTH}",
                IssueCode.MAX_LENGTH_EXCEEDED,
            )
        if ".." in resource_path or "//" in resource_path:
            result.add_error(
                "resourcePath",
                "Resource path contains invalid characters",
                IssueCode.SECURITY_VIOLATION,
            )

    @staticmethod
    def _check_options(action: Action, result: ValidationResult) -> None:
        comment = action.options.comment
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            result.add_error(
                "options.comment",
                f"Comment exceeds maximum length of {MAX_COMMENT_LENGTH}",
                IssueCode.MAX_LENGTH_EXCEEDED,
            )
        if is_destructive(action) and action.options.force and not action.options.dry_run:
            result.add_warning(
                "Force mode enabled without dry-run for destructive action. "
                "Consider using dryRun=true first to preview changes."
            )
