"""Result types shared by the structural validators and the security scanners."""

from __future__ import annotations

import re
from dataclasses import dataclass, field


class IssueCode:
    REQUIRED_FIELD = "REQUIRED_FIELD"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_RANGE = "INVALID_RANGE"
    MAX_LENGTH_EXCEEDED = "MAX_LENGTH_EXCEEDED"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    DUPLICATE = "DUPLICATE"


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    code: str

    def __str__(self) -> str:
        return f"[{self.code}] {self.field}: {self.message}"


@dataclass
class ValidationResult:
    """Hard errors block execution; warnings and infos never do."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def add_error(self, field_name: str, message: str, code: str) -> "ValidationResult":
        self.errors.append(ValidationIssue(field_name, message, code))
        return self

    def add_warning(self, message: str) -> "ValidationResult":
        self.warnings.append(message)
        return self

    def add_info(self, message: str) -> "ValidationResult":
        self.infos.append(message)
        return self

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.infos.extend(other.infos)
        return self

    def error_messages(self) -> list[str]:
        return [str(issue) for issue in self.errors]

    def codes(self) -> set[str]:
        return {issue.code for issue in self.errors}

    def __str__(self) -> str:
        if self.is_valid and not self.warnings:
            return "Validation passed"
        parts: list[str] = []
        if self.errors:
            parts.append("Errors: " + "; ".join(self.error_messages()))
        if self.warnings:
            parts.append("Warnings: " + "; ".join(self.warnings))
        return " | ".join(parts)


@dataclass(frozen=True)
class SecurityMatch:
    description: str
    category: str
    matched_text: str
    line_number: int

    def summary(self) -> str:
        return f"{self.description}: '{self.matched_text}' at line {self.line_number}"

    def to_dict(self) -> dict[str, object]:
        return {
            "description": self.description,
            "category": self.category,
            "matchedText": self.matched_text,
            "lineNumber": self.line_number,
        }


@dataclass
class SecurityScanResult:
    blocked: list[SecurityMatch] = field(default_factory=list)
    warnings: list[SecurityMatch] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def merge(self, other: "SecurityScanResult") -> "SecurityScanResult":
        self.blocked.extend(other.blocked)
        self.warnings.extend(other.warnings)
        return self

    def blocked_summaries(self) -> list[str]:
        return [match.summary() for match in self.blocked]

    def warning_summaries(self) -> list[str]:
        return [match.summary() for match in self.warnings]


@dataclass(frozen=True)
class SecurityPattern:
    """One row of a scanner table: a compiled regex and what it means."""

    regex: re.Pattern[str]
    description: str
    category: str

    @classmethod
    def compile(
        cls,
        pattern: str,
        description: str,
        category: str,
        flags: int = 0,
    ) -> "SecurityPattern":
        return cls(re.compile(pattern, re.IGNORECASE | flags), description, category)


def scan_text(
    text: str,
    blocked: tuple[SecurityPattern, ...],
    warnings: tuple[SecurityPattern, ...],
) -> SecurityScanResult:
    result = SecurityScanResult()
    for pattern in blocked:
        for match in pattern.regex.finditer(text):
            result.blocked.append(_to_match(text, pattern, match))
    for pattern in warnings:
        for match in pattern.regex.finditer(text):
            result.warnings.append(_to_match(text, pattern, match))
    return result


def line_number_at(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _to_match(text: str, pattern: SecurityPattern, match: re.Match[str]) -> SecurityMatch:
    return SecurityMatch(
        description=pattern.description,
        category=pattern.category,
        matched_text=match.group(0).strip(),
        line_number=line_number_at(text, match.start()),
    )
