"""Named query configuration checks and SQL security scanning."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from llm_action_gateway.validators.results import (
    IssueCode,
    SecurityMatch,
    SecurityPattern,
    SecurityScanResult,
    ValidationResult,
    line_number_at,
    scan_text,
)

VALID_QUERY_TYPES = ("Query", "Update", "Insert", "Delete", "Scalar")
VALID_PARAMETER_TYPES = (
    "String",
    "Integer",
    "Long",
    "Double",
    "Float",
    "Boolean",
    "Date",
    "DateTime",
)

_DDL = "ddl"
_ADMIN = "administration"
_INJECTION = "injection"
_FILE = "filesystem_access"

BLOCKED_SQL_PATTERNS: tuple[SecurityPattern, ...] = (
    SecurityPattern.compile(
        r"\bDROP\s+(?:TABLE|DATABASE|INDEX|VIEW|SCHEMA|PROCEDURE|FUNCTION)\b",
        "DROP statement - DDL operations not allowed",
        _DDL,
    ),
    SecurityPattern.compile(r"\bTRUNCATE\s+TABLE\b", "TRUNCATE TABLE - dangerous bulk delete", _DDL),
    SecurityPattern.compile(
        r"\bALTER\s+(?:TABLE|DATABASE|SCHEMA)\b",
        "ALTER statement - schema modification not allowed",
        _DDL,
    ),
    SecurityPattern.compile(
        r"\bCREATE\s+(?:TABLE|DATABASE|INDEX|SCHEMA|PROCEDURE|FUNCTION)\b",
        "CREATE statement - DDL operations not allowed",
        _DDL,
    ),
    SecurityPattern.compile(r"\bGRANT\b", "GRANT - permission management not allowed", _ADMIN),
    SecurityPattern.compile(r"\bREVOKE\b", "REVOKE - permission management not allowed", _ADMIN),
    SecurityPattern.compile(
        r"\bEXEC(?:UTE)?\s*\(", "EXECUTE - dynamic SQL execution not allowed", _ADMIN
    ),
    SecurityPattern.compile(
        r"\bxp_cmdshell\b", "xp_cmdshell - system command execution not allowed", _ADMIN
    ),
    SecurityPattern.compile(
        r"\bsp_configure\b", "sp_configure - server configuration not allowed", _ADMIN
    ),
    SecurityPattern.compile(r"\bSHUTDOWN\b", "SHUTDOWN - server shutdown not allowed", _ADMIN),
    SecurityPattern.compile(
        r";\s*--.*$",
        "SQL injection pattern (semicolon followed by comment)",
        _INJECTION,
        re.MULTILINE,
    ),
    SecurityPattern.compile(
        r"\bUNION\s+SELECT\b.*\bFROM\s+information_schema\b",
        "Information schema enumeration via UNION",
        _INJECTION,
    ),
    SecurityPattern.compile(r"\bsleep\s*\(", "SLEEP - time-based SQL injection pattern", _INJECTION),
    SecurityPattern.compile(
        r"\bWAITFOR\s+DELAY\b", "WAITFOR DELAY - time-based SQL injection pattern", _INJECTION
    ),
    SecurityPattern.compile(
        r"\bBENCHMARK\s*\(", "BENCHMARK - time-based SQL injection pattern", _INJECTION
    ),
    SecurityPattern.compile(r"\bLOAD_FILE\s*\(", "LOAD_FILE - file system access not allowed", _FILE),
    SecurityPattern.compile(r"\bINTO\s+OUTFILE\b", "INTO OUTFILE - file system write not allowed", _FILE),
)

WARNING_SQL_PATTERNS: tuple[SecurityPattern, ...] = (
    SecurityPattern.compile(
        r"""['"]\s*(?:\+|\|\|)""",
        "Possible SQL injection: string concatenation detected. "
        "Use parameterized queries with :paramName instead.",
        _INJECTION,
    ),
    SecurityPattern.compile(
        r"\b(?:FROM|TABLE)\s*\+",
        "Dynamic table name detected - this may be a security risk",
        _INJECTION,
    ),
    SecurityPattern.compile(
        r"\bDELETE\s+FROM\s+\w+\s*(?:;|$)",
        "DELETE without WHERE clause will delete all rows",
        "bulk_modification",
        re.MULTILINE,
    ),
)

_UPDATE_STATEMENT = re.compile(r"\bUPDATE\s+\w+\s+SET\b", re.IGNORECASE)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_COLON_PARAM = re.compile(r"(?<![:\w]):(\w+)")
_BRACE_PARAM = re.compile(r"\{(\w+)\}")
_PARAM_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


class NamedQueryValidator:
    """Validates named query definitions.

    ``validate`` checks a complete definition as sent on create;
    ``validate_update`` checks only the fields present in a partial update.
    """

    def validate(self, config: Mapping[str, Any] | None) -> ValidationResult:
        result = ValidationResult()
        if config is None:
            return result.add_error(
                "config", "Named query configuration cannot be null", IssueCode.REQUIRED_FIELD
            )

        if "queryType" not in config:
            result.add_error("queryType", "Query type is required", IssueCode.REQUIRED_FIELD)
        else:
            _check_query_type(config["queryType"], result)

        if "database" not in config:
            result.add_error(
                "database", "Database connection name is required", IssueCode.REQUIRED_FIELD
            )
        elif not str(config["database"]).strip():
            result.add_error(
                "database", "Database connection name cannot be empty", IssueCode.REQUIRED_FIELD
            )

        if "query" not in config:
            result.add_error("query", "SQL query is required", IssueCode.REQUIRED_FIELD)
        else:
            sql = str(config["query"])
            if not sql.strip():
                result.add_error("query", "SQL query cannot be empty", IssueCode.REQUIRED_FIELD)
            else:
                _check_sql_syntax(sql, result)
                _check_parameter_usage(sql, config, result)

        if "parameters" in config:
            _check_parameters(config["parameters"], result)

        cache_expiry = config.get("cacheExpiry")
        if isinstance(cache_expiry, (int, float)) and not isinstance(cache_expiry, bool):
            if cache_expiry < 0:
                result.add_error(
                    "cacheExpiry", "Cache expiry cannot be negative", IssueCode.INVALID_RANGE
                )
        return result

    def validate_update(self, payload: Mapping[str, Any] | None) -> ValidationResult:
        result = ValidationResult()
        if not payload:
            return result.add_error(
                "payload", "Update payload cannot be empty", IssueCode.REQUIRED_FIELD
            )
        if "queryType" in payload:
            _check_query_type(payload["queryType"], result)
        if "query" in payload:
            sql = str(payload["query"])
            if not sql.strip():
                result.add_error("query", "SQL query cannot be empty", IssueCode.REQUIRED_FIELD)
            else:
                _check_sql_syntax(sql, result)
        if "parameters" in payload:
            _check_parameters(payload["parameters"], result)
        return result

    def security_scan(self, sql: str | None) -> SecurityScanResult:
        if sql is None or not sql.strip():
            return SecurityScanResult()
        result = scan_text(sql, BLOCKED_SQL_PATTERNS, WARNING_SQL_PATTERNS)
        for match in _UPDATE_STATEMENT.finditer(sql):
            if not _WHERE.search(sql, match.end()):
                result.warnings.append(
                    _update_without_where(sql, match.group(0), match.start())
                )
        return result


def extract_parameters(sql: str) -> set[str]:
    """Return the ``:name`` and ``{name}`` placeholders referenced by ``sql``."""
    return set(_COLON_PARAM.findall(sql)) | set(_BRACE_PARAM.findall(sql))


def _check_query_type(value: Any, result: ValidationResult) -> None:
    query_type = str(value)
    if query_type not in VALID_QUERY_TYPES:
        result.add_error(
            "queryType",
            f"Invalid query type: {query_type}. Valid types: {', '.join(VALID_QUERY_TYPES)}",
            IssueCode.INVALID_VALUE,
        )


def _check_sql_syntax(sql: str, result: ValidationResult) -> None:
    single_quotes = 0
    skip = False
    for index, c in enumerate(sql):
        if skip:
            skip = False
            continue
        # Backslash escapes and doubled quotes ('') do not open a literal.
        if c == "\\" or (c == "'" and sql[index + 1:index + 2] == "'"):
            skip = True
            continue
        if c == "'":
            single_quotes += 1
    if single_quotes % 2:
        result.add_warning("query: Unbalanced single quotes in SQL")

    if sql.count("(") != sql.count(")"):
        result.add_warning("query: Unbalanced parentheses in SQL")


def _check_parameter_usage(sql: str, config: Mapping[str, Any], result: ValidationResult) -> None:
    used = extract_parameters(sql)
    declared_params = config.get("parameters")
    if declared_params is None:
        if used:
            result.add_warning(
                f"parameters: SQL uses parameters {sorted(used)} but no parameters are declared"
            )
        return
    if not isinstance(declared_params, list):
        return
    declared = {
        str(param["name"])
        for param in declared_params
        if isinstance(param, Mapping) and param.get("name") is not None
    }
    for name in sorted(used - declared):
        result.add_warning(f"parameters: Parameter '{name}' used in SQL but not declared")
    for name in sorted(declared - used):
        result.add_info(f"parameters: Parameter '{name}' declared but not used in SQL")


def _check_parameters(params: Any, result: ValidationResult) -> None:
    if not isinstance(params, list):
        result.add_error("parameters", "Parameters must be a list", IssueCode.INVALID_TYPE)
        return
    seen: set[str] = set()
    for index, param in enumerate(params):
        field_name = f"parameters[{index}]"
        if not isinstance(param, Mapping):
            result.add_error(field_name, "Parameter must be an object", IssueCode.INVALID_TYPE)
            continue
        if "name" not in param:
            result.add_error(
                f"{field_name}.name", "Parameter name is required", IssueCode.REQUIRED_FIELD
            )
        else:
            name = str(param["name"])
            if not name.strip():
                result.add_error(
                    f"{field_name}.name", "Parameter name cannot be empty", IssueCode.REQUIRED_FIELD
                )
            elif name in seen:
                result.add_error(
                    f"{field_name}.name", f"Duplicate parameter name: {name}", IssueCode.DUPLICATE
                )
            else:
                seen.add(name)
            if not _PARAM_NAME.match(name):
                result.add_warning(
                    f"{field_name}.name: Parameter name should start with a letter and "
                    "contain only alphanumeric characters"
                )
        if "type" in param and str(param["type"]) not in VALID_PARAMETER_TYPES:
            result.add_warning(
                f"{field_name}.type: Unknown parameter type: {param['type']}. "
                f"Valid types: {', '.join(VALID_PARAMETER_TYPES)}"
            )


def _update_without_where(sql: str, matched: str, offset: int) -> SecurityMatch:
    return SecurityMatch(
        description="UPDATE without WHERE clause will update all rows",
        category="bulk_modification",
        matched_text=matched,
        line_number=line_number_at(sql, offset),
    )
