from __future__ import annotations

import pytest

from llm_action_gateway.validators.results import IssueCode
from llm_action_gateway.validators.script import (
    ScriptType,
    ScriptValidator,
    delimiter_imbalance,
)


@pytest.fixture
def validator() -> ScriptValidator:
    return ScriptValidator()


def test_empty_code_is_an_error(validator):
    result = validator.validate("   ")
    assert not result.is_valid
    assert result.codes() == {IssueCode.REQUIRED_FIELD}


def test_clean_library_script_passes(validator):
    code = "def add(a, b):\n    return a + b\n"
    result = validator.validate(code, ScriptType.PROJECT_LIBRARY)
    assert result.is_valid
    assert result.warnings == []


def test_library_top_level_call_warns(validator):
    result = validator.validate("def f():\n    pass\nf()\n")
    assert result.is_valid
    assert any("Line 3" in w for w in result.warnings)


def test_unbalanced_delimiters_are_warnings_not_errors(validator):
    result = validator.validate("def f(:\n    return [1, 2\n")
    assert result.is_valid
    assert "syntax: Mismatched parentheses detected" in result.warnings
    assert "syntax: Mismatched brackets detected" in result.warnings


def test_unclosed_string_literal_warns(validator):
    result = validator.validate("def f():\n    return 'oops\n")
    assert any("unclosed string" in w for w in result.warnings)


def test_bare_except_and_mutable_default(validator):
    code = "def f(x=[]):\n    try:\n        pass\n    except:\n        pass\n"
    result = validator.validate(code)
    assert any("Bare 'except:'" in w for w in result.warnings)
    assert any("Mutable default" in w for w in result.warnings)


def test_gateway_event_sleep_warning(validator):
    result = validator.validate("import time\ntime.sleep(5)\n", ScriptType.GATEWAY_EVENT)
    assert any(w.startswith("performance:") for w in result.warnings)


@pytest.mark.parametrize(
    "code, category",
    [
        ("import os\nos.system('ls')\n", "command_execution"),
        ("import subprocess\nsubprocess.call(['ls'])\n", "command_execution"),
        ("x = eval('1 + 1')\n", "code_evaluation"),
        ("open('/etc/passwd')\n", "filesystem_access"),
        ("import socket\ns = socket.socket()\n", "network_access"),
        ("system.security.getRoles()\n", "credential_access"),
        ("object.__subclasses__()\n", "reflection"),
    ],
)
def test_security_scan_blocks_dangerous_code(validator, code, category):
    scan = validator.security_scan(code)
    assert scan.is_blocked
    assert category in {match.category for match in scan.blocked}


def test_security_scan_reports_line_numbers(validator):
    scan = validator.security_scan("x = 1\ny = 2\nexec('z = 3')\n")
    assert scan.blocked[0].line_number == 3


def test_security_scan_warns_on_tag_writes(validator):
    scan = validator.security_scan("system.tag.writeBlocking(['[default]A'], [1])\n")
    assert not scan.is_blocked
    assert scan.has_warnings


def test_security_scan_none_is_clean(validator):
    assert not validator.security_scan(None).is_blocked


def test_script_type_parse():
    assert ScriptType.parse(None) is ScriptType.PROJECT_LIBRARY
    assert ScriptType.parse("Gateway") is ScriptType.GATEWAY_EVENT
    assert ScriptType.parse("message_handler") is ScriptType.MESSAGE_HANDLER
    with pytest.raises(ValueError, match="Unknown script type"):
        ScriptType.parse("cron")


def test_delimiter_imbalance_ignores_quoted_text():
    assert delimiter_imbalance("print('(')") == []
    assert delimiter_imbalance("{[}") == ["Mismatched brackets detected"]
