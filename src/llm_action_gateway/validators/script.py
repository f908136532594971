"""Structural checks and security scanning for embedded script bodies."""

from __future__ import annotations

import re
from enum import Enum

from llm_action_gateway.validators.results import (
    IssueCode,
    SecurityPattern,
    SecurityScanResult,
    ValidationResult,
    scan_text,
)


class ScriptType(str, Enum):
    PROJECT_LIBRARY = "library"
    GATEWAY_EVENT = "gateway"
    TAG_EVENT = "tag"
    PERSPECTIVE = "perspective"
    MESSAGE_HANDLER = "message"

    @classmethod
    def parse(cls, value: str | None) -> "ScriptType":
        if not value:
            return cls.PROJECT_LIBRARY
        normalized = value.strip().lower()
        for script_type in cls:
            if script_type.value == normalized or script_type.name.lower() == normalized:
                return script_type
        raise ValueError(
            f"Unknown script type: {value}. "
            f"Valid types: {', '.join(t.value for t in cls)}"
        )


_CMD = "command_execution"
_EVAL = "code_evaluation"
_FS = "filesystem_access"
_NET = "network_access"
_CRED = "credential_access"
_REFLECT = "reflection"

BLOCKED_PATTERNS: tuple[SecurityPattern, ...] = (
    SecurityPattern.compile(
        r"Runtime\.getRuntime\(\)\.exec", "Java Runtime.exec() - system command execution", _CMD
    ),
    SecurityPattern.compile(
        r"\bProcessBuilder\b", "Java ProcessBuilder - system command execution", _CMD
    ),
    SecurityPattern.compile(r"\bos\.system\s*\(", "os.system() - system command execution", _CMD),
    SecurityPattern.compile(r"\bos\.popen\s*\(", "os.popen() - system command execution", _CMD),
    SecurityPattern.compile(r"\bsubprocess\.", "subprocess module - system command execution", _CMD),
    SecurityPattern.compile(r"\bos\.spawn", "os.spawn() - process spawning", _CMD),
    SecurityPattern.compile(r"\bopen\s*\(\s*['\"][/\\]", "File access with absolute path", _FS),
    SecurityPattern.compile(r"\bos\.remove\s*\(", "os.remove() - file deletion", _FS),
    SecurityPattern.compile(r"\bos\.rmdir\s*\(", "os.rmdir() - directory deletion", _FS),
    SecurityPattern.compile(
        r"\bshutil\.rmtree\s*\(", "shutil.rmtree() - recursive directory deletion", _FS
    ),
    SecurityPattern.compile(r"\b__import__\s*\(", "__import__() - dynamic import", _EVAL),
    SecurityPattern.compile(r"\bimportlib\.", "importlib - dynamic import", _EVAL),
    SecurityPattern.compile(r"\beval\s*\(", "eval() - arbitrary code execution", _EVAL),
    SecurityPattern.compile(r"\bexec\s*\(", "exec() - arbitrary code execution", _EVAL),
    SecurityPattern.compile(r"\bcompile\s*\(", "compile() - code compilation", _EVAL),
    SecurityPattern.compile(r"\bexecfile\s*\(", "execfile() - file execution", _EVAL),
    SecurityPattern.compile(r"\bsocket\.socket\s*\(", "socket.socket() - raw network access", _NET),
    SecurityPattern.compile(
        r"\burllib\.request\.urlopen", "urllib.request.urlopen() - direct HTTP requests", _NET
    ),
    SecurityPattern.compile(r"\burllib2\.urlopen", "urllib2.urlopen() - direct HTTP requests", _NET),
    SecurityPattern.compile(
        r"\brequests\.(?:get|post|put|delete|patch)\s*\(",
        "requests library - direct HTTP requests",
        _NET,
    ),
    SecurityPattern.compile(
        r"\bsystem\.security\.", "system.security.* - security configuration access", _CRED
    ),
    SecurityPattern.compile(
        r"\bsystem\.user\.getUser\b", "system.user.getUser() - user credential access", _CRED
    ),
    SecurityPattern.compile(
        r"\bPasswordAuthenticator\b", "PasswordAuthenticator - authentication bypass risk", _CRED
    ),
    SecurityPattern.compile(r"getPassword\s*\(\s*\)", "getPassword() - password access", _CRED),
    SecurityPattern.compile(
        r"\bgetattr\s*\(.*,\s*['\"]__",
        "getattr() with dunder attribute - internal access",
        _REFLECT,
    ),
    SecurityPattern.compile(
        r"\.__class__\.__bases__", "__class__.__bases__ - class hierarchy manipulation", _REFLECT
    ),
    SecurityPattern.compile(
        r"\.__subclasses__\s*\(", "__subclasses__() - class hierarchy access", _REFLECT
    ),
)

WARNING_PATTERNS: tuple[SecurityPattern, ...] = (
    SecurityPattern.compile(
        r"\bsystem\.db\.runPrepQuery\b",
        "Direct database query - ensure parameterized queries are used",
        "database",
    ),
    SecurityPattern.compile(
        r"\bsystem\.db\.runUpdateQuery\b", "Database modification - verify query safety", "database"
    ),
    SecurityPattern.compile(
        r"\bsystem\.db\.runQuery\b",
        "Database query - prefer runPrepQuery for parameterized queries",
        "database",
    ),
    SecurityPattern.compile(
        r"\bsystem\.tag\.write\b", "Tag write operation - verify target tags", "tag_write"
    ),
    SecurityPattern.compile(
        r"\bsystem\.tag\.writeBlocking\b", "Blocking tag write - verify target tags", "tag_write"
    ),
    SecurityPattern.compile(
        r"\bsystem\.opc\.write\b", "OPC write operation - verify PLC safety", "device_write"
    ),
    SecurityPattern.compile(
        r"\bsystem\.util\.sendMessage\b",
        "Message handler invocation - verify message handlers",
        "messaging",
    ),
    SecurityPattern.compile(
        r"\bsystem\.util\.sendRequest\b", "Gateway message request - verify handlers", "messaging"
    ),
    SecurityPattern.compile(
        r"\bwhile\s+True\s*:", "Infinite loop detected - ensure exit condition exists", "loop"
    ),
    SecurityPattern.compile(
        r"\bwhile\s+1\s*:", "Infinite loop detected - ensure exit condition exists", "loop"
    ),
    SecurityPattern.compile(
        r"\btime\.sleep\s*\(", "Sleep in script - may block gateway threads", "blocking"
    ),
    SecurityPattern.compile(
        r"\bThread\.sleep\s*\(", "Thread.sleep() - may block gateway threads", "blocking"
    ),
    SecurityPattern.compile(
        r"\bsystem\.util\.invokeAsynchronous\b",
        "Async execution - ensure proper error handling",
        "threading",
    ),
    SecurityPattern.compile(
        r"\bsystem\.perspective\.sendMessage\b",
        "Perspective message - verify client impact",
        "messaging",
    ),
)

_BARE_EXCEPT = re.compile(r"except\s*:")
_MUTABLE_DEFAULT = re.compile(r"def\s+\w+\s*\([^)]*=\s*(\[|\{)")
_LIBRARY_SKIP_PREFIXES = ("#", "import ", "from ", "def ", "class ", "@")


class ScriptValidator:
    """Validates script bodies before they are stored."""

    def validate(
        self,
        code: str | None,
        script_type: ScriptType = ScriptType.PROJECT_LIBRARY,
    ) -> ValidationResult:
        result = ValidationResult()
        if code is None or not code.strip():
            return result.add_error("code", "Script code cannot be empty", IssueCode.REQUIRED_FIELD)

        self._check_string_literals(code, result)
        self._check_delimiters(code, result)
        self._check_script_type(code, script_type, result)
        self._check_common_patterns(code, result)
        return result

    def security_scan(self, code: str | None) -> SecurityScanResult:
        if code is None:
            return SecurityScanResult()
        return scan_text(code, BLOCKED_PATTERNS, WARNING_PATTERNS)

    @staticmethod
    def _check_string_literals(code: str, result: ValidationResult) -> None:
        in_single = in_double = False
        in_triple_single = in_triple_double = False
        escaped = False
        i = 0
        while i < len(code):
            c = code[i]
            if escaped:
                escaped = False
                i += 1
                continue
            if c == "\\":
                escaped = True
                i += 1
                continue
            triple = code[i:i + 3]
            if triple == "'''" and not in_double and not in_triple_double:
                in_triple_single = not in_triple_single
                i += 3
                continue
            if triple == '"""' and not in_single and not in_triple_single:
                in_triple_double = not in_triple_double
                i += 3
                continue
            if not (in_triple_single or in_triple_double):
                if c == "'" and not in_double:
                    in_single = not in_single
                elif c == '"' and not in_single:
                    in_double = not in_double
                elif c == "\n":
                    # Single-quoted literals never span lines.
                    if in_single or in_double:
                        result.add_warning("syntax: Possible unclosed string literal detected")
                    in_single = in_double = False
            i += 1

        if in_single or in_double or in_triple_single or in_triple_double:
            result.add_warning("syntax: Possible unclosed string literal detected")

    @staticmethod
    def _check_delimiters(code: str, result: ValidationResult) -> None:
        result.warnings.extend(
            f"syntax: {message}" for message in delimiter_imbalance(code)
        )

    @staticmethod
    def _check_script_type(code: str, script_type: ScriptType, result: ValidationResult) -> None:
        if script_type is ScriptType.PROJECT_LIBRARY:
            if "def " not in code and "class " not in code:
                result.add_info("structure: Library scripts typically define functions or classes")
            for index, raw_line in enumerate(code.split("\n"), start=1):
                line = raw_line.strip()
                if not line or line.startswith(_LIBRARY_SKIP_PREFIXES):
                    continue
                if raw_line.startswith((" ", "\t")):
                    continue
                if "(" in line and not line.startswith("if __name__"):
                    result.add_warning(
                        f"structure: Line {index}: Top-level function call in library "
                        "script may execute on import"
                    )
        elif script_type is ScriptType.TAG_EVENT:
            result.add_info(
                "context: Tag event scripts receive an 'event' object with tagPath, "
                "previousValue, currentValue and initialChange"
            )
        elif script_type is ScriptType.GATEWAY_EVENT:
            if "time.sleep" in code or "Thread.sleep" in code:
                result.add_warning(
                    "performance: Avoid sleep() in gateway event scripts; "
                    "use proper scheduling instead"
                )
        elif script_type is ScriptType.PERSPECTIVE:
            result.add_info(
                "context: Perspective scripts run in client scope; "
                "use self.session, self.page and self.view"
            )
        elif script_type is ScriptType.MESSAGE_HANDLER:
            if "payload" not in code:
                result.add_info(
                    "context: Message handlers receive a 'payload' argument with message data"
                )

    @staticmethod
    def _check_common_patterns(code: str, result: ValidationResult) -> None:
        if "global " in code and "def " in code:
            result.add_info("style: Consider passing values as parameters instead of using 'global'")
        if _BARE_EXCEPT.search(code):
            result.add_warning(
                "exception: Bare 'except:' clause catches all exceptions including "
                "SystemExit; consider 'except Exception:'"
            )
        if _MUTABLE_DEFAULT.search(code):
            result.add_warning(
                "style: Mutable default argument (list or dict) can cause unexpected behavior"
            )


_PAIRS = {"(": ")", "[": "]", "{": "}"}
_NAMES = {"(": "parentheses", "[": "brackets", "{": "braces"}


def delimiter_imbalance(text: str) -> list[str]:
    """Return one message per delimiter kind whose counts do not balance.

    Characters inside single or double quoted strings are ignored.
    """
    counts = {opener: 0 for opener in _PAIRS}
    closers = {closer: opener for opener, closer in _PAIRS.items()}
    in_single = in_double = False
    for c in text:
        if c == "'" and not in_double:
            in_single = not in_single
            continue
        if c == '"' and not in_single:
            in_double = not in_double
            continue
        if in_single or in_double:
            continue
        if c in counts:
            counts[c] += 1
        elif c in closers:
            counts[closers[c]] -= 1
    return [f"Mismatched {_NAMES[opener]} detected" for opener, n in counts.items() if n != 0]
