"""Data models for gavel."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

from gavel.errors import UnsupportedLanguageError, ValidationError


class Language(enum.Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    JAVA = "java"
    CPP = "cpp"
    C = "c"

    @classmethod
    def parse(cls, value: str | Language) -> Language:
        if isinstance(value, Language):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedLanguageError(str(value), [lang.value for lang in cls]) from None


class Mode(enum.Enum):
    RUN = "run"
    SUBMIT = "submit"


class RunStatus(enum.Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    TIME_LIMIT_EXCEEDED = "Time Limit Exceeded"
    COMPILATION_ERROR = "Compilation Error"
    RUNTIME_ERROR = "Runtime Error"
    OUTPUT_LIMIT_EXCEEDED = "Output Limit Exceeded"
    TOOL_MISSING = "Tool Missing"
    INTERNAL_ERROR = "Internal Error"
    EXECUTION_ERROR = "Execution Error"


def coerce_expected_output(value: Any) -> str | None:
    """Render an expected output in the same canonical form the harness prints."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, separators=(",", ":"))
    except TypeError:
        return str(value)


@dataclass(frozen=True)
class TestCase:
    __test__ = False  # keep pytest from collecting this class

    input: str
    expected_output: str | None = None
    is_hidden: bool = False
    explanation: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> TestCase:
        if not isinstance(data, dict):
            raise ValidationError("Each test case must be an object.")
        raw_input = data.get("input", "")
        if not isinstance(raw_input, str):
            raw_input = coerce_expected_output(raw_input) or ""
        expected = data.get("expectedOutput", data.get("expected_output"))
        return cls(
            input=raw_input,
            expected_output=coerce_expected_output(expected),
            is_hidden=bool(data.get("isHidden", data.get("is_hidden", False))),
            explanation=data.get("explanation") or "",
        )


@dataclass
class EvaluateRequest:
    code: str
    language: Language
    test_cases: list[TestCase]
    mode: Mode = Mode.RUN
    adapter_code: str = ""
    entry_invocation: str | None = None
    problem_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict, mode: Mode | str | None = None) -> EvaluateRequest:
        """Build a request from the inbound JSON shape; ``mode`` overrides the body."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object.")
        code = data.get("code")
        language = data.get("language")
        test_cases = data.get("testCases", data.get("test_cases"))
        if not code or not language or not isinstance(test_cases, list):
            raise ValidationError("Code, language, and test cases are required.")
        if not isinstance(code, str):
            raise ValidationError("Code must be a string.")
        try:
            resolved_mode = Mode(mode or data.get("mode") or Mode.RUN.value)
        except ValueError:
            raise ValidationError(f"Unknown mode: {data.get('mode')!r}") from None
        return cls(
            code=code,
            language=Language.parse(language),
            test_cases=[TestCase.from_dict(tc) for tc in test_cases],
            mode=resolved_mode,
            adapter_code=data.get("adapterCode", data.get("adapter_code")) or "",
            entry_invocation=data.get("entryInvocation", data.get("entry_invocation")),
            problem_id=data.get("problemId", data.get("problem_id")),
        )


@dataclass
class ExecuteRequest:
    """A raw program run as-is, with piped stdin and no harness."""

    code: str
    language: Language = Language.PYTHON
    input: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ExecuteRequest:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object.")
        code = data.get("code")
        if not code or not isinstance(code, str) or not code.strip():
            raise ValidationError("Code is required.")
        stdin = data.get("input", data.get("stdin")) or ""
        if not isinstance(stdin, str):
            raise ValidationError("Input must be a string.")
        return cls(
            code=code,
            language=Language.parse(data.get("language") or Language.PYTHON),
            input=stdin,
        )


@dataclass
class SyntaxCheck:
    valid: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"valid": self.valid, "error": self.error}


@dataclass
class RunOutput:
    """What a single executor call produced."""

    status: RunStatus
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    time_ms: float | None = None
    memory_kb: float | None = None
    exit_code: int | None = None
    description: str = ""

    @property
    def status_text(self) -> str:
        return self.description or self.status.value


@dataclass
class ExecutionResult:
    index: int
    input: str
    expected_output: str | None
    actual_output: str
    error_output: str
    status: str
    passed: bool | None
    execution_time_ms: float | None = None
    memory_kb: float | None = None
    is_hidden: bool = False
    explanation: str = ""

    @property
    def test_case(self) -> int:
        """1-based test number, as shown to users."""
        return self.index + 1

    def to_dict(self) -> dict:
        return {
            "testCase": self.test_case,
            "originalIndex": self.index,
            "input": self.input,
            "expectedOutput": self.expected_output,
            "actualOutput": self.actual_output,
            "errorOutput": self.error_output,
            "status": self.status,
            "passed": self.passed,
            "executionTime": self.execution_time_ms,
            "memory": self.memory_kb,
            "isHidden": self.is_hidden,
            "explanation": self.explanation,
        }


@dataclass
class PerformanceSummary:
    average_ms: float | None = None
    fastest_ms: float | None = None
    slowest_ms: float | None = None
    peak_memory_kb: float | None = None

    def to_dict(self) -> dict:
        return {
            "averageMs": self.average_ms,
            "fastestMs": self.fastest_ms,
            "slowestMs": self.slowest_ms,
            "peakMemoryKb": self.peak_memory_kb,
        }


@dataclass
class EvaluationOutcome:
    results: list[ExecutionResult] = field(default_factory=list)
    first_failure: ExecutionResult | None = None
    passed_tests: int = 0
    total_tests: int = 0
    executed_tests: int = 0
    all_passed: bool = False
    performance_summary: PerformanceSummary | None = None
    mode: Mode | None = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value if self.mode else None,
            "results": [r.to_dict() for r in self.results],
            "firstFailure": self.first_failure.to_dict() if self.first_failure else None,
            "passedTests": self.passed_tests,
            "totalTests": self.total_tests,
            "executedTests": self.executed_tests,
            "allPassed": self.all_passed,
            "performanceSummary": (
                self.performance_summary.to_dict() if self.performance_summary else None
            ),
        }
