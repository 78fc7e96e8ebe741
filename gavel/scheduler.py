"""Test scheduling: parallel public tests, sequential hidden tests, stop-on-failure for submissions."""

from __future__ import annotations

import asyncio
import logging

from gavel.aggregator import aggregate
from gavel.errors import UnsupportedLanguageError, ValidationError
from gavel.executor_base import CodeExecutor
from gavel.harness import build_harness
from gavel.models import (
    EvaluateRequest,
    EvaluationOutcome,
    ExecutionResult,
    Mode,
    RunOutput,
    RunStatus,
    TestCase,
)

logger = logging.getLogger(__name__)


def validate_request(request: EvaluateRequest, executor: CodeExecutor) -> None:
    """Reject requests that cannot be evaluated, before anything runs."""
    if not request.code or not request.code.strip():
        raise ValidationError("Code is required.")
    if not request.test_cases:
        raise ValidationError("Test cases are required for execution.")
    if not executor.supports(request.language):
        raise UnsupportedLanguageError(request.language.value)


def order_test_cases(test_cases: list[TestCase]) -> list[TestCase]:
    """Public tests first, then hidden ones, each group in its original order."""
    return [tc for tc in test_cases if not tc.is_hidden] + [tc for tc in test_cases if tc.is_hidden]


def _normalize_output(text: str) -> str:
    return text.replace("\r\n", "\n").strip()


def outputs_match(expected: str, actual: str) -> bool:
    return _normalize_output(expected) == _normalize_output(actual)


def build_result(index: int, test_case: TestCase, output: RunOutput) -> ExecutionResult:
    stdout = output.stdout.strip()
    error_output = (output.stderr or output.compile_output).strip()
    expected = test_case.expected_output

    ran_ok = output.status is RunStatus.ACCEPTED
    passed = ran_ok and (expected is None or outputs_match(expected, output.stdout))
    status = output.status_text
    if ran_ok and not passed:
        status = RunStatus.WRONG_ANSWER.value

    return ExecutionResult(
        index=index,
        input=test_case.input,
        expected_output=expected.strip() if expected is not None else None,
        actual_output=stdout or error_output or status,
        error_output=error_output,
        status=status,
        passed=passed,
        execution_time_ms=output.time_ms,
        memory_kb=output.memory_kb,
        is_hidden=test_case.is_hidden,
        explanation=test_case.explanation,
    )


def _execution_error(index: int, test_case: TestCase, exc: Exception) -> ExecutionResult:
    message = str(exc) or type(exc).__name__
    return ExecutionResult(
        index=index,
        input=test_case.input,
        expected_output=(
            test_case.expected_output.strip() if test_case.expected_output is not None else None
        ),
        actual_output=message,
        error_output=message,
        status=RunStatus.EXECUTION_ERROR.value,
        passed=False,
        is_hidden=test_case.is_hidden,
        explanation=test_case.explanation,
    )


class TestScheduler:
    """Drives one request's test cases through an executor.

    Public tests always run concurrently. In submit mode a public failure
    stops the evaluation before any hidden test is dispatched; otherwise
    hidden tests run one at a time, stopping at the first failure. Run mode
    executes everything.
    """

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, executor: CodeExecutor) -> None:
        self._executor = executor

    async def evaluate(self, request: EvaluateRequest) -> EvaluationOutcome:
        validate_request(request, self._executor)

        ordered = order_test_cases(request.test_cases)
        public = [(i, tc) for i, tc in enumerate(ordered) if not tc.is_hidden]
        hidden = [(i, tc) for i, tc in enumerate(ordered) if tc.is_hidden]
        stop_on_failure = request.mode is Mode.SUBMIT
        results: list[ExecutionResult] = []

        if public:
            logger.info("Executing %d public test(s) in parallel...", len(public))
            batch = await asyncio.gather(*(self._run_test(request, i, tc) for i, tc in public))
            results.extend(batch)
            first_failure = next((r for r in batch if r.passed is False), None)
            if stop_on_failure and first_failure is not None:
                logger.info(
                    "Test %d failed; skipping %d hidden test(s).",
                    first_failure.test_case,
                    len(hidden),
                )
                return aggregate(results, len(ordered), request.mode)

        if hidden:
            logger.info("Executing %d hidden test(s) sequentially...", len(hidden))
            for i, tc in hidden:
                result = await self._run_test(request, i, tc)
                results.append(result)
                if stop_on_failure and result.passed is False:
                    break

        return aggregate(results, len(ordered), request.mode)

    async def _run_test(self, request: EvaluateRequest, index: int, test_case: TestCase) -> ExecutionResult:
        label = "Hidden test" if test_case.is_hidden else "Test"
        try:
            program = build_harness(
                request.language,
                request.code,
                test_case,
                request.adapter_code,
                request.entry_invocation,
            )
            output = await self._executor.run(
                program, request.language, expected_output=test_case.expected_output
            )
        except Exception as exc:
            logger.warning("%s %d could not be executed: %s", label, index + 1, exc)
            result = _execution_error(index, test_case, exc)
        else:
            result = build_result(index, test_case, output)
        logger.info(
            "  -> %s %d: %s (%s)",
            label,
            index + 1,
            "PASSED" if result.passed else "FAILED",
            result.status,
        )
        return result
