"""Fold per-test results into one evaluation outcome."""

from __future__ import annotations

from gavel.models import EvaluationOutcome, ExecutionResult, Mode, PerformanceSummary


def summarize_performance(results: list[ExecutionResult]) -> PerformanceSummary | None:
    """Timing and memory statistics; None when no result carries a time."""
    times = [r.execution_time_ms for r in results if isinstance(r.execution_time_ms, (int, float))]
    memory = [r.memory_kb for r in results if isinstance(r.memory_kb, (int, float))]
    if not times:
        return None

    fastest = min(times)
    slowest = max(times)
    # Rounding must not push the average outside [fastest, slowest].
    average = min(max(round(sum(times) / len(times), 2), fastest), slowest)
    return PerformanceSummary(
        average_ms=average,
        fastest_ms=fastest,
        slowest_ms=slowest,
        peak_memory_kb=max(memory) if memory else None,
    )


def aggregate(
    results: list[ExecutionResult],
    total_tests: int,
    mode: Mode | None = None,
) -> EvaluationOutcome:
    ordered = sorted(results, key=lambda r: r.index)
    executed = [r for r in ordered if r.passed is not None]
    first_failure = next((r for r in executed if r.passed is False), None)
    passed_tests = sum(1 for r in executed if r.passed is True)
    return EvaluationOutcome(
        results=ordered,
        first_failure=first_failure,
        passed_tests=passed_tests,
        total_tests=total_tests,
        executed_tests=len(executed),
        all_passed=bool(total_tests) and len(executed) == total_tests and first_failure is None,
        performance_summary=summarize_performance(executed),
        mode=mode,
    )
