"""Evaluation service: owns the executors and the judge queue for one process."""

from __future__ import annotations

import logging

from gavel.config import EXECUTOR_TYPES, Config
from gavel.errors import UnsupportedLanguageError, ValidationError
from gavel.executor_base import CodeExecutor
from gavel.executor_factory import create_executor
from gavel.judge_queue import SubmissionQueue
from gavel.models import (
    EvaluateRequest,
    EvaluationOutcome,
    ExecuteRequest,
    Mode,
    RunOutput,
    SyntaxCheck,
)
from gavel.scheduler import TestScheduler

logger = logging.getLogger(__name__)


class EvaluationService:
    """Explicitly constructed owner of everything an evaluation needs.

    Start it once per process (``async with EvaluationService(config)``) and
    share it between requests: the submission queue inside is the single
    gate on outbound judge calls.
    """

    def __init__(
        self,
        config: Config | None = None,
        executors: dict[str, CodeExecutor] | None = None,
        queue: SubmissionQueue | None = None,
    ) -> None:
        self.config = config or Config()
        self.queue = queue or SubmissionQueue(self.config.queue_width)
        # Built on first use, so a local-only process never configures a judge client.
        self._executors: dict[str, CodeExecutor] = dict(executors or {})

    async def start(self) -> None:
        await self.queue.start()

    async def aclose(self) -> None:
        await self.queue.close()
        for executor in self._executors.values():
            close = getattr(executor, "aclose", None)
            if close is not None:
                await close()

    async def __aenter__(self) -> EvaluationService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def executor_for(self, mode: Mode, executor_type: str | None = None) -> CodeExecutor:
        """The caller's explicit choice, else the configured executor for the mode."""
        if executor_type is None:
            executor_type = (
                self.config.submit_executor if mode is Mode.SUBMIT else self.config.run_executor
            )
        if executor_type not in self._executors:
            if executor_type not in EXECUTOR_TYPES:
                raise ValidationError(f"Unknown executor: {executor_type!r}")
            self._executors[executor_type] = create_executor(self.config, executor_type, self.queue)
        return self._executors[executor_type]

    async def evaluate(
        self,
        request: EvaluateRequest,
        executor_type: str | None = None,
    ) -> EvaluationOutcome:
        executor = self.executor_for(request.mode, executor_type)
        logger.info(
            "Evaluating %s code in %s mode on the %s executor (%d test case(s))",
            request.language.value,
            request.mode.value,
            executor.name,
            len(request.test_cases),
        )
        outcome = await TestScheduler(executor).evaluate(request)
        logger.info(
            "Execution completed (%s mode): %d/%d passed, %d executed",
            request.mode.value,
            outcome.passed_tests,
            outcome.total_tests,
            outcome.executed_tests,
        )
        return outcome

    def queue_status(self) -> dict[str, int]:
        return self.queue.status()

    async def execute(self, request: ExecuteRequest, executor_type: str | None = None) -> RunOutput:
        """Run a raw program with piped stdin; no harness, no comparison."""
        executor = self.executor_for(Mode.RUN, executor_type)
        if not executor.supports(request.language):
            raise UnsupportedLanguageError(request.language.value)
        logger.info("Executing raw %s program on the %s executor", request.language.value, executor.name)
        return await executor.run(request.code, request.language, stdin=request.input)

    async def check_syntax(self, request: ExecuteRequest) -> SyntaxCheck:
        """Syntax-only check, always on the local toolchain."""
        return await self.executor_for(Mode.RUN, "local").check_syntax(request.code, request.language)
