"""Factory for creating code executors based on configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gavel.executor import LocalSandboxExecutor
from gavel.executor_base import CodeExecutor
from gavel.judge_queue import SubmissionQueue
from gavel.retry import RetryPolicy

if TYPE_CHECKING:
    from gavel.config import Config
    from gavel.executor_judge0 import Judge0Client


def create_retry_policy(config: Config) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.retry_max_attempts,
        base_delay=config.retry_base_delay_ms / 1000,
    )


def create_judge0_client(config: Config) -> Judge0Client:
    from gavel.executor_judge0 import Judge0Client, Judge0Config

    return Judge0Client(
        Judge0Config(
            base_url=config.judge0_url,
            api_key=config.judge0_api_key,
            language_ids=config.judge0_language_ids,
            request_timeout=config.judge0_request_timeout,
            cpu_time_limit=config.judge0_cpu_time_limit,
            memory_limit_kb=config.max_memory_mb * 1024,
            poll_interval=config.judge0_poll_interval,
            max_poll_attempts=config.judge0_max_poll_attempts,
        )
    )


def create_executor(
    config: Config,
    executor_type: str = "local",
    queue: SubmissionQueue | None = None,
) -> CodeExecutor:
    """Create an executor of the given type ("local" or "judge0")."""
    if executor_type == "judge0":
        from gavel.executor_judge0 import RemoteJudgeExecutor

        return RemoteJudgeExecutor(
            create_judge0_client(config),
            queue or SubmissionQueue(config.queue_width),
            create_retry_policy(config),
        )
    return LocalSandboxExecutor.from_config(config)
