"""Configuration for gavel, loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

EXECUTOR_TYPES = ("local", "judge0")


def _parse_language_ids(value: str) -> dict[str, int]:
    """Parse ``python=71,java=62`` into a language -> judge id mapping."""
    ids: dict[str, int] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, raw_id = item.partition("=")
        if not sep:
            raise ValueError(f"Invalid language id mapping: {item!r}")
        ids[name.strip().lower()] = int(raw_id)
    return ids


@dataclass
class Config:
    run_executor: str = "local"  # "local" or "judge0"
    submit_executor: str = "judge0"
    judge0_url: str = ""
    judge0_api_key: str = ""
    judge0_language_ids: dict[str, int] = field(default_factory=dict)
    judge0_request_timeout: float = 30.0  # seconds
    judge0_cpu_time_limit: float = 5.0  # seconds, forwarded to the judge
    judge0_poll_interval: float = 0.5
    judge0_max_poll_attempts: int = 60
    local_timeout_ms: int = 5000
    compile_timeout_ms: int = 10000
    output_limit_bytes: int = 1024 * 1024
    max_memory_mb: int = 256
    queue_width: int = 5
    retry_max_attempts: int = 4
    retry_base_delay_ms: int = 1000
    python_bin: str = "python3"
    node_bin: str = "node"
    javac_bin: str = "javac"
    java_bin: str = "java"
    gxx_bin: str = "g++"
    gcc_bin: str = "gcc"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("run_executor", "submit_executor"):
            if getattr(self, name) not in EXECUTOR_TYPES:
                raise ValueError(
                    f"{name} must be one of {', '.join(EXECUTOR_TYPES)}, got {getattr(self, name)!r}"
                )
        for name in (
            "local_timeout_ms",
            "compile_timeout_ms",
            "output_limit_bytes",
            "max_memory_mb",
            "queue_width",
            "retry_max_attempts",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.retry_base_delay_ms < 0:
            raise ValueError("retry_base_delay_ms must not be negative")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ValueError(f"log_level must be a logging level name, got {self.log_level!r}")

    @classmethod
    def from_env(cls, **overrides) -> Config:
        kwargs: dict = {}
        env_map: dict[str, tuple[str, type]] = {
            "GAVEL_RUN_EXECUTOR": ("run_executor", str),
            "GAVEL_SUBMIT_EXECUTOR": ("submit_executor", str),
            "JUDGE0_API_URL": ("judge0_url", str),
            "JUDGE0_API_KEY": ("judge0_api_key", str),
            "GAVEL_JUDGE0_REQUEST_TIMEOUT": ("judge0_request_timeout", float),
            "GAVEL_JUDGE0_CPU_TIME_LIMIT": ("judge0_cpu_time_limit", float),
            "GAVEL_LOCAL_TIMEOUT_MS": ("local_timeout_ms", int),
            "GAVEL_COMPILE_TIMEOUT_MS": ("compile_timeout_ms", int),
            "GAVEL_OUTPUT_LIMIT_BYTES": ("output_limit_bytes", int),
            "GAVEL_MAX_MEMORY_MB": ("max_memory_mb", int),
            "GAVEL_QUEUE_WIDTH": ("queue_width", int),
            "GAVEL_RETRY_MAX_ATTEMPTS": ("retry_max_attempts", int),
            "GAVEL_RETRY_BASE_DELAY_MS": ("retry_base_delay_ms", int),
            "GAVEL_PYTHON_BIN": ("python_bin", str),
            "GAVEL_NODE_BIN": ("node_bin", str),
            "GAVEL_JAVAC_BIN": ("javac_bin", str),
            "GAVEL_JAVA_BIN": ("java_bin", str),
            "GAVEL_GXX_BIN": ("gxx_bin", str),
            "GAVEL_GCC_BIN": ("gcc_bin", str),
            "GAVEL_LOG_LEVEL": ("log_level", str),
        }
        for env_var, (field_name, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val is not None:
                kwargs[field_name] = conv(val)
        ids_val = os.environ.get("GAVEL_JUDGE0_LANGUAGE_IDS")
        if ids_val:
            kwargs["judge0_language_ids"] = _parse_language_ids(ids_val)
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
