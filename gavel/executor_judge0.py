"""Judge0 REST API client and executor for sandboxed remote code execution."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

import httpx

from gavel.errors import JudgeError, JudgePollTimeout, UnsupportedLanguageError
from gavel.judge_queue import SubmissionQueue
from gavel.models import Language, RunOutput, RunStatus
from gavel.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

# Judge0 status codes
_STATUS_IN_QUEUE = 1
_STATUS_PROCESSING = 2
_STATUS_ACCEPTED = 3
_STATUS_WRONG_ANSWER = 4
_STATUS_TLE = 5
_STATUS_COMPILATION_ERROR = 6
_STATUS_RUNTIME_ERROR_SIGSEGV = 7
_STATUS_RUNTIME_ERROR_SIGXFSZ = 8
_STATUS_RUNTIME_ERROR_SIGFPE = 9
_STATUS_RUNTIME_ERROR_SIGABRT = 10
_STATUS_RUNTIME_ERROR_NZEC = 11
_STATUS_RUNTIME_ERROR_OTHER = 12
_STATUS_INTERNAL_ERROR = 13
_STATUS_EXEC_FORMAT_ERROR = 14

_PENDING_STATUSES = (_STATUS_IN_QUEUE, _STATUS_PROCESSING)

_STATUS_MAP = {
    _STATUS_ACCEPTED: RunStatus.ACCEPTED,
    _STATUS_WRONG_ANSWER: RunStatus.WRONG_ANSWER,
    _STATUS_TLE: RunStatus.TIME_LIMIT_EXCEEDED,
    _STATUS_COMPILATION_ERROR: RunStatus.COMPILATION_ERROR,
    _STATUS_RUNTIME_ERROR_SIGSEGV: RunStatus.RUNTIME_ERROR,
    _STATUS_RUNTIME_ERROR_SIGXFSZ: RunStatus.RUNTIME_ERROR,
    _STATUS_RUNTIME_ERROR_SIGFPE: RunStatus.RUNTIME_ERROR,
    _STATUS_RUNTIME_ERROR_SIGABRT: RunStatus.RUNTIME_ERROR,
    _STATUS_RUNTIME_ERROR_NZEC: RunStatus.RUNTIME_ERROR,
    _STATUS_RUNTIME_ERROR_OTHER: RunStatus.RUNTIME_ERROR,
    _STATUS_INTERNAL_ERROR: RunStatus.INTERNAL_ERROR,
    _STATUS_EXEC_FORMAT_ERROR: RunStatus.INTERNAL_ERROR,
}

DEFAULT_LANGUAGE_IDS = {
    Language.JAVASCRIPT: 93,  # Node.js
    Language.PYTHON: 71,  # Python 3
    Language.JAVA: 62,  # Java (OpenJDK)
    Language.CPP: 54,  # C++ (GCC)
    Language.C: 50,  # C (GCC)
}

PUBLIC_JUDGE0_URL = "https://ce.judge0.com"
RAPIDAPI_JUDGE0_URL = "https://judge0-ce.p.rapidapi.com"


@dataclass
class Judge0Config:
    base_url: str = ""
    api_key: str = ""
    language_ids: dict[str, int] = field(default_factory=dict)
    request_timeout: float = 30.0
    cpu_time_limit: float | None = 5.0
    memory_limit_kb: int | None = 256 * 1024
    poll_interval: float = 0.5
    max_poll_attempts: int = 60


@dataclass
class Judge0Endpoint:
    url: str
    headers: dict[str, str]
    authenticated: bool


def _is_rapidapi(url: str) -> bool:
    return "rapidapi" in url.lower()


def resolve_endpoint(base_url: str = "", api_key: str = "") -> Judge0Endpoint:
    """Pick the judge URL and auth headers from the configured host and key.

    The authenticated endpoint is only used when a key is present. A RapidAPI
    host without a key falls back to the public instance with a warning.
    """
    url = (base_url or "").strip().rstrip("/")
    headers = {"Content-Type": "application/json"}

    if api_key:
        url = url or RAPIDAPI_JUDGE0_URL
        if _is_rapidapi(url):
            headers["X-RapidAPI-Host"] = urlparse(url).hostname or ""
            headers["X-RapidAPI-Key"] = api_key
        else:
            headers["X-Auth-Token"] = api_key
        return Judge0Endpoint(url=url, headers=headers, authenticated=True)

    if url and _is_rapidapi(url):
        logger.warning(
            "RapidAPI host configured but no API key found. Falling back to %s", PUBLIC_JUDGE0_URL
        )
        url = PUBLIC_JUDGE0_URL
    url = url or PUBLIC_JUDGE0_URL
    if url == PUBLIC_JUDGE0_URL:
        logger.warning(
            "Judge0 API key not found. Using public Judge0 instance (%s) which has strict rate limits.",
            PUBLIC_JUDGE0_URL,
        )
    return Judge0Endpoint(url=url, headers=headers, authenticated=False)


def encode_b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_b64(value: str | None) -> str:
    """Decode a base64 response field; text that is not base64 passes through."""
    if not value:
        return ""
    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


def _to_number(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_response(data: dict) -> RunOutput:
    """Convert a Judge0 submission payload (base64 fields) into a RunOutput."""
    status = data.get("status") or {}
    status_id = status.get("id")
    run_status = _STATUS_MAP.get(status_id, RunStatus.INTERNAL_ERROR)
    stderr = decode_b64(data.get("stderr"))
    message = decode_b64(data.get("message"))
    if not stderr and run_status not in (RunStatus.ACCEPTED, RunStatus.WRONG_ANSWER):
        stderr = message

    seconds = _to_number(data.get("time"))
    return RunOutput(
        status=run_status,
        stdout=decode_b64(data.get("stdout")),
        stderr=stderr,
        compile_output=decode_b64(data.get("compile_output")),
        time_ms=round(seconds * 1000, 2) if seconds is not None else None,
        memory_kb=_to_number(data.get("memory")),
        exit_code=data.get("exit_code"),
        description=status.get("description") or "",
    )


class Judge0Client:
    """Talks to one Judge0 instance; all free-form text travels base64-encoded."""

    def __init__(
        self,
        config: Judge0Config | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or Judge0Config()
        self.endpoint = resolve_endpoint(self._config.base_url, self._config.api_key)
        self._language_ids = dict(DEFAULT_LANGUAGE_IDS)
        for name, language_id in self._config.language_ids.items():
            language = Language.parse(name)
            if int(language_id) <= 0:
                # disabled on this judge instance
                self._language_ids.pop(language, None)
            else:
                self._language_ids[language] = int(language_id)
        self._http = httpx.AsyncClient(
            base_url=self.endpoint.url,
            headers=self.endpoint.headers,
            timeout=self._config.request_timeout,
            transport=transport,
        )

    def supports(self, language: Language) -> bool:
        return language in self._language_ids

    def language_id(self, language: Language) -> int:
        try:
            return self._language_ids[language]
        except KeyError:
            raise UnsupportedLanguageError(
                getattr(language, "value", str(language)),
                [lang.value for lang in self._language_ids],
            ) from None

    async def submit(
        self,
        source: str,
        language: Language,
        stdin: str = "",
        expected_output: str | None = None,
    ) -> RunOutput:
        payload: dict[str, Any] = {
            "language_id": self.language_id(language),
            "source_code": encode_b64(source),
        }
        if stdin:
            payload["stdin"] = encode_b64(stdin)
        if expected_output is not None:
            payload["expected_output"] = encode_b64(expected_output)
        if self._config.cpu_time_limit is not None:
            payload["cpu_time_limit"] = self._config.cpu_time_limit
        if self._config.memory_limit_kb is not None:
            payload["memory_limit"] = self._config.memory_limit_kb

        resp = await self._http.post(
            "/submissions",
            params={"base64_encoded": "true", "wait": "true"},
            json=payload,
        )
        resp.raise_for_status()
        data = resp.json()

        # The server did not wait for the verdict: poll with the token.
        status_id = (data.get("status") or {}).get("id")
        if status_id is None or status_id in _PENDING_STATUSES:
            token = data.get("token")
            if not token:
                raise JudgeError("Judge0 response carried neither a status nor a token")
            data = await self._poll(token)
        return parse_response(data)

    async def _poll(self, token: str) -> dict:
        for _ in range(self._config.max_poll_attempts):
            await asyncio.sleep(self._config.poll_interval)
            resp = await self._http.get(f"/submissions/{token}", params={"base64_encoded": "true"})
            resp.raise_for_status()
            data = resp.json()
            if (data.get("status") or {}).get("id") not in _PENDING_STATUSES:
                return data
        raise JudgePollTimeout(
            f"Judge0 submission {token} still pending after {self._config.max_poll_attempts} polls"
        )

    async def aclose(self) -> None:
        await self._http.aclose()


class RemoteJudgeExecutor:
    """Runs programs on Judge0 through the shared submission queue, with retries."""

    name = "judge0"

    def __init__(
        self,
        client: Judge0Client,
        queue: SubmissionQueue,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._queue = queue
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def supports(self, language: Language) -> bool:
        return self._client.supports(language)

    async def run(
        self,
        program: str,
        language: Language,
        stdin: str = "",
        expected_output: str | None = None,
    ) -> RunOutput:
        self._client.language_id(language)

        async def call() -> RunOutput:
            return await self._client.submit(program, language, stdin, expected_output)

        return await self._queue.enqueue(
            lambda: retry_with_backoff(call, self._retry_policy, self._sleep)
        )

    async def aclose(self) -> None:
        await self._client.aclose()
