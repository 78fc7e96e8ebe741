"""Local sandbox executor: runs harnessed programs as isolated, bounded OS processes."""

from __future__ import annotations

import asyncio
import logging
import os
import resource
import shutil
import signal
import tempfile
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gavel.models import Language, RunOutput, RunStatus, SyntaxCheck

if TYPE_CHECKING:
    from gavel.config import Config

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DEFAULT_PATH = "/usr/bin:/bin:/usr/local/bin"
# How long pipe readers may keep draining once the process group is gone.
_READER_GRACE = 1.0


@dataclass
class SandboxLimits:
    timeout_ms: int = 5000
    compile_timeout_ms: int = 10000
    output_limit_bytes: int = 1024 * 1024
    max_memory_mb: int = 256


@dataclass
class LanguageProfile:
    source_name: str
    run: list[str]
    compile: list[str] | None = None
    # syntax-only check; falls back to the compile step
    check: list[str] | None = None
    tools: list[str] = field(default_factory=list)
    limit_memory: bool = False


def default_profiles(
    limits: SandboxLimits,
    python_bin: str = "python3",
    node_bin: str = "node",
    javac_bin: str = "javac",
    java_bin: str = "java",
    gxx_bin: str = "g++",
    gcc_bin: str = "gcc",
) -> dict[Language, LanguageProfile]:
    return {
        Language.PYTHON: LanguageProfile(
            source_name="main.py",
            run=[python_bin, "-I", "-B", "main.py"],
            check=[python_bin, "-I", "-B", "-m", "py_compile", "main.py"],
            tools=[python_bin],
            limit_memory=True,
        ),
        Language.JAVASCRIPT: LanguageProfile(
            source_name="main.js",
            run=[node_bin, "main.js"],
            check=[node_bin, "--check", "main.js"],
            tools=[node_bin],
        ),
        Language.JAVA: LanguageProfile(
            source_name="Main.java",
            compile=[javac_bin, "-encoding", "UTF-8", "Main.java"],
            run=[java_bin, f"-Xmx{limits.max_memory_mb}m", "-cp", ".", "Main"],
            tools=[javac_bin, java_bin],
        ),
        Language.CPP: LanguageProfile(
            source_name="main.cpp",
            compile=[gxx_bin, "-O2", "-std=c++17", "-o", "main", "main.cpp"],
            check=[gxx_bin, "-fsyntax-only", "-std=c++17", "main.cpp"],
            run=["./main"],
            tools=[gxx_bin],
            limit_memory=True,
        ),
        Language.C: LanguageProfile(
            source_name="main.c",
            compile=[gcc_bin, "-O2", "-std=c11", "-o", "main", "main.c", "-lm"],
            check=[gcc_bin, "-fsyntax-only", "-std=c11", "main.c"],
            run=["./main"],
            tools=[gcc_bin],
            limit_memory=True,
        ),
    }


@dataclass
class ProcessResult:
    returncode: int | None
    stdout: str
    stderr: str
    elapsed_ms: float
    timed_out: bool = False
    output_exceeded: bool = False


class LocalSandboxExecutor:
    """Executes programs with the host's interpreters and compilers."""

    name = "local"

    def __init__(
        self,
        limits: SandboxLimits | None = None,
        profiles: dict[Language, LanguageProfile] | None = None,
    ) -> None:
        self.limits = limits or SandboxLimits()
        self._profiles = profiles or default_profiles(self.limits)

    @classmethod
    def from_config(cls, config: Config) -> LocalSandboxExecutor:
        limits = SandboxLimits(
            timeout_ms=config.local_timeout_ms,
            compile_timeout_ms=config.compile_timeout_ms,
            output_limit_bytes=config.output_limit_bytes,
            max_memory_mb=config.max_memory_mb,
        )
        profiles = default_profiles(
            limits,
            python_bin=config.python_bin,
            node_bin=config.node_bin,
            javac_bin=config.javac_bin,
            java_bin=config.java_bin,
            gxx_bin=config.gxx_bin,
            gcc_bin=config.gcc_bin,
        )
        return cls(limits, profiles)

    def supports(self, language: Language) -> bool:
        return language in self._profiles

    async def run(
        self,
        program: str,
        language: Language,
        stdin: str = "",
        expected_output: str | None = None,
    ) -> RunOutput:
        profile = self._profiles[language]
        env = _sandbox_env()
        missing = [tool for tool in profile.tools if shutil.which(tool, path=env["PATH"]) is None]
        if missing:
            return _tool_missing(missing[0])

        workdir = tempfile.mkdtemp(prefix="gavel_")
        env["HOME"] = env["TMPDIR"] = workdir
        try:
            with open(os.path.join(workdir, profile.source_name), "w", encoding="utf-8") as f:
                f.write(program)

            if profile.compile:
                compiled = await run_process(
                    profile.compile,
                    cwd=workdir,
                    env=env,
                    timeout_ms=self.limits.compile_timeout_ms,
                    output_limit=self.limits.output_limit_bytes,
                )
                if compiled.timed_out or compiled.output_exceeded or compiled.returncode != 0:
                    return self._compile_error(compiled, workdir)

            preexec = _limit_address_space(self.limits.max_memory_mb) if profile.limit_memory else None
            result = await run_process(
                profile.run,
                cwd=workdir,
                env=env,
                stdin=stdin,
                timeout_ms=self.limits.timeout_ms,
                output_limit=self.limits.output_limit_bytes,
                preexec_fn=preexec,
            )
            return self._to_output(result)
        except FileNotFoundError as exc:
            return _tool_missing(exc.filename or profile.run[0])
        finally:
            cleanup_workdir(workdir)

    async def check_syntax(self, program: str, language: Language) -> SyntaxCheck:
        """Compile or parse ``program`` without running it."""
        profile = self._profiles[language]
        argv = profile.check or profile.compile
        if argv is None:
            return SyntaxCheck(valid=True)
        env = _sandbox_env()
        if shutil.which(argv[0], path=env["PATH"]) is None:
            return SyntaxCheck(valid=False, error=_tool_missing(argv[0]).stderr)

        workdir = tempfile.mkdtemp(prefix="gavel_")
        env["HOME"] = env["TMPDIR"] = workdir
        try:
            with open(os.path.join(workdir, profile.source_name), "w", encoding="utf-8") as f:
                f.write(program)
            result = await run_process(
                argv,
                cwd=workdir,
                env=env,
                timeout_ms=self.limits.compile_timeout_ms,
                output_limit=self.limits.output_limit_bytes,
            )
            if result.returncode == 0 and not (result.timed_out or result.output_exceeded):
                return SyntaxCheck(valid=True)
            return SyntaxCheck(valid=False, error=self._compile_error(result, workdir).compile_output)
        except FileNotFoundError as exc:
            return SyntaxCheck(valid=False, error=_tool_missing(exc.filename or argv[0]).stderr)
        finally:
            cleanup_workdir(workdir)

    def _compile_error(self, compiled: ProcessResult, workdir: str) -> RunOutput:
        if compiled.timed_out:
            diagnostics = f"Compilation timed out after {self.limits.compile_timeout_ms} ms"
        elif compiled.output_exceeded:
            diagnostics = "Compiler output exceeded the output limit"
        else:
            diagnostics = strip_path_noise(compiled.stderr or compiled.stdout, workdir).strip()
        return RunOutput(
            status=RunStatus.COMPILATION_ERROR,
            compile_output=diagnostics or "Unknown compilation error",
            exit_code=compiled.returncode,
        )

    def _to_output(self, result: ProcessResult) -> RunOutput:
        time_ms = round(result.elapsed_ms, 2)
        if result.timed_out:
            return RunOutput(
                status=RunStatus.TIME_LIMIT_EXCEEDED,
                stderr=f"Execution timed out after {self.limits.timeout_ms} ms",
                time_ms=time_ms,
                exit_code=result.returncode,
            )
        if result.output_exceeded:
            return RunOutput(
                status=RunStatus.OUTPUT_LIMIT_EXCEEDED,
                stderr=f"Output limit exceeded ({self.limits.output_limit_bytes} bytes max)",
                time_ms=time_ms,
                exit_code=result.returncode,
            )
        if result.returncode != 0:
            description = ""
            if result.returncode is not None and result.returncode < 0:
                try:
                    description = f"Runtime Error ({signal.Signals(-result.returncode).name})"
                except ValueError:
                    pass
            return RunOutput(
                status=RunStatus.RUNTIME_ERROR,
                stdout=result.stdout,
                stderr=result.stderr,
                time_ms=time_ms,
                exit_code=result.returncode,
                description=description,
            )
        return RunOutput(
            status=RunStatus.ACCEPTED,
            stdout=result.stdout,
            stderr=result.stderr,
            time_ms=time_ms,
            exit_code=0,
        )


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------


async def run_process(
    argv: list[str],
    cwd: str,
    env: dict[str, str],
    stdin: str = "",
    timeout_ms: int = 5000,
    output_limit: int = 1024 * 1024,
    preexec_fn=None,
) -> ProcessResult:
    """Run ``argv`` in its own session, enforcing a wall-clock timeout and an output cap.

    The whole process group is killed before returning, whether or not a
    limit was hit, so no descendant outlives the call.
    """
    start = time.monotonic()
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
        preexec_fn=preexec_fn,
    )
    stdout = bytearray()
    stderr = bytearray()
    captured = 0
    exceeded = False
    timed_out = False

    async def drain(stream: asyncio.StreamReader, buffer: bytearray) -> None:
        nonlocal captured, exceeded
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            captured += len(chunk)
            if captured > output_limit:
                exceeded = True
                _kill_process_group(proc)
                return
            buffer.extend(chunk)

    async def feed() -> None:
        assert proc.stdin is not None
        if stdin:
            proc.stdin.write(stdin.encode("utf-8"))
            try:
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # the program exited without reading all of its input
                pass
        proc.stdin.close()

    assert proc.stdout is not None and proc.stderr is not None
    readers = [
        asyncio.create_task(drain(proc.stdout, stdout)),
        asyncio.create_task(drain(proc.stderr, stderr)),
    ]
    try:
        await asyncio.wait_for(asyncio.gather(feed(), proc.wait()), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        timed_out = True
    finally:
        # Descendants can outlive the direct child: the group is killed on every exit path.
        _kill_process_group(proc)
        await proc.wait()
        _, stuck = await asyncio.wait(readers, timeout=_READER_GRACE)
        for reader in stuck:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
    elapsed_ms = (time.monotonic() - start) * 1000

    return ProcessResult(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        elapsed_ms=elapsed_ms,
        timed_out=timed_out,
        output_exceeded=exceeded,
    )


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        # group already empty
        pass


def _limit_address_space(max_memory_mb: int):
    limit_bytes = max_memory_mb * 1024 * 1024

    def apply() -> None:
        try:
            resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))
        except (ValueError, OSError):
            pass

    return apply


def _sandbox_env() -> dict[str, str]:
    env = {
        "PATH": os.environ.get("PATH", _DEFAULT_PATH),
        "LANG": "C.UTF-8",
        "PYTHONIOENCODING": "utf-8",
    }
    if "JAVA_HOME" in os.environ:
        env["JAVA_HOME"] = os.environ["JAVA_HOME"]
    return env


def _tool_missing(tool: str) -> RunOutput:
    return RunOutput(
        status=RunStatus.TOOL_MISSING,
        stderr=f"{tool} not found on this host. Please ensure it is installed and on PATH.",
    )


def strip_path_noise(text: str, workdir: str) -> str:
    """Remove the sandbox directory from compiler diagnostics."""
    return text.replace(workdir + os.sep, "").replace(workdir, "")


def cleanup_workdir(workdir: str) -> None:
    try:
        shutil.rmtree(workdir)
    except OSError as e:
        logger.warning("Failed to clean up sandbox directory %s: %s", workdir, e)
