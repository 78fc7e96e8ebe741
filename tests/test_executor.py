"""Tests for the local sandbox executor."""

from __future__ import annotations

import asyncio
import os
import shutil
import sys
import time
from unittest.mock import patch

import pytest

from gavel.config import Config
from gavel.executor import LocalSandboxExecutor, SandboxLimits, default_profiles, strip_path_noise
from gavel.harness import build_harness
from gavel.models import Language, RunStatus, TestCase


def _executor(**limits) -> LocalSandboxExecutor:
    sandbox_limits = SandboxLimits(**limits)
    return LocalSandboxExecutor(sandbox_limits, default_profiles(sandbox_limits, python_bin=sys.executable))


def _run(executor, program, language=Language.PYTHON, stdin=""):
    return asyncio.run(executor.run(program, language, stdin=stdin))


def test_simple_execution():
    output = _run(_executor(), "print('hello')")
    assert output.status is RunStatus.ACCEPTED
    assert output.stdout.strip() == "hello"
    assert output.exit_code == 0
    assert output.time_ms is not None and output.time_ms > 0
    assert output.memory_kb is None


def test_stdin():
    output = _run(_executor(), "x = input(); print(f'got {x}')", stdin="hello\n")
    assert output.stdout.strip() == "got hello"


def test_timeout():
    start = time.monotonic()
    output = _run(_executor(timeout_ms=500), "while True:\n    pass")
    assert output.status is RunStatus.TIME_LIMIT_EXCEEDED
    assert "timed out" in output.stderr
    assert time.monotonic() - start < 5


def test_timeout_kills_child_processes():
    program = (
        "import subprocess, sys\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        "import time\n"
        "time.sleep(60)\n"
    )
    start = time.monotonic()
    output = _run(_executor(timeout_ms=500), program)
    assert output.status is RunStatus.TIME_LIMIT_EXCEEDED
    assert time.monotonic() - start < 5


def _process_alive(pid: int) -> bool:
    try:
        with open(f"/proc/{pid}/stat") as f:
            stat = f.read()
    except FileNotFoundError:
        return False
    # zombies are dead, just not yet reaped
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


@pytest.mark.skipif(not os.path.isdir("/proc"), reason="needs /proc")
@pytest.mark.parametrize("detached", [False, True])
def test_orphaned_grandchild_is_killed(tmp_path, detached):
    pid_file = tmp_path / "grandchild.pid"
    redirect = ", stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL" if detached else ""
    program = (
        "import subprocess, sys\n"
        f"child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']{redirect})\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "print('done')\n"
    )
    start = time.monotonic()
    output = _run(_executor(timeout_ms=3000), program)
    assert output.status is RunStatus.ACCEPTED, output.stderr
    assert output.stdout.strip() == "done"
    assert time.monotonic() - start < 3

    grandchild = int(pid_file.read_text())
    deadline = time.monotonic() + 2
    while _process_alive(grandchild) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _process_alive(grandchild)


def test_output_limit():
    output = _run(_executor(output_limit_bytes=1024), "while True:\n    print('x' * 100)")
    assert output.status is RunStatus.OUTPUT_LIMIT_EXCEEDED
    assert "1024 bytes" in output.stderr


def test_runtime_error():
    output = _run(_executor(), "raise ValueError('boom')")
    assert output.status is RunStatus.RUNTIME_ERROR
    assert "ValueError" in output.stderr
    assert output.exit_code == 1


def test_killed_by_signal_names_the_signal():
    output = _run(_executor(), "import os, signal\nos.kill(os.getpid(), signal.SIGSEGV)")
    assert output.status is RunStatus.RUNTIME_ERROR
    assert output.description == "Runtime Error (SIGSEGV)"
    assert output.status_text == "Runtime Error (SIGSEGV)"


def test_sandbox_does_not_inherit_environment(monkeypatch):
    monkeypatch.setenv("GAVEL_SECRET_TOKEN", "hunter2")
    output = _run(_executor(), "import os\nprint(os.environ.get('GAVEL_SECRET_TOKEN', 'absent'))")
    assert output.stdout.strip() == "absent"


def test_workdir_is_removed():
    output = _run(_executor(), "import os\nprint(os.getcwd())")
    workdir = output.stdout.strip()
    assert os.path.basename(workdir).startswith("gavel_")
    assert not os.path.exists(workdir)


def test_concurrent_runs_are_isolated():
    executor = _executor()

    async def run_all():
        programs = [f"open('data.txt', 'w').write('{i}')\nprint(open('data.txt').read())" for i in range(5)]
        return await asyncio.gather(*(executor.run(p, Language.PYTHON) for p in programs))

    outputs = asyncio.run(run_all())
    assert [o.stdout.strip() for o in outputs] == [str(i) for i in range(5)]


def test_tool_missing():
    limits = SandboxLimits()
    executor = LocalSandboxExecutor(limits, default_profiles(limits, python_bin="gavel-no-such-python"))
    output = _run(executor, "print(1)")
    assert output.status is RunStatus.TOOL_MISSING
    assert "gavel-no-such-python not found" in output.stderr


@patch("gavel.executor.cleanup_workdir")
def test_cleanup_runs_after_tool_missing_at_exec(mock_cleanup):
    executor = _executor()
    with patch("gavel.executor.run_process", side_effect=FileNotFoundError(2, "missing", "python3")):
        output = _run(executor, "print(1)")
    assert output.status is RunStatus.TOOL_MISSING
    mock_cleanup.assert_called_once()


def test_check_syntax_valid():
    check = asyncio.run(_executor().check_syntax("print('hi')", Language.PYTHON))
    assert check.valid is True
    assert check.error is None


def test_check_syntax_reports_diagnostics():
    check = asyncio.run(_executor().check_syntax("def broken(:\n    pass", Language.PYTHON))
    assert check.valid is False
    assert "SyntaxError" in check.error
    assert "gavel_" not in check.error


def test_check_syntax_does_not_run_the_program(tmp_path):
    marker = tmp_path / "ran"
    program = f"open({str(marker)!r}, 'w').close()"
    assert asyncio.run(_executor().check_syntax(program, Language.PYTHON)).valid
    assert not marker.exists()


def test_check_syntax_tool_missing():
    limits = SandboxLimits()
    executor = LocalSandboxExecutor(limits, default_profiles(limits, python_bin="gavel-no-such-python"))
    check = asyncio.run(executor.check_syntax("print(1)", Language.PYTHON))
    assert check.valid is False
    assert "gavel-no-such-python not found" in check.error


def test_from_config():
    executor = LocalSandboxExecutor.from_config(Config(local_timeout_ms=1234, max_memory_mb=64))
    assert executor.limits.timeout_ms == 1234
    assert executor.limits.max_memory_mb == 64
    assert executor.supports(Language.JAVA)


def test_java_profile_caps_heap():
    profiles = default_profiles(SandboxLimits(max_memory_mb=128))
    assert "-Xmx128m" in profiles[Language.JAVA].run


def test_strip_path_noise():
    assert strip_path_noise("/tmp/gavel_x/main.c:1: error", "/tmp/gavel_x") == "main.c:1: error"


def test_python_harness_end_to_end():
    program = build_harness(Language.PYTHON, "def solve(a, b):\n    return a * b", TestCase(input="[6, 7]"))
    output = _run(_executor(), program)
    assert output.stdout == "42"


@pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")
def test_javascript_round_trip():
    program = build_harness(Language.JAVASCRIPT, "function solve(a, b) { return [a, b]; }", TestCase(input="[1, 2]"))
    output = _run(_executor(), program, Language.JAVASCRIPT)
    assert output.status is RunStatus.ACCEPTED, output.stderr
    assert output.stdout == "[1,2]"


@pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None, reason="JDK not installed"
)
def test_java_round_trip():
    code = "class Solution {\n    static Object solve(String[] args) { return Integer.parseInt(args[0]) + 1; }\n}"
    program = build_harness(Language.JAVA, code, TestCase(input="41"))
    output = asyncio.run(_executor(timeout_ms=10000, compile_timeout_ms=30000).run(program, Language.JAVA))
    assert output.status is RunStatus.ACCEPTED, output.compile_output or output.stderr
    assert output.stdout == "42"


@pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
def test_cpp_round_trip():
    code = "vector<int> solve(const vector<string>& args) { return {(int)args.size(), 7}; }"
    program = build_harness(Language.CPP, code, TestCase(input="[1, 2, 3]"))
    output = asyncio.run(_executor(compile_timeout_ms=30000).run(program, Language.CPP))
    assert output.status is RunStatus.ACCEPTED, output.compile_output or output.stderr
    assert output.stdout == "[3,7]"


@pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
def test_cpp_compile_error():
    program = build_harness(Language.CPP, "int solve(const vector<string>& a) { return undefined_name; }", TestCase(input="1"))
    output = asyncio.run(_executor(compile_timeout_ms=30000).run(program, Language.CPP))
    assert output.status is RunStatus.COMPILATION_ERROR
    assert "undefined_name" in output.compile_output
    assert "gavel_" not in output.compile_output


@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
def test_c_round_trip():
    code = 'const char* solve(int argc, const char* argv[]) { return argc == 2 ? "two" : "other"; }'
    program = build_harness(Language.C, code, TestCase(input="[1, 2]"))
    output = asyncio.run(_executor(compile_timeout_ms=30000).run(program, Language.C))
    assert output.status is RunStatus.ACCEPTED, output.compile_output or output.stderr
    assert output.stdout == "two"
