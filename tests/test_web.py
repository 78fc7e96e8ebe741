"""Tests for the HTTP API."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from gavel.config import Config
from gavel.models import Language, Mode, RunOutput, RunStatus, SyntaxCheck
from gavel.service import EvaluationService
from gavel.web.app import create_app

ADD = "def solve(a, b):\n    return a + b"


def _executor(stdout_by_call):
    executor = MagicMock()
    executor.name = "fake"
    executor.supports.return_value = True
    executor.run = AsyncMock(
        side_effect=[RunOutput(status=RunStatus.ACCEPTED, stdout=s, time_ms=2.0) for s in stdout_by_call]
    )
    executor.aclose = AsyncMock()
    return executor


@pytest.fixture
def make_client():
    apps = []

    def factory(stdout_by_call=()):
        executor = _executor(list(stdout_by_call))
        service = EvaluationService(Config(), executors={"local": executor, "judge0": executor})
        app = create_app(service=service)
        apps.append(app)
        return app.test_client()

    yield factory
    for app in apps:
        app.extensions["gavel"].stop()


def _body(*test_cases):
    return {"code": ADD, "language": "python", "testCases": list(test_cases)}


class TestRunEndpoint:
    def test_run_returns_outcome(self, make_client):
        client = make_client(["5"])
        resp = client.post("/api/submissions/run", json=_body({"input": "2 3", "expectedOutput": "5"}))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["mode"] == "run"
        assert data["allPassed"] is True
        assert data["results"][0]["testCase"] == 1
        assert data["performanceSummary"]["fastestMs"] == 2.0

    def test_mode_in_body_is_ignored(self, make_client):
        client = make_client(["5"])
        body = _body({"input": "2 3", "expectedOutput": "5"})
        body["mode"] = "submit"
        assert client.post("/api/submissions/run", json=body).get_json()["mode"] == "run"

    def test_missing_fields(self, make_client):
        resp = make_client().post("/api/submissions/run", json={"language": "python"})
        assert resp.status_code == 400
        assert resp.get_json() == {"message": "Code, language, and test cases are required."}

    def test_unsupported_language(self, make_client):
        body = _body({"input": "1"})
        body["language"] = "cobol"
        resp = make_client().post("/api/submissions/run", json=body)
        assert resp.status_code == 400
        assert 'Language "cobol" is not supported.' in resp.get_json()["message"]

    def test_non_json_body(self, make_client):
        resp = make_client().post("/api/submissions/run", data="nope", content_type="text/plain")
        assert resp.status_code == 400


class TestSubmitEndpoint:
    def test_all_passed_message(self, make_client):
        client = make_client(["5", "30"])
        resp = client.post(
            "/api/submissions/submit",
            json=_body(
                {"input": "2 3", "expectedOutput": "5"},
                {"input": "10 20", "expectedOutput": "30", "isHidden": True},
            ),
        )
        data = resp.get_json()
        assert data["allPassed"] is True
        assert data["hiddenFailures"] == []
        assert data["message"] == "All test cases passed!"

    def test_hidden_failure_is_summarized(self, make_client):
        client = make_client(["5", "30"])
        resp = client.post(
            "/api/submissions/submit",
            json=_body(
                {"input": "2 3", "expectedOutput": "5"},
                {"input": "10 20", "expectedOutput": "31", "isHidden": True},
            ),
        )
        data = resp.get_json()
        assert data["executedTests"] == 2
        assert data["firstFailure"]["testCase"] == 2
        assert data["hiddenFailures"] == [
            {
                "testCase": 2,
                "input": "10 20",
                "expectedOutput": "31",
                "actualOutput": "30",
                "status": "Wrong Answer",
            }
        ]
        assert data["message"] == "Stopped after the first failing test case."

    def test_public_failure_has_no_hidden_failures(self, make_client):
        client = make_client(["6"])
        resp = client.post(
            "/api/submissions/submit",
            json=_body(
                {"input": "2 3", "expectedOutput": "5"},
                {"input": "10 20", "expectedOutput": "30", "isHidden": True},
            ),
        )
        data = resp.get_json()
        assert data["executedTests"] == 1
        assert data["hiddenFailures"] == []


def test_queue_status(make_client):
    resp = make_client().get("/api/judge/queue")
    assert resp.status_code == 200
    assert resp.get_json() == {"running": 0, "queued": 0, "width": 5}


def test_non_string_code_is_rejected(make_client):
    body = _body({"input": "2 3", "expectedOutput": "5"})
    body["code"] = 5
    resp = make_client().post("/api/submissions/run", json=body)
    assert resp.status_code == 400
    assert resp.get_json() == {"message": "Code must be a string."}


def _local_executor(client):
    return client.application.extensions["gavel"].service.executor_for(Mode.RUN, "local")


class TestCodeEndpoints:
    def test_execute_runs_program_with_stdin(self, make_client):
        client = make_client(["got hi\n"])
        resp = client.post(
            "/api/code/execute", json={"code": "print('got', input())", "language": "python", "input": "hi\n"}
        )
        assert resp.status_code == 200
        assert resp.get_json() == {
            "success": True,
            "status": "Accepted",
            "output": "got hi\n",
            "error": "",
            "executionTime": 2.0,
        }
        _local_executor(client).run.assert_awaited_once_with(
            "print('got', input())", Language.PYTHON, stdin="hi\n"
        )

    def test_execute_reports_compile_output_as_error(self, make_client):
        client = make_client()
        _local_executor(client).run = AsyncMock(
            return_value=RunOutput(status=RunStatus.COMPILATION_ERROR, compile_output="main.c:1: error")
        )
        data = client.post("/api/code/execute", json={"code": "int main(", "language": "c"}).get_json()
        assert data["status"] == "Compilation Error"
        assert data["error"] == "main.c:1: error"
        assert data["output"] == ""

    def test_execute_requires_code(self, make_client):
        resp = make_client().post("/api/code/execute", json={"language": "python"})
        assert resp.status_code == 400
        assert resp.get_json() == {"message": "Code is required."}

    def test_validate(self, make_client):
        client = make_client()
        _local_executor(client).check_syntax = AsyncMock(
            return_value=SyntaxCheck(valid=False, error="SyntaxError: invalid syntax")
        )
        resp = client.post("/api/code/validate", json={"code": "def f(:", "language": "python"})
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "valid": False, "error": "SyntaxError: invalid syntax"}

    def test_validate_unsupported_language(self, make_client):
        resp = make_client().post("/api/code/validate", json={"code": "x", "language": "cobol"})
        assert resp.status_code == 400
