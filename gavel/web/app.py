"""Flask web application for gavel."""

from __future__ import annotations

import asyncio
import logging
import threading

from flask import Flask, jsonify, request

from gavel.config import Config
from gavel.errors import ValidationError
from gavel.models import EvaluateRequest, EvaluationOutcome, ExecuteRequest, Mode
from gavel.service import EvaluationService

logger = logging.getLogger(__name__)

# Upper bound on how long one HTTP request waits for its evaluation.
EVALUATION_TIMEOUT = 600


class ServiceThread:
    """Runs one EvaluationService on a private event loop in a daemon thread.

    Flask handlers are synchronous; they hand coroutines to this loop so that
    every request shares the same submission queue.
    """

    def __init__(self, service: EvaluationService) -> None:
        self.service = service
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="gavel-loop", daemon=True)
        self._thread.start()
        self.call(self.service.start())

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def call(self, coro, timeout: float | None = None):
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def stop(self) -> None:
        self.call(self.service.aclose())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()


def _hidden_failures(outcome: EvaluationOutcome) -> list[dict]:
    failed = outcome.first_failure
    if failed is None or not failed.is_hidden:
        return []
    return [
        {
            "testCase": failed.test_case,
            "input": failed.input,
            "expectedOutput": failed.expected_output,
            "actualOutput": failed.actual_output,
            "status": failed.status or "Failed",
        }
    ]


def create_app(config: Config | None = None, service: EvaluationService | None = None) -> Flask:
    app = Flask(__name__)
    runner = ServiceThread(service or EvaluationService(config or Config.from_env()))
    app.extensions["gavel"] = runner

    def _evaluate(mode: Mode) -> EvaluationOutcome:
        req = EvaluateRequest.from_dict(request.get_json(silent=True), mode=mode)
        return runner.call(runner.service.evaluate(req), timeout=EVALUATION_TIMEOUT)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e: ValidationError):
        return jsonify({"message": str(e)}), 400

    @app.route("/api/submissions/run", methods=["POST"])
    def run_code():
        outcome = _evaluate(Mode.RUN)
        return jsonify(outcome.to_dict())

    @app.route("/api/submissions/submit", methods=["POST"])
    def submit_code():
        outcome = _evaluate(Mode.SUBMIT)
        body = outcome.to_dict()
        body["hiddenFailures"] = _hidden_failures(outcome)
        body["message"] = (
            "All test cases passed!" if outcome.all_passed else "Stopped after the first failing test case."
        )
        return jsonify(body)

    @app.route("/api/code/execute", methods=["POST"])
    def execute_code():
        req = ExecuteRequest.from_dict(request.get_json(silent=True))
        output = runner.call(runner.service.execute(req), timeout=EVALUATION_TIMEOUT)
        return jsonify(
            {
                "success": True,
                "status": output.status_text,
                "output": output.stdout,
                "error": output.stderr or output.compile_output,
                "executionTime": output.time_ms,
            }
        )

    @app.route("/api/code/validate", methods=["POST"])
    def validate_code():
        req = ExecuteRequest.from_dict(request.get_json(silent=True))
        check = runner.call(runner.service.check_syntax(req), timeout=EVALUATION_TIMEOUT)
        return jsonify({"success": True, **check.to_dict()})

    @app.route("/api/judge/queue", methods=["GET"])
    def queue_status():
        return jsonify(runner.service.queue_status())

    return app
