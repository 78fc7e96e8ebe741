"""CLI interface for gavel."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from gavel.config import EXECUTOR_TYPES, Config
from gavel.errors import ValidationError
from gavel.harness import describe_language_contract
from gavel.models import EvaluateRequest, EvaluationOutcome, ExecuteRequest, Language, Mode, RunStatus
from gavel.service import EvaluationService

_SUFFIXES = {
    ".py": Language.PYTHON,
    ".js": Language.JAVASCRIPT,
    ".java": Language.JAVA,
    ".cpp": Language.CPP,
    ".cc": Language.CPP,
    ".c": Language.C,
}


def load_request(path: str, mode: str | None = None, code_path: str | None = None) -> EvaluateRequest:
    """Load an evaluation request from a JSON file, optionally replacing its code."""
    with open(path) as f:
        data = json.load(f)
    if code_path is not None and isinstance(data, dict):
        with open(code_path) as f:
            data["code"] = f.read()
    return EvaluateRequest.from_dict(data, mode=mode)


def load_program(path: str, language: str | None = None, stdin_path: str | None = None) -> ExecuteRequest:
    """Load a raw program; the language defaults to the one its file suffix implies."""
    with open(path) as f:
        code = f.read()
    if language is None:
        suffix = os.path.splitext(path)[1].lower()
        if suffix not in _SUFFIXES:
            raise ValidationError(f"Cannot infer the language of {path}; pass --language.")
        language = _SUFFIXES[suffix].value
    stdin = ""
    if stdin_path is not None:
        with open(stdin_path) as f:
            stdin = f.read()
    return ExecuteRequest.from_dict({"code": code, "language": language, "input": stdin})


def _load_config(args: argparse.Namespace) -> Config | None:
    overrides = {}
    if getattr(args, "judge0_url", None) is not None:
        overrides["judge0_url"] = args.judge0_url
    if getattr(args, "judge0_api_key", None) is not None:
        overrides["judge0_api_key"] = args.judge0_api_key
    try:
        config = Config.from_env(**overrides)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None
    logging.basicConfig(level=config.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    return config


async def _evaluate(config: Config, req: EvaluateRequest, executor: str | None) -> EvaluationOutcome:
    async with EvaluationService(config) as service:
        return await service.evaluate(req, executor)


def _cmd_evaluate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2

    try:
        req = load_request(args.request, args.mode, args.code)
        outcome = asyncio.run(_evaluate(config, req, args.executor))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    text = json.dumps(outcome.to_dict(), indent=2)
    print(text)
    if args.output:
        with open(args.output, "w") as f:
            f.write(text + "\n")
        print(f"\nOutcome written to {args.output}", file=sys.stderr)
    if not outcome.all_passed:
        print(
            f"{outcome.passed_tests}/{outcome.total_tests} test cases passed "
            f"({outcome.executed_tests} executed).",
            file=sys.stderr,
        )
        return 1
    return 0


def _cmd_execute(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2

    async def run():
        async with EvaluationService(config) as service:
            return await service.execute(req, args.executor)

    try:
        req = load_program(args.program, args.language, args.stdin)
        output = asyncio.run(run())
    except (OSError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    sys.stdout.write(output.stdout)
    errors = output.stderr or output.compile_output
    if errors:
        print(errors, file=sys.stderr)
    if output.status is not RunStatus.ACCEPTED:
        print(f"{output.status_text} ({output.time_ms} ms)", file=sys.stderr)
        return 1
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config is None:
        return 2

    async def check():
        async with EvaluationService(config) as service:
            return await service.check_syntax(req)

    try:
        req = load_program(args.program, args.language)
        result = asyncio.run(check())
    except (OSError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if not result.valid:
        print(result.error, file=sys.stderr)
        return 1
    print("OK")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from gavel.web.app import create_app

    config = _load_config(args)
    if config is None:
        return 2
    create_app(config).run(host=args.host, port=args.port)
    return 0


def _cmd_languages(args: argparse.Namespace) -> int:
    for language in Language:
        print(f"{language.value:<12} {describe_language_contract(language)}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="gavel",
        description="gavel: run untrusted code against test cases",
    )
    subparsers = parser.add_subparsers(dest="command")
    languages = [lang.value for lang in Language]

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate code against a request's test cases")
    evaluate_parser.add_argument("request", help="Path to request JSON file")
    evaluate_parser.add_argument(
        "--mode", choices=[m.value for m in Mode], default=None, help="Override the request's mode"
    )
    evaluate_parser.add_argument(
        "--executor", choices=list(EXECUTOR_TYPES), default=None, help="Execution backend"
    )
    evaluate_parser.add_argument("--code", type=str, default=None, help="Read the candidate code from this file")
    evaluate_parser.add_argument("--judge0-url", type=str, default=None, help="Judge0 API base URL")
    evaluate_parser.add_argument("--judge0-api-key", type=str, default=None, help="Judge0 API key")
    evaluate_parser.add_argument("-o", "--output", type=str, default=None, help="Write outcome JSON to file")

    execute_parser = subparsers.add_parser("execute", help="Run a program as-is with piped stdin")
    execute_parser.add_argument("program", help="Path to the source file")
    execute_parser.add_argument("--language", choices=languages, default=None, help="Defaults to the file suffix")
    execute_parser.add_argument("--stdin", type=str, default=None, help="File to pipe to the program's stdin")
    execute_parser.add_argument(
        "--executor", choices=list(EXECUTOR_TYPES), default=None, help="Execution backend"
    )
    execute_parser.add_argument("--judge0-url", type=str, default=None, help="Judge0 API base URL")
    execute_parser.add_argument("--judge0-api-key", type=str, default=None, help="Judge0 API key")

    validate_parser = subparsers.add_parser("validate", help="Check a program's syntax without running it")
    validate_parser.add_argument("program", help="Path to the source file")
    validate_parser.add_argument("--language", choices=languages, default=None, help="Defaults to the file suffix")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=5001)

    subparsers.add_parser("languages", help="List supported languages and their entry points")

    args = parser.parse_args(argv)

    commands = {
        "evaluate": _cmd_evaluate,
        "execute": _cmd_execute,
        "validate": _cmd_validate,
        "serve": _cmd_serve,
        "languages": _cmd_languages,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(1)
    sys.exit(commands[args.command](args))
