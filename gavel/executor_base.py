"""Abstract executor interface for running harnessed programs."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from gavel.models import Language, RunOutput


@runtime_checkable
class CodeExecutor(Protocol):
    name: str

    def supports(self, language: Language) -> bool: ...

    async def run(
        self,
        program: str,
        language: Language,
        stdin: str = "",
        expected_output: str | None = None,
    ) -> RunOutput: ...
