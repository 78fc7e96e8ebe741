"""Exception types raised by gavel."""

from __future__ import annotations


class GavelError(Exception):
    """Base class for all gavel errors."""


class ValidationError(GavelError, ValueError):
    """The request cannot be evaluated as given (never retried)."""


class UnsupportedLanguageError(ValidationError):
    def __init__(self, language: str, supported: list[str] | None = None) -> None:
        self.language = language
        message = f'Language "{language}" is not supported.'
        if supported:
            message += f" Supported: {', '.join(supported)}"
        super().__init__(message)


class JudgeError(GavelError):
    """The remote judge returned something we could not use."""


class TransientJudgeError(JudgeError):
    """A judge failure worth retrying."""


class JudgePollTimeout(TransientJudgeError):
    pass


class QueueClosedError(GavelError):
    pass
