"""
Error taxonomy for the insights pipeline.

Only ``AuthError``, ``InputError`` and ``ExecutionError`` ever reach the
client.  ``GenerationError`` and ``QueryValidationError`` are absorbed by the
service, which substitutes the default fallback report.
"""
from __future__ import annotations


class InsightsError(Exception):
    """Base class; ``status_code`` is the HTTP status used by the API layer."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(InsightsError):
    status_code = 401


class InputError(InsightsError):
    status_code = 400


class MissingInputError(InputError):
    """Neither a question nor a fallback key was supplied."""

    def __init__(self, message: str = "Pergunta é obrigatória"):
        super().__init__(message)


class GenerationError(InsightsError):
    """The text-generation call failed or returned unusable content."""


class QueryValidationError(InsightsError):
    """Candidate SQL rejected by the validator."""
    status_code = 400


class QueryParseError(InsightsError):
    """SQL could not be split into the structured query representation."""
    status_code = 400


class ExecutionError(InsightsError):
    """Both the primary procedure and the direct view read failed."""

    def __init__(self, message: str, suggestion: str = ""):
        super().__init__(message)
        self.suggestion = suggestion
