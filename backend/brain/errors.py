"""Brain errors: failures of the Claude response recovery pipeline."""
from __future__ import annotations

from typing import Optional


class BrainError(Exception):
    """Base class for errors surfaced to the HTTP layer as {error, message}."""

    status_code = 500
    error = "brain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ExtractionFailed(BrainError):
    """No JSON opening delimiter was found in the model output."""

    error = "extraction_failed"

    def __init__(self, message: str = "Failed to extract JSON from model response"):
        super().__init__(message)


class ParseFailed(BrainError):
    """The normalized payload is still not valid JSON."""

    error = "parse_failed"

    def __init__(self, message: str, position: Optional[int] = None, context: Optional[str] = None):
        super().__init__(message)
        self.position = position
        self.context = context

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.position is not None:
            data["position"] = self.position
        if self.context is not None:
            data["context"] = self.context
        return data


class ClaudeUnavailable(BrainError):
    status_code = 503
    error = "claude_unavailable"

    def __init__(self, message: str = "Claude client unavailable. Set ANTHROPIC_API_KEY."):
        super().__init__(message)


class InvalidRequest(BrainError):
    """Request body or form failed validation on an AI route."""

    status_code = 400
    error = "invalid_request"

    def __init__(self, errors: list, message: str = "Invalid request format"):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> dict:
        return {"message": self.message, "error": self.errors}
