"""Error taxonomy shared by the services and the admin surface.

Every error carries a stable ``code`` that admin clients switch on.
"""

from __future__ import annotations

from typing import Optional


class ScoringError(Exception):
    """Base exception for scoring errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotFound(ScoringError):
    """Raised when a referenced record does not exist."""

    code = "NOT_FOUND"


class ToolNotFound(NotFound):
    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_id: int):
        super().__init__("Tool not found")
        self.tool_id = tool_id


class ReviewNotFound(NotFound):
    code = "REVIEW_NOT_FOUND"

    def __init__(self, review_id: int):
        super().__init__("Review not found")
        self.review_id = review_id


class ValidationError(ScoringError):
    """Raised for malformed caller input, before any computation starts."""

    code = "VALIDATION_ERROR"


class InternalError(ScoringError):
    """Raised when the datastore fails unexpectedly."""

    code = "INTERNAL_ERROR"
