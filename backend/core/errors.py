"""Domain error taxonomy.

Pure domain code raises these; ``main.py`` renders them as ``{"message": ..., "errors": [...]}``
with the status code carried by the class.
"""
from typing import List, Optional

from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])

    def to_body(self) -> dict:
        body: dict = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(DomainError):
    """Bad input; the caller can fix it and resubmit."""


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class StateConflict(DomainError):
    """The entity is in a state that forbids the requested transition."""
