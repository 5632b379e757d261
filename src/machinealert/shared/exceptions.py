"""
Shared exceptions.

Every error carries a stable ``code`` so clients can tell, for example,
"already completed" apart from "not authorized".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Optional


@dataclass(eq=False)
class AppError(Exception):
    message: str = "Application error"
    details: Optional[dict[str, Any]] = None

    code: ClassVar[str] = "APP_ERROR"
    status_code: ClassVar[int] = 500

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        """Render the error body returned to HTTP clients."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class InvalidInputError(AppError):
    code = "INVALID_INPUT"
    status_code = 400


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidStateError(AppError):
    code = "INVALID_STATE"
    status_code = 409


class StoreUnavailableError(AppError):
    """Transient persistence failure."""

    code = "STORE_UNAVAILABLE"
    status_code = 500
