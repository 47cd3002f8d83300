"""
Service-layer exceptions.

Service functions raise these; the app factory turns them into
`{"error": message}` JSON responses with the matching status code.
"""
from __future__ import annotations

from typing import Any


class ServiceError(RuntimeError):
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body.update(self.details)
        return body


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        super().__init__(errors[0] if errors else "Invalid request.", details={"errors": errors} if len(errors) > 1 else None)
        self.errors = errors


class AuthError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class RateLimitError(ServiceError):
    status_code = 429
