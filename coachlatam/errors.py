"""Application error taxonomy, converted to JSON error bodies at the request boundary."""

from typing import Any


class AppError(Exception):
    """Base class for errors that map onto an HTTP status and JSON body."""

    status_code: int = 500
    critical: bool = False

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        if self.critical:
            body["critical"] = True
        return body


class Unauthenticated(AppError):
    """No valid session."""

    status_code = 401


class Unauthorized(AppError):
    """Session present but lacking the rights for this action."""

    status_code = 403


class ValidationError(AppError):
    status_code = 400


class NotFound(AppError):
    status_code = 404


class ExternalError(AppError):
    """Payment provider or database call failed."""

    status_code = 500


class CriticalInconsistency(ExternalError):
    """Provider state and internal state may have diverged; needs an operator."""

    critical = True
