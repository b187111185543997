"""Domain error taxonomy.

Services raise these; the web layer maps each class to one status code.
``InternalError`` is only surfaced by a merge that failed mid-transaction;
projection and audit failures are logged where they happen.
"""

from __future__ import annotations


class CaseGraphError(Exception):
    """Base for domain-level errors."""

    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = list(fields or [])

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "error": type(self).__name__,
            "message": self.message,
        }
        if self.fields:
            data["fields"] = self.fields
        return data


class ValidationError(CaseGraphError):
    status_code = 422


class NotFoundError(CaseGraphError):
    status_code = 404


class ConflictError(CaseGraphError):
    status_code = 409


class InternalError(CaseGraphError):
    status_code = 500
