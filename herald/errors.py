"""
herald.errors — Domain Error Taxonomy
======================================

Services raise these, never ``HTTPException``.  The API layer turns any
:class:`HeraldError` into a JSON response using its ``status_code`` and
``code`` (see :mod:`herald.api.main`).

``TransientError`` is the odd one out: it marks cache, notification-channel
and analytics failures.  Core flows catch and log it; it should never reach
a caller.
"""

from __future__ import annotations

from typing import Any


class HeraldError(Exception):
    """Base class for all domain-level errors."""

    code: str = "herald_error"
    status_code: int = 400

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(HeraldError):
    """Bad or missing template variables, undefined placeholders,
    inactive-template use, out-of-range values."""

    code = "validation_error"
    status_code = 422


class NotFoundError(HeraldError):
    code = "not_found"
    status_code = 404


class ConflictError(HeraldError):
    """Mutating something that may not be mutated (system templates)."""

    code = "conflict"
    status_code = 409


class TransientError(HeraldError):
    code = "transient_error"
    status_code = 503
