"""Error type raised inside availability transactions."""

from __future__ import annotations

from typing import Any

from availability.schema import ErrorCode


class AvailabilityError(Exception):
    """Aborts the surrounding transaction and carries the typed failure back out."""

    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"AvailabilityError(code={self.code.value!r}, message={self.message!r})"
