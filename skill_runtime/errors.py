"""Error type shared by the runtime services.

Every failure carries a stable ``code`` (see :class:`ErrorCode`), an HTTP-ish
``status_code`` and an optional ``details`` payload so the HTTP boundary can
map errors without inspecting message text.
"""

from __future__ import annotations

from typing import Any

from skill_runtime.enums import ErrorCode


class RuntimeServiceError(Exception):
    """Raised when a runtime operation is rejected or fails."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: ErrorCode | str = ErrorCode.RUNTIME_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": str(self.code), "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return (
            f"RuntimeServiceError(code={str(self.code)!r}, "
            f"status_code={self.status_code}, message={self.message!r})"
        )
