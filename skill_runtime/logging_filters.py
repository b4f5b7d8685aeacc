"""Logging filters shared by ``python -m skill_runtime.main`` and ``skill_runtime.asgi``."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from skill_runtime.observability.redaction import redact_text

QUIET_ACCESS_PATHS = ("/health",)


class SuppressHealthCheckAccessLog(logging.Filter):
    """Drop Uvicorn access records for probe endpoints such as ``/health``.

    Matches the exact path, with or without a query string; ``/healthz`` and
    the runtime API keep their access lines.
    """

    def __init__(self, paths: Iterable[str] = QUIET_ACCESS_PATHS):
        super().__init__()
        self.paths = tuple(paths)

    def _is_quiet(self, path: str) -> bool:
        return path.split("?", 1)[0] in self.paths

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        # Uvicorn access args: (client_addr, method, full_path, http_version, status_code)
        args: Any = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            return not self._is_quiet(str(args[2]))

        # Preformatted line: '... "GET /health HTTP/1.1" 200'
        message = record.getMessage()
        for method in ("GET", "HEAD"):
            marker = f'"{method} '
            if marker in message:
                path = message.split(marker, 1)[1].split(" ", 1)[0]
                return not self._is_quiet(path)
        return True


class RedactCredentialsFilter(logging.Filter):
    """Scrub index credentials from any record reaching the root handlers.

    Third-party loggers are not routed through the redaction helpers, so the
    record is formatted once here and its arguments dropped.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        message = record.getMessage()
        redacted = redact_text(message, max_chars=0)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _add_once(target: logging.Filterer, filter_cls: type[logging.Filter]) -> None:
    if not any(isinstance(f, filter_cls) for f in target.filters):
        target.addFilter(filter_cls())


def install_uvicorn_access_log_filters() -> None:
    """Install the access log and credential filters. Safe to call multiple times."""
    _add_once(logging.getLogger("uvicorn.access"), SuppressHealthCheckAccessLog)
    for handler in logging.getLogger().handlers:
        _add_once(handler, RedactCredentialsFilter)
