"""Log redaction for index credentials and command lines."""

from skill_runtime.observability.redaction import redact_args, redact_text, redact_url, sanitize

__all__ = ["redact_args", "redact_text", "redact_url", "sanitize"]
