"""Runs short code snippets in the managed runtime.

A snippet that fails with ``No module named ...`` may trigger an automatic
install of the missing distributions followed by a re-run, at most
:data:`MAX_AUTO_INSTALL_ROUNDS` times. Auto-installs need an identified actor
and the ``auto_install_on_missing`` setting; they are recorded with source
``python_auto`` and never join the manual package set.
"""

from __future__ import annotations

import logging
import time

from skill_runtime.config import RuntimeConfig
from skill_runtime.enums import ErrorCode, InstallSource
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import CommandResult, SnippetResult
from skill_runtime.services.command_runner import CommandRunner
from skill_runtime.services.python_runtime_service import PythonRuntimeService
from skill_runtime.services.requirements import extract_missing_module_requirements

logger = logging.getLogger(__name__)

MAX_AUTO_INSTALL_ROUNDS = 3
MIN_OUTPUT_LIMIT = 256


class SnippetRunner:
    """Executes ``python -c <code>`` with the managed interpreter."""

    def __init__(
        self,
        runtime_service: PythonRuntimeService,
        runner: CommandRunner | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.runtime_service = runtime_service
        self.runner = runner or runtime_service.runner
        self.config = config or runtime_service.config

    @staticmethod
    def _normalize_code(code: str | None, max_source_chars: int) -> str:
        if not code or not code.strip():
            raise RuntimeServiceError(
                "Python code must not be empty",
                400,
                ErrorCode.SNIPPET_CODE_EMPTY,
            )
        normalized = code.replace("\r\n", "\n")
        if len(normalized) > max_source_chars:
            raise RuntimeServiceError(
                f"Python code exceeds the limit ({max_source_chars} characters)",
                400,
                ErrorCode.SNIPPET_CODE_TOO_LARGE,
                {"maxSourceChars": max_source_chars, "length": len(normalized)},
            )
        return normalized

    async def _attempt(
        self,
        python_path: str,
        code: str,
        input_text: str | None,
        timeout_ms: int,
        output_limit: int,
    ) -> CommandResult:
        try:
            return await self.runner.run(
                python_path,
                ["-c", code],
                timeout_ms=timeout_ms,
                input_text=input_text,
                output_limit=output_limit,
            )
        except RuntimeServiceError as e:
            if e.code == ErrorCode.TIMEOUT:
                raise
            raise RuntimeServiceError(
                f"Python command failed: {e.message}",
                500,
                ErrorCode.SNIPPET_EXEC_FAILED,
                e.details,
            ) from e

    async def run(
        self,
        code: str,
        *,
        input_text: str | None = None,
        actor_id: int | str | None = None,
        timeout_ms: int | None = None,
        max_output_chars: int | None = None,
        max_source_chars: int | None = None,
    ) -> SnippetResult:
        """Run *code*, auto-installing missing modules when allowed.

        Args:
            code: Python source passed to ``python -c``.
            input_text: Written to the snippet's stdin.
            actor_id: Identity of the caller; without one nothing is installed.
            timeout_ms: Per-attempt timeout.
            max_output_chars: Capture ceiling per stream (minimum 256).
            max_source_chars: Longest accepted source after CRLF normalization.

        Returns:
            The last attempt's output; ``duration_ms`` covers every attempt
            and install in between.

        Raises:
            RuntimeServiceError: ``PYTHON_SNIPPET_CODE_EMPTY``,
                ``PYTHON_SNIPPET_CODE_TOO_LARGE``, ``PYTHON_RUNTIME_TIMEOUT``
                or ``PYTHON_SNIPPET_EXEC_FAILED``; bootstrap failures propagate.
        """
        timeout_ms = timeout_ms or self.config.snippet_timeout_ms
        max_output_chars = max_output_chars or self.config.snippet_max_output_chars
        max_source_chars = max_source_chars or self.config.snippet_max_source_chars

        normalized = self._normalize_code(code, max_source_chars)
        python_path = await self.runtime_service.get_managed_python_path()
        output_limit = max(MIN_OUTPUT_LIMIT, max_output_chars)
        started = time.monotonic()

        can_auto_install = bool(actor_id) and await self.runtime_service.get_auto_install_on_missing()

        installed: list[str] = []
        install_failure = ""
        rounds = 0

        while True:
            result = await self._attempt(
                python_path, normalized, input_text, timeout_ms, output_limit
            )
            if result.exit_code == 0 or not can_auto_install:
                break
            if rounds >= MAX_AUTO_INSTALL_ROUNDS:
                break

            missing = [
                r
                for r in extract_missing_module_requirements(f"{result.stderr}\n{result.stdout}")
                if r not in installed
            ]
            if not missing:
                break

            try:
                await self.runtime_service.install_requirements(
                    missing, InstallSource.PYTHON_AUTO
                )
            except RuntimeServiceError as e:
                install_failure = e.message
                logger.warning("Automatic install of %s failed: %s", missing, e.message)
                break

            installed.extend(missing)
            rounds += 1
            logger.info("Auto-installed %s for actor %s (round %d)", missing, actor_id, rounds)

        stderr_lines = []
        if result.stderr.strip():
            stderr_lines.append(result.stderr.strip())
        if install_failure:
            stderr_lines.append(f"Automatic dependency install failed: {install_failure}")

        return SnippetResult(
            stdout=result.stdout,
            stderr="\n".join(stderr_lines).strip(),
            exit_code=result.exit_code,
            duration_ms=max(0, int((time.monotonic() - started) * 1000)),
            truncated=result.truncated,
            auto_installed_requirements=installed or None,
        )
