"""Async subprocess execution with bounded output capture.

Every runtime operation (venv creation, pip, snippet execution) goes through
:class:`CommandRunner`. One call spawns exactly one child process.

- stdout and stderr are captured independently, each up to ``output_limit``
  bytes; bytes past the ceiling are drained and dropped and the stream's
  truncation flag is set.
- A non-zero exit is a normal result, never an exception.
- On POSIX the child leads its own session, so exceeding the timeout kills
  its whole process group (SIGKILL), including grandchildren holding the
  pipes, and raises ``PYTHON_RUNTIME_TIMEOUT`` without waiting on them.
- Failing to spawn (missing executable, NUL byte in an argument) raises
  ``PYTHON_RUNTIME_COMMAND_ERROR``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from collections.abc import Mapping, Sequence

from skill_runtime.enums import ErrorCode
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import CommandResult
from skill_runtime.observability.redaction import redact_args

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_OUTPUT_LIMIT = 200_000
MIN_TIMEOUT_MS = 1_000
# Upper bound on reaping a killed child
REAP_TIMEOUT_S = 1.0

_POSIX = sys.platform != "win32"

_READ_CHUNK = 64 * 1024


class _StreamCapture:
    """Accumulates one stream up to a byte ceiling."""

    def __init__(self, limit: int) -> None:
        self.limit = max(0, limit)
        self.size = 0
        self.truncated = False
        self._chunks: list[bytes] = []

    def feed(self, chunk: bytes) -> None:
        if not chunk:
            return
        remaining = self.limit - self.size
        if remaining <= 0:
            self.truncated = True
            return
        if len(chunk) > remaining:
            self._chunks.append(chunk[:remaining])
            self.size = self.limit
            self.truncated = True
            return
        self._chunks.append(chunk)
        self.size += len(chunk)

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


async def _drain(stream: asyncio.StreamReader | None, capture: _StreamCapture) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        capture.feed(chunk)


async def _feed_stdin(proc: asyncio.subprocess.Process, data: bytes | None) -> None:
    if proc.stdin is None:
        return
    try:
        if data:
            proc.stdin.write(data)
            await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Child exited without reading its input.
        pass
    finally:
        proc.stdin.close()


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


async def _reap(proc: asyncio.subprocess.Process) -> None:
    # wait() also waits for the pipes to close, which a surviving
    # grandchild (e.g. one that called setsid) can hold open.
    try:
        await asyncio.wait_for(proc.wait(), REAP_TIMEOUT_S)
    except asyncio.TimeoutError:
        logger.warning(
            "Killed process %s did not release its pipes within %.1fs", proc.pid, REAP_TIMEOUT_S
        )


class CommandRunner:
    """Runs one subprocess per call with a timeout and capped output."""

    def __init__(
        self,
        *,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ) -> None:
        self.default_timeout_ms = default_timeout_ms
        self.output_limit = output_limit

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        timeout_ms: int | None = None,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        output_limit: int | None = None,
    ) -> CommandResult:
        """Run ``command args...`` and return its captured result.

        Args:
            command: Executable to spawn (no shell).
            args: Arguments passed verbatim.
            cwd: Working directory for the child.
            timeout_ms: Kill the child after this many ms (minimum 1000).
            input_text: Written to the child's stdin, which is then closed.
            env: Full environment for the child (inherits ours when None).
            output_limit: Per-stream byte ceiling (defaults to the runner's).

        Raises:
            RuntimeServiceError: ``PYTHON_RUNTIME_TIMEOUT`` or
                ``PYTHON_RUNTIME_COMMAND_ERROR``.
        """
        effective_timeout_ms = max(MIN_TIMEOUT_MS, timeout_ms or self.default_timeout_ms)
        limit = self.output_limit if output_limit is None else output_limit
        argv = [str(a) for a in args]
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *argv,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except (OSError, ValueError) as e:
            raise RuntimeServiceError(
                f"Command failed to start: {e}",
                500,
                ErrorCode.COMMAND_ERROR,
                {"command": command, "args": argv},
            ) from e

        stdout = _StreamCapture(limit)
        stderr = _StreamCapture(limit)
        data = input_text.encode("utf-8") if input_text else None

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _feed_stdin(proc, data),
                    _drain(proc.stdout, stdout),
                    _drain(proc.stderr, stderr),
                    proc.wait(),
                ),
                timeout=effective_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            _kill(proc)
            await _reap(proc)
            logger.warning(
                "Command timed out after %dms: %s %s",
                effective_timeout_ms,
                command,
                " ".join(redact_args(argv[:6])),
            )
            raise RuntimeServiceError(
                f"Command timed out after {effective_timeout_ms}ms",
                504,
                ErrorCode.TIMEOUT,
                {"command": command, "args": argv, "timeoutMs": effective_timeout_ms},
            ) from None
        except asyncio.CancelledError:
            _kill(proc)
            raise

        returncode = proc.returncode
        return CommandResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            # Negative return codes mean the child was killed by a signal.
            exit_code=returncode if returncode is not None and returncode >= 0 else None,
            duration_ms=max(0, int((time.monotonic() - started) * 1000)),
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
        )
