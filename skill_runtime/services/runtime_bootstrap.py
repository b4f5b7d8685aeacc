"""Managed venv provisioning and self-healing.

Layout (``data_root`` from config, else ``./data``)::

    <data_root>/python-runtime/venv/bin/python        (POSIX)
    <data_root>\\python-runtime\\venv\\Scripts\\python.exe  (win32)

``ensure_managed_runtime`` is called on the hot path of status queries as well
as before every mutation, so the first call after a broken environment may be
slow: it recreates the venv and, failing that, runs ``ensurepip``.
"""

from __future__ import annotations

import asyncio
import logging
import ntpath
import os
import posixpath
from typing import Any

from skill_runtime.config import RuntimeConfig
from skill_runtime.enums import ErrorCode
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import CommandResult, RuntimePaths
from skill_runtime.services.command_runner import CommandRunner

logger = logging.getLogger(__name__)

RUNTIME_DIR_NAME = "python-runtime"
VENV_DIR_NAME = "venv"


def _is_windows(platform: str) -> bool:
    return platform == "win32"


class RuntimeBootstrapper:
    """Resolves, creates and repairs the managed virtual environment."""

    def __init__(self, config: RuntimeConfig, runner: CommandRunner) -> None:
        self.config = config
        self.runner = runner

    # ---------------------------
    # Paths
    # ---------------------------

    def resolve_paths(self) -> RuntimePaths:
        """Compute the runtime layout. Pure; touches nothing on disk."""
        windows = _is_windows(self.config.platform)
        pathmod = ntpath if windows else posixpath

        raw_data_root = (self.config.data_dir or "").strip() or pathmod.join(os.getcwd(), "data")
        data_root = pathmod.normpath(pathmod.join(os.getcwd(), raw_data_root))
        runtime_root = pathmod.join(data_root, RUNTIME_DIR_NAME)
        venv_path = pathmod.join(runtime_root, VENV_DIR_NAME)
        if windows:
            python_path = pathmod.join(venv_path, "Scripts", "python.exe")
        else:
            python_path = pathmod.join(venv_path, "bin", "python")

        return RuntimePaths(
            data_root=data_root,
            runtime_root=runtime_root,
            venv_path=venv_path,
            python_path=python_path,
        )

    def bootstrap_candidates(self) -> list[str]:
        """Interpreters tried, in order, to create the venv."""
        override = (self.config.python_bootstrap_command or "").strip()
        if _is_windows(self.config.platform):
            candidates = [override or "python", "py"]
        else:
            candidates = [override or "python3", "python"]
        return list(dict.fromkeys(c for c in candidates if c))

    # ---------------------------
    # Provisioning
    # ---------------------------

    async def ensure_managed_runtime(self) -> RuntimePaths:
        """Make sure the venv exists and pip works; return its paths.

        Raises:
            RuntimeServiceError: ``PYTHON_RUNTIME_CREATE_VENV_FAILED`` or
                ``PYTHON_RUNTIME_PIP_UNAVAILABLE``.
        """
        paths = self.resolve_paths()
        await asyncio.to_thread(os.makedirs, paths.runtime_root, exist_ok=True)

        if not await asyncio.to_thread(os.path.exists, paths.python_path):
            await self.create_venv(paths)
        await self.ensure_pip_available(paths)

        return paths

    async def create_venv(self, paths: RuntimePaths, *, clear: bool = False) -> None:
        """Create the venv with the first bootstrap interpreter that succeeds."""
        args = ["-m", "venv", *(["--clear"] if clear else []), paths.venv_path]

        last_error = "no bootstrap command available"
        for command in self.bootstrap_candidates():
            try:
                result = await self.runner.run(
                    command, args, timeout_ms=self.config.operation_timeout_ms
                )
            except RuntimeServiceError as e:
                last_error = e.message
                continue
            if result.exit_code != 0:
                last_error = result.stderr.strip() or f"exit code {result.exit_code}"
                continue

            logger.info(
                "Created managed venv at %s with %s (clear=%s, %dms)",
                paths.venv_path,
                command,
                clear,
                result.duration_ms,
            )
            return

        raise RuntimeServiceError(
            f"Unable to create the Python virtual environment: {last_error}",
            500,
            ErrorCode.CREATE_VENV_FAILED,
            {"venvPath": paths.venv_path, "clear": clear},
        )

    async def _pip_version(self, paths: RuntimePaths) -> CommandResult | str:
        """Probe pip; returns the result, or the error message if it could not run."""
        try:
            return await self.runner.run(
                paths.python_path,
                ["-m", "pip", "--version"],
                timeout_ms=self.config.operation_timeout_ms,
            )
        except RuntimeServiceError as e:
            return e.message

    @staticmethod
    def _probe_ok(probe: CommandResult | str) -> bool:
        return isinstance(probe, CommandResult) and probe.exit_code == 0

    @staticmethod
    def _probe_output(probe: CommandResult | str) -> str:
        return probe.combined_output() if isinstance(probe, CommandResult) else probe

    def _pip_unavailable_hint(self) -> str:
        if _is_windows(self.config.platform):
            return (
                "On Windows make sure Python was installed with pip/venv, "
                "or run `py -m ensurepip --upgrade`."
            )
        return (
            "On Linux/WSL install the system venv package and retry "
            "(Debian/Ubuntu: `sudo apt install python3-venv`)."
        )

    async def ensure_pip_available(self, paths: RuntimePaths) -> None:
        """Verify pip responds; repair by recreating the venv, then via ensurepip.

        Raises:
            RuntimeServiceError: ``PYTHON_RUNTIME_PIP_UNAVAILABLE`` with a
                diagnostic entry for every step attempted.
        """
        diagnostics: dict[str, Any] = {}

        probe = await self._pip_version(paths)
        if self._probe_ok(probe):
            return
        diagnostics["initialPipCheck"] = self._probe_output(probe)
        logger.warning("Managed runtime pip unavailable, recreating venv at %s", paths.venv_path)

        try:
            await self.create_venv(paths, clear=True)
            diagnostics["recreateVenv"] = "ok"
        except RuntimeServiceError as e:
            diagnostics["recreateVenv"] = e.message

        probe = await self._pip_version(paths)
        if self._probe_ok(probe):
            logger.info("Recovered managed runtime pip by recreating venv at %s", paths.venv_path)
            return
        diagnostics["afterRecreatePipCheck"] = self._probe_output(probe)

        try:
            ensure = await self.runner.run(
                paths.python_path,
                ["-m", "ensurepip", "--upgrade"],
                timeout_ms=self.config.operation_timeout_ms,
            )
            diagnostics["ensurePip"] = ensure.combined_output()
        except RuntimeServiceError as e:
            diagnostics["ensurePip"] = e.message

        probe = await self._pip_version(paths)
        if self._probe_ok(probe):
            logger.info("Recovered managed runtime pip via ensurepip at %s", paths.venv_path)
            return
        diagnostics["finalPipCheck"] = self._probe_output(probe)

        logger.error("Managed runtime pip could not be repaired at %s", paths.venv_path)
        raise RuntimeServiceError(
            f"pip is unavailable in the managed runtime and automatic repair failed. "
            f"{self._pip_unavailable_hint()}",
            500,
            ErrorCode.PIP_UNAVAILABLE,
            diagnostics,
        )
