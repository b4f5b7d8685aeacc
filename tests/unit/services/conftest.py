"""Fixtures for runtime service tests.

``FakeCommandRunner`` stands in for :class:`CommandRunner` and simulates just
enough of ``python -m venv`` and ``python -m pip`` for the service logic:
installs add packages to an in-memory table, uninstalls remove them, and
``pip list --format=json`` reports the table.
"""

import asyncio
import json
import os
import re
from collections.abc import Sequence

import pytest
import pytest_asyncio

from skill_runtime.config import RuntimeConfig
from skill_runtime.dao import SettingsDAO, SkillDAO
from skill_runtime.enums import ErrorCode
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import CommandResult
from skill_runtime.services.dependency_service import DependencyService
from skill_runtime.services.python_runtime_service import PythonRuntimeService
from skill_runtime.services.requirements import normalize_package_name

_OPTIONS_WITH_VALUE = {"--index-url", "--extra-index-url", "--trusted-host"}
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*")
# "name==1.2.3", an exact pin, installs that version; anything else installs 1.0.0
_PIN_RE = re.compile(r"==\s*([A-Za-z0-9.+!-]+)\s*(?:;|$)")


class FakeCommandRunner:
    """In-memory pip/venv simulator recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.installed: dict[str, str] = {"pip": "24.0"}
        self.install_exit_code = 0
        self.install_stderr = ""
        self.check_exit_code = 0
        self.check_output = "No broken requirements found."
        self.pip_available = True
        self.install_delay = 0.0
        # Queued outcomes for ``python -c``: CommandResult or an exception.
        self.snippet_results: list[CommandResult | Exception] = []
        self.snippet_inputs: list[str | None] = []
        self.active_mutations = 0
        self.max_active_mutations = 0

    def pip_calls(self, subcommand: str) -> list[list[str]]:
        return [
            args
            for _, args in self.calls
            if args[:2] == ["-m", "pip"] and len(args) > 2 and args[2] == subcommand
        ]

    def snippet_calls(self) -> list[list[str]]:
        return [args for _, args in self.calls if args[:1] == ["-c"]]

    @staticmethod
    def _requirement_args(args: Sequence[str]) -> list[str]:
        out: list[str] = []
        skip_next = False
        for arg in args:
            if skip_next:
                skip_next = False
                continue
            if arg in _OPTIONS_WITH_VALUE:
                skip_next = True
                continue
            if arg.startswith("-"):
                continue
            out.append(arg)
        return out

    async def _mutate(self, apply) -> CommandResult:
        self.active_mutations += 1
        self.max_active_mutations = max(self.max_active_mutations, self.active_mutations)
        try:
            if self.install_delay:
                await asyncio.sleep(self.install_delay)
            return apply()
        finally:
            self.active_mutations -= 1

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd=None,
        timeout_ms=None,
        input_text=None,
        env=None,
        output_limit=None,
    ) -> CommandResult:
        args = list(args)
        self.calls.append((command, args))

        if args[:2] == ["-m", "venv"]:
            venv_path = args[-1]
            bin_dir = os.path.join(venv_path, "bin")
            os.makedirs(bin_dir, exist_ok=True)
            open(os.path.join(bin_dir, "python"), "a").close()
            return CommandResult(exit_code=0)

        if args[:2] == ["-m", "ensurepip"]:
            return CommandResult(exit_code=0)

        if args[:1] == ["-c"]:
            self.snippet_inputs.append(input_text)
            if not self.snippet_results:
                return CommandResult(exit_code=0)
            outcome = self.snippet_results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        if args[:2] != ["-m", "pip"]:
            raise RuntimeServiceError(
                f"unexpected command {command} {args}", 500, ErrorCode.COMMAND_ERROR
            )

        sub = args[2]
        if sub == "--version":
            return CommandResult(
                stdout="pip 24.0" if self.pip_available else "",
                stderr="" if self.pip_available else "No module named pip",
                exit_code=0 if self.pip_available else 1,
            )

        if sub == "install":

            def _apply() -> CommandResult:
                if self.install_exit_code != 0:
                    return CommandResult(stderr=self.install_stderr, exit_code=self.install_exit_code)
                for raw in self._requirement_args(args[3:]):
                    name = _NAME_RE.match(raw).group(0)
                    pinned = _PIN_RE.search(raw)
                    self.installed[normalize_package_name(name)] = pinned.group(1) if pinned else "1.0.0"
                return CommandResult(stdout="Successfully installed", exit_code=0)

            return await self._mutate(_apply)

        if sub == "uninstall":

            def _apply() -> CommandResult:
                for name in self._requirement_args(args[3:]):
                    self.installed.pop(name, None)
                return CommandResult(exit_code=0)

            return await self._mutate(_apply)

        if sub == "check":
            return CommandResult(stdout=self.check_output, exit_code=self.check_exit_code)

        if sub == "list":
            rows = [{"name": k, "version": v} for k, v in self.installed.items()]
            return CommandResult(stdout=json.dumps(rows), exit_code=0)

        raise RuntimeServiceError(f"unexpected pip call {args}", 500, ErrorCode.COMMAND_ERROR)


@pytest.fixture
def fake_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def runtime_config(tmp_path) -> RuntimeConfig:
    return RuntimeConfig(data_dir=str(tmp_path / "data"), platform="linux")


@pytest_asyncio.fixture
async def settings_dao(test_db) -> SettingsDAO:
    return SettingsDAO(test_db)


@pytest_asyncio.fixture
async def skill_dao(test_db) -> SkillDAO:
    return SkillDAO(test_db)


@pytest_asyncio.fixture
async def runtime_service(runtime_config, settings_dao, skill_dao, fake_runner) -> PythonRuntimeService:
    return PythonRuntimeService(
        runtime_config,
        settings_dao,
        DependencyService(skill_dao),
        runner=fake_runner,
    )
