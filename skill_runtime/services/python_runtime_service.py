"""Managed Python runtime business logic.

This service owns the shared venv that skills and ad-hoc snippets run in. It
orchestrates the bootstrapper, the command runner, the settings store and the
skill registry:

- package installs on behalf of an administrator (``manual``), a skill
  activation (``skill``) or the snippet runner (``python_auto``)
- guarded uninstalls that refuse to break active skills
- reconcile: reinstall everything active skills declare
- cleanup planning after a skill is removed

Every mutation of the venv goes through a single :class:`OperationQueue`;
validation and in-use guards run before anything is queued so rejected
requests never touch the environment.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from skill_runtime.config import RuntimeConfig
from skill_runtime.dao.settings_dao import SettingsDAO
from skill_runtime.enums import ErrorCode, InstallSource, PackageSourceKind
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import (
    CleanupPlan,
    CleanupResult,
    CommandResult,
    ConflictItem,
    DependencyItem,
    InstalledPackage,
    InstallResult,
    PackageSource,
    ReconcileResult,
    RuntimeIndexes,
    RuntimeIndexesUpdate,
    RuntimeIssue,
    RuntimePaths,
    RuntimeStatus,
    UninstallResult,
)
from skill_runtime.observability.redaction import sanitize
from skill_runtime.services.cleanup_planner import build_cleanup_plan
from skill_runtime.services.command_runner import CommandRunner
from skill_runtime.services.dependency_service import DependencyService
from skill_runtime.services.operation_queue import OperationQueue
from skill_runtime.services.requirements import (
    normalize_package_list,
    normalize_package_name,
    parse_requirements,
    sanitize_list,
    validate_package_name,
)
from skill_runtime.services.runtime_bootstrap import RuntimeBootstrapper

logger = logging.getLogger(__name__)

INDEX_KEY = "python_runtime_index_url"
EXTRA_INDEXES_KEY = "python_runtime_extra_index_urls"
TRUSTED_HOSTS_KEY = "python_runtime_trusted_hosts"
AUTO_INSTALL_ON_ACTIVATE_KEY = "python_runtime_auto_install_on_activate"
AUTO_INSTALL_ON_MISSING_KEY = "python_runtime_auto_install_on_missing"
MANUAL_PACKAGES_KEY = "python_runtime_manual_packages"

MAX_SETTING_CHARS = 512

# Bootstrap failures that make status report "not ready" instead of raising.
DEGRADED_STATUS_CODES = frozenset(
    {
        ErrorCode.PIP_UNAVAILABLE,
        ErrorCode.CREATE_VENV_FAILED,
        ErrorCode.COMMAND_ERROR,
    }
)


def _parse_json_array(value: str | None) -> list[str]:
    if not value or not value.strip():
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item.strip() for item in parsed if isinstance(item, str) and item.strip()]


def _parse_flag(value: str | None, default: bool = True) -> bool:
    raw = (value or "").strip().lower()
    return raw == "true" if raw else default


def _ensure_string(value: str | None, max_length: int = MAX_SETTING_CHARS) -> str:
    trimmed = (value or "").strip()
    if len(trimmed) > max_length:
        raise RuntimeServiceError(
            f"Setting value too long (max {max_length} characters)",
            400,
            ErrorCode.INVALID_INDEX,
        )
    return trimmed


def _failure_output(result: CommandResult) -> str:
    return result.stderr or result.stdout or "unknown error"


class PythonRuntimeService:
    """Facade over the managed runtime: packages, indexes, status, cleanup."""

    def __init__(
        self,
        config: RuntimeConfig,
        settings_dao: SettingsDAO,
        dependency_service: DependencyService,
        runner: CommandRunner | None = None,
        bootstrapper: RuntimeBootstrapper | None = None,
        queue: OperationQueue | None = None,
    ):
        """Initialize the service.

        Args:
            config: Runtime configuration (paths, timeouts, platform).
            settings_dao: Key/value store for index settings and the manual set.
            dependency_service: Aggregates requirements of active skills.
            runner: Subprocess executor; built from config when omitted.
            bootstrapper: venv provisioner; built from config when omitted.
            queue: Mutation queue; a private one is created when omitted.
        """
        self.config = config
        self.settings_dao = settings_dao
        self.dependency_service = dependency_service
        self.runner = runner or CommandRunner(
            default_timeout_ms=config.operation_timeout_ms,
            output_limit=config.output_limit_bytes,
        )
        self.bootstrapper = bootstrapper or RuntimeBootstrapper(config, self.runner)
        self.queue = queue or OperationQueue()

    # ---------------------------
    # Paths and provisioning
    # ---------------------------

    def resolve_paths(self) -> RuntimePaths:
        return self.bootstrapper.resolve_paths()

    async def ensure_managed_runtime(self) -> RuntimePaths:
        return await self.bootstrapper.ensure_managed_runtime()

    async def get_managed_python_path(self) -> str:
        """Interpreter path of the managed venv, provisioning it if needed."""
        paths = await self.ensure_managed_runtime()
        return paths.python_path

    # ---------------------------
    # Index settings
    # ---------------------------

    async def get_indexes(self) -> RuntimeIndexes:
        values = await self.settings_dao.get_many(
            [
                INDEX_KEY,
                EXTRA_INDEXES_KEY,
                TRUSTED_HOSTS_KEY,
                AUTO_INSTALL_ON_ACTIVATE_KEY,
                AUTO_INSTALL_ON_MISSING_KEY,
            ]
        )
        return RuntimeIndexes(
            index_url=_ensure_string(values.get(INDEX_KEY)) or None,
            extra_index_urls=sanitize_list(_parse_json_array(values.get(EXTRA_INDEXES_KEY))),
            trusted_hosts=sanitize_list(_parse_json_array(values.get(TRUSTED_HOSTS_KEY))),
            auto_install_on_activate=_parse_flag(values.get(AUTO_INSTALL_ON_ACTIVATE_KEY)),
            auto_install_on_missing=_parse_flag(values.get(AUTO_INSTALL_ON_MISSING_KEY)),
        )

    async def update_indexes(self, update: RuntimeIndexesUpdate) -> RuntimeIndexes:
        """Apply a partial update; fields left as None keep their stored value.

        All values are validated before anything is written.

        Raises:
            RuntimeServiceError: ``PYTHON_RUNTIME_INVALID_INDEX`` when a value
                exceeds 512 characters.
        """
        index_url = _ensure_string(update.index_url) if update.index_url is not None else None
        extra = (
            [_ensure_string(u) for u in sanitize_list(update.extra_index_urls)]
            if update.extra_index_urls is not None
            else None
        )
        hosts = (
            [_ensure_string(h) for h in sanitize_list(update.trusted_hosts)]
            if update.trusted_hosts is not None
            else None
        )

        if index_url is not None:
            await self.settings_dao.upsert(INDEX_KEY, index_url)
        if extra is not None:
            await self.settings_dao.upsert(EXTRA_INDEXES_KEY, json.dumps(extra))
        if hosts is not None:
            await self.settings_dao.upsert(TRUSTED_HOSTS_KEY, json.dumps(hosts))
        if update.auto_install_on_activate is not None:
            await self.settings_dao.upsert(
                AUTO_INSTALL_ON_ACTIVATE_KEY, "true" if update.auto_install_on_activate else "false"
            )
        if update.auto_install_on_missing is not None:
            await self.settings_dao.upsert(
                AUTO_INSTALL_ON_MISSING_KEY, "true" if update.auto_install_on_missing else "false"
            )

        indexes = await self.get_indexes()
        logger.info("Updated python runtime indexes: %s", sanitize(indexes.to_dict()))
        return indexes

    async def get_auto_install_on_activate(self) -> bool:
        return (await self.get_indexes()).auto_install_on_activate

    async def get_auto_install_on_missing(self) -> bool:
        return (await self.get_indexes()).auto_install_on_missing

    @staticmethod
    def _pip_index_args(indexes: RuntimeIndexes) -> list[str]:
        args: list[str] = []
        if indexes.index_url:
            args.extend(["--index-url", indexes.index_url])
        for url in indexes.extra_index_urls:
            args.extend(["--extra-index-url", url])
        for host in indexes.trusted_hosts:
            args.extend(["--trusted-host", host])
        return args

    # ---------------------------
    # Manual package set
    # ---------------------------

    async def get_manual_packages(self) -> list[str]:
        values = await self.settings_dao.get_many([MANUAL_PACKAGES_KEY])
        return normalize_package_list(_parse_json_array(values.get(MANUAL_PACKAGES_KEY)))

    async def _save_manual_packages(self, packages: Iterable[str]) -> None:
        await self.settings_dao.upsert(
            MANUAL_PACKAGES_KEY, json.dumps(normalize_package_list(packages))
        )

    async def _add_manual_packages(self, packages: Iterable[str]) -> None:
        existing = await self.get_manual_packages()
        await self._save_manual_packages([*existing, *packages])

    async def _remove_manual_packages(self, packages: Iterable[str]) -> None:
        existing = await self.get_manual_packages()
        if not existing:
            return
        remove = set(normalize_package_list(packages))
        if not remove:
            return
        await self._save_manual_packages([p for p in existing if p not in remove])

    # ---------------------------
    # Dependencies
    # ---------------------------

    async def collect_active_dependencies(
        self, exclude_skill_ids: Iterable[int] | None = None
    ) -> list[DependencyItem]:
        return await self.dependency_service.collect_active_dependencies(exclude_skill_ids)

    def analyze_conflicts(self, dependencies: Iterable[DependencyItem]) -> list[ConflictItem]:
        return self.dependency_service.analyze_conflicts(dependencies)

    # ---------------------------
    # pip helpers
    # ---------------------------

    async def _pip(self, paths: RuntimePaths, args: list[str]) -> CommandResult:
        return await self.runner.run(
            paths.python_path,
            ["-m", "pip", *args],
            timeout_ms=self.config.pip_timeout_ms,
        )

    async def _pip_check(self, paths: RuntimePaths) -> tuple[bool, str]:
        result = await self._pip(paths, ["check"])
        output = f"{result.stdout}\n{result.stderr}".strip()
        return result.exit_code == 0, output

    async def _require_pip_check(self, paths: RuntimePaths) -> str:
        passed, output = await self._pip_check(paths)
        if not passed:
            logger.warning("pip check failed: %s", sanitize(output))
            raise RuntimeServiceError(
                f"pip check failed: {output or 'unknown error'}",
                400,
                ErrorCode.PIP_CHECK_FAILED,
            )
        return output

    async def _list_packages(self, paths: RuntimePaths) -> list[InstalledPackage]:
        result = await self._pip(paths, ["list", "--format=json"])
        if result.exit_code != 0:
            raise RuntimeServiceError(
                f"Failed to list installed packages: {result.stderr or 'unknown error'}",
                500,
                ErrorCode.LIST_PACKAGES_FAILED,
            )

        try:
            parsed = json.loads(result.stdout)
        except ValueError:
            return []
        if not isinstance(parsed, list):
            return []

        packages = [
            InstalledPackage(
                name=item.get("name") if isinstance(item.get("name"), str) else "",
                version=item.get("version") if isinstance(item.get("version"), str) else "",
            )
            for item in parsed
            if isinstance(item, dict)
        ]
        return sorted((p for p in packages if p.name), key=lambda p: p.name)

    async def list_installed_packages(self) -> list[InstalledPackage]:
        """``pip list`` of the managed venv, sorted by name."""
        paths = await self.ensure_managed_runtime()
        return await self._list_packages(paths)

    # ---------------------------
    # Mutations
    # ---------------------------

    async def install_requirements(
        self,
        requirements: list[str],
        source: InstallSource,
        skill_id: int | None = None,
        version_id: int | None = None,
    ) -> InstallResult:
        """Install requirements into the managed venv.

        Requirements are validated before the request is queued. Only
        ``manual`` installs add to the manual package set.

        Raises:
            RuntimeServiceError: validation codes, ``PYTHON_RUNTIME_INSTALL_FAILED``
                or ``PYTHON_RUNTIME_PIP_CHECK_FAILED``.
        """
        entries = parse_requirements(requirements)
        raws = [e.raw for e in entries]

        async def _install() -> InstallResult:
            paths = await self.ensure_managed_runtime()
            indexes = await self.get_indexes()
            result = await self._pip(
                paths,
                [
                    "install",
                    "--disable-pip-version-check",
                    "--no-input",
                    *self._pip_index_args(indexes),
                    *raws,
                ],
            )
            if result.exit_code != 0:
                logger.warning(
                    "pip install failed (source=%s): %s",
                    source,
                    sanitize(_failure_output(result)),
                )
                raise RuntimeServiceError(
                    f"Failed to install requirements: {_failure_output(result)}",
                    400,
                    ErrorCode.INSTALL_FAILED,
                    {
                        "requirements": raws,
                        "source": str(source),
                        "skillId": skill_id,
                        "versionId": version_id,
                    },
                )

            pip_check_output = await self._require_pip_check(paths)

            if source == InstallSource.MANUAL:
                await self._add_manual_packages(e.package_name for e in entries)

            logger.info(
                "Installed python requirements %s (source=%s, skill=%s, version=%s, %dms)",
                raws,
                source,
                skill_id,
                version_id,
                result.duration_ms,
            )

            return InstallResult(
                source=source,
                requirements=raws,
                pip_check_passed=True,
                pip_check_output=pip_check_output,
                installed_packages=await self._list_packages(paths),
            )

        return await self.queue.enqueue(_install)

    async def install_for_skill_activation(
        self,
        skill_id: int,
        version_id: int,
        requirements: list[str] | None,
    ) -> InstallResult | None:
        """Install what an activated skill version declares.

        Returns None when nothing is declared or auto-install on activation
        is switched off.
        """
        if not requirements:
            return None
        if not await self.get_auto_install_on_activate():
            logger.info(
                "Auto-install on activation disabled; skipping %d requirement(s) for skill %s",
                len(requirements),
                skill_id,
            )
            return None
        return await self.install_requirements(
            requirements, InstallSource.SKILL, skill_id=skill_id, version_id=version_id
        )

    async def uninstall_packages(self, packages: list[str]) -> UninstallResult:
        """Uninstall packages unless an active skill still declares them.

        Raises:
            RuntimeServiceError: ``PYTHON_RUNTIME_EMPTY_PACKAGES``,
                ``PYTHON_RUNTIME_INVALID_PACKAGE_NAME``,
                ``PYTHON_RUNTIME_PACKAGE_IN_USE`` (409, nothing is run),
                ``PYTHON_RUNTIME_UNINSTALL_FAILED`` or
                ``PYTHON_RUNTIME_PIP_CHECK_FAILED``.
        """
        if not packages:
            raise RuntimeServiceError(
                "At least one package name is required",
                400,
                ErrorCode.EMPTY_PACKAGES,
            )

        names = list(
            dict.fromkeys(
                n for n in (validate_package_name(p) if isinstance(p, str) else None for p in packages) if n
            )
        )
        if not names:
            raise RuntimeServiceError(
                "Invalid package name",
                400,
                ErrorCode.INVALID_PACKAGE_NAME,
            )

        dependencies = await self.collect_active_dependencies()
        blocked = [d for d in dependencies if d.package_name in names]
        if blocked:
            raise RuntimeServiceError(
                "Packages are required by active skills and cannot be uninstalled",
                409,
                ErrorCode.PACKAGE_IN_USE,
                {"blocked": [d.to_dict(by_alias=True) for d in blocked]},
            )

        async def _uninstall() -> UninstallResult:
            paths = await self.ensure_managed_runtime()
            result = await self._pip(paths, ["uninstall", "-y", *names])
            if result.exit_code != 0:
                raise RuntimeServiceError(
                    f"Failed to uninstall packages: {_failure_output(result)}",
                    400,
                    ErrorCode.UNINSTALL_FAILED,
                    {"packages": names},
                )

            pip_check_output = await self._require_pip_check(paths)
            await self._remove_manual_packages(names)

            logger.info("Uninstalled python packages %s (%dms)", names, result.duration_ms)

            return UninstallResult(
                packages=names,
                pip_check_passed=True,
                pip_check_output=pip_check_output,
                installed_packages=await self._list_packages(paths),
            )

        return await self.queue.enqueue(_uninstall)

    async def reconcile(self) -> ReconcileResult:
        """Reinstall the union of every active skill's requirements."""
        dependencies = await self.collect_active_dependencies()
        conflicts = self.analyze_conflicts(dependencies)
        requirements = list(dict.fromkeys(d.requirement for d in dependencies))

        async def _reconcile() -> ReconcileResult:
            paths = await self.ensure_managed_runtime()
            if requirements:
                indexes = await self.get_indexes()
                result = await self._pip(
                    paths,
                    [
                        "install",
                        "--disable-pip-version-check",
                        "--no-input",
                        *self._pip_index_args(indexes),
                        *requirements,
                    ],
                )
                if result.exit_code != 0:
                    raise RuntimeServiceError(
                        f"Reconcile install failed: {_failure_output(result)}",
                        400,
                        ErrorCode.RECONCILE_INSTALL_FAILED,
                        {"requirements": requirements},
                    )

            pip_check_output = await self._require_pip_check(paths)

            logger.info(
                "Reconciled python runtime: %d requirement(s), %d conflict(s)",
                len(requirements),
                len(conflicts),
            )

            return ReconcileResult(
                requirements=requirements,
                pip_check_passed=True,
                pip_check_output=pip_check_output,
                installed_packages=await self._list_packages(paths),
                conflicts=conflicts,
            )

        return await self.queue.enqueue(_reconcile)

    # ---------------------------
    # Status
    # ---------------------------

    @staticmethod
    def _package_sources(
        installed: list[InstalledPackage],
        manual_packages: list[str],
        dependencies: list[DependencyItem],
    ) -> list[PackageSource]:
        manual = set(manual_packages)
        from_skills = {d.package_name for d in dependencies}
        sources: list[PackageSource] = []
        for package in installed:
            name = normalize_package_name(package.name)
            kinds: list[PackageSourceKind] = []
            if name in manual:
                kinds.append(PackageSourceKind.MANUAL)
            if name in from_skills:
                kinds.append(PackageSourceKind.SKILL)
            if kinds:
                sources.append(PackageSource(name=package.name, sources=kinds))
        return sources

    async def get_runtime_status(self) -> RuntimeStatus:
        """Snapshot of the runtime.

        A broken environment (venv cannot be created, pip unavailable) is
        reported as ``ready=False`` with a ``runtime_issue``; other failures
        propagate.
        """
        paths = self.resolve_paths()
        indexes = await self.get_indexes()
        manual_packages = await self.get_manual_packages()
        dependencies = await self.collect_active_dependencies()
        conflicts = self.analyze_conflicts(dependencies)

        common = dict(
            data_root=paths.data_root,
            runtime_root=paths.runtime_root,
            venv_path=paths.venv_path,
            python_path=paths.python_path,
            indexes=indexes,
            manual_packages=manual_packages,
            active_dependencies=dependencies,
            conflicts=conflicts,
        )

        try:
            await self.ensure_managed_runtime()
            installed = await self._list_packages(paths)
        except RuntimeServiceError as e:
            if e.code not in DEGRADED_STATUS_CODES:
                raise
            logger.warning(
                "Python runtime status degraded: %s %s (python=%s)",
                e.code,
                sanitize(e.message),
                paths.python_path,
            )
            return RuntimeStatus(
                **common,
                ready=False,
                runtime_issue=RuntimeIssue(code=str(e.code), message=e.message, details=e.details),
                installed_packages=[],
            )

        return RuntimeStatus(
            **common,
            ready=True,
            installed_packages=installed,
            package_sources=self._package_sources(installed, manual_packages, dependencies),
        )

    # ---------------------------
    # Skill removal cleanup
    # ---------------------------

    async def preview_cleanup_after_skill_removal(
        self,
        removed_requirements: list[str],
        exclude_skill_ids: list[int] | None = None,
    ) -> CleanupPlan:
        """What uninstalling a removed skill's packages would do. Read-only."""
        if not removed_requirements:
            return CleanupPlan()
        dependencies = await self.collect_active_dependencies()
        manual_packages = await self.get_manual_packages()
        return build_cleanup_plan(
            removed_requirements, dependencies, manual_packages, exclude_skill_ids
        )

    async def cleanup_packages_after_skill_removal(
        self,
        removed_requirements: list[str],
        exclude_skill_ids: list[int] | None = None,
    ) -> CleanupResult:
        """Uninstall exactly the removable bucket of the cleanup plan.

        The regular in-use guard still applies, so excluding a skill that is
        in fact still active cannot remove its packages.
        """
        plan = await self.preview_cleanup_after_skill_removal(
            removed_requirements, exclude_skill_ids
        )
        if not plan.removable_packages:
            return CleanupResult(**plan.model_dump(), removed_packages=[])

        result = await self.uninstall_packages(plan.removable_packages)
        logger.info(
            "Cleaned up packages after skill removal: removed=%s kept_active=%s kept_manual=%s",
            result.packages,
            plan.kept_by_active_skills,
            plan.kept_by_manual,
        )
        return CleanupResult(**plan.model_dump(), removed_packages=result.packages)
