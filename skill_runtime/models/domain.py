"""Pydantic domain models.

These models are returned by DAOs and services. SQLAlchemy ORM objects should
never be exposed outside the DAO layer - always convert to these models.
"""

from datetime import datetime

from pydantic import Field

from skill_runtime.enums import InstallSource, PackageSourceKind
from skill_runtime.models.base import JsonModel


# ---------------------------
# Managed runtime
# ---------------------------


class RuntimePaths(JsonModel):
    """Resolved filesystem layout of the managed runtime."""

    data_root: str
    runtime_root: str
    venv_path: str
    python_path: str


class RuntimeIndexes(JsonModel):
    """Package index configuration and auto-install toggles."""

    index_url: str | None = None
    extra_index_urls: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)
    auto_install_on_activate: bool = True
    auto_install_on_missing: bool = True


class RuntimeIndexesUpdate(JsonModel):
    """Partial update for :class:`RuntimeIndexes`. ``None`` means unchanged."""

    index_url: str | None = None
    extra_index_urls: list[str] | None = None
    trusted_hosts: list[str] | None = None
    auto_install_on_activate: bool | None = None
    auto_install_on_missing: bool | None = None


class InstalledPackage(JsonModel):
    """One row of ``pip list``."""

    name: str
    version: str


class CommandResult(JsonModel):
    """Outcome of a single subprocess invocation."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    duration_ms: int = 0
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def truncated(self) -> bool:
        return self.stdout_truncated or self.stderr_truncated

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def combined_output(self) -> str:
        """stderr then stdout, or a placeholder when both are empty."""
        output = f"{self.stderr}\n{self.stdout}".strip()
        if output:
            return output
        return f"exit code {self.exit_code if self.exit_code is not None else 'null'}"


# ---------------------------
# Requirements and skill dependencies
# ---------------------------


class RequirementEntry(JsonModel):
    """A validated requirement: raw specifier plus normalized package name."""

    raw: str
    package_name: str


class DependencyItem(JsonModel):
    """A requirement declared by the active version of an active skill."""

    skill_id: int
    skill_slug: str
    skill_display_name: str
    version_id: int
    version: str
    requirement: str
    package_name: str


class ConflictSkillRef(JsonModel):
    """A skill contributing to a conflict."""

    skill_id: int
    skill_slug: str
    version_id: int
    version: str
    requirement: str


class ConflictItem(JsonModel):
    """A package requested with more than one distinct requirement string."""

    package_name: str
    requirements: list[str]
    skills: list[ConflictSkillRef]


class DependencyConsumer(JsonModel):
    """An active skill version that still needs a package."""

    skill_id: int
    skill_slug: str
    skill_display_name: str
    version_id: int
    version: str
    requirement: str


class DependencySource(JsonModel):
    """All active consumers of one package."""

    package_name: str
    consumers: list[DependencyConsumer]


class CleanupPlan(JsonModel):
    """How a removed skill's packages split between kept and removable."""

    removed_skill_packages: list[str] = Field(default_factory=list)
    kept_by_active_skills: list[str] = Field(default_factory=list)
    kept_by_active_skill_sources: list[DependencySource] = Field(default_factory=list)
    kept_by_manual: list[str] = Field(default_factory=list)
    removable_packages: list[str] = Field(default_factory=list)


class CleanupResult(CleanupPlan):
    """A cleanup plan after the removable bucket was uninstalled."""

    removed_packages: list[str] = Field(default_factory=list)


# ---------------------------
# Mutation results and status
# ---------------------------


class InstallResult(JsonModel):
    source: InstallSource
    requirements: list[str]
    pip_check_passed: bool
    pip_check_output: str
    installed_packages: list[InstalledPackage]


class UninstallResult(JsonModel):
    packages: list[str]
    pip_check_passed: bool
    pip_check_output: str
    installed_packages: list[InstalledPackage]


class ReconcileResult(JsonModel):
    requirements: list[str]
    pip_check_passed: bool
    pip_check_output: str
    installed_packages: list[InstalledPackage]
    conflicts: list[ConflictItem]


class RuntimeIssue(JsonModel):
    """Structured reason the runtime is not ready."""

    code: str
    message: str
    details: dict | None = None


class PackageSource(JsonModel):
    """Why an installed package is present."""

    name: str
    sources: list[PackageSourceKind]


class RuntimeStatus(JsonModel):
    """Snapshot of the managed runtime for the settings page."""

    data_root: str
    runtime_root: str
    venv_path: str
    python_path: str
    ready: bool
    runtime_issue: RuntimeIssue | None = None
    indexes: RuntimeIndexes
    manual_packages: list[str]
    installed_packages: list[InstalledPackage]
    package_sources: list[PackageSource] = Field(default_factory=list)
    active_dependencies: list[DependencyItem]
    conflicts: list[ConflictItem]


# ---------------------------
# Snippet execution
# ---------------------------


class SnippetResult(JsonModel):
    """Outcome of running a code snippet in the managed runtime."""

    stdout: str
    stderr: str
    exit_code: int | None
    duration_ms: int
    truncated: bool
    auto_installed_requirements: list[str] | None = None


# ---------------------------
# Skill registry
# ---------------------------


class SkillVersionRecord(JsonModel):
    """A skill version as seen by dependency aggregation."""

    id: int
    skill_id: int
    version: str
    status: str
    manifest_json: str | None = None
    created_at: datetime
    activated_at: datetime | None = None


class ActiveSkill(JsonModel):
    """An active skill with the versions relevant to dependency selection.

    ``default_version`` is the skill's pinned default regardless of its status;
    ``active_versions`` holds active versions, most recently activated first.
    """

    id: int
    slug: str
    display_name: str
    status: str
    default_version: SkillVersionRecord | None = None
    active_versions: list[SkillVersionRecord] = Field(default_factory=list)
