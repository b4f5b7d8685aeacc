"""StrEnum definitions for type-safe constants."""

from enum import StrEnum


class InstallSource(StrEnum):
    """Who asked for a package install."""

    MANUAL = "manual"
    SKILL = "skill"
    PYTHON_AUTO = "python_auto"


class SkillStatus(StrEnum):
    """Skill lifecycle status values."""

    ACTIVE = "active"
    DISABLED = "disabled"


class SkillVersionStatus(StrEnum):
    """Skill version lifecycle status values."""

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class PackageSourceKind(StrEnum):
    """Why an installed package is present in the managed runtime."""

    MANUAL = "manual"
    SKILL = "skill"


class ErrorCode(StrEnum):
    """Stable machine-readable error codes raised by the runtime services."""

    RUNTIME_ERROR = "PYTHON_RUNTIME_ERROR"
    INVALID_REQUIREMENT = "PYTHON_RUNTIME_INVALID_REQUIREMENT"
    EMPTY_REQUIREMENTS = "PYTHON_RUNTIME_EMPTY_REQUIREMENTS"
    EMPTY_PACKAGES = "PYTHON_RUNTIME_EMPTY_PACKAGES"
    INVALID_PACKAGE_NAME = "PYTHON_RUNTIME_INVALID_PACKAGE_NAME"
    INVALID_INDEX = "PYTHON_RUNTIME_INVALID_INDEX"
    CREATE_VENV_FAILED = "PYTHON_RUNTIME_CREATE_VENV_FAILED"
    PIP_UNAVAILABLE = "PYTHON_RUNTIME_PIP_UNAVAILABLE"
    COMMAND_ERROR = "PYTHON_RUNTIME_COMMAND_ERROR"
    TIMEOUT = "PYTHON_RUNTIME_TIMEOUT"
    INSTALL_FAILED = "PYTHON_RUNTIME_INSTALL_FAILED"
    UNINSTALL_FAILED = "PYTHON_RUNTIME_UNINSTALL_FAILED"
    RECONCILE_INSTALL_FAILED = "PYTHON_RUNTIME_RECONCILE_INSTALL_FAILED"
    PIP_CHECK_FAILED = "PYTHON_RUNTIME_PIP_CHECK_FAILED"
    LIST_PACKAGES_FAILED = "PYTHON_RUNTIME_LIST_PACKAGES_FAILED"
    PACKAGE_IN_USE = "PYTHON_RUNTIME_PACKAGE_IN_USE"
    SNIPPET_CODE_EMPTY = "PYTHON_SNIPPET_CODE_EMPTY"
    SNIPPET_CODE_TOO_LARGE = "PYTHON_SNIPPET_CODE_TOO_LARGE"
    SNIPPET_EXEC_FAILED = "PYTHON_SNIPPET_EXEC_FAILED"
