"""Unit tests for StrEnum definitions."""

import pytest

from skill_runtime.enums import ErrorCode, InstallSource, PackageSourceKind, SkillVersionStatus


class TestInstallSource:
    """Tests for InstallSource enum."""

    def test_values(self):
        assert InstallSource.MANUAL == "manual"
        assert InstallSource.SKILL == "skill"
        assert InstallSource.PYTHON_AUTO == "python_auto"

    def test_all_members(self):
        assert len(InstallSource) == 3


class TestPackageSourceKind:
    def test_values_match_install_sources(self):
        assert {k.value for k in PackageSourceKind} == {"manual", "skill"}


class TestSkillVersionStatus:
    def test_string_comparison(self):
        assert SkillVersionStatus.ACTIVE == "active"
        assert str(SkillVersionStatus.PENDING) == "pending"


class TestErrorCode:
    """Error codes are part of the HTTP contract and must stay stable."""

    @pytest.mark.parametrize(
        "member,value",
        [
            (ErrorCode.INVALID_REQUIREMENT, "PYTHON_RUNTIME_INVALID_REQUIREMENT"),
            (ErrorCode.PACKAGE_IN_USE, "PYTHON_RUNTIME_PACKAGE_IN_USE"),
            (ErrorCode.PIP_UNAVAILABLE, "PYTHON_RUNTIME_PIP_UNAVAILABLE"),
            (ErrorCode.TIMEOUT, "PYTHON_RUNTIME_TIMEOUT"),
            (ErrorCode.SNIPPET_CODE_EMPTY, "PYTHON_SNIPPET_CODE_EMPTY"),
            (ErrorCode.SNIPPET_EXEC_FAILED, "PYTHON_SNIPPET_EXEC_FAILED"),
        ],
    )
    def test_wire_values(self, member, value):
        assert member == value

    def test_prefixes(self):
        for code in ErrorCode:
            assert code.value.startswith(("PYTHON_RUNTIME_", "PYTHON_SNIPPET_"))
