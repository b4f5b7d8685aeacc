"""Tests for active dependency aggregation and conflict detection."""

from datetime import datetime, timedelta

import pytest

from skill_runtime.enums import SkillStatus, SkillVersionStatus
from skill_runtime.models.domain import DependencyItem
from skill_runtime.services.dependency_service import DependencyService, declared_requirements


@pytest.fixture
def dependency_service(skill_dao) -> DependencyService:
    return DependencyService(skill_dao)


async def _active_skill(skill_dao, slug: str, packages, version: str = "1.0.0") -> tuple[int, int]:
    skill_id = await skill_dao.create_skill(slug, slug.title())
    record = await skill_dao.add_version(
        skill_id, version, {"python_packages": packages}, status=SkillVersionStatus.ACTIVE
    )
    return skill_id, record.id


def _dep(slug: str, requirement: str, package: str, skill_id: int = 1) -> DependencyItem:
    return DependencyItem(
        skill_id=skill_id,
        skill_slug=slug,
        skill_display_name=slug,
        version_id=skill_id * 10,
        version="1.0.0",
        requirement=requirement,
        package_name=package,
    )


class TestDeclaredRequirements:
    @pytest.mark.parametrize(
        "manifest",
        [None, "", "{not json", "[1, 2]", '{"python_packages": "numpy"}', '{"other": []}'],
    )
    def test_malformed_manifest_declares_nothing(self, manifest):
        assert declared_requirements(manifest) == []

    def test_returns_raw_list(self):
        assert declared_requirements('{"python_packages": ["numpy", 3]}') == ["numpy", 3]


class TestCollectActiveDependencies:
    async def test_sorted_by_slug_then_package(self, skill_dao, dependency_service):
        await _active_skill(skill_dao, "zeta", ["pandas", "numpy"])
        await _active_skill(skill_dao, "alpha", ["requests"])

        items = await dependency_service.collect_active_dependencies()

        assert [(i.skill_slug, i.package_name) for i in items] == [
            ("alpha", "requests"),
            ("zeta", "numpy"),
            ("zeta", "pandas"),
        ]

    async def test_skips_bad_entries_but_keeps_the_skill(self, skill_dao, dependency_service):
        await _active_skill(skill_dao, "s", ["numpy>=1.26", 42, "git+https://x/y", "Pandas"])

        items = await dependency_service.collect_active_dependencies()

        assert [(i.requirement, i.package_name) for i in items] == [
            ("numpy>=1.26", "numpy"),
            ("Pandas", "pandas"),
        ]

    async def test_malformed_manifest_does_not_block_others(self, skill_dao, dependency_service):
        broken_id = await skill_dao.create_skill("broken", "Broken")
        await skill_dao.add_version(broken_id, "1.0.0", "{oops", status=SkillVersionStatus.ACTIVE)
        await _active_skill(skill_dao, "fine", ["numpy"])

        items = await dependency_service.collect_active_dependencies()

        assert [i.skill_slug for i in items] == ["fine"]

    async def test_disabled_skills_ignored(self, skill_dao, dependency_service):
        skill_id, _ = await _active_skill(skill_dao, "s", ["numpy"])
        await skill_dao.set_skill_status(skill_id, SkillStatus.DISABLED)

        assert await dependency_service.collect_active_dependencies() == []

    async def test_exclude_skill_ids(self, skill_dao, dependency_service):
        skill_id, _ = await _active_skill(skill_dao, "a", ["numpy"])
        await _active_skill(skill_dao, "b", ["pandas"])

        items = await dependency_service.collect_active_dependencies(exclude_skill_ids=[skill_id])

        assert [i.skill_slug for i in items] == ["b"]

    async def test_active_default_version_wins(self, skill_dao, dependency_service):
        skill_id = await skill_dao.create_skill("s", "S")
        v1 = await skill_dao.add_version(skill_id, "1.0.0", {"python_packages": ["numpy<2"]})
        v2 = await skill_dao.add_version(skill_id, "2.0.0", {"python_packages": ["numpy>=2"]})
        base = datetime(2026, 1, 1)
        await skill_dao.activate_version(v1.id, activated_at=base, make_default=True)
        await skill_dao.activate_version(v2.id, activated_at=base + timedelta(days=1))

        items = await dependency_service.collect_active_dependencies()

        assert [i.requirement for i in items] == ["numpy<2"]
        assert items[0].version_id == v1.id

    async def test_inactive_default_falls_back_to_latest_active(self, skill_dao, dependency_service):
        skill_id = await skill_dao.create_skill("s", "S")
        v1 = await skill_dao.add_version(skill_id, "1.0.0", {"python_packages": ["numpy<2"]})
        v2 = await skill_dao.add_version(skill_id, "2.0.0", {"python_packages": ["numpy>=2"]})
        v3 = await skill_dao.add_version(skill_id, "3.0.0", {"python_packages": ["numpy>=3"]})
        base = datetime(2026, 1, 1)
        await skill_dao.activate_version(v2.id, activated_at=base + timedelta(days=2))
        await skill_dao.activate_version(v3.id, activated_at=base + timedelta(days=1))
        await skill_dao.set_default_version(skill_id, v1.id)

        items = await dependency_service.collect_active_dependencies()

        assert [i.requirement for i in items] == ["numpy>=2"]

    async def test_skill_without_active_version_contributes_nothing(self, skill_dao, dependency_service):
        skill_id = await skill_dao.create_skill("s", "S")
        await skill_dao.add_version(skill_id, "1.0.0", {"python_packages": ["numpy"]})

        assert await dependency_service.collect_active_dependencies() == []


class TestAnalyzeConflicts:
    def test_conflict_when_requirements_differ(self):
        deps = [
            _dep("a", "numpy<2", "numpy", 1),
            _dep("b", "numpy>=2", "numpy", 2),
            _dep("c", "numpy<2", "numpy", 3),
        ]

        conflicts = DependencyService.analyze_conflicts(deps)

        assert len(conflicts) == 1
        assert conflicts[0].package_name == "numpy"
        assert conflicts[0].requirements == ["numpy<2", "numpy>=2"]
        assert [s.skill_slug for s in conflicts[0].skills] == ["a", "b", "c"]

    def test_identical_requirements_are_not_conflicts(self):
        deps = [_dep("a", "numpy", "numpy", 1), _dep("b", "numpy", "numpy", 2)]

        assert DependencyService.analyze_conflicts(deps) == []

    def test_sorted_by_package(self):
        deps = [
            _dep("a", "zlib-ng<1", "zlib-ng", 1),
            _dep("b", "zlib-ng>1", "zlib-ng", 2),
            _dep("a", "attrs<20", "attrs", 1),
            _dep("b", "attrs>21", "attrs", 2),
        ]

        assert [c.package_name for c in DependencyService.analyze_conflicts(deps)] == [
            "attrs",
            "zlib-ng",
        ]
