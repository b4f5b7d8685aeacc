"""Unit tests for the skill registry and settings DAOs.

DAOs must return Pydantic models, never SQLAlchemy objects.
"""

from datetime import datetime, timedelta

import pytest_asyncio

from skill_runtime.dao import SettingsDAO, SkillDAO
from skill_runtime.enums import SkillStatus, SkillVersionStatus
from skill_runtime.models.domain import ActiveSkill, SkillVersionRecord


@pytest_asyncio.fixture
async def skill_dao(test_db) -> SkillDAO:
    return SkillDAO(test_db)


@pytest_asyncio.fixture
async def settings_dao(test_db) -> SettingsDAO:
    return SettingsDAO(test_db)


class TestSettingsDAO:
    async def test_get_many_returns_only_existing_keys(self, settings_dao):
        await settings_dao.upsert("a", "1")
        await settings_dao.upsert("b", "2")

        assert await settings_dao.get_many(["a", "b", "missing"]) == {"a": "1", "b": "2"}

    async def test_upsert_replaces_value(self, settings_dao):
        await settings_dao.upsert("key", "old")
        await settings_dao.upsert("key", "new")

        assert await settings_dao.get("key") == "new"

    async def test_get_missing_returns_none(self, settings_dao):
        assert await settings_dao.get("nope") is None
        assert await settings_dao.get_many([]) == {}


class TestSkillDAO:
    async def test_list_active_skills_returns_pydantic(self, skill_dao):
        skill_id = await skill_dao.create_skill("data-agent", "Data Agent")
        await skill_dao.add_version(
            skill_id, "1.0.0", {"python_packages": ["numpy"]}, status=SkillVersionStatus.ACTIVE
        )

        skills = await skill_dao.list_active_skills()

        assert len(skills) == 1
        assert isinstance(skills[0], ActiveSkill)
        assert isinstance(skills[0].active_versions[0], SkillVersionRecord)
        assert skills[0].active_versions[0].manifest_json == '{"python_packages": ["numpy"]}'

    async def test_disabled_skills_are_excluded(self, skill_dao):
        await skill_dao.create_skill("off", "Off", status=SkillStatus.DISABLED)

        assert await skill_dao.list_active_skills() == []

    async def test_active_versions_most_recent_first(self, skill_dao):
        skill_id = await skill_dao.create_skill("s", "S")
        old = await skill_dao.add_version(skill_id, "1.0.0")
        new = await skill_dao.add_version(skill_id, "2.0.0")
        base = datetime(2026, 1, 1)
        await skill_dao.activate_version(new.id, activated_at=base)
        await skill_dao.activate_version(old.id, activated_at=base + timedelta(hours=1))

        skills = await skill_dao.list_active_skills()

        assert [v.version for v in skills[0].active_versions] == ["1.0.0", "2.0.0"]

    async def test_pending_versions_not_listed_as_active(self, skill_dao):
        skill_id = await skill_dao.create_skill("s", "S")
        await skill_dao.add_version(skill_id, "1.0.0")

        skills = await skill_dao.list_active_skills()

        assert skills[0].active_versions == []

    async def test_default_version_loaded_regardless_of_status(self, skill_dao):
        skill_id = await skill_dao.create_skill("s", "S")
        version = await skill_dao.add_version(skill_id, "1.0.0")
        await skill_dao.set_default_version(skill_id, version.id)

        skills = await skill_dao.list_active_skills()

        assert skills[0].default_version is not None
        assert skills[0].default_version.status == SkillVersionStatus.PENDING.value

    async def test_activate_version_can_make_default(self, skill_dao):
        skill_id = await skill_dao.create_skill("s", "S")
        version = await skill_dao.add_version(skill_id, "1.0.0")

        activated = await skill_dao.activate_version(version.id, make_default=True)

        assert activated.status == SkillVersionStatus.ACTIVE.value
        assert activated.activated_at is not None
        skills = await skill_dao.list_active_skills()
        assert skills[0].default_version.id == version.id

    async def test_updates_on_missing_rows(self, skill_dao):
        assert await skill_dao.activate_version(999) is None
        assert await skill_dao.set_version_status(999, SkillVersionStatus.INACTIVE) is False
        assert await skill_dao.set_skill_status(999, SkillStatus.DISABLED) is False
