"""Skill registry data access operations.

The runtime only reads from the registry (active skills and their manifests).
The write helpers exist for seeding and tests; the install-from-repository
workflow that normally owns these rows lives elsewhere.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select

from skill_runtime.dao.base import BaseDAO
from skill_runtime.enums import SkillStatus, SkillVersionStatus
from skill_runtime.models.domain import ActiveSkill, SkillVersionRecord
from skill_runtime.models.orm import SkillModel, SkillVersionModel


class SkillDAO(BaseDAO[ActiveSkill]):
    """Data access object for skills and skill versions."""

    @staticmethod
    def _version_to_domain(model: SkillVersionModel) -> SkillVersionRecord:
        return SkillVersionRecord(
            id=model.id,
            skill_id=model.skill_id,
            version=model.version,
            status=model.status,
            manifest_json=model.manifest_json,
            created_at=model.created_at,
            activated_at=model.activated_at,
        )

    @staticmethod
    def _to_domain(
        model: SkillModel,
        default_version: SkillVersionModel | None,
        active_versions: list[SkillVersionModel],
    ) -> ActiveSkill:
        return ActiveSkill(
            id=model.id,
            slug=model.slug,
            display_name=model.display_name,
            status=model.status,
            default_version=(
                SkillDAO._version_to_domain(default_version) if default_version else None
            ),
            active_versions=[SkillDAO._version_to_domain(v) for v in active_versions],
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def list_active_skills(self) -> list[ActiveSkill]:
        """Return every active skill with its default and active versions.

        Active versions are ordered most recently activated first (then most
        recently created).
        """

        async with self._db.session() as session:
            result = await session.execute(
                select(SkillModel)
                .where(SkillModel.status == SkillStatus.ACTIVE.value)
                .order_by(SkillModel.id)
            )
            skills = list(result.scalars().all())
            if not skills:
                return []

            skill_ids = [s.id for s in skills]
            default_ids = [s.default_version_id for s in skills if s.default_version_id]

            versions_result = await session.execute(
                select(SkillVersionModel)
                .where(SkillVersionModel.skill_id.in_(skill_ids))
                .where(SkillVersionModel.status == SkillVersionStatus.ACTIVE.value)
                .order_by(
                    SkillVersionModel.activated_at.desc(),
                    SkillVersionModel.created_at.desc(),
                    SkillVersionModel.id.desc(),
                )
            )
            active_by_skill: dict[int, list[SkillVersionModel]] = {}
            for v in versions_result.scalars().all():
                active_by_skill.setdefault(v.skill_id, []).append(v)

            defaults: dict[int, SkillVersionModel] = {}
            if default_ids:
                default_result = await session.execute(
                    select(SkillVersionModel).where(SkillVersionModel.id.in_(default_ids))
                )
                defaults = {v.id: v for v in default_result.scalars().all()}

            return [
                self._to_domain(
                    s,
                    defaults.get(s.default_version_id) if s.default_version_id else None,
                    active_by_skill.get(s.id, []),
                )
                for s in skills
            ]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def create_skill(
        self,
        slug: str,
        display_name: str,
        status: SkillStatus = SkillStatus.ACTIVE,
    ) -> int:
        """Create a skill row and return its id."""

        async with self._db.session() as session:
            model = SkillModel(
                slug=slug,
                display_name=display_name,
                status=str(status),
                created_at=datetime.utcnow(),
            )
            session.add(model)
            await session.flush()
            return model.id

    async def add_version(
        self,
        skill_id: int,
        version: str,
        manifest: dict[str, Any] | str | None = None,
        status: SkillVersionStatus = SkillVersionStatus.PENDING,
        created_at: datetime | None = None,
    ) -> SkillVersionRecord:
        """Add a version; *manifest* may be a dict or an already-encoded string."""

        if isinstance(manifest, dict):
            manifest_json = json.dumps(manifest, ensure_ascii=False)
        else:
            manifest_json = manifest

        now = datetime.utcnow()
        async with self._db.session() as session:
            model = SkillVersionModel(
                skill_id=skill_id,
                version=version,
                status=str(status),
                manifest_json=manifest_json,
                created_at=created_at or now,
                activated_at=now if status == SkillVersionStatus.ACTIVE else None,
            )
            session.add(model)
            await session.flush()
            return self._version_to_domain(model)

    async def activate_version(
        self,
        version_id: int,
        *,
        activated_at: datetime | None = None,
        make_default: bool = False,
    ) -> SkillVersionRecord | None:
        async with self._db.session() as session:
            model = await session.get(SkillVersionModel, version_id)
            if model is None:
                return None
            model.status = SkillVersionStatus.ACTIVE.value
            model.activated_at = activated_at or datetime.utcnow()
            if make_default:
                skill = await session.get(SkillModel, model.skill_id)
                if skill is not None:
                    skill.default_version_id = model.id
            await session.flush()
            return self._version_to_domain(model)

    async def set_version_status(self, version_id: int, status: SkillVersionStatus) -> bool:
        return await self._update_by_id(SkillVersionModel, version_id, status=str(status))

    async def set_default_version(self, skill_id: int, version_id: int | None) -> bool:
        return await self._update_by_id(SkillModel, skill_id, default_version_id=version_id)

    async def set_skill_status(self, skill_id: int, status: SkillStatus) -> bool:
        return await self._update_by_id(SkillModel, skill_id, status=str(status))
