"""Active skill dependency aggregation and conflict detection.

Results are recomputed from the registry on every call; nothing is cached, so
a skill activation or removal is visible to the very next query.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from skill_runtime.dao.skill_dao import SkillDAO
from skill_runtime.enums import SkillVersionStatus
from skill_runtime.models.domain import (
    ActiveSkill,
    ConflictItem,
    ConflictSkillRef,
    DependencyItem,
    SkillVersionRecord,
)
from skill_runtime.services.requirements import parse_requirement_safe

logger = logging.getLogger(__name__)

MANIFEST_PACKAGES_KEY = "python_packages"


def select_version(skill: ActiveSkill) -> SkillVersionRecord | None:
    """Pick the version whose manifest counts for *skill*.

    The pinned default wins only while it is itself active; otherwise the most
    recently activated active version is used.
    """
    default = skill.default_version
    if default is not None and default.status == SkillVersionStatus.ACTIVE.value:
        return default
    return skill.active_versions[0] if skill.active_versions else None


def declared_requirements(manifest_json: str | None) -> list[Any]:
    """Raw ``python_packages`` entries; anything malformed counts as none."""
    if not manifest_json:
        return []
    try:
        manifest = json.loads(manifest_json)
    except (TypeError, ValueError):
        return []
    if not isinstance(manifest, dict):
        return []
    packages = manifest.get(MANIFEST_PACKAGES_KEY)
    return packages if isinstance(packages, list) else []


class DependencyService:
    """Builds the flat list of requirements declared by active skills."""

    def __init__(self, skill_dao: SkillDAO):
        self.skill_dao = skill_dao

    async def collect_active_dependencies(
        self, exclude_skill_ids: Iterable[int] | None = None
    ) -> list[DependencyItem]:
        excluded = set(exclude_skill_ids or [])
        items: list[DependencyItem] = []

        for skill in await self.skill_dao.list_active_skills():
            if skill.id in excluded:
                continue
            version = select_version(skill)
            if version is None:
                continue

            for requirement in declared_requirements(version.manifest_json):
                parsed = parse_requirement_safe(requirement)
                if parsed is None:
                    logger.debug(
                        "Skipping unusable requirement %r declared by skill %s@%s",
                        requirement,
                        skill.slug,
                        version.version,
                    )
                    continue
                items.append(
                    DependencyItem(
                        skill_id=skill.id,
                        skill_slug=skill.slug,
                        skill_display_name=skill.display_name,
                        version_id=version.id,
                        version=version.version,
                        requirement=parsed.raw,
                        package_name=parsed.package_name,
                    )
                )

        items.sort(key=lambda item: (item.skill_slug, item.package_name))
        return items

    @staticmethod
    def analyze_conflicts(dependencies: Iterable[DependencyItem]) -> list[ConflictItem]:
        """Packages requested with more than one distinct requirement string."""
        by_package: dict[str, list[DependencyItem]] = {}
        for dep in dependencies:
            by_package.setdefault(dep.package_name, []).append(dep)

        conflicts: list[ConflictItem] = []
        for package_name, group in by_package.items():
            distinct = list(dict.fromkeys(dep.requirement for dep in group))
            if len(distinct) <= 1:
                continue
            conflicts.append(
                ConflictItem(
                    package_name=package_name,
                    requirements=distinct,
                    skills=[
                        ConflictSkillRef(
                            skill_id=dep.skill_id,
                            skill_slug=dep.skill_slug,
                            version_id=dep.version_id,
                            version=dep.version,
                            requirement=dep.requirement,
                        )
                        for dep in group
                    ],
                )
            )

        conflicts.sort(key=lambda c: c.package_name)
        return conflicts
