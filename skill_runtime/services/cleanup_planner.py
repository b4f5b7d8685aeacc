"""Decide which of a removed skill's packages may be uninstalled."""

from __future__ import annotations

from collections.abc import Iterable

from skill_runtime.models.domain import (
    CleanupPlan,
    DependencyConsumer,
    DependencyItem,
    DependencySource,
)
from skill_runtime.services.requirements import parse_requirement_safe


def _consumer_key(dep: DependencyItem) -> str:
    return f"{dep.skill_id}:{dep.version_id}:{dep.requirement.lower()}"


def build_cleanup_plan(
    removed_requirements: Iterable[str] | None,
    active_dependencies: Iterable[DependencyItem],
    manual_packages: Iterable[str],
    exclude_skill_ids: Iterable[int] | None = None,
) -> CleanupPlan:
    """Split the removed skill's packages into kept and removable buckets.

    Each package lands in exactly one bucket, checked in order: still declared
    by an active skill (not in *exclude_skill_ids*), pinned manually, or
    removable. Unparsable requirements are dropped.
    """
    removed = sorted(
        {
            entry.package_name
            for entry in (parse_requirement_safe(r) for r in removed_requirements or [])
            if entry is not None
        }
    )
    if not removed:
        return CleanupPlan()

    excluded = set(exclude_skill_ids or [])
    consumers_by_package: dict[str, dict[str, DependencyItem]] = {}
    for dep in active_dependencies:
        if dep.skill_id in excluded:
            continue
        consumers_by_package.setdefault(dep.package_name, {})[_consumer_key(dep)] = dep
    manual = set(manual_packages)

    plan = CleanupPlan(removed_skill_packages=removed)
    for package in removed:
        consumers = consumers_by_package.get(package)
        if consumers:
            plan.kept_by_active_skills.append(package)
            ordered = sorted(
                consumers.values(),
                key=lambda d: (d.skill_slug, d.version, d.requirement),
            )
            plan.kept_by_active_skill_sources.append(
                DependencySource(
                    package_name=package,
                    consumers=[
                        DependencyConsumer(
                            skill_id=d.skill_id,
                            skill_slug=d.skill_slug,
                            skill_display_name=d.skill_display_name,
                            version_id=d.version_id,
                            version=d.version,
                            requirement=d.requirement,
                        )
                        for d in ordered
                    ],
                )
            )
        elif package in manual:
            plan.kept_by_manual.append(package)
        else:
            plan.removable_packages.append(package)

    return plan
