"""System settings data access operations."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select

from skill_runtime.dao.base import BaseDAO
from skill_runtime.models.orm import SystemSettingModel


class SettingsDAO(BaseDAO[str]):
    """Generic key/value settings store.

    Values are opaque strings; callers serialize lists as JSON.
    """

    async def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        """Return ``{key: value}`` for the keys that exist."""

        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}

        async with self._db.session() as session:
            result = await session.execute(
                select(SystemSettingModel).where(SystemSettingModel.key.in_(wanted))
            )
            return {row.key: row.value for row in result.scalars().all()}

    async def get(self, key: str) -> str | None:
        values = await self.get_many([key])
        return values.get(key)

    async def upsert(self, key: str, value: str) -> None:
        """Insert or replace the value stored under *key*."""

        now = datetime.utcnow()
        async with self._db.session() as session:
            result = await session.execute(
                select(SystemSettingModel).where(SystemSettingModel.key == key)
            )
            model = result.scalar_one_or_none()
            if model is not None:
                model.value = value
                model.updated_at = now
            else:
                session.add(SystemSettingModel(key=key, value=value, updated_at=now))
