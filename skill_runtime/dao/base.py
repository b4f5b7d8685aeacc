"""Shared plumbing for the settings and skill registry DAOs."""

from abc import ABC
from typing import Any, Generic, TypeVar

from skill_runtime.database import Base, Database

T = TypeVar("T")


class BaseDAO(ABC, Generic[T]):
    """Base for DAOs returning ``T`` domain models.

    Rows never leave a DAO as ORM objects; each public method opens its own
    transaction through :meth:`Database.session`.
    """

    def __init__(self, database: Database):
        self._db = database

    @property
    def db(self) -> Database:
        return self._db

    async def _update_by_id(self, model_cls: type[Base], row_id: int, **values: Any) -> bool:
        """Assign ``values`` to the row with primary key ``row_id``.

        Returns False when the row does not exist.
        """
        async with self._db.session() as session:
            row = await session.get(model_cls, row_id)
            if row is None:
                return False
            for column, value in values.items():
                setattr(row, column, value)
            return True
