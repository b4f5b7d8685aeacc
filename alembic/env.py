"""Alembic environment for the runtime's settings and skill registry tables.

Migrations target the same database the service opens: the URL comes from
``RuntimeConfig`` (config.json, config.yml, then SKILL_RUNTIME_DATABASE_URL).
``alembic -x db_url=...`` overrides it for one-off runs; the value in
alembic.ini is only used when neither yields a URL.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Models must be imported so Base.metadata is populated
from skill_runtime.config import RuntimeConfig
from skill_runtime.database import Base, to_async_url
from skill_runtime.models.orm import (  # noqa: F401
    SkillModel,
    SkillVersionModel,
    SystemSettingModel,
)

target_metadata = Base.metadata


def _resolve_database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("db_url")
    url = override or RuntimeConfig.from_json_file().database_url
    if not url:
        url = config.get_main_option("sqlalchemy.url") or ""
    return to_async_url(url.strip())


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place.
    context.configure(target_metadata=target_metadata, render_as_batch=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    _configure(
        url=_resolve_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _resolve_database_url()
    connectable = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
