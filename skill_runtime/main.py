"""Process entry point: builds the service graph and serves the runtime API.

``python -m skill_runtime.main`` runs uvicorn in-process; ``skill_runtime.asgi``
reuses :func:`create_app` for an external uvicorn.
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from skill_runtime import __version__
from skill_runtime.config import RuntimeConfig
from skill_runtime.dao import SettingsDAO, SkillDAO
from skill_runtime.database import Database
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.logging_filters import install_uvicorn_access_log_filters
from skill_runtime.routers import create_runtime_router
from skill_runtime.services import (
    CommandRunner,
    DependencyService,
    OperationQueue,
    PythonRuntimeService,
    RuntimeBootstrapper,
    SnippetRunner,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


class Application:
    """Owns the database, DAOs and runtime services for one process."""

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config

        self.database: Database | None = None
        self.fastapi_app: FastAPI | None = None

        self.settings_dao: SettingsDAO | None = None
        self.skill_dao: SkillDAO | None = None

        self.command_runner: CommandRunner | None = None
        self.dependency_service: DependencyService | None = None
        self.runtime_service: PythonRuntimeService | None = None
        self.snippet_runner: SnippetRunner | None = None

    async def setup(self) -> None:
        """Open the database and wire services; optionally prepare the venv."""
        logging.getLogger().setLevel(self.config.log_level.upper())

        self.database = Database(self.config.database_url)
        if self.config.auto_create_tables:
            await self.database.init_db()
        else:
            logger.info("Skipping create_all; schema is managed by Alembic")

        self.settings_dao = SettingsDAO(self.database)
        self.skill_dao = SkillDAO(self.database)

        self.command_runner = CommandRunner(
            default_timeout_ms=self.config.operation_timeout_ms,
            output_limit=self.config.output_limit_bytes,
        )
        self.dependency_service = DependencyService(self.skill_dao)
        self.runtime_service = PythonRuntimeService(
            self.config,
            self.settings_dao,
            self.dependency_service,
            runner=self.command_runner,
            bootstrapper=RuntimeBootstrapper(self.config, self.command_runner),
            queue=OperationQueue(),
        )
        self.snippet_runner = SnippetRunner(self.runtime_service)

        paths = self.runtime_service.resolve_paths()
        logger.info("Managed python runtime at %s", paths.venv_path)

        if self.config.prepare_runtime_on_startup:
            await self.prepare_runtime()

    async def prepare_runtime(self) -> bool:
        """Create the venv and verify pip now rather than on first use.

        A broken host python leaves the service up in degraded mode; the status
        endpoint reports the same issue.
        """
        try:
            paths = await self.runtime_service.ensure_managed_runtime()
        except RuntimeServiceError as e:
            logger.warning("Managed runtime not ready at startup (%s): %s", e.code, e.message)
            return False
        logger.info("Managed runtime ready: %s", paths.python_path)
        return True

    def create_fastapi_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            logger.info("Serving skill runtime API")
            yield
            logger.info("Skill runtime API stopping")

        self.fastapi_app = FastAPI(
            title="Skill Runtime",
            description="Managed Python runtime for skills and code snippets",
            version=__version__,
            lifespan=lifespan,
        )
        self.register_routes(self.fastapi_app)
        return self.fastapi_app

    def register_routes(self, fastapi_app: FastAPI) -> None:
        """Attach the runtime API and the health check to ``fastapi_app``."""
        if self.runtime_service:
            fastapi_app.include_router(
                create_runtime_router(self.runtime_service, self.snippet_runner)
            )

        @fastapi_app.get("/health")
        async def health_check():
            """Liveness plus whether the managed interpreter exists yet."""
            ready = False
            if self.runtime_service:
                ready = os.path.exists(self.runtime_service.resolve_paths().python_path)
            return {"status": "healthy", "runtimeReady": ready}

    async def shutdown(self) -> None:
        if self.database:
            await self.database.close()
            self.database = None
        logger.info("Shutdown complete")


_app: Application | None = None


def get_application() -> Application:
    """Return the process-wide application; raises RuntimeError before :func:`create_app`."""
    if _app is None:
        raise RuntimeError("Application not initialized")
    return _app


async def create_app(config: RuntimeConfig | None = None) -> Application:
    """Build, set up and register the process-wide :class:`Application`.

    Args:
        config: Defaults to ``RuntimeConfig.from_json_file()`` (config.json,
            config.yml and SKILL_RUNTIME_* environment variables).
    """
    global _app

    application = Application(config or RuntimeConfig.from_json_file())
    await application.setup()
    application.create_fastapi_app()
    _app = application
    return application


async def main(reload: bool = False, host: str | None = None, port: int | None = None) -> None:
    import uvicorn

    config = RuntimeConfig.from_json_file()
    if host:
        config.api_host = host
    if port:
        config.api_port = port

    try:
        app = await create_app(config)

        uvicorn_config = uvicorn.Config(
            app.fastapi_app,
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower(),
            reload=reload,
        )
        # load() sets up uvicorn's loggers; the filters attach to them afterwards.
        uvicorn_config.load()
        install_uvicorn_access_log_filters()

        logger.info("Listening on http://%s:%d", config.api_host, config.api_port)
        await uvicorn.Server(uvicorn_config).serve()
    except Exception:
        logger.exception("Skill runtime terminated with an error")
        raise
    finally:
        if _app:
            await _app.shutdown()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the skill runtime service")
    parser.add_argument("--reload", action="store_true", help="Enable hot reload")
    parser.add_argument("--host", help="Override api_host")
    parser.add_argument("--port", type=int, help="Override api_port")
    args = parser.parse_args()

    asyncio.run(main(reload=args.reload, host=args.host, port=args.port))
