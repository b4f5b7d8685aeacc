"""ASGI entry point for running under an external uvicorn process.

Usage:
    uvicorn skill_runtime.asgi:app --reload --host 0.0.0.0 --port 8743

Components are built inside the lifespan, so the runtime API and ``/health``
appear once startup finishes.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from skill_runtime import __version__
from skill_runtime.logging_filters import install_uvicorn_access_log_filters
from skill_runtime.main import create_app


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    install_uvicorn_access_log_filters()
    application = await create_app()
    application.register_routes(fastapi_app)
    try:
        yield
    finally:
        await application.shutdown()


app = FastAPI(
    title="Skill Runtime",
    description="Managed Python runtime for skills and code snippets",
    version=__version__,
    lifespan=lifespan,
)
