"""HTTP routers package."""

from .runtime_router import (
    CleanupRequest,
    InstallRequest,
    RunSnippetRequest,
    UninstallRequest,
    create_runtime_router,
)

__all__ = [
    "create_runtime_router",
    "CleanupRequest",
    "InstallRequest",
    "RunSnippetRequest",
    "UninstallRequest",
]
