"""Python runtime admin API endpoints.

Routers handle HTTP concerns only - no business logic.
All business logic is delegated to PythonRuntimeService and SnippetRunner.
"""

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import Field

from skill_runtime.enums import InstallSource
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.base import JsonModel
from skill_runtime.models.domain import RuntimeIndexesUpdate

if TYPE_CHECKING:
    from skill_runtime.services.python_runtime_service import PythonRuntimeService
    from skill_runtime.services.snippet_runner import SnippetRunner


class InstallRequest(JsonModel):
    """Request model for a manual install."""

    requirements: list[str] = Field(default_factory=list)


class UninstallRequest(JsonModel):
    """Request model for an uninstall."""

    packages: list[str] = Field(default_factory=list)


class CleanupRequest(JsonModel):
    """Request model for skill-removal cleanup (preview or execute)."""

    removed_requirements: list[str] = Field(default_factory=list)
    exclude_skill_ids: list[int] | None = None


class RunSnippetRequest(JsonModel):
    """Request model for running a code snippet."""

    code: str
    input: str | None = None
    actor_id: str | None = None
    timeout_ms: int | None = None
    max_output_chars: int | None = None
    max_source_chars: int | None = None


def _ok(data: Any) -> dict[str, Any]:
    if isinstance(data, JsonModel):
        data = data.to_dict(by_alias=True)
    elif isinstance(data, list):
        data = [d.to_dict(by_alias=True) if isinstance(d, JsonModel) else d for d in data]
    return {"success": True, "data": data}


def _error(e: RuntimeServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=e.status_code,
        content={
            "success": False,
            "error": e.message,
            "data": {"code": str(e.code), "details": e.details},
        },
    )


def create_runtime_router(
    runtime_service: "PythonRuntimeService",
    snippet_runner: "SnippetRunner | None" = None,
) -> APIRouter:
    """Create the python runtime router with injected services.

    Args:
        runtime_service: PythonRuntimeService instance for business logic
        snippet_runner: Optional SnippetRunner; ``POST /run`` is only
            registered when provided

    Returns:
        APIRouter with runtime endpoints configured
    """
    router = APIRouter(prefix="/api/python-runtime", tags=["python-runtime"])

    @router.get("")
    async def get_status():
        """Runtime status, including degraded (not ready) environments."""
        try:
            return _ok(await runtime_service.get_runtime_status())
        except RuntimeServiceError as e:
            return _error(e)

    @router.get("/indexes")
    async def get_indexes():
        try:
            return _ok(await runtime_service.get_indexes())
        except RuntimeServiceError as e:
            return _error(e)

    @router.put("/indexes")
    async def update_indexes(request: RuntimeIndexesUpdate):
        try:
            return _ok(await runtime_service.update_indexes(request))
        except RuntimeServiceError as e:
            return _error(e)

    @router.post("/install")
    async def install(request: InstallRequest):
        """Install requirements on behalf of an administrator."""
        try:
            return _ok(
                await runtime_service.install_requirements(
                    request.requirements, InstallSource.MANUAL
                )
            )
        except RuntimeServiceError as e:
            return _error(e)

    @router.post("/uninstall")
    async def uninstall(request: UninstallRequest):
        """Uninstall packages; 409 when an active skill still needs one."""
        try:
            return _ok(await runtime_service.uninstall_packages(request.packages))
        except RuntimeServiceError as e:
            return _error(e)

    @router.post("/reconcile")
    async def reconcile():
        try:
            return _ok(await runtime_service.reconcile())
        except RuntimeServiceError as e:
            return _error(e)

    @router.get("/dependencies")
    async def get_dependencies():
        """Active skill dependencies and the conflicts between them."""
        try:
            dependencies = await runtime_service.collect_active_dependencies()
            conflicts = runtime_service.analyze_conflicts(dependencies)
            return _ok(
                {
                    "dependencies": [d.to_dict(by_alias=True) for d in dependencies],
                    "conflicts": [c.to_dict(by_alias=True) for c in conflicts],
                }
            )
        except RuntimeServiceError as e:
            return _error(e)

    @router.get("/packages")
    async def get_packages():
        try:
            return _ok(await runtime_service.list_installed_packages())
        except RuntimeServiceError as e:
            return _error(e)

    @router.post("/cleanup/preview")
    async def preview_cleanup(request: CleanupRequest):
        try:
            return _ok(
                await runtime_service.preview_cleanup_after_skill_removal(
                    request.removed_requirements, request.exclude_skill_ids
                )
            )
        except RuntimeServiceError as e:
            return _error(e)

    @router.post("/cleanup")
    async def cleanup(request: CleanupRequest):
        try:
            return _ok(
                await runtime_service.cleanup_packages_after_skill_removal(
                    request.removed_requirements, request.exclude_skill_ids
                )
            )
        except RuntimeServiceError as e:
            return _error(e)

    if snippet_runner is not None:

        @router.post("/run")
        async def run_snippet(request: RunSnippetRequest):
            """Run a snippet in the managed runtime."""
            try:
                return _ok(
                    await snippet_runner.run(
                        request.code,
                        input_text=request.input,
                        actor_id=request.actor_id,
                        timeout_ms=request.timeout_ms,
                        max_output_chars=request.max_output_chars,
                        max_source_chars=request.max_source_chars,
                    )
                )
            except RuntimeServiceError as e:
                return _error(e)

    return router
