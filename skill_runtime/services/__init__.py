"""Business logic services package."""

from .cleanup_planner import build_cleanup_plan
from .command_runner import CommandRunner
from .dependency_service import DependencyService
from .operation_queue import OperationQueue
from .python_runtime_service import PythonRuntimeService
from .runtime_bootstrap import RuntimeBootstrapper
from .snippet_runner import MAX_AUTO_INSTALL_ROUNDS, SnippetRunner

__all__ = [
    "build_cleanup_plan",
    "CommandRunner",
    "DependencyService",
    "MAX_AUTO_INSTALL_ROUNDS",
    "OperationQueue",
    "PythonRuntimeService",
    "RuntimeBootstrapper",
    "SnippetRunner",
]
