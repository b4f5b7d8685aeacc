"""Managed Python runtime and dependency orchestration for skills."""

__version__ = "1.0.0"
