"""Core package for resolving native dependency metadata across a package graph."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("system-deps-meta")
except PackageNotFoundError:  # pragma: no cover - package metadata absent in dev mode
    __version__ = "0.0.0"

__all__ = ["__version__"]
