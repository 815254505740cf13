"""End-to-end routine resolving prebuilt binaries for a build."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from system_deps_meta.binary.fetcher import BinaryFetcher
from system_deps_meta.binary.resolver import PathIndex, resolve_binaries
from system_deps_meta.config import ResolverConfig
from system_deps_meta.io.cargo_metadata import run_cargo_metadata
from system_deps_meta.metadata.aggregate import read_metadata
from system_deps_meta.metadata.graph import PackageSet
from system_deps_meta.metadata.merge import merge_binary

logger = logging.getLogger(__name__)


def build_binary_paths(
    config: ResolverConfig,
    packages: Optional[PackageSet] = None,
    *,
    fetcher: Optional[BinaryFetcher] = None,
) -> PathIndex:
    """
    Aggregate binary metadata, fetch what is missing and persist the path index.

    When ``packages`` is omitted the dependency graph is read by running
    ``cargo metadata`` on ``config.manifest``.
    """

    if packages is None:
        packages = run_cargo_metadata(config.manifest)

    metadata = read_metadata(packages, config.section, config.target, merge_binary)
    logger.debug("Aggregated %d metadata entries", len(metadata))

    index = resolve_binaries(
        metadata,
        config.target_dir,
        fetcher=fetcher or BinaryFetcher(max_workers=config.max_workers),
    )
    index.save(config.paths_file)
    return index


def load_binary_paths(path: Path) -> PathIndex:
    return PathIndex.load(path)


__all__ = ["build_binary_paths", "load_binary_paths"]
