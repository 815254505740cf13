"""Adapters for reading the dependency graph reported by ``cargo metadata``."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Mapping

from system_deps_meta.metadata.graph import Dependency, PackageInfo, PackageSet

_KINDS = {None: "normal", "normal": "normal", "dev": "dev", "build": "build"}


def _package_names_by_id(payload: Mapping[str, Any]) -> dict[str, str]:
    return {package["id"]: package["name"] for package in payload.get("packages", []) if "id" in package}


def load_package_set(payload: Mapping[str, Any]) -> PackageSet:
    """Convert a ``cargo metadata --format-version 1`` document into a :class:`PackageSet`."""

    names_by_id = _package_names_by_id(payload)
    known = set(names_by_id.values())

    packages = []
    for package in payload.get("packages", []):
        dependencies = []
        for dependency in package.get("dependencies", []):
            name = dependency.get("name")
            if name not in known:
                continue
            kind = _KINDS.get(dependency.get("kind"), "normal")
            dependencies.append(Dependency(name, kind))
        packages.append(
            PackageInfo(
                name=package["name"],
                dependencies=dependencies,
                metadata=package.get("metadata") or {},
            )
        )

    resolve = payload.get("resolve") or {}
    root_id = resolve.get("root")
    return PackageSet.from_packages(
        packages,
        root=names_by_id.get(root_id) if root_id else None,
        workspace_members=[names_by_id[member] for member in payload.get("workspace_members", []) if member in names_by_id],
        workspace_metadata=payload.get("workspace_metadata") or {},
    )


def load_package_set_file(path: Path) -> PackageSet:
    with Path(path).open("r", encoding="utf-8") as handle:
        return load_package_set(json.load(handle))


def run_cargo_metadata(manifest: Path, *, cargo: str = "cargo") -> PackageSet:
    """
    Execute ``cargo metadata`` for ``manifest`` and parse its output.

    Raises ``FileNotFoundError`` when the manifest or the tool is missing and
    ``RuntimeError`` with the captured stderr on a non-zero exit.
    """

    manifest = Path(manifest)
    if not manifest.exists():
        raise FileNotFoundError(f"Manifest not found: {manifest}")

    cmd = [cargo, "metadata", "--format-version", "1", "--manifest-path", str(manifest.resolve())]
    completed = subprocess.run(cmd, check=False, text=True, capture_output=True)
    if completed.returncode != 0:
        raise RuntimeError(f"cargo metadata failed ({completed.returncode}): {completed.stderr.strip()}")
    return load_package_set(json.loads(completed.stdout))


__all__ = ["load_package_set", "load_package_set_file", "run_cargo_metadata"]
