"""Configuration primitives for a resolution run."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from system_deps_meta.metadata.predicates import Target

DEFAULT_SECTION = "system-deps"
MANIFEST_ENV = "SYSTEM_DEPS_BUILD_MANIFEST"
TARGET_DIR_ENV = "SYSTEM_DEPS_TARGET_DIR"
TARGET_ENV = "SYSTEM_DEPS_TARGET"


@dataclass(slots=True)
class ResolverConfig:
    """Settings shared by the aggregation and binary resolution phases."""

    manifest: Path
    target_dir: Path
    section: str = DEFAULT_SECTION
    target: Target = field(default_factory=Target.host)
    max_workers: Optional[int] = None

    @property
    def paths_file(self) -> Path:
        return self.target_dir / "paths.json"

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        section: str = DEFAULT_SECTION,
        max_workers: Optional[int] = None,
    ) -> "ResolverConfig":
        """Factory helper reading the build manifest, cache root and target triple from the environment."""

        env = os.environ if environ is None else environ
        triple = env.get(TARGET_ENV)
        return cls(
            manifest=Path(env.get(MANIFEST_ENV, "Cargo.toml")),
            target_dir=Path(env.get(TARGET_DIR_ENV, Path("target") / "system-deps")),
            section=section,
            target=Target.from_triple(triple) if triple else Target.host(),
            max_workers=max_workers,
        )


__all__ = ["DEFAULT_SECTION", "MANIFEST_ENV", "ResolverConfig", "TARGET_DIR_ENV", "TARGET_ENV"]
