"""Turn aggregated metadata into fetched binaries and a lookup index of search paths."""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from system_deps_meta.binary.fetcher import BinaryFetcher, check_valid_dir
from system_deps_meta.errors import (
    IncompatibleBinaryError,
    InvalidBinaryEntryError,
    InvalidFollowsError,
    MergeConflictError,
)

logger = logging.getLogger(__name__)

INFO_FILE = "info.toml"
WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class DirectBinary:
    name: str
    url: str
    checksum: Optional[str] = None
    paths: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AliasBinary:
    name: str
    follows: str


def _string_list(name: str, entry: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = entry.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidBinaryEntryError(name, f"'{key}' must be a list of strings")
    return tuple(value)


def classify_binaries(metadata: Mapping[str, Any]) -> Tuple[List[DirectBinary], List[AliasBinary]]:
    """Split aggregated entries into binaries with a ``url`` and aliases with ``follows``."""

    direct: List[DirectBinary] = []
    aliases: List[AliasBinary] = []
    for name, entry in metadata.items():
        if not isinstance(entry, Mapping):
            continue
        has_url = "url" in entry
        has_follows = "follows" in entry
        if has_url and has_follows:
            raise IncompatibleBinaryError(name)

        if has_url:
            url = entry["url"]
            checksum = entry.get("checksum")
            if not isinstance(url, str):
                raise InvalidBinaryEntryError(name, "'url' must be a string")
            if checksum is not None and not isinstance(checksum, str):
                raise InvalidBinaryEntryError(name, "'checksum' must be a string")
            direct.append(
                DirectBinary(
                    name=name,
                    url=url,
                    checksum=checksum,
                    paths=_string_list(name, entry, "paths"),
                    provides=_string_list(name, entry, "provides"),
                )
            )
        elif has_follows:
            if not isinstance(entry["follows"], str):
                raise InvalidBinaryEntryError(name, "'follows' must be a string")
            aliases.append(AliasBinary(name=name, follows=entry["follows"]))
    return direct, aliases


@dataclass(slots=True)
class PathIndex:
    """
    Search paths per resolved package.

    ``get`` prefers an explicit entry, then an exact alias, then the first
    wildcard prefix (in insertion order) that matches the name.
    """

    paths: Dict[str, List[Path]] = field(default_factory=dict)
    follows: Dict[str, str] = field(default_factory=dict)
    wildcards: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[List[Path]]:
        if name in self.paths:
            return self.paths[name]
        if name in self.follows:
            return self.paths.get(self.follows[name])
        for prefix, target in self.wildcards.items():
            if name.startswith(prefix):
                return self.paths.get(target)
        return None

    def add_alias(self, alias: str, target: str) -> None:
        if alias.endswith(WILDCARD):
            registry, key = self.wildcards, alias[: -len(WILDCARD)]
        else:
            registry, key = self.follows, alias
        existing = registry.get(key)
        if existing is not None and existing != target:
            raise MergeConflictError(alias, existing, target, reason=f"followed by both '{existing}' and '{target}'")
        registry[key] = target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paths": {name: [str(path) for path in paths] for name, paths in self.paths.items()},
            "follows": dict(self.follows),
            "wildcards": dict(self.wildcards),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PathIndex":
        return cls(
            paths={name: [Path(path) for path in paths] for name, paths in payload.get("paths", {}).items()},
            follows=dict(payload.get("follows", {})),
            wildcards=dict(payload.get("wildcards", {})),
        )

    def save(self, destination: Path) -> None:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle, indent=2)
        logger.info("Saved binary paths for %d packages to %s", len(self.paths), destination)

    @classmethod
    def load(cls, source: Path) -> "PathIndex":
        with Path(source).open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))


def _info_paths(destination: Path) -> List[str]:
    info = destination / INFO_FILE
    try:
        document = tomllib.loads(info.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", info, exc)
        return []

    paths = document.get("paths")
    if not isinstance(paths, list):
        return []
    return [path for path in paths if isinstance(path, str)]


def search_paths(binary: DirectBinary, destination: Path) -> List[Path]:
    """Configured subpaths (or the destination itself) followed by those listed in ``info.toml``."""

    result: List[Path] = []
    for path in [destination / relative for relative in binary.paths] or [destination]:
        if path not in result:
            result.append(path)
    for relative in _info_paths(destination):
        path = destination / relative
        if path not in result:
            result.append(path)
    return result


def resolve_binaries(
    metadata: Mapping[str, Any],
    cache_root: Path,
    *,
    fetcher: Optional[BinaryFetcher] = None,
) -> PathIndex:
    """Classify, fetch and index every binary declared in ``metadata``."""

    cache_root = Path(cache_root)
    direct, aliases = classify_binaries(metadata)
    known = {binary.name for binary in direct}
    followed = {alias.name for alias in aliases}

    index = PathIndex()
    for binary in direct:
        for provided in binary.provides:
            # an explicit entry for the alias wins over a stale provides list
            if provided in known or provided in followed:
                continue
            index.add_alias(provided, binary.name)
    for alias in aliases:
        if alias.follows not in known:
            raise InvalidFollowsError(alias.name, alias.follows)
        index.add_alias(alias.name, alias.follows)

    jobs = []
    for binary in direct:
        destination = cache_root / binary.name
        if check_valid_dir(destination, binary.checksum):
            logger.info("Using cached binaries for %s at %s", binary.name, destination)
            continue
        jobs.append((binary, destination))
    (fetcher or BinaryFetcher()).refresh_all(jobs)

    for binary in direct:
        index.paths[binary.name] = search_paths(binary, cache_root / binary.name)
    return index


__all__ = [
    "AliasBinary",
    "DirectBinary",
    "INFO_FILE",
    "PathIndex",
    "classify_binaries",
    "resolve_binaries",
    "search_paths",
]
