"""Archive kinds understood by the binary fetcher and how to unpack them."""

from __future__ import annotations

import io
import tarfile
import zipfile
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional

from system_deps_meta.errors import UnsupportedExtensionError

Decompressor = Callable[[bytes, Path], None]


class ArchiveKind(str, Enum):
    TAR_GZ = "tar.gz"
    TAR_XZ = "tar.xz"
    ZIP = "zip"


SUFFIXES: Dict[str, ArchiveKind] = {
    ".gz": ArchiveKind.TAR_GZ,
    ".tgz": ArchiveKind.TAR_GZ,
    ".xz": ArchiveKind.TAR_XZ,
    ".zip": ArchiveKind.ZIP,
}


def _extract_tar(mode: str) -> Decompressor:
    def extract(payload: bytes, destination: Path) -> None:
        with tarfile.open(fileobj=io.BytesIO(payload), mode=mode) as archive:
            archive.extractall(destination, filter="data")

    return extract


def _extract_zip(payload: bytes, destination: Path) -> None:
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        archive.extractall(destination)


class ArchiveRegistry:
    """Maps archive kinds to the callables that unpack them."""

    def __init__(self, decompressors: Optional[Dict[ArchiveKind, Decompressor]] = None) -> None:
        self._decompressors: Dict[ArchiveKind, Decompressor] = dict(decompressors or {})

    @classmethod
    def default(cls) -> "ArchiveRegistry":
        return cls(
            {
                ArchiveKind.TAR_GZ: _extract_tar("r:gz"),
                ArchiveKind.TAR_XZ: _extract_tar("r:xz"),
                ArchiveKind.ZIP: _extract_zip,
            }
        )

    def register(self, kind: ArchiveKind, decompressor: Decompressor) -> None:
        self._decompressors[kind] = decompressor

    def supports(self, kind: ArchiveKind) -> bool:
        return kind in self._decompressors

    def kind_for(self, source: str) -> ArchiveKind:
        """Classify ``source`` by suffix, rejecting kinds without a decompressor."""

        kind = archive_kind_for(source)
        if not self.supports(kind):
            raise UnsupportedExtensionError(kind.value)
        return kind

    def decompress(self, kind: ArchiveKind, payload: bytes, destination: Path) -> None:
        try:
            decompressor = self._decompressors[kind]
        except KeyError:
            raise UnsupportedExtensionError(kind.value) from None
        decompressor(payload, destination)


def archive_kind_for(source: str) -> ArchiveKind:
    suffix = PurePosixPath(source).suffix.lower()
    if not suffix:
        raise UnsupportedExtensionError("<none>")
    try:
        return SUFFIXES[suffix]
    except KeyError:
        raise UnsupportedExtensionError(suffix.lstrip(".")) from None


__all__ = ["ArchiveKind", "ArchiveRegistry", "Decompressor", "SUFFIXES", "archive_kind_for"]
