"""Exception hierarchy shared by the metadata aggregator and the binary resolver."""

from __future__ import annotations

from pathlib import Path
from typing import Any


class MetadataError(Exception):
    """Base class for every fatal resolution error."""


class MergeConflictError(MetadataError):
    """Two documents assign incompatible values to the same key."""

    def __init__(self, key: str, base: Any = None, incoming: Any = None, *, reason: str | None = None) -> None:
        self.key = key
        self.base = base
        self.incoming = incoming
        detail = reason or f"{base!r} vs {incoming!r}"
        super().__init__(f"Can't merge metadata at '{key}': {detail}")


class PackageNotFoundError(MetadataError):
    """A package name is referenced but was never visited."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Package not found: {name}")


class PredicateError(MetadataError):
    """Base class for cfg() predicate failures."""

    def __init__(self, expression: str, message: str) -> None:
        self.expression = expression
        super().__init__(message)


class InvalidPredicateError(PredicateError):
    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(expression, f"Invalid cfg() expression '{expression}': {reason}")


class UnsupportedPredicateError(PredicateError):
    def __init__(self, expression: str) -> None:
        super().__init__(expression, f"Unsupported cfg() expression: {expression}")


class PredicateNotTableError(PredicateError):
    def __init__(self, expression: str) -> None:
        super().__init__(expression, f"The expression '{expression}' is not guarding a package")


class BinaryError(MetadataError):
    """Base class for failures while materializing binary archives."""


class UnsupportedExtensionError(BinaryError):
    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported binary extension for {extension}")


class DirectoryIsFileError(BinaryError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"The binary target directory is a file: {path}")


class InvalidDirectoryError(BinaryError):
    def __init__(self, path: Path, reason: object) -> None:
        self.path = path
        super().__init__(f"The binary target directory is not valid: {path} ({reason})")


class ChecksumMismatchError(BinaryError):
    def __init__(self, source: str, expected: str, computed: str) -> None:
        self.source = source
        self.expected = expected
        self.computed = computed
        super().__init__(
            f"Mismatch in the checksum of {source}:\n"
            f"- Specified: {expected}\n"
            f"- Calculated: {computed}"
        )


class DownloadError(BinaryError):
    def __init__(self, url: str, reason: object) -> None:
        self.url = url
        super().__init__(f"Failed to download binary archive {url}: {reason}")


class LocalFileError(BinaryError):
    def __init__(self, path: str, reason: object) -> None:
        self.path = path
        super().__init__(f"The requested local file could not be read: {path} ({reason})")


class DecompressError(BinaryError):
    def __init__(self, destination: Path, reason: object) -> None:
        self.destination = destination
        super().__init__(f"Failed to decompress the binary archive into {destination}: {reason}")


class SymlinkError(BinaryError):
    def __init__(self, destination: Path, reason: object) -> None:
        self.destination = destination
        super().__init__(f"Couldn't create symlink to local binary folder at {destination}: {reason}")


class InvalidFollowsError(BinaryError):
    def __init__(self, name: str, target: str) -> None:
        self.name = name
        self.target = target
        super().__init__(f"The package {name} follows {target}, which doesn't exist")


class InvalidBinaryEntryError(BinaryError):
    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        super().__init__(f"Invalid binary entry for {name}: {reason}")


class IncompatibleBinaryError(BinaryError, MergeConflictError):
    """A single entry declares both ``url`` and ``follows``."""

    def __init__(self, name: str) -> None:
        self.name = name
        MergeConflictError.__init__(self, name, reason="both 'url' and 'follows' are set")


__all__ = [
    "BinaryError",
    "ChecksumMismatchError",
    "DecompressError",
    "DirectoryIsFileError",
    "DownloadError",
    "IncompatibleBinaryError",
    "InvalidBinaryEntryError",
    "InvalidDirectoryError",
    "InvalidFollowsError",
    "InvalidPredicateError",
    "LocalFileError",
    "MergeConflictError",
    "MetadataError",
    "PackageNotFoundError",
    "PredicateError",
    "PredicateNotTableError",
    "SymlinkError",
    "UnsupportedExtensionError",
    "UnsupportedPredicateError",
]
