"""Download, verify and unpack prebuilt binary archives into the cache."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

import requests

from system_deps_meta.binary.archives import ArchiveRegistry
from system_deps_meta.errors import (
    ChecksumMismatchError,
    DecompressError,
    DirectoryIsFileError,
    DownloadError,
    InvalidDirectoryError,
    LocalFileError,
    SymlinkError,
    UnsupportedExtensionError,
)

if TYPE_CHECKING:
    from system_deps_meta.binary.resolver import DirectBinary

logger = logging.getLogger(__name__)

CHECKSUM_FILE = "checksum"
LOCAL_PREFIX = "file://"
MISSING_CHECKSUM = "<empty>"


@dataclass(frozen=True, slots=True)
class Source:
    """Location of a binary, split into its scheme class and path."""

    location: str
    local: bool

    @classmethod
    def parse(cls, url: str) -> "Source":
        if url.startswith(LOCAL_PREFIX):
            return cls(url[len(LOCAL_PREFIX) :], True)
        return cls(url, False)

    @property
    def path(self) -> str:
        return self.location if self.local else urlsplit(self.location).path

    def is_folder(self) -> bool:
        if self.local:
            return Path(self.location).is_dir()
        return self.path.endswith("/")


def check_valid_dir(destination: Path, checksum: Optional[str]) -> bool:
    """Return whether ``destination`` already holds the binaries for ``checksum``."""

    try:
        exists = destination.exists()
    except OSError as exc:
        raise InvalidDirectoryError(destination, exc) from exc
    if not exists:
        return False
    if destination.is_file():
        raise DirectoryIsFileError(destination)
    if checksum is None:
        return False

    marker = destination / CHECKSUM_FILE
    if not marker.is_file():
        return False
    try:
        return marker.read_text(encoding="utf-8") == checksum
    except OSError as exc:
        raise InvalidDirectoryError(destination, exc) from exc


def sha256_digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class BinaryFetcher:
    """Materializes binary sources into per-package cache directories."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        registry: Optional[ArchiveRegistry] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.session = session or requests.Session()
        self.registry = registry or ArchiveRegistry.default()
        self.max_workers = max_workers

    def _link_folder(self, folder: str, destination: Path, link_lock: threading.Lock) -> None:
        with link_lock:
            target = Path(folder)
            if destination.is_symlink() and Path(os.readlink(destination)) == target:
                logger.info("Symlink %s already points at %s", destination, target)
                return
            try:
                if destination.is_symlink():
                    destination.unlink()
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.symlink_to(target, target_is_directory=True)
            except OSError as exc:
                raise SymlinkError(destination, exc) from exc
        logger.info("Linked %s -> %s", destination, target)

    def _read(self, source: Source) -> bytes:
        if source.local:
            try:
                return Path(source.location).read_bytes()
            except OSError as exc:
                raise LocalFileError(source.location, exc) from exc

        try:
            response = self.session.get(source.location)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DownloadError(source.location, exc) from exc
        return response.content

    def make_available(self, binary: "DirectBinary", destination: Path, link_lock: threading.Lock) -> None:
        """Fetch ``binary`` into ``destination`` (symlink for local folders, unpacked archive otherwise)."""

        source = Source.parse(binary.url)
        if source.is_folder():
            if not source.local:
                raise UnsupportedExtensionError("<folder>")
            self._link_folder(source.location, destination, link_lock)
            return

        kind = self.registry.kind_for(source.path)
        payload = self._read(source)

        computed = sha256_digest(payload)
        if binary.checksum != computed:
            raise ChecksumMismatchError(source.location, binary.checksum or MISSING_CHECKSUM, computed)

        try:
            destination.mkdir(parents=True, exist_ok=True)
            (destination / CHECKSUM_FILE).write_text(computed, encoding="utf-8")
            self.registry.decompress(kind, payload, destination)
        except Exception as exc:
            raise DecompressError(destination, exc) from exc
        logger.info("Unpacked %s archive for %s into %s", kind.value, binary.name, destination)

    def refresh_all(self, jobs: Iterable[Tuple["DirectBinary", Path]]) -> None:
        """
        Run :meth:`make_available` for every job concurrently.

        The first failure cancels jobs that have not started, waits for the
        running ones and is re-raised.
        """

        pending = list(jobs)
        if not pending:
            return

        link_lock = threading.Lock()
        workers = self.max_workers or len(pending)
        logger.info("Refreshing %d binaries with %d workers", len(pending), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="BinaryFetcher") as executor:
            futures = [
                executor.submit(self.make_available, binary, destination, link_lock)
                for binary, destination in pending
            ]
            done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
            failures: List[BaseException] = [
                future.exception() for future in futures if future in done and future.exception() is not None
            ]
            if failures:
                for future in not_done:
                    future.cancel()
        if failures:
            raise failures[0]


__all__ = ["BinaryFetcher", "CHECKSUM_FILE", "Source", "check_valid_dir", "sha256_digest"]
