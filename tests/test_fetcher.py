"""Tests for fetching, verifying and unpacking binary archives."""

from __future__ import annotations

import hashlib
import io
import os
import tarfile
import threading
import zipfile
from pathlib import Path

import pytest
import requests

from system_deps_meta.binary.archives import ArchiveKind, ArchiveRegistry, archive_kind_for
from system_deps_meta.binary.fetcher import CHECKSUM_FILE, BinaryFetcher, Source, check_valid_dir
from system_deps_meta.binary.resolver import DirectBinary
from system_deps_meta.errors import (
    ChecksumMismatchError,
    DecompressError,
    DirectoryIsFileError,
    DownloadError,
    LocalFileError,
    UnsupportedExtensionError,
)

FILES = {"lib/pkgconfig/test.pc": "Name: test\n", "include/test.h": "int test(void);\n"}


def _tar_bytes(mode: str) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=mode) as archive:
        for name, content in FILES.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _zip_bytes() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in FILES.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class FakeResponse:
    def __init__(self, content: bytes, status: int = 200) -> None:
        self.content = content
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    def __init__(self, responses: dict[str, FakeResponse]) -> None:
        self.responses = responses
        self.requested: list[str] = []

    def get(self, url: str) -> FakeResponse:
        self.requested.append(url)
        if url not in self.responses:
            raise requests.ConnectionError(f"no route to {url}")
        return self.responses[url]


def _assert_unpacked(destination: Path, checksum: str) -> None:
    for name, content in FILES.items():
        assert (destination / name).read_text(encoding="utf-8") == content
    assert (destination / CHECKSUM_FILE).read_text(encoding="utf-8") == checksum


def test_check_valid_dir(tmp_path: Path) -> None:
    destination = tmp_path / "dep"
    assert not check_valid_dir(destination, "abc")

    destination.mkdir()
    assert not check_valid_dir(destination, None)
    assert not check_valid_dir(destination, "abc")

    (destination / CHECKSUM_FILE).write_text("abc", encoding="utf-8")
    assert check_valid_dir(destination, "abc")
    assert not check_valid_dir(destination, "def")
    assert not check_valid_dir(destination, None)


def test_check_valid_dir_rejects_files(tmp_path: Path) -> None:
    destination = tmp_path / "dep"
    destination.write_text("not a directory", encoding="utf-8")

    with pytest.raises(DirectoryIsFileError):
        check_valid_dir(destination, "abc")


@pytest.mark.parametrize(
    ("source", "kind"),
    [
        ("/tmp/test.tar.gz", ArchiveKind.TAR_GZ),
        ("/tmp/test.tgz", ArchiveKind.TAR_GZ),
        ("/tmp/test.tar.xz", ArchiveKind.TAR_XZ),
        ("/tmp/test.ZIP", ArchiveKind.ZIP),
    ],
)
def test_archive_kind_for(source: str, kind: ArchiveKind) -> None:
    assert archive_kind_for(source) is kind


@pytest.mark.parametrize("source", ["/tmp/test.rar", "/tmp/test"])
def test_archive_kind_unsupported(source: str) -> None:
    with pytest.raises(UnsupportedExtensionError):
        archive_kind_for(source)


def test_registry_without_decompressor() -> None:
    registry = ArchiveRegistry({ArchiveKind.ZIP: lambda payload, destination: None})

    assert registry.kind_for("a.zip") is ArchiveKind.ZIP
    with pytest.raises(UnsupportedExtensionError):
        registry.kind_for("a.tar.gz")


def test_registered_decompressor_is_used(tmp_path: Path) -> None:
    payload = b"raw payload"
    archive = tmp_path / "dep.zip"
    archive.write_bytes(payload)
    unpacked: list[tuple[bytes, Path]] = []
    registry = ArchiveRegistry()
    assert not registry.supports(ArchiveKind.ZIP)

    registry.register(ArchiveKind.ZIP, lambda data, destination: unpacked.append((data, destination)))
    destination = tmp_path / "cache" / "dep"
    BinaryFetcher(registry=registry).make_available(
        DirectBinary("dep", f"file://{archive}", _digest(payload)), destination, threading.Lock()
    )

    assert unpacked == [(payload, destination)]
    assert check_valid_dir(destination, _digest(payload))


def test_default_session_is_shared() -> None:
    fetcher = BinaryFetcher()

    assert isinstance(fetcher.session, requests.Session)
    assert BinaryFetcher(session=fetcher.session).session is fetcher.session


def test_source_parsing() -> None:
    local = Source.parse("file:///opt/bin/test.zip")
    assert local.local
    assert local.path == "/opt/bin/test.zip"

    remote = Source.parse("https://example.com/files/test.tar.gz?download=1")
    assert not remote.local
    assert remote.path == "/files/test.tar.gz"


@pytest.mark.parametrize(("name", "mode"), [("test.tar.gz", "w:gz"), ("test.tar.xz", "w:xz")])
def test_make_available_local_tar(tmp_path: Path, name: str, mode: str) -> None:
    payload = _tar_bytes(mode)
    archive = tmp_path / name
    archive.write_bytes(payload)
    destination = tmp_path / "cache" / "dep"
    binary = DirectBinary("dep", f"file://{archive}", _digest(payload))

    BinaryFetcher().make_available(binary, destination, threading.Lock())

    _assert_unpacked(destination, _digest(payload))
    assert check_valid_dir(destination, _digest(payload))


def test_make_available_downloads_zip(tmp_path: Path) -> None:
    payload = _zip_bytes()
    url = "https://example.com/releases/test.zip"
    session = FakeSession({url: FakeResponse(payload)})
    destination = tmp_path / "dep"

    BinaryFetcher(session=session).make_available(DirectBinary("dep", url, _digest(payload)), destination, threading.Lock())

    assert session.requested == [url]
    _assert_unpacked(destination, _digest(payload))


def test_checksum_mismatch(tmp_path: Path) -> None:
    payload = _zip_bytes()
    archive = tmp_path / "test.zip"
    archive.write_bytes(payload)
    destination = tmp_path / "dep"

    with pytest.raises(ChecksumMismatchError) as excinfo:
        BinaryFetcher().make_available(DirectBinary("dep", f"file://{archive}", "0" * 64), destination, threading.Lock())

    assert excinfo.value.expected == "0" * 64
    assert excinfo.value.computed == _digest(payload)
    assert str(archive) in str(excinfo.value)
    assert not destination.exists()


def test_archive_without_checksum_is_rejected(tmp_path: Path) -> None:
    archive = tmp_path / "test.zip"
    archive.write_bytes(_zip_bytes())

    with pytest.raises(ChecksumMismatchError) as excinfo:
        BinaryFetcher().make_available(DirectBinary("dep", f"file://{archive}"), tmp_path / "dep", threading.Lock())

    assert excinfo.value.expected == "<empty>"


def test_unsupported_extension(tmp_path: Path) -> None:
    archive = tmp_path / "test.rar"
    archive.write_bytes(b"rar")

    with pytest.raises(UnsupportedExtensionError):
        BinaryFetcher().make_available(DirectBinary("dep", f"file://{archive}", "x"), tmp_path / "dep", threading.Lock())


def test_network_folder_is_unsupported(tmp_path: Path) -> None:
    session = FakeSession({})

    with pytest.raises(UnsupportedExtensionError) as excinfo:
        BinaryFetcher(session=session).make_available(
            DirectBinary("dep", "https://example.com/binaries/"), tmp_path / "dep", threading.Lock()
        )

    assert excinfo.value.extension == "<folder>"
    assert session.requested == []


def test_missing_local_file(tmp_path: Path) -> None:
    with pytest.raises(LocalFileError):
        BinaryFetcher().make_available(
            DirectBinary("dep", f"file://{tmp_path / 'missing.zip'}", "x"), tmp_path / "dep", threading.Lock()
        )


@pytest.mark.parametrize("response", [FakeResponse(b"", status=404), None])
def test_download_errors(tmp_path: Path, response: FakeResponse | None) -> None:
    url = "https://example.com/test.zip"
    session = FakeSession({url: response} if response is not None else {})

    with pytest.raises(DownloadError):
        BinaryFetcher(session=session).make_available(DirectBinary("dep", url, "x"), tmp_path / "dep", threading.Lock())


def test_corrupt_archive(tmp_path: Path) -> None:
    payload = b"definitely not gzip"
    archive = tmp_path / "test.tar.gz"
    archive.write_bytes(payload)

    with pytest.raises(DecompressError):
        BinaryFetcher().make_available(
            DirectBinary("dep", f"file://{archive}", _digest(payload)), tmp_path / "dep", threading.Lock()
        )


@pytest.mark.skipif(os.name == "nt", reason="symlinks need elevated privileges on Windows")
def test_local_folder_is_symlinked(tmp_path: Path) -> None:
    folder = tmp_path / "prebuilt"
    (folder / "lib").mkdir(parents=True)
    other = tmp_path / "other"
    other.mkdir()
    destination = tmp_path / "cache" / "dep"
    fetcher = BinaryFetcher()
    lock = threading.Lock()

    fetcher.make_available(DirectBinary("dep", f"file://{folder}"), destination, lock)
    assert destination.is_symlink()
    assert Path(os.readlink(destination)) == folder
    assert (destination / "lib").is_dir()

    fetcher.make_available(DirectBinary("dep", f"file://{folder}"), destination, lock)
    assert Path(os.readlink(destination)) == folder

    fetcher.make_available(DirectBinary("dep", f"file://{other}"), destination, lock)
    assert Path(os.readlink(destination)) == other


def test_refresh_all_unpacks_every_job(tmp_path: Path) -> None:
    zip_payload = _zip_bytes()
    tar_payload = _tar_bytes("w:gz")
    session = FakeSession(
        {
            "https://example.com/a.zip": FakeResponse(zip_payload),
            "https://example.com/b.tar.gz": FakeResponse(tar_payload),
        }
    )
    jobs = [
        (DirectBinary("a", "https://example.com/a.zip", _digest(zip_payload)), tmp_path / "a"),
        (DirectBinary("b", "https://example.com/b.tar.gz", _digest(tar_payload)), tmp_path / "b"),
    ]

    BinaryFetcher(session=session).refresh_all(jobs)

    _assert_unpacked(tmp_path / "a", _digest(zip_payload))
    _assert_unpacked(tmp_path / "b", _digest(tar_payload))
    assert sorted(session.requested) == ["https://example.com/a.zip", "https://example.com/b.tar.gz"]


def test_refresh_all_raises_first_failure(tmp_path: Path) -> None:
    payload = _zip_bytes()
    session = FakeSession({"https://example.com/a.zip": FakeResponse(payload)})
    jobs = [
        (DirectBinary("a", "https://example.com/a.zip", _digest(payload)), tmp_path / "a"),
        (DirectBinary("b", "https://example.com/b.zip", "x"), tmp_path / "b"),
    ]

    with pytest.raises(DownloadError):
        BinaryFetcher(session=session, max_workers=1).refresh_all(jobs)


def test_refresh_all_without_jobs() -> None:
    BinaryFetcher(session=FakeSession({})).refresh_all([])
