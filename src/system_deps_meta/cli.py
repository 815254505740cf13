"""Command line entry points for the project."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from system_deps_meta import __version__
from system_deps_meta.binary.fetcher import BinaryFetcher
from system_deps_meta.config import DEFAULT_SECTION, ResolverConfig
from system_deps_meta.errors import MetadataError
from system_deps_meta.io.cargo_metadata import load_package_set_file, run_cargo_metadata
from system_deps_meta.metadata.aggregate import read_metadata
from system_deps_meta.metadata.graph import PackageSet
from system_deps_meta.metadata.merge import merge, merge_binary
from system_deps_meta.metadata.predicates import Target
from system_deps_meta.pipelines.build_paths import build_binary_paths, load_binary_paths


def _load_packages(metadata_json: Optional[Path], manifest: Path) -> PackageSet:
    if metadata_json is not None:
        candidate = metadata_json.expanduser().resolve()
        if not candidate.exists():
            raise typer.BadParameter(f"Metadata file not found: {candidate}")
        try:
            return load_package_set_file(candidate)
        except (json.JSONDecodeError, KeyError) as exc:
            raise typer.BadParameter(f"Invalid cargo metadata document {candidate}: {exc}") from exc

    try:
        return run_cargo_metadata(manifest)
    except (FileNotFoundError, RuntimeError) as exc:
        raise typer.BadParameter(str(exc)) from exc


def _target(triple: Optional[str]) -> Target:
    if not triple:
        return Target.host()
    try:
        return Target.from_triple(triple)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _fail(exc: MetadataError) -> None:
    typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


app = typer.Typer(help="Aggregate dependency metadata and resolve prebuilt system binaries.")


@app.callback()
def main(
    display_version: bool = typer.Option(
        False, "--version", "-V", callback=_show_version, is_eager=True, help="Show version and exit."
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for diagnostic output."),
) -> None:
    """Configure logging for every command."""

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command("resolve")
def resolve(
    metadata_json: Optional[Path] = typer.Option(None, help="Output of `cargo metadata --format-version 1`."),
    manifest: Path = typer.Option(Path("Cargo.toml"), help="Manifest to inspect when no metadata file is given."),
    section: str = typer.Option(DEFAULT_SECTION, help="Metadata section to aggregate."),
    target: Optional[str] = typer.Option(None, help="Target triple used for cfg() predicates (defaults to host)."),
    binary: bool = typer.Option(False, help="Use the binary merge policy (url/follows/provides)."),
) -> None:
    """Print the aggregated metadata document as JSON."""

    packages = _load_packages(metadata_json, manifest)
    try:
        metadata = read_metadata(packages, section, _target(target), merge_binary if binary else merge)
    except MetadataError as exc:
        _fail(exc)
    typer.echo(json.dumps(metadata.to_dict(), indent=2, sort_keys=True))


@app.command("fetch")
def fetch(
    metadata_json: Optional[Path] = typer.Option(None, help="Output of `cargo metadata --format-version 1`."),
    manifest: Optional[Path] = typer.Option(None, help="Manifest to inspect (defaults to $SYSTEM_DEPS_BUILD_MANIFEST)."),
    target_dir: Optional[Path] = typer.Option(None, help="Cache root for binaries (defaults to $SYSTEM_DEPS_TARGET_DIR)."),
    section: str = typer.Option(DEFAULT_SECTION, help="Metadata section to aggregate."),
    target: Optional[str] = typer.Option(None, help="Target triple used for cfg() predicates."),
    workers: Optional[int] = typer.Option(None, min=1, help="Maximum number of concurrent downloads."),
) -> None:
    """Download and unpack the binaries declared in the metadata and write the path index."""

    config = ResolverConfig.from_environment(section=section, max_workers=workers)
    if manifest is not None:
        config.manifest = manifest
    if target_dir is not None:
        config.target_dir = target_dir
    if target is not None:
        config.target = _target(target)

    packages = _load_packages(metadata_json, config.manifest)
    try:
        index = build_binary_paths(config, packages, fetcher=BinaryFetcher(max_workers=workers))
    except MetadataError as exc:
        _fail(exc)

    typer.echo(f"Resolved binaries: {len(index.paths)}")
    for name, paths in sorted(index.paths.items()):
        typer.echo(f"  {name}")
        for path in paths:
            typer.echo(f"    {path}")
    typer.echo(f"Path index written to {config.paths_file}")


@app.command("query")
def query(
    name: str = typer.Argument(..., help="Package name to look up."),
    paths_file: Path = typer.Option(Path("target/system-deps/paths.json"), help="Persisted path index."),
) -> None:
    """Print the search paths recorded for a package name."""

    if not paths_file.exists():
        raise typer.BadParameter(f"Path index not found: {paths_file}")
    paths = load_binary_paths(paths_file).get(name)
    if paths is None:
        typer.secho(f"No binaries resolved for {name}", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1)
    for path in paths:
        typer.echo(str(path))


def run() -> None:
    """Entry point used by ``python -m system_deps_meta.cli``."""

    app()


if __name__ == "__main__":
    run()
