"""Fold a metadata graph into one document keyed by package name."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any, Iterator, List, Set, Tuple

import networkx as nx

from system_deps_meta.errors import PackageNotFoundError
from system_deps_meta.metadata.graph import MetadataGraph, PackageSet, build_graph
from system_deps_meta.metadata.merge import MergePolicy, Table, merge
from system_deps_meta.metadata.predicates import Target

logger = logging.getLogger(__name__)


class AggregatedMetadata(Mapping):
    """Read-only view over the aggregated document."""

    def __init__(self, document: Table) -> None:
        self._document = document

    def __getitem__(self, name: str) -> Any:
        return self._document[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._document)

    def __len__(self) -> int:
        return len(self._document)

    def __repr__(self) -> str:
        return f"AggregatedMetadata({self._document!r})"

    def get_package(self, name: str) -> Table:
        try:
            return self._document[name]
        except KeyError:
            raise PackageNotFoundError(name) from None

    def to_dict(self) -> Table:
        return copy.deepcopy(self._document)


KeyPath = Tuple[str, ...]


def _leaf_to_root_paths(graph: MetadataGraph, digraph: nx.DiGraph) -> Iterator[List[str]]:
    roots = sorted(name for name in graph if not graph[name].parents)
    for leaf in graph.leaves():
        for root in roots:
            if leaf == root:
                yield [leaf]
                continue
            yield from sorted(nx.all_simple_paths(digraph, leaf, root))


def _assigned_keys(document: Table, prefix: KeyPath = ()) -> Iterator[KeyPath]:
    for key, value in document.items():
        path = (*prefix, key)
        if isinstance(value, dict):
            yield from _assigned_keys(value, path)
        else:
            yield path


def _without_scalars(document: Table, shadowed: Set[KeyPath], prefix: KeyPath = ()) -> Table:
    """Copy of ``document`` minus the scalar values whose key path is in ``shadowed``."""

    kept: Table = {}
    for key, value in document.items():
        path = (*prefix, key)
        if isinstance(value, dict):
            kept[key] = _without_scalars(value, shadowed, path)
        elif isinstance(value, list) or path not in shadowed:
            kept[key] = value
    return kept


def aggregate(graph: MetadataGraph, merge_policy: MergePolicy = merge) -> AggregatedMetadata:
    """
    Combine every node of ``graph`` into a single document.

    Each leaf-to-root path is folded bottom-up so that dependents override
    their dependencies, then the per-path results are merged without
    overriding, so unrelated packages disagreeing on a value conflict.

    A scalar that a dependent on another branch assigns is left out of the
    fold of the paths that do not go through that dependent. A shared
    dependency therefore does not count as disagreeing with the branch that
    overrode it.
    """

    for name in graph:
        for parent in graph[name].parents:
            if parent not in graph:
                raise PackageNotFoundError(parent)

    digraph = graph.to_networkx()
    assigned = {name: set(_assigned_keys(graph[name].document)) for name in graph}
    dependents = {name: nx.descendants(digraph, name) for name in graph}

    result: Table = {}
    for path in _leaf_to_root_paths(graph, digraph):
        logger.debug("Folding path %s", " -> ".join(name or "<workspace>" for name in path))
        on_path = set(path)
        accumulator: Table = {}
        for name in path:
            document = graph[name].document
            shadowed = set().union(*(assigned[other] for other in dependents[name] - on_path))
            if shadowed:
                document = _without_scalars(document, shadowed)
            merge_policy(accumulator, document, True)
        merge_policy(result, accumulator, False)
    return AggregatedMetadata(result)


def read_metadata(
    packages: PackageSet,
    section: str,
    target: Target,
    merge_policy: MergePolicy = merge,
) -> AggregatedMetadata:
    """Build the graph for ``packages`` and aggregate it."""

    return aggregate(build_graph(packages, section, target), merge_policy)


__all__ = ["AggregatedMetadata", "aggregate", "read_metadata"]
