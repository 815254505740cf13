"""Dependency graph of per-package metadata documents."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping

import networkx as nx

from system_deps_meta.metadata.merge import Table
from system_deps_meta.metadata.predicates import Target
from system_deps_meta.metadata.reduce import reduce_document

logger = logging.getLogger(__name__)

VIRTUAL_ROOT = ""
DEPENDENCY_KINDS = ("normal", "dev", "build")


@dataclass(frozen=True, slots=True)
class Dependency:
    name: str
    kind: str = "normal"

    def __post_init__(self) -> None:
        if self.kind not in DEPENDENCY_KINDS:
            raise ValueError(f"Unknown dependency kind {self.kind!r} for {self.name}")


@dataclass(slots=True)
class PackageInfo:
    """A package as reported by the dependency-graph provider."""

    name: str
    dependencies: List[Dependency] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PackageSet:
    """Every package of a build plus the workspace-level entry points."""

    packages: Dict[str, PackageInfo] = field(default_factory=dict)
    workspace_members: List[str] = field(default_factory=list)
    root: str | None = None
    workspace_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_packages(
        cls,
        packages: Iterable[PackageInfo],
        *,
        root: str | None = None,
        workspace_members: Iterable[str] = (),
        workspace_metadata: Mapping[str, Any] | None = None,
    ) -> "PackageSet":
        return cls(
            packages={package.name: package for package in packages},
            workspace_members=list(workspace_members),
            root=root,
            workspace_metadata=dict(workspace_metadata or {}),
        )

    def starting_packages(self) -> List[str]:
        if self.root is not None:
            return [self.root]
        return list(self.workspace_members)


@dataclass(slots=True)
class GraphNode:
    document: Table = field(default_factory=dict)
    parents: set[str] = field(default_factory=set)
    pending_children: int = 0


@dataclass(slots=True)
class MetadataGraph:
    """Arena of graph nodes keyed by package name; the virtual root is ``""``."""

    nodes: Dict[str, GraphNode] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def __getitem__(self, name: str) -> GraphNode:
        return self.nodes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def leaves(self) -> List[str]:
        return sorted(name for name, node in self.nodes.items() if node.pending_children == 0)

    def to_networkx(self) -> nx.DiGraph:
        """Return a directed graph with one ``child -> parent`` edge per recorded parent."""

        graph = nx.DiGraph(name="metadata_graph")
        for name, node in self.nodes.items():
            graph.add_node(name, document=node.document, pending_children=node.pending_children)
        for name, node in self.nodes.items():
            for parent in sorted(node.parents):
                graph.add_edge(name, parent)
        graph.graph["node_count"] = graph.number_of_nodes()
        graph.graph["edge_count"] = graph.number_of_edges()
        return graph


def _section(document: Mapping[str, Any] | None, section: str) -> Table:
    value = (document or {}).get(section)
    return value if isinstance(value, dict) else {}


def build_graph(packages: PackageSet, section: str, target: Target) -> MetadataGraph:
    """Walk the normal dependencies breadth-first and build the metadata arena."""

    graph = MetadataGraph()
    graph.nodes[VIRTUAL_ROOT] = GraphNode(reduce_document(_section(packages.workspace_metadata, section), target))

    queue: deque[tuple[str, str]] = deque((name, VIRTUAL_ROOT) for name in packages.starting_packages())
    while queue:
        name, parent = queue.popleft()
        node = graph.nodes.get(name)
        first_visit = node is None
        if first_visit:
            package = packages.packages.get(name)
            if package is None:
                logger.debug("Skipping %s, not part of the package set", name)
                continue
            node = GraphNode(reduce_document(_section(package.metadata, section), target))
            graph.nodes[name] = node

        if parent not in node.parents:
            node.parents.add(parent)
            graph.nodes[parent].pending_children += 1

        if not first_visit:
            continue

        for dependency in package.dependencies:
            if dependency.kind != "normal":
                continue
            if dependency.name not in packages.packages:
                continue
            queue.append((dependency.name, name))

    logger.debug("Built metadata graph with %d nodes", len(graph))
    return graph


__all__ = [
    "DEPENDENCY_KINDS",
    "Dependency",
    "GraphNode",
    "MetadataGraph",
    "PackageInfo",
    "PackageSet",
    "VIRTUAL_ROOT",
    "build_graph",
]
