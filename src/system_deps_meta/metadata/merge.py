"""Merge policies for configuration documents."""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict

from system_deps_meta.errors import IncompatibleBinaryError, MergeConflictError

Document = Any
Table = Dict[str, Any]
MergePolicy = Callable[[Table, Table, bool], Table]


def kind_of(value: Document) -> str:
    """Return the document kind of ``value``; ``bool`` and ``int`` stay distinct."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "table"
    raise TypeError(f"Unsupported document value: {type(value).__name__}")


def documents_equal(left: Document, right: Document) -> bool:
    """Kind-aware structural equality (``True != 1``, ``1 != 1.0``)."""

    kind = kind_of(left)
    if kind != kind_of(right):
        return False
    if kind == "array":
        return len(left) == len(right) and all(documents_equal(a, b) for a, b in zip(left, right))
    if kind == "table":
        if left.keys() != right.keys():
            return False
        return all(documents_equal(value, right[key]) for key, value in left.items())
    return left == right


def _contains(items: list, value: Document) -> bool:
    return any(documents_equal(item, value) for item in items)


def merge(base: Table, incoming: Table, overwrite: bool, *, _path: str = "") -> Table:
    """
    Merge ``incoming`` into ``base`` in place and return ``base``.

    Absent keys are inserted, equal values are left alone, arrays are joined
    without duplicates and tables recurse. Differing scalars are replaced only
    when ``overwrite`` is set; any other disagreement raises
    :class:`MergeConflictError`.
    """

    for key, value in incoming.items():
        path = f"{_path}.{key}" if _path else key
        if key not in base:
            base[key] = copy.deepcopy(value)
            continue

        current = base[key]
        if documents_equal(current, value):
            continue

        kind = kind_of(current)
        if kind != kind_of(value):
            raise MergeConflictError(path, current, value)

        if kind == "array":
            joined = list(current)
            for item in value:
                if not _contains(joined, item):
                    joined.append(copy.deepcopy(item))
            base[key] = joined
        elif kind == "table":
            merge(current, value, overwrite, _path=path)
        elif overwrite:
            base[key] = copy.deepcopy(value)
        else:
            raise MergeConflictError(path, current, value)

    return base


def merge_binary(base: Table, incoming: Table, overwrite: bool) -> Table:
    """
    Merge policy used when binary sources are resolved.

    On overriding merges an incoming ``url`` replaces an inherited ``follows``
    and every name listed in ``provides`` is turned into a ``follows`` entry
    pointing at the provider. No entry may end up with both keys.
    """

    if overwrite:
        for name, entry in incoming.items():
            if not isinstance(entry, dict):
                continue
            existing = base.get(name)
            if "url" in entry and isinstance(existing, dict):
                existing.pop("follows", None)
            provides = entry.get("provides")
            if not isinstance(provides, list):
                continue
            for provided in provides:
                if not isinstance(provided, str):
                    raise MergeConflictError(f"{name}.provides", reason=f"alias names must be strings, got {provided!r}")
                target = base.setdefault(provided, {})
                if not isinstance(target, dict):
                    raise MergeConflictError(provided, target, {"follows": name})
                target["follows"] = name
                target.pop("url", None)

    merge(base, incoming, overwrite)

    for name, entry in base.items():
        if isinstance(entry, dict) and "url" in entry and "follows" in entry:
            raise IncompatibleBinaryError(name)
    return base


__all__ = ["Document", "MergePolicy", "Table", "documents_equal", "kind_of", "merge", "merge_binary"]
