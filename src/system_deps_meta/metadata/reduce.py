"""Resolve ``cfg()``-guarded keys of a package document for one target."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping

from system_deps_meta.errors import PredicateNotTableError
from system_deps_meta.metadata.merge import Table, merge
from system_deps_meta.metadata.predicates import Target, evaluate_predicate, split_cfg_key

logger = logging.getLogger(__name__)


def reduce_document(document: Mapping[str, Any], target: Target) -> Table:
    """
    Return a copy of ``document`` without predicate keys.

    ``cfg(<predicate>)`` keys hold ``{package: table}`` overrides. True
    branches are combined without overriding each other and then applied on
    top of the unconditioned values. False branches are dropped unread.
    """

    result: Table = {}
    conditional: Table = {}

    for key, value in document.items():
        predicate = split_cfg_key(key)
        if predicate is None:
            result[key] = reduce_document(value, target) if isinstance(value, dict) else copy.deepcopy(value)
            continue

        if not evaluate_predicate(predicate, target):
            logger.debug("Skipping cfg(%s) for %s", predicate, target.triple or target.os)
            continue

        if not isinstance(value, dict):
            raise PredicateNotTableError(predicate)
        branch: Table = {}
        for name, inner in value.items():
            if not isinstance(inner, dict):
                raise PredicateNotTableError(predicate)
            branch[name] = reduce_document(inner, target)
        merge(conditional, branch, False)

    return merge(result, conditional, True)


__all__ = ["reduce_document"]
