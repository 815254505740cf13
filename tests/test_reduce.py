"""Tests for resolving cfg()-guarded package overrides."""

from __future__ import annotations

import pytest

from system_deps_meta.errors import MergeConflictError, PredicateNotTableError, UnsupportedPredicateError
from system_deps_meta.metadata.predicates import Target
from system_deps_meta.metadata.reduce import reduce_document

LINUX = Target.from_triple("x86_64-unknown-linux-gnu")
WINDOWS = Target.from_triple("x86_64-pc-windows-msvc")


def test_true_predicate_overrides_defaults() -> None:
    document = {
        "dep": {"value": "default", "other": 32},
        "cfg(all())": {"dep": {"value": "final"}},
    }

    assert reduce_document(document, LINUX) == {"dep": {"value": "final", "other": 32}}


def test_false_predicate_leaves_document_unchanged() -> None:
    document = {
        "dep": {"value": "default", "other": 32},
        "cfg(any())": {"dep": {"value": "final"}},
    }

    assert reduce_document(document, LINUX) == {"dep": {"value": "default", "other": 32}}


def test_predicate_depends_on_target() -> None:
    document = {
        "dep": {"name": "dep"},
        'cfg(target_os = "linux")': {"dep": {"url": "file:///linux.tar.gz"}},
        "cfg(windows)": {"dep": {"url": "file:///windows.zip"}, "extra": {"value": 1}},
    }

    assert reduce_document(document, LINUX) == {"dep": {"name": "dep", "url": "file:///linux.tar.gz"}}
    assert reduce_document(document, WINDOWS) == {
        "dep": {"name": "dep", "url": "file:///windows.zip"},
        "extra": {"value": 1},
    }


def test_conflicting_true_predicates() -> None:
    document = {
        'cfg(target_os = "linux")': {"dep": {"value": "linux"}},
        "cfg(unix)": {"dep": {"value": "unix"}},
    }

    with pytest.raises(MergeConflictError):
        reduce_document(document, LINUX)


def test_agreeing_true_predicates_combine() -> None:
    document = {
        'cfg(target_os = "linux")': {"dep": {"value": "same", "list": ["a"]}},
        "cfg(unix)": {"dep": {"value": "same", "list": ["b"]}},
    }

    assert reduce_document(document, LINUX) == {"dep": {"value": "same", "list": ["a", "b"]}}


def test_nested_predicates_are_reduced() -> None:
    document = {
        "dep": {
            "value": "default",
            "options": {"cfg(unix)": {"link": {"static": True}}, "link": {"static": False}},
        },
    }

    assert reduce_document(document, LINUX) == {
        "dep": {"value": "default", "options": {"link": {"static": True}}},
    }
    assert reduce_document(document, WINDOWS) == {
        "dep": {"value": "default", "options": {"link": {"static": False}}},
    }


def test_predicate_inside_true_branch_is_reduced() -> None:
    document = {"cfg(all())": {"dep": {"cfg(windows)": {"inner": {"value": 1}}, "value": 2}}}

    assert reduce_document(document, LINUX) == {"dep": {"value": 2}}


@pytest.mark.parametrize(
    "document",
    [
        {"cfg(all())": {"dep": 1234}},
        {"cfg(all())": 1234},
    ],
)
def test_predicate_must_guard_tables(document: dict) -> None:
    with pytest.raises(PredicateNotTableError):
        reduce_document(document, LINUX)


def test_false_predicate_value_is_not_inspected() -> None:
    assert reduce_document({"cfg(any())": 1234}, LINUX) == {}


def test_unsupported_predicate() -> None:
    with pytest.raises(UnsupportedPredicateError):
        reduce_document({'cfg(feature = "a")': {"dep": {"value": "a"}}}, LINUX)


def test_unterminated_predicate_key() -> None:
    with pytest.raises(UnsupportedPredicateError):
        reduce_document({"cfg(unix": {"dep": {}}}, LINUX)


def test_input_is_not_modified() -> None:
    document = {"dep": {"list": [1]}, "cfg(unix)": {"dep": {"list": [2]}}}
    reduce_document(document, LINUX)
    assert document == {"dep": {"list": [1]}, "cfg(unix)": {"dep": {"list": [2]}}}
