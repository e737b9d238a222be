"""
Comprehensive tests for WorkingSet class.

Tests cover:
- Wholesale replacement and ordering
- Replace-in-place vs prepend on put
- Discard and invalidate
- Version tracking
- Search, favorites and folder queries
- Magic methods and serialization guard
"""
import pickle

import pytest

from sentinel_vault.data import WorkingSet
from sentinel_vault.vault.models import RecordKind, VaultRecord


# --- Test Fixtures ---

def make(identifier, updated, **fields):
    return VaultRecord(
        identifier=identifier, created_at=0, updated_at=updated, **fields
    )


@pytest.fixture
def working_set():
    """Create a fresh WorkingSet instance."""
    return WorkingSet()


@pytest.fixture
def populated():
    """A WorkingSet with three records, newest first."""
    ws = WorkingSet()
    ws.replace(
        [
            make("c", 30, title="GitHub", username="octo", folder="Work"),
            make("b", 20, title="Bank", kind=RecordKind.CARD, favorite=True),
            make("a", 10, title="Wifi", kind=RecordKind.SECURE_NOTE, folder="Home"),
        ],
        {"a": 1, "b": 4, "c": 2},
    )
    return ws


# --- Test Initialization ---

class TestWorkingSetInitialization:
    """Tests for an empty WorkingSet."""

    def test_empty(self, working_set):
        assert working_set.empty is True
        assert len(working_set) == 0
        assert working_set.records() == []

    def test_repr_has_no_content(self, populated):
        assert repr(populated) == "<WorkingSet [records:3]>"


# --- Test Mutation ---

class TestMutation:
    """Tests for replace, put and discard."""

    def test_replace_keeps_given_order(self, populated):
        assert list(populated) == ["c", "b", "a"]

    def test_replace_is_wholesale(self, populated):
        populated.replace([make("z", 1)])
        assert list(populated) == ["z"]
        assert populated.version_of("a") == 0

    def test_put_new_record_prepends(self, populated):
        populated.put(make("d", 5), version=1)
        assert list(populated) == ["d", "c", "b", "a"]
        assert populated.version_of("d") == 1

    def test_put_existing_record_replaces_in_place(self, populated):
        populated.put(make("b", 99, title="Bank (new)"), version=5)
        assert list(populated) == ["c", "b", "a"]
        assert populated["b"].title == "Bank (new)"
        assert populated.version_of("b") == 5

    def test_put_without_version_keeps_previous(self, populated):
        populated.put(make("b", 99))
        assert populated.version_of("b") == 4

    def test_discard(self, populated):
        removed = populated.discard("b")
        assert removed.title == "Bank"
        assert "b" not in populated
        assert list(populated) == ["c", "a"]
        assert populated.version_of("b") == 0

    def test_discard_missing_is_noop(self, populated):
        assert populated.discard("nope") is None
        assert len(populated) == 3

    def test_invalidate(self, populated):
        populated.invalidate()
        assert populated.empty is True
        assert populated.version_of("a") == 0

    def test_versions_ignored_for_unknown_ids(self, working_set):
        working_set.replace([make("a", 1)], {"a": 2, "ghost": 7})
        assert working_set.version_of("ghost") == 0

    def test_replace_with_repeated_identifier(self, working_set):
        working_set.replace([make("x", 1, title="old"), make("x", 2, title="new")])
        assert len(working_set) == 1
        assert list(working_set) == ["x"]
        assert working_set["x"].title == "new"
        working_set.discard("x")
        assert working_set.records() == []


# --- Test Queries ---

class TestQueries:
    """Tests for search, favorites and folders."""

    def test_search_title_case_insensitive(self, populated):
        assert [r.identifier for r in populated.search("github")] == ["c"]

    def test_search_username(self, populated):
        assert [r.identifier for r in populated.search("OCTO")] == ["c"]

    def test_search_empty_term_returns_all(self, populated):
        assert len(populated.search()) == 3

    def test_search_by_kind(self, populated):
        assert [r.identifier for r in populated.search(kind=RecordKind.CARD)] == ["b"]
        assert [r.identifier for r in populated.search(kind="NOTE")] == ["a"]

    def test_search_term_and_kind(self, populated):
        assert populated.search("github", kind=RecordKind.CARD) == []

    def test_favorites(self, populated):
        assert [r.identifier for r in populated.favorites()] == ["b"]

    def test_folders(self, populated):
        assert populated.folders() == ["Home", "Work"]


# --- Test Magic Methods ---

class TestMagicMethods:
    """Tests for Mapping behaviour."""

    def test_getitem(self, populated):
        assert populated["a"].title == "Wifi"

    def test_getitem_keyerror(self, populated):
        with pytest.raises(KeyError):
            _ = populated["missing"]

    def test_get_method(self, populated):
        assert populated.get("missing") is None
        assert populated.get("a").identifier == "a"

    def test_contains(self, populated):
        assert "a" in populated
        assert "missing" not in populated

    def test_values_follow_order(self, populated):
        assert [r.identifier for r in populated.values()] == ["c", "b", "a"]

    def test_records_is_a_copy(self, populated):
        snapshot = populated.records()
        populated.invalidate()
        assert len(snapshot) == 3

    def test_cannot_be_pickled(self, populated):
        with pytest.raises(TypeError):
            pickle.dumps(populated)
