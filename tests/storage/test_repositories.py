"""Tests for repository helpers and source lookup."""

import pytest

from studysync.db.progress_repository import get_state, set_state
from studysync.db.sources_repository import (
    delete_source,
    get_source_by_url,
    insert_source,
    list_auto_update_sources,
    list_sources,
    mark_official,
    mark_synced,
    set_auto_update,
)
from studysync.utils.text_utils import clean_cell, strip_extension, truncate
from studysync.utils.validators import (
    AmbiguousSourceError,
    UnknownSourceError,
    resolve_source_id,
)


class TestSourcesRepository:
    """Tests for the sources table."""

    def test_insert_and_flags(self, db_path):
        source_id = insert_source("https://x.test/a.csv", "A")

        record = get_source_by_url("https://x.test/a.csv")
        assert record.id == source_id
        assert record.auto_update is True
        assert record.is_official is False
        assert record.last_synced_at is None

        mark_official(source_id)
        mark_synced(source_id)
        record = get_source_by_url("https://x.test/a.csv")
        assert record.is_official is True
        assert record.last_synced_at is not None

    def test_ordering_and_auto_update(self, db_path):
        first = insert_source("https://x.test/a.csv", "A")
        second = insert_source("https://x.test/b.csv", "B")
        set_auto_update(first, False)

        assert [s.id for s in list_sources()] == [second, first]
        assert [s.id for s in list_auto_update_sources()] == [second]
        assert set_auto_update(999, True) is False

    def test_delete(self, db_path):
        source_id = insert_source("https://x.test/a.csv", "A")
        assert delete_source(source_id) is True
        assert delete_source(source_id) is False


class TestSyncState:
    """Tests for the sync_state key/value table."""

    def test_upsert_and_delete(self, db_path):
        assert get_state("k") is None
        set_state("k", "1")
        set_state("k", "2")
        assert get_state("k") == "2"
        set_state("k", None)
        assert get_state("k") is None


class TestResolveSourceId:
    """Tests for resolve_source_id."""

    @pytest.fixture
    def sources(self, db_path):
        insert_source("https://x.test/a.csv", "Algebra")
        insert_source("https://x.test/b.csv", "Algebra II")
        insert_source("https://x.test/c.csv", "Geometry")
        return list_sources()

    def test_numeric_id(self, sources):
        assert resolve_source_id("3", sources) == 3

    def test_exact_name_beats_prefix(self, sources):
        assert resolve_source_id("algebra", sources) == 1

    def test_unique_prefix(self, sources):
        assert resolve_source_id("geo", sources) == 3

    def test_ambiguous_prefix(self, sources):
        with pytest.raises(AmbiguousSourceError):
            resolve_source_id("alg", sources)

    def test_unknown(self, sources):
        with pytest.raises(UnknownSourceError):
            resolve_source_id("99", sources)
        with pytest.raises(UnknownSourceError):
            resolve_source_id("physics", sources)


class TestTextUtils:
    """Tests for text helpers."""

    def test_clean_cell(self):
        assert clean_cell(None) == ""
        assert clean_cell(42) == "42"
        assert clean_cell("  \u200bhi\ufeff ") == "hi"

    def test_strip_extension(self):
        assert strip_extension("dir/bank.v2.csv") == "bank.v2"

    def test_truncate(self):
        assert truncate("short") == "short"
        assert len(truncate("x" * 100, max_len=10)) <= 10
