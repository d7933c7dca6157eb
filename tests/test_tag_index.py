"""
Tests for the SQLite tag index.

Covers the bidirectional invariant, idempotence, cascading deletes,
bucket cleanup, and atomicity when a write fails part-way.
"""

import json
import random
import sqlite3

import pytest

from hypotag.errors import AnnotationNotFound, StorageError, TagNotFound
from hypotag.tag_index import (
    ID_TO_TAGS,
    TAG_TO_IDS,
    TagIndex,
    decode_set,
    encode_set,
)


def assert_consistent(index: TagIndex, ids, tags) -> None:
    """tag ∈ tags_of(id) ⇔ id ∈ annotations_with_tag(tag), for every pair."""
    for id in ids:
        for tag in tags:
            assert (tag in index.tags_of(id)) == (id in index.annotations_with_tag(tag)), (id, tag)
    # Nothing is stored that the pairs above didn't see
    for tag in index.all_tags():
        assert index.annotations_with_tag(tag), f"empty bucket for {tag!r}"
        for id in index.annotations_with_tag(tag):
            assert tag in index.tags_of(id)


class FailingTagIndex(TagIndex):
    """TagIndex whose Nth row write raises, like a full disk would."""

    def __init__(self, *args, fail_on: int = 2, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on
        self.armed = False
        self.writes = 0

    def _write_row(self, table, key, value):
        if self.armed:
            self.writes += 1
            if self.writes == self.fail_on:
                raise sqlite3.OperationalError("database or disk is full")
        super()._write_row(table, key, value)


# -----------------------------------------------------------------------------
# Scenario
# -----------------------------------------------------------------------------

class TestScenario:
    """The basic add / re-add / delete lifecycle."""

    def test_add_twice_then_remove_annotation(self, index):
        index.add_tag("a1", "research")
        index.add_tag("a1", "research")
        assert index.tags_of("a1") == {"research"}
        assert index.annotations_with_tag("research") == {"a1"}

        index.remove_annotation("a1")
        assert index.tags_of("a1") == set()
        assert index.all_tags() == set()


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

class TestLookups:

    def test_empty_index(self, index):
        assert index.all_tags() == set()
        assert index.list_tags() == []
        assert index.count() == 0

    def test_tags_of_unknown_id_is_empty(self, index):
        assert index.tags_of("nope") == set()

    def test_annotations_with_unknown_tag_is_empty(self, index):
        assert index.annotations_with_tag("nope") == set()

    def test_strict_tag_lookup_raises(self, index):
        with pytest.raises(TagNotFound) as exc:
            index.annotations_with_tag("nope", strict=True)
        assert "nope" in str(exc.value)

    def test_strict_annotation_lookup_raises(self, index):
        assert index.get_annotation("nope") is None
        with pytest.raises(AnnotationNotFound):
            index.get_annotation("nope", strict=True)

    def test_list_tags_is_sorted(self, index):
        for tag in ["zebra", "Apple", "mango", "apple"]:
            index.add_tag("a1", tag)
        assert index.list_tags() == ["Apple", "apple", "mango", "zebra"]

    def test_tags_are_case_sensitive(self, index):
        index.add_tag("a1", "Research")
        index.add_tag("a1", "research")
        assert index.tags_of("a1") == {"Research", "research"}

    def test_tag_counts(self, seeded):
        assert seeded.tag_counts() == {"t1": 2, "t2": 1}


# -----------------------------------------------------------------------------
# Mutations
# -----------------------------------------------------------------------------

class TestMutations:

    def test_add_tag_updates_both_directions(self, index):
        index.add_tag("a1", "t1")
        index.add_tag("a2", "t1")
        assert index.annotations_with_tag("t1") == {"a1", "a2"}
        assert index.tags_of("a1") == {"t1"}
        assert index.tags_of("a2") == {"t1"}

    def test_add_tag_is_idempotent(self, index):
        index.add_tag("a1", "t1")
        before = (index.tags_of("a1"), index.annotations_with_tag("t1"))
        index.add_tag("a1", "t1")
        assert (index.tags_of("a1"), index.annotations_with_tag("t1")) == before

    def test_remove_tag_is_idempotent(self, index):
        index.add_tag("a1", "t1")
        index.add_tag("a1", "t2")
        index.remove_tag("a1", "t1")
        index.remove_tag("a1", "t1")
        assert index.tags_of("a1") == {"t2"}
        assert index.annotations_with_tag("t1") == set()

    def test_remove_missing_tag_succeeds(self, index):
        index.remove_tag("a1", "never-added")
        assert index.all_tags() == set()

    def test_last_removal_drops_bucket(self, index):
        index.add_tag("a1", "t1")
        index.add_tag("a2", "t1")
        index.remove_tag("a1", "t1")
        assert "t1" in index.all_tags()
        index.remove_tag("a2", "t1")
        assert "t1" not in index.all_tags()

    def test_untagged_annotation_has_no_index_rows(self, index, make_annotation):
        index.add_annotations([make_annotation("a1", ["t1"])])
        index.remove_tag("a1", "t1")
        assert index.exists("a1")
        assert index._read(ID_TO_TAGS, "a1") is None
        assert index._read(TAG_TO_IDS, "t1") is None

    def test_add_tags_reports_new_ones(self, index):
        index.add_tag("a1", "t1")
        assert index.add_tags("a1", ["t1", "t2", "t3"]) == {"t2", "t3"}
        assert index.remove_tags("a1", ["t2", "missing"]) == {"t2"}

    @pytest.mark.parametrize("bad", ["", "   "])
    def test_blank_tags_rejected(self, index, bad):
        with pytest.raises(ValueError):
            index.add_tag("a1", bad)
        assert index.all_tags() == set()

    def test_any_characters_allowed_in_tags(self, index):
        index.add_tag("a1", "über/ideas: #1, \"quoted\"")
        assert index.tags_of("a1") == {"über/ideas: #1, \"quoted\""}

    def test_random_operations_stay_consistent(self, index):
        rng = random.Random(1234)
        ids = [f"a{i}" for i in range(6)]
        tags = [f"t{i}" for i in range(5)]
        for _ in range(300):
            op = rng.random()
            id, tag = rng.choice(ids), rng.choice(tags)
            if op < 0.5:
                index.add_tag(id, tag)
            elif op < 0.9:
                index.remove_tag(id, tag)
            else:
                index.remove_annotation(id)
            assert_consistent(index, ids, tags)


class TestRemoveAnnotation:

    def test_cascades_out_of_every_bucket(self, seeded):
        seeded.remove_annotation("a1")
        assert "a1" not in seeded.annotations_with_tag("t1")
        assert seeded.tags_of("a1") == set()
        assert seeded.all_tags() == {"t1"}  # t2 belonged only to a1
        assert not seeded.exists("a1")

    def test_keeps_other_annotations(self, seeded):
        seeded.remove_annotation("a1")
        assert seeded.annotations_with_tag("t1") == {"a2"}
        assert seeded.get_annotation("a2").tags == ["t1"]

    def test_returns_whether_it_existed(self, seeded):
        assert seeded.remove_annotation("a3") is True
        assert seeded.remove_annotation("a3") is False
        assert seeded.remove_annotation("unknown") is False

    def test_tag_only_annotation_is_removed(self, index):
        # Tagged but never synced: no canonical record
        index.add_tag("loose", "t1")
        assert index.remove_annotation("loose") is True
        assert index.all_tags() == set()


# -----------------------------------------------------------------------------
# Annotation records
# -----------------------------------------------------------------------------

class TestAnnotations:

    def test_first_index_seeds_tags(self, seeded):
        assert seeded.tags_of("a1") == {"t1", "t2"}
        assert seeded.tags_of("a3") == set()
        assert seeded.count() == 3

    def test_resync_keeps_local_tags(self, seeded, make_annotation):
        seeded.add_tag("a2", "local")
        seeded.remove_tag("a1", "t2")
        updated = make_annotation("a1", ["t1", "t2", "remote-new"], text="Edited")
        assert seeded.add_annotations([updated, make_annotation("a2", ["t1"])]) == 0

        assert seeded.tags_of("a1") == {"t1"}
        assert seeded.tags_of("a2") == {"t1", "local"}
        assert seeded.get_annotation("a1").text == "Edited"

    def test_seed_tags_are_trimmed(self, index, make_annotation):
        index.add_annotations([make_annotation("a1", [" spaced ", "", "ok"])])
        assert index.tags_of("a1") == {"spaced", "ok"}

    def test_get_annotation_reflects_index_tags(self, seeded):
        seeded.add_tag("a3", "new")
        annotation = seeded.get_annotation("a3")
        assert annotation.tags == ["new"]
        assert annotation.uri == "https://example.com/one"

    def test_get_annotations_keeps_order_and_skips_missing(self, seeded):
        got = seeded.get_annotations(["a3", "missing", "a1"])
        assert [a.id for a in got] == ["a3", "a1"]

    def test_list_annotations_newest_first(self, index, make_annotation):
        index.add_annotations([
            make_annotation("old", updated="2023-01-01T00:00:00"),
            make_annotation("new", updated="2024-06-01T00:00:00"),
        ])
        assert [a.id for a in index.list_annotations()] == ["new", "old"]

    def test_list_untagged(self, seeded):
        assert [a.id for a in seeded.list_untagged()] == ["a3"]

    def test_clear(self, seeded):
        assert seeded.clear() == 3
        assert seeded.count() == 0
        assert seeded.all_tags() == set()

    def test_persists_across_reopen(self, tmp_path, make_annotation):
        with TagIndex(tmp_path / "x.db") as idx:
            idx.add_annotations([make_annotation("a1", ["t1"])])
            idx.add_tag("a1", "t2")
        with TagIndex(tmp_path / "x.db") as idx:
            assert idx.tags_of("a1") == {"t1", "t2"}
            assert idx.annotations_with_tag("t2") == {"a1"}


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------

class TestEncoding:

    def test_set_encoding_is_order_independent(self):
        assert encode_set(["b", "a", "c"]) == encode_set(["c", "b", "a", "a"])
        assert decode_set(encode_set(["b", "a"])) == {"a", "b"}

    def test_missing_value_decodes_empty(self):
        assert decode_set(None) == set()

    @pytest.mark.parametrize("raw", ["not json", json.dumps({"a": 1})])
    def test_corrupt_value_raises_storage_error(self, raw):
        with pytest.raises(StorageError):
            decode_set(raw)


# -----------------------------------------------------------------------------
# Failures
# -----------------------------------------------------------------------------

class TestFailures:

    def test_failed_second_write_rolls_back_first(self, tmp_path):
        idx = FailingTagIndex(tmp_path / "f.db", fail_on=2)
        idx.add_tag("a1", "existing")
        idx.armed = True

        with pytest.raises(StorageError):
            idx.add_tag("a1", "new")

        idx.armed = False
        assert idx.tags_of("a1") == {"existing"}
        assert idx.annotations_with_tag("new") == set()
        assert idx.all_tags() == {"existing"}
        idx.close()

    def test_failed_cascade_leaves_everything(self, tmp_path, make_annotation):
        idx = FailingTagIndex(tmp_path / "f.db", fail_on=3)
        idx.add_annotations([make_annotation("a1", ["t1", "t2"])])
        idx.armed = True

        with pytest.raises(StorageError):
            idx.remove_annotation("a1")

        idx.armed = False
        assert idx.exists("a1")
        assert idx.tags_of("a1") == {"t1", "t2"}
        assert idx.annotations_with_tag("t1") == {"a1"}
        assert idx.annotations_with_tag("t2") == {"a1"}
        idx.close()

    def test_corrupt_row_raises_storage_error(self, index):
        index.add_tag("a1", "t1")
        with index._conn:
            index._conn.execute(f"UPDATE {ID_TO_TAGS} SET tags = 'garbage'")
        with pytest.raises(StorageError):
            index.tags_of("a1")

    def test_closed_index_raises_storage_error(self, tmp_path):
        idx = TagIndex(tmp_path / "c.db")
        idx.close()
        with pytest.raises(StorageError):
            idx.all_tags()
        with pytest.raises(StorageError):
            idx.add_tag("a1", "t1")

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            TagIndex(blocker / "sub" / "x.db")
