"""
Tag index using SQLite.

Stores canonical annotation records alongside two secondary indexes:

- tag_to_ids: tag → set of annotation IDs (the tag's "bucket")
- id_to_tags: annotation ID → set of tags

Every logical mutation touches both indexes. Writes are staged in memory
first and then flushed inside a single SQLite transaction, so a failure
part-way through (disk full, locked database) rolls back to the last
committed state and the two directions never disagree.

Sets are stored as sorted JSON arrays.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, Optional

from .errors import AnnotationNotFound, StorageError, TagNotFound
from .types import Annotation, validate_id, validate_tag

logger = logging.getLogger(__name__)

INDEX_FILENAME = "hypotag.db"

ANNOTATIONS = "annotations"
TAG_TO_IDS = "tag_to_ids"
ID_TO_TAGS = "id_to_tags"

# table name → (key column, value column)
_TABLES = {
    ANNOTATIONS: ("id", "data"),
    TAG_TO_IDS: ("tag", "ids"),
    ID_TO_TAGS: ("id", "tags"),
}


def encode_set(values: Iterable[str]) -> str:
    """Encode a set of strings as a sorted JSON array."""
    return json.dumps(sorted(set(values)), ensure_ascii=False)


def decode_set(raw: Optional[str]) -> set[str]:
    """Decode a stored set. Missing values decode to the empty set."""
    if raw is None:
        return set()
    try:
        values = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt set in tag index: {raw[:80]!r}") from e
    if not isinstance(values, list):
        raise StorageError(f"Corrupt set in tag index: {raw[:80]!r}")
    return set(values)


class _Staging:
    """
    Pending writes for one logical operation.

    Reads see earlier staged writes, falling back to the database.
    A staged value of None means "delete this key".
    """

    def __init__(self, index: "TagIndex"):
        self._index = index
        self.writes: dict[tuple[str, str], Optional[str]] = {}

    def get(self, table: str, key: str) -> Optional[str]:
        if (table, key) in self.writes:
            return self.writes[(table, key)]
        return self._index._read(table, key)

    def put(self, table: str, key: str, value: Optional[str]) -> None:
        self.writes[(table, key)] = value

    def get_set(self, table: str, key: str) -> set[str]:
        return decode_set(self.get(table, key))

    def put_set(self, table: str, key: str, values: set[str]) -> None:
        # Empty sets are never stored: no dangling buckets
        self.put(table, key, encode_set(values) if values else None)


class TagIndex:
    """
    SQLite-backed bidirectional index between tags and annotations.

    Invariant: tag T is in id_to_tags[A] exactly when A is in tag_to_ids[T].
    An annotation without tags has no row in either index but may still
    have a canonical record.

    Single process, single writer. Concurrent use from several processes
    is not supported.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.row_factory = sqlite3.Row
            for table, (key_col, value_col) in _TABLES.items():
                self._conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        {key_col} TEXT PRIMARY KEY,
                        {value_col} TEXT NOT NULL
                    )
                """)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open tag index at {self._db_path}: {e}") from e

    # -------------------------------------------------------------------------
    # Low-level access
    # -------------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._conn is None:
            raise StorageError("Tag index is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Tag index query failed: {e}") from e

    def _read(self, table: str, key: str) -> Optional[str]:
        key_col, value_col = _TABLES[table]
        row = self._execute(
            f"SELECT {value_col} FROM {table} WHERE {key_col} = ?", (key,)
        ).fetchone()
        return None if row is None else row[0]

    def _write_row(self, table: str, key: str, value: Optional[str]) -> None:
        key_col, value_col = _TABLES[table]
        if value is None:
            self._conn.execute(f"DELETE FROM {table} WHERE {key_col} = ?", (key,))
        else:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {table} ({key_col}, {value_col}) VALUES (?, ?)",
                (key, value),
            )

    def _flush(self, staging: _Staging) -> None:
        """Apply all staged writes together, or none of them."""
        if not staging.writes:
            return
        if self._conn is None:
            raise StorageError("Tag index is closed")
        try:
            # Commits on success, rolls back on any exception
            with self._conn:
                for (table, key), value in staging.writes.items():
                    self._write_row(table, key, value)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Tag index write failed, nothing was changed: {e}") from e

    # -------------------------------------------------------------------------
    # Tag Queries
    # -------------------------------------------------------------------------

    def all_tags(self) -> set[str]:
        """Every tag that currently has at least one annotation."""
        cursor = self._execute(f"SELECT tag FROM {TAG_TO_IDS}")
        return {row["tag"] for row in cursor}

    def list_tags(self) -> list[str]:
        """All tags, sorted for display."""
        return sorted(self.all_tags())

    def tags_of(self, id: str) -> set[str]:
        """Tags of an annotation; empty if it has none or isn't indexed."""
        return decode_set(self._read(ID_TO_TAGS, id))

    def annotations_with_tag(self, tag: str, strict: bool = False) -> set[str]:
        """
        IDs of annotations carrying a tag.

        Args:
            tag: Tag to look up
            strict: Raise TagNotFound instead of returning an empty set

        Returns:
            Set of annotation IDs
        """
        ids = decode_set(self._read(TAG_TO_IDS, tag))
        if not ids and strict:
            raise TagNotFound(tag)
        return ids

    def tag_counts(self) -> dict[str, int]:
        """Number of annotations per tag."""
        cursor = self._execute(f"SELECT tag, ids FROM {TAG_TO_IDS}")
        return {row["tag"]: len(decode_set(row["ids"])) for row in cursor}

    # -------------------------------------------------------------------------
    # Tag Mutation
    # -------------------------------------------------------------------------

    def add_tag(self, id: str, tag: str) -> None:
        """Tag an annotation. Adding a tag it already has is a no-op."""
        self.add_tags(id, [tag])

    def remove_tag(self, id: str, tag: str) -> None:
        """Untag an annotation. Removing a tag it doesn't have is a no-op."""
        self.remove_tags(id, [tag])

    def add_tags(self, id: str, tags: Iterable[str]) -> set[str]:
        """
        Add several tags to one annotation as a single atomic change.

        Returns:
            The tags that were newly added
        """
        validate_id(id)
        tags = list(tags)
        for tag in tags:
            validate_tag(tag)

        staging = _Staging(self)
        current = staging.get_set(ID_TO_TAGS, id)
        added = {tag for tag in tags if tag not in current}
        if not added:
            return added
        for tag in sorted(added):
            bucket = staging.get_set(TAG_TO_IDS, tag)
            bucket.add(id)
            staging.put_set(TAG_TO_IDS, tag, bucket)
        staging.put_set(ID_TO_TAGS, id, current | added)
        self._flush(staging)
        logger.info("Tagged %s: +%s", id, ",".join(sorted(added)))
        return added

    def remove_tags(self, id: str, tags: Iterable[str]) -> set[str]:
        """
        Remove several tags from one annotation as a single atomic change.

        Buckets left empty are deleted.

        Returns:
            The tags that were actually removed
        """
        validate_id(id)
        staging = _Staging(self)
        current = staging.get_set(ID_TO_TAGS, id)
        removed = current & set(tags)
        if not removed:
            return removed
        for tag in sorted(removed):
            bucket = staging.get_set(TAG_TO_IDS, tag)
            bucket.discard(id)
            staging.put_set(TAG_TO_IDS, tag, bucket)
        staging.put_set(ID_TO_TAGS, id, current - removed)
        self._flush(staging)
        logger.info("Untagged %s: -%s", id, ",".join(sorted(removed)))
        return removed

    # -------------------------------------------------------------------------
    # Annotation Records
    # -------------------------------------------------------------------------

    def add_annotations(self, annotations: Iterable[Annotation]) -> int:
        """
        Insert or update canonical annotation records.

        The annotation's own tags seed the index only the first time it is
        indexed; after that the local tag set is authoritative.

        Returns:
            Number of annotations that were new to the index
        """
        staging = _Staging(self)
        added = 0
        seen = 0
        for annotation in annotations:
            seen += 1
            validate_id(annotation.id)
            is_new = staging.get(ANNOTATIONS, annotation.id) is None
            staging.put(
                ANNOTATIONS,
                annotation.id,
                json.dumps(annotation.to_dict(), ensure_ascii=False),
            )
            if not is_new:
                continue
            added += 1
            seed = {tag.strip() for tag in annotation.tags if tag.strip()}
            if not seed:
                continue
            current = staging.get_set(ID_TO_TAGS, annotation.id)
            for tag in seed:
                bucket = staging.get_set(TAG_TO_IDS, tag)
                bucket.add(annotation.id)
                staging.put_set(TAG_TO_IDS, tag, bucket)
            staging.put_set(ID_TO_TAGS, annotation.id, current | seed)
        self._flush(staging)
        if seen:
            logger.info("Indexed %d annotation(s), %d new", seen, added)
        return added

    def remove_annotation(self, id: str) -> bool:
        """
        Delete an annotation and cascade it out of every tag bucket.

        Returns:
            True if the annotation was indexed
        """
        staging = _Staging(self)
        existed = staging.get(ANNOTATIONS, id) is not None
        tags = staging.get_set(ID_TO_TAGS, id)
        for tag in sorted(tags):
            bucket = staging.get_set(TAG_TO_IDS, tag)
            bucket.discard(id)
            staging.put_set(TAG_TO_IDS, tag, bucket)
        if tags:
            staging.put(ID_TO_TAGS, id, None)
            existed = True
        if existed:
            staging.put(ANNOTATIONS, id, None)
        self._flush(staging)
        if existed:
            logger.info("Deleted %s (tags: %s)", id, ",".join(sorted(tags)))
        return existed

    def _to_annotation(self, raw: str) -> Annotation:
        try:
            annotation = Annotation.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            raise StorageError(f"Corrupt annotation record: {raw[:80]!r}") from e
        annotation.tags = sorted(self.tags_of(annotation.id))
        return annotation

    def get_annotation(self, id: str, strict: bool = False) -> Optional[Annotation]:
        """
        Get an annotation by ID, with its tags taken from the index.

        Args:
            id: Annotation identifier
            strict: Raise AnnotationNotFound instead of returning None
        """
        raw = self._read(ANNOTATIONS, id)
        if raw is None:
            if strict:
                raise AnnotationNotFound(id)
            return None
        return self._to_annotation(raw)

    def get_annotations(self, ids: Iterable[str]) -> list[Annotation]:
        """Get several annotations, in the order given. Missing IDs are skipped."""
        results = []
        for id in ids:
            annotation = self.get_annotation(id)
            if annotation is not None:
                results.append(annotation)
        return results

    def list_annotations(self) -> list[Annotation]:
        """All indexed annotations, most recently updated first."""
        cursor = self._execute(f"""
            SELECT data FROM {ANNOTATIONS}
            ORDER BY json_extract(data, '$.updated') DESC, id
        """)
        return [self._to_annotation(row["data"]) for row in cursor.fetchall()]

    def list_untagged(self) -> list[Annotation]:
        """Indexed annotations without any tag."""
        cursor = self._execute(f"""
            SELECT data FROM {ANNOTATIONS}
            WHERE id NOT IN (SELECT id FROM {ID_TO_TAGS})
            ORDER BY json_extract(data, '$.updated') DESC, id
        """)
        return [self._to_annotation(row["data"]) for row in cursor.fetchall()]

    def exists(self, id: str) -> bool:
        """Check if an annotation record exists."""
        return self._read(ANNOTATIONS, id) is not None

    def count(self) -> int:
        """Count indexed annotations."""
        return self._execute(f"SELECT COUNT(*) FROM {ANNOTATIONS}").fetchone()[0]

    def clear(self) -> int:
        """
        Delete everything in the index.

        Returns:
            Number of annotation records deleted
        """
        count = self.count()
        if self._conn is None:
            raise StorageError("Tag index is closed")
        try:
            with self._conn:
                for table in _TABLES:
                    self._conn.execute(f"DELETE FROM {table}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear tag index: {e}") from e
        logger.info("Cleared tag index (%d annotations)", count)
        return count

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
