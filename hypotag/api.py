"""
Core API for hypotag.

Tagger ties the pieces together:
- sync(): fetch annotations from Hypothesis → index them
- search(): interactive search → dispatch the chosen action
- tag() / untag() / delete() / uris(): the same actions without a terminal
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import HypotagConfig, load_or_create_config, save_config
from .dispatcher import Dispatcher, Outcome
from .errors import ConfigError
from .protocol import AnnotationSource, SessionRunner
from .session import (
    ANNOTATION_BINDINGS,
    ANNOTATION_HEADER,
    NAVIGATION_HELP,
    PICKER_BINDINGS,
    run_session,
)
from .tag_index import INDEX_FILENAME, TagIndex
from .template import render
from .types import (
    Annotation,
    Gesture,
    PickerMode,
    SearchItem,
    get_quotes,
    parse_ad_hoc_tags,
)

logger = logging.getLogger(__name__)


def _one_line(text: str) -> str:
    return text.replace("\n", " ").strip()


def search_line(annotation: Annotation) -> str:
    """Quote, note, tags and URI of an annotation on a single line."""
    return "{} | {} |{}| {}".format(
        _one_line(" ".join(get_quotes(annotation))),
        _one_line(annotation.text),
        "|".join(annotation.tags),
        annotation.uri,
    )


class Tagger:
    """
    Local tagging of Hypothesis annotations.

    Args:
        store_path: Directory for the tag index. Defaults to the configured one.
        config: Pre-loaded HypotagConfig (skips filesystem config discovery)
        index: Injected TagIndex (skips opening the default database)
        source: Injected annotation source (skips building a HypothesisClient)
        runner: Runs selection sessions (default: the curses session)
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[HypotagConfig] = None,
        index: Optional[TagIndex] = None,
        source: Optional[AnnotationSource] = None,
        runner: Optional[SessionRunner] = None,
    ) -> None:
        self._config = config if config is not None else load_or_create_config()
        self._store_path = (
            Path(store_path).resolve() if store_path is not None else self._config.store_path
        )
        self._ops_log_handler = None
        if index is None:
            from .logging_config import configure_ops_log
            index = TagIndex(self._store_path / INDEX_FILENAME)
            self._ops_log_handler = configure_ops_log(self._store_path)
        self._index = index
        self._source = source
        self._runner: SessionRunner = runner or run_session
        self._dispatcher = Dispatcher(self._index, self.pick_tags)

    @property
    def index(self) -> TagIndex:
        return self._index

    @property
    def config(self) -> HypotagConfig:
        """Public access to configuration."""
        return self._config

    # -------------------------------------------------------------------------
    # Remote
    # -------------------------------------------------------------------------

    def _get_source(self) -> AnnotationSource:
        if self._source is None:
            from .hypothesis import HypothesisClient
            username, key = self._config.credentials()
            if not username or not key:
                raise ConfigError(
                    "Hypothesis credentials are not set. "
                    "Run 'hypotag config auth' or set HYPOTHESIS_NAME and HYPOTHESIS_KEY."
                )
            self._source = HypothesisClient(username, key)
        return self._source

    def sync(self, group: Optional[str] = None) -> tuple[int, int]:
        """
        Fetch annotations updated since the last sync and index them.

        Returns:
            (annotations fetched, annotations new to the index)
        """
        group = group or self._config.hypothesis_group
        annotations = self._get_source().fetch_annotations(
            group=group, since=self._config.last_sync
        )
        added = self._index.add_annotations(annotations)
        if annotations:
            self._config.last_sync = max(a.updated for a in annotations)
            save_config(self._config)
        logger.info("Synced %d annotation(s), %d new", len(annotations), added)
        return len(annotations), added

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def annotations(
        self,
        tags: Optional[Iterable[str]] = None,
        untagged: bool = False,
    ) -> list[Annotation]:
        """
        Indexed annotations, optionally only those with all the given tags.

        Raises:
            TagNotFound: If one of the tags isn't in the index
            ValueError: If tags are given together with untagged
        """
        tags = list(tags or [])
        if untagged:
            if tags:
                raise ValueError("Can't filter by tags and ask for untagged annotations at once")
            return self._index.list_untagged()
        annotations = self._index.list_annotations()
        if not tags:
            return annotations
        ids = set.intersection(
            *(self._index.annotations_with_tag(tag, strict=True) for tag in tags)
        )
        return [a for a in annotations if a.id in ids]

    def list_tags(self) -> list[tuple[str, int]]:
        """(tag, number of annotations) pairs, sorted by tag."""
        counts = self._index.tag_counts()
        return [(tag, counts[tag]) for tag in sorted(counts)]

    def uris(self, tags: Optional[Iterable[str]] = None) -> list[str]:
        """Distinct URIs of the (optionally tag-filtered) annotations."""
        return self._dispatcher.apply_export(self.annotations(tags))

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def _search_items(self, annotations: Sequence[Annotation]) -> list[SearchItem]:
        """Display rows for annotations. Rendering failures propagate."""
        if not self._config.has_template():
            self._config.set_annotation_template()
        template = self._config.annotation_template
        return [
            SearchItem(id=a.id, line=search_line(a), preview=render(template, a))
            for a in annotations
        ]

    def search(self, annotations: Sequence[Annotation], fuzzy: bool = False) -> Outcome:
        """
        Search annotations interactively and act on the selection.

        Args:
            annotations: Annotations to search through
            fuzzy: Fuzzy matching instead of exact substrings

        Returns:
            What was done (gesture, affected IDs, tags or URIs)
        """
        items = self._search_items(annotations)
        result = self._runner(
            items,
            exact=not fuzzy,
            header=ANNOTATION_HEADER,
            bindings=ANNOTATION_BINDINGS,
            preview=True,
        )
        return self._dispatcher.dispatch(result, annotations)

    def pick_tags(self, ids: Iterable[str], mode: PickerMode) -> list[str]:
        """
        Choose tags for annotations in a nested session.

        When adding and nothing is selected, the typed text is split on
        commas into new tags.
        """
        ids = list(ids)
        if mode is PickerMode.ADD:
            candidates = self._dispatcher.add_candidates(ids)
            message = "Select tags or create new comma-separated tags to add"
        else:
            candidates = self._dispatcher.remove_candidates(ids)
            message = "Select tags to remove"
        header = f"{message}\n{NAVIGATION_HELP}, Enter to accept"
        result = self._runner(
            [SearchItem(id=tag, line=tag) for tag in candidates],
            exact=True,
            header=header,
            bindings=PICKER_BINDINGS,
            preview=False,
        )
        if result.gesture is not Gesture.ACCEPT:
            return []
        if not result.selected and mode is PickerMode.ADD:
            return parse_ad_hoc_tags(result.query)
        return [tag for tag in candidates if tag in result.selected]

    def search_group(self, annotations: Sequence[Annotation], fuzzy: bool = False) -> set[str]:
        """
        Pick annotations without acting on them.

        Returns:
            IDs of the chosen annotations (empty if aborted)
        """
        items = self._search_items(annotations)
        result = self._runner(
            items,
            exact=not fuzzy,
            header=f"{NAVIGATION_HELP}\nEnter to select",
            bindings=PICKER_BINDINGS,
            preview=True,
        )
        if result.gesture is not Gesture.ACCEPT:
            return set()
        return set(result.selected)

    # -------------------------------------------------------------------------
    # Direct actions
    # -------------------------------------------------------------------------

    def tag(self, ids: Sequence[str], tags: Iterable[str]) -> None:
        """
        Add tags to indexed annotations.

        Raises:
            AnnotationNotFound: If an ID isn't indexed (nothing is changed)
            BatchError: If some annotations could not be updated
        """
        for id in ids:
            self._index.get_annotation(id, strict=True)
        self._dispatcher.apply_add_tags(ids, tags)

    def untag(self, ids: Sequence[str], tags: Iterable[str]) -> None:
        """Remove tags from indexed annotations. Same errors as tag()."""
        for id in ids:
            self._index.get_annotation(id, strict=True)
        self._dispatcher.apply_remove_tags(ids, tags)

    def delete(self, ids: Sequence[str], remote: bool = False) -> None:
        """
        Remove annotations from the index.

        Args:
            ids: Annotations to remove
            remote: Also delete them on Hypothesis first

        Raises:
            AnnotationNotFound: If an ID isn't indexed (nothing is changed)
            RemoteError: If Hypothesis refuses a deletion. IDs before it are
                gone from both places, the rest from neither.
        """
        for id in ids:
            self._index.get_annotation(id, strict=True)
        if not remote:
            self._dispatcher.apply_delete(ids)
            return
        source = self._get_source()
        for id in ids:
            source.delete_annotation(id)
            logger.info("Deleted %s on Hypothesis", id)
            self._dispatcher.apply_delete([id])

    def clear(self) -> int:
        """Empty the index and forget the last sync time."""
        count = self._index.clear()
        if self._config.last_sync is not None:
            self._config.last_sync = None
            save_config(self._config)
        return count

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the index and detach the ops log."""
        if self._index is not None:
            self._index.close()
        if self._ops_log_handler is not None:
            logging.getLogger("hypotag").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False
