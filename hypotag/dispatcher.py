"""
Turn the outcome of an annotation search into index changes.

    ADD_TAG / ACCEPT → pick tags to add    → add them to every selected annotation
    REMOVE_TAG       → pick tags to remove → remove them from every selected one
    DELETE           → remove the selected annotations from the index
    EXPORT           → collect the distinct URIs of the selection
    ABORT            → nothing

Batches are applied one annotation at a time, in the order the annotations
were shown. A failure on one annotation doesn't undo the others: failures
are collected and raised together as a BatchError at the end.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from typing_extensions import assert_never

from .errors import BatchError, StorageError
from .protocol import TagPicker
from .tag_index import TagIndex
from .types import Annotation, Gesture, PickerMode, SelectionResult, validate_tag

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """What a dispatched search did."""
    gesture: Gesture
    ids: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    uris: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True if the index was modified."""
        if self.gesture is Gesture.DELETE:
            return bool(self.ids)
        if self.gesture in (Gesture.ACCEPT, Gesture.ADD_TAG, Gesture.REMOVE_TAG):
            return bool(self.ids and self.tags)
        return False


class Dispatcher:
    """
    Applies gestures from a search session to a TagIndex.

    Args:
        index: The tag index to read and modify
        pick_tags: Opens a nested session to choose tags for a selection
    """

    def __init__(self, index: TagIndex, pick_tags: TagPicker):
        self._index = index
        self._pick_tags = pick_tags

    # -------------------------------------------------------------------------
    # Tag picker candidates
    # -------------------------------------------------------------------------

    def add_candidates(self, ids: Iterable[str]) -> list[str]:
        """
        Tags worth offering for adding to these annotations.

        Every known tag, except the ones all of the annotations already have.
        """
        ids = list(ids)
        tags = self._index.all_tags()
        if ids:
            shared = set.intersection(*(self._index.tags_of(id) for id in ids))
            tags -= shared
        return sorted(tags)

    def remove_candidates(self, ids: Iterable[str]) -> list[str]:
        """Tags that at least one of these annotations has."""
        present: set[str] = set()
        for id in ids:
            present |= self._index.tags_of(id)
        return sorted(present)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def apply_add_tags(self, ids: Sequence[str], tags: Iterable[str]) -> None:
        """Add tags to each annotation. Raises BatchError on partial failure."""
        tags = list(tags)
        for tag in tags:
            validate_tag(tag)
        failures: dict[str, Exception] = {}
        for id in ids:
            try:
                self._index.add_tags(id, tags)
            except (StorageError, ValueError) as e:
                logger.warning("Failed to tag %s: %s", id, e)
                failures[id] = e
        if failures:
            raise BatchError("add tags to", failures)

    def apply_remove_tags(self, ids: Sequence[str], tags: Iterable[str]) -> None:
        """Remove tags from each annotation. Raises BatchError on partial failure."""
        tags = list(tags)
        failures: dict[str, Exception] = {}
        for id in ids:
            try:
                self._index.remove_tags(id, tags)
            except (StorageError, ValueError) as e:
                logger.warning("Failed to untag %s: %s", id, e)
                failures[id] = e
        if failures:
            raise BatchError("remove tags from", failures)

    def apply_delete(self, ids: Sequence[str]) -> None:
        """Remove annotations from the index. Raises BatchError on partial failure."""
        failures: dict[str, Exception] = {}
        for id in ids:
            try:
                self._index.remove_annotation(id)
            except StorageError as e:
                logger.warning("Failed to delete %s: %s", id, e)
                failures[id] = e
        if failures:
            raise BatchError("delete", failures)

    def apply_export(self, annotations: Iterable[Annotation]) -> list[str]:
        """Distinct URIs of the annotations, sorted."""
        return sorted({a.uri for a in annotations if a.uri})

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(
        self,
        result: SelectionResult,
        annotations: Sequence[Annotation],
    ) -> Outcome:
        """
        Act on the outcome of an annotation search.

        Args:
            result: How the search session ended
            annotations: The annotations that were shown, in display order

        Returns:
            An Outcome describing what was done
        """
        gesture = result.gesture
        if gesture is Gesture.ABORT:
            return Outcome(gesture)
        selected = [a for a in annotations if a.id in result.selected]
        ids = [a.id for a in selected]
        if not ids:
            return Outcome(gesture)

        match gesture:
            case Gesture.ACCEPT | Gesture.ADD_TAG:
                tags = self._pick_tags(ids, PickerMode.ADD)
                if tags:
                    self.apply_add_tags(ids, tags)
                return Outcome(gesture, ids, list(tags))
            case Gesture.REMOVE_TAG:
                tags = self._pick_tags(ids, PickerMode.REMOVE)
                if tags:
                    self.apply_remove_tags(ids, tags)
                return Outcome(gesture, ids, list(tags))
            case Gesture.DELETE:
                self.apply_delete(ids)
                return Outcome(gesture, ids)
            case Gesture.EXPORT:
                return Outcome(gesture, ids, uris=self.apply_export(selected))
            case Gesture.ABORT:
                return Outcome(gesture)
            case _:
                assert_never(gesture)
