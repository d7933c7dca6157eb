"""
Protocol definitions for the collaborators hypotag talks to.

- SessionRunner: runs one interactive selection session
  (session.run_session on a terminal, scripted runners in tests)
- AnnotationSource: supplies and deletes annotations (HypothesisClient)
- TagPicker: chooses tags for a selection (Tagger.pick_tags)
"""

from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

from .session import KeyBindings
from .types import Annotation, PickerMode, SearchItem, SelectionResult


@runtime_checkable
class SessionRunner(Protocol):
    """Runs a blocking selection session and reports how it ended."""

    def __call__(
        self,
        items: Sequence[SearchItem],
        *,
        exact: bool = True,
        header: str = ...,
        bindings: Optional[KeyBindings] = None,
        preview: bool = False,
    ) -> SelectionResult: ...


@runtime_checkable
class AnnotationSource(Protocol):
    """Where annotations come from."""

    def fetch_annotations(
        self,
        group: Optional[str] = None,
        since: Optional[str] = None,
    ) -> list[Annotation]: ...

    def delete_annotation(self, id: str) -> bool: ...


class TagPicker(Protocol):
    """Chooses which tags to add to or remove from some annotations."""

    def __call__(self, ids: Iterable[str], mode: PickerMode) -> list[str]: ...
