"""
Shared pytest fixtures for hypotag tests.

Provides a real TagIndex in a temporary directory, sample annotations, and
scripted session runners so nothing needs a terminal or the network.
"""

from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import pytest

from hypotag.config import HypotagConfig
from hypotag.session import SelectionState, handle_key
from hypotag.tag_index import TagIndex
from hypotag.template import DEFAULT_TEMPLATE
from hypotag.types import Annotation, Gesture, SearchItem, SelectionResult


def build_annotation(id: str, tags: Sequence[str] = (), uri: Optional[str] = None,
                    text: str = "", quote: str = "", updated: str = "") -> Annotation:
    """Build an annotation with sensible defaults."""
    return Annotation(
        id=id,
        uri=uri if uri is not None else f"https://example.com/{id}",
        text=text or f"Note on {id}",
        tags=list(tags),
        quotes=[quote] if quote else [f"Quoted text from {id}"],
        updated=updated or "2024-01-01T00:00:00.000000+00:00",
        user="acct:alice@hypothes.is",
    )


def script_keys(*pressed) -> Callable[[Sequence[SearchItem], bool], SelectionResult]:
    """
    Script a session as a sequence of keystrokes.

    Each key is a curses key code or a string; strings longer than one
    character are typed one character at a time. The script must end on a
    key that terminates the session.
    """
    def play(items: Sequence[SearchItem], exact: bool, bindings) -> SelectionResult:
        state = SelectionState(items, exact=exact)
        for key in pressed:
            chars = list(key) if isinstance(key, str) and len(key) > 1 else [key]
            for ch in chars:
                gesture = handle_key(state, ch, bindings)
                if gesture is not None:
                    return state.result(gesture)
        raise AssertionError("keystroke script did not end the session")
    return play


class ScriptedRunner:
    """
    Session runner that replays canned outcomes instead of using a terminal.

    Each queued entry is either a SelectionResult, returned as is, or a
    script from script_keys(), played against the items the session was given.
    """

    def __init__(self, *results: Union[SelectionResult, Callable]):
        self.results = list(results)
        self.calls: list[dict] = []

    def __call__(self, items, *, exact=True, header="", bindings=None, preview=False):
        self.calls.append({
            "items": list(items),
            "exact": exact,
            "header": header,
            "bindings": bindings,
            "preview": preview,
        })
        if not self.results:
            raise AssertionError("unexpected session")
        result = self.results.pop(0)
        if callable(result):
            return result(items, exact, bindings)
        return result

    @property
    def shown(self) -> list[list[str]]:
        """IDs shown in each session, in display order."""
        return [[item.id for item in call["items"]] for call in self.calls]


def build_selection(*ids: str, gesture: Gesture = Gesture.ACCEPT, query: str = "") -> SelectionResult:
    return SelectionResult(frozenset(ids), gesture, query)


@pytest.fixture
def index(tmp_path: Path):
    """An empty TagIndex on disk."""
    idx = TagIndex(tmp_path / "hypotag.db")
    yield idx
    idx.close()


@pytest.fixture
def config(tmp_path: Path) -> HypotagConfig:
    """A config with the default template, stored under tmp_path."""
    return HypotagConfig(path=tmp_path / "config", annotation_template=DEFAULT_TEMPLATE)


@pytest.fixture
def annotations() -> list[Annotation]:
    """Three annotations: a1={t1,t2}, a2={t1}, a3 untagged."""
    return [
        build_annotation("a1", ["t1", "t2"], uri="https://example.com/one"),
        build_annotation("a2", ["t1"], uri="https://example.com/two"),
        build_annotation("a3", [], uri="https://example.com/one"),
    ]


@pytest.fixture
def seeded(index: TagIndex, annotations: list[Annotation]) -> TagIndex:
    """The index with the sample annotations loaded."""
    index.add_annotations(annotations)
    return index


@pytest.fixture
def make_annotation():
    """Factory for annotations; see build_annotation."""
    return build_annotation


@pytest.fixture
def keys():
    """Factory for keystroke-scripted sessions; see script_keys."""
    return script_keys


@pytest.fixture
def selection():
    """Factory for canned SelectionResults; see build_selection."""
    return build_selection


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    """A session runner with nothing queued yet."""
    return ScriptedRunner()
