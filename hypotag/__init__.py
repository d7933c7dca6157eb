"""
hypotag

Local tagging for Hypothesis annotations: a bidirectional tag index plus an
interactive terminal search that tags, untags, deletes or exports what you
select.

Quick Start:
    from hypotag import Tagger

    with Tagger() as tg:
        tg.sync()
        tg.search(tg.annotations(tags=["research"]), fuzzy=True)

CLI Usage:
    hypotag sync
    hypotag search --fuzzy
    hypotag tags

Environment Variables:
    HYPOTAG_CONFIG      - Directory holding hypotag.toml (default ~/.hypotag)
    HYPOTAG_STORE_PATH  - Directory holding the tag index
    HYPOTAG_VERBOSE     - Set to 1 for debug logging
    HYPOTHESIS_NAME     - Hypothesis username
    HYPOTHESIS_KEY      - Hypothesis API key
"""

from .api import Tagger
from .dispatcher import Dispatcher, Outcome
from .errors import (
    AnnotationNotFound,
    BatchError,
    HypotagError,
    NotFoundError,
    SearchError,
    StorageError,
    TagNotFound,
)
from .tag_index import TagIndex
from .types import Annotation, Gesture, PickerMode, SearchItem, SelectionResult

__version__ = "0.1.0"
__all__ = [
    "Tagger",
    "TagIndex",
    "Dispatcher",
    "Outcome",
    "Annotation",
    "Gesture",
    "PickerMode",
    "SearchItem",
    "SelectionResult",
    "HypotagError",
    "StorageError",
    "SearchError",
    "NotFoundError",
    "TagNotFound",
    "AnnotationNotFound",
    "BatchError",
]
