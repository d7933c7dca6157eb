"""
Data types for hypotag.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Annotation:
    """
    A Hypothesis annotation, as far as hypotag cares about it.

    The remote service owns the record; hypotag references it by ``id``
    and only ever changes its tags locally.

    Attributes:
        id: Hypothesis annotation ID
        uri: Annotated document URI
        text: The annotation body (the user's note)
        tags: Tags in the order the service returned them
        quotes: Exact text of every quote selector in the target
        created: ISO timestamp when the annotation was created
        updated: ISO timestamp when the annotation was last updated
        user: Account that owns the annotation (acct:name@hypothes.is)
        group: Hypothesis group ID
        title: Title of the annotated document, if known
    """
    id: str
    uri: str = ""
    text: str = ""
    tags: list[str] = field(default_factory=list)
    quotes: list[str] = field(default_factory=list)
    created: str = ""
    updated: str = ""
    user: str = ""
    group: str = ""
    title: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Annotation":
        """Build an Annotation from a Hypothesis API row."""
        quotes = []
        for target in data.get("target") or []:
            for selector in target.get("selector") or []:
                if selector.get("type") == "TextQuoteSelector" and selector.get("exact"):
                    quotes.append(selector["exact"])
        titles = (data.get("document") or {}).get("title") or []
        return cls(
            id=data["id"],
            uri=data.get("uri", ""),
            text=data.get("text") or "",
            tags=list(data.get("tags") or []),
            quotes=quotes,
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            user=data.get("user", ""),
            group=data.get("group", ""),
            title=titles[0] if titles else "",
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Annotation":
        """Inverse of ``to_dict``. Unknown keys are ignored."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict."""
        from dataclasses import asdict
        return asdict(self)


def get_quotes(annotation: Annotation) -> list[str]:
    """Quoted (highlighted) text of an annotation."""
    return list(annotation.quotes)


class Gesture(enum.Enum):
    """The keystroke that ended a selection session."""
    ACCEPT = "accept"
    ADD_TAG = "add-tag"
    REMOVE_TAG = "remove-tag"
    DELETE = "delete"
    EXPORT = "export"
    ABORT = "abort"


class PickerMode(enum.Enum):
    """Whether the tag picker is choosing tags to add or to remove."""
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class SearchItem:
    """
    One row of a selection session.

    Attributes:
        id: Identifier returned when the row is selected
        line: Single-line text that is displayed and matched against
        preview: Text for the preview pane (markdown), if any
    """
    id: str
    line: str
    preview: Optional[str] = None


@dataclass(frozen=True)
class SelectionResult:
    """What a selection session produced."""
    selected: frozenset[str]
    gesture: Gesture
    query: str = ""

    @property
    def aborted(self) -> bool:
        return self.gesture is Gesture.ABORT


def parse_ad_hoc_tags(query: str) -> list[str]:
    """Split a free-text query into tags.

    Splits on commas and trims whitespace. Empty pieces are dropped and
    repeats are removed, keeping the first occurrence.
    """
    tags: list[str] = []
    for piece in query.split(","):
        tag = piece.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_tag(tag: str) -> None:
    """Tags may hold any characters but must not be blank."""
    if not isinstance(tag, str) or not tag.strip():
        raise ValueError(f"Tag must be a non-empty string: {tag!r}")


def validate_id(id: str) -> None:
    if not isinstance(id, str) or not id:
        raise ValueError(f"Annotation ID must be a non-empty string: {id!r}")
