"""
Markdown rendering of annotations for the search preview pane.

Templates use ``{{name}}`` placeholders, filled from AnnotationTemplate.
"""

import re
from dataclasses import asdict, dataclass

from .errors import TemplateError
from .types import Annotation, get_quotes

DEFAULT_TEMPLATE = """### {{title}}

{{quote}}

{{text}}

{{tag_line}}

[See in context]({{incontext}}) · {{uri}}
_{{updated}}_
"""

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass
class AnnotationTemplate:
    """Values available to an annotation template."""
    id: str
    uri: str
    title: str
    text: str
    quote: str
    tags: str
    tag_line: str
    created: str
    updated: str
    user: str
    group: str
    incontext: str

    @classmethod
    def from_annotation(cls, annotation: Annotation) -> "AnnotationTemplate":
        quotes = get_quotes(annotation)
        quote = "\n>\n".join(
            "\n".join(f"> {line}" for line in q.splitlines()) for q in quotes
        )
        return cls(
            id=annotation.id,
            uri=annotation.uri,
            title=annotation.title or annotation.uri,
            text=annotation.text,
            quote=quote,
            tags=", ".join(annotation.tags),
            tag_line=" ".join(f"#{tag}" for tag in annotation.tags),
            created=annotation.created,
            updated=annotation.updated,
            user=annotation.user,
            group=annotation.group,
            incontext=f"https://hyp.is/{annotation.id}",
        )


def placeholders(template: str) -> set[str]:
    """Names used in a template."""
    return {m.group(1) for m in _PLACEHOLDER_RE.finditer(template)}


def validate_template(template: str) -> None:
    """Raise TemplateError if the template uses unknown names."""
    known = set(AnnotationTemplate.__dataclass_fields__)
    unknown = placeholders(template) - known
    if unknown:
        raise TemplateError(
            f"Unknown template field(s): {', '.join(sorted(unknown))}. "
            f"Available: {', '.join(sorted(known))}"
        )


def render(template: str, annotation: Annotation) -> str:
    """Render one annotation to markdown."""
    validate_template(template)
    values = asdict(AnnotationTemplate.from_annotation(annotation))
    return _PLACEHOLDER_RE.sub(lambda m: str(values[m.group(1)]), template)
