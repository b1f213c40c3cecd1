"""Logic-less HTML template rendering (Mustache syntax).

Values are HTML-escaped on substitution, and dotted names such as
``{{client.name}}`` are resolved by the engine against nested mappings.
Missing values render as empty strings; the field contract has already been
checked before rendering.
"""

from collections.abc import Mapping

import chevron
from chevron.tokenizer import ChevronError

from .errors import TemplateDiagnostic, TemplateParseError


def render_html(template: str, data: Mapping[str, object]) -> str:
    try:
        return chevron.render(template=template, data=dict(data))
    except ChevronError as e:
        raise TemplateParseError([TemplateDiagnostic(id="markup_syntax", explanation=str(e))]) from e


def render_html_bytes(template: bytes, data: Mapping[str, object]) -> bytes:
    return render_html(template.decode("utf-8", errors="replace"), data).encode("utf-8")
