"""Structural removal of script vectors from merged HTML.

Sanitization is applied to output built from untrusted payloads. It never
raises: anything it cannot make sense of is left to the parser's recovery.
Remote (non-script) resource references are kept; those are a lint concern.
"""

import re

from bs4 import BeautifulSoup, Doctype

DOCTYPE = "<!DOCTYPE html>\n"

DISALLOWED_TAGS = ("script", "iframe", "object", "embed")
URL_ATTRS = ("href", "src")

_EVENT_ATTR = re.compile(r"^on", re.IGNORECASE)
_SCRIPT_URL = re.compile(r"^\s*(?:java|vb)script:", re.IGNORECASE)


def _is_html_import(tag) -> bool:
    return tag.name == "link" and "import" in [r.lower() for r in tag.get_attribute_list("rel") if r]


def sanitize_html(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all(DISALLOWED_TAGS):
        tag.extract()
    for tag in soup.find_all(_is_html_import):
        tag.extract()

    for tag in soup.find_all(True):
        for name in list(tag.attrs):
            value = tag.attrs[name]
            if isinstance(value, list):
                value = " ".join(value)
            lowered = name.lower()
            if _EVENT_ATTR.match(lowered):
                del tag.attrs[name]
            elif lowered in URL_ATTRS and _SCRIPT_URL.match(str(value or "")):
                del tag.attrs[name]

    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()

    return DOCTYPE + str(soup).strip()


def sanitize_html_bytes(content: bytes) -> bytes:
    """Sanitize UTF-8 encoded HTML; undecodable bytes are replaced, not rejected."""
    return sanitize_html(content.decode("utf-8", errors="replace")).encode("utf-8")
