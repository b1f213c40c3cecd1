"""Upload-time checks for HTML templates.

Unlike sanitization this never modifies the template; it reports blocking
errors (script vectors, unescaped insertion) and advisory warnings (remote
assets, missing print CSS).
"""

import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

BAD_TAGS = frozenset({"script", "iframe", "object", "embed"})

_ON_ATTR = re.compile(r"^on\w+", re.IGNORECASE)
_JS_URL = re.compile(r"^\s*javascript:", re.IGNORECASE)
_REMOTE = re.compile(r"^https?://", re.IGNORECASE)
_TRIPLE = re.compile(r"{{{\s*[^}]+\s*}}}")
_PAGE_RULE = re.compile(r"@page\b")
_PRINT_MEDIA = re.compile(r"""media\s*=\s*["']print["']""", re.IGNORECASE)


@dataclass
class LintReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def has_print_css(html: str) -> bool:
    return bool(_PAGE_RULE.search(html) or _PRINT_MEDIA.search(html))


def lint_html(html: str, *, allow_remote: bool = False, require_print_css: bool = False) -> LintReport:
    report = LintReport()
    if _TRIPLE.search(html):
        report.errors.append("Disallowed {{{ triple braces }}} (unescaped HTML)")

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(True):
        name = tag.name.lower()
        if name in BAD_TAGS:
            report.errors.append(f"Disallowed <{name}> tag")
        for attr, value in tag.attrs.items():
            if isinstance(value, list):
                value = " ".join(value)
            value = str(value or "")
            if _ON_ATTR.match(attr):
                report.errors.append(f'Disallowed attr "{attr}" on <{name}>')
            if attr.lower() == "href" and _JS_URL.match(value):
                report.errors.append(f"javascript: URL on <{name}>")
            if not allow_remote and _REMOTE.match(value):
                report.warnings.append(f'Remote ref: {attr}="{value}"')

    if require_print_css and not has_print_css(html):
        report.warnings.append('No print CSS detected (@page or media="print").')
    return report


def lint_html_bytes(content: bytes, **options: bool) -> LintReport:
    return lint_html(content.decode("utf-8", errors="replace"), **options)
