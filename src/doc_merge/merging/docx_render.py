"""DOCX rendering through docxtpl with normalized template errors.

Placeholders use ``{{ name }}``; ``{%p for x in items %}`` blocks repeat
their paragraphs per item, and newlines inside substituted strings become
Word line breaks (docxtpl rewrites them into ``<w:br/>``).

Strict rendering raises :class:`TemplateParseError` as soon as a tag
resolves to nothing. Lint rendering resolves missing values to empty strings
so that only structural problems (broken delimiters, bad tag syntax) are
reported; it is used when a template is uploaded.
"""

import io
import logging
import re
import zipfile
from collections.abc import Mapping

from docxtpl import DocxTemplate
from jinja2 import ChainableUndefined, Environment, StrictUndefined, TemplateError, TemplateSyntaxError, UndefinedError

from .errors import TemplateDiagnostic, TemplateParseError

logger = logging.getLogger(__name__)

# XML parts that can carry placeholders.
_TEMPLATED_PART = re.compile(r"^word/(?:document|header\d*|footer\d*|footnotes|endnotes)\.xml$")
_PARAGRAPH = re.compile(r"<w:p([ >])")
_XML_TAG = re.compile(r"<[^>]+>")
_TAG_TEXT = re.compile(r"\{[{%#].*?(?:[}%#]\}|$)")
_UNDEFINED_NAME = re.compile(r"'([^']+)' is undefined|has no attribute '([^']+)'")


class LintUndefined(ChainableUndefined):
    """Missing data during lint: arithmetic, comparisons and calls all yield
    another empty value, so only the template's structure can fail."""

    __slots__ = ()

    def _blank(self, *args: object, **kwargs: object) -> "LintUndefined":
        return LintUndefined()

    def _false(self, other: object) -> bool:
        return False

    __add__ = __radd__ = __sub__ = __rsub__ = __mul__ = __rmul__ = _blank
    __truediv__ = __rtruediv__ = __floordiv__ = __rfloordiv__ = _blank
    __mod__ = __rmod__ = __pow__ = __rpow__ = _blank
    __pos__ = __neg__ = __abs__ = __call__ = _blank
    __lt__ = __le__ = __gt__ = __ge__ = _false

    def __int__(self) -> int:
        return 0

    def __float__(self) -> float:
        return 0.0

    def __round__(self, ndigits: int | None = None) -> int:
        return 0


def _environment(*, strict: bool) -> Environment:
    return Environment(undefined=StrictUndefined if strict else LintUndefined, autoescape=True)


def _nulls_as_undefined(value: object, path: str) -> object:
    """Replace ``None`` leaves with StrictUndefined named by their dot-path.

    A present-but-null value is as absent as a missing key; rendering it must
    fail rather than print "None".
    """
    if value is None:
        return StrictUndefined(name=path)
    if isinstance(value, Mapping):
        return {k: _nulls_as_undefined(v, f"{path}.{k}" if path else str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_nulls_as_undefined(v, path) for v in value]
    return value


def _tag_from_source(source: str, lineno: int | None) -> str | None:
    if not lineno:
        return None
    lines = source.splitlines()
    if lineno > len(lines):
        return None
    text = _XML_TAG.sub("", lines[lineno - 1]).strip()
    m = _TAG_TEXT.search(text)
    return m.group(0) if m else (text[:80] or None)


def _diagnostic(exc: TemplateError, part: str | None = None, source: str | None = None) -> TemplateDiagnostic:
    if isinstance(exc, UndefinedError):
        m = _UNDEFINED_NAME.search(exc.message or "")
        tag = (m.group(1) or m.group(2)) if m else None
        return TemplateDiagnostic(
            id="undefined_tag",
            explanation=f'Tag "{tag}" is undefined' if tag else (exc.message or "undefined tag"),
            tag=tag,
            part=part,
        )
    if isinstance(exc, TemplateSyntaxError):
        return TemplateDiagnostic(
            id="template_syntax",
            explanation=exc.message or str(exc),
            tag=_tag_from_source(source, exc.lineno) if source else None,
            part=part or exc.name,
            offset=exc.lineno,
        )
    return TemplateDiagnostic(id="template_error", explanation=exc.message or str(exc), part=part)


def normalize_template_error(exc: BaseException, part: str | None = None) -> list[TemplateDiagnostic] | None:
    """Flatten a jinja2 error, or a group of them, into diagnostics.

    Returns None when ``exc`` is not a template error, in which case the
    caller should let it propagate.
    """
    if isinstance(exc, TemplateError):
        return [_diagnostic(exc, part, getattr(exc, "source", None))]
    if isinstance(exc, BaseExceptionGroup):
        out: list[TemplateDiagnostic] = []
        for sub in exc.exceptions:
            found = normalize_template_error(sub, part)
            if found is None:
                return None
            out.extend(found)
        return out
    return None


class DocxRenderer:
    def check_syntax(self, template: bytes) -> None:
        """Parse every templated XML part, raising all syntax errors at once.

        A single error is raised as is; several are raised as an ExceptionGroup.
        """
        errors: list[TemplateSyntaxError] = []
        env = _environment(strict=False)
        # Only used for its XML clean-up, which rejoins tags Word split across runs.
        patcher = DocxTemplate(io.BytesIO(template))
        with zipfile.ZipFile(io.BytesIO(template)) as archive:
            for name in archive.namelist():
                if not _TEMPLATED_PART.match(name):
                    continue
                xml = archive.read(name).decode("utf-8")
                source = _PARAGRAPH.sub(r"\n<w:p\1", patcher.patch_xml(xml))
                try:
                    env.parse(source, name=name)
                except TemplateSyntaxError as e:
                    e.source = source
                    errors.append(e)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise ExceptionGroup("template syntax errors", errors)

    def _render(self, template: bytes, data: Mapping[str, object], *, strict: bool) -> bytes:
        try:
            self.check_syntax(template)
        except (TemplateError, ExceptionGroup) as e:
            diagnostics = normalize_template_error(e)
            if diagnostics is None:
                raise
            raise TemplateParseError(diagnostics) from e

        context = _nulls_as_undefined(data, "") if strict else dict(data)
        doc = DocxTemplate(io.BytesIO(template))
        try:
            doc.render(context, jinja_env=_environment(strict=strict), autoescape=True)
        except TemplateError as e:
            part = getattr(doc, "current_rendering_part", None)
            partname = str(part.partname).lstrip("/") if part is not None else None
            raise TemplateParseError(normalize_template_error(e, partname) or []) from e

        out = io.BytesIO()
        doc.save(out)
        return out.getvalue()

    def render(self, template: bytes, data: Mapping[str, object]) -> bytes:
        """Merge ``data`` into a DOCX template; every tag must resolve."""
        return self._render(template, data, strict=True)

    def lint(self, template: bytes) -> list[TemplateDiagnostic]:
        """Return structural problems in a DOCX template, or an empty list."""
        try:
            self._render(template, {}, strict=False)
        except TemplateParseError as e:
            return e.diagnostics
        except Exception as e:  # noqa: BLE001 - unreadable uploads are reported, not raised
            logger.debug("DOCX lint failed outside the template engine", exc_info=True)
            return [TemplateDiagnostic(id="unknown_error", explanation=str(e))]
        return []
