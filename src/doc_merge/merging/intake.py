"""Template upload: type detection, linting and placeholder discovery.

Registering a template rejects it when the linter finds blocking problems,
stores the original bytes, and records the placeholder names found in its
text. Those names become the field contract checked at merge time.
"""

import asyncio
import io
import logging
import re
import secrets
import time

from bs4 import BeautifulSoup
from docx import Document

from .docx_render import DocxRenderer
from .errors import TemplateLintError, UnsupportedTemplateTypeError
from .interfaces import BlobStore, TemplateStore
from .lint import lint_html_bytes
from .models import DocumentFormat, TemplateProfile
from .service import UPLOADS_PREFIX, detect_template_format, safe_filename

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"

_PLACEHOLDER = re.compile(r"{{\s*([\w.]+)\s*}}")
_FOR_TAG = re.compile(r"{%-?[a-z]?\s*for\s+(\w+)(?:\s*,\s*(\w+))?\s+in\s+([\w.]+)")
_STORED_PREFIX = re.compile(r"^\d+-(?:[0-9a-f]{8}-)?")


def extract_placeholders(text: str) -> list[str]:
    """Return the distinct ``{{ name }}`` placeholders in ``text``, in order.

    Names bound by a ``{% for x in items %}`` loop are not fields of their
    own; the iterated name (``items``) is reported instead.
    """
    loop_vars: set[str] = set()
    found: list[str] = []
    for m in _FOR_TAG.finditer(text):
        loop_vars.update(v for v in (m.group(1), m.group(2)) if v)
        found.append(m.group(3))
    found.extend(_PLACEHOLDER.findall(text))
    return list(dict.fromkeys(name for name in found if name.split(".", 1)[0] not in loop_vars))


def detect_upload_format(filename: str, content: bytes) -> DocumentFormat:
    fmt = detect_template_format(filename)
    if fmt is DocumentFormat.DOCX and not content.startswith(ZIP_MAGIC):
        raise UnsupportedTemplateTypeError(filename)
    return fmt


def extract_text(content: bytes, fmt: DocumentFormat) -> str:
    if fmt is DocumentFormat.DOCX:
        doc = Document(io.BytesIO(content))
        lines = [p.text for p in doc.paragraphs]
        for table in doc.tables:
            for row in table.rows:
                lines.extend(cell.text for cell in row.cells)
        for section in doc.sections:
            for part in (section.header, section.footer):
                lines.extend(p.text for p in part.paragraphs)
        return "\n".join(lines)
    soup = BeautifulSoup(content.decode("utf-8", errors="replace"), "html.parser")
    return (soup.body or soup).get_text()


def stored_template_name(filename: str) -> str:
    return f"{time.time_ns() // 1_000_000}-{secrets.token_hex(4)}-{safe_filename(filename)}"


def download_name_for(stored_name: str) -> str:
    return _STORED_PREFIX.sub("", stored_name)


def content_type_for(name: str) -> str:
    try:
        return detect_template_format(name).media_type
    except UnsupportedTemplateTypeError:
        return "application/octet-stream"


class TemplateIntake:
    def __init__(
        self,
        templates: TemplateStore,
        blobs: BlobStore,
        *,
        docx_renderer: DocxRenderer | None = None,
        allow_remote: bool = False,
        require_print_css: bool = False,
    ) -> None:
        self._templates = templates
        self._blobs = blobs
        self._docx = docx_renderer or DocxRenderer()
        self._allow_remote = allow_remote
        self._require_print_css = require_print_css

    async def register(self, filename: str, content: bytes) -> TemplateProfile:
        fmt = detect_upload_format(filename, content)

        warnings: list[str] = []
        if fmt is DocumentFormat.HTML:
            try:
                content.decode("utf-8")
            except UnicodeDecodeError as e:
                raise TemplateLintError("HTML template is not valid UTF-8", [str(e)]) from e
            report = lint_html_bytes(
                content, allow_remote=self._allow_remote, require_print_css=self._require_print_css
            )
            warnings = report.warnings
            if warnings:
                logger.warning("HTML template warnings for %s: %s", filename, warnings)
            if report.errors:
                raise TemplateLintError("Template blocked by HTML linter", list(report.errors))
        else:
            diagnostics = await asyncio.to_thread(self._docx.lint, content)
            if diagnostics:
                raise TemplateLintError("Template has invalid delimiters or tags", list(diagnostics))

        text = await asyncio.to_thread(extract_text, content, fmt)
        fields = extract_placeholders(text)

        stored_name = stored_template_name(filename)
        await asyncio.to_thread(self._blobs.put, UPLOADS_PREFIX + stored_name, content, fmt.media_type)
        record = await asyncio.to_thread(self._templates.create, stored_name, fields)
        logger.info("registered template %s (%s) with fields %s", record.id, stored_name, fields)
        return TemplateProfile(
            template_id=record.id,
            stored_name=stored_name,
            format=fmt,
            fields=fields,
            warnings=warnings,
        )
