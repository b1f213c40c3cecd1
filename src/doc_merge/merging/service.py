import asyncio
import logging
import re
import secrets
import time

from .conversion import ConversionChain
from .docx_render import DocxRenderer
from .errors import TemplateNotFoundError, UnsupportedOutputTypeError, UnsupportedTemplateTypeError
from .fields import validate_fields
from .interfaces import BlobStore, JobRepository, TemplateStore
from .markup_render import render_html_bytes
from .models import ALLOWED_OUTPUTS, DocumentFormat, JobStatus, MergeJob, MergeRequest, MergeResult
from .sanitize import sanitize_html_bytes

logger = logging.getLogger(__name__)

UPLOADS_PREFIX = "uploads/"
OUTPUTS_PREFIX = "outputs/"

_DOCX_NAME = re.compile(r"\.docx$", re.IGNORECASE)
_HTML_NAME = re.compile(r"\.html?$", re.IGNORECASE)
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\- ]+")
_LAST_EXTENSION = re.compile(r"\.[^.]+$")


def detect_template_format(stored_name: str) -> DocumentFormat:
    if _DOCX_NAME.search(stored_name):
        return DocumentFormat.DOCX
    if _HTML_NAME.search(stored_name):
        return DocumentFormat.HTML
    raise UnsupportedTemplateTypeError(stored_name)


def resolve_output_type(output_type: str, template_format: DocumentFormat) -> DocumentFormat:
    allowed = ALLOWED_OUTPUTS[template_format]
    try:
        target = DocumentFormat(str(output_type).lower())
    except ValueError:
        target = None
    if target not in allowed:
        raise UnsupportedOutputTypeError(str(output_type), sorted(f.value for f in allowed))
    return target


def safe_filename(name: str) -> str:
    """Drop any directory part and replace runs of unsafe characters with ``_``."""
    base = re.split(r"[\\/]", name)[-1]
    return _UNSAFE_CHARS.sub("_", base)


def safe_stem(stored_name: str) -> str:
    return _LAST_EXTENSION.sub("", safe_filename(stored_name)) or "document"


def output_filename(stored_name: str, target: DocumentFormat, *, now_ms: int | None = None, token: str | None = None) -> str:
    """Build ``<stem>-<epoch ms>-<random hex><ext>`` for a merge output.

    The random suffix keeps two merges of one template within the same
    millisecond from writing to the same file.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    if token is None:
        token = secrets.token_hex(4)
    return f"{safe_stem(stored_name)}-{now_ms}-{token}{target.extension}"


class MergeService:
    """Merges request data into a stored template and records the job.

    Framework-agnostic: storage, persistence and conversion engines are
    injected, so HTTP handlers, scripts and tests share the same pipeline.
    Nothing is written unless every step succeeds, and exactly one job
    record is created per successful attempt.
    """

    def __init__(
        self,
        templates: TemplateStore,
        blobs: BlobStore,
        jobs: JobRepository,
        chain: ConversionChain,
        *,
        docx_renderer: DocxRenderer | None = None,
    ) -> None:
        self._templates = templates
        self._blobs = blobs
        self._jobs = jobs
        self._chain = chain
        self._docx = docx_renderer or DocxRenderer()

    async def merge(self, request: MergeRequest) -> MergeResult:
        try:
            return await self._merge(request)
        except Exception as e:
            logger.error("merge of template %s failed: %s", request.template_id, e)
            raise

    async def _merge(self, request: MergeRequest) -> MergeResult:
        template = await asyncio.to_thread(self._templates.get, request.template_id)
        if template is None:
            raise TemplateNotFoundError(request.template_id)

        source = detect_template_format(template.stored_name)
        target = resolve_output_type(request.output_type, source)
        validate_fields(template.fields, request.data)

        raw = await asyncio.to_thread(self._blobs.get, UPLOADS_PREFIX + template.stored_name)

        if source is DocumentFormat.DOCX:
            merged = await asyncio.to_thread(self._docx.render, raw, request.data)
        else:
            merged = render_html_bytes(raw, request.data)
            if request.untrusted:
                sanitized = sanitize_html_bytes(merged)
                if len(sanitized) != len(merged):
                    logger.warning("Sanitization modified merged HTML for template %s", template.id)
                merged = sanitized

        content = await self._chain.convert(merged, source, target)

        filename = output_filename(template.stored_name, target)
        location = await asyncio.to_thread(self._blobs.put, OUTPUTS_PREFIX + filename, content, target.media_type)

        job = MergeJob(
            template_id=template.id,
            data=request.data,
            output_type=target.value,
            status=JobStatus.SUCCEEDED,
            output_location=location,
            user_id=request.user_id or None,
        )
        job_id = await asyncio.to_thread(self._jobs.create, job)
        logger.info("merge job %s for template %s wrote %s", job_id, template.id, location)
        return MergeResult(job_id=job_id, output_location=location)
