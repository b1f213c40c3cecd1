import asyncio
import logging
from typing import Any

from fastapi import Body, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from doc_merge import __version__
from doc_merge.config import Settings
from doc_merge.log import configure_logging
from doc_merge.merging import (
    ChromiumPrinter,
    ConversionChain,
    MergeError,
    MergeRequest,
    MergeService,
    SofficeConverter,
    TemplateIntake,
)
from doc_merge.merging.adapters import LocalBlobStore, LocalJobRepository, LocalTemplateStore
from doc_merge.merging.interfaces import BlobStore, JobRepository, TemplateStore
from doc_merge.merging.intake import content_type_for, download_name_for
from doc_merge.merging.service import UPLOADS_PREFIX

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Document Merge Service",
    version=__version__,
    description=(
        "RESTful API for merging JSON data into stored DOCX and HTML templates "
        "and delivering the result as DOCX, HTML or PDF."
    ),
)

SETTINGS = Settings.from_env()
MAX_WEBHOOK_ROWS = 1000

TEMPLATES: TemplateStore | None = None
BLOBS: BlobStore | None = None
JOBS: JobRepository | None = None
INTAKE: TemplateIntake | None = None
SERVICE: MergeService | None = None


class MergeBody(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    outputType: str = "docx"
    userId: str | None = None


def build_components(settings: Settings) -> tuple[TemplateStore, BlobStore, JobRepository, TemplateIntake, MergeService]:
    """Wire the local adapters and conversion engines described by ``settings``."""
    templates = LocalTemplateStore(str(settings.templates_dir))
    blobs = LocalBlobStore(str(settings.data_dir))
    jobs = LocalJobRepository(str(settings.jobs_dir))
    chain = ConversionChain(
        SofficeConverter(settings.soffice_bin, timeout=settings.convert_timeout_sec),
        ChromiumPrinter(page_format=settings.pdf_page_format, timeout=settings.convert_timeout_sec),
    )
    intake = TemplateIntake(templates, blobs)
    service = MergeService(templates, blobs, jobs, chain)
    return templates, blobs, jobs, intake, service


@app.exception_handler(MergeError)
async def _merge_error_handler(request: Request, exc: MergeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.exception_handler(OSError)
async def _storage_error_handler(request: Request, exc: OSError) -> JSONResponse:
    logger.error("storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": {"code": "storage_error", "message": str(exc)}})


@app.on_event("startup")
async def _startup() -> None:
    configure_logging(SETTINGS.log_level)
    for d in (SETTINGS.uploads_dir, SETTINGS.outputs_dir, SETTINGS.templates_dir, SETTINGS.jobs_dir):
        d.mkdir(parents=True, exist_ok=True)
    global TEMPLATES, BLOBS, JOBS, INTAKE, SERVICE
    TEMPLATES, BLOBS, JOBS, INTAKE, SERVICE = build_components(SETTINGS)
    logger.info("document merge service ready, data dir %s", SETTINGS.data_dir)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/templates", status_code=status.HTTP_201_CREATED)
async def upload_template(file: UploadFile = File(...)) -> JSONResponse:
    """Register an uploaded .docx or .html template.

    The template is linted before it is stored; placeholders found in its
    text become the fields every merge must supply.
    """
    assert INTAKE is not None
    content = await file.read()
    profile = await INTAKE.register(file.filename or "upload", content)
    body = {
        "template_id": profile.template_id,
        "format": profile.format.value,
        "fields": profile.fields,
        "warnings": profile.warnings,
        "links": {
            "file": f"/templates/{profile.template_id}/file",
            "merge": f"/templates/{profile.template_id}/merge",
        },
    }
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body)


@app.get("/templates/{template_id}/file")
async def get_template_file(template_id: str) -> Response:
    assert TEMPLATES is not None and BLOBS is not None
    record = await asyncio.to_thread(TEMPLATES.get, template_id)
    if record is None:
        raise HTTPException(status_code=404, detail={"code": "template_not_found", "message": "template not found"})
    content = await asyncio.to_thread(BLOBS.get, UPLOADS_PREFIX + record.stored_name)
    headers = {"Content-Disposition": f'attachment; filename="{download_name_for(record.stored_name)}"'}
    return Response(content=content, media_type=content_type_for(record.stored_name), headers=headers)


@app.post("/templates/{template_id}/merge", status_code=status.HTTP_201_CREATED)
async def merge_template(template_id: str, body: MergeBody) -> JSONResponse:
    """Merge data from an authenticated caller into a template."""
    assert SERVICE is not None
    result = await SERVICE.merge(
        MergeRequest(
            template_id=template_id,
            data=body.data,
            output_type=body.outputType,
            user_id=body.userId,
        )
    )
    return _created(result.job_id, result.output_location)


@app.post("/webhooks/templates/{template_id}/merge", status_code=status.HTTP_201_CREATED)
async def merge_template_webhook(
    template_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    output_type: str = Query("pdf", alias="outputType"),
) -> JSONResponse:
    """Merge data pushed by an external system.

    The body is one data object or an array of rows, each merged as its own
    job. The payload is untrusted, so merged HTML is sanitized before it is
    delivered or converted.
    """
    assert SERVICE is not None
    rows = payload if isinstance(payload, list) else [payload]
    if len(rows) > MAX_WEBHOOK_ROWS:
        raise HTTPException(
            status_code=413,
            detail={"code": "payload_too_large", "message": f"too many rows: {len(rows)} > {MAX_WEBHOOK_ROWS}"},
        )

    jobs = []
    for row in rows:
        result = await SERVICE.merge(
            MergeRequest(template_id=template_id, data=row, output_type=output_type, untrusted=True)
        )
        jobs.append({"job_id": result.job_id, "output_location": result.output_location})
    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"count": len(rows), "jobs": jobs})


@app.get("/jobs/{job_id}")
async def get_job(job_id: str) -> JSONResponse:
    assert JOBS is not None
    try:
        job = await asyncio.to_thread(JOBS.load, job_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "job not found"})
    return JSONResponse(content=job)


def _created(job_id: str, location: str) -> JSONResponse:
    body = {"job_id": job_id, "output_location": location, "links": {"self": f"/jobs/{job_id}"}}
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body, headers={"Location": f"/jobs/{job_id}"})


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at HOST:PORT (default 0.0.0.0:8080); RELOAD=false disables auto-reload.
    """
    import uvicorn

    uvicorn.run("doc_merge.webapi:app", host=SETTINGS.host, port=SETTINGS.port, reload=SETTINGS.reload)


if __name__ == "__main__":
    run()
