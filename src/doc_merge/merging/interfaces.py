from collections.abc import Iterable
from typing import Protocol

from .models import MergeJob, TemplateRecord


class TemplateStore(Protocol):
    def get(self, template_id: str) -> TemplateRecord | None:
        ...

    def create(self, stored_name: str, fields: Iterable[str]) -> TemplateRecord:
        ...


class BlobStore(Protocol):
    def get(self, key: str) -> bytes:
        """Return the object's bytes; raise FileNotFoundError when absent."""

    def put(self, key: str, content: bytes, content_type: str) -> str:
        """Store the object and return its location."""

    def exists(self, key: str) -> bool:
        ...


class JobRepository(Protocol):
    def create(self, job: MergeJob) -> str:
        """Persist a job record and return its id."""

    def load(self, job_id: str) -> dict[str, object]:
        ...


class OfficeConverter(Protocol):
    async def docx_to_pdf(self, content: bytes) -> bytes:
        ...

    async def html_to_docx(self, content: bytes) -> bytes:
        ...


class HtmlPrinter(Protocol):
    async def html_to_pdf(self, content: bytes) -> bytes:
        """Load the HTML in a headless browser and print it to PDF."""
