from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DocumentFormat(str, Enum):
    DOCX = "docx"
    HTML = "html"
    PDF = "pdf"

    @property
    def extension(self) -> str:
        return "." + self.value

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self]


MEDIA_TYPES: dict[DocumentFormat, str] = {
    DocumentFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    DocumentFormat.HTML: "text/html",
    DocumentFormat.PDF: "application/pdf",
}

# Output formats each template format may be merged into.
ALLOWED_OUTPUTS: dict[DocumentFormat, frozenset[DocumentFormat]] = {
    DocumentFormat.DOCX: frozenset({DocumentFormat.DOCX, DocumentFormat.PDF}),
    DocumentFormat.HTML: frozenset({DocumentFormat.DOCX, DocumentFormat.HTML, DocumentFormat.PDF}),
}


class JobStatus:
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TemplateRecord:
    id: str
    stored_name: str
    fields: frozenset[str] = frozenset()


@dataclass
class MergeRequest:
    template_id: str
    data: dict[str, Any]
    output_type: str
    user_id: str | None = None
    # Set when the payload arrived from an unauthenticated external caller (webhook).
    untrusted: bool = False


@dataclass
class MergeJob:
    template_id: str
    data: dict[str, Any]
    output_type: str
    status: str
    output_location: str
    user_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "template_id": self.template_id,
            "data": self.data,
            "output_type": self.output_type,
            "status": self.status,
            "output_location": self.output_location,
            "user_id": self.user_id,
            "error": self.error,
        }


@dataclass(frozen=True)
class MergeResult:
    job_id: str
    output_location: str


@dataclass
class TemplateProfile:
    """What template intake learned about an uploaded template."""

    template_id: str
    stored_name: str
    format: DocumentFormat
    fields: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
