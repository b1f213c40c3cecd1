"""
Domain layer for template merging.
Provides gateway interfaces, the renderers and converters, and the services
that orchestrate template intake and merge jobs, so front-ends (HTTP or
others) can share the same core logic.
"""

from .conversion import ChromiumPrinter, ConversionChain, SofficeConverter
from .errors import MergeError, MissingFieldsError, TemplateParseError
from .interfaces import BlobStore, HtmlPrinter, JobRepository, OfficeConverter, TemplateStore
from .intake import TemplateIntake
from .models import DocumentFormat, JobStatus, MergeJob, MergeRequest, MergeResult, TemplateRecord
from .service import MergeService
