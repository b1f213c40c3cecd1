"""
Document Merge Service package.

Merges structured data into DOCX/HTML templates and optionally converts the
merged document to another format. The domain core lives in
`doc_merge.merging`; `doc_merge.webapi` exposes it over HTTP.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
