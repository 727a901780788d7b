"""OpenContext extractors: raw bytes to an ordered list of typed elements."""

from opencontext.ingest.base import BaseExtractor, Element, detect_file_type
from opencontext.ingest.markdown import MarkdownExtractor
from opencontext.ingest.pdf import PdfExtractor
from opencontext.ingest.plaintext import PlainTextExtractor

__all__ = [
    "BaseExtractor",
    "Element",
    "MarkdownExtractor",
    "PdfExtractor",
    "PlainTextExtractor",
    "detect_file_type",
]
