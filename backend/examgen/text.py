from __future__ import annotations
import logging
from typing import List

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .errors import ExtractionError

logger = logging.getLogger(__name__)


def extract_text_from_pdf(pdf_path: str) -> str:
	"""Return the plain text of every page in the PDF, in page order."""
	try:
		reader = PdfReader(pdf_path)
		text = "\n".join((page.extract_text() or "") for page in reader.pages)
	except (OSError, ValueError, PyPdfError) as err:
		logger.error("PDF extraction failed for %s: %s", pdf_path, err)
		raise ExtractionError(str(err)) from err
	logger.info("Extracted %d characters from PDF: %s", len(text), pdf_path)
	return text


def split_text_into_chunks(text: str, max_chars: int = 5000) -> List[str]:
	if max_chars <= 0:
		raise ValueError("max_chars must be positive")
	return [text[i : i + max_chars] for i in range(0, len(text), max_chars)]
