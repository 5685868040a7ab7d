from loguru import logger
from pymupdf import open as pdf_open

from docindex.core.errors import ExtractionError
from docindex.rag.schemas import ExtractedDocument, PageText


def extract_pages(pdf_bytes: bytes) -> ExtractedDocument:
	"""
	Extract plain text page by page.
	Blocking; callers run it off the event loop.
	"""
	if not pdf_bytes:
		raise ExtractionError("Empty file")

	try:
		doc = pdf_open(stream=pdf_bytes, filetype="pdf")
	except Exception as e:
		raise ExtractionError(f"Unreadable PDF: {e}") from e

	try:
		pages = [
			PageText(page_number=i, text=page.get_text("text") or "")
			for i, page in enumerate(doc, start=1)
		]
		title = (doc.metadata or {}).get("title") or None
		return ExtractedDocument(pages=pages, page_count=doc.page_count, title=title)
	except Exception as e:
		raise ExtractionError(f"Failed to extract text from PDF: {e}") from e
	finally:
		try:
			doc.close()
		except Exception:
			logger.debug("Failed to close PDF document handle (ignored).")
