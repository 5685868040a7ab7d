import pymupdf
import pytest

from docindex.core.errors import ExtractionError
from docindex.core.indexing.hasher import content_hash
from docindex.core.indexing.parser import extract_pages


def _pdf(*texts: str) -> bytes:
	doc = pymupdf.open()
	for t in texts:
		page = doc.new_page()
		if t:
			page.insert_text((72, 72), t)
	data = doc.tobytes()
	doc.close()
	return data


def test_content_hash_is_stable_and_content_sensitive():
	assert content_hash(b"abc") == content_hash(b"abc")
	assert content_hash(b"abc") != content_hash(b"abd")
	assert len(content_hash(b"")) == 64


def test_extract_pages_keeps_page_order():
	doc = extract_pages(_pdf("Pool rules", "", "Parking rules"))

	assert doc.page_count == 3
	assert [p.page_number for p in doc.pages] == [1, 2, 3]
	assert "Pool rules" in doc.pages[0].text
	assert doc.pages[1].text.strip() == ""
	assert "Parking rules" in doc.pages[2].text


def test_extract_pages_rejects_empty_bytes():
	with pytest.raises(ExtractionError):
		extract_pages(b"")


def test_extract_pages_rejects_corrupt_pdf():
	with pytest.raises(ExtractionError):
		extract_pages(b"this is not a pdf at all")
