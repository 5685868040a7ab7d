import bisect
import re
from typing import List, Sequence

from docindex.rag.schemas import PageText, TextChunk

PAGE_SEPARATOR = "\n\n"

_MD_IMG_RE = re.compile(r"!\[[^\]]*\]\([^)]+\)")
_INLINE_WS_RE = re.compile(r"[^\S\n]+")
_LINE_BREAK_RE = re.compile(r"\s*\n\s*")
_BOUNDARY_RE = re.compile(r"[\.!?…](?=\s)|\n")


def _strip_md_images(text: str) -> str:
	# remove markdown images like ![alt](url)
	return _MD_IMG_RE.sub("", text or "")


def _unhyphenate(text: str) -> str:
	# join words split across lines: "inter-\nnational" -> "international"
	text = re.sub(r"(\w)-\s*\n\s*(\w)", r"\1\2", text or "")
	return text.replace("\r", "")


def _normalize_ws(text: str) -> str:
	# collapse runs of spaces, keep single line breaks as sentence hints
	text = _INLINE_WS_RE.sub(" ", text or "")
	return _LINE_BREAK_RE.sub("\n", text).strip()


def clean_page_text(text: str) -> str:
	return _normalize_ws(_strip_md_images(_unhyphenate(text)))


def _break_point(window: str, min_pos: int) -> int | None:
	"""Position just past the last sentence end or line break after `min_pos`."""
	last = None
	for m in _BOUNDARY_RE.finditer(window):
		if m.end() > min_pos:
			last = m.end()
	return last


def chunk_pages(
	pages: Sequence[PageText],
	chunk_size: int = 1000,
	overlap: int = 200,
) -> List[TextChunk]:
	"""
	Split ordered page texts into bounded, overlapping chunks.

	Pages are joined so a chunk may run across a page break; it is attributed
	to the page where its first character sits. Empty pages contribute
	nothing. Chunk text never exceeds `chunk_size` characters and
	`chunk_index` increases by one per chunk.
	"""
	if chunk_size <= 0:
		raise ValueError("chunk_size must be positive")
	if overlap < 0 or overlap >= chunk_size:
		raise ValueError("overlap must be in [0, chunk_size)")

	parts: list[str] = []
	page_starts: list[int] = []
	page_numbers: list[int] = []
	offset = 0
	for p in pages:
		text = clean_page_text(p.text)
		if not text:
			continue
		if parts:
			offset += len(PAGE_SEPARATOR)
		page_starts.append(offset)
		page_numbers.append(p.page_number)
		parts.append(text)
		offset += len(text)

	full = PAGE_SEPARATOR.join(parts)
	if not full:
		return []

	# a break at or before `overlap` would leave no room to step back into the previous chunk
	min_break = max(chunk_size // 2, overlap)
	chunks: list[TextChunk] = []
	start = 0
	n = len(full)
	while start < n:
		end = min(start + chunk_size, n)
		if end < n:
			brk = _break_point(full[start:end], min_break)
			if brk is not None:
				end = start + brk

		raw = full[start:end]
		text = raw.strip()
		if text:
			first = start + (len(raw) - len(raw.lstrip()))
			page_idx = bisect.bisect_right(page_starts, first) - 1
			chunks.append(
				TextChunk(
					chunk_index=len(chunks),
					page_number=page_numbers[max(page_idx, 0)],
					text=text,
					start_offset=start,
					end_offset=end,
				)
			)

		if end >= n:
			break
		start = end - overlap

	return chunks
