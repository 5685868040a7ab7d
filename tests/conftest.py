import asyncio
import re
import zlib
from types import SimpleNamespace
from typing import Any

import pytest

from docindex.core.connectors.memory import InMemoryVectorStore
from docindex.core.errors import ExtractionError, StorageError
from docindex.core.indexing.embedder import AsyncEmbedder
from docindex.core.indexing.orchestrator import IndexingOrchestrator
from docindex.rag.repository import (
	CLEARED_UPDATE,
	RESET_UPDATE,
	candidate_query,
	failed_query,
	failed_update,
	indexed_update,
)
from docindex.rag.schemas import ExtractedDocument, FileRecord, PageText

DIM = 64
_WORD_RE = re.compile(r"\w+")


def embed_text(text: str) -> list[float]:
	"""Deterministic bag-of-words vector; texts sharing words score higher."""
	v = [0.0] * DIM
	for w in _WORD_RE.findall(text.lower()):
		v[zlib.crc32(w.encode()) % DIM] += 1.0
	return v


def make_record(file_id: str, **kw: Any) -> FileRecord:
	data: dict[str, Any] = {
		"fileId": file_id,
		"fileName": f"{file_id}.pdf",
		"filePath": f"docs/{file_id}.pdf",
		"communityId": "c1",
		"folderType": "governing",
	}
	data.update(kw)
	return FileRecord.model_validate(data)


def fake_extract(data: bytes) -> ExtractedDocument:
	"""Pages are separated by form feeds; a %CORRUPT prefix fails like a broken PDF."""
	if data.startswith(b"%CORRUPT"):
		raise ExtractionError("Unreadable PDF: broken xref table")
	texts = data.decode("utf-8").split("\f")
	pages = [PageText(page_number=i, text=t) for i, t in enumerate(texts, start=1)]
	return ExtractedDocument(pages=pages, page_count=len(pages))


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
	for key, cond in query.items():
		if isinstance(cond, dict):
			if doc.get(key) == cond["$ne"]:
				return False
		elif doc.get(key) != cond:
			return False
	return True


class FakeFileStore:
	"""In-memory FileRecordStore driven by the same queries and updates as Mongo."""

	def __init__(self, records=()):
		self.records: dict[str, FileRecord] = {r.file_id: r for r in records}
		self.duplicates: list[FileRecord] = []
		self.list_error: Exception | None = None
		self.fail_mark_failed = False

	def add(self, record: FileRecord) -> None:
		self.records[record.file_id] = record

	def _docs(self):
		return [r.model_dump(by_alias=True) for r in self.records.values()]

	def _apply(self, file_id: str, fields: dict[str, Any]) -> bool:
		rec = self.records.get(file_id)
		if rec is None:
			return False
		doc = rec.model_dump(by_alias=True)
		doc.update(fields)
		self.records[file_id] = FileRecord.model_validate(doc)
		return True

	async def get(self, file_id):
		return self.records.get(file_id)

	async def list_candidates(self, scope=None):
		if self.list_error is not None:
			raise self.list_error
		query = candidate_query(scope)
		found = [FileRecord.model_validate(d) for d in self._docs() if _matches(d, query)]
		return found + list(self.duplicates)

	async def mark_indexed(self, file_id, *, file_hash, chunk_count, indexing_version, indexed_at):
		self._apply(
			file_id,
			indexed_update(
				file_hash=file_hash,
				chunk_count=chunk_count,
				indexing_version=indexing_version,
				indexed_at=indexed_at,
			),
		)

	async def mark_failed(self, file_id, error, *, attempted_hash=None):
		if self.fail_mark_failed:
			raise StorageError("files collection unavailable")
		self._apply(file_id, failed_update(error, attempted_hash))

	async def reset_failed(self, scope=None):
		query = failed_query(scope)
		ids = [d["fileId"] for d in self._docs() if _matches(d, query)]
		for file_id in ids:
			self._apply(file_id, RESET_UPDATE)
		return len(ids)

	async def clear_index_state(self, file_id):
		return self._apply(file_id, CLEARED_UPDATE)


class FakeBlobStore:
	def __init__(self, delay: float = 0.0):
		self.blobs: dict[str, bytes] = {}
		self.delay = delay
		self.reads: list[str] = []
		self.in_flight = 0
		self.max_in_flight = 0
		self.on_read = None

	async def read(self, record: FileRecord) -> bytes:
		self.reads.append(record.file_id)
		self.in_flight += 1
		self.max_in_flight = max(self.max_in_flight, self.in_flight)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			if self.on_read is not None:
				self.on_read(record)
			if record.file_id not in self.blobs:
				raise ExtractionError(f"download: blob not found for {record.file_id}")
			return self.blobs[record.file_id]
		finally:
			self.in_flight -= 1

	async def close(self) -> None:
		return None


class FakeOpenAI:
	"""Quacks like the parts of the OpenAI client the services call."""

	def __init__(self):
		self.embedding_calls: list[dict[str, Any]] = []
		self.response_calls: list[dict[str, Any]] = []
		self.fail_embeddings = False
		self.fail_responses = False
		self.reverse_order = False
		self.drop_last = False
		self.answer = "Pets are allowed with prior approval."
		self.embeddings = SimpleNamespace(create=self._create_embeddings)
		self.responses = SimpleNamespace(create=self._create_response)

	def _create_embeddings(self, input, model, **kwargs):
		self.embedding_calls.append({"input": list(input), "model": model, **kwargs})
		if self.fail_embeddings:
			raise RuntimeError("429 rate limit exceeded")
		data = [
			SimpleNamespace(index=i, embedding=embed_text(t)) for i, t in enumerate(input)
		]
		if self.reverse_order:
			data.reverse()
		if self.drop_last:
			data = data[:-1]
		return SimpleNamespace(data=data)

	def _create_response(self, model, instructions, input):
		self.response_calls.append(
			{"model": model, "instructions": instructions, "input": input}
		)
		if self.fail_responses:
			raise RuntimeError("upstream timeout")
		return SimpleNamespace(output_text=f"  {self.answer}  ")


@pytest.fixture
def files():
	return FakeFileStore()


@pytest.fixture
def blobs():
	return FakeBlobStore()


@pytest.fixture
def openai_client():
	return FakeOpenAI()


@pytest.fixture
def embedder(openai_client):
	return AsyncEmbedder(openai_client, model_name="test-embedding", batch_size=4)


@pytest.fixture
def store():
	return InMemoryVectorStore()


@pytest.fixture
def orchestrator(files, blobs, embedder, store):
	return IndexingOrchestrator(
		files,
		blobs,
		embedder,
		store,
		extractor=fake_extract,
		chunk_size=200,
		chunk_overlap=20,
		indexing_version=1,
		workers=3,
	)


def long_text(topic: str, sentences: int = 30) -> str:
	return " ".join(f"The {topic} rule number {i} applies here." for i in range(sentences))
