import asyncio
from contextlib import contextmanager
from enum import StrEnum
from typing import Any, Callable, Iterator, NamedTuple, Sequence
from uuid import uuid4

from loguru import logger

from docindex.core.connectors.blob import BlobStore
from docindex.core.connectors.vector_store import VectorIndexStore
from docindex.core.errors import (
	EmbeddingProviderError,
	ExtractionError,
	StorageError,
	UnknownFileError,
	ValidationError,
	persisted_error,
)
from docindex.core.metrics import (
	INDEX_CHUNKS,
	INDEX_FILES,
	INDEX_RUNS,
	VECTOR_WRITE_ERRORS,
	VECTOR_WRITES,
	observe,
)
from docindex.core.utils import now_utc, short_err
from docindex.rag.repository import FileRecordStore
from docindex.rag.schemas import (
	Chunk,
	ExtractedDocument,
	FileRecord,
	FileStatus,
	IndexingRunReport,
	IndexScope,
	ProcessedFile,
	TextChunk,
)
from docindex.settings import Settings

from .chunkfier import chunk_pages
from .embedder import AsyncEmbedder
from .hasher import content_hash
from .parser import extract_pages

Extractor = Callable[[bytes], ExtractedDocument]


class Action(StrEnum):
	PROCESS = "process"
	SKIP = "skip"


class Decision(NamedTuple):
	action: Action
	reason: str


def decide(
	record: FileRecord,
	new_hash: str,
	*,
	current_version: int,
	reindex_on_version_change: bool = True,
	force: bool = False,
) -> Decision:
	"""Per-file state machine: should this run (re)process the file?"""
	if force or record.force_reindex:
		return Decision(Action.PROCESS, "forced re-index")

	if record.indexing_error is not None:
		# a failed file is retried only once its bytes change
		if record.last_failed_hash is not None and record.last_failed_hash != new_hash:
			return Decision(Action.PROCESS, "content changed since last failed attempt")
		return Decision(Action.SKIP, "previous indexing error")

	if record.is_indexed:
		if record.file_hash != new_hash:
			return Decision(Action.PROCESS, "content changed")
		if reindex_on_version_change and record.indexing_version < current_version:
			return Decision(Action.PROCESS, "indexing version changed")
		return Decision(Action.SKIP, "unchanged since last indexing")

	return Decision(Action.PROCESS, "never indexed")


class CancellationToken:
	"""Checked between files; a file already in flight runs to completion."""

	def __init__(self) -> None:
		self._event = asyncio.Event()

	def cancel(self) -> None:
		self._event.set()

	@property
	def cancelled(self) -> bool:
		return self._event.is_set()


class IndexingRuns:
	"""Tokens of the batch runs currently in flight, so they can be cancelled."""

	def __init__(self) -> None:
		self._active: dict[str, CancellationToken] = {}

	@contextmanager
	def track(self) -> Iterator[CancellationToken]:
		run_key = uuid4().hex
		token = CancellationToken()
		self._active[run_key] = token
		try:
			yield token
		finally:
			self._active.pop(run_key, None)

	@property
	def active(self) -> int:
		return len(self._active)

	def cancel_all(self) -> int:
		tokens = [t for t in self._active.values() if not t.cancelled]
		for t in tokens:
			t.cancel()
		return len(tokens)


class IndexingOrchestrator:
	"""
	Drives download -> hash -> extract -> chunk -> embed -> replace -> update
	for each candidate file, with a bounded pool of workers.

	Every failure inside one file is turned into a `failed` report entry and a
	persisted `indexingError`; only failing to list candidates aborts a run.
	"""

	def __init__(
		self,
		files: FileRecordStore,
		blobs: BlobStore,
		embedder: AsyncEmbedder,
		store: VectorIndexStore,
		*,
		extractor: Extractor = extract_pages,
		chunk_size: int = 1000,
		chunk_overlap: int = 200,
		indexing_version: int = 1,
		reindex_on_version_change: bool = True,
		workers: int = 5,
	):
		if workers <= 0:
			raise ValueError("workers must be positive")
		if chunk_size <= 0 or not 0 <= chunk_overlap < chunk_size:
			raise ValueError("chunk_overlap must be in [0, chunk_size)")
		self.files = files
		self.blobs = blobs
		self.embedder = embedder
		self.store = store
		self.extractor = extractor
		self.chunk_size = chunk_size
		self.chunk_overlap = chunk_overlap
		self.indexing_version = indexing_version
		self.reindex_on_version_change = reindex_on_version_change
		self.workers = workers

	@classmethod
	def from_settings(
		cls,
		settings: Settings,
		files: FileRecordStore,
		blobs: BlobStore,
		embedder: AsyncEmbedder,
		store: VectorIndexStore,
	) -> "IndexingOrchestrator":
		return cls(
			files,
			blobs,
			embedder,
			store,
			chunk_size=settings.CHUNK_SIZE,
			chunk_overlap=settings.CHUNK_OVERLAP,
			indexing_version=settings.INDEXING_VERSION,
			reindex_on_version_change=settings.REINDEX_ON_VERSION_CHANGE,
			workers=settings.INDEXING_WORKERS,
		)

	async def index_all(
		self,
		scope: IndexScope | None = None,
		cancel: CancellationToken | None = None,
	) -> IndexingRunReport:
		INDEX_RUNS.inc()
		report = IndexingRunReport()

		records = await self.files.list_candidates(scope)
		unique = _dedupe(records)
		report.total = len(unique)
		logger.info(
			f"Starting bulk indexing run {report.run_id}: {len(unique)} files "
			f"(scope={scope}, workers={self.workers})"
		)

		queue: asyncio.Queue[FileRecord] = asyncio.Queue()
		for record in unique:
			queue.put_nowait(record)

		async def worker() -> None:
			while True:
				if cancel is not None and cancel.cancelled:
					return
				try:
					record = queue.get_nowait()
				except asyncio.QueueEmpty:
					return
				report.record(await self._index_record(record))

		await asyncio.gather(*(worker() for _ in range(min(self.workers, len(unique)))))

		done = len(report.processed_files)
		report.cancelled = cancel is not None and cancel.cancelled and done < report.total
		report.finished_at = now_utc()
		logger.info(
			f"Indexing run {report.run_id} finished: total={report.total} "
			f"successful={report.successful} skipped={report.skipped} "
			f"failed={report.failed} cancelled={report.cancelled}"
		)
		return report

	async def index_one(self, file_id: str, force: bool = False) -> IndexingRunReport:
		INDEX_RUNS.inc()
		record = await self.files.get(file_id)
		if record is None:
			raise UnknownFileError(file_id)

		report = IndexingRunReport(total=1)
		report.record(await self._index_record(record, force=force))
		report.finished_at = now_utc()
		return report

	async def remove_from_index(self, file_id: str) -> bool:
		"""Drop a deleted or deactivated file's chunks and clear its index state."""
		try:
			await self.store.delete_chunks(file_id)
		except StorageError:
			raise
		except Exception as e:
			raise StorageError(short_err("vector_delete", e)) from e
		found = await self.files.clear_index_state(file_id)
		logger.info(f"Removed file_id={file_id} from the vector index")
		return found

	async def _index_record(self, record: FileRecord, force: bool = False) -> ProcessedFile:
		attempted_hash: str | None = None
		try:
			if not record.is_pdf:
				raise ValidationError(f"Not a PDF file (mimeType={record.mime_type})")
			if not record.is_active:
				raise ValidationError("File is inactive")

			with observe("download"):
				data = await self.blobs.read(record)
			with observe("hash"):
				attempted_hash = content_hash(data)

			decision = decide(
				record,
				attempted_hash,
				current_version=self.indexing_version,
				reindex_on_version_change=self.reindex_on_version_change,
				force=force,
			)
			if decision.action is Action.SKIP:
				logger.info(
					f"Skipping {record.file_name} ({record.file_id}): {decision.reason}"
				)
				details: dict[str, Any] = {"reason": decision.reason}
				if record.indexing_error:
					details["error"] = record.indexing_error
				return self._outcome(record, FileStatus.SKIPPED, details)

			if record.file_hash and record.file_hash != attempted_hash:
				logger.info(
					f"File hash changed for {record.file_name} ({record.file_id}): "
					f"{record.file_hash[:8]} -> {attempted_hash[:8]}"
				)
			logger.info(f"Indexing {record.file_name} ({record.file_id}): {decision.reason}")

			details = await self._process(record, data, attempted_hash)
			details["reason"] = decision.reason
			return self._outcome(record, FileStatus.SUCCESS, details)

		except Exception as e:
			logger.exception(f"Error indexing {record.file_name} ({record.file_id})")
			error = persisted_error(e)
			try:
				await self.files.mark_failed(
					record.file_id, error, attempted_hash=attempted_hash
				)
			except Exception:
				logger.exception(
					f"Failed to persist indexing error for file_id={record.file_id}"
				)
			return self._outcome(record, FileStatus.FAILED, {"error": error})

	async def _process(
		self, record: FileRecord, data: bytes, file_hash: str
	) -> dict[str, Any]:
		with observe("extract"):
			try:
				doc = await asyncio.to_thread(self.extractor, data)
			except ExtractionError:
				raise
			except Exception as e:
				raise ExtractionError(short_err("extract", e)) from e

		with observe("chunk"):
			pieces = chunk_pages(doc.pages, self.chunk_size, self.chunk_overlap)
		if not pieces:
			raise ExtractionError(
				f"No extractable text ({doc.page_count} pages); "
				"image-based or empty PDF"
			)

		vectors = await self.embedder.encode([p.text for p in pieces])
		if len(vectors) != len(pieces):
			raise EmbeddingProviderError(
				f"embed: got {len(vectors)} vectors for {len(pieces)} chunks"
			)

		indexed_at = now_utc()
		chunks = self._build_chunks(record, pieces, vectors, indexed_at)

		VECTOR_WRITES.inc()
		with observe("vector_replace"):
			try:
				await self.store.replace_chunks(record.file_id, chunks)
			except StorageError:
				VECTOR_WRITE_ERRORS.inc()
				raise
			except Exception as e:
				VECTOR_WRITE_ERRORS.inc()
				raise StorageError(short_err("vector_replace", e)) from e
		INDEX_CHUNKS.inc(len(chunks))

		await self.files.mark_indexed(
			record.file_id,
			file_hash=file_hash,
			chunk_count=len(chunks),
			indexing_version=self.indexing_version,
			indexed_at=indexed_at,
		)

		return {
			"chunkCount": len(chunks),
			"numPages": doc.page_count,
			"textLength": sum(len(p.text) for p in doc.pages),
			"fileHash": file_hash,
		}

	def _build_chunks(
		self,
		record: FileRecord,
		pieces: Sequence[TextChunk],
		vectors: Sequence[Sequence[float]],
		indexed_at,
	) -> list[Chunk]:
		return [
			Chunk(
				chunk_id=f"{record.file_id}-chunk-{p.chunk_index}",
				file_id=record.file_id,
				file_name=record.file_name,
				community_id=record.community_id,
				folder_id=record.folder_id,
				folder_name=record.folder_name,
				folder_type=record.folder_type,
				page_number=p.page_number,
				chunk_index=p.chunk_index,
				text=p.text,
				embedding=list(v),
				indexing_version=self.indexing_version,
				indexed_at=indexed_at,
			)
			for p, v in zip(pieces, vectors)
		]

	def _outcome(
		self, record: FileRecord, status: FileStatus, details: dict[str, Any]
	) -> ProcessedFile:
		INDEX_FILES.labels(status.value).inc()
		return ProcessedFile(
			file_id=record.file_id,
			file_name=record.file_name,
			status=status,
			timestamp=now_utc(),
			details=details,
		)


def _dedupe(records: Sequence[FileRecord]) -> list[FileRecord]:
	seen: dict[str, FileRecord] = {}
	for r in records:
		seen.setdefault(r.file_id, r)
	return list(seen.values())
