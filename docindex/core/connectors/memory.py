import asyncio
from typing import List, NamedTuple, Sequence

import numpy as np
from loguru import logger

from docindex.core.errors import StorageError
from docindex.core.metrics import SEARCH_ERRORS, SEARCH_REQUESTS, observe
from docindex.rag.schemas import Chunk, IndexScope, ScoredChunk, VectorStats

from .vector_store import check_chunk_set, matches_scope, rank


class _FileEntry(NamedTuple):
	chunks: tuple[Chunk, ...]
	matrix: np.ndarray  # rows L2-normalized


def _normalize(matrix: np.ndarray) -> np.ndarray:
	norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
	norms[norms == 0] = 1.0
	return matrix / norms


class InMemoryVectorStore:
	"""
	Process-local index with brute-force cosine search.
	Each file's chunk set is a single dict entry, so replacement is one swap.
	"""

	backend = "memory"

	def __init__(self, collection: str = "in-memory"):
		self.collection = collection
		self._files: dict[str, _FileEntry] = {}
		self._write_lock = asyncio.Lock()

	async def replace_chunks(self, file_id: str, chunks: Sequence[Chunk]) -> None:
		check_chunk_set(file_id, chunks)
		if not chunks:
			await self.delete_chunks(file_id)
			return

		matrix = _normalize(np.asarray([c.embedding for c in chunks], dtype=np.float32))
		entry = _FileEntry(tuple(chunks), matrix)
		async with self._write_lock:
			self._files[file_id] = entry
		logger.debug(f"Replaced chunk set for file_id={file_id} ({len(chunks)} chunks)")

	async def delete_chunks(self, file_id: str) -> None:
		async with self._write_lock:
			self._files.pop(file_id, None)

	async def search(
		self, query_vector: Sequence[float], scope: IndexScope | None, k: int
	) -> List[ScoredChunk]:
		SEARCH_REQUESTS.inc()
		if k <= 0:
			return []

		q = np.asarray(query_vector, dtype=np.float32)
		qn = float(np.linalg.norm(q))
		if qn == 0:
			return []
		q = q / qn

		hits: list[ScoredChunk] = []
		with observe("vector_search"):
			for entry in list(self._files.values()):
				if not matches_scope(entry.chunks[0], scope):
					continue
				if entry.matrix.shape[1] != q.shape[0]:
					SEARCH_ERRORS.inc()
					raise StorageError(
						f"Query dimension {q.shape[0]} does not match "
						f"index dimension {entry.matrix.shape[1]}"
					)
				scores = entry.matrix @ q
				hits.extend(
					ScoredChunk(chunk=c, score=float(s))
					for c, s in zip(entry.chunks, scores)
				)
		return rank(hits, k)

	async def stats(self) -> VectorStats:
		entries = list(self._files.values())
		dimension = int(entries[0].matrix.shape[1]) if entries else None
		return VectorStats(
			backend=self.backend,
			collection=self.collection,
			total_chunks=sum(len(e.chunks) for e in entries),
			indexed_files=len(entries),
			dimension=dimension,
			storage_bytes=sum(int(e.matrix.nbytes) for e in entries),
		)

	async def close(self) -> None:
		return None
