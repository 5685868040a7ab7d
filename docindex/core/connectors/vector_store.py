from datetime import datetime, timezone
from typing import List, Protocol, Sequence

from docindex.core.errors import StorageError
from docindex.rag.schemas import Chunk, IndexScope, ScoredChunk, VectorStats

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class VectorIndexStore(Protocol):
	backend: str

	async def replace_chunks(self, file_id: str, chunks: Sequence[Chunk]) -> None:
		"""Swap the whole chunk set of `file_id`; readers see old or new, never both."""
		...

	async def search(
		self, query_vector: Sequence[float], scope: IndexScope | None, k: int
	) -> List[ScoredChunk]: ...

	async def delete_chunks(self, file_id: str) -> None: ...

	async def stats(self) -> VectorStats: ...

	async def close(self) -> None: ...


def matches_scope(chunk: Chunk, scope: IndexScope | None) -> bool:
	if scope is None:
		return True
	if scope.community_id is not None and chunk.community_id != scope.community_id:
		return False
	if scope.folder_type is not None and chunk.folder_type != scope.folder_type:
		return False
	return True


def rank(hits: Sequence[ScoredChunk], k: int) -> List[ScoredChunk]:
	"""Best score first; ties go to the more recently indexed file."""
	ordered = sorted(
		hits,
		key=lambda h: (h.score, _as_aware(h.chunk.indexed_at)),
		reverse=True,
	)
	return ordered[:k]


def check_chunk_set(file_id: str, chunks: Sequence[Chunk]) -> None:
	dims = set()
	for c in chunks:
		if c.file_id != file_id:
			raise StorageError(
				f"Chunk {c.chunk_id} belongs to {c.file_id}, not {file_id}"
			)
		if not c.embedding:
			raise StorageError(f"Chunk {c.chunk_id} has no embedding")
		dims.add(len(c.embedding))
	if len(dims) > 1:
		raise StorageError(f"Mixed embedding dimensions for {file_id}: {sorted(dims)}")


def _as_aware(dt: datetime | None) -> datetime:
	if dt is None:
		return _EPOCH
	if dt.tzinfo is None:
		return dt.replace(tzinfo=timezone.utc)
	return dt
