from typing import List, Sequence

from loguru import logger

from docindex.core.connectors.vector_store import VectorIndexStore
from docindex.core.indexing.embedder import AsyncEmbedder
from docindex.core.utils import short_err
from docindex.rag.schemas import DocumentSource, IndexScope, RetrievedDocument, ScoredChunk


class RetrievalService:
	"""
	Embeds a query and runs a scoped similarity search.

	Never raises: an embedding or store failure yields no documents so the
	chat can answer without retrieved context.
	"""

	def __init__(
		self,
		embedder: AsyncEmbedder,
		store: VectorIndexStore,
		default_k: int = 5,
		min_score: float = 0.0,
	):
		self.embedder = embedder
		self.store = store
		self.default_k = default_k
		self.min_score = min_score

	async def retrieve(
		self,
		query: str,
		*,
		community_id: str | None = None,
		folder_type: str | None = None,
		k: int | None = None,
	) -> List[RetrievedDocument]:
		limit = k or self.default_k
		scope = IndexScope(community_id=community_id, folder_type=folder_type)
		logger.debug(f"Retrieving documents for query={query[:100]!r} scope={scope} k={limit}")

		try:
			qvec = await self.embedder.embed_query(query)
			hits = await self.store.search(qvec, None if scope.is_empty() else scope, limit)
		except Exception as e:
			logger.warning(f"Retrieval failed, continuing without context: {short_err('retrieve', e)}")
			return []

		docs = [_to_document(h) for h in hits if h.score >= self.min_score]
		docs.sort(key=lambda d: d.score, reverse=True)
		if docs:
			avg = sum(d.score for d in docs) / len(docs)
			logger.info(f"Retrieved {len(docs)} documents (avg score {avg:.3f})")
		else:
			logger.info("No documents retrieved")
		return docs


def _to_document(hit: ScoredChunk) -> RetrievedDocument:
	c = hit.chunk
	return RetrievedDocument(
		text=c.text,
		score=hit.score,
		source=DocumentSource(
			file_id=c.file_id,
			file_name=c.file_name,
			folder_name=c.folder_name,
			community_id=c.community_id,
			folder_type=c.folder_type,
			page_number=c.page_number,
			chunk_index=c.chunk_index,
			indexed_at=c.indexed_at,
		),
	)


def best_per_file(docs: Sequence[RetrievedDocument], k: int) -> List[RetrievedDocument]:
	"""Keep the highest scoring chunk of each file, then the top `k`."""
	best: dict[str, RetrievedDocument] = {}
	for d in docs:
		cur = best.get(d.source.file_id)
		if cur is None or d.score > cur.score:
			best[d.source.file_id] = d
	return sorted(best.values(), key=lambda d: d.score, reverse=True)[:k]


def format_documents_as_context(docs: Sequence[RetrievedDocument]) -> str:
	if not docs:
		return ""

	lines = [
		"--- RELEVANT DOCUMENTS (SUPPORTING/SECONDARY SOURCE) ---",
		"",
	]
	for i, doc in enumerate(docs, start=1):
		src = doc.source
		header = f"Source: {src.file_name}"
		if src.folder_name:
			header += f" ({src.folder_name})"
		if src.indexed_at:
			header += f" | Indexed: {src.indexed_at.date().isoformat()}"
		if src.page_number:
			header += f" | Page {src.page_number}"
		lines += [
			f"[Document {i}]",
			header,
			f"Relevance: {doc.score * 100:.1f}%",
			"",
			doc.text,
			"",
			"---",
			"",
		]
	return "\n".join(lines)
