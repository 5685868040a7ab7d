from datetime import datetime
from typing import Any, List, Sequence
from uuid import uuid4

import httpx
from loguru import logger

from docindex.core.errors import StorageError
from docindex.core.metrics import SEARCH_ERRORS, SEARCH_REQUESTS, observe
from docindex.core.utils import short_err
from docindex.rag.schemas import Chunk, IndexScope, ScoredChunk, VectorStats
from docindex.settings import Settings

from .vector_store import check_chunk_set, rank

OUTPUT_FIELDS = [
	"file_id",
	"generation",
	"file_name",
	"community_id",
	"folder_id",
	"folder_name",
	"folder_type",
	"page_number",
	"chunk_index",
	"text",
	"indexing_version",
	"indexed_at",
]

# distinct-file scan in stats() stops here
STATS_QUERY_LIMIT = 16384


def _quote(value: str) -> str:
	return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def scope_filter(scope: IndexScope | None) -> str:
	"""Milvus boolean expression for a retrieval scope ('' means no filter)."""
	if scope is None:
		return ""
	clauses = []
	if scope.community_id is not None:
		clauses.append(f"community_id == {_quote(scope.community_id)}")
	if scope.folder_type is not None:
		clauses.append(f"folder_type == {_quote(scope.folder_type)}")
	return " and ".join(clauses)


class MilvusVectorStore:
	"""
	Chunk store on the Milvus REST v2 API (cosine metric).

	Each replacement writes the new chunk set under a fresh `generation`, then
	deletes every other generation of the file. Search keeps only the newest
	generation per file, so a reader never mixes old and new chunks.
	"""

	backend = "milvus"

	def __init__(
		self,
		endpoint: str,
		collection_name: str,
		token: str = "",
		dim: int = 1536,
		timeout: float = 60.0,
		batch_size: int = 64,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		headers = {"Content-Type": "application/json"}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		self.collection_name = collection_name
		self.dim = dim
		self.BATCH_SIZE = batch_size
		self.VECTOR_FIELD = "vector"
		self._client = httpx.AsyncClient(
			base_url=endpoint.rstrip("/"),
			headers=headers,
			timeout=timeout,
			transport=transport,
		)

	@classmethod
	def from_settings(cls, settings: Settings) -> "MilvusVectorStore":
		return cls(
			endpoint=settings.MILVUS_URL,
			collection_name=settings.MILVUS_COLLECTION,
			token=settings.MILVUS_SECRET,
			dim=settings.MILVUS_VECTOR_DIM,
			timeout=settings.MILVUS_TIMEOUT,
		)

	async def ensure_collection(self) -> None:
		body = await self._post(
			"/v2/vectordb/collections/has", {"collectionName": self.collection_name}
		)
		if (body.get("data") or {}).get("has"):
			logger.info(f"Milvus collection '{self.collection_name}' found")
			return

		await self._post(
			"/v2/vectordb/collections/create",
			{
				"collectionName": self.collection_name,
				"schema": {
					"autoId": False,
					"enabledDynamicField": True,
					"fields": [
						{
							"fieldName": "id",
							"dataType": "VarChar",
							"isPrimary": True,
							"elementTypeParams": {"max_length": 256},
						},
						{
							"fieldName": self.VECTOR_FIELD,
							"dataType": "FloatVector",
							"elementTypeParams": {"dim": str(self.dim)},
						},
						{
							"fieldName": "file_id",
							"dataType": "VarChar",
							"elementTypeParams": {"max_length": 128},
						},
						{
							"fieldName": "text",
							"dataType": "VarChar",
							"elementTypeParams": {"max_length": 65535},
						},
					],
				},
				"indexParams": [
					{
						"fieldName": self.VECTOR_FIELD,
						"indexName": self.VECTOR_FIELD,
						"metricType": "COSINE",
						"indexType": "AUTOINDEX",
					}
				],
			},
		)
		logger.info(f"Created Milvus collection '{self.collection_name}'")

	async def replace_chunks(self, file_id: str, chunks: Sequence[Chunk]) -> None:
		check_chunk_set(file_id, chunks)
		if not chunks:
			await self.delete_chunks(file_id)
			return

		generation = uuid4().hex
		rows = [self._to_row(c, generation) for c in chunks]
		logger.debug(
			f"Inserting {len(rows)} chunks for file_id={file_id} "
			f"into Milvus collection '{self.collection_name}' (generation={generation})"
		)

		try:
			for start in range(0, len(rows), self.BATCH_SIZE):
				await self._post(
					"/v2/vectordb/entities/insert",
					{
						"collectionName": self.collection_name,
						"data": rows[start : start + self.BATCH_SIZE],
					},
				)
		except StorageError:
			# roll back whatever part of the new generation landed
			await self._delete_quietly(
				f"file_id == {_quote(file_id)} and generation == {_quote(generation)}"
			)
			raise

		try:
			await self._delete(
				f"file_id == {_quote(file_id)} and generation != {_quote(generation)}"
			)
		except StorageError as e:
			# search already hides older generations; the next replace retries this
			logger.warning(f"Stale chunks left for file_id={file_id}: {e}")

	async def delete_chunks(self, file_id: str) -> None:
		await self._delete(f"file_id == {_quote(file_id)}")

	async def search(
		self, query_vector: Sequence[float], scope: IndexScope | None, k: int
	) -> List[ScoredChunk]:
		SEARCH_REQUESTS.inc()
		if k <= 0:
			return []

		payload: dict[str, Any] = {
			"collectionName": self.collection_name,
			"data": [list(query_vector)],
			"annsField": self.VECTOR_FIELD,
			# over-fetch so dropping stale generations still leaves k hits
			"limit": k * 2,
			"outputFields": OUTPUT_FIELDS,
			"searchParams": {"metricType": "COSINE"},
		}
		expr = scope_filter(scope)
		if expr:
			payload["filter"] = expr

		with observe("vector_search"):
			try:
				body = await self._post("/v2/vectordb/entities/search", payload)
			except StorageError:
				SEARCH_ERRORS.inc()
				raise

		hits = [h for h in body.get("data") or [] if isinstance(h, dict)]
		return rank(self._parse_hits(hits), k)

	async def stats(self) -> VectorStats:
		body = await self._post(
			"/v2/vectordb/collections/get_stats",
			{"collectionName": self.collection_name},
		)
		total = int((body.get("data") or {}).get("rowCount") or 0)

		first_chunks = await self._post(
			"/v2/vectordb/entities/query",
			{
				"collectionName": self.collection_name,
				"filter": "chunk_index == 0",
				"outputFields": ["file_id"],
				"limit": STATS_QUERY_LIMIT,
			},
		)
		files = {r.get("file_id") for r in first_chunks.get("data") or []}
		files.discard(None)
		return VectorStats(
			backend=self.backend,
			collection=self.collection_name,
			total_chunks=total,
			indexed_files=len(files),
			dimension=self.dim,
			storage_bytes=None,
			metadata={
				"metric": "COSINE",
				"endpoint": str(self._client.base_url),
				"fileCountCapped": len(files) >= STATS_QUERY_LIMIT,
			},
		)

	async def close(self) -> None:
		await self._client.aclose()

	# internals
	def _to_row(self, c: Chunk, generation: str) -> dict[str, Any]:
		return {
			"id": f"{c.file_id}:{generation}:{c.chunk_index}",
			self.VECTOR_FIELD: [float(x) for x in c.embedding],
			"file_id": c.file_id,
			"generation": generation,
			"file_name": c.file_name,
			# Milvus dynamic fields cannot hold null
			"community_id": c.community_id or "",
			"folder_id": c.folder_id or "",
			"folder_name": c.folder_name or "",
			"folder_type": c.folder_type or "",
			"page_number": c.page_number,
			"chunk_index": c.chunk_index,
			"text": c.text,
			"indexing_version": c.indexing_version,
			"indexed_at": c.indexed_at.isoformat(),
		}

	def _parse_hits(self, hits: list[dict[str, Any]]) -> list[ScoredChunk]:
		parsed: list[tuple[str, ScoredChunk]] = []
		for h in hits:
			try:
				chunk = Chunk(
					chunk_id=str(h.get("id")),
					file_id=str(h["file_id"]),
					file_name=h.get("file_name") or "",
					community_id=h.get("community_id") or None,
					folder_id=h.get("folder_id") or None,
					folder_name=h.get("folder_name") or None,
					folder_type=h.get("folder_type") or None,
					page_number=int(h.get("page_number") or 0),
					chunk_index=int(h.get("chunk_index") or 0),
					text=str(h.get("text") or ""),
					embedding=[],
					indexing_version=int(h.get("indexing_version") or 0),
					indexed_at=datetime.fromisoformat(str(h["indexed_at"])),
				)
			except (KeyError, TypeError, ValueError) as e:
				logger.warning(f"Dropping malformed Milvus hit: {short_err('parse', e)}")
				continue
			parsed.append(
				(
					str(h.get("generation") or ""),
					ScoredChunk(chunk=chunk, score=float(h.get("distance") or 0.0)),
				)
			)

		newest: dict[str, tuple[datetime, str]] = {}
		for gen, hit in parsed:
			key = (hit.chunk.indexed_at, gen)
			cur = newest.get(hit.chunk.file_id)
			if cur is None or key > cur:
				newest[hit.chunk.file_id] = key
		return [
			hit
			for gen, hit in parsed
			if newest[hit.chunk.file_id] == (hit.chunk.indexed_at, gen)
		]

	async def _delete(self, expr: str) -> None:
		await self._post(
			"/v2/vectordb/entities/delete",
			{"collectionName": self.collection_name, "filter": expr},
		)

	async def _delete_quietly(self, expr: str) -> None:
		try:
			await self._delete(expr)
		except StorageError as e:
			logger.error(f"Milvus rollback failed ({expr}): {e}")

	async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
		try:
			resp = await self._client.post(path, json=payload)
			resp.raise_for_status()
			body = resp.json()
		except httpx.HTTPStatusError as e:
			body_text = ""
			try:
				body_text = e.response.text[:500]
			except Exception:
				body_text = str(e)
			msg = f"{path} HTTP {e.response.status_code}: {body_text}"
			logger.error(f"Milvus error: {msg}")
			raise StorageError(msg) from e
		except (httpx.HTTPError, ValueError) as e:
			msg = short_err(path, e)
			logger.error(f"Milvus error: {msg}")
			raise StorageError(msg) from e

		if not isinstance(body, dict) or body.get("code", 0) != 0:
			raise StorageError(f"Milvus error on {path}: {body}")
		return body
