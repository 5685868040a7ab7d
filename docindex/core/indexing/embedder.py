import asyncio
from typing import Any, List, Sequence

from loguru import logger
from openai import OpenAI

from docindex.core.errors import EmbeddingProviderError
from docindex.core.metrics import EMBED_ERRORS, EMBED_REQUESTS, EMBED_VECTORS, observe
from docindex.core.utils import short_err
from docindex.settings import Settings


class AsyncEmbedder:
	"""
	Batches texts to the embedding provider.

	Vectors come back in input order. Any failed batch fails the whole call,
	so callers never see a partially embedded chunk set.
	"""

	def __init__(
		self,
		client: Any,
		model_name: str = "text-embedding-3-small",
		batch_size: int = 64,
		dimensions: int | None = None,
	):
		if batch_size <= 0:
			raise ValueError("batch_size must be positive")
		self.client = client
		self.model_name = model_name
		self.batch_size = batch_size
		self.dimensions = dimensions

	@classmethod
	def from_settings(cls, settings: Settings) -> "AsyncEmbedder":
		client = OpenAI(
			api_key=settings.OPENAI_API_KEY,
			timeout=settings.EMBEDDING_TIMEOUT,
			max_retries=settings.EMBEDDING_MAX_RETRIES,
		)
		return cls(
			client,
			model_name=settings.EMBEDDING_MODEL,
			batch_size=settings.EMBEDDING_BATCH_SIZE,
			dimensions=settings.EMBEDDING_DIMENSIONS,
		)

	async def encode(self, texts: Sequence[str]) -> List[List[float]]:
		"""Encode a list of texts off the event loop, batch by batch."""
		if not texts:
			return []

		vectors: List[List[float]] = []
		for start in range(0, len(texts), self.batch_size):
			batch = list(texts[start : start + self.batch_size])
			vectors.extend(await self._encode_batch(batch))

		dims = {len(v) for v in vectors}
		if len(dims) != 1:
			EMBED_ERRORS.inc()
			raise EmbeddingProviderError(
				f"embed: inconsistent vector dimensions {sorted(dims)}"
			)
		return vectors

	async def embed_query(self, query: str) -> List[float]:
		[vector] = await self.encode([query])
		return vector

	async def _encode_batch(self, batch: List[str]) -> List[List[float]]:
		EMBED_REQUESTS.inc()
		EMBED_VECTORS.inc(len(batch))

		loop = asyncio.get_running_loop()

		def _encode(texts):
			kwargs: dict[str, Any] = {"input": texts, "model": self.model_name}
			if self.dimensions:
				kwargs["dimensions"] = self.dimensions
			with observe("embed"):
				return self.client.embeddings.create(**kwargs)

		try:
			resp = await loop.run_in_executor(None, _encode, batch)
		except Exception as e:
			EMBED_ERRORS.inc()
			msg = short_err("embed", e)
			logger.error(f"Embedding provider error: {msg}")
			raise EmbeddingProviderError(msg) from e

		return self._parse(resp, expected=len(batch))

	def _parse(self, resp: Any, expected: int) -> List[List[float]]:
		try:
			data = sorted(resp.data, key=lambda d: d.index)
			vectors = [[float(x) for x in d.embedding] for d in data]
		except (AttributeError, TypeError, ValueError) as e:
			EMBED_ERRORS.inc()
			raise EmbeddingProviderError(
				short_err("embed: malformed response", e)
			) from e

		if len(vectors) != expected:
			EMBED_ERRORS.inc()
			raise EmbeddingProviderError(
				f"embed: length mismatch (got {len(vectors)}, expected {expected})"
			)
		if any(not v for v in vectors):
			EMBED_ERRORS.inc()
			raise EmbeddingProviderError("embed: empty vector in response")
		return vectors
