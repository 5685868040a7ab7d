import pytest
from conftest import embed_text

from docindex.core.errors import EmbeddingProviderError
from docindex.core.indexing.embedder import AsyncEmbedder


async def test_encode_batches_and_preserves_order(openai_client):
	openai_client.reverse_order = True
	embedder = AsyncEmbedder(openai_client, model_name="m", batch_size=2)
	texts = ["pool hours", "parking rules", "pet policy", "noise limits", "trash day"]

	vectors = await embedder.encode(texts)

	assert vectors == [embed_text(t) for t in texts]
	assert [c["input"] for c in openai_client.embedding_calls] == [
		["pool hours", "parking rules"],
		["pet policy", "noise limits"],
		["trash day"],
	]


async def test_encode_empty_input_makes_no_calls(openai_client, embedder):
	assert await embedder.encode([]) == []
	assert openai_client.embedding_calls == []


async def test_provider_failure_is_an_embedding_error(openai_client, embedder):
	openai_client.fail_embeddings = True

	with pytest.raises(EmbeddingProviderError, match="rate limit"):
		await embedder.encode(["a", "b"])


async def test_short_response_is_rejected(openai_client, embedder):
	openai_client.drop_last = True

	with pytest.raises(EmbeddingProviderError, match="length mismatch"):
		await embedder.encode(["a b", "c d"])


async def test_malformed_response_is_rejected():
	class BrokenClient:
		class embeddings:
			@staticmethod
			def create(**kwargs):
				return object()

	with pytest.raises(EmbeddingProviderError, match="malformed"):
		await AsyncEmbedder(BrokenClient()).encode(["x"])


async def test_dimensions_are_forwarded(openai_client):
	embedder = AsyncEmbedder(openai_client, model_name="m", dimensions=256)

	await embedder.embed_query("hello")

	assert openai_client.embedding_calls[0]["dimensions"] == 256
	assert openai_client.embedding_calls[0]["model"] == "m"


def test_batch_size_must_be_positive(openai_client):
	with pytest.raises(ValueError):
		AsyncEmbedder(openai_client, batch_size=0)
