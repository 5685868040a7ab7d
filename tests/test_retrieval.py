from datetime import datetime, timezone

from conftest import embed_text

from docindex.core.connectors.memory import InMemoryVectorStore
from docindex.core.retrieval import (
	RetrievalService,
	best_per_file,
	format_documents_as_context,
)
from docindex.rag.schemas import Chunk, DocumentSource, RetrievedDocument

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _chunk(file_id, index, text, community="c1", folder_type="governing"):
	return Chunk(
		chunk_id=f"{file_id}-chunk-{index}",
		file_id=file_id,
		file_name=f"{file_id}.pdf",
		community_id=community,
		folder_type=folder_type,
		folder_name="Bylaws",
		page_number=3,
		chunk_index=index,
		text=text,
		embedding=embed_text(text),
		indexing_version=1,
		indexed_at=T0,
	)


async def _seeded_store():
	store = InMemoryVectorStore()
	await store.replace_chunks(
		"a", [_chunk("a", 0, "dogs must be leashed"), _chunk("a", 1, "pool closes at dusk")]
	)
	await store.replace_chunks("b", [_chunk("b", 0, "dogs are allowed", community="c2")])
	return store


async def test_retrieve_is_scoped_and_sorted(embedder):
	service = RetrievalService(embedder, await _seeded_store(), default_k=5)

	docs = await service.retrieve("dogs leashed", community_id="c1")

	assert {d.source.file_id for d in docs} == {"a"}
	assert docs[0].text == "dogs must be leashed"
	assert [d.score for d in docs] == sorted((d.score for d in docs), reverse=True)
	src = docs[0].source
	assert (src.file_name, src.folder_name, src.page_number, src.chunk_index) == ("a.pdf", "Bylaws", 3, 0)


async def test_retrieve_applies_min_score_and_k(embedder):
	store = await _seeded_store()

	strict = RetrievalService(embedder, store, min_score=0.99)
	assert [d.text for d in await strict.retrieve("dogs must be leashed")] == ["dogs must be leashed"]

	limited = RetrievalService(embedder, store)
	assert len(await limited.retrieve("dogs", k=1)) == 1


async def test_retrieve_degrades_to_no_context(openai_client, embedder):
	openai_client.fail_embeddings = True
	service = RetrievalService(embedder, await _seeded_store())

	assert await service.retrieve("dogs") == []


def _doc(file_id, score, text="t"):
	return RetrievedDocument(
		text=text,
		score=score,
		source=DocumentSource(file_id=file_id, file_name=f"{file_id}.pdf"),
	)


def test_best_per_file():
	docs = [_doc("a", 0.5), _doc("a", 0.9), _doc("b", 0.7), _doc("c", 0.1)]

	best = best_per_file(docs, 2)

	assert [(d.source.file_id, d.score) for d in best] == [("a", 0.9), ("b", 0.7)]


def test_format_documents_as_context():
	assert format_documents_as_context([]) == ""

	doc = RetrievedDocument(
		text="Dogs must be leashed.",
		score=0.873,
		source=DocumentSource(
			file_id="a", file_name="rules.pdf", folder_name="Bylaws", page_number=2, indexed_at=T0
		),
	)
	context = format_documents_as_context([doc])

	assert "[Document 1]" in context
	assert "Source: rules.pdf (Bylaws) | Indexed: 2024-05-01 | Page 2" in context
	assert "Relevance: 87.3%" in context
	assert "Dogs must be leashed." in context
