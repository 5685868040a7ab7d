import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timezone

from beanie import init_beanie
from fastapi import Request
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient

from docindex.core.completion import ChatService
from docindex.core.connectors.blob import BlobStore, blob_store_from_settings
from docindex.core.connectors.memory import InMemoryVectorStore
from docindex.core.connectors.milvus import MilvusVectorStore
from docindex.core.connectors.vector_store import VectorIndexStore
from docindex.core.indexing.embedder import AsyncEmbedder
from docindex.core.indexing.orchestrator import IndexingOrchestrator, IndexingRuns
from docindex.core.indexing.recovery import RecoveryController
from docindex.core.retrieval import RetrievalService
from docindex.rag.models import FileDAO
from docindex.rag.repository import FileRecordStore, MongoFileRecordStore
from docindex.settings import Settings


@dataclass
class Services:
	settings: Settings
	files: FileRecordStore
	blobs: BlobStore
	store: VectorIndexStore
	recovery: RecoveryController
	runs: IndexingRuns = field(default_factory=IndexingRuns)
	# None when no embedding provider is configured
	embedder: AsyncEmbedder | None = None
	orchestrator: IndexingOrchestrator | None = None
	retrieval: RetrievalService | None = None
	chat: ChatService | None = None

	async def close(self) -> None:
		for closeable in (self.blobs, self.store):
			try:
				await closeable.close()
			except Exception:
				logger.exception(f"Error closing {type(closeable).__name__}")


def setup_logging(level: str) -> None:
	logger.remove()
	logger.add(sys.stderr, level=level.upper(), enqueue=True, backtrace=False)


async def build_vector_store(settings: Settings) -> VectorIndexStore:
	if settings.VECTOR_BACKEND == "memory":
		logger.warning("Using the in-memory vector index; chunks are lost on restart.")
		return InMemoryVectorStore()

	store = MilvusVectorStore.from_settings(settings)
	try:
		await store.ensure_collection()
		logger.info("Milvus bootstrap completed.")
	except Exception:
		logger.exception("Milvus bootstrap failed (continuing).")
	return store


def build_services(
	settings: Settings,
	files: FileRecordStore,
	blobs: BlobStore,
	store: VectorIndexStore,
) -> Services:
	services = Services(
		settings=settings,
		files=files,
		blobs=blobs,
		store=store,
		recovery=RecoveryController(files),
	)

	if not settings.OPENAI_API_KEY:
		logger.warning(
			"OPENAI_API_KEY is not set: indexing, retrieval and chat are disabled."
		)
		return services

	embedder = AsyncEmbedder.from_settings(settings)
	services.embedder = embedder
	services.orchestrator = IndexingOrchestrator.from_settings(
		settings, files, blobs, embedder, store
	)
	services.retrieval = RetrievalService(
		embedder,
		store,
		default_k=settings.RAG_TOP_K,
		min_score=settings.RAG_MIN_SCORE,
	)
	services.chat = ChatService.from_settings(settings, services.retrieval)
	return services


@asynccontextmanager
async def open_services(settings: Settings):
	logger.info("Initializing MongoDB/Beanie...")
	client = AsyncIOMotorClient(
		settings.MONGO_URI,
		tz_aware=True,
		tzinfo=timezone.utc,
	)
	await init_beanie(
		database=client[settings.MONGO_DB],  # type: ignore
		document_models=[FileDAO],
	)
	logger.info("Beanie initialized successfully.")

	store = await build_vector_store(settings)
	services = build_services(
		settings, MongoFileRecordStore(), blob_store_from_settings(settings), store
	)
	try:
		yield services
	finally:
		await services.close()
		client.close()
		logger.info("MongoDB connection closed.")


@asynccontextmanager
async def lifespan(app):
	settings = Settings.get()
	setup_logging(settings.LOG_LEVEL)
	async with open_services(settings) as services:
		app.state.services = services
		yield


def get_services(request: Request) -> Services:
	return request.app.state.services
