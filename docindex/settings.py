from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
	# openai
	OPENAI_API_KEY: str | None = None
	EMBEDDING_MODEL: str = "text-embedding-3-small"
	EMBEDDING_DIMENSIONS: int | None = None
	EMBEDDING_BATCH_SIZE: int = 64
	EMBEDDING_TIMEOUT: float = 60.0
	EMBEDDING_MAX_RETRIES: int = 2
	CHAT_MODEL: str = "gpt-4o-mini"
	CHAT_TIMEOUT: float = 60.0
	CHAT_MAX_RETRIES: int = 2

	# vector index
	VECTOR_BACKEND: Literal["milvus", "memory"] = "milvus"
	MILVUS_URL: str = "http://localhost:19530"
	MILVUS_SECRET: str = ""
	MILVUS_COLLECTION: str = "document_chunks"
	MILVUS_TIMEOUT: float = 60.0
	MILVUS_VECTOR_DIM: int = 1536

	# blob storage
	BLOB_BACKEND: Literal["filesystem", "http"] = "filesystem"
	BLOB_ROOT: str = "storage"
	BLOB_BASE_URL: str = ""
	BLOB_TOKEN: str = ""
	BLOB_TIMEOUT: float = 60.0

	# indexing
	CHUNK_SIZE: int = 1000
	CHUNK_OVERLAP: int = 200
	INDEXING_VERSION: int = 1
	REINDEX_ON_VERSION_CHANGE: bool = True
	INDEXING_WORKERS: int = 5

	# retrieval / chat
	RAG_TOP_K: int = 5
	RAG_MIN_SCORE: float = 0.0
	CHAT_MAX_MESSAGE_CHARS: int = 2000

	# fastapi
	HOST: str = "0.0.0.0"
	PORT: int = 8000
	RELOAD: bool = False
	WORKERS: int = 1
	LOG_LEVEL: str = "INFO"

	# mongo
	MONGO_URI: str = "mongodb://localhost:27017"
	MONGO_DB: str = "docindex"

	class Config:
		env_file = ".env"
		env_file_encoding = "utf-8"

	@classmethod
	@lru_cache
	def get(cls) -> "Settings":
		return Settings()
