from datetime import datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docindex.core.utils import PDF_MIME, now_utc


class CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IndexScope(CamelModel):
	community_id: str | None = None
	folder_type: str | None = None

	def is_empty(self) -> bool:
		return self.community_id is None and self.folder_type is None


class FileRecord(BaseModel):
	"""
	A stored file as seen by the indexing pipeline.
	The camelCase aliases are the persisted column names other subsystems read.
	"""

	model_config = ConfigDict(populate_by_name=True)

	file_id: str = Field(alias="fileId")
	file_name: str = Field("", alias="fileName")
	file_path: str = Field("", alias="filePath")
	community_id: str | None = Field(None, alias="communityId")
	folder_id: str | None = Field(None, alias="folderId")
	folder_name: str | None = Field(None, alias="folderName")
	folder_type: str | None = Field(None, alias="folderType")
	mime_type: str = Field(PDF_MIME, alias="mimeType")
	is_active: bool = Field(True, alias="isActive")
	created_on: datetime | None = Field(None, alias="createdOn")

	# indexing state
	is_indexed: bool = Field(False, alias="isIndexed")
	last_indexed_date: datetime | None = Field(None, alias="lastIndexedDate")
	indexing_version: int = Field(0, alias="indexingVersion")
	file_hash: str | None = Field(None, alias="fileHash")
	indexing_error: str | None = Field(None, alias="indexingError")
	chunk_count: int | None = Field(None, alias="chunkCount")
	force_reindex: bool = Field(False, alias="forceReindex")
	last_failed_hash: str | None = Field(None, alias="lastFailedHash")

	@property
	def is_pdf(self) -> bool:
		return self.mime_type == PDF_MIME


# extraction / chunking
class PageText(BaseModel):
	page_number: int
	text: str


class ExtractedDocument(BaseModel):
	pages: list[PageText]
	page_count: int
	title: str | None = None


class TextChunk(BaseModel):
	chunk_index: int
	page_number: int
	text: str
	start_offset: int
	end_offset: int


class Chunk(CamelModel):
	chunk_id: str
	file_id: str
	file_name: str = ""
	community_id: str | None = None
	folder_id: str | None = None
	folder_name: str | None = None
	folder_type: str | None = None
	page_number: int
	chunk_index: int
	text: str
	embedding: list[float]
	indexing_version: int
	indexed_at: datetime


class ScoredChunk(BaseModel):
	chunk: Chunk
	score: float


class VectorStats(CamelModel):
	backend: str
	collection: str
	total_chunks: int
	indexed_files: int
	dimension: int | None = None
	storage_bytes: int | None = None
	metadata: dict[str, Any] = Field(default_factory=dict)


# run report
class FileStatus(StrEnum):
	SUCCESS = "success"
	SKIPPED = "skipped"
	FAILED = "failed"


class FileErrorEntry(CamelModel):
	file_id: str
	file_name: str
	error: str


class ProcessedFile(CamelModel):
	file_id: str
	file_name: str
	status: FileStatus
	timestamp: datetime = Field(default_factory=now_utc)
	details: dict[str, Any] = Field(default_factory=dict)


class IndexingRunReport(CamelModel):
	run_id: str = Field(default_factory=lambda: uuid4().hex)
	started_at: datetime = Field(default_factory=now_utc)
	finished_at: datetime | None = None
	total: int = 0
	successful: int = 0
	failed: int = 0
	skipped: int = 0
	cancelled: bool = False
	errors: list[FileErrorEntry] = Field(default_factory=list)
	processed_files: list[ProcessedFile] = Field(default_factory=list)

	def record(self, entry: ProcessedFile) -> None:
		"""Append an outcome in completion order and bump its counter."""
		self.processed_files.append(entry)
		if entry.status is FileStatus.SUCCESS:
			self.successful += 1
		elif entry.status is FileStatus.SKIPPED:
			self.skipped += 1
		else:
			self.failed += 1
			self.errors.append(
				FileErrorEntry(
					file_id=entry.file_id,
					file_name=entry.file_name,
					error=str(entry.details.get("error") or "unknown error"),
				)
			)


# http payloads
class ResetFailedRequest(CamelModel):
	scope: IndexScope | None = None


class ResetFailedResponse(CamelModel):
	affected_rows: int
	message: str


class RemoveFromIndexResponse(CamelModel):
	file_id: str
	removed: bool


class CancelRunsResponse(CamelModel):
	cancelled_runs: int


class ServiceStatus(CamelModel):
	embedding_enabled: bool
	chat_enabled: bool
	vector_backend: str
	indexing_version: int


# retrieval / chat
class DocumentSource(CamelModel):
	file_id: str
	file_name: str
	folder_name: str | None = None
	community_id: str | None = None
	folder_type: str | None = None
	page_number: int | None = None
	chunk_index: int | None = None
	indexed_at: datetime | None = None


class RetrievedDocument(CamelModel):
	text: str
	score: float
	source: DocumentSource


class ChatTurn(BaseModel):
	role: Literal["user", "assistant"]
	content: str


class ChatRequest(CamelModel):
	message: str
	conversation_history: list[ChatTurn] = Field(default_factory=list)
	community_id: str | None = None
	folder_type: str | None = None
	use_rag: bool = Field(True, alias="useRAG")


class ChatResponse(CamelModel):
	response: str
	sources: list[DocumentSource] = Field(default_factory=list)
	used_rag: bool = Field(False, alias="usedRAG")
