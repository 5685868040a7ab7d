from fastapi import HTTPException
from loguru import logger

from docindex.dependencies import Services

from .schemas import (
	CancelRunsResponse,
	ChatRequest,
	ChatResponse,
	IndexingRunReport,
	IndexScope,
	ProcessedFile,
	RemoveFromIndexResponse,
	ResetFailedResponse,
	ServiceStatus,
	VectorStats,
)


def _require(component, name: str):
	if component is None:
		raise HTTPException(
			status_code=503,
			detail=f"{name} is not configured (OPENAI_API_KEY is missing).",
		)
	return component


async def index_documents(
	services: Services, scope: IndexScope | None = None
) -> IndexingRunReport:
	orchestrator = _require(services.orchestrator, "Indexing")
	with services.runs.track() as token:
		return await orchestrator.index_all(scope, cancel=token)


def cancel_indexing_runs(services: Services) -> CancelRunsResponse:
	cancelled = services.runs.cancel_all()
	logger.info(f"Cancellation requested for {cancelled} indexing runs")
	return CancelRunsResponse(cancelled_runs=cancelled)


async def index_single_file(
	services: Services, file_id: str, force: bool = False
) -> ProcessedFile:
	orchestrator = _require(services.orchestrator, "Indexing")
	report = await orchestrator.index_one(file_id, force=force)
	return report.processed_files[0]


async def reset_failed_indexes(
	services: Services, scope: IndexScope | None = None
) -> ResetFailedResponse:
	affected = await services.recovery.reset_failed_indexes(scope)
	return ResetFailedResponse(
		affected_rows=affected,
		message=f"Reset {affected} failed indexing attempts",
	)


async def remove_from_index(services: Services, file_id: str) -> RemoveFromIndexResponse:
	orchestrator = _require(services.orchestrator, "Indexing")
	found = await orchestrator.remove_from_index(file_id)
	return RemoveFromIndexResponse(file_id=file_id, removed=found)


async def vector_stats(services: Services) -> VectorStats:
	return await services.store.stats()


async def chat(services: Services, payload: ChatRequest) -> ChatResponse:
	service = _require(services.chat, "Chat")

	message = payload.message.strip()
	if not message:
		raise HTTPException(status_code=400, detail="Message is required")
	limit = services.settings.CHAT_MAX_MESSAGE_CHARS
	if len(message) > limit:
		raise HTTPException(
			status_code=400,
			detail=f"Message is too long (maximum {limit} characters)",
		)

	return await service.chat(
		message,
		payload.conversation_history,
		community_id=payload.community_id,
		folder_type=payload.folder_type,
		use_rag=payload.use_rag,
	)


def service_status(services: Services) -> ServiceStatus:
	return ServiceStatus(
		embedding_enabled=services.embedder is not None,
		chat_enabled=services.chat is not None,
		vector_backend=services.store.backend,
		indexing_version=services.settings.INDEXING_VERSION,
	)
