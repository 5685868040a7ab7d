from fastapi import APIRouter, Body, Depends, HTTPException
from loguru import logger

from docindex.core.errors import ChatCompletionError, StorageError, UnknownFileError
from docindex.dependencies import Services, get_services

from . import controllers
from .schemas import (
	CancelRunsResponse,
	ChatRequest,
	ChatResponse,
	IndexingRunReport,
	IndexScope,
	ProcessedFile,
	RemoveFromIndexResponse,
	ResetFailedRequest,
	ResetFailedResponse,
	ServiceStatus,
	VectorStats,
)

router = APIRouter(prefix="/ai")


@router.post("/index-documents", response_model=IndexingRunReport)
async def index_documents(
	scope: IndexScope | None = Body(None),
	services: Services = Depends(get_services),
):
	try:
		return await controllers.index_documents(services, scope)
	except HTTPException:
		raise
	except Exception as e:
		logger.exception("Error on POST /ai/index-documents")
		raise HTTPException(status_code=500, detail=str(e))


@router.post("/index-documents/cancel", response_model=CancelRunsResponse)
def cancel_index_documents(services: Services = Depends(get_services)):
	return controllers.cancel_indexing_runs(services)


@router.post("/index-file/{file_id}", response_model=ProcessedFile)
async def index_file(
	file_id: str,
	force: bool = False,
	services: Services = Depends(get_services),
):
	try:
		return await controllers.index_single_file(services, file_id, force=force)
	except UnknownFileError:
		raise HTTPException(status_code=404, detail=f"File {file_id} not found")
	except HTTPException:
		raise
	except Exception as e:
		logger.exception("Error on POST /ai/index-file/{file_id}")
		raise HTTPException(status_code=500, detail=str(e))


@router.post("/reset-failed-indexes", response_model=ResetFailedResponse)
async def reset_failed_indexes(
	payload: ResetFailedRequest | None = Body(None),
	services: Services = Depends(get_services),
):
	try:
		scope = payload.scope if payload else None
		return await controllers.reset_failed_indexes(services, scope)
	except Exception as e:
		logger.exception("Error on POST /ai/reset-failed-indexes")
		raise HTTPException(status_code=500, detail=str(e))


@router.delete("/index/{file_id}", response_model=RemoveFromIndexResponse)
async def remove_from_index(file_id: str, services: Services = Depends(get_services)):
	try:
		return await controllers.remove_from_index(services, file_id)
	except HTTPException:
		raise
	except StorageError as e:
		logger.exception("Error on DELETE /ai/index/{file_id}")
		raise HTTPException(status_code=500, detail=str(e))


@router.get("/vector-stats", response_model=VectorStats)
async def vector_stats(services: Services = Depends(get_services)):
	try:
		return await controllers.vector_stats(services)
	except Exception as e:
		logger.exception("Error on GET /ai/vector-stats")
		raise HTTPException(status_code=500, detail=str(e))


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, services: Services = Depends(get_services)):
	try:
		return await controllers.chat(services, payload)
	except ChatCompletionError as e:
		raise HTTPException(status_code=502, detail=str(e))


@router.get("/status", response_model=ServiceStatus)
def status(services: Services = Depends(get_services)):
	return controllers.service_status(services)
