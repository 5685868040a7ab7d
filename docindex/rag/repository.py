from datetime import datetime
from typing import Any, Protocol

from loguru import logger
from pymongo.errors import PyMongoError

from docindex.core.errors import StorageError
from docindex.core.utils import PDF_MIME

from .models import FileDAO
from .schemas import FileRecord, IndexScope


class FileRecordStore(Protocol):
	"""Narrow access to the file metadata the indexing pipeline owns."""

	async def get(self, file_id: str) -> FileRecord | None: ...

	async def list_candidates(self, scope: IndexScope | None = None) -> list[FileRecord]: ...

	async def mark_indexed(
		self,
		file_id: str,
		*,
		file_hash: str,
		chunk_count: int,
		indexing_version: int,
		indexed_at: datetime,
	) -> None: ...

	async def mark_failed(
		self, file_id: str, error: str, *, attempted_hash: str | None = None
	) -> None: ...

	async def reset_failed(self, scope: IndexScope | None = None) -> int: ...

	async def clear_index_state(self, file_id: str) -> bool: ...


def scope_query(scope: IndexScope | None) -> dict[str, Any]:
	q: dict[str, Any] = {}
	if scope is None:
		return q
	if scope.community_id:
		q["communityId"] = scope.community_id
	if scope.folder_type:
		q["folderType"] = scope.folder_type
	return q


def candidate_query(scope: IndexScope | None = None) -> dict[str, Any]:
	return {"mimeType": PDF_MIME, "isActive": True, **scope_query(scope)}


def failed_query(scope: IndexScope | None = None) -> dict[str, Any]:
	return {**candidate_query(scope), "indexingError": {"$ne": None}}


def indexed_update(
	*, file_hash: str, chunk_count: int, indexing_version: int, indexed_at: datetime
) -> dict[str, Any]:
	return {
		"isIndexed": True,
		"lastIndexedDate": indexed_at,
		"indexingVersion": indexing_version,
		"fileHash": file_hash,
		"indexingError": None,
		"chunkCount": chunk_count,
		"forceReindex": False,
		"lastFailedHash": None,
	}


def failed_update(error: str, attempted_hash: str | None) -> dict[str, Any]:
	return {
		"isIndexed": False,
		"indexingError": error,
		"forceReindex": False,
		"lastFailedHash": attempted_hash,
	}


RESET_UPDATE: dict[str, Any] = {
	"indexingError": None,
	"forceReindex": True,
	"isIndexed": False,
}

CLEARED_UPDATE: dict[str, Any] = {
	"isIndexed": False,
	"fileHash": None,
	"chunkCount": None,
	"lastFailedHash": None,
}


class MongoFileRecordStore:
	"""FileRecordStore over the Beanie `files` collection."""

	def _collection(self):
		return FileDAO.get_motor_collection()

	async def get(self, file_id: str) -> FileRecord | None:
		try:
			return await FileDAO.find_one({"fileId": file_id})
		except PyMongoError as e:
			raise StorageError(f"Could not read file record {file_id}: {e}") from e

	async def list_candidates(self, scope: IndexScope | None = None) -> list[FileRecord]:
		try:
			docs = await FileDAO.find(candidate_query(scope)).to_list()
		except PyMongoError as e:
			raise StorageError(f"Could not list file records: {e}") from e
		logger.debug(f"Found {len(docs)} candidate PDF records (scope={scope})")
		return list(docs)

	async def mark_indexed(
		self,
		file_id: str,
		*,
		file_hash: str,
		chunk_count: int,
		indexing_version: int,
		indexed_at: datetime,
	) -> None:
		update = indexed_update(
			file_hash=file_hash,
			chunk_count=chunk_count,
			indexing_version=indexing_version,
			indexed_at=indexed_at,
		)
		await self._update_one(file_id, update)

	async def mark_failed(
		self, file_id: str, error: str, *, attempted_hash: str | None = None
	) -> None:
		await self._update_one(file_id, failed_update(error, attempted_hash))

	async def reset_failed(self, scope: IndexScope | None = None) -> int:
		try:
			res = await self._collection().update_many(
				failed_query(scope), {"$set": RESET_UPDATE}
			)
		except PyMongoError as e:
			raise StorageError(f"Could not reset failed indexes: {e}") from e
		return int(res.modified_count)

	async def clear_index_state(self, file_id: str) -> bool:
		return await self._update_one(file_id, CLEARED_UPDATE)

	async def _update_one(self, file_id: str, fields: dict[str, Any]) -> bool:
		try:
			res = await self._collection().update_one(
				{"fileId": file_id}, {"$set": fields}
			)
		except PyMongoError as e:
			raise StorageError(f"Could not update file record {file_id}: {e}") from e
		if res.matched_count == 0:
			logger.warning(f"No file record found for file_id={file_id}")
			return False
		return True
