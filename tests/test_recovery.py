from conftest import FakeFileStore, make_record

from docindex.core.indexing.recovery import RecoveryController
from docindex.rag.repository import (
	RESET_UPDATE,
	candidate_query,
	failed_query,
	failed_update,
	indexed_update,
)
from docindex.rag.schemas import IndexScope


def _failed(file_id, **kw):
	return make_record(file_id, indexingError="ExtractionError: bad", lastFailedHash="h", **kw)


async def test_reset_scope():
	files = FakeFileStore(
		[
			_failed("a", communityId="c1"),
			_failed("b", communityId="c2"),
			_failed("c", communityId="c1", isActive=False),
			_failed("d", communityId="c1", mimeType="text/plain"),
			make_record("e", communityId="c1"),
		]
	)
	recovery = RecoveryController(files)

	assert await recovery.reset_failed_indexes(IndexScope(community_id="c1")) == 1

	a = files.records["a"]
	assert a.indexing_error is None and a.force_reindex and not a.is_indexed
	# outside the scope or not a candidate: untouched
	assert files.records["b"].indexing_error is not None
	assert files.records["c"].indexing_error is not None
	assert files.records["d"].indexing_error is not None
	assert not files.records["e"].force_reindex


async def test_reset_everything_then_nothing():
	files = FakeFileStore([_failed("a"), _failed("b", communityId="c2")])
	recovery = RecoveryController(files)

	assert await recovery.reset_failed_indexes() == 2
	assert await recovery.reset_failed_indexes() == 0


def test_candidate_and_failed_queries():
	assert candidate_query() == {"mimeType": "application/pdf", "isActive": True}
	assert candidate_query(IndexScope(folder_type="minutes")) == {
		"mimeType": "application/pdf",
		"isActive": True,
		"folderType": "minutes",
	}
	assert failed_query(IndexScope(community_id="c1"))["indexingError"] == {"$ne": None}
	assert failed_query(IndexScope(community_id="c1"))["communityId"] == "c1"


def test_persisted_field_names():
	update = indexed_update(file_hash="h", chunk_count=3, indexing_version=2, indexed_at=None)
	assert set(update) >= {
		"isIndexed",
		"lastIndexedDate",
		"indexingVersion",
		"fileHash",
		"indexingError",
		"chunkCount",
		"forceReindex",
	}
	assert update["indexingError"] is None and update["forceReindex"] is False

	failed = failed_update("StorageError: down", "h2")
	assert failed == {
		"isIndexed": False,
		"indexingError": "StorageError: down",
		"forceReindex": False,
		"lastFailedHash": "h2",
	}
	assert RESET_UPDATE["forceReindex"] is True and RESET_UPDATE["indexingError"] is None
