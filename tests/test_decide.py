import pytest
from conftest import make_record

from docindex.core.indexing.orchestrator import Action, decide

H1 = "a" * 64
H2 = "b" * 64


@pytest.mark.parametrize(
	"fields,new_hash,kwargs,action,reason",
	[
		({}, H1, {}, Action.PROCESS, "never indexed"),
		({"isIndexed": True, "fileHash": H1, "indexingVersion": 1}, H1, {}, Action.SKIP, "unchanged since last indexing"),
		({"isIndexed": True, "fileHash": H1, "indexingVersion": 1}, H2, {}, Action.PROCESS, "content changed"),
		({"isIndexed": True, "fileHash": H1, "indexingVersion": 0}, H1, {}, Action.PROCESS, "indexing version changed"),
		(
			{"isIndexed": True, "fileHash": H1, "indexingVersion": 0},
			H1,
			{"reindex_on_version_change": False},
			Action.SKIP,
			"unchanged since last indexing",
		),
		({"isIndexed": True, "fileHash": H1, "indexingVersion": 1}, H1, {"force": True}, Action.PROCESS, "forced re-index"),
		({"forceReindex": True, "indexingError": None}, H1, {}, Action.PROCESS, "forced re-index"),
		({"indexingError": "ExtractionError: bad", "lastFailedHash": H1}, H1, {}, Action.SKIP, "previous indexing error"),
		({"indexingError": "ExtractionError: bad"}, H1, {}, Action.SKIP, "previous indexing error"),
		(
			{"indexingError": "ExtractionError: bad", "lastFailedHash": H1},
			H2,
			{},
			Action.PROCESS,
			"content changed since last failed attempt",
		),
		(
			{"indexingError": "ExtractionError: bad", "lastFailedHash": H1, "indexingVersion": 0},
			H1,
			{},
			Action.SKIP,
			"previous indexing error",
		),
	],
)
def test_decide(fields, new_hash, kwargs, action, reason):
	record = make_record("f1", **fields)

	decision = decide(record, new_hash, current_version=1, **kwargs)

	assert decision.action is action
	assert decision.reason == reason
