from conftest import FakeBlobStore, FakeFileStore

from docindex.cli import parse_args, print_report
from docindex.core.connectors.memory import InMemoryVectorStore
from docindex.dependencies import build_services, build_vector_store
from docindex.rag.schemas import FileStatus, IndexingRunReport, ProcessedFile
from docindex.settings import Settings


def test_services_without_api_key_disable_the_provider():
	services = build_services(
		Settings(_env_file=None, OPENAI_API_KEY=None),
		FakeFileStore(),
		FakeBlobStore(),
		InMemoryVectorStore(),
	)

	assert services.recovery is not None
	assert services.embedder is None
	assert services.orchestrator is None
	assert services.chat is None


def test_services_with_api_key():
	settings = Settings(_env_file=None, OPENAI_API_KEY="sk-test", INDEXING_WORKERS=2, CHUNK_SIZE=500)
	services = build_services(settings, FakeFileStore(), FakeBlobStore(), InMemoryVectorStore())

	assert services.orchestrator.workers == 2
	assert services.orchestrator.chunk_size == 500
	assert services.retrieval.store is services.store
	assert services.chat.retrieval is services.retrieval


async def test_memory_backend_from_settings():
	store = await build_vector_store(Settings(_env_file=None, VECTOR_BACKEND="memory"))

	assert store.backend == "memory"


def test_cli_arguments():
	args = parse_args(["--community-id", "c1"])

	assert args.community_id == "c1"
	assert args.folder_type is None


def test_cli_report(capsys):
	report = IndexingRunReport(total=2)
	report.record(ProcessedFile(file_id="a", file_name="a.pdf", status=FileStatus.SUCCESS))
	report.record(
		ProcessedFile(
			file_id="b",
			file_name="b.pdf",
			status=FileStatus.FAILED,
			details={"error": "ExtractionError: Unreadable PDF"},
		)
	)

	print_report(report)

	out = capsys.readouterr().out
	assert "total=2 successful=1 skipped=0 failed=1" in out
	assert "b.pdf (b): ExtractionError: Unreadable PDF" in out
