import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

# indexing
INDEX_RUNS = Counter(
	"index_runs_total",
	"Indexing runs started (batch or single file)",
)

INDEX_FILES = Counter(
	"index_files_total",
	"Files evaluated by the indexing pipeline",
	["status"],  # success | skipped | failed
)

INDEX_CHUNKS = Counter(
	"index_chunks_total",
	"Chunks written to the vector index",
)

RESET_ROWS = Counter(
	"index_reset_rows_total",
	"File records reset for forced re-indexing",
)

# embedding provider
EMBED_REQUESTS = Counter(
	"embed_requests_total",
	"Embedding calls (batches)",
)
EMBED_VECTORS = Counter(
	"embed_vectors_total",
	"Texts sent for embedding",
)
EMBED_ERRORS = Counter(
	"embed_errors_total",
	"Embedding calls that failed",
)

# vector store
VECTOR_WRITES = Counter(
	"vector_writes_total",
	"Chunk-set replacements sent to the vector store",
)
VECTOR_WRITE_ERRORS = Counter(
	"vector_write_errors_total",
	"Failed chunk-set replacements",
)

SEARCH_REQUESTS = Counter(
	"search_requests_total",
	"Similarity searches received",
)
SEARCH_ERRORS = Counter(
	"search_errors_total",
	"Similarity searches that failed",
)

# chat
CHAT_REQUESTS = Counter(
	"chat_requests_total",
	"Chat messages received",
)
CHAT_ERRORS = Counter(
	"chat_errors_total",
	"Chat completions that failed",
)

# latency per stage (seconds)
STAGE_LATENCY = Histogram(
	"index_stage_latency_seconds",
	"Latency per pipeline stage",
	["stage"],
	# download | hash | extract | chunk | embed | vector_replace | vector_search | generate
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)


@contextmanager
def observe(stage: str):
	start = time.perf_counter()
	try:
		yield
	finally:
		STAGE_LATENCY.labels(stage).observe(time.perf_counter() - start)
