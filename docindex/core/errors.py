MAX_ERROR_CHARS = 4000


class IndexingFailure(Exception):
	"""Base for every failure that aborts the indexing of a single file."""

	kind = "IndexingFailure"

	def persisted_message(self) -> str:
		msg = f"{self.kind}: {self}"
		return msg[:MAX_ERROR_CHARS]


class ExtractionError(IndexingFailure):
	"""Unreadable or corrupt PDF, unreadable bytes, or no extractable text."""

	kind = "ExtractionError"


class EmbeddingProviderError(IndexingFailure):
	"""Timeout, rate limit or malformed response from the embedding provider."""

	kind = "EmbeddingProviderError"


class StorageError(IndexingFailure):
	"""Vector store read or write failure."""

	kind = "StorageError"


class ValidationError(IndexingFailure):
	"""Non-PDF or inactive file submitted for indexing."""

	kind = "ValidationError"


def persisted_error(exc: BaseException) -> str:
	if isinstance(exc, IndexingFailure):
		return exc.persisted_message()
	return f"{type(exc).__name__}: {exc}"[:MAX_ERROR_CHARS]


class UnknownFileError(LookupError):
	"""No file record exists for the requested id."""


class ChatCompletionError(Exception):
	"""The chat completion provider failed; retrieval failures never raise this."""
