import asyncio
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import httpx

from docindex.core.errors import ExtractionError
from docindex.core.utils import short_err
from docindex.rag.schemas import FileRecord
from docindex.settings import Settings


class BlobStore(Protocol):
	async def read(self, record: FileRecord) -> bytes: ...

	async def close(self) -> None: ...


class FilesystemBlobStore:
	"""Reads `filePath` relative to a root directory."""

	def __init__(self, root: str | Path):
		self.root = Path(root).resolve()

	def _resolve(self, record: FileRecord) -> Path:
		key = record.file_path or record.file_id
		path = (self.root / key.lstrip("/")).resolve()
		if not path.is_relative_to(self.root):
			raise ExtractionError(f"Blob path escapes storage root: {key}")
		return path

	async def read(self, record: FileRecord) -> bytes:
		path = self._resolve(record)
		try:
			return await asyncio.to_thread(path.read_bytes)
		except OSError as e:
			raise ExtractionError(short_err("download", e)) from e

	async def close(self) -> None:
		return None


class HttpBlobStore:
	"""
	Fetches blobs over HTTP. A `filePath` that is already a URL is fetched
	as-is; bare paths are resolved against the base URL.
	"""

	def __init__(
		self,
		base_url: str,
		token: str = "",
		timeout: float = 60.0,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		headers = {"Authorization": f"Bearer {token}"} if token else {}
		self.base_url = base_url.rstrip("/")
		self._client = httpx.AsyncClient(
			headers=headers, timeout=timeout, transport=transport
		)

	def url_for(self, record: FileRecord) -> str:
		key = record.file_path or record.file_id
		if key.startswith(("http://", "https://")):
			return key
		return f"{self.base_url}/{quote(key.lstrip('/'))}"

	async def read(self, record: FileRecord) -> bytes:
		url = self.url_for(record)
		try:
			resp = await self._client.get(url)
			resp.raise_for_status()
		except httpx.HTTPError as e:
			raise ExtractionError(short_err("download", e)) from e
		return resp.content

	async def close(self) -> None:
		await self._client.aclose()


def blob_store_from_settings(settings: Settings) -> BlobStore:
	if settings.BLOB_BACKEND == "http":
		return HttpBlobStore(
			settings.BLOB_BASE_URL,
			token=settings.BLOB_TOKEN,
			timeout=settings.BLOB_TIMEOUT,
		)
	return FilesystemBlobStore(settings.BLOB_ROOT)
