from loguru import logger

from docindex.core.metrics import RESET_ROWS
from docindex.rag.repository import FileRecordStore
from docindex.rag.schemas import IndexScope


class RecoveryController:
	def __init__(self, files: FileRecordStore):
		self.files = files

	async def reset_failed_indexes(self, scope: IndexScope | None = None) -> int:
		"""
		Clear `indexingError` and set `forceReindex` on every active PDF that
		failed, so the next run processes it. Chunks are left alone; a later
		successful run replaces them.
		"""
		affected = await self.files.reset_failed(scope)
		RESET_ROWS.inc(affected)
		logger.info(f"Reset {affected} failed indexing attempts (scope={scope})")
		return affected
