import argparse
import asyncio
import sys

from loguru import logger

from docindex.dependencies import open_services, setup_logging
from docindex.rag.schemas import IndexingRunReport, IndexScope
from docindex.settings import Settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
	p = argparse.ArgumentParser(
		description="Index every active PDF file record into the vector index"
	)
	p.add_argument("--community-id", default=None, help="Only index this community")
	p.add_argument("--folder-type", default=None, help="Only index this folder type")
	return p.parse_args(argv)


def print_report(report: IndexingRunReport) -> None:
	print(f"Run {report.run_id}")
	print(
		f"  total={report.total} successful={report.successful} "
		f"skipped={report.skipped} failed={report.failed}"
		+ (" (cancelled)" if report.cancelled else "")
	)
	for err in report.errors:
		print(f"  ! {err.file_name} ({err.file_id}): {err.error}")


async def run(scope: IndexScope | None) -> IndexingRunReport:
	settings = Settings.get()
	async with open_services(settings) as services:
		if services.orchestrator is None:
			raise RuntimeError("OPENAI_API_KEY is not set; cannot embed documents")
		return await services.orchestrator.index_all(scope)


def main(argv: list[str] | None = None) -> int:
	args = parse_args(argv)
	setup_logging(Settings.get().LOG_LEVEL)

	scope = IndexScope(community_id=args.community_id, folder_type=args.folder_type)
	try:
		report = asyncio.run(run(None if scope.is_empty() else scope))
	except Exception:
		logger.exception("Indexing run failed")
		return 1

	print_report(report)
	return 0


if __name__ == "__main__":
	sys.exit(main())
