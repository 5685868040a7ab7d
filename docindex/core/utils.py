from datetime import datetime, timezone

PDF_MIME = "application/pdf"


def now_utc() -> datetime:
	return datetime.now(timezone.utc)


def short_err(stage: str, e: BaseException, limit: int = 300) -> str:
	s = f"{stage}: {type(e).__name__}: {str(e)}"
	return (s[: limit - 3] + "...") if len(s) > limit else s
