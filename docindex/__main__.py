import uvicorn

from docindex.settings import Settings


def main() -> None:
	settings = Settings.get()
	uvicorn.run(
		app="docindex:create_app",
		factory=True,
		host=settings.HOST,
		port=settings.PORT,
		reload=settings.RELOAD,
		workers=settings.WORKERS,
		log_level=settings.LOG_LEVEL.lower(),
		use_colors=True,
	)


if __name__ == "__main__":
	main()
