from fastapi import FastAPI

from docindex.dependencies import lifespan

from .health import router as health_router
from .metrics import metrics_router
from .rag.routes import router as rag_router


def create_app() -> FastAPI:
	app = FastAPI(
		title="Document Index API",
		version="0.1.0",
		separate_input_output_schemas=False,
		lifespan=lifespan,
	)

	app.include_router(health_router, tags=["health"])
	app.include_router(rag_router, tags=["rag"])
	app.include_router(metrics_router, tags=["metrics"])

	return app
