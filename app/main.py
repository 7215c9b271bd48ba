from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.belt_tests.router import router as belt_tests_router
from app.api.v1.billing.router import router as billing_router
from app.api.v1.enrollments.router import router as enrollments_router
from app.api.v1.essays.router import router as essays_router
from app.api.v1.programs.router import router as programs_router
from app.api.v1.progress.router import router as progress_router
from app.api.v1.promotions.router import router as promotions_router
from app.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Dojo Management Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(programs_router)
    app.include_router(enrollments_router)
    app.include_router(progress_router)
    app.include_router(promotions_router)
    app.include_router(essays_router)
    app.include_router(belt_tests_router)
    app.include_router(billing_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    logger.info("Application configured")
    return app


app = create_app()
