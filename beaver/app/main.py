"""FastAPI application for the Beaver AI agent backend."""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from beaver.llm.text_generation import ProviderError, TextGenerator, create_text_generator
from beaver.locking.redis_lock import LockTimeoutError
from beaver.orchestrator.agent import ValidationError
from beaver.orchestrator.agent_orchestrator import create_orchestrator
from beaver.sandbox.e2b_client import SandboxProvider

from .config import Settings, settings
from .database import Database
from .dependencies import get_text_generator
from .repository import ChatRepository
from .routes import agents, sandboxes

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class AnalyzeImageRequest(BaseModel):
    image_data: str  # base64
    mime_type: str = "image/png"


def create_app(
    app_settings: Settings = settings,
    text_generator: Optional[TextGenerator] = None,
    sandbox_provider: Optional[SandboxProvider] = None
) -> FastAPI:
    """
    Build the API application.

    Args:
        app_settings: Settings to wire the app from
        text_generator: Overrides the generator built from settings
        sandbox_provider: Overrides the E2B client built from settings
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown."""
        # Startup
        logger.info("Starting Beaver AI API")
        database = Database(app_settings.database_url, echo=app_settings.debug)
        await database.init_db()
        logger.info("Database initialized")

        repository = ChatRepository(database.session_factory)
        generator = text_generator or create_text_generator(app_settings)
        app.state.repository = repository
        app.state.text_generator = generator
        app.state.orchestrator = create_orchestrator(
            app_settings,
            text_generator=generator,
            sandbox_provider=sandbox_provider,
            on_evict=repository.save_context,
            loader=repository.load_context
        )

        yield

        # Shutdown
        logger.info("Shutting down Beaver AI API")
        await app.state.orchestrator.shutdown()
        await database.close()

    app = FastAPI(
        title="Beaver AI API",
        description="Multi-agent planning and project scaffolding backend",
        version="0.1.0",
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[app_settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_errors(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(LockTimeoutError)
    async def lock_timeout_handler(request, exc: LockTimeoutError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    app.include_router(agents.router)
    app.include_router(sandboxes.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Beaver AI API",
            "version": "0.1.0",
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/api/analyze-image")
    async def analyze_image(
        request: AnalyzeImageRequest,
        generator: Optional[TextGenerator] = Depends(get_text_generator)
    ):
        """Describe an uploaded image with the configured model."""
        try:
            image_bytes = base64.b64decode(request.image_data, validate=True)
        except binascii.Error:
            raise HTTPException(status_code=400, detail="image_data must be base64 encoded")

        if generator is None:
            raise HTTPException(status_code=503, detail="No text generation provider configured")

        try:
            description = await generator.analyze_image(image_bytes, request.mime_type)
        except ProviderError as e:
            logger.error(f"Image analysis failed: {e}")
            raise HTTPException(status_code=502, detail=str(e))

        return {"description": description}

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
