"""FastAPI application setup."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..app import Application
from ..errors import AgentError, ErrorKind
from ..logging_config import get_logger
from .routes import agents, dead_letters, observability

logger = get_logger(__name__)

HTTP_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNSUPPORTED: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
}

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"

# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
    status = HTTP_STATUS.get(exc.kind, 500)
    if status == 500:
        logger.error("Request %s failed: %s", request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_envelope().to_dict()})


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        await application.start()
        yield
        await application.stop()

    fastapi_app = FastAPI(
        title="Landing Pad Agents API",
        description="Admin API for the content agent runtime",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in origins if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    fastapi_app.add_exception_handler(AgentError, agent_error_handler)

    # Include routers
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(agents.create_agents_router(application))
    fastapi_app.include_router(dead_letters.create_dead_letters_router(application))

    return fastapi_app
