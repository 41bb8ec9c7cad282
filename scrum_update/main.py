"""
ASGI entry point for the scrum update service.

Run locally with ``python -m scrum_update.main`` or point uvicorn at
``scrum_update.main:app``.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scrum_update import __version__
from scrum_update.api.deps import container
from scrum_update.api.v1 import chat, health, jira, sessions
from scrum_update.core.config import settings
from scrum_update.core.constants import API_PREFIX
from scrum_update.core.exceptions import ScrumUpdateError
from scrum_update.core.logging import LogContext, clear_context, get_logger, setup_logging
from scrum_update.core.security import generate_request_id
from scrum_update.database.config import close_db, init_db

setup_logging()
logger = get_logger(__name__)

API_TITLE = "Scrum Update API"

ROUTERS = (
    (health.router, "Health"),
    (sessions.router, "Sessions"),
    (chat.router, "Chat"),
    (jira.router, "Jira"),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Scrum Update starting", app_name=settings.app_name, env=settings.app_env)
    container.initialize()
    if settings.database.create_tables:
        await init_db()

    yield

    logger.info("Scrum Update stopping")
    await close_db()


async def request_context(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag every log line of a request with its id and echo the id back."""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    clear_context()
    with LogContext(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


async def handle_scrum_update_error(request: Request, exc: ScrumUpdateError) -> JSONResponse:
    # Client mistakes are routine; only upstream and server faults are errors.
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request failed", error_code=exc.code, error_message=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", error=str(exc), path=request.url.path)
    fallback = ScrumUpdateError("An unexpected error occurred")
    return JSONResponse(status_code=fallback.status_code, content=fallback.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ScrumUpdateError, handle_scrum_update_error)
    app.add_exception_handler(Exception, handle_unexpected_error)


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware, handlers and routes."""
    docs_enabled = settings.debug
    application = FastAPI(
        title=API_TITLE,
        description="Chat sessions and day-wise scrum update drafts",
        version=__version__,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(request_context)
    register_exception_handlers(application)

    for router, tag in ROUTERS:
        application.include_router(router, prefix=API_PREFIX, tags=[tag])

    @application.get("/")
    async def root() -> dict[str, str]:
        return {
            "name": settings.app_name,
            "version": __version__,
            "docs": "/docs" if docs_enabled else "Disabled in production",
        }

    @application.get("/api")
    async def api_info() -> dict[str, Any]:
        """List the resource groups mounted under the API prefix."""
        return {
            "name": API_TITLE,
            "version": __version__,
            "prefix": API_PREFIX,
            "endpoints": {tag.lower(): f"{API_PREFIX}/{tag.lower()}" for _, tag in ROUTERS},
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "scrum_update.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
