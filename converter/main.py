"""
FastAPI application entry point for the Universal Converter API.

This module initializes the FastAPI application with proper configuration,
middleware, exception handlers and routing for the media, document and
image conversion endpoints.
"""

import sys
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from converter.api import documents, health, images, media
from converter.config import Settings, get_settings
from converter.exceptions import BaseServiceError
from converter.middleware import LoggingMiddleware, SecurityMiddleware
from converter.models.response import ErrorResponse
from converter.services.document import DocumentService
from converter.services.image import ImageService
from converter.services.media import MediaService
from converter.services.youtube import YouTubeService
from converter.utils.fs import setup_directories
from converter.utils.shell import check_command_available


def validate_tool_paths(settings: Settings) -> None:
    """
    Warn about external tools that cannot be found.

    Raises:
        RuntimeError: In production when ffmpeg or soffice is missing
    """
    required_tools = {
        "ffmpeg": settings.FFMPEG_PATH,
        "soffice": settings.SOFFICE_PATH,
    }
    optional_tools = {"yt-dlp": settings.YTDLP_PATH}

    missing_tools = []
    for tool_name, tool_path in {**required_tools, **optional_tools}.items():
        if check_command_available(tool_path):
            logger.info(f"Tool validated: {tool_name} at {tool_path}")
            continue
        logger.warning(f"Tool not found: {tool_name} at {tool_path}")
        if tool_name in required_tools:
            missing_tools.append(f"{tool_name} (expected at {tool_path})")

    if missing_tools and settings.ENVIRONMENT == "production":
        raise RuntimeError(
            f"Required tools not found in production: {', '.join(missing_tools)}. "
            "Please ensure ffmpeg and LibreOffice are installed."
        )
    elif missing_tools:
        logger.warning(
            f"Some tools not found (non-fatal in {settings.ENVIRONMENT}): {', '.join(missing_tools)}"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info(f"Starting {settings.APP_NAME}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    directories = setup_directories(settings)
    logger.info(f"Working directories: {', '.join(str(p) for p in directories.values())}")

    try:
        validate_tool_paths(settings)
    except RuntimeError as exc:
        logger.error(f"Tool validation failed: {exc}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to run with (read from the environment when omitted)

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Convert media, documents and images between formats",
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.youtube_service = YouTubeService(settings)
    app.state.media_service = MediaService(settings, app.state.youtube_service)
    app.state.document_service = DocumentService(settings)
    app.state.image_service = ImageService(settings)

    setup_middleware(app, settings)
    setup_exception_handlers(app, settings)
    setup_routers(app, settings)

    return app


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """
    Configure middleware for the FastAPI application.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """
    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGIN.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Conversion-Info"],
    )

    # Trusted host middleware
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS
    )

    app.add_middleware(SecurityMiddleware)  # type: ignore
    app.add_middleware(LoggingMiddleware)  # type: ignore


def _error_response(
    settings: Settings, status_code: int, error: str, message: str, exc: Exception | None = None, **extra
) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, **extra)
    if exc is not None and settings.is_development:
        body.stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def setup_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Register handlers turning exceptions into JSON error bodies.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """

    @app.exception_handler(BaseServiceError)
    async def service_error_handler(request: Request, exc: BaseServiceError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(f"{request.method} {request.url.path} failed: {exc.error_type}: {exc.message}")
        return _error_response(settings, exc.status_code, exc.title, exc.message, exc, **exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        logger.warning(f"{request.method} {request.url.path} rejected: {errors}")
        return _error_response(settings, 400, "Invalid request", errors or "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return _error_response(
                settings, 404, "Not Found", f"Endpoint {request.method} {request.url.path} not found"
            )
        return _error_response(settings, exc.status_code, "Request failed", str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled exception on {request.method} {request.url.path}")
        return _error_response(settings, 500, "Internal Server Error", "An unexpected error occurred", exc)


def setup_routers(app: FastAPI, settings: Settings) -> None:
    """
    Include API routers in the FastAPI application.

    Args:
        app: FastAPI application instance
        settings: Application settings
    """

    @app.get("/", include_in_schema=False)
    async def index() -> dict:
        """Capability summary."""
        return {
            "message": f"{settings.APP_NAME} is running",
            "version": settings.VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "health": "/api/health",
                "media": "/api/media/convert",
                "playlistInfo": "/api/media/playlist-info",
                "documents": "/api/documents/convert",
                "images": "/api/images/convert",
            },
            "formats": {
                "media": settings.SUPPORTED_MEDIA_FORMATS,
                "documents": settings.SUPPORTED_DOCUMENT_FORMATS,
                "imageInput": settings.SUPPORTED_IMAGE_FORMATS,
                "imageOutput": settings.SUPPORTED_IMAGE_OUTPUT_FORMATS,
            },
            "limits": {
                "maxFileSize": settings.MAX_FILE_SIZE,
                "maxImageFiles": settings.MAX_FILES,
                "maxDocumentFiles": settings.MAX_DOCUMENT_FILES,
                "maxMediaFiles": settings.MAX_MEDIA_FILES,
            },
        }

    # API routes
    app.include_router(health.router, prefix="/api/health", tags=["health"])
    app.include_router(media.router, prefix="/api/media", tags=["media"])
    app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
    app.include_router(images.router, prefix="/api/images", tags=["images"])


def setup_logging(settings: Settings) -> None:
    """
    Configure logging with loguru.
    """
    logger.remove()  # Remove default handler

    # Add console handler
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.LOG_LEVEL,
        colorize=True
    )

    # Add file handler for production
    if settings.ENVIRONMENT == "production":
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        logger.add(
            log_dir / "app.log",
            rotation="1 day",
            retention="30 days",
            level=settings.LOG_LEVEL,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
        )


# Create the FastAPI application instance
app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        "converter.main:app",
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.DEBUG,
        log_level=_settings.LOG_LEVEL.lower()
    )
