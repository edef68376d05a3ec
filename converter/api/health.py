"""
Health check endpoints for the Universal Converter API.

This module provides health check endpoints for monitoring
and service discovery.
"""

import asyncio
import platform
from datetime import datetime, timezone

import PIL
import psutil
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from converter.api.dependencies import get_app_settings
from converter.config import Settings
from converter.models.response import HealthResponse
from converter.utils.shell import get_command_version

router = APIRouter()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def check_dependencies(settings: Settings) -> dict[str, bool]:
    """
    Check the status of external dependencies.

    Returns:
        dict: Tool name -> callable
    """
    tool_flags = {
        "ytdlp": (settings.YTDLP_PATH, "--version"),
        "ffmpeg": (settings.FFMPEG_PATH, "-version"),
        "libreoffice": (settings.SOFFICE_PATH, "--version"),
    }
    versions = await asyncio.gather(*(
        get_command_version(path, flag, timeout=settings.TOOL_CHECK_TIMEOUT)
        for path, flag in tool_flags.values()
    ))
    return {name: version is not None for name, version in zip(tool_flags, versions)}


@router.get("", response_model=HealthResponse)
async def detailed_health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """
    Detailed health check endpoint with converter and system information.

    Returns:
        HealthResponse: Converter availability and host metrics
    """
    dependencies = await check_dependencies(settings)
    services = {
        **dependencies,
        "pillow": PIL.__version__,
        "playlistSupport": dependencies["ytdlp"],
        "imageConversion": True,
    }

    system_info = {
        "platform": platform.system(),
        "platform_version": platform.version(),
        "python_version": platform.python_version(),
        "architecture": platform.architecture()[0],
    }
    try:
        system_metrics = {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage("/").percent,
        }
    except OSError as exc:
        logger.warning(f"Could not collect system metrics: {exc}")
        system_metrics = None

    return HealthResponse(
        status="OK",
        message=f"{settings.APP_NAME} is running",
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=_timestamp(),
        services=services,
        system=system_info,
        metrics=system_metrics,
    )


@router.get("/ready")
async def readiness_check(settings: Settings = Depends(get_app_settings)) -> JSONResponse:
    """
    Readiness check endpoint for container health checks.

    Ready when ffmpeg and LibreOffice are callable.
    """
    dependencies = await check_dependencies(settings)
    critical_deps = ["ffmpeg", "libreoffice"]
    missing = [dep for dep in critical_deps if not dependencies[dep]]

    if not missing:
        return JSONResponse(
            status_code=200,
            content={"status": "ready", "service": settings.APP_NAME, "timestamp": _timestamp()},
        )
    logger.warning(f"Readiness check failed, missing: {', '.join(missing)}")
    return JSONResponse(
        status_code=503,
        content={
            "status": "not_ready",
            "service": settings.APP_NAME,
            "missing_dependencies": missing,
            "timestamp": _timestamp(),
        },
    )
