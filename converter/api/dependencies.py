"""
Shared request dependencies and download-response helpers.

Settings and services live on ``app.state`` (built by create_app) and
are handed to route functions through FastAPI dependencies.
"""

from collections.abc import Sequence

from fastapi import Depends, Request
from fastapi.responses import FileResponse
from loguru import logger
from starlette.background import BackgroundTask

from converter.config import Settings
from converter.exceptions import NoOutputProducedError
from converter.models.conversion import ConvertedOutput
from converter.services.archive import create_zip
from converter.services.document import DocumentService
from converter.services.image import ImageService
from converter.services.media import MediaService
from converter.services.youtube import YouTubeService
from converter.utils.file_types import content_type_for
from converter.utils.workspace import RequestWorkspace


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_media_service(request: Request) -> MediaService:
    return request.app.state.media_service


def get_youtube_service(request: Request) -> YouTubeService:
    return request.app.state.youtube_service


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service


def get_workspace(settings: Settings = Depends(get_app_settings)) -> RequestWorkspace:
    """A fresh workspace per request; the route owns its cleanup."""
    return RequestWorkspace(settings)


def parse_bool(value: str | bool | None, default: bool = False) -> bool:
    """Interpret multipart checkbox values (``true``, ``on``, ``1``...)."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("true", "1", "yes", "on")


async def build_download_response(
    outputs: Sequence[ConvertedOutput],
    workspace: RequestWorkspace,
    archive_name: str,
    headers: dict[str, str] | None = None,
) -> FileResponse:
    """
    Shape converted outputs into a download response.

    A single output is streamed as-is; several are bundled into
    ``archive_name``. Workspace cleanup runs after the body is sent.

    Raises:
        NoOutputProducedError: If ``outputs`` is empty
    """
    if not outputs:
        raise NoOutputProducedError("Conversion finished without producing any file")

    if len(outputs) == 1:
        output = outputs[0]
        path, filename = output.path, output.display_name
    else:
        path = await create_zip(outputs, workspace.output_dir / archive_name)
        filename = archive_name

    logger.info(f"[{workspace.job_id}] Sending {filename} ({len(outputs)} output(s))")
    return FileResponse(
        path,
        media_type=content_type_for(filename),
        filename=filename,
        headers=headers,
        background=BackgroundTask(workspace.cleanup),
    )
