"""
Media API endpoints.

Converts uploaded audio/video to mp3/mp4, downloads from video-site
URLs and reports playlist metadata.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from converter.api.dependencies import (
    build_download_response,
    get_app_settings,
    get_media_service,
    get_workspace,
    get_youtube_service,
    parse_bool,
)
from converter.config import Settings
from converter.exceptions import ValidationError
from converter.models.conversion import MediaFormat, MediaOptions
from converter.models.request import PlaylistInfoRequest
from converter.models.response import PlaylistInfoResponse
from converter.services.media import MediaService
from converter.services.youtube import YouTubeService
from converter.utils.file_types import normalize_target_extension
from converter.utils.workspace import RequestWorkspace

router = APIRouter()


def _build_options(
    settings: Settings,
    format: str | None,
    quality: str | None,
    resolution: str | None,
    download_playlist: str | None,
) -> MediaOptions:
    target = MediaFormat(normalize_target_extension(format, settings.SUPPORTED_MEDIA_FORMATS, "output format"))
    default_quality = (
        settings.DEFAULT_AUDIO_QUALITY if target is MediaFormat.MP3 else settings.DEFAULT_VIDEO_QUALITY
    )
    try:
        return MediaOptions(
            format=target,
            quality=(quality or default_quality).strip().lower(),
            resolution=resolution or settings.DEFAULT_VIDEO_RESOLUTION,
            download_playlist=parse_bool(download_playlist),
        )
    except PydanticValidationError as exc:
        errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        raise ValidationError(f"Invalid media options: {errors}") from exc


@router.post("/convert")
async def convert_media(
    file: list[UploadFile] | None = File(None),
    url: str | None = Form(None),
    format: str | None = Form(None),
    resolution: str | None = Form(None),
    quality: str | None = Form(None),
    download_playlist: str | None = Form(None, alias="downloadPlaylist"),
    settings: Settings = Depends(get_app_settings),
    service: MediaService = Depends(get_media_service),
    workspace: RequestWorkspace = Depends(get_workspace),
) -> FileResponse:
    """
    Convert an uploaded file or download a URL as mp3/mp4.

    A playlist URL requires ``downloadPlaylist=true``; several
    resulting files are returned as a ZIP archive.
    """
    try:
        url = url.strip() if url else None
        uploads = [f for f in file or [] if f.filename]
        if not uploads and not url:
            raise ValidationError("Please provide a file or URL", title="No input provided")

        options = _build_options(settings, format, quality, resolution, download_playlist)

        if uploads:
            saved = await workspace.save_uploads(uploads, settings.MAX_MEDIA_FILES)
            outputs = [await service.convert_upload(saved[0], options, workspace.output_dir)]
        else:
            outputs = await service.convert_url(url, options, workspace.output_dir)

        return await build_download_response(outputs, workspace, f"media-{workspace.job_id[:8]}.zip")
    except Exception:
        workspace.cleanup()
        raise


@router.post("/playlist-info", response_model=PlaylistInfoResponse, response_model_by_alias=True)
async def playlist_info(
    body: PlaylistInfoRequest,
    youtube: YouTubeService = Depends(get_youtube_service),
) -> PlaylistInfoResponse:
    """Return video or playlist metadata for a URL."""
    if not body.url or not body.url.strip():
        raise ValidationError("URL is required", title="No URL provided")

    info = await youtube.get_playlist_info(body.url.strip())
    logger.info(f"Playlist info for {body.url}: playlist={info.is_playlist}, videos={info.video_count}")
    return info
