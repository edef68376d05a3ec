"""
Image API endpoints.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from converter.api.dependencies import (
    build_download_response,
    get_app_settings,
    get_image_service,
    get_workspace,
    parse_bool,
)
from converter.config import Settings
from converter.exceptions import ValidationError
from converter.models.conversion import ImageOptions
from converter.services.image import ImageService
from converter.utils.file_types import FileDomain, classify, normalize_target_extension
from converter.utils.workspace import RequestWorkspace

router = APIRouter()


def _build_options(
    settings: Settings,
    format: str | None,
    quality: str | None,
    resize: str | None,
    width: str | None,
    height: str | None,
    maintain_aspect: str | None,
) -> ImageOptions:
    target = normalize_target_extension(format, settings.SUPPORTED_IMAGE_OUTPUT_FORMATS, "output format")
    try:
        return ImageOptions(
            format=target,
            quality=quality if quality not in (None, "") else settings.DEFAULT_IMAGE_QUALITY,
            resize=parse_bool(resize),
            width=width,
            height=height,
            maintain_aspect=parse_bool(maintain_aspect, default=True),
        )
    except PydanticValidationError as exc:
        errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        raise ValidationError(f"Invalid image options: {errors}") from exc


@router.post("/convert")
async def convert_images(
    files: list[UploadFile] | None = File(None),
    format: str | None = Form(None),
    quality: str | None = Form(None),
    resize: str | None = Form(None),
    width: str | None = Form(None),
    height: str | None = Form(None),
    maintain_aspect: str | None = Form(None, alias="maintainAspect"),
    settings: Settings = Depends(get_app_settings),
    service: ImageService = Depends(get_image_service),
    workspace: RequestWorkspace = Depends(get_workspace),
) -> FileResponse:
    """
    Convert uploaded images to one format.

    Non-image uploads are skipped; the first failing image aborts the
    request.
    """
    try:
        uploads = [f for f in files or [] if f.filename]
        if not uploads:
            raise ValidationError("Please upload at least one image", title="No files uploaded")

        options = _build_options(settings, format, quality, resize, width, height, maintain_aspect)
        saved = await workspace.save_uploads(uploads, settings.MAX_FILES)

        images = []
        for upload in saved:
            if classify(upload.original_name, settings) is FileDomain.IMAGE:
                images.append(upload)
            else:
                logger.warning(f"[{workspace.job_id}] Skipping non-image file {upload.original_name}")
        if not images:
            raise ValidationError("None of the uploaded files is a supported image", title="No valid images")

        outputs = [
            await service.convert(upload, options, workspace.output_dir, workspace.temp_dir)
            for upload in images
        ]
        return await build_download_response(outputs, workspace, "converted-images.zip")
    except Exception:
        workspace.cleanup()
        raise
