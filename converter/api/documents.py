"""
Document API endpoints.

Converts a batch of documents (and images) to a single target format.
Failures are isolated per file: the batch succeeds while at least one
file converted, and the outcome is reported in ``X-Conversion-Info``.
"""

import json

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from loguru import logger

from converter.api.dependencies import (
    build_download_response,
    get_app_settings,
    get_document_service,
    get_workspace,
)
from converter.config import Settings
from converter.exceptions import AllConversionsFailedError, ConversionError, ValidationError
from converter.models.conversion import ConversionSummary, ConvertedOutput, DocumentFailure
from converter.services.document import DocumentService
from converter.utils.file_types import normalize_target_extension
from converter.utils.workspace import RequestWorkspace

router = APIRouter()

CONVERSION_INFO_HEADER = "X-Conversion-Info"


@router.post("/convert")
async def convert_documents(
    files: list[UploadFile] | None = File(None),
    target: str | None = Form(None),
    settings: Settings = Depends(get_app_settings),
    service: DocumentService = Depends(get_document_service),
    workspace: RequestWorkspace = Depends(get_workspace),
) -> FileResponse:
    """
    Convert uploaded documents to ``target``.

    Returns the single converted file, or a ZIP of all of them, with a
    JSON summary header. Responds 422 when no file could be converted.
    """
    try:
        uploads = [f for f in files or [] if f.filename]
        if not uploads:
            raise ValidationError("Please upload at least one document", title="No files uploaded")

        target_ext = normalize_target_extension(target, settings.SUPPORTED_DOCUMENT_FORMATS, "target format")
        saved = await workspace.save_uploads(uploads, settings.MAX_DOCUMENT_FILES)

        outputs: list[ConvertedOutput] = []
        failures: list[DocumentFailure] = []
        for upload in saved:
            try:
                output = await service.convert(upload, target_ext, workspace.output_dir, workspace.temp_dir)
            except ConversionError as exc:
                logger.warning(f"[{workspace.job_id}] Failed to convert {upload.original_name}: {exc.message}")
                failures.append(DocumentFailure(filename=upload.original_name, error=exc.message))
                continue
            outputs.append(output)

        if not outputs:
            raise AllConversionsFailedError([failure.model_dump() for failure in failures])

        summary = ConversionSummary(
            converted=len(outputs),
            failed=len(failures),
            placeholders=sum(1 for output in outputs if output.placeholder),
            failures=failures or None,
        )
        logger.info(
            f"[{workspace.job_id}] Document batch done: {summary.converted} converted, "
            f"{summary.failed} failed, {summary.placeholders} placeholder(s)"
        )
        return await build_download_response(
            outputs,
            workspace,
            "converted-documents.zip",
            headers={CONVERSION_INFO_HEADER: json.dumps(summary.model_dump(exclude_none=True))},
        )
    except Exception:
        workspace.cleanup()
        raise
