"""
Document conversion service.

Converts office documents through LibreOffice running headless, builds
DOCX files from images with python-docx, and substitutes plain-text
placeholder artifacts for conversions that cannot be done faithfully.
"""

import asyncio
import re
import shutil
import uuid
import zipfile
from datetime import datetime, timezone
from pathlib import Path

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Emu
from loguru import logger

from converter.config import Settings
from converter.exceptions import ConversionError, ConversionTimeoutError
from converter.models.conversion import ConvertedOutput, UploadedFile
from converter.utils.file_types import FileDomain, classify
from converter.utils.fs import ensure_directory, redact_paths
from converter.utils.shell import run_command

# Known-unreliable pairs: answered with a placeholder, never attempted
BLOCKED_CONVERSIONS: dict[tuple[str, str], str] = {
    (".pdf", ".pptx"): "PDF to PowerPoint conversion is not supported reliably.",
    (".pdf", ".xlsx"): "PDF to Excel conversion is not reliable.",
    (".pptx", ".xlsx"): "PowerPoint to Excel conversion does not preserve the content structure.",
    (".xlsx", ".pptx"): "Excel to PowerPoint conversion does not work as expected.",
}
SLOW_CONVERSIONS = {(".docx", ".pptx")}

ZIP_CONTAINER_FORMATS = {".docx", ".pptx", ".xlsx", ".odt"}
PDF_WRITER_TARGETS = {".docx", ".odt", ".txt"}
CONVERT_FILTERS = {".txt": "txt:Text (encoded):UTF8"}

EMU_PER_PIXEL = 9525
IMAGE_WIDTH_PX = 500
IMAGE_HEIGHT_PX = 400


def safe_stem(name: str) -> str:
    """Filename stem reduced to ``[A-Za-z0-9_-]``."""
    stem = Path(name).stem
    return re.sub(r"[^a-zA-Z0-9_-]", "_", stem) or "document"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pair_label(source_ext: str, target_ext: str) -> str:
    return f"{source_ext.lstrip('.').upper()} -> {target_ext.lstrip('.').upper()}"


class DocumentService:
    """Service for document conversions."""

    def __init__(self, settings: Settings):
        """
        Initialize the document service.

        Args:
            settings: Application settings (soffice path, timeouts, allow-lists)
        """
        self.settings = settings
        self.soffice_path = settings.SOFFICE_PATH

    async def convert(
        self,
        upload: UploadedFile,
        target_ext: str,
        output_dir: Path,
        work_dir: Path,
    ) -> ConvertedOutput:
        """
        Convert one uploaded file to ``target_ext``.

        Args:
            upload: Uploaded document or image
            target_ext: Target extension with leading dot, e.g. ``.pdf``
            output_dir: Per-request output directory
            work_dir: Per-request scratch directory

        Returns:
            The converted output, or a placeholder artifact for blocked or
            failed document-to-document conversions

        Raises:
            ConversionError: For unsupported or corrupted sources and for
                image-to-PDF failures
        """
        ensure_directory(output_dir)

        domain = classify(upload.original_name, self.settings)
        if domain is FileDomain.IMAGE:
            return await self._convert_image(upload, target_ext, output_dir, work_dir)

        if domain is not FileDomain.DOCUMENT:
            raise ConversionError(
                f"Unsupported source format '{upload.extension or upload.original_name}'",
                "INVALID_SOURCE",
            )

        self._validate_source(upload)
        return await self._convert_document(upload, target_ext, output_dir, work_dir)

    async def _convert_document(
        self, upload: UploadedFile, target_ext: str, output_dir: Path, work_dir: Path
    ) -> ConvertedOutput:
        source_ext = upload.extension
        pair = (source_ext, target_ext)

        reason = BLOCKED_CONVERSIONS.get(pair)
        if reason:
            logger.warning(f"Blocked conversion: {_pair_label(*pair)} for {upload.original_name}")
            return self._write_placeholder(
                upload, target_ext, output_dir, self._blocked_text(upload, target_ext, reason)
            )

        timeout = (
            self.settings.DOCUMENT_SLOW_CONVERSION_TIMEOUT
            if pair in SLOW_CONVERSIONS
            else self.settings.DOCUMENT_CONVERSION_TIMEOUT
        )

        try:
            converted = await self._run_libreoffice(
                upload.path, target_ext, work_dir, timeout, upload.original_name
            )
        except ConversionError as exc:
            logger.warning(f"LibreOffice conversion failed for {upload.original_name}: {exc}")
            if pair in SLOW_CONVERSIONS:
                content = self._docx_to_pptx_failure_text(upload, exc)
            else:
                content = self._failure_text(upload, target_ext, exc)
            return self._write_placeholder(upload, target_ext, output_dir, content)

        logger.info(f"LibreOffice conversion successful: {_pair_label(*pair)} for {upload.original_name}")
        return self._store(converted, upload, target_ext, output_dir)

    async def _convert_image(
        self, upload: UploadedFile, target_ext: str, output_dir: Path, work_dir: Path
    ) -> ConvertedOutput:
        if upload.size == 0:
            raise ConversionError(f"File '{upload.original_name}' is empty", "INVALID_SOURCE")

        if target_ext == ".docx":
            output_path = output_dir / f"{uuid.uuid4().hex[:8]}-{safe_stem(upload.original_name)}.docx"
            try:
                await asyncio.to_thread(self._build_image_docx, upload.path, output_path)
            except Exception as exc:
                logger.error(f"python-docx failed to embed {upload.original_name}: {exc}")
                raise ConversionError(
                    f"Could not embed '{upload.original_name}' in DOCX: the image format is not supported"
                ) from exc
            return ConvertedOutput(
                path=output_path,
                display_name=f"{safe_stem(upload.original_name)}_converted.docx",
            )

        if target_ext == ".pdf":
            try:
                converted = await self._run_libreoffice(
                    upload.path, target_ext, work_dir, self.settings.DOCUMENT_CONVERSION_TIMEOUT, upload.original_name
                )
            except ConversionError as exc:
                logger.warning(f"Image to PDF failed for {upload.original_name}: {exc}")
                raise ConversionError(
                    "PDF conversion of images is not available on this server. "
                    "Please use DOCX for image conversion."
                ) from exc
            return self._store(converted, upload, target_ext, output_dir)

        # xlsx/odt/txt cannot embed images: describe the file instead
        content = (
            "Image Document Conversion\n"
            "=========================\n\n"
            f"Original File: {upload.original_name}\n"
            f"File Type: {upload.content_type}\n"
            f"File Size: {round(upload.size / 1024)} KB\n"
            f"Conversion Date: {_timestamp()}\n\n"
            f"Note: images cannot be embedded in {target_ext.lstrip('.').upper()} files.\n"
            "For full image embedding, please use DOCX conversion.\n"
        )
        return self._write_placeholder(upload, target_ext, output_dir, content)

    async def _run_libreoffice(
        self, source: Path, target_ext: str, work_dir: Path, timeout: float, source_label: str = "<source>"
    ) -> Path:
        """
        Run ``soffice --headless --convert-to`` in an isolated directory.

        Each call gets its own user profile so concurrent conversions do
        not contend for the same LibreOffice instance.

        Tool output quoted in errors has ``source`` replaced by ``source_label``
        and the scratch directory masked.

        Raises:
            ConversionError: If soffice is missing, fails or writes no output
            ConversionTimeoutError: If ``timeout`` is exceeded
        """
        call_dir = ensure_directory(work_dir / f"soffice-{uuid.uuid4().hex[:8]}")
        out_dir = ensure_directory(call_dir / "out")
        profile_uri = (call_dir / "profile").resolve().as_uri()

        cmd = [
            self.soffice_path,
            "--headless",
            "--norestore",
            "--nologo",
            "--nolockcheck",
            f"-env:UserInstallation={profile_uri}",
        ]
        if source.suffix.lower() == ".pdf" and target_ext in PDF_WRITER_TARGETS:
            cmd.append("--infilter=writer_pdf_import")
        cmd.extend([
            "--convert-to", CONVERT_FILTERS.get(target_ext, target_ext.lstrip(".")),
            "--outdir", str(out_dir),
            str(source),
        ])

        logger.debug(f"Converting {source.name} to {target_ext} with LibreOffice (timeout {timeout}s)")
        try:
            result = await run_command(cmd, cwd=call_dir, timeout=timeout)
        except FileNotFoundError:
            raise ConversionError("LibreOffice (soffice) is not installed on this server") from None
        except ConversionTimeoutError:
            raise ConversionError(
                f"Conversion timeout - LibreOffice took longer than {timeout:g} seconds"
            ) from None

        expected = out_dir / f"{source.stem}{target_ext}"
        if result.returncode != 0 or not expected.exists():
            output = (result.stderr or result.stdout).strip()
            logger.debug(f"soffice output for {source.name}: {output}")
            detail = redact_paths(output, {source: source_label, call_dir: "<workdir>"}).splitlines()
            raise ConversionError(
                f"LibreOffice conversion failed: {detail[-1] if detail else f'exit code {result.returncode}'}"
            )
        return expected

    def _validate_source(self, upload: UploadedFile) -> None:
        """
        Reject empty or mislabelled documents before invoking LibreOffice.

        Raises:
            ConversionError: If the content cannot be a valid file of its type
        """
        ext = upload.extension
        if upload.size == 0:
            raise ConversionError(f"File '{upload.original_name}' is empty", "INVALID_SOURCE")

        if ext == ".pdf":
            with upload.path.open("rb") as handle:
                valid = handle.read(1024).lstrip().startswith(b"%PDF")
        elif ext in ZIP_CONTAINER_FORMATS:
            valid = zipfile.is_zipfile(upload.path)
        else:
            valid = True

        if not valid:
            raise ConversionError(
                f"File '{upload.original_name}' is corrupted or is not a valid {ext.lstrip('.').upper()} file",
                "INVALID_SOURCE",
            )

    def _store(self, converted: Path, upload: UploadedFile, target_ext: str, output_dir: Path) -> ConvertedOutput:
        stem = safe_stem(upload.original_name)
        destination = output_dir / f"{uuid.uuid4().hex[:8]}-{stem}{target_ext}"
        shutil.move(str(converted), destination)
        return ConvertedOutput(path=destination, display_name=f"{stem}_converted{target_ext}")

    def _write_placeholder(
        self, upload: UploadedFile, target_ext: str, output_dir: Path, content: str
    ) -> ConvertedOutput:
        stem = safe_stem(upload.original_name)
        display_name = f"{stem}_{target_ext.lstrip('.')}_placeholder.txt"
        destination = output_dir / f"{uuid.uuid4().hex[:8]}-{display_name}"
        destination.write_text(content, encoding="utf-8")
        logger.info(f"Wrote placeholder artifact for {upload.original_name}: {display_name}")
        return ConvertedOutput(path=destination, display_name=display_name, placeholder=True)

    @staticmethod
    def _build_image_docx(image_path: Path, output_path: Path) -> None:
        document = Document()
        paragraph = document.add_paragraph()
        paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
        paragraph.add_run().add_picture(
            str(image_path),
            width=Emu(IMAGE_WIDTH_PX * EMU_PER_PIXEL),
            height=Emu(IMAGE_HEIGHT_PX * EMU_PER_PIXEL),
        )
        document.save(str(output_path))

    @staticmethod
    def _blocked_text(upload: UploadedFile, target_ext: str, reason: str) -> str:
        return (
            "Conversion Not Supported\n"
            "========================\n\n"
            f"Original File: {upload.original_name}\n"
            f"Requested Conversion: {_pair_label(upload.extension, target_ext)}\n\n"
            f"{reason}\n\n"
            "Reliable conversion paths:\n"
            "- DOCX <-> PDF <-> TXT\n"
            "- XLSX -> PDF\n"
            "- PPTX -> PDF\n\n"
            "For this specific conversion, export from the original office\n"
            "application (File -> Export) instead.\n"
        )

    @staticmethod
    def _failure_text(upload: UploadedFile, target_ext: str, error: Exception) -> str:
        return (
            "Conversion Failed\n"
            "=================\n\n"
            f"Original File: {upload.original_name}\n"
            f"Attempted Conversion: {_pair_label(upload.extension, target_ext)}\n"
            f"Error: {error}\n\n"
            "Possible causes:\n"
            "1. Unsupported file format combination\n"
            "2. Password-protected source file\n"
            "3. Document complexity beyond the converter's capabilities\n\n"
            "Suggested alternatives:\n"
            "1. Convert to PDF instead\n"
            "2. Check that the file opens in its native application\n"
            "3. Split large documents into smaller parts\n\n"
            f"Timestamp: {_timestamp()}\n"
        )

    @staticmethod
    def _docx_to_pptx_failure_text(upload: UploadedFile, error: Exception) -> str:
        return (
            "DOCX to PPTX Conversion Failed\n"
            "==============================\n\n"
            f"Original File: {upload.original_name}\n"
            "Attempted: DOCX -> PPTX\n"
            f"Error: {error}\n\n"
            "Word documents and slide decks have very different structures:\n"
            "text flow, tables and images need manual placement on slides.\n\n"
            "Recommended:\n"
            f"1. Open {upload.original_name} in a word processor\n"
            "2. Export or copy the content into a presentation application\n\n"
            f"Conversion attempted: {_timestamp()}\n"
        )
