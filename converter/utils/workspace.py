"""
Per-request workspace for uploads, outputs and scratch files.

Every path a request writes into the uploads, downloads or temp
directories is created through a RequestWorkspace and recorded on its
cleanup list, so a single cleanup() call after the response removes
everything the request produced.
"""

import re
import uuid
from collections.abc import Sequence
from pathlib import Path

from fastapi import UploadFile
from loguru import logger

from converter.config import Settings
from converter.exceptions import ErrorTypes, ValidationError
from converter.models.conversion import UploadedFile
from converter.utils.file_types import get_extension
from converter.utils.fs import cleanup_paths, ensure_directory

_SAFE_SUFFIX = re.compile(r"^\.[a-z0-9]{1,10}$")


class RequestWorkspace:
    """Filesystem scratch space owned by exactly one request."""

    def __init__(self, settings: Settings, job_id: str | None = None):
        self.settings = settings
        self.job_id = job_id or str(uuid.uuid4())
        self._paths: list[Path] = []
        self._output_dir: Path | None = None
        self._temp_dir: Path | None = None

    @property
    def output_dir(self) -> Path:
        """``downloads/<job_id>/``, created on first use."""
        if self._output_dir is None:
            self._output_dir = ensure_directory(self.settings.downloads_path / self.job_id)
            self.track(self._output_dir)
        return self._output_dir

    @property
    def temp_dir(self) -> Path:
        """``temp/<job_id>/``, created on first use."""
        if self._temp_dir is None:
            self._temp_dir = ensure_directory(self.settings.temp_path / self.job_id)
            self.track(self._temp_dir)
        return self._temp_dir

    @property
    def cleanup_list(self) -> list[Path]:
        return list(self._paths)

    def track(self, *paths: Path | None) -> None:
        """Register paths for removal when the request ends."""
        for path in paths:
            if path is not None and path not in self._paths:
                self._paths.append(Path(path))

    async def save_upload(self, upload: UploadFile) -> UploadedFile:
        """
        Stream an upload to the uploads directory.

        The per-file size ceiling is enforced while writing; a partially
        written file stays on the cleanup list.

        Raises:
            ValidationError: If the upload exceeds MAX_FILE_SIZE
        """
        original_name = upload.filename or "upload"
        suffix = get_extension(original_name)
        if not _SAFE_SUFFIX.match(suffix):
            suffix = ""

        uploads_dir = ensure_directory(self.settings.uploads_path)
        destination = uploads_dir / f"{self.job_id}-{uuid.uuid4().hex[:8]}{suffix}"
        self.track(destination)

        max_size = self.settings.MAX_FILE_SIZE
        size = 0
        with destination.open("wb") as handle:
            while True:
                chunk = await upload.read(self.settings.UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise ValidationError(
                        f"Maximum file size is {max_size // (1024 * 1024)}MB",
                        ErrorTypes.FILE_SIZE_EXCEEDED,
                        title="File too large",
                    )
                handle.write(chunk)

        logger.debug(f"[{self.job_id}] Saved upload {original_name} ({size} bytes) to {destination}")
        return UploadedFile(
            original_name=original_name,
            content_type=upload.content_type or "application/octet-stream",
            size=size,
            path=destination,
        )

    async def save_uploads(self, uploads: Sequence[UploadFile], max_count: int) -> list[UploadedFile]:
        """
        Save a batch of uploads after checking the file-count ceiling.

        Raises:
            ValidationError: If more than ``max_count`` files were sent
        """
        if len(uploads) > max_count:
            raise ValidationError(
                f"Maximum {max_count} files allowed",
                ErrorTypes.TOO_MANY_FILES,
                title="Too many files",
            )
        return [await self.save_upload(upload) for upload in uploads]

    def cleanup(self) -> list[Path]:
        """Remove every tracked path; failures are logged, never raised."""
        paths, self._paths = self._paths, []
        residual = cleanup_paths(reversed(paths))
        if residual:
            logger.warning(f"[{self.job_id}] {len(residual)} paths could not be removed")
        else:
            logger.debug(f"[{self.job_id}] Cleaned up {len(paths)} paths")
        return residual
