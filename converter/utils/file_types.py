"""
File type classification by extension.

Maps an uploaded filename onto the image/document/other domains using
the allow-lists from Settings, and provides the Content-Type lookup
used for download responses.
"""

from enum import Enum
from pathlib import PurePath

from converter.config import Settings
from converter.exceptions import ErrorTypes, ValidationError


class FileDomain(str, Enum):
    """Conversion domain of a file."""

    IMAGE = "image"
    DOCUMENT = "document"
    OTHER = "other"


MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".m4a": "audio/mp4",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".bmp": "image/bmp",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".txt": "text/plain; charset=utf-8",
    ".zip": "application/zip",
}


def get_extension(filename: str) -> str:
    """Lowercase extension of ``filename`` including the dot, or ''."""
    return PurePath(filename).suffix.lower()


def is_image_file(filename: str, settings: Settings) -> bool:
    return get_extension(filename) in settings.SUPPORTED_IMAGE_FORMATS


def is_document_file(filename: str, settings: Settings) -> bool:
    return get_extension(filename) in settings.SUPPORTED_DOCUMENT_FORMATS


def classify(filename: str, settings: Settings) -> FileDomain:
    """
    Classify a filename into a conversion domain.

    Image extensions win over document extensions; anything on neither
    allow-list is OTHER.
    """
    if is_image_file(filename, settings):
        return FileDomain.IMAGE
    if is_document_file(filename, settings):
        return FileDomain.DOCUMENT
    return FileDomain.OTHER


def normalize_target_extension(target: str | None, allowed: list[str], label: str) -> str:
    """
    Validate a requested output format against an allow-list.

    Args:
        target: Format from the request, with or without a leading dot
        allowed: Allowed formats (``.pdf`` style or ``pdf`` style)
        label: Human name of the field for the error message

    Returns:
        The format in the same style as ``allowed`` entries

    Raises:
        ValidationError: If the format is missing or not allowed
    """
    if not target or not target.strip():
        raise ValidationError(
            f"Please specify the {label}",
            title="Format required",
        )

    bare = target.strip().lower().lstrip(".")
    dotted = allowed and allowed[0].startswith(".")
    candidate = f".{bare}" if dotted else bare
    if candidate not in allowed:
        raise ValidationError(
            f"Unsupported {label} '{target}'. Supported formats: {', '.join(allowed)}",
            ErrorTypes.INVALID_EXTENSION,
            title="Unsupported target format",
        )
    return candidate


def content_type_for(path: str | PurePath) -> str:
    """Content-Type for a download, based on the file extension."""
    return MIME_TYPES.get(PurePath(path).suffix.lower(), "application/octet-stream")
