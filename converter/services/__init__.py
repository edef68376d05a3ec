"""
Services package for the Universal Converter API.

This package contains the conversion services wrapping external tools
(ffmpeg, yt-dlp, LibreOffice) and Pillow.
"""

from .archive import create_zip, unique_entry_names
from .document import BLOCKED_CONVERSIONS, DocumentService
from .image import ImageService, compute_target_size
from .media import MediaService
from .youtube import YouTubeService, build_format_selector, is_playlist, translate_download_error

__all__ = [
    # Media services
    "MediaService",
    "YouTubeService",
    "is_playlist",
    "build_format_selector",
    "translate_download_error",
    # Document services
    "DocumentService",
    "BLOCKED_CONVERSIONS",
    # Image services
    "ImageService",
    "compute_target_size",
    # Archives
    "create_zip",
    "unique_entry_names",
]
