"""
Conversion models for the Universal Converter API.

This module defines Pydantic models for the transient, per-request
conversion data: uploaded files, conversion options and outputs.
"""

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class MediaFormat(str, Enum):
    """Output formats of the media endpoint."""

    MP3 = "mp3"
    MP4 = "mp4"


class Quality(str, Enum):
    """Quality tiers shared by audio and video conversions."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UploadedFile(BaseModel):
    """A multipart upload stored on disk for the lifetime of one request."""

    original_name: str = Field(..., description="Filename as sent by the client")
    content_type: str = Field(default="application/octet-stream", description="Client-declared MIME type")
    size: int = Field(..., ge=0, description="Size in bytes")
    path: Path = Field(..., description="Location in the uploads directory")

    @property
    def extension(self) -> str:
        return Path(self.original_name).suffix.lower()

    @property
    def stem(self) -> str:
        return Path(self.original_name).stem


class ConvertedOutput(BaseModel):
    """A file produced by a conversion service."""

    path: Path = Field(..., description="Output file on disk")
    display_name: str = Field(..., description="Name used for downloads and archive entries")
    placeholder: bool = Field(default=False, description="True for degraded text artifacts")


class MediaOptions(BaseModel):
    """Options of a media conversion request."""

    format: MediaFormat
    quality: Quality = Quality.HIGH
    resolution: str = "720p"
    download_playlist: bool = False

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        """Accept heights like ``720``, ``720p`` or ``1080P``."""
        match = re.fullmatch(r"\s*(\d{3,4})\s*[pP]?\s*", v)
        if not match:
            raise ValueError("resolution must look like 720p")
        return f"{int(match.group(1))}p"

    @property
    def height(self) -> int:
        return int(self.resolution.rstrip("p"))

    @property
    def audio_bitrate(self) -> int:
        """Audio bitrate in kbps for the quality tier."""
        return {Quality.HIGH: 320, Quality.MEDIUM: 192, Quality.LOW: 128}[self.quality]


class ImageOptions(BaseModel):
    """Options of an image conversion request."""

    format: str = Field(..., description="Target format, e.g. png")
    quality: int = Field(default=90, ge=0, le=100)
    resize: bool = False
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    maintain_aspect: bool = True

    @field_validator("width", "height", mode="before")
    @classmethod
    def empty_as_none(cls, v):
        """Browsers send empty strings for blank number inputs."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("format")
    @classmethod
    def normalize_format(cls, v: str) -> str:
        return v.strip().lower().lstrip(".")

    @property
    def wants_resize(self) -> bool:
        return self.resize and (self.width is not None or self.height is not None)


class DocumentFailure(BaseModel):
    """A file of a document batch that could not be converted."""

    filename: str
    error: str


class ConversionSummary(BaseModel):
    """Per-batch result carried in the X-Conversion-Info header."""

    success: bool = True
    converted: int = 0
    failed: int = 0
    placeholders: int = 0
    failures: list[DocumentFailure] | None = None
