"""
Response models for the Universal Converter API.

This module defines Pydantic models for JSON API responses.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """
    Response model for error responses.

    Extra keys (``isPlaylist``, ``failures``...) are merged into the body.
    """

    model_config = ConfigDict(extra="allow")

    error: str = Field(..., description="Error title")
    message: str = Field(..., description="Error message")
    stack: str | None = Field(default=None, description="Traceback, development only")


class PlaylistVideo(BaseModel):
    """Summary of one playlist entry."""

    title: str | None = None
    duration: float | None = None
    uploader: str | None = None


class PlaylistInfoResponse(BaseModel):
    """Response of POST /api/media/playlist-info."""

    model_config = ConfigDict(populate_by_name=True)

    is_playlist: bool = Field(..., alias="isPlaylist")
    video_count: int = Field(..., alias="videoCount")
    title: str
    videos: list[PlaylistVideo] | None = None
    duration: float | None = None
    uploader: str | None = None
    thumbnail: str | None = None


class HealthResponse(BaseModel):
    """
    Response model for the health endpoint.

    ``services`` reports each external converter; ``system`` and
    ``metrics`` describe the host.
    """

    status: str = Field(..., description="Service status")
    message: str = Field(..., description="Service description")
    version: str = Field(..., description="Service version")
    environment: str = Field(..., description="Environment name")
    timestamp: str = Field(..., description="ISO timestamp")
    services: dict[str, Any] = Field(default_factory=dict)
    system: dict[str, Any] | None = Field(default=None)
    metrics: dict[str, Any] | None = Field(default=None)
