"""
Request models for the Universal Converter API.

This module defines Pydantic models for JSON request bodies.
"""

from pydantic import BaseModel, Field


class PlaylistInfoRequest(BaseModel):
    """Body of POST /api/media/playlist-info."""

    url: str | None = Field(default=None, description="Video or playlist URL")
