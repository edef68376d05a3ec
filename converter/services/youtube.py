"""
Video-site downloader service.

Downloads go through the yt-dlp command line into a per-request
directory; playlist metadata comes from the yt_dlp Python API.
"""

import asyncio
import os
from pathlib import Path
from typing import Any

import yt_dlp
from loguru import logger

from converter.config import Settings
from converter.exceptions import (
    ConversionError,
    ConversionTimeoutError,
    DependencyUnavailableError,
    ErrorTypes,
    NoOutputProducedError,
)
from converter.models.conversion import ConvertedOutput, MediaFormat, MediaOptions, Quality
from converter.models.response import PlaylistInfoResponse, PlaylistVideo
from converter.utils.fs import ensure_directory, find_files, redact_paths
from converter.utils.shell import get_command_version, run_command

PLAYLIST_MARKERS = ("playlist?list=", "?list=", "&list=")
DOWNLOAD_EXTENSIONS = (".mp3", ".mp4", ".mkv", ".webm")
PLAYLIST_PREVIEW_SIZE = 5


def is_playlist(url: str) -> bool:
    """True when the URL carries a ``list=`` playlist parameter."""
    return any(marker in url for marker in PLAYLIST_MARKERS)


def build_format_selector(height: int, quality: Quality) -> str:
    """
    Build a yt-dlp ``-f`` expression for a video download.

    Exact-height matches are tried first, then progressively looser
    fallbacks; the low tier ends on the worst available stream.
    """
    exact = f"bv*[height={height}]+ba"
    capped = f"bv*[height<={height}]+ba"
    single = f"b[height<={height}]"

    if quality is Quality.HIGH:
        tiers = [exact, capped, single, "bv*+ba", "b"]
    elif quality is Quality.MEDIUM:
        tiers = [exact, capped, single, "b"]
    else:
        tiers = [exact, single, "worst"]
    return "/".join(tiers)


def translate_download_error(stderr: str) -> ConversionError:
    """Map downloader error output onto a user-facing ConversionError."""
    text = stderr.lower()
    detail = _last_error_line(stderr)

    if "sign in" in text or "age-restricted" in text or "confirm your age" in text:
        return ConversionError(
            "This video requires sign-in or is age-restricted.",
            ErrorTypes.SIGN_IN_REQUIRED,
        )
    if "private" in text:
        return ConversionError(
            "This is a private video and cannot be downloaded.",
            ErrorTypes.PRIVATE_VIDEO,
        )
    if "format is not available" in text:
        return ConversionError(
            "Unable to download this video in the requested quality.",
            ErrorTypes.FORMAT_UNAVAILABLE,
        )
    if "not available" in text or "video unavailable" in text:
        return ConversionError(
            "This video is not available. It may be deleted, geo-restricted, "
            "or require a subscription.",
            ErrorTypes.VIDEO_UNAVAILABLE,
        )
    return ConversionError(f"Download failed: {detail}", ErrorTypes.DOWNLOAD_FAILED)


def _last_error_line(stderr: str) -> str:
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    for line in reversed(lines):
        if line.startswith("ERROR"):
            return line
    return lines[-1] if lines else "unknown error"


def extract_flat_info(url: str) -> dict[str, Any] | None:
    """Resolve URL metadata without downloading; playlist entries stay unresolved."""
    options = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "extract_flat": True,
    }
    with yt_dlp.YoutubeDL(options) as ydl:
        return ydl.extract_info(url, download=False)


class YouTubeService:
    """Service driving yt-dlp: the executable for downloads, the library for metadata."""

    def __init__(self, settings: Settings):
        """
        Initialize the downloader service.

        Args:
            settings: Application settings (tool paths and timeouts)
        """
        self.settings = settings
        self.ytdlp_path = settings.YTDLP_PATH

    async def is_available(self) -> bool:
        """Check that ``yt-dlp --version`` runs."""
        version = await get_command_version(self.ytdlp_path, timeout=self.settings.TOOL_CHECK_TIMEOUT)
        if version is None:
            logger.warning(f"yt-dlp not available at {self.ytdlp_path}")
            return False
        logger.debug(f"yt-dlp version: {version}")
        return True

    async def ensure_available(self) -> None:
        """
        Raises:
            DependencyUnavailableError: If the downloader cannot be executed
        """
        if not await self.is_available():
            raise DependencyUnavailableError("yt-dlp")

    async def get_playlist_info(self, url: str) -> PlaylistInfoResponse:
        """
        Fetch flat metadata for a video or playlist URL.

        Raises:
            ConversionError: If the lookup fails
            ConversionTimeoutError: If METADATA_TIMEOUT is exceeded
        """
        timeout = self.settings.METADATA_TIMEOUT
        try:
            info = await asyncio.wait_for(asyncio.to_thread(extract_flat_info, url), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConversionTimeoutError(timeout, "yt-dlp") from None
        except yt_dlp.utils.DownloadError as exc:
            logger.error(f"Playlist info lookup failed for {url}: {exc}")
            raise ConversionError(
                "Failed to get playlist information",
                details={"reason": translate_download_error(str(exc)).message},
            ) from exc

        if not info:
            raise ConversionError("Failed to get playlist information")

        if info.get("_type") != "playlist":
            return PlaylistInfoResponse(
                isPlaylist=False,
                videoCount=1,
                title=info.get("title") or "Video",
                duration=info.get("duration"),
                uploader=info.get("uploader"),
                thumbnail=info.get("thumbnail"),
            )

        entries = [entry for entry in info.get("entries") or [] if entry]
        return PlaylistInfoResponse(
            isPlaylist=True,
            videoCount=info.get("playlist_count") or len(entries),
            title=info.get("title") or "Unknown Playlist",
            uploader=info.get("uploader"),
            thumbnail=info.get("thumbnail"),
            videos=[
                PlaylistVideo(
                    title=entry.get("title"),
                    duration=entry.get("duration"),
                    uploader=entry.get("uploader"),
                )
                for entry in entries[:PLAYLIST_PREVIEW_SIZE]
            ],
        )

    async def download(self, url: str, options: MediaOptions, output_dir: Path) -> list[ConvertedOutput]:
        """
        Download a URL into ``output_dir`` as mp3 or mp4.

        ``output_dir`` must be private to the request: every media file
        found there afterwards is treated as this download's output.

        Raises:
            DependencyUnavailableError: If yt-dlp is missing
            ConversionError: If the downloader fails (translated message)
            ConversionTimeoutError: If DOWNLOAD_TIMEOUT is exceeded
            NoOutputProducedError: If the downloader succeeded but wrote nothing
        """
        ensure_directory(output_dir)
        cmd = self._build_download_command(url, options, output_dir)

        logger.info(
            f"Downloading {url} as {options.format.value} "
            f"(quality={options.quality.value}, resolution={options.resolution}, "
            f"playlist={options.download_playlist})"
        )
        try:
            result = await run_command(cmd, cwd=output_dir, timeout=self.settings.DOWNLOAD_TIMEOUT)
        except FileNotFoundError:
            raise DependencyUnavailableError("yt-dlp") from None

        if result.returncode != 0:
            logger.error(f"yt-dlp failed for {url}: {_last_error_line(result.stderr)}")
            raise translate_download_error(redact_paths(result.stderr, {output_dir: "<output>"}))

        files = find_files(output_dir, DOWNLOAD_EXTENSIONS)
        if not files:
            raise NoOutputProducedError(
                "Download completed but no output file was found",
                str(output_dir),
            )

        logger.info(f"Downloaded {len(files)} file(s): {', '.join(f.name for f in files)}")
        return [ConvertedOutput(path=path, display_name=path.name) for path in files]

    def _build_download_command(self, url: str, options: MediaOptions, output_dir: Path) -> list[str]:
        template = "%(playlist_index)03d-%(title)s.%(ext)s" if options.download_playlist else "%(title)s.%(ext)s"
        cmd = [
            self.ytdlp_path,
            "--no-warnings",
            "--restrict-filenames",
            "--no-mtime",
            "-o", str(output_dir / template),
            "--yes-playlist" if options.download_playlist else "--no-playlist",
        ]

        # Only pass an explicit location when ffmpeg is not resolved from PATH
        if os.sep in self.settings.FFMPEG_PATH:
            cmd.extend(["--ffmpeg-location", self.settings.FFMPEG_PATH])

        if options.format is MediaFormat.MP3:
            cmd.extend([
                "-f", "ba/b",
                "-x",
                "--audio-format", "mp3",
                "--audio-quality", f"{options.audio_bitrate}K",
            ])
        else:
            cmd.extend([
                "-f", build_format_selector(options.height, options.quality),
                "--merge-output-format", "mp4",
            ])

        cmd.extend(["--", url])
        return cmd

