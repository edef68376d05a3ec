"""
Media conversion service.

Transcodes uploaded audio/video with ffmpeg and delegates URL
downloads to the yt-dlp service.
"""

from pathlib import Path

from loguru import logger

from converter.config import Settings
from converter.exceptions import (
    ConversionError,
    DependencyUnavailableError,
    PlaylistConfirmationRequiredError,
)
from converter.models.conversion import (
    ConvertedOutput,
    MediaFormat,
    MediaOptions,
    Quality,
    UploadedFile,
)
from converter.services.youtube import YouTubeService, is_playlist
from converter.utils.fs import ensure_directory, redact_paths
from converter.utils.shell import run_command

# quality -> (x264 preset, crf)
VIDEO_QUALITY_PRESETS = {
    Quality.HIGH: ("slow", 18),
    Quality.MEDIUM: ("medium", 23),
    Quality.LOW: ("fast", 28),
}
AUDIO_SAMPLE_RATE = 44100
VIDEO_AUDIO_BITRATE = "192k"


class MediaService:
    """
    Service for audio/video conversion.

    Uploaded files are transcoded by ffmpeg; URLs are fetched by the
    downloader service after playlist confirmation.
    """

    def __init__(self, settings: Settings, youtube: YouTubeService | None = None):
        """
        Initialize media service.

        Args:
            settings: Application settings
            youtube: Downloader service (built from settings when omitted)
        """
        self.settings = settings
        self.ffmpeg_path = settings.FFMPEG_PATH
        self.youtube = youtube or YouTubeService(settings)

    async def convert_upload(
        self, upload: UploadedFile, options: MediaOptions, output_dir: Path
    ) -> ConvertedOutput:
        """
        Transcode an uploaded file to mp3 or mp4.

        Args:
            upload: Uploaded source file
            options: Target format, quality and resolution
            output_dir: Per-request output directory

        Returns:
            The converted output

        Raises:
            ConversionError: If ffmpeg exits non-zero (message carries its stderr)
            ConversionTimeoutError: If MEDIA_CONVERSION_TIMEOUT is exceeded
            DependencyUnavailableError: If ffmpeg is missing
        """
        ensure_directory(output_dir)
        display_name = f"{upload.stem or 'converted'}.{options.format.value}"
        output_path = output_dir / f"converted-{display_name}"

        cmd = self._build_command(upload.path, output_path, options)
        logger.info(f"Transcoding {upload.original_name} -> {options.format.value} ({options.quality.value})")

        try:
            result = await run_command(cmd, timeout=self.settings.MEDIA_CONVERSION_TIMEOUT)
        except FileNotFoundError:
            raise DependencyUnavailableError("ffmpeg") from None

        if result.returncode != 0:
            stderr_tail = "\n".join(result.stderr.strip().splitlines()[-5:])
            logger.error(f"ffmpeg failed for {upload.original_name}: {stderr_tail}")
            stderr_tail = redact_paths(stderr_tail, {upload.path: upload.original_name, output_path: display_name})
            raise ConversionError(
                f"ffmpeg conversion failed: {stderr_tail or 'unknown error'}",
                details={"returncode": result.returncode},
            )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ConversionError(f"ffmpeg produced no output for {upload.original_name}")

        logger.info(f"File conversion completed: {output_path}")
        return ConvertedOutput(path=output_path, display_name=display_name)

    async def convert_url(self, url: str, options: MediaOptions, output_dir: Path) -> list[ConvertedOutput]:
        """
        Download a URL as mp3/mp4.

        Raises:
            DependencyUnavailableError: If yt-dlp is not callable
            PlaylistConfirmationRequiredError: For a playlist URL without opt-in
            ConversionError: If the download fails
            NoOutputProducedError: If no media file was written
        """
        await self.youtube.ensure_available()

        if is_playlist(url) and not options.download_playlist:
            logger.info(f"Playlist URL without confirmation: {url}")
            raise PlaylistConfirmationRequiredError(url)

        return await self.youtube.download(url, options, output_dir)

    def _build_command(self, input_file: Path, output_file: Path, options: MediaOptions) -> list[str]:
        """
        Build the ffmpeg command line.

        Args:
            input_file: Source media
            output_file: Destination path
            options: Conversion options

        Returns:
            Command list for subprocess execution
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-i", str(input_file)]

        if options.format is MediaFormat.MP3:
            cmd.extend([
                "-vn",
                "-acodec", "libmp3lame",
                "-b:a", f"{options.audio_bitrate}k",
                "-ar", str(AUDIO_SAMPLE_RATE),
                "-af", "volume=1.0",
                "-f", "mp3",
            ])
        else:
            preset, crf = VIDEO_QUALITY_PRESETS[options.quality]
            cmd.extend([
                "-vcodec", "libx264",
                "-acodec", "aac",
                "-b:a", VIDEO_AUDIO_BITRATE,
                # -2 keeps the aspect ratio with an even width
                "-vf", f"scale=-2:{options.height}",
                "-preset", preset,
                "-crf", str(crf),
                "-profile:v", "high",
                "-level", "4.1",
                "-pix_fmt", "yuv420p",
                "-f", "mp4",
            ])

        # Output file (must be last)
        cmd.append(str(output_file))
        return cmd
