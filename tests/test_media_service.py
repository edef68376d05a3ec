"""
Test the media and downloader services.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yt_dlp

from converter.exceptions import (
    ConversionError,
    DependencyUnavailableError,
    ErrorTypes,
    NoOutputProducedError,
    PlaylistConfirmationRequiredError,
)
from converter.models.conversion import MediaFormat, MediaOptions, Quality, UploadedFile
from converter.services.media import MediaService
from converter.services.youtube import (
    YouTubeService,
    build_format_selector,
    is_playlist,
    translate_download_error,
)
from converter.utils.shell import CommandResult

PLAYLIST_URL = "https://www.youtube.com/playlist?list=PL123"
VIDEO_URL = "https://www.youtube.com/watch?v=abc123"


def _uploaded(tmp_path: Path, name: str = "clip.mov") -> UploadedFile:
    path = tmp_path / "upload.bin"
    path.write_bytes(b"fake media")
    return UploadedFile(original_name=name, size=10, path=path)


class TestMediaOptions:
    """Test option normalization."""

    def test_resolution_normalized(self):
        options = MediaOptions(format=MediaFormat.MP4, resolution="1080")
        assert options.resolution == "1080p"
        assert options.height == 1080

    def test_invalid_resolution(self):
        with pytest.raises(ValueError):
            MediaOptions(format=MediaFormat.MP4, resolution="huge")

    def test_audio_bitrates(self):
        assert MediaOptions(format=MediaFormat.MP3, quality=Quality.HIGH).audio_bitrate == 320
        assert MediaOptions(format=MediaFormat.MP3, quality=Quality.MEDIUM).audio_bitrate == 192
        assert MediaOptions(format=MediaFormat.MP3, quality=Quality.LOW).audio_bitrate == 128


class TestMediaService:
    """Test ffmpeg transcoding."""

    def test_mp3_command(self, settings, tmp_path, fake_ffmpeg):
        runner = fake_ffmpeg()
        service = MediaService(settings)
        options = MediaOptions(format=MediaFormat.MP3, quality=Quality.MEDIUM)

        with patch("converter.services.media.run_command", runner):
            output = asyncio.run(service.convert_upload(_uploaded(tmp_path, "song.wav"), options, tmp_path / "out"))

        cmd = runner.calls[0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-acodec") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[cmd.index("-ar") + 1] == "44100"
        assert cmd[cmd.index("-af") + 1] == "volume=1.0"
        assert output.display_name == "song.mp3"
        assert output.path.exists()

    @pytest.mark.parametrize(
        "quality, preset, crf",
        [(Quality.HIGH, "slow", "18"), (Quality.MEDIUM, "medium", "23"), (Quality.LOW, "fast", "28")],
    )
    def test_mp4_command(self, settings, tmp_path, fake_ffmpeg, quality, preset, crf):
        runner = fake_ffmpeg()
        service = MediaService(settings)
        options = MediaOptions(format=MediaFormat.MP4, quality=quality, resolution="480p")

        with patch("converter.services.media.run_command", runner):
            asyncio.run(service.convert_upload(_uploaded(tmp_path), options, tmp_path / "out"))

        cmd = runner.calls[0]
        assert cmd[cmd.index("-vcodec") + 1] == "libx264"
        assert cmd[cmd.index("-acodec") + 1] == "aac"
        assert cmd[cmd.index("-vf") + 1] == "scale=-2:480"
        assert cmd[cmd.index("-preset") + 1] == preset
        assert cmd[cmd.index("-crf") + 1] == crf
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"

    def test_ffmpeg_failure_carries_stderr(self, settings, tmp_path, fake_ffmpeg):
        runner = fake_ffmpeg(returncode=1, stderr="line 1\nInvalid data found when processing input")
        service = MediaService(settings)
        options = MediaOptions(format=MediaFormat.MP3)

        with patch("converter.services.media.run_command", runner):
            with pytest.raises(ConversionError) as exc_info:
                asyncio.run(service.convert_upload(_uploaded(tmp_path), options, tmp_path / "out"))

        assert "Invalid data found" in exc_info.value.message

    def test_ffmpeg_failure_hides_server_paths(self, settings, tmp_path, fake_ffmpeg):
        upload = _uploaded(tmp_path, "holiday.mov")
        runner = fake_ffmpeg(returncode=1, stderr=f"{upload.path}: Invalid data found when processing input")
        service = MediaService(settings)

        with patch("converter.services.media.run_command", runner):
            with pytest.raises(ConversionError) as exc_info:
                asyncio.run(service.convert_upload(upload, MediaOptions(format=MediaFormat.MP3), tmp_path / "out"))

        assert str(tmp_path) not in exc_info.value.message
        assert "holiday.mov: Invalid data found" in exc_info.value.message

    def test_missing_ffmpeg(self, settings, tmp_path):
        service = MediaService(settings)
        options = MediaOptions(format=MediaFormat.MP3)

        with patch("converter.services.media.run_command", AsyncMock(side_effect=FileNotFoundError)):
            with pytest.raises(DependencyUnavailableError):
                asyncio.run(service.convert_upload(_uploaded(tmp_path), options, tmp_path / "out"))

    def test_playlist_requires_confirmation(self, settings, tmp_path):
        youtube = YouTubeService(settings)
        youtube.ensure_available = AsyncMock()
        youtube.download = AsyncMock()
        service = MediaService(settings, youtube)

        with pytest.raises(PlaylistConfirmationRequiredError) as exc_info:
            asyncio.run(service.convert_url(PLAYLIST_URL, MediaOptions(format=MediaFormat.MP3), tmp_path))

        assert exc_info.value.details == {"isPlaylist": True}
        youtube.download.assert_not_called()


class TestYouTubeHelpers:
    """Test downloader helper functions."""

    def test_is_playlist(self):
        assert is_playlist(PLAYLIST_URL)
        assert is_playlist("https://www.youtube.com/watch?v=abc&list=PL1")
        assert not is_playlist(VIDEO_URL)

    def test_format_selector_tiers(self):
        assert build_format_selector(720, Quality.HIGH) == (
            "bv*[height=720]+ba/bv*[height<=720]+ba/b[height<=720]/bv*+ba/b"
        )
        assert build_format_selector(720, Quality.LOW).endswith("/worst")

    @pytest.mark.parametrize(
        "stderr, error_type",
        [
            ("ERROR: Sign in to confirm your age", ErrorTypes.SIGN_IN_REQUIRED),
            ("ERROR: Private video", ErrorTypes.PRIVATE_VIDEO),
            ("ERROR: Requested format is not available", ErrorTypes.FORMAT_UNAVAILABLE),
            ("ERROR: Video unavailable", ErrorTypes.VIDEO_UNAVAILABLE),
            ("ERROR: something else broke", ErrorTypes.DOWNLOAD_FAILED),
        ],
    )
    def test_translate_download_error(self, stderr, error_type):
        assert translate_download_error(stderr).error_type == error_type


class TestYouTubeService:
    """Test yt-dlp invocation."""

    def test_download_collects_request_files(self, settings, tmp_path):
        service = YouTubeService(settings)
        output_dir = tmp_path / "job"
        options = MediaOptions(format=MediaFormat.MP3, download_playlist=True)

        async def runner(cmd, cwd=None, timeout=300, env=None):
            runner.cmd = cmd
            (output_dir / "001-first.mp3").write_bytes(b"a")
            (output_dir / "002-second.mp3").write_bytes(b"b")
            (output_dir / "002-second.webm.part").write_bytes(b"partial")
            return CommandResult(0, "", "")

        with patch("converter.services.youtube.run_command", runner):
            outputs = asyncio.run(service.download(PLAYLIST_URL, options, output_dir))

        assert [o.display_name for o in outputs] == ["001-first.mp3", "002-second.mp3"]
        assert "--yes-playlist" in runner.cmd
        assert runner.cmd[-2:] == ["--", PLAYLIST_URL]
        assert runner.cmd[runner.cmd.index("--audio-quality") + 1] == "320K"

    def test_download_without_output(self, settings, tmp_path):
        service = YouTubeService(settings)
        options = MediaOptions(format=MediaFormat.MP4)

        with patch("converter.services.youtube.run_command", AsyncMock(return_value=CommandResult(0, "", ""))):
            with pytest.raises(NoOutputProducedError):
                asyncio.run(service.download(VIDEO_URL, options, tmp_path / "job"))

    def test_download_failure_is_translated(self, settings, tmp_path):
        service = YouTubeService(settings)
        result = CommandResult(1, "", "ERROR: [youtube] abc: Private video. Sign in if you've been granted access")

        with patch("converter.services.youtube.run_command", AsyncMock(return_value=result)):
            with pytest.raises(ConversionError) as exc_info:
                asyncio.run(service.download(VIDEO_URL, MediaOptions(format=MediaFormat.MP4), tmp_path / "job"))

        # sign-in wording takes precedence over "private"
        assert exc_info.value.error_type == ErrorTypes.SIGN_IN_REQUIRED

    def test_playlist_info(self, settings):
        service = YouTubeService(settings)
        info = {
            "_type": "playlist",
            "title": "My List",
            "uploader": "Someone",
            "entries": [{"title": f"Video {i}", "duration": 60 + i, "uploader": "Someone"} for i in range(7)],
        }

        with patch("converter.services.youtube.extract_flat_info", return_value=info) as extract:
            result = asyncio.run(service.get_playlist_info(PLAYLIST_URL))

        extract.assert_called_once_with(PLAYLIST_URL)
        assert result.is_playlist
        assert result.video_count == 7
        assert result.title == "My List"
        assert len(result.videos) == 5
        assert result.videos[0].title == "Video 0"

    def test_playlist_count_preferred_over_entries(self, settings):
        service = YouTubeService(settings)
        info = {"_type": "playlist", "playlist_count": 40, "entries": [{"title": "A"}, None, {"title": "B"}]}

        with patch("converter.services.youtube.extract_flat_info", return_value=info):
            result = asyncio.run(service.get_playlist_info(PLAYLIST_URL))

        assert result.video_count == 40
        assert result.title == "Unknown Playlist"
        assert [video.title for video in result.videos] == ["A", "B"]

    def test_single_video_info(self, settings):
        service = YouTubeService(settings)
        info = {"_type": "video", "title": "Clip", "duration": 42, "uploader": "Me", "thumbnail": "http://t/1.jpg"}

        with patch("converter.services.youtube.extract_flat_info", return_value=info):
            result = asyncio.run(service.get_playlist_info(VIDEO_URL))

        assert not result.is_playlist
        assert result.video_count == 1
        assert result.duration == 42
        assert result.thumbnail == "http://t/1.jpg"

    def test_playlist_info_lookup_error(self, settings):
        service = YouTubeService(settings)
        error = yt_dlp.utils.DownloadError("ERROR: [youtube] abc: Private video")

        with patch("converter.services.youtube.extract_flat_info", side_effect=error):
            with pytest.raises(ConversionError) as exc_info:
                asyncio.run(service.get_playlist_info(VIDEO_URL))

        assert exc_info.value.message == "Failed to get playlist information"
        assert "private" in exc_info.value.details["reason"].lower()

    def test_playlist_info_uses_library_not_executable(self, settings):
        service = YouTubeService(settings)
        runner = AsyncMock()

        with patch("converter.services.youtube.extract_flat_info", return_value={"title": "Clip"}), \
                patch("converter.services.youtube.run_command", runner):
            asyncio.run(service.get_playlist_info(VIDEO_URL))

        runner.assert_not_called()

    def test_download_error_hides_output_directory(self, settings, tmp_path):
        service = YouTubeService(settings)
        output_dir = tmp_path / "job"
        stderr = f"ERROR: unable to open for writing: {output_dir}/clip.mp4: Permission denied"

        with patch("converter.services.youtube.run_command", AsyncMock(return_value=CommandResult(1, "", stderr))):
            with pytest.raises(ConversionError) as exc_info:
                asyncio.run(service.download(VIDEO_URL, MediaOptions(format=MediaFormat.MP4), output_dir))

        assert str(tmp_path) not in exc_info.value.message
        assert str(tmp_path) not in str(exc_info.value.details)

    def test_unavailable_downloader(self, settings):
        service = YouTubeService(settings)

        with patch("converter.services.youtube.get_command_version", AsyncMock(return_value=None)):
            with pytest.raises(DependencyUnavailableError):
                asyncio.run(service.ensure_available())
