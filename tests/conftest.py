"""
Shared fixtures for the converter tests.

External tools (ffmpeg, soffice, yt-dlp) are replaced with fake
runners; Pillow and python-docx run for real.
"""

import io
import zipfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from converter.config import Settings
from converter.main import create_app
from converter.utils.shell import CommandResult


@pytest.fixture
def settings(tmp_path):
    """Settings with every working directory under tmp_path."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        LOG_LEVEL="DEBUG",
        UPLOADS_DIR=str(tmp_path / "uploads"),
        DOWNLOADS_DIR=str(tmp_path / "downloads"),
        TEMP_DIR=str(tmp_path / "temp"),
        FFMPEG_PATH="ffmpeg",
        YTDLP_PATH="yt-dlp",
        SOFFICE_PATH="soffice",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def leftovers(settings):
    """Return every file or directory left in the working directories."""

    def _collect() -> list[Path]:
        found = []
        for directory in settings.working_directories.values():
            if directory.exists():
                found.extend(directory.iterdir())
        return found

    return _collect


@pytest.fixture
def image_bytes():
    """Encode a generated image to bytes."""

    def _make(fmt: str = "PNG", size: tuple[int, int] = (64, 48), mode: str = "RGB", color=(200, 40, 40)) -> bytes:
        if mode == "RGBA" and len(color) == 3:
            color = (*color, 128)
        buffer = io.BytesIO()
        Image.new(mode, size, color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def office_bytes():
    """Minimal ZIP container passing the office-format integrity check."""

    def _make(marker: str = "document") -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zipf:
            zipf.writestr("[Content_Types].xml", f"<Types><!-- {marker} --></Types>")
        return buffer.getvalue()

    return _make


@pytest.fixture
def fake_soffice():
    """
    Build a fake ``run_command`` behaving like ``soffice --convert-to``.

    Calls are recorded on ``runner.calls``; sources listed in
    ``runner.failing`` exit non-zero.
    """

    def _make(returncode: int = 0):
        async def runner(cmd, cwd=None, timeout=300, env=None):
            runner.calls.append(cmd)
            source = Path(cmd[-1])
            if returncode != 0 or source.suffix in runner.failing:
                return CommandResult(returncode or 1, "", f"Error: source file could not be loaded: {source.resolve()}")
            out_dir = Path(cmd[cmd.index("--outdir") + 1])
            target = cmd[cmd.index("--convert-to") + 1].split(":")[0]
            (out_dir / f"{source.stem}.{target}").write_bytes(b"converted:" + source.read_bytes()[:32])
            return CommandResult(0, f"convert {source} -> {target}", "")

        runner.calls = []
        runner.failing = set()
        return runner

    return _make


@pytest.fixture
def fake_ffmpeg():
    """Build a fake ``run_command`` that writes the last argument as output."""

    def _make(returncode: int = 0, stderr: str = ""):
        async def runner(cmd, cwd=None, timeout=300, env=None):
            runner.calls.append(cmd)
            if returncode == 0:
                Path(cmd[-1]).write_bytes(b"fake-media-output")
            return CommandResult(returncode, "", stderr)

        runner.calls = []
        return runner

    return _make
