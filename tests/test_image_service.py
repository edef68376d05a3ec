"""
Test the image conversion service with real Pillow encoding.
"""

import asyncio
import io
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image, features

from converter.exceptions import ConversionError
from converter.models.conversion import ImageOptions, UploadedFile
from converter.services.image import ImageService, compute_target_size, save_options

# Pillow writer for each advertised input extension
INPUT_ENCODERS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".gif": "GIF",
    ".bmp": "BMP",
    ".tiff": "TIFF",
    ".tif": "TIFF",
    ".ico": "ICO",
    ".avif": "AVIF",
    ".heic": "HEIF",
    ".heif": "HEIF",
}


def _uploaded(tmp_path: Path, name: str, data: bytes) -> UploadedFile:
    path = tmp_path / f"stored-{name}"
    path.write_bytes(data)
    return UploadedFile(original_name=name, size=len(data), path=path)


class TestTargetSize:
    """Test resize geometry."""

    def test_fit_inside_never_enlarges(self):
        assert compute_target_size(100, 50, 400, 400, True) == (100, 50)

    def test_fit_inside_scales_down(self):
        assert compute_target_size(400, 200, 100, 100, True) == (100, 50)

    def test_single_dimension_follows_aspect(self):
        assert compute_target_size(400, 200, None, 50, False) == (100, 50)

    def test_stretch_is_capped_per_dimension(self):
        assert compute_target_size(400, 200, 300, 500, False) == (300, 200)

    def test_no_bounds(self):
        assert compute_target_size(40, 20, None, None, True) == (40, 20)


class TestSaveOptions:
    """Test per-format encoder options."""

    def test_png_compression(self):
        assert save_options("PNG", 100) == {"compress_level": 0}
        assert save_options("PNG", 90) == {"compress_level": 6}

    def test_lossy_formats(self):
        assert save_options("JPEG", 75) == {"quality": 75, "optimize": True}
        assert save_options("WEBP", 75) == {"quality": 75, "method": 4}

    def test_formats_without_quality(self):
        assert save_options("BMP", 50) == {}
        assert save_options("GIF", 50) == {}


class TestImageService:
    """Test conversions."""

    @pytest.mark.parametrize(
        "source_fmt, source_ext, target, expected_format",
        [
            ("PNG", ".png", "jpeg", "JPEG"),
            ("JPEG", ".jpg", "png", "PNG"),
            ("PNG", ".png", "webp", "WEBP"),
            ("BMP", ".bmp", "tiff", "TIFF"),
            ("PNG", ".png", "bmp", "BMP"),
            ("GIF", ".gif", "gif", "GIF"),
        ],
    )
    def test_convert_between_formats(self, settings, tmp_path, image_bytes, source_fmt, source_ext, target, expected_format):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, f"picture{source_ext}", image_bytes(source_fmt))

        output = asyncio.run(service.convert(upload, ImageOptions(format=target), tmp_path / "out", tmp_path / "tmp"))

        assert output.display_name == f"picture.{target}"
        assert output.path.suffix == f".{target}"
        assert output.path.stat().st_size > 0
        with Image.open(output.path) as result:
            assert result.format == expected_format

    def test_transparent_png_to_jpeg(self, settings, tmp_path, image_bytes):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "logo.png", image_bytes("PNG", mode="RGBA"))

        output = asyncio.run(service.convert(upload, ImageOptions(format="jpg"), tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.mode == "RGB"

    def test_resize_never_upscales(self, settings, tmp_path, image_bytes):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "small.png", image_bytes("PNG", size=(64, 48)))
        options = ImageOptions(format="png", resize=True, width=640, height=480, maintain_aspect=False)

        output = asyncio.run(service.convert(upload, options, tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.size == (64, 48)

    def test_resize_down_keeps_aspect(self, settings, tmp_path, image_bytes):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "big.png", image_bytes("PNG", size=(400, 200)))
        options = ImageOptions(format="webp", resize=True, width=100, height=100)

        output = asyncio.run(service.convert(upload, options, tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.size == (100, 50)

    def test_low_quality_png_is_palettized(self, settings, tmp_path, image_bytes):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "photo.jpg", image_bytes("JPEG"))

        output = asyncio.run(service.convert(upload, ImageOptions(format="png", quality=50), tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.mode == "P"

    def test_gif_from_png_uses_ffmpeg_and_removes_intermediate(self, settings, tmp_path, image_bytes, fake_ffmpeg):
        runner = fake_ffmpeg()
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "anim.png", image_bytes("PNG"))
        temp_dir = tmp_path / "tmp"

        with patch("converter.services.image.run_command", runner):
            output = asyncio.run(service.convert(upload, ImageOptions(format="gif"), tmp_path / "out", temp_dir))

        cmd = runner.calls[0]
        assert cmd[cmd.index("-f") + 1] == "gif"
        assert Path(cmd[cmd.index("-i") + 1]).parent == temp_dir
        assert output.path.exists()
        assert list(temp_dir.iterdir()) == []

    def test_undecodable_image(self, settings, tmp_path):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "fake.png", b"not really a png")

        with pytest.raises(ConversionError):
            asyncio.run(service.convert(upload, ImageOptions(format="jpeg"), tmp_path / "out", tmp_path / "tmp"))

    def test_undecodable_image_message_has_no_paths(self, settings, tmp_path):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "fake.png", b"not really a png")

        with pytest.raises(ConversionError) as exc_info:
            asyncio.run(service.convert(upload, ImageOptions(format="jpeg"), tmp_path / "out", tmp_path / "tmp"))

        assert exc_info.value.message == "Failed to convert fake.png: not a valid or supported image"
        assert str(tmp_path) not in exc_info.value.message


class TestInputFormats:
    """Test that every advertised input extension decodes."""

    def test_every_advertised_format_has_a_decoder_test(self, settings):
        assert sorted(settings.SUPPORTED_IMAGE_FORMATS) == sorted(INPUT_ENCODERS)

    @pytest.mark.parametrize("extension", sorted(INPUT_ENCODERS))
    def test_decode_to_png(self, settings, tmp_path, image_bytes, extension):
        encoder = INPUT_ENCODERS[extension]
        if encoder == "AVIF" and not features.check("avif"):
            pytest.skip("Pillow built without AVIF support")
        service = ImageService(settings)
        upload = _uploaded(tmp_path, f"sample{extension}", image_bytes(encoder))

        output = asyncio.run(service.convert(upload, ImageOptions(format="png"), tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.format == "PNG"
            assert result.width > 0


class TestAnimatedGif:
    """Test GIF to GIF conversions of animations."""

    @staticmethod
    def _animation(frames: int = 3, size: tuple[int, int] = (64, 48)) -> bytes:
        colors = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]
        images = [Image.new("RGB", size, colors[i % len(colors)]) for i in range(frames)]
        buffer = io.BytesIO()
        images[0].save(buffer, format="GIF", save_all=True, append_images=images[1:], duration=120, loop=0)
        return buffer.getvalue()

    def test_frames_are_kept(self, settings, tmp_path):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "spinner.gif", self._animation())

        output = asyncio.run(service.convert(upload, ImageOptions(format="gif"), tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.n_frames == 3
            assert result.info.get("duration") == 120
            assert result.info.get("loop") == 0

    def test_frames_are_resized(self, settings, tmp_path):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "spinner.gif", self._animation())
        options = ImageOptions(format="gif", resize=True, width=32)

        output = asyncio.run(service.convert(upload, options, tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert result.size == (32, 24)
            assert result.n_frames == 3

    def test_still_gif_stays_single_frame(self, settings, tmp_path, image_bytes):
        service = ImageService(settings)
        upload = _uploaded(tmp_path, "still.gif", image_bytes("GIF"))

        output = asyncio.run(service.convert(upload, ImageOptions(format="gif"), tmp_path / "out", tmp_path / "tmp"))

        with Image.open(output.path) as result:
            assert getattr(result, "n_frames", 1) == 1
