"""
Image conversion service.

Re-encodes raster images with Pillow, optionally resizing them, and
produces GIFs from other formats through an intermediate PNG that
ffmpeg turns into the final file.
"""

import asyncio
import re
import uuid
from pathlib import Path
from typing import Any

from loguru import logger
from PIL import Image, ImageSequence, UnidentifiedImageError
from pillow_heif import register_heif_opener

from converter.config import Settings
from converter.exceptions import ConversionError, ConversionTimeoutError, DependencyUnavailableError
from converter.models.conversion import ConvertedOutput, ImageOptions, UploadedFile
from converter.utils.fs import ensure_directory, redact_paths
from converter.utils.shell import run_command

# Requested format -> Pillow encoder name
PIL_FORMATS = {
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "tiff": "TIFF",
    "tif": "TIFF",
    "bmp": "BMP",
    "gif": "GIF",
}
PNG_PALETTE_THRESHOLD = 80
WEBP_METHOD = 4
AVIF_SPEED = 6

# HEIC and HEIF decoding for Image.open
register_heif_opener()


def compute_target_size(
    src_width: int,
    src_height: int,
    width: int | None,
    height: int | None,
    maintain_aspect: bool = True,
) -> tuple[int, int]:
    """
    Compute the output dimensions of a resize without enlargement.

    With ``maintain_aspect`` (or when only one bound is given) the image
    is fitted inside the bounds. Otherwise it is stretched to the exact
    size, each dimension capped at the source dimension.

    Returns:
        (width, height) never larger than the source in either dimension
    """
    if width is None and height is None:
        return src_width, src_height

    if maintain_aspect or width is None or height is None:
        scale = 1.0
        if width is not None:
            scale = min(scale, width / src_width)
        if height is not None:
            scale = min(scale, height / src_height)
        return max(1, round(src_width * scale)), max(1, round(src_height * scale))

    return min(width, src_width), min(height, src_height)


def save_options(pil_format: str, quality: int) -> dict[str, Any]:
    """Encoder keyword arguments for ``Image.save``."""
    if pil_format == "JPEG":
        return {"quality": quality, "optimize": True}
    if pil_format == "PNG":
        return {"compress_level": 0 if quality == 100 else 6}
    if pil_format == "WEBP":
        return {"quality": quality, "method": WEBP_METHOD}
    if pil_format == "AVIF":
        return {"quality": quality, "speed": AVIF_SPEED}
    if pil_format == "TIFF":
        return {"quality": quality}
    return {}


def _flatten(image: Image.Image) -> Image.Image:
    """Composite transparency onto white for formats without alpha."""
    rgba = image.convert("RGBA")
    background = Image.new("RGB", image.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def prepare_mode(image: Image.Image, pil_format: str) -> Image.Image:
    """Convert the image mode into one the target encoder accepts."""
    has_alpha = image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)
    if pil_format in ("JPEG", "BMP"):
        if has_alpha:
            return _flatten(image)
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image
    if pil_format == "GIF":
        return image if image.mode in ("P", "L") else image.convert("RGBA" if has_alpha else "RGB")
    if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        return image.convert("RGBA" if has_alpha else "RGB")
    return image


def _output_stem(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", Path(name).stem) or "image"


class ImageService:
    """Service for raster image conversion."""

    def __init__(self, settings: Settings):
        """
        Initialize image service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.ffmpeg_path = settings.FFMPEG_PATH
        self.timeout = settings.IMAGE_CONVERSION_TIMEOUT

    async def convert(
        self,
        upload: UploadedFile,
        options: ImageOptions,
        output_dir: Path,
        temp_dir: Path,
    ) -> ConvertedOutput:
        """
        Convert one uploaded image.

        Args:
            upload: Uploaded source image
            options: Target format, quality and resize options
            output_dir: Per-request output directory
            temp_dir: Per-request scratch directory

        Returns:
            The converted image

        Raises:
            ConversionError: If the image cannot be decoded or encoded
            ConversionTimeoutError: If IMAGE_CONVERSION_TIMEOUT is exceeded
            DependencyUnavailableError: If ffmpeg is needed for GIF and missing
        """
        fmt = options.format
        pil_format = PIL_FORMATS.get(fmt)
        if pil_format is None:
            raise ConversionError(f"Unsupported output format '{fmt}'")

        ensure_directory(output_dir)
        stem = _output_stem(upload.original_name)
        output_path = output_dir / f"{uuid.uuid4().hex[:8]}-{stem}.{fmt}"

        if pil_format == "GIF" and upload.extension != ".gif":
            await self._convert_to_gif(upload, options, output_path, ensure_directory(temp_dir))
        else:
            await self._encode(upload, output_path, pil_format, options)

        logger.info(f"Image converted: {upload.original_name} -> {fmt} ({output_path.stat().st_size} bytes)")
        return ConvertedOutput(path=output_path, display_name=f"{stem}.{fmt}")

    async def _encode(self, upload: UploadedFile, destination: Path, pil_format: str, options: ImageOptions) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._encode_sync, upload.path, destination, pil_format, options),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            # The worker thread cannot be interrupted; its result is discarded
            raise ConversionTimeoutError(self.timeout, "Pillow") from None
        except UnidentifiedImageError as exc:
            logger.error(f"Pillow could not identify {upload.original_name}: {exc}")
            raise ConversionError(
                f"Failed to convert {upload.original_name}: not a valid or supported image", "INVALID_SOURCE"
            ) from exc
        except (OSError, ValueError) as exc:
            logger.error(f"Pillow failed on {upload.original_name}: {exc}")
            raise ConversionError(
                f"Failed to convert {upload.original_name}: the image could not be encoded as {pil_format}"
            ) from exc

    def _encode_sync(self, source: Path, destination: Path, pil_format: str, options: ImageOptions) -> None:
        with Image.open(source) as image:
            logger.debug(
                f"Image metadata for {source.name}: format={image.format}, "
                f"size={image.width}x{image.height}, mode={image.mode}"
            )
            if pil_format == "GIF" and getattr(image, "n_frames", 1) > 1:
                self._save_animated_gif(image, destination, options)
                return

            image.load()
            result = prepare_mode(self._resize(image, options), pil_format)
            if pil_format == "PNG" and options.quality < PNG_PALETTE_THRESHOLD and result.mode != "P":
                result = result.convert("RGBA").quantize(colors=256, method=Image.Quantize.FASTOCTREE)

            result.save(destination, format=pil_format, **save_options(pil_format, options.quality))

    @staticmethod
    def _resize(image: Image.Image, options: ImageOptions) -> Image.Image:
        if not options.wants_resize:
            return image
        size = compute_target_size(image.width, image.height, options.width, options.height, options.maintain_aspect)
        if size == image.size:
            return image
        logger.debug(f"Resizing from {image.width}x{image.height} to {size[0]}x{size[1]}")
        return image.resize(size, Image.Resampling.LANCZOS)

    def _save_animated_gif(self, image: Image.Image, destination: Path, options: ImageOptions) -> None:
        """Re-encode every frame of an animated GIF, keeping timing and looping."""
        frames: list[Image.Image] = []
        durations: list[int] = []
        for frame in ImageSequence.Iterator(image):
            durations.append(frame.info.get("duration", image.info.get("duration", 100)))
            frames.append(self._resize(frame.convert("RGBA"), options))

        logger.debug(f"Writing animated GIF with {len(frames)} frames")
        frames[0].save(
            destination,
            format="GIF",
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=image.info.get("loop", 0),
            disposal=2,
        )

    async def _convert_to_gif(
        self, upload: UploadedFile, options: ImageOptions, destination: Path, temp_dir: Path
    ) -> None:
        """Encode an intermediate PNG with Pillow, then let ffmpeg write the GIF."""
        intermediate = temp_dir / f"{uuid.uuid4().hex}.png"
        png_options = options.model_copy(update={"format": "png", "quality": 100})
        await self._encode(upload, intermediate, "PNG", png_options)

        cmd = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-i", str(intermediate), "-f", "gif", str(destination)]
        try:
            result = await run_command(cmd, timeout=self.timeout)
        except FileNotFoundError:
            raise DependencyUnavailableError("ffmpeg") from None

        if result.returncode != 0 or not destination.exists():
            logger.error(f"ffmpeg GIF encoding failed for {upload.original_name}: {result.stderr.strip()}")
            detail = redact_paths(
                result.stderr.strip(), {intermediate: upload.original_name, destination: destination.name}
            ).splitlines()
            raise ConversionError(
                f"GIF conversion failed for {upload.original_name}: {detail[-1] if detail else 'no output'}"
            )
        intermediate.unlink(missing_ok=True)
