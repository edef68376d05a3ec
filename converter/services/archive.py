"""
Archive builder for multi-file responses.

Bundles converted outputs into a single ZIP using their display names
as entry names.
"""

import asyncio
import zipfile
from collections.abc import Sequence
from pathlib import Path, PurePath

from loguru import logger

from converter.models.conversion import ConvertedOutput


def unique_entry_names(names: Sequence[str]) -> list[str]:
    """
    Make archive entry names unique, preserving order.

    A repeated ``report.pdf`` becomes ``report (1).pdf``, ``report (2).pdf``...
    """
    seen: set[str] = set()
    result = []
    for name in names:
        candidate = name
        counter = 1
        while candidate in seen:
            path = PurePath(name)
            candidate = f"{path.stem} ({counter}){path.suffix}"
            counter += 1
        seen.add(candidate)
        result.append(candidate)
    return result


def _write_zip(outputs: Sequence[ConvertedOutput], zip_path: Path) -> Path:
    names = unique_entry_names([output.display_name for output in outputs])
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zipf:
        for output, name in zip(outputs, names):
            zipf.write(output.path, name)
    return zip_path


async def create_zip(outputs: Sequence[ConvertedOutput], zip_path: Path) -> Path:
    """
    Create a ZIP file containing the given outputs.

    Returns once the archive is fully written and closed.

    Args:
        outputs: Converted outputs to bundle
        zip_path: Destination of the archive

    Returns:
        Path to the written archive
    """
    try:
        await asyncio.to_thread(_write_zip, list(outputs), zip_path)
    except Exception as exc:
        logger.error(f"Failed to create archive {zip_path}: {exc}")
        raise
    logger.info(f"Created archive {zip_path.name} with {len(outputs)} entries")
    return zip_path
