"""
Filesystem utilities for safe file operations.

This module provides the working-directory setup done at startup and
the best-effort cleanup used after every request.
"""

import shutil
from collections.abc import Iterable, Mapping
from pathlib import Path

from loguru import logger

from converter.config import Settings


def ensure_directory(path: str | Path) -> Path:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure

    Returns:
        Path object of the directory

    Raises:
        OSError: If directory cannot be created
        ValueError: If path is invalid
    """
    path = Path(path)

    # Security: Validate path
    _validate_path_safety(path)

    try:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Directory ensured: {path}")
        return path
    except OSError as exc:
        logger.error(f"Failed to create directory {path}: {exc}")
        raise


def setup_directories(settings: Settings) -> dict[str, Path]:
    """
    Create the uploads, downloads and temp directories if missing.

    Safe to call repeatedly.

    Args:
        settings: Application settings naming the directories

    Returns:
        Mapping of directory role to resolved path
    """
    created = {}
    for role, directory in settings.working_directories.items():
        existed = directory.exists()
        created[role] = ensure_directory(directory).resolve()
        if not existed:
            logger.info(f"Created {role} directory: {created[role]}")
    return created


def cleanup_paths(paths: Iterable[str | Path | None]) -> list[Path]:
    """
    Delete files and directories, logging failures instead of raising.

    Args:
        paths: Paths to remove; ``None`` entries and missing paths are skipped

    Returns:
        Paths that could not be removed
    """
    residual: list[Path] = []
    for raw in paths:
        if raw is None:
            continue
        path = Path(raw)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
                logger.debug(f"Removed directory: {path}")
            else:
                path.unlink(missing_ok=True)
                logger.debug(f"Removed file: {path}")
        except OSError as exc:
            logger.warning(f"Could not delete {path}: {exc}")
            residual.append(path)
    return residual


def find_files(directory: str | Path, extensions: Iterable[str]) -> list[Path]:
    """
    List files in a directory whose extension is in ``extensions``.

    Args:
        directory: Directory to search (not recursive)
        extensions: Lowercase extensions including the dot

    Returns:
        Sorted list of matching file paths; empty if the directory is missing
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    wanted = {ext.lower() for ext in extensions}
    files = sorted(
        item for item in directory.iterdir()
        if item.is_file() and item.suffix.lower() in wanted
    )
    logger.debug(f"Found {len(files)} files matching {sorted(wanted)} in {directory}")
    return files


def redact_paths(text: str, labels: Mapping[str | Path, str]) -> str:
    """
    Replace server filesystem paths in tool output with short labels.

    Args:
        text: Tool output or exception text
        labels: Path -> label to show instead (e.g. the original filename)

    Returns:
        Text safe to return to clients
    """
    for raw, label in labels.items():
        path = Path(raw)
        # Longest first so a resolved path is not left half-replaced
        for variant in sorted({str(path.resolve()), str(path)}, key=len, reverse=True):
            text = text.replace(variant, label)
    return text


def _validate_path_safety(path: Path) -> None:
    """
    Validate path for security issues.

    Args:
        path: Path to validate

    Raises:
        ValueError: If path is unsafe
    """
    try:
        abs_path = path.resolve()
    except OSError:
        raise ValueError(f"Invalid path: {path}")

    # Check for path traversal attempts
    if ".." in path.parts:
        raise ValueError(f"Path traversal detected: {path}")

    dangerous_prefixes = ["/etc", "/sys", "/proc", "/dev"]
    path_str = str(abs_path)
    for prefix in dangerous_prefixes:
        if path_str == prefix or path_str.startswith(prefix + "/"):
            raise ValueError(f"Access to system directory not allowed: {path}")
