"""
Utilities package for the Universal Converter API.

This package contains utility modules for common operations.
"""

from .file_types import (
    FileDomain,
    classify,
    content_type_for,
    get_extension,
    is_document_file,
    is_image_file,
    normalize_target_extension,
)
from .fs import (
    cleanup_paths,
    ensure_directory,
    find_files,
    redact_paths,
    setup_directories,
)
from .shell import (
    CommandResult,
    check_command_available,
    get_command_version,
    run_command,
)
from .workspace import RequestWorkspace

__all__ = [
    "run_command", "check_command_available", "get_command_version", "CommandResult",
    "ensure_directory", "setup_directories", "cleanup_paths", "find_files", "redact_paths",
    "FileDomain", "classify", "get_extension", "is_image_file", "is_document_file",
    "normalize_target_extension", "content_type_for",
    "RequestWorkspace",
]
