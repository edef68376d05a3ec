"""
Shell utilities for safe subprocess execution.

This module runs external converters (ffmpeg, soffice, yt-dlp) as
asyncio subprocesses with argument validation, a hard timeout that
kills the child process, and debug logging of their output.
"""

import asyncio
import shutil
from pathlib import Path
from typing import NamedTuple

from loguru import logger

from converter.exceptions import ConversionTimeoutError


class CommandResult(NamedTuple):
    """Result of a command execution."""
    returncode: int
    stdout: str
    stderr: str


async def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: float = 300,
    env: dict[str, str] | None = None
) -> CommandResult:
    """
    Run a command without a shell, bounded by a timeout.

    Args:
        cmd: Command to run as list of strings
        cwd: Working directory for the command
        timeout: Timeout in seconds (default: 5 minutes)
        env: Environment variables (inherits the server environment when None)

    Returns:
        CommandResult with return code and decoded output

    Raises:
        ConversionTimeoutError: If the command exceeds the timeout; the process is killed
        FileNotFoundError: If the executable does not exist
        ValueError: If the command is malformed
    """
    _validate_command_safety(cmd)

    logger.debug(f"Running command: {' '.join(cmd)}")
    if cwd:
        logger.debug(f"Working directory: {cwd}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        raise ConversionTimeoutError(timeout, Path(cmd[0]).name) from None
    except asyncio.CancelledError:
        await _terminate(process)
        raise

    result = CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
    )

    logger.debug(f"Command completed with return code: {result.returncode}")
    if result.stdout:
        logger.debug(f"STDOUT: {result.stdout[:200]}...")
    if result.stderr:
        logger.debug(f"STDERR: {result.stderr[:200]}...")

    return result


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a running child and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=5)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} did not exit after kill")


def _validate_command_safety(cmd: list[str]) -> None:
    """
    Validate command arguments before execution.

    Commands are executed without a shell, so metacharacters in URLs or
    filenames are inert; only structurally broken arguments are rejected.

    Args:
        cmd: Command to validate

    Raises:
        ValueError: If the command is empty or contains invalid arguments
    """
    if not cmd or not cmd[0]:
        raise ValueError("Command must not be empty")

    for part in cmd:
        if not isinstance(part, str):
            raise ValueError(f"Command arguments must be strings, got {type(part).__name__}")
        if "\x00" in part:
            raise ValueError("Command arguments must not contain NUL bytes")

    dangerous_commands = {"sudo", "su", "rm", "chmod", "chown", "kill", "pkill", "halt", "shutdown", "reboot"}
    if Path(cmd[0]).name in dangerous_commands:
        raise ValueError(f"Unsafe command detected: {cmd[0]}")


def check_command_available(cmd: str) -> bool:
    """
    Check if a command is available in the system.

    Args:
        cmd: Command name or path

    Returns:
        True if command is available, False otherwise
    """
    return shutil.which(cmd) is not None


async def get_command_version(cmd: str, version_flag: str = "--version", timeout: float = 10) -> str | None:
    """
    Get version information for a command.

    Args:
        cmd: Command to check
        version_flag: Flag to get version (default: --version)
        timeout: Version check timeout in seconds

    Returns:
        First line of the version output, or None if the command is unusable
    """
    try:
        result = await run_command([cmd, version_flag], timeout=timeout)
    except (OSError, ValueError, ConversionTimeoutError) as exc:
        logger.debug(f"Version check failed for {cmd}: {exc}")
        return None
    if result.returncode != 0:
        return None
    output = result.stdout.strip() or result.stderr.strip()
    return output.splitlines()[0] if output else ""
