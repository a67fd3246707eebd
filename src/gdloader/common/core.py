import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence, Union

logger = logging.getLogger(__name__)


def remove_directory(dir_path: Path, missing_ok: bool = False) -> bool:
    """Recursively deletes a directory and all its contents.

    Args:
        dir_path (Path): Path to the directory to delete.
        missing_ok (bool): Treat a missing directory as already removed.

    Returns:
        True if a directory was deleted, False if there was nothing to delete.

    Raises:
        ValueError: If the path is not a directory (or is missing and missing_ok is False).
        OSError: If an OS-related error occurs during deletion.
        PermissionError: If the process lacks permission to delete files or subdirectories.
    """
    if missing_ok and not dir_path.exists():
        logger.debug("Nothing to remove at '%s'", dir_path)
        return False

    if not dir_path.is_dir():
        msg = f"Invalid directory path: '{dir_path}'"
        logger.error(msg)
        raise ValueError(msg)
    try:
        shutil.rmtree(dir_path)
        logger.info("Removed directory '%s'", dir_path)
    except Exception:
        logger.exception("Failed to remove directory '%s'", dir_path)
        raise
    return True


def run_command(
    command: Sequence[Union[str, Path]],
    working_dir: Optional[Path] = None,
    timeout: Optional[int] = None,
) -> subprocess.CompletedProcess:
    """Runs a build tool command and captures its output.

    Args:
        command: Command and arguments, e.g. ['npx', 'esbuild', 'gd.ts'].
        working_dir: Working directory for the command.
        timeout: Timeout in seconds.

    Returns:
        subprocess.CompletedProcess: Result object containing stdout, stderr, and return code.

    Raises:
        subprocess.CalledProcessError: If the command exits with a non-zero code.
        subprocess.TimeoutExpired: If the command times out.
        FileNotFoundError: If the executable is not on PATH.
        ValueError: If the working directory is invalid.
    """
    args = [str(part) for part in command]
    logger.debug("Executing command: %s", " ".join(args))

    if working_dir is not None and not working_dir.is_dir():
        raise ValueError(f"Invalid working directory: {working_dir}")

    result = subprocess.run(
        args,
        cwd=None if working_dir is None else str(working_dir),
        timeout=timeout,
        check=True,
        capture_output=True,
        text=True,
    )

    if result.stderr.strip():
        logger.debug("Command stderr: %s", result.stderr.strip())
    logger.debug("Command finished successfully.")
    return result
