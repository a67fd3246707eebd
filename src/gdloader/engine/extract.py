import asyncio
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, Mapping, Optional

from .exceptions import ExtractError

logger = logging.getLogger(__name__)


def _extract_subtree(
    zip_ref: zipfile.ZipFile, prefix: str, subpath: str, destination: Path
) -> int:
    """Copies every file under prefix/subpath into destination; returns the count."""
    root = prefix + subpath.strip("/") + "/"
    members = [
        info
        for info in zip_ref.infolist()
        if info.filename.startswith(root) and not info.is_dir()
    ]
    if not members:
        raise ExtractError(f"Entry '{root}' not found in archive")

    dest_root = destination.resolve()
    for info in members:
        relative = PurePosixPath(info.filename[len(root) :])
        if relative.is_absolute() or ".." in relative.parts:
            raise ExtractError(f"Unsafe path in archive: {info.filename}")

        target = dest_root.joinpath(*relative.parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        with zip_ref.open(info) as src, target.open("wb") as dst:
            shutil.copyfileobj(src, dst)

    return len(members)


async def extract(
    archive_path: Path, prefix: str, subtrees: Mapping[str, Path]
) -> Dict[str, Optional[Exception]]:
    """
    Extracts several subtrees of a zip archive, then deletes the archive.

    Each subtree is extracted in its own worker thread against the same open
    archive. A failing subtree is logged and reported in the result without
    stopping the others. The archive file is removed whatever the outcome.

    Args:
        archive_path: The downloaded zip file.
        prefix: Top-level folder inside the archive (e.g. '4ian-GDevelop-abc1234/').
        subtrees: Archive sub-paths (relative to prefix) mapped to existing
            destination directories.

    Returns:
        A dict mapping each sub-path to None on success or to its error.

    Raises:
        ExtractError: If the archive itself cannot be opened.
    """
    results: Dict[str, Optional[Exception]] = {}
    try:
        try:
            zip_ref = zipfile.ZipFile(archive_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractError(
                f"The downloaded file is not a valid zip archive: {e}"
            ) from e

        with zip_ref:
            subpaths = list(subtrees)
            outcomes = await asyncio.gather(
                *(
                    asyncio.to_thread(
                        _extract_subtree, zip_ref, prefix, subpath, subtrees[subpath]
                    )
                    for subpath in subpaths
                ),
                return_exceptions=True,
            )

        for subpath, outcome in zip(subpaths, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                error = (
                    outcome
                    if isinstance(outcome, ExtractError)
                    else ExtractError(f"Error while extracting '{subpath}': {outcome}")
                )
                logger.error("Error while extracting '%s': %s", subpath, outcome)
                results[subpath] = error
            else:
                logger.debug(
                    "Extracted %d files from '%s' to %s",
                    outcome,
                    subpath,
                    subtrees[subpath],
                )
                results[subpath] = None
    finally:
        archive_path.unlink(missing_ok=True)
        logger.debug("Removed archive %s", archive_path)

    return results
