import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from gdloader.common import remove_directory
from gdloader.constants import (
    ARCHIVE_FILE,
    ARTIFACT_DOWNLOAD_TIMEOUT,
    EXTENSIONS_DIR,
    LIBGD_FILE,
    LIBGD_MEM_FILE,
    LIBGD_WASM_FILE,
    RUNTIME_DIR,
    USER_AGENT,
)

from .build import BuildRoutine, build_if_needed
from .cache import VersionCache
from .download import FetchPolicy, fetch
from .exceptions import ExtractError
from .extract import extract
from .release_fetcher import GDReleaseFetcher

logger = logging.getLogger(__name__)

CORE_ARTIFACTS = [
    (LIBGD_FILE, FetchPolicy.REQUIRED),
    (LIBGD_MEM_FILE, FetchPolicy.OPTIONAL),
    (LIBGD_WASM_FILE, FetchPolicy.OPTIONAL),
]


async def _install_runtime(
    client: httpx.AsyncClient,
    fetcher: GDReleaseFetcher,
    gd_path: Path,
    version_tag: str,
    commit_hash: str,
    build_routine: Optional[BuildRoutine],
    on_stage: Callable[[str], None],
) -> None:
    zip_path = gd_path / ARCHIVE_FILE
    runtime_path = gd_path / RUNTIME_DIR
    extensions_path = runtime_path / EXTENSIONS_DIR

    logger.info("Starting download of GDevelop Runtime '%s'...", version_tag)
    try:
        await fetch(fetcher.archive_url(version_tag), zip_path, client=client)
        logger.info("Done downloading GDevelop Runtime '%s'", version_tag)

        on_stage("extracting")
        logger.info("Extracting GDevelop Runtime '%s'...", version_tag)
        runtime_path.mkdir()
        extensions_path.mkdir()
    except BaseException:
        zip_path.unlink(missing_ok=True)
        raise

    try:
        results = await extract(
            zip_path,
            fetcher.archive_prefix(commit_hash),
            {
                "Extensions": extensions_path,
                "GDJS/Runtime": runtime_path,
            },
        )
    except ExtractError as e:
        logger.error("Error while extracting the GDevelop Runtime! %s", e)
        return

    if any(results.values()):
        logger.warning("GDevelop Runtime '%s' was only partially extracted", version_tag)
    else:
        logger.info("Done extracting the GDevelop Runtime")

    on_stage("building")
    await build_if_needed(runtime_path, build_routine)


async def _install_core(
    client: httpx.AsyncClient, fetcher: GDReleaseFetcher, gd_path: Path, commit_hash: str
) -> None:
    base_url = fetcher.binary_base_url(commit_hash)
    logger.info("Starting download of GDevelop Core...")

    async def fetch_one(file_name: str, policy: FetchPolicy) -> None:
        written = await fetch(
            base_url + file_name, gd_path / file_name, policy, client=client
        )
        if written:
            logger.info("Done downloading %s", file_name)

    outcomes = await asyncio.gather(
        *(fetch_one(name, policy) for name, policy in CORE_ARTIFACTS),
        return_exceptions=True,
    )
    _raise_first(outcomes)


def _raise_first(outcomes: List[object]) -> None:
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome


async def download_version(
    version_tag: str,
    cache: VersionCache,
    fetcher: GDReleaseFetcher,
    build_routine: Optional[BuildRoutine] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = ARTIFACT_DOWNLOAD_TIMEOUT,
    on_stage: Optional[Callable[[str], None]] = None,
) -> Path:
    """
    Downloads a GDevelop version: libGD.js, the runtime and the extensions.

    The runtime branch (archive, extraction, build) and the core branch
    (libGD.js and its optional companions) run concurrently. Both are allowed
    to settle before the first fatal error, if any, is raised. A failed
    install is removed from the cache so the next load downloads it again.

    Args:
        version_tag: The GDevelop version tag.
        cache: Cache holding the version directories.
        fetcher: Release fetcher used for commit lookup and URLs.
        build_routine: Optional replacement for the TypeScript build step.
        client: Optional shared client for artifact downloads.
        timeout: HTTP timeout for artifact downloads, for the temporary client.
        on_stage: Optional callback notified with "downloading", "extracting"
            and "building" as the install progresses.

    Returns:
        The populated version directory.

    Raises:
        FetchError: If a required artifact cannot be downloaded.
        ResolveError: If the commit of the tag cannot be resolved.
        OSError: If the version directory cannot be prepared.
    """
    notify = on_stage or (lambda stage: None)
    notify("downloading")

    gd_path = cache.ensure_clean(version_tag)
    try:
        commit_hash = await fetcher.resolve_commit(version_tag)

        async def run_branches(http_client: httpx.AsyncClient) -> List[object]:
            return await asyncio.gather(
                _install_runtime(
                    http_client,
                    fetcher,
                    gd_path,
                    version_tag,
                    commit_hash,
                    build_routine,
                    notify,
                ),
                _install_core(http_client, fetcher, gd_path, commit_hash),
                return_exceptions=True,
            )

        if client is None:
            async with httpx.AsyncClient(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            ) as own_client:
                outcomes = await run_branches(own_client)
        else:
            outcomes = await run_branches(client)

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error(
                    "Fatal error while installing '%s': %s", version_tag, outcome
                )
        _raise_first(outcomes)

    except BaseException:
        remove_directory(gd_path, missing_ok=True)
        raise

    logger.info("Successfully downloaded GDevelop version '%s'", version_tag)
    return gd_path
