import enum
import logging
from pathlib import Path
from typing import Callable, Optional

import httpx

from gdloader.constants import ARTIFACT_DOWNLOAD_TIMEOUT, USER_AGENT

from .exceptions import FetchError

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


class FetchPolicy(enum.Enum):
    """Whether a missing artifact aborts the install or is skipped."""

    REQUIRED = "required"
    OPTIONAL = "optional"


async def fetch(
    url: str,
    destination: Path,
    policy: FetchPolicy = FetchPolicy.REQUIRED,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = ARTIFACT_DOWNLOAD_TIMEOUT,
    progress_callback: Optional[Callable[[int, Optional[int]], None]] = None,
) -> bool:
    """
    Downloads a single artifact to the given path, following redirects.

    The file is written only once the server answered with a 2xx status, and
    this coroutine returns after the file has been flushed and closed. A
    transfer that fails midway leaves no file behind.

    Args:
        url: The URL of the artifact.
        destination: The file to create or overwrite.
        policy: REQUIRED raises on failure, OPTIONAL skips silently.
        client: Optional shared client; a temporary one is used otherwise.
        timeout: HTTP request timeout in seconds, for the temporary client.
        progress_callback: Optional callback(progress_bytes, total_bytes).

    Returns:
        True if the file was written, False if an optional artifact was skipped.

    Raises:
        FetchError: If a required artifact cannot be downloaded or written.
    """
    if client is None:
        async with httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": USER_AGENT}
        ) as temp_client:
            return await _fetch_with(
                temp_client, url, destination, policy, progress_callback
            )
    return await _fetch_with(client, url, destination, policy, progress_callback)


async def _fetch_with(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    policy: FetchPolicy,
    progress_callback: Optional[Callable[[int, Optional[int]], None]],
) -> bool:
    logger.debug("Requesting artifact: %s", url)
    # Bytes land in a sibling file first; destination only ever holds a whole body.
    partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
    try:
        async with client.stream("GET", url, follow_redirects=True) as response:
            if not response.is_success:
                if policy is FetchPolicy.OPTIONAL:
                    logger.debug(
                        "Skipping optional artifact %s (HTTP %d)",
                        url,
                        response.status_code,
                    )
                    return False
                raise FetchError(url, response.status_code, response.reason_phrase)

            total_bytes = int(response.headers.get("Content-Length", 0)) or None
            downloaded = 0

            try:
                with partial.open("wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        downloaded += len(chunk)
                        if progress_callback:
                            progress_callback(downloaded, total_bytes)
                partial.replace(destination)
            except OSError as e:
                raise FetchError(url, reason=f"failed to write {destination}: {e}") from e

    except httpx.RequestError as e:
        if policy is FetchPolicy.OPTIONAL:
            logger.warning("Network error on optional artifact %s: %s", url, e)
            return False
        raise FetchError(url, reason=f"network error: {e}") from e
    finally:
        partial.unlink(missing_ok=True)

    logger.debug("Saved %d bytes from %s to %s", downloaded, url, destination)
    return True
