import logging
from typing import Optional

import httpx

from gdloader.constants import (
    ARCHIVE_URL_TEMPLATE,
    GDEVELOP_OWNER,
    GDEVELOP_REPO,
    GITHUB_API_URL,
    LIBGD_BASE_URL_TEMPLATE,
    RELEASE_FETCHER_TIMEOUT,
    USER_AGENT,
)

from .cache import VersionCache
from .exceptions import NoVersionAvailableError, ResolveError

logger = logging.getLogger(__name__)


class GDReleaseFetcher:
    """Resolves GDevelop release tags and commit hashes from GitHub."""

    def __init__(
        self,
        cache: Optional[VersionCache] = None,
        timeout: float = RELEASE_FETCHER_TIMEOUT,
        token: Optional[str] = None,
        owner: str = GDEVELOP_OWNER,
        repo: str = GDEVELOP_REPO,
    ):
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github+json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=GITHUB_API_URL, timeout=timeout, headers=headers
        )
        self.cache = cache or VersionCache()
        self.owner = owner
        self.repo = repo

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def resolve_latest(self) -> str:
        """
        Returns the tag of the latest published release.

        When GitHub cannot be reached, the newest locally cached version is
        used instead.

        Returns:
            A version tag.

        Raises:
            NoVersionAvailableError: If GitHub fails and nothing is cached.
        """
        logger.info("Getting latest release tag...")
        try:
            response = await self.client.get(f"{self.repo_path}/releases/latest")
            response.raise_for_status()
            tag = response.json()["tag_name"]
            logger.info("Latest release is '%s'", tag)
            return tag

        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP Error fetching latest release: {e}")
        except httpx.RequestError as e:
            logger.error(f"Network Error fetching latest release: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed latest release payload: {e}")

        local_tag = self.cache.latest_cached()
        if local_tag is None:
            logger.critical("Couldn't find or download the latest version.")
            raise NoVersionAvailableError(
                "No release could be fetched and no version is cached in "
                f"{self.cache.versions_dir}"
            )

        logger.warning(
            "Couldn't fetch latest version, using latest local version '%s'.",
            local_tag,
        )
        return local_tag

    async def resolve_commit(self, version_tag: str) -> str:
        """
        Resolves the commit hash a release tag points to.

        Raises:
            ResolveError: If the tag reference cannot be fetched or parsed.
        """
        url = f"{self.repo_path}/git/ref/tags/{version_tag}"
        logger.debug("Requesting URL: %s", url)
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            sha = response.json()["object"]["sha"]
        except httpx.HTTPError as e:
            raise ResolveError(
                f"Cannot resolve commit for tag '{version_tag}': {e}"
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise ResolveError(
                f"Malformed tag reference for '{version_tag}': {e}"
            ) from e

        logger.debug("Tag '%s' points to commit %s", version_tag, sha)
        return sha

    def archive_url(self, version_tag: str) -> str:
        return ARCHIVE_URL_TEMPLATE.format(
            owner=self.owner, repo=self.repo, tag=version_tag
        )

    def archive_prefix(self, commit_hash: str) -> str:
        """Top-level folder of the source archive, e.g. '4ian-GDevelop-abc1234/'."""
        return f"{self.owner}-{self.repo}-{commit_hash[:7]}/"

    @staticmethod
    def binary_base_url(commit_hash: str) -> str:
        return LIBGD_BASE_URL_TEMPLATE.format(sha=commit_hash)
