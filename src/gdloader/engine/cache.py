import logging
from pathlib import Path
from typing import List, Optional, Union

from gdloader.common import remove_directory
from gdloader.constants import DEFAULT_VERSIONS_DIR

from .version_parsing import GDVersion

logger = logging.getLogger(__name__)


def _newest_first_key(path: Path):
    # Parseable tags first, highest version first; then newest mtime; then name.
    version = GDVersion.try_parse(path.name)
    mtime = path.stat().st_mtime
    if version is None:
        return (1, (0, 0, 0, 0, 0), -mtime, path.name)
    inverted = tuple(-part for part in version.ordering_key())
    return (0, inverted, -mtime, path.name)


class VersionCache:
    """Maps version tags to per-version directories under a versions root."""

    def __init__(self, versions_dir: Optional[Union[str, Path]] = None):
        self.versions_dir = Path(versions_dir or DEFAULT_VERSIONS_DIR)

    def __repr__(self):
        return f"<VersionCache {str(self.versions_dir)!r}>"

    def runtime_path(self, version_tag: str) -> Path:
        """Returns the cache directory of a version, whether or not it exists."""
        if version_tag in ("", ".", "..") or Path(version_tag).name != version_tag:
            raise ValueError(f"Invalid version tag: {version_tag!r}")
        return self.versions_dir / version_tag

    def is_cached(self, version_tag: str) -> bool:
        return self.runtime_path(version_tag).is_dir()

    def ensure_clean(self, version_tag: str) -> Path:
        """
        Prepares an empty cache directory for a fresh install of a version.

        Creates the versions root if needed, deletes any previous directory
        for the tag, then recreates it empty.

        Args:
            version_tag: The version to prepare.

        Returns:
            The path of the empty version directory.

        Raises:
            OSError: If the directory cannot be removed or created.
        """
        self.versions_dir.mkdir(parents=True, exist_ok=True)

        gd_path = self.runtime_path(version_tag)
        if remove_directory(gd_path, missing_ok=True):
            logger.info("Cleared previous install of '%s'", version_tag)

        gd_path.mkdir()
        return gd_path

    def list_versions(self) -> List[str]:
        """
        Lists cached version tags, newest first.

        Tags that parse as versions are ordered by version number; other
        entries follow, and ties are broken by modification time then name.
        """
        if not self.versions_dir.is_dir():
            return []

        entries = [p for p in self.versions_dir.iterdir() if p.is_dir()]
        entries.sort(key=_newest_first_key)
        return [p.name for p in entries]

    def latest_cached(self) -> Optional[str]:
        versions = self.list_versions()
        return versions[0] if versions else None

    def remove(self, version_tag: str) -> None:
        """
        Deletes a cached version.

        Raises:
            ValueError: If the version is not cached.
        """
        remove_directory(self.runtime_path(version_tag))
