from .build import build_if_needed, compile_typescript
from .cache import VersionCache
from .download import FetchPolicy, fetch
from .exceptions import (
    BuildError,
    ExtractError,
    FetchError,
    GDLoaderError,
    NoVersionAvailableError,
    ResolveError,
    RuntimeLoadError,
)
from .extract import extract
from .installer import download_version
from .release_fetcher import GDReleaseFetcher
from .version_parsing import GDVersion

__all__ = [
    "build_if_needed",
    "compile_typescript",
    "VersionCache",
    "FetchPolicy",
    "fetch",
    "BuildError",
    "ExtractError",
    "FetchError",
    "GDLoaderError",
    "NoVersionAvailableError",
    "ResolveError",
    "RuntimeLoadError",
    "extract",
    "download_version",
    "GDReleaseFetcher",
    "GDVersion",
]
