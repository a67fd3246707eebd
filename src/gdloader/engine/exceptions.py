from typing import Optional


class GDLoaderError(Exception):
    """Base class for every error raised by gdloader."""


class FetchError(GDLoaderError):
    """A required artifact could not be downloaded."""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            message = f"Cannot download {url}! Error {status_code}: {reason}"
        else:
            message = f"Cannot download {url}: {reason}"
        super().__init__(message)


class ResolveError(GDLoaderError):
    """A version tag or its commit hash could not be resolved."""


class NoVersionAvailableError(ResolveError):
    """Neither the release API nor the local cache provided a version."""


class ExtractError(GDLoaderError):
    """Extraction of an archive or one of its subtrees failed."""


class BuildError(GDLoaderError):
    """Compilation of the extracted runtime failed."""


class RuntimeLoadError(GDLoaderError):
    """The core library could not be loaded or aborted before being ready."""
