import platform
from pathlib import Path

from gdloader import __name__, __version__

USER_AGENT = f"{__name__} v{__version__} (Python: v{platform.python_version()}, Platform: {platform.system()})"

RELEASE_FETCHER_TIMEOUT = 10
ARTIFACT_DOWNLOAD_TIMEOUT = 60
BUILD_COMMAND_TIMEOUT = 300
RUNTIME_READY_TIMEOUT = 120

GITHUB_API_URL = "https://api.github.com"
GDEVELOP_OWNER = "4ian"
GDEVELOP_REPO = "GDevelop"

ARCHIVE_URL_TEMPLATE = "https://codeload.github.com/{owner}/{repo}/legacy.zip/{tag}"
LIBGD_BASE_URL_TEMPLATE = (
    "https://s3.amazonaws.com/gdevelop-gdevelop.js/master/commit/{sha}/"
)

DEFAULT_VERSIONS_DIR = Path(__file__).resolve().parent / "Versions"

ARCHIVE_FILE = "gd.zip"
RUNTIME_DIR = "Runtime"
EXTENSIONS_DIR = "Extensions"
LIBGD_FILE = "libGD.js"
LIBGD_MEM_FILE = "libGD.js.mem"
LIBGD_WASM_FILE = "libGD.wasm"
BUILD_MARKER_FILE = "gd.ts"
