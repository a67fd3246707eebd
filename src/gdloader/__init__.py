from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gdloader")
except PackageNotFoundError:
    __version__ = "0.1.0"

from . import engine, runtime
from .runtime import GDCoreHandle, GDLoader

__all__ = ["engine", "runtime", "GDCoreHandle", "GDLoader"]
