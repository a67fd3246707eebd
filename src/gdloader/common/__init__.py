from .core import remove_directory, run_command

__all__ = [
    "remove_directory",
    "run_command",
]
