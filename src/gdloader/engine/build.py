import asyncio
import inspect
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional

from gdloader.common import run_command
from gdloader.constants import BUILD_COMMAND_TIMEOUT, BUILD_MARKER_FILE

from .exceptions import BuildError

logger = logging.getLogger(__name__)

BuildRoutine = Callable[[Path], Any]

ESBUILD_COMMAND = ["npx", "--yes", "esbuild"]


def compile_typescript(runtime_path: Path) -> None:
    """
    Compiles the TypeScript sources of an extracted runtime in place.

    Every '.ts' file (declaration files excepted) is transpiled next to its
    source with esbuild, and the sources are deleted afterwards so the runtime
    is not compiled a second time.

    Args:
        runtime_path (Path): The extracted 'Runtime' directory.

    Raises:
        BuildError: If esbuild is missing, fails, or times out.
    """
    sources = sorted(
        p for p in runtime_path.rglob("*.ts") if not p.name.endswith(".d.ts")
    )
    if not sources:
        logger.info("No TypeScript sources found in %s", runtime_path)
        return

    command = [
        *ESBUILD_COMMAND,
        *(p.relative_to(runtime_path).as_posix() for p in sources),
        f"--outdir={runtime_path}",
        f"--outbase={runtime_path}",
        "--sourcemap",
    ]
    try:
        run_command(command, working_dir=runtime_path, timeout=BUILD_COMMAND_TIMEOUT)
    except subprocess.CalledProcessError as e:
        raise BuildError(
            f"esbuild failed with return code {e.returncode}: {e.stderr.strip()}"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise BuildError(
            f"esbuild timed out after {BUILD_COMMAND_TIMEOUT} seconds"
        ) from e
    except FileNotFoundError as e:
        raise BuildError("npx not found in PATH, is Node.js installed?") from e

    for source in sources:
        source.unlink()
    logger.info("Compiled %d TypeScript files", len(sources))


def _is_async(routine: BuildRoutine) -> bool:
    return inspect.iscoroutinefunction(routine) or inspect.iscoroutinefunction(
        getattr(routine, "__call__", None)
    )


async def build_if_needed(
    runtime_path: Path, build_routine: Optional[BuildRoutine] = None
) -> bool:
    """
    Compiles the extracted runtime when it still holds uncompiled sources.

    The presence of 'gd.ts' in the runtime marks an uncompiled runtime. Build
    failures are logged and never propagated.

    Args:
        runtime_path: The extracted 'Runtime' directory.
        build_routine: Callable (sync or async) taking the runtime path.
            Defaults to compile_typescript.

    Returns:
        True if a build ran and succeeded, False otherwise.
    """
    if not (runtime_path / BUILD_MARKER_FILE).is_file():
        logger.info("Skipping TypeScript compilation, already compiled.")
        return False

    routine = build_routine or compile_typescript
    logger.info("Compiling Runtime...")
    try:
        if _is_async(routine):
            result = routine(runtime_path)
        else:
            result = await asyncio.to_thread(routine, runtime_path)
        # Wrapped coroutine functions (partials, decorators) hand back an awaitable.
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        error = e if isinstance(e, BuildError) else BuildError(str(e))
        logger.error("Error while compiling the Runtime: %s", error)
        return False

    logger.info("Done compiling the Runtime")
    return True
