import asyncio
import enum
import itertools
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Union

from gdloader.constants import LIBGD_FILE, RUNTIME_READY_TIMEOUT
from gdloader.engine.build import BuildRoutine
from gdloader.engine.cache import VersionCache
from gdloader.engine.exceptions import RuntimeLoadError
from gdloader.engine.installer import download_version
from gdloader.engine.release_fetcher import GDReleaseFetcher

from .events import EVENT_ERROR, EVENT_PRINT, GDCoreEvents, Listener, Subscription

logger = logging.getLogger(__name__)

# libGD.js can print long lines (serialized projects).
STREAM_LIMIT = 2**20

NODE_BOOTSTRAP = """
const readline = require("readline");
const send = (kind, payload, id) =>
  process.stdout.write(JSON.stringify({ kind, payload, id }) + "\\n");
const libGDPath = process.argv[process.argv.length - 1];

let gd = null;
require(libGDPath)({
  print: (e) => send("print", String(e)),
  printErr: (e) => send("error", String(e)),
  onAbort: (e) => send("abort", String(e)),
}).then((module) => {
  gd = module;
  send("ready", null);
});

readline.createInterface({ input: process.stdin }).on("line", async (line) => {
  const { id, code } = JSON.parse(line);
  try {
    const value = await new Function("gd", "return (" + code + ");")(gd);
    send("result", value === undefined ? null : value, id);
  } catch (e) {
    send("failure", String(e), id);
  }
}).on("close", () => process.exit(0));
"""


class LoaderState(enum.Enum):
    NOT_CACHED = "not_cached"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    BUILDING = "building"
    ARTIFACTS_READY = "artifacts_ready"
    LOADING = "loading"
    READY = "ready"


@dataclass
class CoreHooks:
    """Callbacks injected into the core library when it is instantiated."""

    print: Callable[[str], None]
    print_err: Callable[[str], None]
    on_abort: Callable[[str], None]


class ArtifactBackend(Protocol):
    async def instantiate(self, libgd_path: Path, hooks: CoreHooks) -> Any:
        """Loads libGD.js and returns its module once it reports readiness."""
        ...


class NodeSession:
    """A Node.js process holding an initialized libGD.js module."""

    def __init__(self, process: asyncio.subprocess.Process, hooks: CoreHooks):
        self.process = process
        self.hooks = hooks
        self.ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr_reader = asyncio.create_task(self._read_stderr())

    async def _read_stdout(self) -> None:
        assert self.process.stdout is not None
        async for raw_line in self.process.stdout:
            line = raw_line.decode("utf-8", errors="replace").rstrip("\n")
            if not line:
                continue
            try:
                message = json.loads(line)
            except ValueError:
                message = None
            # Anything that is not a protocol message is plain module output.
            if not isinstance(message, dict) or "kind" not in message:
                self.hooks.print(line)
                continue
            try:
                self._dispatch(message)
            except Exception:
                logger.exception("Failed to handle message from libGD.js: %s", line)

        returncode = await self.process.wait()
        error = RuntimeLoadError(f"libGD.js process exited with code {returncode}")
        if not self.ready.done():
            self.ready.set_exception(error)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _read_stderr(self) -> None:
        assert self.process.stderr is not None
        async for raw_line in self.process.stderr:
            self.hooks.print_err(raw_line.decode("utf-8", errors="replace").rstrip("\n"))

    def _dispatch(self, message: Dict[str, Any]) -> None:
        kind = message.get("kind")
        payload = message.get("payload")
        if kind == "print":
            self.hooks.print(payload)
        elif kind == "error":
            self.hooks.print_err(payload)
        elif kind == "abort":
            self.hooks.on_abort(payload)
            if not self.ready.done():
                self.ready.set_exception(
                    RuntimeLoadError(f"libGD.js aborted: {payload}")
                )
        elif kind == "ready":
            if not self.ready.done():
                self.ready.set_result(None)
        elif kind in ("result", "failure"):
            future = self._pending.pop(message.get("id"), None)
            if future is None or future.done():
                return
            if kind == "result":
                future.set_result(payload)
            else:
                future.set_exception(RuntimeError(payload))
        else:
            logger.debug("Ignoring unknown message from libGD.js: %s", message)

    async def evaluate(self, expression: str) -> Any:
        """
        Evaluates a JavaScript expression with `gd` in scope and returns its
        JSON-serializable result.

        Raises:
            RuntimeError: If the expression throws.
            RuntimeLoadError: If the process exited.
        """
        if self.process.returncode is not None or self._reader.done():
            raise RuntimeLoadError(
                f"libGD.js process exited with code {self.process.returncode}"
            )
        assert self.process.stdin is not None
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        request = json.dumps({"id": request_id, "code": expression}) + "\n"
        try:
            self.process.stdin.write(request.encode("utf-8"))
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._pending.pop(request_id, None)
            raise RuntimeLoadError(f"libGD.js process is gone: {e}") from e
        return await future

    async def close(self) -> None:
        if self.process.returncode is None:
            if self.process.stdin is not None:
                self.process.stdin.close()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning("libGD.js process did not exit, killing it")
                self.process.kill()
                await self.process.wait()
        await asyncio.gather(self._reader, self._stderr_reader, return_exceptions=True)


class NodeBackend:
    """Loads libGD.js in a Node.js child process."""

    def __init__(self, node_executable: Optional[str] = None):
        self.node_executable = node_executable or shutil.which("node") or "node"

    async def instantiate(self, libgd_path: Path, hooks: CoreHooks) -> NodeSession:
        logger.debug("Starting %s for %s", self.node_executable, libgd_path)
        try:
            process = await asyncio.create_subprocess_exec(
                self.node_executable,
                "-e",
                NODE_BOOTSTRAP,
                str(libgd_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(libgd_path.parent),
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise RuntimeLoadError(
                f"Node.js executable not found: {self.node_executable}"
            ) from e

        session = NodeSession(process, hooks)
        try:
            await session.ready
        except BaseException:
            await session.close()
            raise
        return session


@dataclass
class GDCoreHandle:
    """An initialized libGD.js, owned by the caller of GDLoader.load()."""

    version: str
    path: Path
    module: Any

    async def close(self) -> None:
        close = getattr(self.module, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "GDCoreHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class GDLoader:
    """
    Installs GDevelop versions on demand and loads their core library.

    Usage:
    ```
    async with GDLoader() as loader:
        loader.on("print", print)
        async with await loader.load() as gd:
            await gd.module.evaluate("gd.VersionWrapper.fullString()")
    ```
    """

    def __init__(
        self,
        versions_dir: Optional[Union[str, Path]] = None,
        backend: Optional[ArtifactBackend] = None,
        fetcher: Optional[GDReleaseFetcher] = None,
        build_routine: Optional[BuildRoutine] = None,
        ready_timeout: float = RUNTIME_READY_TIMEOUT,
    ):
        self.cache = VersionCache(versions_dir)
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or GDReleaseFetcher(cache=self.cache)
        self.backend: ArtifactBackend = backend or NodeBackend()
        self.build_routine = build_routine
        self.ready_timeout = ready_timeout
        self.events = GDCoreEvents()
        self.state: Optional[LoaderState] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        """Closes the release fetcher if this loader created it."""
        if self._owns_fetcher:
            await self.fetcher.aclose()

    def on(self, event: str, listener: Listener) -> Subscription:
        """Registers a listener for "print" or "error" output of the core library."""
        return self.events.on(event, listener)

    def _set_state(self, state: LoaderState) -> None:
        self.state = state
        logger.debug("Loader state: %s", state.name)

    async def resolve_latest(self) -> str:
        return await self.fetcher.resolve_latest()

    async def load(self, version_tag: Optional[str] = None) -> GDCoreHandle:
        """
        Returns an initialized libGD.js, downloading the version first if it
        is not cached.

        Args:
            version_tag: The GDevelop version to use. The latest release is
                used when omitted.

        Returns:
            A GDCoreHandle owned by the caller.

        Raises:
            NoVersionAvailableError: If no version tag could be determined.
            FetchError: If a required artifact cannot be downloaded.
            RuntimeLoadError: If libGD.js fails or times out while initializing.
        """
        if version_tag is None:
            version_tag = await self.fetcher.resolve_latest()

        gd_path = self.cache.runtime_path(version_tag)
        if not self.cache.is_cached(version_tag):
            self._set_state(LoaderState.NOT_CACHED)
            logger.info("The GDevelop version was not found, downloading it!")
            await download_version(
                version_tag,
                self.cache,
                self.fetcher,
                build_routine=self.build_routine,
                on_stage=lambda stage: self._set_state(LoaderState(stage)),
            )
            self._set_state(LoaderState.ARTIFACTS_READY)

        self._set_state(LoaderState.LOADING)
        hooks = CoreHooks(
            print=lambda line: self.events.emit(EVENT_PRINT, line),
            print_err=lambda line: self.events.emit(EVENT_ERROR, line),
            on_abort=lambda line: self.events.emit(EVENT_ERROR, line),
        )
        try:
            module = await asyncio.wait_for(
                self.backend.instantiate(gd_path / LIBGD_FILE, hooks),
                timeout=self.ready_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RuntimeLoadError(
                f"libGD.js '{version_tag}' was not ready after {self.ready_timeout} seconds"
            ) from e

        self._set_state(LoaderState.READY)
        logger.info("GDevelop Core '%s' is ready", version_tag)
        return GDCoreHandle(version=version_tag, path=gd_path, module=module)
