import asyncio
import json
from pathlib import Path

import pytest

from gdloader.engine.exceptions import NoVersionAvailableError, RuntimeLoadError
from gdloader.runtime.loader import (
    CoreHooks,
    GDCoreHandle,
    GDLoader,
    LoaderState,
    NodeBackend,
    NodeSession,
)


class FakeModule:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakeBackend:
    """Instantiates a fake libGD.js that prints a line before becoming ready."""

    def __init__(self, lines=("libGD.js initialized",), delay: float = 0):
        self.lines = lines
        self.delay = delay
        self.loaded = []

    async def instantiate(self, libgd_path: Path, hooks: CoreHooks):
        self.loaded.append(libgd_path)
        for line in self.lines:
            hooks.print(line)
        hooks.print_err("warning: slow start")
        if self.delay:
            await asyncio.sleep(self.delay)
        return FakeModule()


class FakeProcess:
    def __init__(self, messages, returncode=0):
        self.stdout = asyncio.StreamReader()
        for message in messages:
            line = message if isinstance(message, str) else json.dumps(message)
            self.stdout.feed_data((line + "\n").encode("utf-8"))
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(b"(node) experimental feature\n")
        self.stderr.feed_eof()
        self.stdin = None
        self.returncode = returncode

    async def wait(self):
        return self.returncode


def recording_hooks():
    calls = []
    hooks = CoreHooks(
        print=lambda line: calls.append(("print", line)),
        print_err=lambda line: calls.append(("error", line)),
        on_abort=lambda line: calls.append(("abort", line)),
    )
    return hooks, calls


@pytest.fixture
def cached_loader(tmp_path: Path):
    loader = GDLoader(versions_dir=tmp_path / "Versions", backend=FakeBackend())
    gd_path = loader.cache.ensure_clean("v5.0.0")
    (gd_path / "libGD.js").write_text("module.exports = {}")
    return loader


class TestGDLoader:
    @pytest.mark.asyncio
    async def test_load_cached_version_returns_owned_handle(self, cached_loader):
        handle = await cached_loader.load("v5.0.0")

        assert isinstance(handle, GDCoreHandle)
        assert handle.version == "v5.0.0"
        assert handle.path == cached_loader.cache.runtime_path("v5.0.0")
        assert isinstance(handle.module, FakeModule)
        assert cached_loader.backend.loaded == [handle.path / "libGD.js"]
        assert cached_loader.state is LoaderState.READY

    @pytest.mark.asyncio
    async def test_load_forwards_output_to_listeners_in_order(self, cached_loader):
        calls = []
        cached_loader.on("print", lambda line: calls.append(("first", line)))
        cached_loader.on("print", lambda line: calls.append(("second", line)))
        cached_loader.on("error", lambda line: calls.append(("error", line)))

        await cached_loader.load("v5.0.0")

        assert calls == [
            ("first", "libGD.js initialized"),
            ("second", "libGD.js initialized"),
            ("error", "warning: slow start"),
        ]

    @pytest.mark.asyncio
    async def test_load_missing_version_downloads_it_first(self, tmp_path, mocker):
        loader = GDLoader(versions_dir=tmp_path / "Versions", backend=FakeBackend())
        states = []

        async def fake_download(version_tag, cache, fetcher, **kwargs):
            states.append(loader.state)
            kwargs["on_stage"]("downloading")
            kwargs["on_stage"]("extracting")
            states.append(loader.state)
            return cache.ensure_clean(version_tag)

        mock_download = mocker.patch(
            "gdloader.runtime.loader.download_version", side_effect=fake_download
        )

        handle = await loader.load("v5.0.0")

        mock_download.assert_called_once()
        assert mock_download.call_args.args[0] == "v5.0.0"
        assert states == [LoaderState.NOT_CACHED, LoaderState.EXTRACTING]
        assert handle.version == "v5.0.0"
        assert loader.state is LoaderState.READY

    @pytest.mark.asyncio
    async def test_load_cached_version_skips_download(self, cached_loader, mocker):
        mock_download = mocker.patch("gdloader.runtime.loader.download_version")

        await cached_loader.load("v5.0.0")

        mock_download.assert_not_called()

    @pytest.mark.asyncio
    async def test_load_without_tag_resolves_latest(self, cached_loader, mocker):
        mock_resolve = mocker.patch.object(
            cached_loader.fetcher, "resolve_latest", return_value="v5.0.0"
        )

        handle = await cached_loader.load()

        mock_resolve.assert_awaited_once()
        assert handle.version == "v5.0.0"

    @pytest.mark.asyncio
    async def test_load_without_any_version_raises(self, cached_loader, mocker):
        mocker.patch.object(
            cached_loader.fetcher,
            "resolve_latest",
            side_effect=NoVersionAvailableError("nothing"),
        )

        with pytest.raises(NoVersionAvailableError):
            await cached_loader.load()

    @pytest.mark.asyncio
    async def test_load_times_out_when_never_ready(self, cached_loader):
        cached_loader.backend = FakeBackend(delay=10)
        cached_loader.ready_timeout = 0.05

        with pytest.raises(RuntimeLoadError, match="was not ready"):
            await cached_loader.load("v5.0.0")

    @pytest.mark.asyncio
    async def test_handle_close_closes_module(self, cached_loader):
        async with await cached_loader.load("v5.0.0") as handle:
            module = handle.module

        assert module.closed is True

    @pytest.mark.asyncio
    async def test_aclose_closes_own_fetcher(self, tmp_path, mocker):
        loader = GDLoader(versions_dir=tmp_path / "Versions", backend=FakeBackend())
        mock_aclose = mocker.patch.object(loader.fetcher, "aclose")

        async with loader:
            pass

        mock_aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_fetcher_open(self, tmp_path, mocker):
        fetcher = mocker.Mock()
        fetcher.aclose = mocker.AsyncMock()
        loader = GDLoader(
            versions_dir=tmp_path / "Versions", backend=FakeBackend(), fetcher=fetcher
        )

        await loader.aclose()

        fetcher.aclose.assert_not_awaited()


class TestNodeSession:
    @pytest.mark.asyncio
    async def test_session_dispatches_messages_and_becomes_ready(self):
        hooks, calls = recording_hooks()
        process = FakeProcess(
            [
                {"kind": "print", "payload": "Hello"},
                {"kind": "error", "payload": "Careful"},
                "raw line",
                {"kind": "ready", "payload": None},
            ]
        )

        session = NodeSession(process, hooks)
        await session.ready
        await session.close()

        assert ("print", "Hello") in calls
        assert ("error", "Careful") in calls
        assert ("print", "raw line") in calls
        assert ("error", "(node) experimental feature") in calls

    @pytest.mark.asyncio
    async def test_session_abort_fails_readiness(self):
        hooks, calls = recording_hooks()
        process = FakeProcess([{"kind": "abort", "payload": "OOM"}], returncode=1)

        session = NodeSession(process, hooks)
        with pytest.raises(RuntimeLoadError, match="aborted: OOM"):
            await session.ready
        await session.close()

        assert ("abort", "OOM") in calls

    @pytest.mark.asyncio
    async def test_session_prints_json_lines_that_are_not_messages(self):
        hooks, calls = recording_hooks()
        process = FakeProcess(
            [
                "42",
                '"just a string"',
                "[1, 2]",
                {"payload": "no kind"},
                {"kind": "ready", "payload": None},
            ]
        )

        session = NodeSession(process, hooks)
        await session.ready
        await session.close()

        assert ("print", "42") in calls
        assert ("print", '"just a string"') in calls
        assert ("print", "[1, 2]") in calls
        assert ("print", '{"payload": "no kind"}') in calls

    @pytest.mark.asyncio
    async def test_session_survives_malformed_result_message(self, caplog):
        hooks, _ = recording_hooks()
        process = FakeProcess(
            [
                {"kind": "result", "id": [1], "payload": None},
                {"kind": "ready", "payload": None},
            ]
        )

        session = NodeSession(process, hooks)
        with caplog.at_level("ERROR"):
            await session.ready
        await session.close()

        assert "Failed to handle message from libGD.js" in caplog.text

    @pytest.mark.asyncio
    async def test_evaluate_after_exit_raises_runtime_load_error(self):
        hooks, _ = recording_hooks()
        session = NodeSession(FakeProcess([], returncode=3), hooks)
        with pytest.raises(RuntimeLoadError):
            await session.ready

        for _ in range(2):
            with pytest.raises(RuntimeLoadError, match="exited with code 3"):
                await session.evaluate("gd.VersionWrapper.fullString()")
        await session.close()

    @pytest.mark.asyncio
    async def test_session_exit_before_ready_fails_readiness(self):
        hooks, _ = recording_hooks()
        session = NodeSession(FakeProcess([], returncode=1), hooks)

        with pytest.raises(RuntimeLoadError, match="exited with code 1"):
            await session.ready
        await session.close()


class TestNodeBackend:
    @pytest.mark.asyncio
    async def test_missing_node_executable_raises_runtime_load_error(self, tmp_path):
        hooks, _ = recording_hooks()
        backend = NodeBackend(node_executable=str(tmp_path / "no-node-here"))

        with pytest.raises(RuntimeLoadError, match="Node.js executable not found"):
            await backend.instantiate(tmp_path / "libGD.js", hooks)
