import asyncio
import json

import pytest

from common.node_config import ProjectPaths
from common.watcher import add_compilation_result, watch_compiler_output


class RecordingProvider:
    def __init__(self):
        self.calls = []

    async def request(self, method, params=None):
        self.calls.append((method, params))
        return True


@pytest.mark.asyncio
async def test_add_compilation_result(tmp_path):
    build_info = tmp_path / "abc.json"
    build_info.write_text(
        json.dumps({"solcVersion": "0.8.20", "input": {"a": 1}, "output": {"b": 2}})
    )
    provider = RecordingProvider()

    await add_compilation_result(provider, build_info)

    assert provider.calls == [
        ("hardhat_addCompilationResult", ["0.8.20", {"a": 1}, {"b": 2}])
    ]


@pytest.mark.asyncio
async def test_add_compilation_result_invalid_file(tmp_path):
    build_info = tmp_path / "abc.json"
    build_info.write_text(json.dumps({"input": {}}))

    with pytest.raises(KeyError):
        await add_compilation_result(RecordingProvider(), build_info)


@pytest.mark.asyncio
async def test_watch_creates_build_info_dir(tmp_path):
    paths = ProjectPaths.from_root(tmp_path)

    watch = await watch_compiler_output(RecordingProvider(), paths)
    try:
        assert paths.build_info.is_dir()
        assert not watch.done()
    finally:
        await asyncio.wait_for(watch.stop(), 5)

    assert watch.done()


@pytest.mark.asyncio
async def test_watch_setup_error_is_raised(tmp_path):
    (tmp_path / "artifacts").write_text("not a directory")
    paths = ProjectPaths.from_root(tmp_path)

    with pytest.raises(OSError):
        await watch_compiler_output(RecordingProvider(), paths)


def write_build_info(path, solc_version):
    path.write_text(
        json.dumps({"solcVersion": solc_version, "input": {}, "output": {"contracts": {}}})
    )


async def wait_for_calls(provider, timeout=5):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not provider.calls and loop.time() < deadline:
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_watch_pushes_new_build_info(tmp_path):
    paths = ProjectPaths.from_root(tmp_path)
    provider = RecordingProvider()

    watch = await watch_compiler_output(provider, paths)
    try:
        await asyncio.sleep(0.3)
        write_build_info(paths.build_info / "a.json", "0.8.20")
        await wait_for_calls(provider)
    finally:
        await asyncio.wait_for(watch.stop(), 5)

    assert provider.calls
    assert provider.calls[0] == (
        "hardhat_addCompilationResult",
        ["0.8.20", {}, {"contracts": {}}],
    )


@pytest.mark.asyncio
async def test_watch_skips_deletions_and_other_files(tmp_path):
    paths = ProjectPaths.from_root(tmp_path)
    paths.build_info.mkdir(parents=True)
    stale = paths.build_info / "stale.json"
    write_build_info(stale, "0.7.6")
    provider = RecordingProvider()

    watch = await watch_compiler_output(provider, paths)
    try:
        await asyncio.sleep(0.3)
        stale.unlink()
        (paths.build_info / "notes.txt").write_text("not build info")
        write_build_info(paths.build_info / "b.json", "0.8.24")
        await wait_for_calls(provider)
        await asyncio.sleep(0.5)
    finally:
        await asyncio.wait_for(watch.stop(), 5)

    assert provider.calls
    assert {params[0] for _, params in provider.calls} == {"0.8.24"}
