"""Pushes new compiler output into the provider while the node runs."""

import asyncio
import json
import logging
import threading
from pathlib import Path

from watchfiles import Change, awatch

from common.node_config import ProjectPaths
from common.provider import EthereumProvider

logger: logging.Logger = logging.getLogger(__name__)


class CompilerOutputWatcher:
    """Handle of a running build-info watch."""

    def __init__(self, task: asyncio.Task, stop_event: threading.Event) -> None:
        self.task: asyncio.Task = task
        self._stop_event: threading.Event = stop_event

    def done(self) -> bool:
        return self.task.done()

    async def stop(self) -> None:
        """Stops watching and waits for the watch loop to finish."""
        if self.task.done():
            return
        self._stop_event.set()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


async def add_compilation_result(provider: EthereumProvider, build_info_path: Path) -> bool:
    """Reads a build-info file and registers it with the provider."""
    with open(build_info_path) as f:
        build_info = json.load(f)

    solc_version = build_info["solcVersion"]
    await provider.request(
        "hardhat_addCompilationResult",
        [solc_version, build_info["input"], build_info["output"]],
    )
    logger.info(f"Loaded compilation result {build_info_path.name} (solc {solc_version})")
    return True


async def _watch_build_info(
    provider: EthereumProvider, build_info_dir: Path, stop_event: threading.Event
) -> None:
    async for changes in awatch(build_info_dir, stop_event=stop_event):
        for change, path in changes:
            if change not in (Change.added, Change.modified) or not path.endswith(".json"):
                continue
            try:
                await add_compilation_result(provider, Path(path))
            except Exception as e:
                logger.debug(f"Error loading compilation output {path}: {e}", exc_info=True)


async def watch_compiler_output(
    provider: EthereumProvider, paths: ProjectPaths
) -> CompilerOutputWatcher:
    """Starts watching the build-info directory.

    Setup errors are raised to the caller; the watch runs until stopped.
    """
    build_info_dir = paths.build_info
    build_info_dir.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Watching compiler output in {build_info_dir}")

    stop_event = threading.Event()
    task = asyncio.get_running_loop().create_task(
        _watch_build_info(provider, build_info_dir, stop_event),
        name="compiler-output-watcher",
    )
    return CompilerOutputWatcher(task, stop_event)
