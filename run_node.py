"""Run a local development JSON-RPC node."""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional

import dotenv
from rich.console import Console

from common.errors import NodeError
from common.node_config import load_config
from common.runtime import RuntimeEnvironment, create_runtime_environment
from tasks.node import LaunchRequest, NodeLaunchOrchestrator, format_error

from config.defaults import NodeServiceConfig

err_console = Console(stderr=True, highlight=False)

# Conventional exit status of a process stopped by SIGINT
INTERRUPTED_EXIT_CODE = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Starts a JSON-RPC server on top of the local network"
    )
    parser.add_argument(
        "--hostname",
        help=(
            "The host to which to bind to for new connections "
            "(Defaults to 127.0.0.1 running locally, and 0.0.0.0 in Docker)"
        ),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=NodeServiceConfig.DEFAULT_PORT,
        help="The port on which to listen for new connections",
    )
    parser.add_argument(
        "--fork", dest="fork_url", help="The URL of the JSON-RPC server to fork from"
    )
    parser.add_argument(
        "--fork-block-number", type=int, help="The block number to fork from"
    )
    parser.add_argument("--network", help="The network to connect to")
    parser.add_argument("--config", help="Path to the project configuration file")
    parser.add_argument(
        "--verbose", action="store_true", help="Enables debug logging"
    )
    return parser


def setup_environment(args: argparse.Namespace) -> RuntimeEnvironment:
    """Load environment and project configuration."""
    dotenv.load_dotenv(NodeServiceConfig.ENV_FILENAME)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    if not args.verbose:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    config = load_config(args.config)
    return create_runtime_environment(config, network_name=args.network)


async def run_node(
    orchestrator: NodeLaunchOrchestrator, request: LaunchRequest
) -> bool:
    """Launches the node until it is closed.

    Returns False when a signal interrupted the launch before the server was
    listening.
    """
    loop = asyncio.get_running_loop()
    launch = asyncio.current_task()
    closing: set[asyncio.Task] = set()
    interrupted = False

    def _handle_signal() -> None:
        nonlocal interrupted
        if orchestrator.is_listening:
            task = loop.create_task(orchestrator.context.server.close())
            closing.add(task)
            task.add_done_callback(closing.discard)
        else:
            interrupted = True
            launch.cancel()

    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    try:
        await orchestrator.launch(request)
    except asyncio.CancelledError:
        if not interrupted:
            raise
        logging.info("Interrupted before the JSON-RPC server was listening")
        return False
    finally:
        for sig in signals:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        if closing:
            await asyncio.gather(*closing, return_exceptions=True)

    return True


def main(argv: Optional[list[str]] = None) -> int:
    """Start local node."""
    args = build_parser().parse_args(argv)

    try:
        env = setup_environment(args)
        request = LaunchRequest(
            port=args.port,
            hostname=args.hostname,
            fork_url=args.fork_url,
            fork_block_number=args.fork_block_number,
            network_name=env.network.name,
            is_explicit_network=env.network.is_explicit,
        )
        completed = asyncio.run(run_node(NodeLaunchOrchestrator(env), request))
    except NodeError as e:
        err_console.print(
            format_error(e, verbose=args.verbose), style="red", markup=False, soft_wrap=True
        )
        return 1

    return 0 if completed else INTERRUPTED_EXIT_CODE


if __name__ == "__main__":
    sys.exit(main())
