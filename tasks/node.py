"""Launches a JSON-RPC server on top of the local network."""

import asyncio
import logging
import os
import traceback
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

from eth_account import Account
from rich.console import Console

from common.errors import (
    AuxiliaryWatchFailure,
    NodeError,
    ServerLaunchError,
    UnsupportedNetworkError,
)
from common.node_config import LocalNetworkConfig, resolve_forking_intent
from common.provider import EthereumProvider, create_provider
from common.reporter import Reporter
from common.rpc_server import AiohttpJsonRpcServer, JsonRpcServer, JsonRpcServerConfig
from common.runtime import RuntimeEnvironment
from common.task_registry import TaskRegistry
from common.watcher import CompilerOutputWatcher, watch_compiler_output

from config.defaults import NodeServiceConfig

logger: logging.Logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

TASK_NODE_GET_PROVIDER = "node:get-provider"
TASK_NODE_CREATE_SERVER = "node:create-server"
TASK_NODE_SERVER_CREATED = "node:server-created"
TASK_NODE_SERVER_READY = "node:server-ready"

WATCH_FAILURE_WARNING = (
    "There was a problem watching the compiler output, changes in the contracts "
    "won't be reflected in the local network. Run with --verbose to learn more."
)


def is_inside_container(marker_path: str = NodeServiceConfig.CONTAINER_MARKER_PATH) -> bool:
    """Returns True when the container marker file exists."""
    return os.path.exists(marker_path)


def server_url(address: str, port: int) -> str:
    """Builds the HTTP URL of the server, bracketing IPv6 addresses."""
    if ":" in address:
        address = f"[{address}]"
    return f"http://{address}:{port}/"


def format_error(error: NodeError, verbose: bool = False) -> str:
    """Renders a fatal error for the command line."""
    message = f"Error: {error}"
    if not isinstance(error, ServerLaunchError) or error.cause is None:
        return message

    if not verbose:
        return f"{message}\n\nFor more info run with --verbose"

    cause = error.cause
    details = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
    return f"{message}\n\n{details.rstrip()}"


def format_accounts(network_config: LocalNetworkConfig) -> Optional[str]:
    """Renders the configured accounts, or None when there are none configured."""
    if network_config.accounts is None:
        return None

    lines = ["Accounts", "========"]
    for index, account in enumerate(network_config.accounts):
        local_account = Account.from_key(account.private_key)
        balance = account.balance // NodeServiceConfig.WEI_PER_ETHER
        lines.append(f"Account #{index}: {local_account.address} ({balance} ETH)")
        lines.append(f"Private Key: 0x{bytes(local_account.key).hex()}")
        lines.append("")
    return "\n".join(lines)


async def get_provider(
    env: RuntimeEnvironment,
    fork_url: Optional[str] = None,
    fork_block_number: Optional[int] = None,
) -> EthereumProvider:
    local_name = NodeServiceConfig.LOCAL_NETWORK_NAME
    local_config = env.config.local_network

    # Raises before any provider is created when the block number has no URL
    intent = resolve_forking_intent(local_config, fork_url, fork_block_number)

    provider = env.network.provider
    if not env.network.is_local:
        logger.debug("Creating local provider for JSON-RPC server")
        provider = create_provider(local_name, local_config, env.config.paths)

    if intent.enabled:
        forking: dict[str, Any] = {"jsonRpcUrl": intent.url}
        if intent.block_number is not None:
            forking["blockNumber"] = intent.block_number
        await provider.request("hardhat_reset", [{"forking": forking}])

    await provider.request("hardhat_setLoggingEnabled", [True])
    return provider


async def create_server(
    env: RuntimeEnvironment, hostname: str, port: int, provider: EthereumProvider
) -> JsonRpcServer:
    return AiohttpJsonRpcServer(
        JsonRpcServerConfig(hostname=hostname, port=port, provider=provider)
    )


async def server_created(
    env: RuntimeEnvironment,
    hostname: str,
    port: int,
    provider: EthereumProvider,
    server: JsonRpcServer,
) -> None:
    """Runs once the server exists but before it accepts connections.

    Meant to be overridden by extensions that need to prepare the server.
    """


async def server_ready(
    env: RuntimeEnvironment,
    address: str,
    port: int,
    provider: EthereumProvider,
    server: JsonRpcServer,
) -> None:
    """Runs once the server accepts requests."""
    console.print(
        f"Started HTTP and WebSocket JSON-RPC server at {server_url(address, port)}",
        style="green",
        markup=False,
        soft_wrap=True,
    )
    console.print()

    accounts = format_accounts(env.config.local_network)
    if accounts is not None:
        console.print(accounts, markup=False, soft_wrap=True)


def register_node_tasks(registry: TaskRegistry) -> TaskRegistry:
    """Installs the default actions of every node phase."""
    registry.register(
        TASK_NODE_GET_PROVIDER, get_provider, "Resolves the provider to serve"
    )
    registry.register(
        TASK_NODE_CREATE_SERVER, create_server, "Creates the JSON-RPC server"
    )
    registry.register(
        TASK_NODE_SERVER_CREATED, server_created, "Runs before the server listens"
    )
    registry.register(
        TASK_NODE_SERVER_READY, server_ready, "Runs once the server is listening"
    )
    return registry


class LaunchState(Enum):
    IDLE = "idle"
    VALIDATING_REQUEST = "validating_request"
    RESOLVING_PROVIDER = "resolving_provider"
    CREATING_SERVER = "creating_server"
    PRE_LISTEN_HOOK = "pre_listen_hook"
    LISTENING = "listening"
    WATCHING_ARTIFACTS = "watching_artifacts"
    POST_LISTEN_HOOK = "post_listen_hook"
    SERVING = "serving"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class LaunchRequest:
    """Options of a single node launch."""

    port: int = NodeServiceConfig.DEFAULT_PORT
    hostname: Optional[str] = None
    fork_url: Optional[str] = None
    fork_block_number: Optional[int] = None
    network_name: str = NodeServiceConfig.LOCAL_NETWORK_NAME
    is_explicit_network: bool = False


@dataclass(frozen=True)
class LaunchContext:
    """Everything known about the launch so far."""

    hostname: str
    port: int
    provider: Optional[EthereumProvider] = None
    server: Optional[JsonRpcServer] = None
    address: Optional[str] = None
    actual_port: Optional[int] = None


class NodeLaunchOrchestrator:
    """Runs the node phases in order and supervises the server until it closes."""

    def __init__(
        self,
        env: RuntimeEnvironment,
        container_probe: Callable[[], bool] = is_inside_container,
        watcher: Callable[..., Any] = watch_compiler_output,
    ) -> None:
        self.env: RuntimeEnvironment = env
        self.state: LaunchState = LaunchState.IDLE
        self.context: Optional[LaunchContext] = None
        self.watch: Optional[CompilerOutputWatcher] = None
        self._container_probe = container_probe
        self._watcher = watcher

        if TASK_NODE_GET_PROVIDER not in env.registry:
            register_node_tasks(env.registry)

    @property
    def is_listening(self) -> bool:
        return self.context is not None and self.context.actual_port is not None

    def _transition(self, state: LaunchState) -> None:
        logger.debug(f"Node launch: {self.state.value} -> {state.value}")
        self.state = state

    def validate_request(self, request: LaunchRequest) -> None:
        local_name = NodeServiceConfig.LOCAL_NETWORK_NAME
        if request.network_name != local_name and request.is_explicit_network:
            raise UnsupportedNetworkError(request.network_name, local_name)

    def resolve_hostname(self, hostname: Optional[str]) -> str:
        if hostname is not None:
            return hostname
        if self._container_probe():
            return NodeServiceConfig.ALL_INTERFACES_HOSTNAME
        return NodeServiceConfig.LOOPBACK_HOSTNAME

    def _report_watch_failure(self, error: BaseException) -> None:
        err_console.print(
            WATCH_FAILURE_WARNING, style="yellow", markup=False, soft_wrap=True
        )
        logger.debug(
            "Compilation output can't be watched. Please report this to help us improve.",
            exc_info=error,
        )
        Reporter.report_error(AuxiliaryWatchFailure(error))

    def _on_watch_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._report_watch_failure(error)

    async def _watch_artifacts(self, provider: EthereumProvider) -> None:
        try:
            self.watch = await self._watcher(provider, self.env.config.paths)
        except Exception as e:
            self._report_watch_failure(e)
            return

        if self.watch is not None:
            self.watch.task.add_done_callback(self._on_watch_done)

    async def _stop_watching(self) -> None:
        if self.watch is not None:
            await self.watch.stop()

    async def _start(self, request: LaunchRequest) -> JsonRpcServer:
        run = self.env.run

        self._transition(LaunchState.RESOLVING_PROVIDER)
        provider = await run(
            TASK_NODE_GET_PROVIDER,
            fork_url=request.fork_url,
            fork_block_number=request.fork_block_number,
        )

        self._transition(LaunchState.CREATING_SERVER)
        hostname = self.resolve_hostname(request.hostname)
        self.context = LaunchContext(hostname, request.port, provider=provider)
        server = await run(
            TASK_NODE_CREATE_SERVER,
            hostname=hostname,
            port=request.port,
            provider=provider,
        )
        self.context = replace(self.context, server=server)

        self._transition(LaunchState.PRE_LISTEN_HOOK)
        await run(
            TASK_NODE_SERVER_CREATED,
            hostname=hostname,
            port=request.port,
            provider=provider,
            server=server,
        )

        self._transition(LaunchState.LISTENING)
        actual_port, address = await server.listen()
        self.context = replace(self.context, address=address, actual_port=actual_port)

        self._transition(LaunchState.WATCHING_ARTIFACTS)
        await self._watch_artifacts(provider)

        self._transition(LaunchState.POST_LISTEN_HOOK)
        await run(
            TASK_NODE_SERVER_READY,
            address=address,
            port=actual_port,
            provider=provider,
            server=server,
        )
        return server

    async def _close_after_failure(self) -> None:
        await self._stop_watching()
        if not self.is_listening:
            return
        try:
            await self.context.server.close()
        except Exception as e:
            logger.warning(f"Error closing JSON-RPC server after failure: {e}")

    async def launch(self, request: LaunchRequest) -> LaunchContext:
        """Starts the node and returns once the server has been closed."""
        self._transition(LaunchState.VALIDATING_REQUEST)
        try:
            self.validate_request(request)
        except NodeError:
            self._transition(LaunchState.FAILED)
            raise

        try:
            server = await self._start(request)

            self._transition(LaunchState.SERVING)
            await server.wait_until_closed()
        except (NodeError, asyncio.CancelledError):
            self._transition(LaunchState.FAILED)
            await self._close_after_failure()
            raise
        except Exception as e:
            self._transition(LaunchState.FAILED)
            await self._close_after_failure()
            raise ServerLaunchError(str(e), e) from e

        await self._stop_watching()
        self._transition(LaunchState.CLOSED)
        return self.context
