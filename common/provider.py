"""Ethereum JSON-RPC providers served by the local node."""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

import aiohttp
from eth_account import Account

from common.node_config import (
    HttpNetworkConfig,
    LocalNetworkConfig,
    NetworkConfig,
    ProjectPaths,
)

from config.defaults import NodeServiceConfig

logger: logging.Logger = logging.getLogger(__name__)

Params = Optional[Union[list, dict]]

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ProviderError(Exception):
    """JSON-RPC level error returned by a provider."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code: int = code
        self.message: str = message
        self.data: Any = data
        super().__init__(message)

    def to_json(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class EthereumProvider(ABC):
    """Request/response contract shared by node configuration and served traffic."""

    @abstractmethod
    async def request(self, method: str, params: Params = None) -> Any:
        """Executes a JSON-RPC method and returns its result."""

    async def close(self) -> None:
        """Releases provider resources."""


class HttpProvider(EthereumProvider):
    """Forwards JSON-RPC requests to a remote endpoint."""

    def __init__(
        self, url: str, timeout: int = NodeServiceConfig.REMOTE_REQUEST_TIMEOUT
    ) -> None:
        self.url: str = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers: dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._next_id = 1

    async def request(self, method: str, params: Params = None) -> Any:
        request_id = self._next_id
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or [],
        }

        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.post(
                self.url, headers=self._headers, json=payload
            ) as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        request_info=response.request_info,
                        history=(),
                        status=response.status,
                        message=f"Status code: {response.status}",
                        headers=response.headers,
                    )
                data = await response.json()

        if "error" in data:
            error = data["error"]
            raise ProviderError(
                error.get("code", INTERNAL_ERROR),
                error.get("message", str(error)),
                error.get("data"),
            )
        return data.get("result")


class LocalNetworkProvider(EthereumProvider):
    """In-process local network, optionally forking a remote chain.

    Chain execution is not simulated here: node management methods and account
    queries are answered locally, everything else is relayed to the forked chain
    when one is configured.
    """

    def __init__(
        self,
        config: LocalNetworkConfig,
        paths: Optional[ProjectPaths] = None,
        remote_factory: type[HttpProvider] = HttpProvider,
    ) -> None:
        self.config: LocalNetworkConfig = config
        self.paths: Optional[ProjectPaths] = paths
        self.logging_enabled: bool = config.logging_enabled
        self.fork_url: Optional[str] = None
        self.fork_block_number: Optional[int] = None
        self.compilation_results: list[dict[str, Any]] = []
        self._remote_factory = remote_factory
        self._remote: Optional[HttpProvider] = None
        self._balances: dict[str, int] = {}
        self._reset_accounts()

    def _reset_accounts(self) -> None:
        self._balances = {
            Account.from_key(account.private_key).address.lower(): account.balance
            for account in self.config.accounts or []
        }

    @property
    def is_forked(self) -> bool:
        return self._remote is not None

    async def request(self, method: str, params: Params = None) -> Any:
        params = params if params is not None else []
        if self.logging_enabled:
            logger.info(f"{method} {params}")

        try:
            result = await self._dispatch(method, params)
        except ProviderError as e:
            if self.logging_enabled:
                logger.info(f"{method} failed [{e.code}]: {e.message}")
            raise

        if self.logging_enabled:
            logger.debug(f"{method} -> {result!r}")
        return result

    async def _dispatch(self, method: str, params: Union[list, dict]) -> Any:
        local_methods = {
            "hardhat_reset": self._hardhat_reset,
            "hardhat_setLoggingEnabled": self._set_logging_enabled,
            "hardhat_addCompilationResult": self._add_compilation_result,
            "eth_chainId": lambda _: hex(self.config.chain_id),
            "net_version": lambda _: str(self.config.chain_id),
            "web3_clientVersion": lambda _: NodeServiceConfig.CLIENT_VERSION,
            "eth_accounts": lambda _: list(self._balances),
            "eth_getBalance": self._get_balance,
            "eth_blockNumber": self._block_number,
        }

        handler = local_methods.get(method)
        if handler is not None:
            result = handler(params)
            if inspect.isawaitable(result):
                result = await result
            return result

        if self._remote is not None:
            return await self._remote.request(method, params)

        raise ProviderError(METHOD_NOT_FOUND, f"Method {method} is not supported")

    async def _hardhat_reset(self, params: Union[list, dict]) -> bool:
        options = params[0] if isinstance(params, list) and params else {}
        if not isinstance(options, dict):
            raise ProviderError(INVALID_PARAMS, "hardhat_reset expects an object")

        forking = options.get("forking")
        self._reset_accounts()

        if not forking:
            self._remote = None
            self.fork_url = None
            self.fork_block_number = None
            return True

        url = forking.get("jsonRpcUrl")
        if not isinstance(url, str) or not url:
            raise ProviderError(INVALID_PARAMS, "forking.jsonRpcUrl is required")

        remote = self._remote_factory(url)
        block_number = forking.get("blockNumber")
        if block_number is None:
            latest = await remote.request("eth_blockNumber")
            block_number = int(latest, 16)

        self._remote = remote
        self.fork_url = url
        self.fork_block_number = int(block_number)
        logger.info(f"Forking {url} from block {self.fork_block_number}")
        return True

    def _set_logging_enabled(self, params: Union[list, dict]) -> bool:
        if not isinstance(params, list) or len(params) != 1:
            raise ProviderError(INVALID_PARAMS, "Expected a single boolean param")
        self.logging_enabled = bool(params[0])
        return True

    def _add_compilation_result(self, params: Union[list, dict]) -> bool:
        if not isinstance(params, list) or len(params) != 3:
            raise ProviderError(
                INVALID_PARAMS, "Expected solcVersion, input and output params"
            )
        solc_version, compiler_input, compiler_output = params
        self.compilation_results.append(
            {
                "solc_version": solc_version,
                "input": compiler_input,
                "output": compiler_output,
            }
        )
        contracts = (compiler_output or {}).get("contracts", {})
        logger.debug(
            f"Added compilation result for solc {solc_version} "
            f"({sum(len(c) for c in contracts.values())} contracts)"
        )
        return True

    async def _get_balance(self, params: Union[list, dict]) -> str:
        if not isinstance(params, list) or not params:
            raise ProviderError(INVALID_PARAMS, "eth_getBalance expects an address")
        address = str(params[0]).lower()
        if address in self._balances or self._remote is None:
            return hex(self._balances.get(address, 0))
        return await self._remote.request("eth_getBalance", params)

    def _block_number(self, _: Union[list, dict]) -> str:
        return hex(self.fork_block_number or 0)


def create_provider(
    network_name: str, config: NetworkConfig, paths: Optional[ProjectPaths] = None
) -> EthereumProvider:
    """Creates the provider for a configured network."""
    if isinstance(config, LocalNetworkConfig):
        logger.debug(f"Creating local provider for network '{network_name}'")
        return LocalNetworkProvider(config, paths)

    if isinstance(config, HttpNetworkConfig):
        logger.debug(f"Creating http provider for network '{network_name}'")
        return HttpProvider(config.url, timeout=config.timeout)

    raise ValueError(f"Unsupported configuration for network '{network_name}'")
