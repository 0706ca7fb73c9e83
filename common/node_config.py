"""Configuration classes for the local node and its project."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from common.errors import ConfigurationError

from config.defaults import NodeServiceConfig, ProjectPathsConfig

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForkingConfig:
    """Remote chain to fork from, at an optional block."""

    url: Optional[str] = None
    block_number: Optional[int] = None


@dataclass(frozen=True)
class AccountConfig:
    """Local account with its initial balance in wei."""

    private_key: str
    balance: int


@dataclass(frozen=True)
class LocalNetworkConfig:
    """Configuration of the in-process local network."""

    chain_id: int = NodeServiceConfig.LOCAL_CHAIN_ID
    accounts: Optional[list[AccountConfig]] = None
    forking: Optional[ForkingConfig] = None
    logging_enabled: bool = False


@dataclass(frozen=True)
class HttpNetworkConfig:
    """Configuration of a remote network reached over HTTP JSON-RPC."""

    url: str
    chain_id: Optional[int] = None
    timeout: int = NodeServiceConfig.REMOTE_REQUEST_TIMEOUT


NetworkConfig = Union[LocalNetworkConfig, HttpNetworkConfig]


@dataclass(frozen=True)
class ProjectPaths:
    """Absolute project paths."""

    root: Path
    sources: Path
    artifacts: Path
    cache: Path

    @property
    def build_info(self) -> Path:
        return self.artifacts / ProjectPathsConfig.BUILD_INFO

    @classmethod
    def from_root(cls, root: Union[str, Path], **overrides: str) -> "ProjectPaths":
        root_path = Path(root).resolve()

        def _resolve(key: str, default: str) -> Path:
            return (root_path / overrides.get(key, default)).resolve()

        return cls(
            root=root_path,
            sources=_resolve("sources", ProjectPathsConfig.SOURCES),
            artifacts=_resolve("artifacts", ProjectPathsConfig.ARTIFACTS),
            cache=_resolve("cache", ProjectPathsConfig.CACHE),
        )


@dataclass(frozen=True)
class NodeConfig:
    """Full project configuration."""

    paths: ProjectPaths
    default_network: str = NodeServiceConfig.LOCAL_NETWORK_NAME
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    plugins: list[str] = field(default_factory=list)

    @property
    def local_network(self) -> LocalNetworkConfig:
        network = self.networks.get(NodeServiceConfig.LOCAL_NETWORK_NAME)
        if isinstance(network, LocalNetworkConfig):
            return network
        return LocalNetworkConfig()


@dataclass(frozen=True)
class ForkingIntent:
    """Effective forking settings for one launch."""

    url: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return self.url is not None


def resolve_forking_intent(
    network_config: LocalNetworkConfig,
    fork_url: Optional[str] = None,
    fork_block_number: Optional[int] = None,
) -> ForkingIntent:
    """Merges per-launch overrides with the local network forking defaults."""
    defaults = network_config.forking or ForkingConfig()

    url = fork_url if fork_url is not None else defaults.url
    block_number = (
        fork_block_number if fork_block_number is not None else defaults.block_number
    )

    if url is None and block_number is not None:
        raise ConfigurationError(
            "A fork block number was given without a fork URL. "
            "Use --fork to set the JSON-RPC URL to fork from."
        )

    return ForkingIntent(url=url, block_number=block_number)


def _parse_int(value: Any, key: str) -> int:
    try:
        if isinstance(value, str):
            return int(value, 0)
        if isinstance(value, bool):
            raise TypeError(value)
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid integer for '{key}': {value!r}")


def _require_object(raw: Any, key: str) -> dict:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"'{key}' must be an object")
    return raw


def _parse_forking(raw: Any, key: str) -> ForkingConfig:
    raw = _require_object(raw, key)
    url = raw.get("url")
    if url is not None and not isinstance(url, str):
        raise ConfigurationError(f"Invalid value for '{key}.url': {url!r}")

    block_number = raw.get("blockNumber")
    return ForkingConfig(
        url=url,
        block_number=(
            None
            if block_number is None
            else _parse_int(block_number, f"{key}.blockNumber")
        ),
    )


def _parse_local_network(raw: dict, key: str) -> LocalNetworkConfig:
    accounts = None
    if raw.get("accounts") is not None:
        if not isinstance(raw["accounts"], list):
            raise ConfigurationError(f"'{key}.accounts' must be a list")
        accounts = []
        for index, account in enumerate(raw["accounts"]):
            account_key = f"{key}.accounts[{index}]"
            if not isinstance(account, dict) or "privateKey" not in account:
                raise ConfigurationError(f"'{account_key}' needs a privateKey")
            accounts.append(
                AccountConfig(
                    private_key=str(account["privateKey"]),
                    balance=_parse_int(
                        account.get("balance", 0), f"{account_key}.balance"
                    ),
                )
            )

    forking = None
    if raw.get("forking") is not None:
        forking = _parse_forking(raw["forking"], f"{key}.forking")

    return LocalNetworkConfig(
        chain_id=_parse_int(
            raw.get("chainId", NodeServiceConfig.LOCAL_CHAIN_ID), f"{key}.chainId"
        ),
        accounts=accounts,
        forking=forking,
        logging_enabled=bool(raw.get("loggingEnabled", False)),
    )


def _parse_http_network(raw: dict, key: str) -> HttpNetworkConfig:
    url = raw.get("url")
    if not isinstance(url, str) or not url:
        raise ConfigurationError(f"Network '{key}' needs a 'url'")

    chain_id = raw.get("chainId")
    return HttpNetworkConfig(
        url=url,
        chain_id=None if chain_id is None else _parse_int(chain_id, f"{key}.chainId"),
        timeout=_parse_int(
            raw.get("timeout", NodeServiceConfig.REMOTE_REQUEST_TIMEOUT),
            f"{key}.timeout",
        ),
    )


def parse_config(raw: dict[str, Any], root: Union[str, Path] = ".") -> NodeConfig:
    """Builds a NodeConfig from its JSON representation."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be a JSON object")

    raw_paths = _require_object(raw.get("paths", {}), "paths")
    for key, value in raw_paths.items():
        if not isinstance(value, str):
            raise ConfigurationError(f"Invalid value for 'paths.{key}': {value!r}")

    paths = ProjectPaths.from_root(
        Path(root) / raw_paths.get("root", "."),
        **{k: v for k, v in raw_paths.items() if k != "root"},
    )

    local_name = NodeServiceConfig.LOCAL_NETWORK_NAME
    networks: dict[str, NetworkConfig] = {}
    raw_networks = _require_object(raw.get("networks", {}), "networks")
    for name, network in raw_networks.items():
        if not isinstance(network, dict):
            raise ConfigurationError(f"Invalid configuration for network '{name}'")
        if name == local_name:
            networks[name] = _parse_local_network(network, f"networks.{name}")
        else:
            networks[name] = _parse_http_network(network, f"networks.{name}")

    if local_name not in networks:
        networks[local_name] = LocalNetworkConfig()

    plugins = raw.get("plugins", [])
    if not isinstance(plugins, list) or not all(isinstance(p, str) for p in plugins):
        raise ConfigurationError("'plugins' must be a list of module names")

    return NodeConfig(
        paths=paths,
        default_network=raw.get("defaultNetwork", local_name),
        networks=networks,
        plugins=plugins,
    )


def load_config(path: Union[str, Path, None] = None) -> NodeConfig:
    """Loads the project configuration file, falling back to defaults."""
    config_path = Path(path or NodeServiceConfig.CONFIG_FILENAME)

    if not config_path.exists():
        if path is not None:
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        logger.info(f"No {config_path} found, using default configuration")
        return parse_config({}, root=Path.cwd())

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Can't read configuration file {config_path}: {e}")

    return parse_config(raw, root=config_path.parent)
