"""Runtime environment handed to every launch phase."""

import importlib
import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Optional

from common.errors import ConfigurationError
from common.node_config import NetworkConfig, NodeConfig, ProjectPaths
from common.provider import EthereumProvider, create_provider
from common.task_registry import TaskRegistry

from config.defaults import NodeServiceConfig

logger: logging.Logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, NetworkConfig, Optional[ProjectPaths]], EthereumProvider]


@dataclass
class NetworkSelection:
    """The ambient network and whether the user chose it explicitly.

    The provider is only created when first accessed.
    """

    name: str
    config: NetworkConfig
    paths: Optional[ProjectPaths] = None
    is_explicit: bool = False
    provider_factory: ProviderFactory = field(default=create_provider, repr=False)

    @property
    def is_local(self) -> bool:
        return self.name == NodeServiceConfig.LOCAL_NETWORK_NAME

    @cached_property
    def provider(self) -> EthereumProvider:
        return self.provider_factory(self.name, self.config, self.paths)

    @property
    def provider_created(self) -> bool:
        return "provider" in self.__dict__


@dataclass
class RuntimeEnvironment:
    config: NodeConfig
    network: NetworkSelection
    registry: TaskRegistry = field(default_factory=TaskRegistry)

    def __post_init__(self) -> None:
        self.registry.env = self

    async def run(self, name: str, **params):
        return await self.registry.run(name, **params)


def load_plugins(registry: TaskRegistry, plugins: list[str]) -> None:
    """Imports each plugin module and lets it register or override phases.

    A plugin is any importable module exposing ``register(registry)``.
    """
    for name in plugins:
        try:
            module = importlib.import_module(name)
        except ImportError as e:
            raise ConfigurationError(f"Can't import plugin '{name}': {e}")

        register = getattr(module, "register", None)
        if not callable(register):
            raise ConfigurationError(f"Plugin '{name}' has no register(registry) function")

        logger.debug(f"Loading plugin '{name}'")
        register(registry)


def create_runtime_environment(
    config: NodeConfig,
    network_name: Optional[str] = None,
    registry: Optional[TaskRegistry] = None,
    provider_factory: ProviderFactory = create_provider,
) -> RuntimeEnvironment:
    """Selects the ambient network and installs the node phases and plugins."""
    # tasks.node needs RuntimeEnvironment, import it once this module is loaded
    from tasks.node import TASK_NODE_GET_PROVIDER, register_node_tasks

    name = network_name if network_name is not None else config.default_network
    if name not in config.networks:
        raise ConfigurationError(
            f"Network '{name}' is not defined. "
            f"Available networks: {list(config.networks.keys())}"
        )

    network = NetworkSelection(
        name=name,
        config=config.networks[name],
        paths=config.paths,
        is_explicit=network_name is not None,
        provider_factory=provider_factory,
    )

    registry = registry or TaskRegistry()
    if TASK_NODE_GET_PROVIDER not in registry:
        register_node_tasks(registry)
    load_plugins(registry, config.plugins)

    return RuntimeEnvironment(config=config, network=network, registry=registry)
