"""Default configuration."""

import os


class NodeServiceConfig:
    """Default configuration for launching the local JSON-RPC node."""

    LOCAL_NETWORK_NAME = "hardhat"
    LOCAL_CHAIN_ID = 31337
    CLIENT_VERSION = "LocalNode/0.1.0/python"

    DEFAULT_PORT = 8545
    LOOPBACK_HOSTNAME = "127.0.0.1"
    ALL_INTERFACES_HOSTNAME = "0.0.0.0"

    # Presence of this file means we run inside a docker-style container
    CONTAINER_MARKER_PATH = "/.dockerenv"

    WEI_PER_ETHER = 10**18

    CONFIG_FILENAME = os.getenv("NODE_CONFIG", "node.config.json")
    ENV_FILENAME = ".env.local"

    # Remote JSON-RPC settings (forking and http networks)
    REMOTE_REQUEST_TIMEOUT = 20


class ReporterConfig:
    """Default configuration for error reporting."""

    REPORT_URL_ENV = "ERROR_REPORTING_URL"
    PUSH_MAX_RETRIES = 3
    PUSH_RETRY_DELAY = 1
    PUSH_TIMEOUT = 3


class ProjectPathsConfig:
    """Default project layout, relative to the project root."""

    SOURCES = "contracts"
    ARTIFACTS = "artifacts"
    CACHE = "cache"
    BUILD_INFO = "build-info"
