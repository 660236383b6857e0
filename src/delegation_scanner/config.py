#!/usr/bin/env python3
"""Configuration management for the delegation scanner.

This module provides type-safe configuration dataclasses with validation.
Network descriptors are immutable once built; configuration is loaded from
environment variables with sensible defaults where appropriate.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from .exceptions import ConfigurationError

# Get logger for this module
logger = logging.getLogger(__name__)


# Known networks: chain ID and block explorer. Endpoints are never defaulted.
KNOWN_NETWORKS: dict[str, dict[str, int | str]] = {
    "ethereum": {"chain_id": 1, "explorer": "https://etherscan.io"},
    "bsc": {"chain_id": 56, "explorer": "https://bscscan.com"},
    "arbitrum": {"chain_id": 42161, "explorer": "https://arbiscan.io"},
    "base": {"chain_id": 8453, "explorer": "https://basescan.org"},
    "optimism": {"chain_id": 10, "explorer": "https://optimistic.etherscan.io"},
    "polygon": {"chain_id": 137, "explorer": "https://polygonscan.com"},
}

# Lookups always go through the HTTP provider
RPC_SCHEMES = ("http", "https")
WS_SCHEMES = ("ws", "wss")


def _validate_url(url: str, schemes: tuple[str, ...], label: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ConfigurationError(
            f"Invalid {label} scheme: {parsed.scheme or '(none)'}. "
            f"Expected {', '.join(schemes)}"
        )
    if not parsed.netloc:
        raise ConfigurationError(f"Invalid {label}: {url}")


@dataclass(frozen=True, slots=True)
class NetworkEndpoints:
    """Connection endpoints for one network.

    Attributes:
        rpc_url: Request endpoint (HTTP(S), required)
        ws_url: Subscription endpoint (WS(S), optional)
    """

    rpc_url: str | None = None
    ws_url: str | None = None


@dataclass(frozen=True, slots=True)
class NetworkDescriptor:
    """Immutable per-network configuration.

    Attributes:
        name: Network name (e.g., 'ethereum', 'base')
        chain_id: Chain ID of the network
        explorer: Block explorer URL (informational only)
        rpc_url: Request endpoint used for lookups and polling
        ws_url: Subscription endpoint for new-block notifications (optional)
    """

    name: str
    chain_id: int
    explorer: str
    rpc_url: str
    ws_url: str | None = None

    def __post_init__(self) -> None:
        """Validate network configuration."""
        if not self.name:
            raise ConfigurationError("Network name is required")

        if self.chain_id < 0:
            raise ConfigurationError(f"Invalid chain ID for {self.name}: {self.chain_id}")

        # A usable request endpoint is mandatory
        if not self.rpc_url:
            raise ConfigurationError(
                f"RPC URL is required for {self.name}. Please provide a custom RPC URL."
            )
        _validate_url(self.rpc_url, RPC_SCHEMES, "RPC URL")

        if self.ws_url:
            _validate_url(self.ws_url, WS_SCHEMES, "WebSocket URL")

    @classmethod
    def for_network(
        cls,
        name: str,
        rpc_url: str | None,
        ws_url: str | None = None,
    ) -> "NetworkDescriptor":
        """Build a descriptor for one of the known networks.

        Args:
            name: Network name, case-insensitive
            rpc_url: Request endpoint
            ws_url: Optional subscription endpoint

        Returns:
            Validated NetworkDescriptor

        Raises:
            ConfigurationError: If the network is unknown or the endpoint is unusable
        """
        network = name.lower()
        known = KNOWN_NETWORKS.get(network)
        if known is None:
            raise ConfigurationError(
                f"Unsupported network: {name}. "
                f"Supported networks: {', '.join(sorted(KNOWN_NETWORKS))}"
            )

        return cls(
            name=network,
            chain_id=int(known["chain_id"]),
            explorer=str(known["explorer"]),
            rpc_url=rpc_url or "",
            ws_url=ws_url or None,
        )

    def with_endpoints(self, endpoints: NetworkEndpoints) -> "NetworkDescriptor":
        """Return a copy whose endpoints are replaced by the non-empty overrides."""
        return NetworkDescriptor(
            name=self.name,
            chain_id=self.chain_id,
            explorer=self.explorer,
            rpc_url=endpoints.rpc_url or self.rpc_url,
            ws_url=endpoints.ws_url or self.ws_url,
        )


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for scanning and live monitoring."""
    polling_interval: float = 4  # seconds between latest-block polls
    liveness_interval: float = 30  # seconds between connection probes
    batch_size: int = 10  # blocks scanned concurrently in a range scan
    max_concurrent_requests: int = 10  # in-flight tx/block fetches per scan
    history_chunk_size: int = 100  # blocks per backward history step
    history_lookback: int = 10_000  # blocks searched for history
    request_timeout: int = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ConfigurationError(
                f"Polling interval must be positive, got {self.polling_interval}"
            )
        if self.polling_interval > 300:
            raise ConfigurationError(
                f"Polling interval too long (max 300s), got {self.polling_interval}"
            )

        if self.liveness_interval <= 0:
            raise ConfigurationError(
                f"Liveness interval must be positive, got {self.liveness_interval}"
            )

        if not 1 <= self.batch_size <= 100:
            raise ConfigurationError(f"Batch size must be 1-100, got {self.batch_size}")

        if self.max_concurrent_requests < 1:
            raise ConfigurationError(
                f"Max concurrent requests must be positive, got {self.max_concurrent_requests}"
            )

        if self.history_chunk_size < 1:
            raise ConfigurationError(
                f"History chunk size must be positive, got {self.history_chunk_size}"
            )
        if self.history_lookback < 0:
            raise ConfigurationError(
                f"History lookback must be non-negative, got {self.history_lookback}"
            )

        if self.request_timeout <= 0:
            raise ConfigurationError(
                f"Request timeout must be positive, got {self.request_timeout}"
            )
        if self.request_timeout > 120:
            raise ConfigurationError(
                f"Request timeout too long (max 120s), got {self.request_timeout}"
            )


@dataclass(frozen=True, slots=True)
class ScannerConfig:
    """Configuration for a multi-network scanner process.

    Attributes:
        networks: Network names to monitor
        endpoints: Endpoints per network name
        monitoring: Scanning and monitoring settings
    """

    networks: tuple[str, ...]
    endpoints: Mapping[str, NetworkEndpoints] = field(default_factory=dict)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self) -> None:
        """Validate scanner configuration."""
        if not self.networks:
            raise ConfigurationError("At least one network is required (NETWORKS)")

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables.

        ``NETWORKS`` lists network names (comma separated, default
        ``ethereum``); each network reads ``<NAME>_RPC_URL`` and the optional
        ``<NAME>_WS_URL``.

        Returns:
            ScannerConfig instance with loaded values

        Raises:
            ConfigurationError: If a value is missing or invalid
        """
        raw_networks = os.environ.get("NETWORKS", "ethereum")
        networks = tuple(
            name.strip().lower() for name in raw_networks.split(",") if name.strip()
        )

        endpoints = {
            name: NetworkEndpoints(
                rpc_url=os.environ.get(f"{name.upper()}_RPC_URL"),
                ws_url=os.environ.get(f"{name.upper()}_WS_URL"),
            )
            for name in networks
        }

        try:
            monitoring = MonitoringConfig(
                polling_interval=float(os.environ.get("POLLING_INTERVAL", "4")),
                liveness_interval=float(os.environ.get("LIVENESS_INTERVAL", "30")),
                batch_size=int(os.environ.get("BATCH_SIZE", "10")),
                max_concurrent_requests=int(
                    os.environ.get("MAX_CONCURRENT_REQUESTS", "10")
                ),
                history_lookback=int(os.environ.get("HISTORY_LOOKBACK", "10000")),
                request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
            )
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid numeric setting: {e}") from None

        return cls(networks=networks, endpoints=endpoints, monitoring=monitoring)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Delegation Scanner Configuration")
        logger.info("=" * 60)

        logger.info("Networks:")
        for name in self.networks:
            endpoints = self.endpoints.get(name, NetworkEndpoints())
            logger.info(f"  {name}:")
            logger.info(f"    RPC URL: {endpoints.rpc_url or '[NOT SET]'}")
            logger.info(f"    WS URL: {endpoints.ws_url or '[NOT SET]'}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Liveness Interval: {self.monitoring.liveness_interval} seconds")
        logger.info(f"  Batch Size: {self.monitoring.batch_size}")
        logger.info(f"  Max Concurrent Requests: {self.monitoring.max_concurrent_requests}")
        logger.info(f"  History Lookback: {self.monitoring.history_lookback} blocks")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")

        logger.info("=" * 60)
