"""
Multi-network delegation scanner.

This module manages one DelegationScanner per network, forwards their events
tagged with the network name, and coordinates start/stop across networks so
that a failing network never prevents the others from running.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

from .config import MonitoringConfig, NetworkDescriptor, NetworkEndpoints
from .events import ConnectionEvent, ErrorEvent, ScannerEvents
from .models import DelegationRecord, HistoryEntry, NetworkStatus
from .scanner import DelegationScanner
from .utils.chain_client import ChainClient

# Get logger for this module
logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[NetworkDescriptor], ChainClient]


class MultiNetworkScanner:
    """
    Monitors several networks and reports all findings through unified events.

    The registry of scanners is the only state shared between the public
    add/remove/start/stop surface and event forwarding. Mutations happen
    under a lock; fan-out operations iterate over a snapshot and never hold
    the lock while awaiting a child scanner.
    """

    def __init__(
        self,
        networks: Iterable[str | NetworkDescriptor] = ("ethereum",),
        overrides: Mapping[str, NetworkEndpoints] | None = None,
        config: MonitoringConfig | None = None,
        events: ScannerEvents | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Initialize scanners for the given networks.

        A network that fails to initialize is logged, recorded in
        ``failed_networks`` and published as an error event; the remaining
        networks are still initialized. Pass pre-subscribed ``events`` to
        receive those construction errors.

        Args:
            networks: Network names or descriptors
            overrides: Endpoints per network name
            config: Monitoring settings shared by all scanners
            events: Event channels to publish on
            client_factory: Builds the node client for a network (optional)
        """
        self.config = config or MonitoringConfig()
        self.events = events or ScannerEvents()
        self.client_factory = client_factory

        self._scanners: dict[str, DelegationScanner] = {}
        self._detach: dict[str, Callable[[], None]] = {}
        self._lock = asyncio.Lock()
        self.is_monitoring = False
        self.failed_networks: dict[str, Exception] = {}

        self._initialize_networks(networks, overrides or {})

    def _initialize_networks(
        self,
        networks: Iterable[str | NetworkDescriptor],
        overrides: Mapping[str, NetworkEndpoints],
    ) -> None:
        if isinstance(networks, (str, NetworkDescriptor)):
            networks = [networks]

        for network in networks:
            name = network.name if isinstance(network, NetworkDescriptor) else network.lower()
            try:
                scanner = self._create_scanner(network, overrides.get(name))
            except Exception as e:
                logger.error(f"Failed to initialize {name}: {e}")
                self.failed_networks[name] = e
                self.events.error.publish_nowait(ErrorEvent(error=e, network=name))
                continue

            self._register(name, scanner)
            logger.info(f"Initialized scanner for {name}")

    def _create_scanner(
        self,
        network: str | NetworkDescriptor,
        endpoints: NetworkEndpoints | None,
    ) -> DelegationScanner:
        if isinstance(network, NetworkDescriptor):
            descriptor = network.with_endpoints(endpoints) if endpoints else network
        else:
            endpoints = endpoints or NetworkEndpoints()
            descriptor = NetworkDescriptor.for_network(
                network, endpoints.rpc_url, endpoints.ws_url
            )

        client = self.client_factory(descriptor) if self.client_factory else None
        return DelegationScanner(descriptor, config=self.config, client=client)

    def _register(self, name: str, scanner: DelegationScanner) -> None:
        self._scanners[name] = scanner
        self._detach[name] = self._setup_event_forwarding(scanner, name)

    def _setup_event_forwarding(
        self, scanner: DelegationScanner, network: str
    ) -> Callable[[], None]:
        """Forward a child's events tagged with ``network``.

        Returns:
            Function removing every forwarding subscription
        """

        async def on_delegation(record: DelegationRecord) -> None:
            await self.events.delegation.publish(record.with_network(network))

        async def on_error(event: ErrorEvent) -> None:
            await self.events.error.publish(ErrorEvent(error=event.error, network=network))

        async def on_connected(event: ConnectionEvent) -> None:
            await self.events.connected.publish(ConnectionEvent(network=network))

        async def on_disconnected(event: ConnectionEvent) -> None:
            await self.events.disconnected.publish(ConnectionEvent(network=network))

        unsubscribers = [
            scanner.events.delegation.subscribe(on_delegation),
            scanner.events.error.subscribe(on_error),
            scanner.events.connected.subscribe(on_connected),
            scanner.events.disconnected.subscribe(on_disconnected),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    def _snapshot(self) -> list[tuple[str, DelegationScanner]]:
        return list(self._scanners.items())

    async def _report(self, network: str, error: BaseException) -> None:
        await self.events.error.publish(ErrorEvent(error=error, network=network))

    async def _fan_out(
        self,
        operation: Callable[[DelegationScanner], Awaitable[T]],
        description: str,
    ) -> dict[str, T | BaseException]:
        """Run ``operation`` on every scanner concurrently, waiting for all."""
        snapshot = self._snapshot()
        if not snapshot:
            return {}

        outcomes = await asyncio.gather(
            *(operation(scanner) for _, scanner in snapshot),
            return_exceptions=True,
        )

        results: dict[str, T | BaseException] = {}
        for (network, _), outcome in zip(snapshot, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to {description} on {network}: {outcome}")
                await self._report(network, outcome)
            results[network] = outcome
        return results

    # ------------------------------------------------------------------
    # Topology

    async def add_network(
        self,
        network: str | NetworkDescriptor,
        rpc_url: str | None = None,
        ws_url: str | None = None,
    ) -> bool:
        """
        Add a network to monitor.

        If monitoring is active the new scanner starts watching as part of
        this call; a watch failure is published as an error event.

        Args:
            network: Network name or descriptor
            rpc_url: Request endpoint
            ws_url: Optional subscription endpoint

        Returns:
            False if the network already exists or cannot be initialized
        """
        name = network.name if isinstance(network, NetworkDescriptor) else network.lower()
        endpoints = NetworkEndpoints(rpc_url=rpc_url, ws_url=ws_url)

        async with self._lock:
            if name in self._scanners:
                logger.info(f"Network {name} already exists")
                return False

            try:
                scanner = self._create_scanner(network, endpoints)
            except Exception as e:
                logger.error(f"Failed to add {name}: {e}")
                await self._report(name, e)
                return False

            self._register(name, scanner)
            self.failed_networks.pop(name, None)
            start_now = self.is_monitoring

        if start_now:
            try:
                await scanner.watch()
            except Exception as e:
                logger.error(f"Failed to start {name}: {e}")
                await self._report(name, e)

        logger.info(f"Added network: {name}")
        return True

    async def remove_network(self, network: str) -> bool:
        """
        Stop and remove one network; other networks are unaffected.

        Args:
            network: Network name

        Returns:
            False if the network is not registered
        """
        name = network.lower()
        async with self._lock:
            scanner = self._scanners.pop(name, None)
            detach = self._detach.pop(name, None)

        if scanner is None:
            logger.info(f"Network {name} not found")
            return False

        try:
            await scanner.close()
        except Exception as e:
            logger.error(f"Error stopping {name}: {e}")
            await self._report(name, e)
        finally:
            if detach is not None:
                detach()

        logger.info(f"Removed network: {name}")
        return True

    # ------------------------------------------------------------------
    # Monitoring

    async def start_monitoring(self) -> None:
        """Start watching every network, tolerating individual failures."""
        async with self._lock:
            if self.is_monitoring:
                logger.info("Already monitoring")
                return
            self.is_monitoring = True

        for network, _ in self._snapshot():
            logger.info(f"Starting monitor for {network}...")

        await self._fan_out(lambda scanner: scanner.watch(), "start monitoring")
        watching = sum(1 for _, scanner in self._snapshot() if scanner.is_watching)
        logger.info(f"Monitoring {watching}/{len(self._scanners)} networks")

    async def stop_monitoring(self) -> None:
        """Stop watching every network, tolerating individual failures."""
        async with self._lock:
            self.is_monitoring = False

        await self._fan_out(lambda scanner: scanner.stop(), "stop monitoring")
        logger.info("Stopped all monitors")

    async def close(self) -> None:
        """Stop monitoring and release every node client."""
        async with self._lock:
            self.is_monitoring = False
        await self._fan_out(lambda scanner: scanner.close(), "close")

    # ------------------------------------------------------------------
    # Fan-out queries

    async def scan_block(self, block_number: int) -> list[DelegationRecord]:
        """
        Scan a block number on every network.

        Args:
            block_number: Block to scan on each network

        Returns:
            Network-tagged records from all networks
        """
        results = await self._fan_out(
            lambda scanner: scanner.scan_block(block_number),
            f"scan block {block_number}",
        )
        return self._merge_records(results)

    async def scan_blocks(self, start_block: int, end_block: int) -> list[DelegationRecord]:
        """
        Scan an inclusive block range on every network.

        Args:
            start_block: First block
            end_block: Last block (inclusive)

        Returns:
            Network-tagged records from all networks
        """
        if end_block < start_block:
            return []
        count = end_block - start_block + 1
        results = await self._fan_out(
            lambda scanner: scanner.scan_blocks(count, from_block=start_block),
            f"scan blocks {start_block}-{end_block}",
        )
        return self._merge_records(results)

    async def get_delegation_history(self, address: str, limit: int = 10) -> list[HistoryEntry]:
        """
        Collect an address's delegation history across networks.

        Args:
            address: Authority address
            limit: Maximum number of entries overall

        Returns:
            Entries sorted by descending block number, at most ``limit``
        """
        results = await self._fan_out(
            lambda scanner: scanner.get_delegation_history(address, limit),
            f"get history for {address}",
        )

        history: list[HistoryEntry] = []
        for network, outcome in results.items():
            if isinstance(outcome, BaseException):
                continue
            history.extend(entry.with_network(network) for entry in outcome)

        history.sort(key=lambda entry: entry.block_number, reverse=True)
        return history[:limit]

    @staticmethod
    def _merge_records(results: Mapping[str, Any]) -> list[DelegationRecord]:
        merged: list[DelegationRecord] = []
        for network, outcome in results.items():
            if isinstance(outcome, BaseException):
                continue
            merged.extend(record.with_network(network) for record in outcome)
        return merged

    # ------------------------------------------------------------------
    # Snapshots

    def get_networks(self) -> list[str]:
        """Return the names of the registered networks."""
        return list(self._scanners)

    def get_scanner(self, network: str) -> DelegationScanner | None:
        return self._scanners.get(network.lower())

    def get_status(self) -> dict[str, NetworkStatus]:
        """Return a status snapshot per registered network."""
        return {name: scanner.status() for name, scanner in self._snapshot()}
