#!/usr/bin/env python3
"""Per-network EIP-7702 delegation scanner.

The scanner owns one network connection. It scans blocks on demand, watches
new blocks through a subscription or by polling, and reports what it finds
through typed event channels. It keeps no record of past findings.
"""

import asyncio
import logging
from enum import Enum

from web3 import Web3

from .block_filter import BlockTransactionFilter
from .config import MonitoringConfig, NetworkDescriptor
from .events import ConnectionEvent, ErrorEvent, ScannerEvents
from .exceptions import ConnectivityError, FetchError
from .models import (
    DelegationDesignator,
    DelegationRecord,
    HistoryEntry,
    NetworkStatus,
)
from .utils.chain_client import ChainClient, Web3ChainClient

# Get logger for this module
logger = logging.getLogger(__name__)

# Code prefix of an account carrying an EIP-7702 delegation
DELEGATION_DESIGNATOR_PREFIX = bytes.fromhex("ef0100")


class ScannerState(Enum):
    """Monitoring state of a scanner."""
    IDLE = "idle"
    WATCHING = "watching"


class DelegationScanner:
    """
    Scanner for EIP-7702 delegations on a single network.

    Connectivity loss while watching is reported as an ``error`` event and
    does not stop the scanner or trigger a reconnect; the caller decides
    whether to ``stop()`` and ``watch()`` again.
    """

    def __init__(
        self,
        network: NetworkDescriptor | str,
        rpc_url: str | None = None,
        ws_url: str | None = None,
        config: MonitoringConfig | None = None,
        client: ChainClient | None = None,
        events: ScannerEvents | None = None,
    ) -> None:
        """
        Initialize the scanner.

        :param network: Network descriptor, or the name of a known network
        :param rpc_url: Request endpoint (required when ``network`` is a name)
        :param ws_url: Optional subscription endpoint
        :param config: Monitoring settings
        :param client: Node access; a Web3ChainClient is built when omitted
        :param events: Event channels to publish on
        :raises ConfigurationError: If the network or its endpoints are unusable
        """
        if isinstance(network, NetworkDescriptor):
            self.descriptor = network
        else:
            self.descriptor = NetworkDescriptor.for_network(network, rpc_url, ws_url)

        self.config = config or MonitoringConfig()
        self.client: ChainClient = client or Web3ChainClient(
            rpc_url=self.descriptor.rpc_url,
            ws_url=self.descriptor.ws_url,
            request_timeout=self.config.request_timeout,
        )
        self.events = events or ScannerEvents()

        self.filter = BlockTransactionFilter(
            client=self.client,
            chain_id=self.descriptor.chain_id,
            network=self.descriptor.name,
            on_error=self._publish_error,
            batch_size=self.config.batch_size,
            max_concurrent_requests=self.config.max_concurrent_requests,
        )

        self._state = ScannerState.IDLE
        self._tasks: list[asyncio.Task] = []
        self._last_block: int | None = None
        self._lifecycle = asyncio.Lock()

        self.logger = logging.getLogger(f"{__name__}.{self.descriptor.name}")

    @property
    def network(self) -> str:
        return self.descriptor.name

    @property
    def chain_id(self) -> int:
        return self.descriptor.chain_id

    @property
    def explorer(self) -> str:
        return self.descriptor.explorer

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._state is ScannerState.WATCHING

    def status(self) -> NetworkStatus:
        return NetworkStatus(
            network=self.network,
            chain_id=self.chain_id,
            explorer=self.explorer,
            monitoring=self.is_watching,
        )

    async def _publish_error(self, error: Exception) -> None:
        await self.events.error.publish(ErrorEvent(error=error))

    async def _publish_records(self, records: list[DelegationRecord]) -> None:
        for record in records:
            await self.events.delegation.publish(record)

    # ------------------------------------------------------------------
    # Scanning

    async def scan_block(self, block_number: int) -> list[DelegationRecord]:
        """
        Scan one block and publish a delegation event per record.

        :param block_number: Block to scan
        :return: Records found in the block
        """
        records = await self.filter.scan_block(block_number)
        await self._publish_records(records)
        return records

    async def scan_blocks(
        self, count: int = 100, from_block: int | None = None
    ) -> list[DelegationRecord]:
        """
        Scan ``count`` blocks and publish a delegation event per record.

        Without ``from_block`` the range ends at the latest block.

        :param count: Number of blocks to scan
        :param from_block: First block of the range (optional)
        :return: Records in ascending block order
        :raises FetchError: If the latest block number cannot be read
        """
        if count <= 0:
            return []

        if from_block is None:
            try:
                latest_block = await self.client.get_block_number()
            except Exception as e:
                raise FetchError(f"Failed to scan blocks: {e}") from e
            start_block = max(0, latest_block - count + 1)
            end_block = latest_block
        else:
            start_block = max(0, from_block)
            end_block = start_block + count - 1

        self.logger.info(f"Scanning blocks {start_block} to {end_block}...")

        return await self.filter.scan_range(
            start_block, end_block, on_batch=self._publish_records
        )

    # ------------------------------------------------------------------
    # Point lookups

    async def get_current_delegation(self, address: str) -> DelegationDesignator | None:
        """
        Read the current delegation designator of an account.

        :param address: Account address
        :return: Designator, or None if the account code is not a delegation
        :raises FetchError: If the code lookup fails
        """
        try:
            code = await self.client.get_code(address)
        except Exception as e:
            raise FetchError(f"Failed to get delegation status: {e}") from e

        code = bytes(code or b"")
        if not code.startswith(DELEGATION_DESIGNATOR_PREFIX) or len(code) < 23:
            return None

        implementation = Web3.to_hex(code[3:23])
        return DelegationDesignator(
            authority=address.lower(),
            implementation=implementation.lower(),
            code=Web3.to_hex(code),
        )

    async def get_delegation_history(
        self, address: str, limit: int = 100
    ) -> list[HistoryEntry]:
        """
        Find delegations set up by ``address`` in recent blocks, newest first.

        Walks backward from the latest block in chunks of
        ``history_chunk_size`` until ``limit`` entries are found or
        ``history_lookback`` blocks have been searched.

        :param address: Authority address
        :param limit: Maximum number of entries
        :return: History entries ordered by descending block number
        :raises FetchError: If the latest block number cannot be read
        """
        if limit <= 0:
            return []

        try:
            latest_block = await self.client.get_block_number()
        except Exception as e:
            raise FetchError(f"Failed to get delegation history: {e}") from e

        wanted = address.lower()
        floor_block = max(0, latest_block - self.config.history_lookback)
        chunk = self.config.history_chunk_size
        history: list[HistoryEntry] = []

        high = latest_block
        while high >= floor_block and len(history) < limit:
            low = max(floor_block, high - chunk + 1)
            block_numbers = list(range(high, low - 1, -1))
            chunk_results = await asyncio.gather(
                *(self.filter.scan_sender_block(n, wanted) for n in block_numbers)
            )

            for records in chunk_results:
                for record in reversed(records):
                    if record.authority != wanted:
                        continue
                    history.append(HistoryEntry.from_record(record))
                    if len(history) >= limit:
                        break
                if len(history) >= limit:
                    break

            high = low - 1

        return history

    # ------------------------------------------------------------------
    # Live monitoring

    async def watch(self) -> None:
        """
        Start watching new blocks.

        Uses the subscription endpoint when configured, otherwise polls the
        latest block number. Returns once monitoring is running; calling it
        while already watching is a no-op.

        :raises ConnectivityError: If monitoring cannot be started
        """
        # stop() waits for a start in progress, so it always sees the tasks
        async with self._lifecycle:
            if self._state is ScannerState.WATCHING:
                self.logger.warning("Already watching")
                return

            self._state = ScannerState.WATCHING
            try:
                if self.client.supports_subscriptions:
                    await self.client.subscribe_new_blocks(self._on_new_block)
                    self._start_task(self._subscription_loop(), "subscription")
                else:
                    self.logger.info("WebSocket not available, using polling mode...")
                    try:
                        self._last_block = await self.client.get_block_number()
                    except Exception as e:
                        raise ConnectivityError(
                            f"Failed to read latest block on {self.network}: {e}"
                        ) from e
                    self._start_task(self._polling_loop(), "polling")

                self._start_task(self._liveness_loop(), "liveness")
            except BaseException:
                await self._release()
                raise

        self.logger.info(f"Watching {self.network} for delegations")
        await self.events.connected.publish(ConnectionEvent(network=self.network))

    def _start_task(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=f"{self.network}-{name}")
        self._tasks.append(task)

    async def _on_new_block(self, block_number: int) -> None:
        try:
            records = await self.filter.scan_block(block_number)
            await self._publish_records(records)
        except Exception as e:
            self.logger.error(f"Error handling block {block_number}: {e}", exc_info=True)
            await self._publish_error(e)

    async def _polling_loop(self) -> None:
        while self._state is ScannerState.WATCHING:
            await asyncio.sleep(self.config.polling_interval)
            try:
                latest_block = await self.client.get_block_number()
            except Exception as e:
                self.logger.error(f"Error polling for blocks: {e}")
                continue

            if self._last_block is not None and latest_block <= self._last_block:
                continue

            first_block = latest_block if self._last_block is None else self._last_block + 1
            for block_number in range(first_block, latest_block + 1):
                if self._state is not ScannerState.WATCHING:
                    return
                await self._on_new_block(block_number)
                self._last_block = block_number

    async def _subscription_loop(self) -> None:
        try:
            await self.client.run_subscriptions()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Subscription ended: {e}")
            error = e if isinstance(e, ConnectivityError) else ConnectivityError(str(e))
            await self._publish_error(error)
            await self.events.disconnected.publish(ConnectionEvent(network=self.network))

    async def _liveness_loop(self) -> None:
        while self._state is ScannerState.WATCHING:
            await asyncio.sleep(self.config.liveness_interval)
            try:
                await self.client.get_block_number()
            except Exception as e:
                self.logger.warning(f"Liveness probe failed: {e}")
                await self._publish_error(ConnectivityError("Lost connection to provider"))

    async def _release(self) -> None:
        """Cancel background tasks and drop the subscription."""
        self._state = ScannerState.IDLE
        tasks, self._tasks = self._tasks, []
        current = asyncio.current_task()

        # A callback running inside one of these tasks may be calling stop()
        others = [task for task in tasks if task is not current]
        for task in others:
            task.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        if self.client.supports_subscriptions:
            try:
                await self.client.unsubscribe()
            except Exception as e:
                self.logger.warning(f"Error during unsubscribe: {e}")

        self._last_block = None

    async def stop(self) -> None:
        """
        Stop watching and release subscriptions.

        Safe to call repeatedly and from inside an event callback. A
        ``watch()`` still starting is allowed to finish and is then undone.
        ``watch()`` may be called again afterwards.
        """
        async with self._lifecycle:
            if self._state is ScannerState.IDLE and not self._tasks:
                return

            self.logger.info(f"Stopping monitor for {self.network}")
            await self._release()

        await self.events.disconnected.publish(ConnectionEvent(network=self.network))

    async def close(self) -> None:
        """Stop watching and release the node client."""
        await self.stop()
        await self.client.close()
