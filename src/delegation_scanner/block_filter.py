#!/usr/bin/env python3
"""Block transaction filtering for EIP-7702 delegations.

This module fetches blocks and their transactions, selects delegation setup
transactions (type 4 with a non-empty authorization list) and converts each
into a DelegationRecord. Failures are isolated to the transaction or block
they affect.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from .authority import resolve_authority
from .exceptions import FetchError
from .models import (
    Authorization,
    DelegationRecord,
    normalize_address,
    normalize_hash,
)
from .utils.authorization_encoder import AuthorizationEncoder
from .utils.chain_client import ChainClient

# Get logger for this module
logger = logging.getLogger(__name__)

SET_CODE_TX_TYPE = 4

ErrorReporter = Callable[[Exception], Awaitable[None]]
BatchHandler = Callable[[list[DelegationRecord]], Awaitable[None]]


def transaction_type(tx: Mapping[str, Any]) -> int | None:
    """Return the transaction type, accepting int and hex-string encodings."""
    raw = tx.get("type")
    if raw is None:
        raw = tx.get("typeHex")
    try:
        return AuthorizationEncoder.to_int(raw)
    except (TypeError, ValueError):
        return None


def is_delegation_transaction(tx: Mapping[str, Any] | None) -> bool:
    """Check whether a transaction sets up a delegation.

    Args:
        tx: Transaction body

    Returns:
        True for type-4 transactions with a non-empty authorization list
    """
    if not tx:
        return False
    return transaction_type(tx) == SET_CODE_TX_TYPE and bool(tx.get("authorizationList"))


def block_timestamp(block: Mapping[str, Any]) -> str:
    """Return the block timestamp as ISO-8601 UTC with millisecond precision."""
    seconds = AuthorizationEncoder.to_int(block.get("timestamp")) or 0
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class BlockTransactionFilter:
    """Finds delegation setup transactions in blocks of one network."""

    def __init__(
        self,
        client: ChainClient,
        chain_id: int,
        network: str,
        on_error: ErrorReporter | None = None,
        batch_size: int = 10,
        max_concurrent_requests: int = 10,
    ) -> None:
        """Initialize the filter.

        Args:
            client: Node access
            chain_id: Chain ID used when an authorization carries none
            network: Network name stamped on records
            on_error: Coroutine receiving block-level failures
            batch_size: Blocks scanned concurrently in a range scan
            max_concurrent_requests: In-flight fetches allowed at once
        """
        self.client = client
        self.chain_id = chain_id
        self.network = network
        self.on_error = on_error
        self.batch_size = batch_size
        self._request_slots = asyncio.Semaphore(max_concurrent_requests)

    async def _report(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            await self.on_error(error)
        except Exception as e:
            logger.error(f"Error reporter failed: {e}", exc_info=True)

    async def _fetch_transaction(self, tx_hash: Any) -> Mapping[str, Any] | None:
        async with self._request_slots:
            try:
                return await self.client.get_transaction(tx_hash)
            except Exception as e:
                logger.error(f"Failed to fetch tx {normalize_hash(tx_hash)}: {e}")
                return None

    async def _fetch_block(self, block_number: int, full_transactions: bool) -> Any | None:
        async with self._request_slots:
            return await self.client.get_block(
                block_number, full_transactions=full_transactions
            )

    def build_record(
        self, tx: Mapping[str, Any], block: Mapping[str, Any]
    ) -> DelegationRecord:
        """Convert the first authorization of a transaction into a record.

        Args:
            tx: Type-4 transaction body
            block: Block containing the transaction

        Returns:
            DelegationRecord with lowercase addresses
        """
        authorization_list = tx["authorizationList"]
        if len(authorization_list) > 1:
            logger.debug(
                f"Transaction {normalize_hash(tx['hash'])} carries "
                f"{len(authorization_list)} authorizations, reporting the first"
            )

        authorization = Authorization.from_rpc(authorization_list[0])
        sender = normalize_address(tx["from"])
        authority, verified = resolve_authority(authorization, self.chain_id, sender)

        if not verified:
            logger.warning(
                f"Could not recover authority for {normalize_hash(tx['hash'])}, "
                f"attributing to sender {sender}"
            )

        return DelegationRecord(
            tx_hash=normalize_hash(tx["hash"]),
            block_number=AuthorizationEncoder.to_int(block["number"]),
            timestamp=block_timestamp(block),
            tx_sender=sender,
            authority=authority,
            delegated_to=authorization.address,
            nonce=str(authorization.nonce),
            chain_id=self.chain_id,
            network=self.network,
            authority_verified=verified,
        )

    def _collect_records(
        self, transactions: list[Mapping[str, Any] | None], block: Mapping[str, Any]
    ) -> list[DelegationRecord]:
        records: list[DelegationRecord] = []
        for tx in transactions:
            if not is_delegation_transaction(tx):
                continue
            try:
                records.append(self.build_record(tx, block))
            except Exception as e:
                logger.error(f"Error processing delegation: {e}", exc_info=True)
        return records

    async def scan_block(self, block_number: int) -> list[DelegationRecord]:
        """Find the delegations set up in one block.

        Never raises for block-level failures: the failure is reported
        through ``on_error`` and an empty list is returned.

        Args:
            block_number: Block to scan

        Returns:
            Records in transaction order
        """
        try:
            block = await self._fetch_block(block_number, full_transactions=False)
        except Exception as e:
            logger.error(f"Error scanning block {block_number}: {e}")
            await self._report(FetchError(f"Failed to fetch block {block_number}: {e}"))
            return []

        if not block or not block.get("transactions"):
            return []

        # Bodies are fetched individually so that authorizationList is present
        transactions = await asyncio.gather(
            *(self._fetch_transaction(tx_hash) for tx_hash in block["transactions"])
        )

        return self._collect_records(list(transactions), block)

    async def scan_range(
        self,
        start_block: int,
        end_block: int,
        on_batch: BatchHandler | None = None,
    ) -> list[DelegationRecord]:
        """Scan an inclusive block range in ascending order.

        Blocks are scanned ``batch_size`` at a time.

        Args:
            start_block: First block
            end_block: Last block (inclusive)
            on_batch: Coroutine receiving each batch's records as it completes

        Returns:
            Records ordered by block, then transaction position
        """
        records: list[DelegationRecord] = []
        for batch_start in range(start_block, end_block + 1, self.batch_size):
            batch_end = min(batch_start + self.batch_size, end_block + 1)
            batch_results = await asyncio.gather(
                *(self.scan_block(number) for number in range(batch_start, batch_end))
            )
            batch = [record for result in batch_results for record in result]
            if on_batch is not None:
                await on_batch(batch)
            records.extend(batch)
        return records

    async def scan_sender_block(self, block_number: int, sender: str) -> list[DelegationRecord]:
        """Find delegations in a block whose transaction was sent by ``sender``.

        The block is fetched with full transaction bodies; a type-4 body
        missing its authorization list is fetched again by hash.

        Args:
            block_number: Block to scan
            sender: Sender address to match

        Returns:
            Matching records; empty if the block cannot be fetched
        """
        try:
            block = await self._fetch_block(block_number, full_transactions=True)
        except Exception as e:
            logger.debug(f"Skipping block {block_number}: {e}")
            return []

        if not block or not block.get("transactions"):
            return []

        wanted = sender.lower()
        selected: list[Mapping[str, Any] | None] = []
        for tx in block["transactions"]:
            if not isinstance(tx, Mapping):
                tx = await self._fetch_transaction(tx)
                if tx is None:
                    continue
            if normalize_address(tx.get("from")) != wanted:
                continue
            if transaction_type(tx) != SET_CODE_TX_TYPE:
                continue
            if "authorizationList" not in tx:
                tx = await self._fetch_transaction(tx["hash"])
            selected.append(tx)

        return self._collect_records(selected, block)
