#!/usr/bin/env python3
"""Tests for the block transaction filter."""

import pytest
from unittest.mock import AsyncMock

from delegation_scanner.block_filter import (
    BlockTransactionFilter,
    block_timestamp,
    is_delegation_transaction,
)
from delegation_scanner.exceptions import FetchError

from conftest import (
    ALICE,
    ALICE_KEY,
    BEEF,
    BOB,
    BOB_KEY,
    CAFE,
    FakeChainClient,
    make_delegation_tx,
    make_plain_tx,
    make_tx_hash,
    sign_authorization,
)


def make_filter(client, **kwargs) -> BlockTransactionFilter:
    return BlockTransactionFilter(client=client, chain_id=1, network="ethereum", **kwargs)


class TestTransactionSelection:
    """Tests for delegation transaction detection."""

    def test_type_four_with_authorizations(self):
        tx = make_delegation_tx(1, BOB, [{"address": CAFE}])
        assert is_delegation_transaction(tx)

    def test_hex_type(self):
        tx = make_delegation_tx(1, BOB, [{"address": CAFE}], tx_type="0x4")
        assert is_delegation_transaction(tx)

    def test_empty_authorization_list(self):
        assert not is_delegation_transaction(make_delegation_tx(1, BOB, []))

    def test_other_types(self):
        assert not is_delegation_transaction(make_plain_tx(1, BOB))
        assert not is_delegation_transaction(
            make_delegation_tx(1, BOB, [{"address": CAFE}], tx_type=2)
        )
        assert not is_delegation_transaction(None)

    def test_block_timestamp_format(self):
        assert block_timestamp({"timestamp": 1_700_000_000}) == "2023-11-14T22:13:20.000Z"
        assert block_timestamp({"timestamp": "0x0"}) == "1970-01-01T00:00:00.000Z"


class TestScanBlock:
    """Tests for BlockTransactionFilter.scan_block."""

    @pytest.mark.asyncio
    async def test_no_delegations(self):
        """Test that a block without type-4 transactions yields nothing."""
        client = FakeChainClient()
        client.add_block(10, [make_plain_tx(1, BOB), make_plain_tx(2, ALICE)])

        assert await make_filter(client).scan_block(10) == []

    @pytest.mark.asyncio
    async def test_empty_and_missing_blocks(self):
        client = FakeChainClient()
        client.add_block(10, [])

        block_filter = make_filter(client)
        assert await block_filter.scan_block(10) == []
        assert await block_filter.scan_block(11) == []

    @pytest.mark.asyncio
    async def test_builds_record(self):
        """Test the record built for a delegation signed by a third party."""
        client = FakeChainClient()
        authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE, nonce=0)
        client.add_block(
            20,
            [make_plain_tx(1, BOB), make_delegation_tx(2, BOB, [authorization])],
            timestamp=1_700_000_000,
        )

        records = await make_filter(client).scan_block(20)

        assert len(records) == 1
        record = records[0]
        assert record.tx_hash == make_tx_hash(2)
        assert record.block_number == 20
        assert record.timestamp == "2023-11-14T22:13:20.000Z"
        assert record.tx_sender == BOB
        assert record.authority == ALICE
        assert record.delegated_to == CAFE
        assert record.nonce == "0"
        assert record.chain_id == 1
        assert record.network == "ethereum"
        assert record.authority_verified is True

    @pytest.mark.asyncio
    async def test_records_in_transaction_order(self):
        client = FakeChainClient()
        first = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        second = sign_authorization(BOB_KEY, chain_id=1, address=BEEF, nonce=4)
        client.add_block(30, [
            make_delegation_tx(1, BOB, [first]),
            make_delegation_tx(2, ALICE, [second], tx_type="0x4"),
        ])

        records = await make_filter(client).scan_block(30)

        assert [r.authority for r in records] == [ALICE, BOB]
        assert [r.nonce for r in records] == ["0", "4"]

    @pytest.mark.asyncio
    async def test_only_first_authorization_reported(self):
        """Test that a transaction with several authorizations yields one record."""
        client = FakeChainClient()
        first = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        second = sign_authorization(BOB_KEY, chain_id=1, address=BEEF)
        client.add_block(40, [make_delegation_tx(1, BOB, [first, second])])

        records = await make_filter(client).scan_block(40)

        assert len(records) == 1
        assert records[0].authority == ALICE
        assert records[0].delegated_to == CAFE

    @pytest.mark.asyncio
    async def test_unrecoverable_authority_uses_sender(self):
        client = FakeChainClient()
        unsigned = {"chainId": "0x1", "address": CAFE, "nonce": "0x0"}
        client.add_block(50, [make_delegation_tx(1, BOB, [unsigned])])

        records = await make_filter(client).scan_block(50)

        assert records[0].authority == BOB
        assert records[0].authority_verified is False

    @pytest.mark.asyncio
    async def test_failed_transaction_fetch_is_skipped(self):
        """Test that one failing transaction does not hide the others."""
        client = FakeChainClient()
        authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        client.add_block(60, [
            make_delegation_tx(1, BOB, [authorization]),
            make_delegation_tx(2, BOB, [authorization]),
        ])
        client.failing_transactions.add(make_tx_hash(1))

        records = await make_filter(client).scan_block(60)

        assert [r.tx_hash for r in records] == [make_tx_hash(2)]

    @pytest.mark.asyncio
    async def test_block_fetch_failure_is_reported(self):
        """Test that a block fetch failure reports an error and yields nothing."""
        client = FakeChainClient()
        client.failing_blocks.add(70)
        on_error = AsyncMock()

        records = await make_filter(client, on_error=on_error).scan_block(70)

        assert records == []
        on_error.assert_awaited_once()
        error = on_error.await_args.args[0]
        assert isinstance(error, FetchError)
        assert "70" in str(error)


class TestScanRange:
    """Tests for BlockTransactionFilter.scan_range."""

    @pytest.mark.asyncio
    async def test_ascending_order_across_batches(self):
        client = FakeChainClient()
        for number in range(1, 8):
            authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE, nonce=number)
            client.add_block(number, [make_delegation_tx(number, BOB, [authorization])])

        records = await make_filter(client, batch_size=3).scan_range(1, 7)

        assert [r.block_number for r in records] == list(range(1, 8))

    @pytest.mark.asyncio
    async def test_on_batch_receives_each_batch(self):
        client = FakeChainClient()
        for number in range(1, 8):
            authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE, nonce=number)
            client.add_block(number, [make_delegation_tx(number, BOB, [authorization])])
        on_batch = AsyncMock()

        records = await make_filter(client, batch_size=3).scan_range(1, 7, on_batch=on_batch)

        batches = [call.args[0] for call in on_batch.await_args_list]
        assert [[r.block_number for r in batch] for batch in batches] == [[1, 2, 3], [4, 5, 6], [7]]
        assert [r for batch in batches for r in batch] == records

    @pytest.mark.asyncio
    async def test_fetch_concurrency_is_bounded(self):
        client = FakeChainClient()
        for number in range(1, 21):
            client.add_block(number, [make_plain_tx(number * 10 + i, BOB) for i in range(5)])

        block_filter = make_filter(client, batch_size=20, max_concurrent_requests=4)
        await block_filter.scan_range(1, 20)

        assert 1 <= client.max_in_flight <= 4

    @pytest.mark.asyncio
    async def test_failing_block_does_not_stop_range(self):
        client = FakeChainClient()
        authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        client.add_block(1, [make_delegation_tx(1, BOB, [authorization])])
        client.add_block(3, [make_delegation_tx(3, BOB, [authorization])])
        client.failing_blocks.add(2)

        records = await make_filter(client).scan_range(1, 3)

        assert [r.block_number for r in records] == [1, 3]


class TestScanSenderBlock:
    """Tests for BlockTransactionFilter.scan_sender_block."""

    @pytest.mark.asyncio
    async def test_filters_by_sender(self):
        client = FakeChainClient()
        authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        client.add_block(5, [
            make_delegation_tx(1, ALICE, [authorization]),
            make_delegation_tx(2, BOB, [authorization]),
            make_plain_tx(3, ALICE),
        ])

        records = await make_filter(client).scan_sender_block(5, ALICE.upper().replace("0X", "0x"))

        assert [r.tx_hash for r in records] == [make_tx_hash(1)]

    @pytest.mark.asyncio
    async def test_refetches_body_without_authorizations(self):
        client = FakeChainClient()
        authorization = sign_authorization(ALICE_KEY, chain_id=1, address=CAFE)
        tx = make_delegation_tx(1, ALICE, [authorization])
        client.add_block(5, [tx])

        stripped = {key: value for key, value in tx.items() if key != "authorizationList"}
        client.get_block = AsyncMock(
            return_value={"number": 5, "timestamp": 0, "transactions": [stripped]}
        )

        records = await make_filter(client).scan_sender_block(5, ALICE)

        assert len(records) == 1
        assert records[0].delegated_to == CAFE

    @pytest.mark.asyncio
    async def test_unavailable_block_is_empty(self):
        client = FakeChainClient()
        client.failing_blocks.add(5)

        assert await make_filter(client).scan_sender_block(5, ALICE) == []
