#!/usr/bin/env python3
"""Tests for the web3-backed chain client."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from web3 import Web3
from web3.exceptions import BlockNotFound, TransactionNotFound

from delegation_scanner.exceptions import ConnectivityError
from delegation_scanner.utils.chain_client import ChainClient, Web3ChainClient


@pytest.fixture
def client():
    client = Web3ChainClient("https://rpc.example.org")
    client.w3 = MagicMock()
    return client


class TestWeb3ChainClient:
    """Tests for Web3ChainClient."""

    def test_satisfies_protocol(self, client):
        assert isinstance(client, ChainClient)

    def test_subscription_support_follows_ws_url(self):
        assert not Web3ChainClient("https://rpc.example.org").supports_subscriptions
        assert Web3ChainClient(
            "https://rpc.example.org", ws_url="wss://rpc.example.org"
        ).supports_subscriptions

    @pytest.mark.asyncio
    async def test_unknown_block_is_none(self, client):
        client.w3.eth.get_block = AsyncMock(side_effect=BlockNotFound("missing"))
        assert await client.get_block(123) is None

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_none(self, client):
        client.w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("missing"))
        assert await client.get_transaction("0x" + "00" * 32) is None

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, client):
        client.w3.eth.get_block = AsyncMock(side_effect=ConnectionError("refused"))
        with pytest.raises(ConnectionError):
            await client.get_block(123)

    @pytest.mark.asyncio
    async def test_get_code_checksums_address(self, client):
        client.w3.eth.get_code = AsyncMock(return_value=b"\xef\x01\x00")

        code = await client.get_code("0xcafe000000000000000000000000000000000001")

        assert code == b"\xef\x01\x00"
        client.w3.eth.get_code.assert_awaited_once_with(
            Web3.to_checksum_address("0xcafe000000000000000000000000000000000001")
        )

    @pytest.mark.asyncio
    async def test_subscribe_without_ws_url(self, client):
        with pytest.raises(ConnectivityError, match="No WebSocket URL"):
            await client.subscribe_new_blocks(AsyncMock())

    @pytest.mark.asyncio
    async def test_run_without_subscription(self, client):
        with pytest.raises(ConnectivityError, match="Not subscribed"):
            await client.run_subscriptions()

    @pytest.mark.asyncio
    async def test_new_heads_handler_passes_block_number(self, client):
        handler = AsyncMock()
        client.block_handler = handler
        context = MagicMock()
        context.result = {"number": 19_000_000}

        await client._new_heads_handler(context)

        handler.assert_awaited_once_with(19_000_000)

    @pytest.mark.asyncio
    async def test_subscription_drop_raises_connectivity_error(self, client):
        client.ws_w3 = MagicMock()
        client.ws_w3.subscription_manager.handle_subscriptions = AsyncMock(
            side_effect=ConnectionError("closed")
        )

        with pytest.raises(ConnectivityError, match="dropped"):
            await client.run_subscriptions()

    @pytest.mark.asyncio
    async def test_unsubscribe_disconnects(self, client):
        ws_w3 = MagicMock()
        ws_w3.subscription_manager.unsubscribe_all = AsyncMock()
        ws_w3.provider.disconnect = AsyncMock()
        client.ws_w3 = ws_w3

        await client.unsubscribe()

        ws_w3.subscription_manager.unsubscribe_all.assert_awaited_once()
        ws_w3.provider.disconnect.assert_awaited_once()
        assert client.ws_w3 is None
