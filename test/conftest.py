#!/usr/bin/env python3
"""Shared fixtures: an in-memory chain client and authorization signing helpers."""

import asyncio
from typing import Any

import pytest
import rlp
from eth_account import Account
from web3 import Web3

from delegation_scanner.config import MonitoringConfig, NetworkDescriptor
from delegation_scanner.exceptions import ConnectivityError

# Well-known throwaway keys; never used outside tests
ALICE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
BOB_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"

ALICE = Account.from_key(ALICE_KEY).address.lower()
BOB = Account.from_key(BOB_KEY).address.lower()

CAFE = "0xcafe000000000000000000000000000000000001"
BEEF = "0xbeef000000000000000000000000000000000002"
ZERO = "0x0000000000000000000000000000000000000000"


def sign_authorization(
    private_key: str,
    chain_id: int,
    address: str,
    nonce: int = 0,
    with_magic: bool = True,
) -> dict[str, Any]:
    """Sign an EIP-7702 authorization and return it in RPC (hex) shape."""
    encoded = rlp.encode([chain_id, Web3.to_bytes(hexstr=address), nonce])
    payload = b"\x05" + encoded if with_magic else encoded
    signed = Account.unsafe_sign_hash(Web3.keccak(payload), private_key)
    return {
        "chainId": hex(chain_id),
        "address": Web3.to_checksum_address(address),
        "nonce": hex(nonce),
        "yParity": hex(signed.v - 27),
        "r": hex(signed.r),
        "s": hex(signed.s),
    }


def make_tx_hash(index: int) -> str:
    return "0x" + f"{index:064x}"


def make_delegation_tx(
    index: int,
    sender: str,
    authorizations: list[dict[str, Any]],
    tx_type: Any = 4,
) -> dict[str, Any]:
    return {
        "hash": make_tx_hash(index),
        "from": Web3.to_checksum_address(sender),
        "type": tx_type,
        "authorizationList": authorizations,
    }


def make_plain_tx(index: int, sender: str, tx_type: Any = 2) -> dict[str, Any]:
    return {"hash": make_tx_hash(index), "from": Web3.to_checksum_address(sender), "type": tx_type}


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Wait until ``predicate()`` is true or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeChainClient:
    """In-memory ChainClient used instead of a node."""

    def __init__(self, latest_block: int = 0, supports_subscriptions: bool = False) -> None:
        self.blocks: dict[int, dict[str, Any]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.codes: dict[str, bytes] = {}
        self.latest_block = latest_block
        self.supports_subscriptions = supports_subscriptions

        # Failure injection
        self.failing_blocks: set[int] = set()
        self.failing_transactions: set[str] = set()
        self.block_number_error: Exception | None = None
        self.subscribe_error: Exception | None = None
        self.code_error: Exception | None = None
        self.drop_error: Exception | None = None

        # Slow startup, in seconds
        self.subscribe_delay = 0.0
        self.block_number_delay = 0.0

        # Observation
        self.in_flight = 0
        self.max_in_flight = 0
        self.block_requests: list[int] = []
        self.unsubscribe_calls = 0
        self.closed = False
        self.block_handler = None
        self._subscription_stop: asyncio.Event | None = None

    def add_block(
        self,
        number: int,
        transactions: list[dict[str, Any]],
        timestamp: int = 1_700_000_000,
    ) -> None:
        for tx in transactions:
            self.transactions[tx["hash"]] = tx
        self.blocks[number] = {
            "number": number,
            "timestamp": timestamp,
            "transactions": [tx["hash"] for tx in transactions],
        }
        self.latest_block = max(self.latest_block, number)

    async def _track(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def get_block_number(self) -> int:
        if self.block_number_delay:
            await asyncio.sleep(self.block_number_delay)
        if self.block_number_error is not None:
            raise self.block_number_error
        return self.latest_block

    async def get_block(self, block_number: int, full_transactions: bool = False):
        self.block_requests.append(block_number)
        await self._track()
        if block_number in self.failing_blocks:
            raise ConnectionError(f"block {block_number} unavailable")
        block = self.blocks.get(block_number)
        if block is None:
            return None
        if full_transactions:
            return {
                **block,
                "transactions": [self.transactions[h] for h in block["transactions"]],
            }
        return dict(block)

    async def get_transaction(self, tx_hash):
        await self._track()
        if tx_hash in self.failing_transactions:
            raise ConnectionError(f"tx {tx_hash} unavailable")
        return self.transactions.get(tx_hash)

    async def get_code(self, address: str) -> bytes:
        if self.code_error is not None:
            raise self.code_error
        return self.codes.get(address.lower(), b"")

    async def subscribe_new_blocks(self, handler) -> None:
        if self.subscribe_delay:
            await asyncio.sleep(self.subscribe_delay)
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.block_handler = handler
        self._subscription_stop = asyncio.Event()

    async def run_subscriptions(self) -> None:
        assert self._subscription_stop is not None
        await self._subscription_stop.wait()
        if self.drop_error is not None:
            raise self.drop_error

    async def push_block(self, block_number: int) -> None:
        assert self.block_handler is not None
        await self.block_handler(block_number)

    def drop_subscription(self, error: Exception | None = None) -> None:
        self.drop_error = error or ConnectivityError("socket closed")
        assert self._subscription_stop is not None
        self._subscription_stop.set()

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        if self._subscription_stop is not None:
            self._subscription_stop.set()
        self.block_handler = None

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fast_config():
    """Monitoring settings with short intervals for live tests."""
    return MonitoringConfig(polling_interval=0.01, liveness_interval=60)


@pytest.fixture
def ethereum():
    return NetworkDescriptor.for_network("ethereum", "https://rpc.example.org")


@pytest.fixture
def client():
    return FakeChainClient(latest_block=100)
