"""
Chain client utility for EVM node access.

Wraps an HTTP ``AsyncWeb3`` instance for lookups and an optional WebSocket
``AsyncWeb3`` instance for new-block subscriptions.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from aiohttp import ClientTimeout
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound
from web3.providers import WebSocketProvider
from web3.utils.subscriptions import (
    NewHeadsSubscription,
    NewHeadsSubscriptionContext,
)

from ..exceptions import ConnectivityError

NewBlockHandler = Callable[[int], Awaitable[None]]


@runtime_checkable
class ChainClient(Protocol):
    """Node operations the scanner relies on."""

    @property
    def supports_subscriptions(self) -> bool: ...

    async def get_block_number(self) -> int: ...

    async def get_block(
        self, block_number: int, full_transactions: bool = False
    ) -> Any | None: ...

    async def get_transaction(self, tx_hash: Any) -> Any | None: ...

    async def get_code(self, address: str) -> bytes: ...

    async def subscribe_new_blocks(self, handler: NewBlockHandler) -> None: ...

    async def run_subscriptions(self) -> None: ...

    async def unsubscribe(self) -> None: ...

    async def close(self) -> None: ...


class Web3ChainClient:
    """
    ChainClient backed by web3.py.

    Lookups go through ``AsyncHTTPProvider``; new-block notifications use a
    ``WebSocketProvider`` with the subscription manager when a WebSocket
    URL is configured.
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: str | None = None,
        request_timeout: int = 30,
        subscription_queue_size: int = 10000,
    ) -> None:
        """
        Initialize the Web3ChainClient.

        Args:
            rpc_url: HTTP RPC endpoint URL
            ws_url: WebSocket RPC endpoint URL (optional)
            request_timeout: Request timeout in seconds
            subscription_queue_size: Buffered subscription messages
        """
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.request_timeout = request_timeout
        self.subscription_queue_size = subscription_queue_size

        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": ClientTimeout(total=request_timeout)},
            )
        )

        # Subscription state
        self.ws_w3: AsyncWeb3 | None = None
        self.block_handler: NewBlockHandler | None = None

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def supports_subscriptions(self) -> bool:
        return bool(self.ws_url)

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_block(self, block_number: int, full_transactions: bool = False) -> Any | None:
        """Fetch a block, returning None when the node does not know it."""
        try:
            return await self.w3.eth.get_block(block_number, full_transactions=full_transactions)
        except BlockNotFound:
            return None

    async def get_transaction(self, tx_hash: Any) -> Any | None:
        """Fetch a transaction body, returning None when it is unknown."""
        try:
            return await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None

    async def get_code(self, address: str) -> bytes:
        code = await self.w3.eth.get_code(Web3.to_checksum_address(address))
        return bytes(code)

    async def subscribe_new_blocks(self, handler: NewBlockHandler) -> None:
        """
        Connect to the WebSocket endpoint and subscribe to new heads.

        Args:
            handler: Coroutine called with each new block number

        Raises:
            ConnectivityError: If no WebSocket URL is configured or the
                connection cannot be established
        """
        if not self.ws_url:
            raise ConnectivityError("No WebSocket URL configured for subscriptions")

        self.block_handler = handler
        self.logger.info(f"Connecting to WebSocket: {self.ws_url}")

        try:
            self.ws_w3 = await AsyncWeb3(
                WebSocketProvider(
                    self.ws_url,
                    request_timeout=self.request_timeout,
                    subscription_response_queue_size=self.subscription_queue_size,
                )
            )
            await self.ws_w3.subscription_manager.subscribe(
                [
                    NewHeadsSubscription(
                        label="new-heads-subscription",
                        handler=self._new_heads_handler,
                    )
                ]
            )
        except Exception as e:
            await self._disconnect()
            raise ConnectivityError(f"WebSocket subscription failed: {e}") from e

        self.logger.info("Subscribed to new block headers")

    async def _new_heads_handler(self, handler_context: NewHeadsSubscriptionContext) -> None:
        header = handler_context.result
        block_number = header["number"] if hasattr(header, "get") else getattr(header, "number")
        if isinstance(block_number, str):
            block_number = int(block_number, 16)
        if self.block_handler:
            await self.block_handler(int(block_number))

    async def run_subscriptions(self) -> None:
        """
        Process subscription messages until unsubscribed or disconnected.

        Raises:
            ConnectivityError: If the subscription connection drops
        """
        if self.ws_w3 is None:
            raise ConnectivityError("Not subscribed")

        try:
            await self.ws_w3.subscription_manager.handle_subscriptions()
        except (ConnectionError, OSError) as e:
            raise ConnectivityError(f"WebSocket subscription dropped: {e}") from e

    async def unsubscribe(self) -> None:
        """Cancel subscriptions and close the WebSocket connection."""
        if self.ws_w3 is not None:
            try:
                await self.ws_w3.subscription_manager.unsubscribe_all()
            except Exception as e:
                self.logger.warning(f"Error during unsubscribe: {e}")
        await self._disconnect()

    async def _disconnect(self) -> None:
        try:
            if self.ws_w3 is not None:
                await self.ws_w3.provider.disconnect()
        except Exception as e:
            self.logger.warning(f"Error during WebSocket cleanup: {e}")
        finally:
            self.ws_w3 = None
            self.block_handler = None

    async def close(self) -> None:
        """Release subscription and HTTP session resources."""
        await self.unsubscribe()
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            try:
                await disconnect()
            except Exception as e:
                self.logger.warning(f"Error closing HTTP session: {e}")
