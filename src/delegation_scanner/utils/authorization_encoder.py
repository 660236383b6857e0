"""
Authorization encoding utilities for EIP-7702 signature recovery.

This module reconstructs the message an authority signs for a set-code
authorization: ``keccak256(0x05 || rlp([chain_id, address, nonce]))``.
Everything here is pure; no network access happens in this module.
"""

import logging
from typing import Any, Union

import rlp
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)

# Leading byte of the signed authorization payload (EIP-7702 MAGIC)
AUTHORIZATION_MAGIC = b"\x05"


class AuthorizationEncoder:
    """Utilities for encoding EIP-7702 authorization tuples."""

    @staticmethod
    def to_bytes_safe(value: Union[HexBytes, bytes, str, None]) -> bytes:
        """
        Safely convert value to bytes, handling HexBytes, bytes, and hex strings.

        Args:
            value: Value to convert (HexBytes, bytes, hex string or None)

        Returns:
            Bytes representation (empty for None or "0x")
        """
        if value is None:
            return b""
        if isinstance(value, HexBytes):
            return bytes(value)
        elif isinstance(value, bytes):
            return value
        else:
            return Web3.to_bytes(hexstr=value)

    @staticmethod
    def to_int(value: Any) -> int | None:
        """
        Convert an RPC quantity to an integer.

        Nodes and client libraries return quantities as ints, hex strings
        ("0x1b"), decimal strings or big-endian bytes.

        Args:
            value: Raw quantity

        Returns:
            Integer value, or None when the value is absent
        """
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, (bytes, bytearray)):
            return int.from_bytes(value, byteorder="big")
        if isinstance(value, str):
            text = value.strip()
            if text.startswith(("0x", "0X")):
                return int(text, 16) if len(text) > 2 else 0
            return int(text)
        raise TypeError(f"Cannot convert {type(value).__name__} to int")

    @staticmethod
    def encode_integer(value: int) -> bytes:
        """
        Encode an integer as minimal big-endian bytes.

        Special case: zero encodes to empty bytes, so that RLP serializes it
        as the empty string (0x80) and never as a zero byte.

        Args:
            value: Non-negative integer

        Returns:
            Minimal big-endian byte representation
        """
        if value < 0:
            raise ValueError(f"Cannot encode negative integer {value}")
        if value == 0:
            return b""
        return value.to_bytes((value.bit_length() + 7) // 8, byteorder="big")

    @staticmethod
    def encode_authorization(chain_id: int, address: str | bytes | None, nonce: int) -> bytes:
        """
        RLP encode the authorization tuple ``[chain_id, address, nonce]``.

        Args:
            chain_id: Chain ID the authorization is valid for
            address: Delegate (implementation) address
            nonce: Authority nonce

        Returns:
            RLP encoded tuple
        """
        fields = [
            AuthorizationEncoder.encode_integer(chain_id),
            AuthorizationEncoder.to_bytes_safe(address),
            AuthorizationEncoder.encode_integer(nonce),
        ]
        return rlp.encode(fields)

    @staticmethod
    def signing_digest(
        chain_id: int,
        address: str | bytes | None,
        nonce: int,
        with_magic: bool = True,
    ) -> bytes:
        """
        Compute the digest an authority signs.

        Args:
            chain_id: Chain ID the authorization is valid for
            address: Delegate (implementation) address
            nonce: Authority nonce
            with_magic: Prefix the encoding with the 0x05 magic byte

        Returns:
            32-byte Keccak-256 digest
        """
        encoded = AuthorizationEncoder.encode_authorization(chain_id, address, nonce)
        payload = AUTHORIZATION_MAGIC + encoded if with_magic else encoded

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Authorization payload (magic={with_magic}): {Web3.to_hex(payload)}"
            )

        return bytes(Web3.keccak(payload))
