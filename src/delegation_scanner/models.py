#!/usr/bin/env python3
"""Data models for the delegation scanner.

This module provides immutable data classes for EIP-7702 authorizations and
the delegation records reported to consumers.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from web3 import Web3

from .utils.authorization_encoder import AuthorizationEncoder

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: Any) -> str:
    """Return an address as a lowercase 0x-prefixed hex string."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value).lower()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def normalize_hash(value: Any) -> str:
    """Return a transaction or block hash as a 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class SignatureShape(Enum):
    """Shape a node used to return authorization signature material."""
    FLAT = "flat"
    NESTED = "nested"


@dataclass(frozen=True, slots=True)
class SignatureParts:
    """Flat signature material of one authorization.

    Attributes:
        r: Signature r value
        s: Signature s value
        v: Explicit recovery value (27/28, or 0/1 on some nodes)
        y_parity: Recovery parity bit (0 or 1)
        shape: Shape the signature arrived in
    """

    r: int | None = None
    s: int | None = None
    v: int | None = None
    y_parity: int | None = None
    shape: SignatureShape = SignatureShape.FLAT

    @property
    def recovery_id(self) -> int | None:
        """Recovery value to use: ``v`` when present, else 27/28 from ``y_parity``."""
        if self.v is not None:
            return self.v
        if self.y_parity is not None:
            return 27 if self.y_parity == 0 else 28
        return None

    @classmethod
    def from_rpc(cls, raw: Mapping[str, Any]) -> "SignatureParts":
        """Normalize flat or nested signature material into flat fields.

        Nested values (``raw["signature"]``) take precedence over flat ones.
        """
        to_int = AuthorizationEncoder.to_int

        match raw:
            case {"signature": Mapping() as nested}:
                return cls(
                    r=to_int(_first_present(nested.get("r"), raw.get("r"))),
                    s=to_int(_first_present(nested.get("s"), raw.get("s"))),
                    v=to_int(_first_present(nested.get("v"), raw.get("v"))),
                    y_parity=to_int(
                        _first_present(nested.get("yParity"), raw.get("yParity"))
                    ),
                    shape=SignatureShape.NESTED,
                )
            case _:
                return cls(
                    r=to_int(raw.get("r")),
                    s=to_int(raw.get("s")),
                    v=to_int(raw.get("v")),
                    y_parity=to_int(raw.get("yParity")),
                    shape=SignatureShape.FLAT,
                )


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


@dataclass(frozen=True, slots=True)
class Authorization:
    """One entry of a type-4 transaction's authorization list.

    Attributes:
        chain_id: Chain ID the authorization is valid for (None when absent)
        address: Delegate address, lowercase (empty when absent)
        nonce: Authority nonce
        signature: Normalized signature material
    """

    chain_id: int | None
    address: str
    nonce: int
    signature: SignatureParts

    @classmethod
    def from_rpc(cls, raw: Mapping[str, Any]) -> "Authorization":
        """Build an Authorization from a raw RPC authorization list entry."""
        to_int = AuthorizationEncoder.to_int
        address = raw.get("address")
        return cls(
            chain_id=to_int(raw.get("chainId")),
            address=normalize_address(address) if address else "",
            nonce=to_int(raw.get("nonce")) or 0,
            signature=SignatureParts.from_rpc(raw),
        )


@dataclass(frozen=True, slots=True)
class DelegationRecord:
    """A delegation setup found in a type-4 transaction.

    Attributes:
        tx_hash: Hash of the transaction carrying the authorization
        block_number: Block the transaction was included in
        timestamp: Block time, ISO-8601 UTC
        tx_sender: Transaction sender, lowercase
        authority: Recovered signer, or the sender when recovery failed
        delegated_to: Delegate address from the authorization, lowercase
        nonce: Authorization nonce as a decimal string
        chain_id: Chain ID of the scanning network
        network: Network name
        authority_verified: False when ``authority`` is the sender fallback
    """

    tx_hash: str
    block_number: int
    timestamp: str
    tx_sender: str
    authority: str
    delegated_to: str
    nonce: str
    chain_id: int
    network: str
    authority_verified: bool = True

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"DelegationRecord(network={self.network}, "
            f"block={self.block_number}, "
            f"authority={self.authority[:10]}..., "
            f"delegated_to={self.delegated_to[:10]}...)"
        )

    @property
    def is_revocation(self) -> bool:
        return self.delegated_to == ZERO_ADDRESS

    def involves(self, address: str) -> bool:
        """Check whether ``address`` is the authority or the delegate."""
        wanted = normalize_address(address)
        return wanted in (self.authority, self.delegated_to)

    def with_network(self, network: str) -> "DelegationRecord":
        """Return a copy tagged with ``network``."""
        if network == self.network:
            return self
        return replace(self, network=network)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire shape."""
        return {
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "txSender": self.tx_sender,
            "authority": self.authority,
            "delegatedTo": self.delegated_to,
            "nonce": self.nonce,
            "chainId": self.chain_id,
            "network": self.network,
            "authorityVerified": self.authority_verified,
        }


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """A delegation from an authority's history with its status."""

    record: DelegationRecord
    status: str

    @property
    def block_number(self) -> int:
        return self.record.block_number

    @classmethod
    def from_record(cls, record: DelegationRecord) -> "HistoryEntry":
        status = "revoked" if record.is_revocation else "active"
        return cls(record=record, status=status)

    def with_network(self, network: str) -> "HistoryEntry":
        return replace(self, record=self.record.with_network(network))

    def to_dict(self) -> dict[str, Any]:
        return {**self.record.to_dict(), "status": self.status}


@dataclass(frozen=True, slots=True)
class DelegationDesignator:
    """Current on-chain delegation of an account (``0xef0100 || address`` code).

    Attributes:
        authority: Account carrying the designator, lowercase
        implementation: Address the account delegates to, lowercase
        code: Full account code as hex
    """

    authority: str
    implementation: str
    code: str

    @property
    def is_revoked(self) -> bool:
        return self.implementation == ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority,
            "implementation": self.implementation,
            "code": self.code,
        }


@dataclass(frozen=True, slots=True)
class NetworkStatus:
    """Snapshot of one network registered in a scanner."""

    network: str
    chain_id: int
    explorer: str
    monitoring: bool
    initialized: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "monitoring": self.monitoring,
            "chainId": self.chain_id,
            "explorer": self.explorer,
        }
