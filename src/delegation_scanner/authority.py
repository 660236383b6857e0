#!/usr/bin/env python3
"""Authority recovery for EIP-7702 authorizations.

The authority of an authorization is the account that signed
``keccak256(0x05 || rlp([chain_id, address, nonce]))``. When the canonical
recovery raises, a second attempt over the hash of the bare RLP encoding is
made; this fallback is not part of the published signing scheme and is kept
only because some observed data recovers through it.
"""

import logging

from eth_account import Account

from .exceptions import RecoveryError
from .models import Authorization
from .utils.authorization_encoder import AuthorizationEncoder

# Get logger for this module
logger = logging.getLogger(__name__)

# Recovery value assumed by the fallback path when none is present
FALLBACK_RECOVERY_ID = 27


def _recover_address(digest: bytes, v: int, r: int, s: int) -> str:
    """Recover the signer address of ``digest`` and return it lowercase.

    Raises:
        RecoveryError: If the signature does not recover to a public key
    """
    try:
        recovered = Account._recover_hash(digest, vrs=(v, r, s))
    except Exception as e:
        raise RecoveryError(f"Signature recovery failed: {e}") from e
    return recovered.lower()


def _recover_canonical(authorization: Authorization, chain_id: int) -> str | None:
    digest = AuthorizationEncoder.signing_digest(
        chain_id, authorization.address, authorization.nonce, with_magic=True
    )

    signature = authorization.signature
    v = signature.recovery_id
    if v is None:
        logger.debug("Authorization has neither v nor yParity, skipping recovery")
        return None

    if signature.r is None or signature.s is None:
        raise RecoveryError("Authorization is missing r or s")

    return _recover_address(digest, v, signature.r, signature.s)


def _recover_without_magic(authorization: Authorization, chain_id: int) -> str:
    digest = AuthorizationEncoder.signing_digest(
        chain_id, authorization.address, authorization.nonce, with_magic=False
    )

    signature = authorization.signature
    v = signature.recovery_id
    if v is None:
        v = FALLBACK_RECOVERY_ID

    return _recover_address(digest, v, signature.r or 0, signature.s or 0)


def recover_authority(authorization: Authorization, fallback_chain_id: int) -> str | None:
    """Recover the signer of an authorization.

    Args:
        authorization: Normalized authorization entry
        fallback_chain_id: Chain ID used when the entry carries none

    Returns:
        Lowercase authority address, or None if it cannot be recovered
    """
    # Chain ID 0 means "any chain" and is signed over as 0; only absence falls back
    chain_id = (
        authorization.chain_id
        if authorization.chain_id is not None
        else fallback_chain_id
    )

    try:
        return _recover_canonical(authorization, chain_id)
    except Exception as e:
        logger.debug(f"Canonical authority recovery failed: {e}")

    try:
        authority = _recover_without_magic(authorization, chain_id)
        logger.debug(f"Authority recovered without magic prefix: {authority}")
        return authority
    except Exception as e:
        logger.debug(f"Fallback authority recovery failed: {e}")

    return None


def resolve_authority(
    authorization: Authorization,
    fallback_chain_id: int,
    sender: str,
) -> tuple[str, bool]:
    """Recover the authority, attributing it to the sender when recovery fails.

    Args:
        authorization: Normalized authorization entry
        fallback_chain_id: Chain ID used when the entry carries none
        sender: Transaction sender address

    Returns:
        Tuple of (authority address, True if cryptographically recovered)
    """
    try:
        authority = recover_authority(authorization, fallback_chain_id)
    except Exception as e:
        logger.debug(f"Authority recovery raised: {e}")
        authority = None

    if authority:
        return authority, True
    return sender.lower(), False
