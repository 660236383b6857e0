"""Encoding and node-access utilities."""

from .authorization_encoder import AuthorizationEncoder
from .chain_client import ChainClient, Web3ChainClient

__all__ = ["AuthorizationEncoder", "ChainClient", "Web3ChainClient"]
