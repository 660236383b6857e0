"""
Delegation Scanner package.

Stateless EIP-7702 delegation scanner for one or many EVM networks.
"""

from .authority import recover_authority, resolve_authority
from .config import (
    KNOWN_NETWORKS,
    MonitoringConfig,
    NetworkDescriptor,
    NetworkEndpoints,
    ScannerConfig,
)
from .events import ConnectionEvent, ErrorEvent, EventChannel, ScannerEvents
from .exceptions import (
    ConfigurationError,
    ConnectivityError,
    FetchError,
    RecoveryError,
    ScannerError,
)
from .models import (
    Authorization,
    DelegationDesignator,
    DelegationRecord,
    HistoryEntry,
    NetworkStatus,
    SignatureParts,
)
from .multi_scanner import MultiNetworkScanner
from .scanner import DelegationScanner, ScannerState

__all__ = [
    "Authorization",
    "ConfigurationError",
    "ConnectionEvent",
    "ConnectivityError",
    "DelegationDesignator",
    "DelegationRecord",
    "DelegationScanner",
    "ErrorEvent",
    "EventChannel",
    "FetchError",
    "HistoryEntry",
    "KNOWN_NETWORKS",
    "MonitoringConfig",
    "MultiNetworkScanner",
    "NetworkDescriptor",
    "NetworkEndpoints",
    "NetworkStatus",
    "RecoveryError",
    "ScannerConfig",
    "ScannerError",
    "ScannerEvents",
    "ScannerState",
    "SignatureParts",
    "recover_authority",
    "resolve_authority",
]
__version__ = "0.1.0"
