"""Error taxonomy for the delegation scanner.

Configuration problems are fatal and raised at construction time. Fetch,
recovery and connectivity problems are handled at the boundary of the unit
they affect: skipped, retried through a fallback, or published as an
``error`` event.
"""


class ScannerError(Exception):
    """Base class for every error raised by the scanner package."""


class ConfigurationError(ScannerError, ValueError):
    """Missing or invalid endpoint, or an unsupported network name."""


class FetchError(ScannerError):
    """A block, transaction or code lookup failed."""


class RecoveryError(ScannerError):
    """Signature recovery for an authorization failed."""


class ConnectivityError(ScannerError, ConnectionError):
    """Liveness probe failure or a dropped new-block subscription.

    The scanner does not reconnect on its own; re-establishing the
    connection is left to the caller.
    """
