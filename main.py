#!/usr/bin/env python3
"""Entry point for the EIP-7702 delegation scanner.

This module provides a command line entry point for one-off scans and for
live multi-network monitoring. Findings are written to stdout as JSON lines;
everything else goes to the log.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from delegation_scanner import (  # noqa: E402
    KNOWN_NETWORKS,
    ConfigurationError,
    DelegationRecord,
    DelegationScanner,
    MultiNetworkScanner,
    NetworkEndpoints,
    ScannerConfig,
    ScannerEvents,
)


def emit_json(payload: object) -> None:
    print(json.dumps(payload), flush=True)


def resolve_endpoints(
    network: str, rpc_url: str | None = None, ws_url: str | None = None
) -> NetworkEndpoints:
    """Return CLI endpoints for a network, defaulting to <NETWORK>_RPC_URL / <NETWORK>_WS_URL."""
    prefix = network.upper()
    return NetworkEndpoints(
        rpc_url=rpc_url or os.environ.get(f"{prefix}_RPC_URL"),
        ws_url=ws_url or os.environ.get(f"{prefix}_WS_URL"),
    )


def build_scanner(args: argparse.Namespace, config: ScannerConfig) -> DelegationScanner:
    """Create a single-network scanner from CLI flags and environment."""
    endpoints = resolve_endpoints(args.network, args.rpc, args.ws)
    return DelegationScanner(
        args.network, endpoints.rpc_url, endpoints.ws_url, config=config.monitoring
    )


def delegation_printer(address_filter: str | None = None):
    """Return a delegation callback printing records, optionally filtered by address."""

    def on_delegation(record: DelegationRecord) -> None:
        if address_filter and not record.involves(address_filter):
            return
        emit_json(record.to_dict())

    return on_delegation


async def run_watch(args: argparse.Namespace, config: ScannerConfig) -> None:
    """Monitor the selected (or every configured) network until interrupted."""
    if args.network:
        networks: tuple[str, ...] = (args.network,)
        overrides = {args.network: resolve_endpoints(args.network, args.rpc, args.ws)}
    else:
        networks = config.networks
        overrides = dict(config.endpoints)

    events = ScannerEvents()
    events.delegation.subscribe(delegation_printer(args.filter))
    events.error.subscribe(lambda event: logger.error(f"Error: {event.message}"))
    events.connected.subscribe(lambda event: logger.info(f"Connected: {event.network}"))
    events.disconnected.subscribe(lambda event: logger.info(f"Disconnected: {event.network}"))

    multi_scanner = MultiNetworkScanner(
        networks,
        overrides=overrides,
        config=config.monitoring,
        events=events,
    )
    if not multi_scanner.get_networks():
        raise ConfigurationError("No network could be initialized")

    try:
        await multi_scanner.start_monitoring()
        logger.info("Watching for EIP-7702 delegations, press Ctrl-C to stop")
        await asyncio.Event().wait()
    finally:
        await multi_scanner.close()


async def run_command(args: argparse.Namespace, config: ScannerConfig) -> None:
    if args.command == "watch":
        await run_watch(args, config)
        return

    scanner = build_scanner(args, config)
    scanner.events.error.subscribe(
        lambda event: logger.error(f"Error: {event.message}")
    )
    try:
        if args.command == "scan":
            records: list[DelegationRecord] = await scanner.scan_blocks(
                args.blocks, args.from_block
            )
            logger.info(f"Found {len(records)} delegations")
            for record in records:
                emit_json(record.to_dict())

        elif args.command == "check":
            designator = await scanner.get_current_delegation(args.address)
            if designator is None:
                logger.info(f"Address {args.address} has not delegated to any implementation")
            emit_json(designator.to_dict() if designator else None)

        elif args.command == "history":
            history = await scanner.get_delegation_history(args.address, args.limit)
            logger.info(f"Found {len(history)} delegation(s)")
            for entry in history:
                emit_json(entry.to_dict())
    finally:
        await scanner.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="EIP-7702 Delegation Scanner - track delegations on EVM chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  NETWORKS              - Networks to watch, comma separated (default: ethereum)
  <NETWORK>_RPC_URL     - RPC endpoint per network (e.g. ETHEREUM_RPC_URL)
  <NETWORK>_WS_URL      - Optional WebSocket endpoint per network
  POLLING_INTERVAL      - Block polling interval without WebSocket (default: 4)
  LIVENESS_INTERVAL     - Connection probe interval (default: 30)
  BATCH_SIZE            - Blocks scanned concurrently (default: 10)
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("networks", help="List supported networks and their chain IDs")

    def add_network_flags(sub: argparse.ArgumentParser, default: str | None = "ethereum") -> None:
        sub.add_argument("-n", "--network", default=default, type=str.lower,
                         choices=sorted(KNOWN_NETWORKS), help="Network to query")
        sub.add_argument("-r", "--rpc", help="RPC URL (defaults to <NETWORK>_RPC_URL)")
        sub.add_argument("--ws", help="WebSocket URL (defaults to <NETWORK>_WS_URL)")

    watch = subparsers.add_parser(
        "watch", help="Watch for new delegations (all NETWORKS unless --network is given)"
    )
    add_network_flags(watch, default=None)
    watch.add_argument("-f", "--filter", help="Only report delegations whose authority "
                                              "or delegate is this address")

    scan = subparsers.add_parser("scan", help="Scan recent blocks for delegations")
    add_network_flags(scan)
    scan.add_argument("-b", "--blocks", type=int, default=100, help="Number of blocks to scan")
    scan.add_argument("-f", "--from-block", type=int, default=None,
                      help="Starting block number (default: latest - blocks)")

    check = subparsers.add_parser("check", help="Show the current delegation of an address")
    add_network_flags(check)
    check.add_argument("address")

    history = subparsers.add_parser("history", help="Show the delegation history of an address")
    add_network_flags(history)
    history.add_argument("address")
    history.add_argument("-l", "--limit", type=int, default=10, help="Maximum number of results")

    return parser


async def main() -> None:
    """Main entry point for the delegation scanner.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    if args.command == "networks":
        for name, network in KNOWN_NETWORKS.items():
            emit_json({"network": name, "chainId": network["chain_id"],
                       "explorer": network["explorer"]})
        return

    try:
        config = ScannerConfig.from_env()
        if args.command == "watch":
            config.log_config()
        await run_command(args, config)

    except ConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - NETWORKS: Networks to watch (e.g. ethereum,base)")
        logger.error("  - <NETWORK>_RPC_URL: RPC endpoint for each network")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
