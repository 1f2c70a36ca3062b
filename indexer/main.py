"""Main indexer service with CLI."""

import argparse
import json
import signal
import sys
import time

from config import Config
from db.healthcheck import check_tables_exist
from db.session import init_db
from eth.registry import ChainRegistry
from log import get_logger, setup_logging
from pipeline.reconciler import Reconciler
from pipeline.scheduler import BlockRangeScheduler
from relay import DonationRelay, get_or_create_campaign_wallet
from services.status import get_indexer_status

logger = get_logger(__name__)

# Global flag for graceful shutdown
_shutdown = False


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    global _shutdown
    logger.info("Shutdown signal received, stopping...")
    _shutdown = True


def _should_stop() -> bool:
    return _shutdown


def run_indexer(config: Config, registry: ChainRegistry) -> None:
    """Run the scheduler in polling mode with periodic reconciliation.

    Args:
        config: Configuration object
        registry: Chain registry
    """
    logger.info("Starting indexer in polling mode")
    logger.info(f"Chains: {', '.join(h.name for h in registry.available())}")

    scheduler = BlockRangeScheduler(config, registry)
    reconciler = Reconciler(config, registry)

    while not _shutdown:
        try:
            scheduler.run_once()

            # Periodic reconciliation
            if reconciler.should_reconcile():
                reconciler.reconcile()

            # Sleep before next poll
            if not _shutdown:
                time.sleep(config.poll_interval_seconds)

        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            break
        except Exception as e:
            logger.error(f"Error in polling loop: {e}", exc_info=True)
            time.sleep(config.poll_interval_seconds)

    logger.info("Indexer stopped")


def index_once(config: Config, registry: ChainRegistry) -> None:
    """Run a single scheduler pass over all chains."""
    summary = BlockRangeScheduler(config, registry).run_once()
    if summary.failed_chains:
        logger.warning(f"Chains failed this pass: {', '.join(summary.failed_chains)}")


def backfill(config: Config, registry: ChainRegistry, chain: str, from_block: int, to_block: int) -> None:
    """Backfill historical blocks on one chain."""
    metrics = BlockRangeScheduler(config, registry).backfill(chain, from_block, to_block)
    logger.info(f"Backfill complete. Total events indexed: {metrics.total_events}")


def reconcile(config: Config, registry: ChainRegistry) -> None:
    """Run one reconciliation pass and print a summary."""
    result = Reconciler(config, registry).reconcile()
    print("Reconciliation summary:")
    print(f"- Total campaigns: {result.total}")
    print(f"- Updated: {result.updated}")
    print(f"- Matched: {result.matched}")
    print(f"- Errors: {result.errors}")


def run_relay(config: Config, registry: ChainRegistry) -> None:
    """Run the donation relay until a shutdown signal arrives."""
    config.require_master_seed()
    DonationRelay(config, registry).run(should_stop=_should_stop)


def provision_wallet(config: Config, campaign_id: str) -> None:
    """Print the campaign's deposit wallet address, creating it if needed."""
    address = get_or_create_campaign_wallet(campaign_id, config.require_master_seed())
    print(address)


def show_status(config: Config, registry: ChainRegistry) -> None:
    """Show indexer status per chain."""
    status = get_indexer_status(registry, config.realtime_threshold)
    print(json.dumps(status, indent=2))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(description="Multi-chain indexer and donation relay for the crowdfunding contract")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("run", help="Start polling indexer with periodic reconciliation")
    subparsers.add_parser("index", help="Run a single indexing pass over all chains")

    backfill_parser = subparsers.add_parser("backfill", help="Backfill historical blocks")
    backfill_parser.add_argument("--chain", type=str, default=None, help="Chain name (default: main chain)")
    backfill_parser.add_argument("--from-block", type=int, required=True, help="Starting block number")
    backfill_parser.add_argument("--to-block", type=int, required=True, help="Ending block number")

    subparsers.add_parser("reconcile", help="Run one reconciliation pass")
    subparsers.add_parser("relay", help="Start the direct donation relay")

    wallet_parser = subparsers.add_parser("wallet", help="Provision a campaign deposit wallet")
    wallet_parser.add_argument("--campaign-id", type=str, required=True, help="Campaign id")

    subparsers.add_parser("status", help="Show indexer status")

    return parser


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Initialize database
    init_db(config)

    # Check database schema
    try:
        check_tables_exist()
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Execute command
    try:
        if args.command == "wallet":
            provision_wallet(config, args.campaign_id)
            return

        registry = ChainRegistry.from_config(config)

        if args.command == "run":
            run_indexer(config, registry)
        elif args.command == "index":
            index_once(config, registry)
        elif args.command == "backfill":
            backfill(config, registry, args.chain or config.main_chain.name, args.from_block, args.to_block)
        elif args.command == "reconcile":
            reconcile(config, registry)
        elif args.command == "relay":
            run_relay(config, registry)
        elif args.command == "status":
            show_status(config, registry)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
