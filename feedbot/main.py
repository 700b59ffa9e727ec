#!/usr/bin/env python3
"""Cross-chain pool price feed bot.

Keeps custom price feeds on the Flare network current by reading pool
prices on other chains and delivering them through the data connector
(attested capture or relay transactions) or, for native pools, directly.

Configure with env vars or a ``.env`` file. CLI args take precedence.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from .src.AttestationClient import AttestationClient, AttestationEndpoints
from .src.BotStats import BotStatus, EventLog
from .src.ChainAdapter import ChainAdapters
from .src.Config import BotConfig, parse_feed_ids
from .src.FeedScheduler import FeedScheduler
from .src.FeedStore import FeedStore, FileFeedStore, HttpFeedStore
from .src.FeedUpdater import FeedUpdater
from .src.HttpClient import HttpClient
from .src.RelayRules import RelayLedger
from .src.UpdateSubmitter import UpdateSubmitter
from .src.chains import DEFAULT_VERIFIER_API_KEY, DESTINATION_NETWORKS
from .src.errors import ConfigError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_scheduler(config: BotConfig) -> FeedScheduler:
    """Wire every component of the bot around one scheduler.

    :param config: Validated configuration.
    :returns: Scheduler ready to start.
    :raises ConfigError: If the key or network is invalid.
    """
    account = config.account()
    adapters = ChainAdapters(account, config.destination_chain_id)
    event_log = EventLog()

    attestation = AttestationClient(
        adapters.destination,
        AttestationEndpoints.for_network(config.network),
        api_key=config.verifier_api_key,
    )
    ledger = RelayLedger()
    submitter = UpdateSubmitter(
        adapters, ledger=ledger, max_gas_price_gwei=config.max_gas_price_gwei
    )
    updater = FeedUpdater(
        adapters,
        attestation,
        submitter,
        event_log,
        native_interval=config.native_update_interval,
        max_gas_price_gwei=config.max_gas_price_gwei,
        max_attestation_retries=config.max_attestation_retries,
        attestation_retry_delay=config.attestation_retry_delay,
    )

    store: FeedStore
    if config.feed_store_url:
        store = HttpFeedStore(config.feed_store_url, config.destination_chain_id)
    else:
        store = FileFeedStore(config.feed_store_path, config.destination_chain_id)

    return FeedScheduler(store, updater, config, event_log=event_log)


async def run_bot(config: BotConfig) -> None:
    """Run the scheduler until interrupted or halted by a guard."""
    scheduler = build_scheduler(config)
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await scheduler.start()
        stopper = asyncio.create_task(stop_requested.wait())
        runner = asyncio.create_task(scheduler.wait())
        await asyncio.wait({stopper, runner}, return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
        if stop_requested.is_set():
            logger.info("Shutting down, waiting for the current update to finish...")
        await scheduler.stop()
    finally:
        await HttpClient.close_shared_client()

    if scheduler.status is BotStatus.ERROR:
        raise RuntimeError(scheduler.stats.last_check_note or "Bot stopped on error")


async def update_once(config: BotConfig, feed_id: str) -> bool:
    """Run a single feed's update flow.

    :returns: Whether the feed was updated.
    """
    scheduler = build_scheduler(config)
    try:
        result = await scheduler.update_single(feed_id)
    finally:
        await HttpClient.close_shared_client()

    if result.success:
        logger.info(f"{result.feed_alias} updated: value {result.price}, tx {result.tx_hash}")
    else:
        logger.error(f"{result.feed_alias} not updated at {result.step}: {result.error}")
    return result.success


def main() -> None:
    """Main entry point for the feed bot CLI."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Feed bot: cross-chain pool prices for Flare custom feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the scheduler against the dashboard's feed store
  python -m feedbot.main run --feed-store-url http://localhost:3000

  # Run two feeds only, on the testnet
  python -m feedbot.main run --network coston2 --feeds feed-1,feed-2

  # Update a single feed now
  python -m feedbot.main update --feed-id feed-1

Environment variables (CLI args take precedence):
  DEPLOYER_PRIVATE_KEY, FLARE_NETWORK, FLARE_RPC_URL, RPC_URL_<CHAIN_ID>,
  FEED_STORE_URL, FEED_STORE_PATH, FDC_VERIFIER_API_KEY,
  BOT_CHECK_INTERVAL_SECONDS, BOT_NATIVE_UPDATE_INTERVAL_SECONDS,
  BOT_MAX_ATTESTATION_RETRIES, BOT_MAX_GAS_PRICE_GWEI, BOT_MIN_BALANCE,
  BOT_CRITICAL_BALANCE, BOT_STATS_INTERVAL_MINUTES, BOT_SELECTED_FEEDS
""",
    )

    parser.add_argument(
        "mode",
        nargs="?",
        choices=["run", "update"],
        default="run",
        help="run the scheduler (default) or update one feed",
    )

    parser.add_argument(
        "--feed-id",
        dest="feed_id",
        type=str,
        help="Feed to update in update mode",
    )

    parser.add_argument(
        "--network",
        type=str,
        help=f"Destination network ({', '.join(DESTINATION_NETWORKS)})",
        default=os.environ.get("FLARE_NETWORK") or "flare",
    )

    parser.add_argument(
        "--feed-store-url",
        dest="feed_store_url",
        type=str,
        help="Dashboard URL serving /api/feeds",
        default=os.environ.get("FEED_STORE_URL"),
    )

    parser.add_argument(
        "--feed-store-path",
        dest="feed_store_path",
        type=str,
        help="Local feed store JSON file (default: data/feeds.json)",
        default=os.environ.get("FEED_STORE_PATH") or "data/feeds.json",
    )

    parser.add_argument(
        "--check-interval",
        dest="check_interval",
        type=float,
        help="Seconds between scheduler ticks (default: 60)",
        default=float(os.environ.get("BOT_CHECK_INTERVAL_SECONDS") or "60"),
    )

    parser.add_argument(
        "--native-interval",
        dest="native_interval",
        type=float,
        help="Seconds between native feed updates (default: 300)",
        default=float(os.environ.get("BOT_NATIVE_UPDATE_INTERVAL_SECONDS") or "300"),
    )

    parser.add_argument(
        "--max-attestation-retries",
        dest="max_attestation_retries",
        type=int,
        help="Extra attestation attempts per update (default: 2)",
        default=int(os.environ.get("BOT_MAX_ATTESTATION_RETRIES") or "2"),
    )

    parser.add_argument(
        "--max-gas-price",
        dest="max_gas_price",
        type=float,
        help="Skip writes above this gas price in gwei (default: 100, 0 to disable)",
        default=float(os.environ.get("BOT_MAX_GAS_PRICE_GWEI") or "100"),
    )

    parser.add_argument(
        "--min-balance",
        dest="min_balance",
        type=float,
        help="Warn below this wallet balance (default: 1.0)",
        default=float(os.environ.get("BOT_MIN_BALANCE") or "1.0"),
    )

    parser.add_argument(
        "--critical-balance",
        dest="critical_balance",
        type=float,
        help="Stop below this wallet balance (default: 0.1)",
        default=float(os.environ.get("BOT_CRITICAL_BALANCE") or "0.1"),
    )

    parser.add_argument(
        "--stats-interval",
        dest="stats_interval",
        type=float,
        help="Minutes between statistics summaries (default: 60)",
        default=float(os.environ.get("BOT_STATS_INTERVAL_MINUTES") or "60"),
    )

    parser.add_argument(
        "--feeds",
        type=str,
        help="Comma-separated feed ids to run (default: all)",
        default=os.environ.get("BOT_SELECTED_FEEDS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.mode == "update" and not args.feed_id:
        parser.error("update mode requires --feed-id")

    config = BotConfig(
        private_key=os.environ.get("DEPLOYER_PRIVATE_KEY"),
        network=args.network,
        feed_store_url=args.feed_store_url,
        feed_store_path=args.feed_store_path,
        check_interval=args.check_interval,
        native_update_interval=args.native_interval,
        max_attestation_retries=args.max_attestation_retries,
        max_gas_price_gwei=args.max_gas_price if args.max_gas_price > 0 else None,
        min_balance=args.min_balance,
        critical_balance=args.critical_balance,
        stats_interval=args.stats_interval * 60,
        selected_feed_ids=parse_feed_ids(args.feeds),
        verifier_api_key=os.environ.get("FDC_VERIFIER_API_KEY") or DEFAULT_VERIFIER_API_KEY,
    )

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config: {error}")
        sys.exit(1)

    # Log configuration
    logger.info("=" * 60)
    logger.info("Feed Bot - Cross-Chain Pool Prices")
    logger.info("=" * 60)
    logger.info(f"Network:           {config.network} (chain {config.destination_chain_id})")
    logger.info(f"Feed Store:        {config.feed_store_url or config.feed_store_path}")
    logger.info(f"Mode:              {args.mode}")
    logger.info(f"Check Interval:    {config.check_interval}s")
    logger.info(f"Native Interval:   {config.native_update_interval}s")
    logger.info(f"Attestation Tries: {config.max_attestation_retries + 1}")
    logger.info(
        f"Max Gas Price:     {config.max_gas_price_gwei} gwei"
        if config.max_gas_price_gwei
        else "Max Gas Price:     disabled"
    )
    logger.info(f"Balance Limits:    warn {config.min_balance}, stop {config.critical_balance} {config.native_symbol}")
    if config.selected_feed_ids:
        logger.info(f"Selected Feeds:    {', '.join(config.selected_feed_ids)}")
    logger.info("=" * 60)

    try:
        if args.mode == "update":
            if not asyncio.run(update_once(config, args.feed_id)):
                sys.exit(1)
        else:
            asyncio.run(run_bot(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
