#!/usr/bin/env python3
"""Entry point for the Reward Relayer service.

Runs the relayer pool either as a long-lived service or, with --drain, as a
one-shot job that pays the rewards given on the command line and exits once
every queue is empty.
"""

import argparse
import asyncio
import logging
import os
import sys
from decimal import Decimal, InvalidOperation


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


logger = logging.getLogger(__name__)

from src.reward_relayer.models import TransferResult
from src.reward_relayer.relayer import RelayerService


def parse_reward(value: str) -> tuple[str, Decimal]:
    """Parse an ADDRESS:AMOUNT command line argument."""
    address, sep, amount = value.partition(":")
    if not sep or not address:
        raise argparse.ArgumentTypeError(f"Expected ADDRESS:AMOUNT, got {value!r}")
    try:
        return address, Decimal(amount)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount in {value!r}") from None


def log_result(result: TransferResult) -> None:
    if result.success:
        logger.info(f"Reward of {result.amount} to {result.recipient} confirmed: {result.hash}")
    else:
        logger.error(f"Reward of {result.amount} to {result.recipient} failed: {result.error}")


async def drain(relayer: RelayerService, rewards: list[tuple[str, Decimal]]) -> bool:
    """Queue the given rewards, wait for every queue to empty and report.

    Returns:
        True if every reward was queued and confirmed
    """
    if not await relayer.initialize():
        return False

    failures = 0

    def count_result(result: TransferResult) -> None:
        nonlocal failures
        log_result(result)
        if not result.success:
            failures += 1

    relayer.set_completion_callback(count_result)

    rejected = sum(1 for address, amount in rewards if not relayer.queue_reward(address, amount))
    try:
        await relayer.pool.wait_until_idle()
    finally:
        await relayer.close()

    status = relayer.get_status()
    logger.info(
        f"Drain complete: {len(rewards) - rejected} queued, {rejected} rejected, "
        f"{failures} failed across {status['total_relayers']} relayers"
    )
    return rejected == 0 and failures == 0


async def main() -> None:
    """Main entry point for the Reward Relayer.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Reward Relayer - pay reward tokens through a pool of relayer wallets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL                - RPC endpoint of the reward chain
  TOKEN_CONTRACT_ADDRESS - Reward token contract
  TREASURY_ADDRESS       - Account holding the reward tokens
  TREASURY_PRIVATE_KEY   - Treasury key, enables allowance approvals
  NUM_RELAYERS           - Number of relayer wallets (default: 20)
  RELAYER_PRIVATE_KEY_N  - Relayer keys for local mode
  GAS_PRIORITY           - low, medium or high (default: medium)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Run in local mode without ROFL utilities (for testing)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--reward",
        action="append",
        default=[],
        type=parse_reward,
        metavar="ADDRESS:AMOUNT",
        help="Queue a reward transfer (repeatable)"
    )
    parser.add_argument(
        "--drain",
        action="store_true",
        default=False,
        help="Exit once all queued rewards are processed instead of running as a service"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info(f"=== Reward Relayer Starting ({'LOCAL' if args.local else 'ROFL'} mode) ===")

    try:
        relayer = RelayerService.from_env(local_mode=args.local)

        if args.drain:
            if not await drain(relayer, args.reward):
                sys.exit(1)
            return

        relayer.set_completion_callback(log_result)
        if args.reward:
            if not await relayer.initialize():
                sys.exit(1)
            for address, amount in args.reward:
                relayer.queue_reward(address, amount)
        await relayer.run()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - RPC_URL: RPC endpoint of the reward chain")
        logger.error("  - TOKEN_CONTRACT_ADDRESS: Reward token contract address")
        logger.error("  - TREASURY_ADDRESS or TREASURY_PRIVATE_KEY: Treasury account")
        if args.local:
            logger.error("  - RELAYER_PRIVATE_KEY_1..N or OWNER_PRIVATE_KEY: Relayer keys")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if 'relayer' in locals():
            relayer.stop()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
