#!/usr/bin/env python3
"""
Entry points for the Safe treasury tools.

``safe-treasury-propose`` proposes and co-signs Safe transactions through the
Transaction Service. ``safe-treasury-refill`` runs one unattended refill check
of the hot wallet and is meant to be scheduled (cron, launchd).
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from eth_account.signers.local import LocalAccount
from web3 import Web3

from . import __version__
from .alerts import AlertSink
from .chain import AllowanceClient, SafeReader, create_web3
from .config import (
    TreasuryConfig,
    load_config,
    load_env_file,
    resolve_alert_webhook_url,
    resolve_safe_dir,
)
from .constants import LOCK_FILE_NAME
from .exceptions import NonceConflictError, TreasuryError, ValidationError
from .keychain import load_account
from .lock import SingleInstanceGuard
from .proposals import ProposalEngine
from .refill import RefillController
from .relay import ProposalRecord, RelayClient


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Set up logging for the command line tools.

    Format: [YYYY-MM-DD HH:MM:SS] [LOG_LEVEL] [treasury] Your message
    """
    log_format = "[%(asctime)s] [%(levelname)s] [treasury] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logger = logging.getLogger("safe_treasury")
    logger.setLevel(level)
    return logger


def get_version() -> str:
    """Return the current tool version."""
    return os.environ.get("SAFE_TREASURY_VERSION", __version__)


def build_propose_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="safe-treasury-propose",
        description="Propose and confirm Safe multi-sig transactions.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    subparsers = parser.add_subparsers(dest="command")

    propose = subparsers.add_parser("propose", help="Propose a raw transaction")
    propose.add_argument("--to", help="Target address")
    propose.add_argument("--data", default="0x", help="Calldata (0x-prefixed hex)")
    propose.add_argument("--value", default="0", help="Value in wei")

    transfer = subparsers.add_parser("transfer", help="Propose a token transfer")
    transfer.add_argument("--token", help="MOR or ETH")
    transfer.add_argument("--to", help="Recipient address")
    transfer.add_argument("--amount", help="Amount in ether units")

    threshold = subparsers.add_parser("threshold", help="Propose a threshold change")
    threshold.add_argument("--value", help="New threshold number")

    subparsers.add_parser("pending", help="List pending transactions")

    confirm = subparsers.add_parser("confirm", help="Confirm a pending transaction")
    confirm.add_argument("--hash", dest="safe_tx_hash", help="Safe tx hash")
    return parser


def build_refill_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="safe-treasury-refill",
        description="Top up the hot wallet from the Safe via the AllowanceModule.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    return parser


def print_pending(records: Sequence[ProposalRecord], logger: logging.Logger) -> None:
    if not records:
        logger.info("No pending transactions.")
        return

    logger.info("Found %s pending transaction(s):", len(records))
    for record in records:
        logger.info("  Safe TX hash: %s", record.safe_tx_hash)
        logger.info("    To: %s", record.to)
        logger.info("    Value: %s ETH", Web3.from_wei(record.value, "ether"))
        logger.info("    Data: %s", f"{record.data[:20]}..." if record.data else "(none)")
        logger.info("    Nonce: %s", record.nonce)
        logger.info(
            "    Confirmations: %s/%s",
            len(record.confirmations),
            record.confirmations_required,
        )
        for confirmation in record.confirmations:
            logger.info("      - %s", confirmation.owner)


def log_nonce_conflict(exc: NonceConflictError, logger: logging.Logger) -> None:
    logger.error("ERROR: Pending transaction already exists at nonce %s:", exc.nonce)
    logger.error("  Safe TX hash: %s", exc.safe_tx_hash)
    logger.error("  To: %s", exc.to)
    logger.error("  Value: %s ETH", Web3.from_wei(exc.value, "ether"))
    logger.error("Options:")
    logger.error("  1. Execute or reject the pending tx first")
    logger.error("  2. Use 'confirm --hash <safeTxHash>' to co-sign the existing tx")


async def run_propose(
    args: argparse.Namespace,
    config: TreasuryConfig,
    logger: logging.Logger,
    account: Optional[LocalAccount] = None,
) -> None:
    w3 = create_web3(config.rpc_url)
    safe = SafeReader(w3, config.safe_address, logger=logger)
    relay = RelayClient(config.tx_service_url, logger=logger)

    # Listing needs no signing key.
    if args.command == "pending":
        engine = ProposalEngine(safe, relay, mor_token=config.mor_token, logger=logger)
        print_pending(await engine.list_pending(), logger)
        return

    if args.command == "transfer" and not (args.token and args.to and args.amount):
        raise ValidationError("--token, --to, and --amount required")

    account = account or load_account(config.keychain)
    logger.info("Agent: %s", account.address)
    engine = ProposalEngine(safe, relay, account, config.mor_token, logger=logger)

    if args.command == "propose":
        await engine.propose(args.to, args.value, args.data)
    elif args.command == "transfer":
        await engine.propose_transfer(args.token, args.to, args.amount)
    elif args.command == "threshold":
        await engine.propose_threshold(args.value)
    elif args.command == "confirm":
        await engine.confirm(args.safe_tx_hash)
    else:
        raise ValidationError(f"Unknown command: {args.command}")


def propose_main(argv: Optional[List[str]] = None) -> int:
    parser = build_propose_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"safe-treasury-propose {get_version()}")
        return 0
    if not args.command:
        parser.print_help()
        return 0

    logger = setup_logging()
    try:
        load_env_file(resolve_safe_dir())
        config = load_config()
        asyncio.run(run_propose(args, config, logger))
    except NonceConflictError as exc:
        log_nonce_conflict(exc, logger)
        return 1
    except TreasuryError as exc:
        logger.error("ERROR: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 130
    return 0


async def run_refill(
    logger: logging.Logger, safe_dir: Path, environ: Optional[Mapping[str, str]] = None
) -> int:
    """Run one refill check; return the process exit code.

    Handled refill outcomes, including a fatal misconfiguration, exit 0.
    Anything that escapes the controller is alerted as a crash and exits 1.
    """
    env = os.environ if environ is None else environ
    alerts = AlertSink(resolve_alert_webhook_url(env), logger=logger)
    try:
        load_env_file(safe_dir)
        # a webhook defined only in .env is visible from here on
        alerts.webhook_url = resolve_alert_webhook_url(env)
        config = load_config(env)
        account = load_account(config.keychain)
        w3 = create_web3(config.rpc_url)
        allowance = AllowanceClient(w3, config.allowance_module, account, logger=logger)
        controller = RefillController(
            config, allowance, alerts, account.address, logger=logger
        )
        await controller.run()
    except Exception as exc:
        logger.error("FATAL: %s", exc, exc_info=True)
        await alerts.send(f"Refill daemon crashed - {exc}", "critical")
        return 1
    return 0


def refill_main(argv: Optional[List[str]] = None) -> int:
    args = build_refill_parser().parse_args(argv)
    if args.version:
        print(f"safe-treasury-refill {get_version()}")
        return 0

    logger = setup_logging()
    safe_dir = resolve_safe_dir()
    guard = SingleInstanceGuard(safe_dir / LOCK_FILE_NAME, logger=logger)
    if not guard.acquire():
        logger.info("Refill already in progress; exiting.")
        return 0

    try:
        return asyncio.run(run_refill(logger, safe_dir))
    finally:
        guard.release()


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    commands = {"propose": propose_main, "refill": refill_main}
    if not argv or argv[0] not in commands:
        print("Usage: python -m safe_treasury.cli {propose|refill} [options]")
        return 1
    return commands[argv[0]](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
