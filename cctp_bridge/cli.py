"""cctp-bridge — resumable USDC bridging over Circle CCTP V2.

Usage:
    cctp-bridge start base_sepolia ethereum_sepolia 1
    cctp-bridge status bridge_1718000000000_3f9a1c2b7
    cctp-bridge resume bridge_1718000000000_3f9a1c2b7
    cctp-bridge attest bridge_1718000000000_3f9a1c2b7 --max-attempts 100
    cctp-bridge mint   bridge_1718000000000_3f9a1c2b7
    cctp-bridge list
    cctp-bridge chains

Progress is stored in BRIDGE_STATE_FILE (default data/bridge-states.json), so
any interrupted bridge can be picked up again with `resume`.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import sentry_sdk
import structlog

from cctp_bridge import __version__
from cctp_bridge.core.config import (
    FINALITY_THRESHOLD_FAST,
    FINALITY_THRESHOLD_STANDARD,
    ChainRegistry,
    Settings,
    build_chain_registry,
)
from cctp_bridge.core.errors import BridgeError, BridgeNotFoundError
from cctp_bridge.core.logging import configure_logging
from cctp_bridge.core.sentry import init_sentry
from cctp_bridge.models.enums import BridgePhase, BridgeStatus
from cctp_bridge.modules.attestation.service import AttestationClient, RetryPolicy
from cctp_bridge.modules.bridge.schemas import BridgeRecord
from cctp_bridge.modules.bridge.service import BridgeOrchestrator
from cctp_bridge.modules.bridge.state import is_phase_complete
from cctp_bridge.modules.chains.evm import Web3AdapterFactory
from cctp_bridge.modules.ledger.service import BridgeLedger

logger = structlog.get_logger()

RULE = "=" * 60


# ── Output ────────────────────────────────────────────────────────────────────

def _short(value: str | None, length: int = 10) -> str:
    return f"{value[:length]}..." if value else ""


def _chain_name(registry: ChainRegistry, key: str) -> str:
    return registry.get(key).name if key in registry else key


def _tx_line(registry: ChainRegistry, chain_key: str, tx_hash: str | None) -> str:
    if not tx_hash:
        return "-"
    if chain_key in registry:
        return registry.get(chain_key).explorer_url(tx_hash)
    return tx_hash


def print_status(record: BridgeRecord, registry: ChainRegistry) -> None:
    def check(done: bool) -> str:
        return "[x]" if done else "[ ]"

    approve_done = is_phase_complete(record, BridgePhase.APPROVE)
    approve_note = f"({_short(record.approve_tx_hash)})" if record.approve_tx_hash else (
        "(existing allowance)" if approve_done else ""
    )

    print(RULE)
    print("BRIDGE STATUS")
    print(RULE)
    print(f"  ID       : {record.bridge_id}")
    print(f"  Status   : {record.status.value}")
    print(f"  Amount   : {record.amount} USDC")
    print(f"  From     : {_chain_name(registry, record.source_chain)}")
    print(f"  To       : {_chain_name(registry, record.destination_chain)}")
    print(f"  Wallet   : {record.wallet_address}")
    if record.recipient_address:
        print(f"  Recipient: {record.recipient_address}")
    print()
    print("  Steps:")
    print(f"    {check(approve_done)} Approve {approve_note}")
    print(f"    {check(record.burn_tx_hash is not None)} Burn    "
          f"{'(' + _short(record.burn_tx_hash) + ')' if record.burn_tx_hash else ''}")
    print(f"    {check(record.attestation is not None)} Attest  "
          f"{'(' + _short(record.burn_message_hash) + ')' if record.burn_message_hash else ''}")
    print(f"    {check(record.mint_tx_hash is not None)} Mint    "
          f"{'(' + _short(record.mint_tx_hash) + ')' if record.mint_tx_hash else ''}")
    if record.error:
        print(f"\n  Error: {record.error}")
    print(RULE)


def print_summary(record: BridgeRecord, registry: ChainRegistry) -> None:
    print(RULE)
    print("BRIDGE COMPLETE")
    print(RULE)
    print(f"  ID       : {record.bridge_id}")
    print(f"  Amount   : {record.amount} USDC")
    print(f"  From     : {_chain_name(registry, record.source_chain)}")
    print(f"  To       : {_chain_name(registry, record.destination_chain)}")
    print(f"  Approve  : {_tx_line(registry, record.source_chain, record.approve_tx_hash)}")
    print(f"  Burn     : {_tx_line(registry, record.source_chain, record.burn_tx_hash)}")
    print(f"  Mint     : {_tx_line(registry, record.destination_chain, record.mint_tx_hash)}")
    print(RULE)


def print_outcome(record: BridgeRecord, registry: ChainRegistry) -> None:
    if record.status is BridgeStatus.COMPLETE:
        print_summary(record, registry)
    elif record.status is BridgeStatus.ATTESTING and record.attestation is None:
        print(f"\nAttestation not ready yet for {record.bridge_id}.")
        print(f"  Run again later: cctp-bridge resume {record.bridge_id}")
    else:
        print_status(record, registry)


def print_list(records: list[BridgeRecord], registry: ChainRegistry) -> None:
    if not records:
        print("No bridges found")
        return
    print(RULE)
    print("BRIDGE LIST")
    print(RULE)
    for r in records:
        marker = {"complete": "[done]", "failed": "[fail]"}.get(r.status.value, "[....]")
        print(f"{marker} {r.bridge_id}")
        print(f"   {r.amount} USDC: {_chain_name(registry, r.source_chain)} -> "
              f"{_chain_name(registry, r.destination_chain)}")
        print(f"   Status: {r.status.value}")
        if r.error:
            print(f"   Error: {r.error}")
        print()


def print_chains(registry: ChainRegistry) -> None:
    print("\nSupported chains:")
    for chain in registry:
        print(f"  {chain.key:<20} {chain.name:<20} chain_id={chain.chain_id:<10} domain={chain.domain}")


# ── Wiring ────────────────────────────────────────────────────────────────────

def build_orchestrator(settings: Settings, registry: ChainRegistry, args: argparse.Namespace) -> BridgeOrchestrator:
    policy = RetryPolicy.from_settings(
        settings,
        max_attempts=getattr(args, "max_attempts", None),
        interval_ms=getattr(args, "interval_ms", None),
    )
    threshold = FINALITY_THRESHOLD_STANDARD if getattr(args, "standard", False) else FINALITY_THRESHOLD_FAST
    return BridgeOrchestrator(
        ledger=BridgeLedger(settings.BRIDGE_STATE_FILE),
        registry=registry,
        adapters=Web3AdapterFactory(settings, registry),
        attestation_client=AttestationClient.from_settings(settings),
        policy=policy,
        min_finality_threshold=threshold,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cctp-bridge",
        description="Resumable USDC bridging over Circle CCTP V2",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--state-file", type=Path,
                   help="Bridge ledger JSON file (default: $BRIDGE_STATE_FILE)")
    p.add_argument("--log-level", type=str,
                   help="Log level for stderr output (default: $LOG_LEVEL)")
    sub = p.add_subparsers(dest="command", required=True)

    def add_polling(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--max-attempts", type=int,
                         help="Attestation polls before giving up (default: $ATTESTATION_MAX_ATTEMPTS)")
        cmd.add_argument("--interval-ms", type=int,
                         help="Delay between attestation polls (default: $ATTESTATION_INTERVAL_MS)")

    start = sub.add_parser("start", help="Start a new bridge and run it to completion")
    start.add_argument("source", help="Source chain key")
    start.add_argument("destination", help="Destination chain key")
    start.add_argument("amount", help="Amount of USDC, e.g. 1 or 0.25")
    start.add_argument("--recipient", help="Destination address (default: the signing wallet)")
    start.add_argument("--standard", action="store_true",
                       help="Use standard (hard) finality instead of fast transfer")
    add_polling(start)

    resume = sub.add_parser("resume", help="Resume a bridge from its current state")
    resume.add_argument("bridge_id")
    resume.add_argument("--standard", action="store_true",
                        help="Use standard (hard) finality if the burn has not happened yet")
    add_polling(resume)

    status = sub.add_parser("status", help="Show the progress of a bridge")
    status.add_argument("bridge_id")

    sub.add_parser("list", help="List all bridges")

    attest = sub.add_parser("attest", help="Poll for the attestation only")
    attest.add_argument("bridge_id")
    add_polling(attest)

    mint = sub.add_parser("mint", help="Mint on the destination chain (needs attestation)")
    mint.add_argument("bridge_id")

    sub.add_parser("chains", help="List supported chains")
    return p.parse_args(argv)


async def dispatch(args: argparse.Namespace, settings: Settings) -> int:
    registry = build_chain_registry(settings)

    if args.command == "chains":
        print_chains(registry)
        return 0

    if args.command == "list":
        print_list(BridgeLedger(settings.BRIDGE_STATE_FILE).list_records(), registry)
        return 0

    if args.command == "status":
        record = BridgeLedger(settings.BRIDGE_STATE_FILE).get(args.bridge_id)
        if record is None:
            raise BridgeNotFoundError(args.bridge_id)
        print_status(record, registry)
        return 0

    orchestrator = build_orchestrator(settings, registry, args)

    if args.command == "start":
        record = orchestrator.initiate(args.source, args.destination, args.amount, args.recipient)
        print(RULE)
        print("BRIDGE INITIATED")
        print(RULE)
        print(f"  ID       : {record.bridge_id}")
        print(f"  From     : {_chain_name(registry, record.source_chain)}")
        print(f"  To       : {_chain_name(registry, record.destination_chain)}")
        print(f"  Amount   : {record.amount} USDC")
        print(f"  Wallet   : {record.wallet_address}")
        print(RULE)
        record = await orchestrator.run(record.bridge_id)
    elif args.command == "resume":
        record = await orchestrator.resume(args.bridge_id)
    elif args.command == "attest":
        record = await orchestrator.run_step(args.bridge_id, BridgePhase.ATTEST)
    elif args.command == "mint":
        record = await orchestrator.run_step(args.bridge_id, BridgePhase.MINT)
    else:
        raise ValueError(f"Unknown command {args.command}")

    print_outcome(record, registry)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings(BRIDGE_STATE_FILE=args.state_file) if args.state_file else Settings()

    configure_logging(args.log_level or settings.LOG_LEVEL)
    init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, release=__version__)

    try:
        return asyncio.run(dispatch(args, settings))
    except BridgeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sentry_sdk.capture_exception(exc)
        return 1
    except Exception as exc:
        logger.error("cli.unhandled_exception", error=str(exc), error_type=type(exc).__name__)
        print(f"ERROR: {exc}", file=sys.stderr)
        sentry_sdk.capture_exception(exc)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
