"""
Pension Ledger Audit Tool — independent journal integrity verification.

Connects directly to the ledger store, recomputes every hash in both journal
chains, replays each journal against the stored ledger state, and prints a
summary of the Allocation and Benefit ledgers.

Usage:
    python -m pension_ledger.ledger.audit
    python -m pension_ledger.ledger.audit --database-url sqlite:///fund.db
    python -m pension_ledger.ledger.audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

import structlog
from rich.console import Console
from rich.table import Table

from pension_ledger.config import settings
from pension_ledger.governance.permissions import PermissionEngine
from pension_ledger.ledger.allocation import AllocationLedger
from pension_ledger.ledger.benefits import BenefitLedger
from pension_ledger.ledger.database import create_ledger_engine, initialize_schema
from pension_ledger.logging_config import configure_logging

console = Console()


def run_audit(database_url: str, verbose: bool = False) -> bool:
    """
    Run a full integrity audit over both ledgers: hash chains, then state
    reconciliation.

    Args:
        database_url: SQLAlchemy connection string of the ledger store.
        verbose: Print asset classes and recent journal entries if True.

    Returns:
        True if both journal chains are valid and both ledgers match their
        journals, False otherwise.
    """
    log = structlog.get_logger()
    console.print("\n[bold blue]═══ Pension Ledger Integrity Audit ═══[/bold blue]\n")

    engine = create_ledger_engine(database_url)
    initialize_schema(engine)
    permissions = PermissionEngine.single_administrator(settings.administrator_id)
    allocation = AllocationLedger(engine, permissions)
    benefits = BenefitLedger(engine, permissions)

    all_valid = True
    for ledger in (allocation, benefits):
        journal = ledger.journal
        count = journal.get_entry_count()
        console.print(f"  [bold]{journal.ledger}[/bold] journal entries: {count}")
        console.print("  Verifying hash chain...", end=" ")

        start_time = time.time()
        is_valid, entries_verified, message = journal.verify_chain()
        elapsed = time.time() - start_time

        if is_valid:
            console.print("[bold green]✓ VALID[/bold green]")
            console.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
            console.print(f"  Verification time: {elapsed:.3f}s\n")
        else:
            console.print("[bold red]✗ INVALID[/bold red]")
            console.print(f"  Failure at entry: {entries_verified}")
            console.print(f"  Reason: {message}\n")
            all_valid = False

        log.info(
            "pension_ledger.audit.chain_verified",
            ledger=journal.ledger,
            valid=is_valid,
            entries=entries_verified,
        )

        is_consistent, state_message = ledger.verify_state()
        if is_consistent:
            console.print("  State reconciliation: [bold green]✓ CONSISTENT[/bold green]\n")
        else:
            console.print("  State reconciliation: [bold red]✗ MISMATCH[/bold red]")
            console.print(f"  Reason: {state_message}\n")
            all_valid = False

        log.info(
            "pension_ledger.audit.state_reconciled",
            ledger=journal.ledger,
            consistent=is_consistent,
        )

    console.print(f"  Asset classes: [bold]{allocation.get_asset_class_count()}[/bold]")
    console.print(f"  Total fund value: [bold]{allocation.get_total_fund_value()}[/bold]")
    console.print(
        f"  Allocation percentages sum: [bold]{allocation.get_allocation_total()}[/bold]"
    )
    console.print(
        f"  Retirees: [bold]{benefits.get_retiree_count()}[/bold] "
        f"(active: {benefits.get_retiree_count(active_only=True)})"
    )

    if verbose:
        table = Table(title="Asset Classes", show_lines=True)
        table.add_column("Id", style="cyan", width=6)
        table.add_column("Name", style="green")
        table.add_column("Allocation %", justify="right")
        table.add_column("Current value", justify="right")
        for asset in allocation.list_asset_classes():
            table.add_row(
                str(asset.id),
                asset.name,
                str(asset.allocation_percentage),
                str(asset.current_value),
            )
        console.print(table)

        entries = Table(title="Recent Journal Entries", show_lines=True)
        entries.add_column("Ledger", style="cyan")
        entries.add_column("Seq", width=6)
        entries.add_column("Action", style="green")
        entries.add_column("Caller", style="yellow")
        entries.add_column("Hash (first 16)", style="dim")
        entries.add_column("Timestamp")
        for journal in (allocation.journal, benefits.journal):
            for entry in reversed(journal.get_entries(limit=20)):
                entries.add_row(
                    entry.ledger,
                    str(entry.sequence_number),
                    entry.action,
                    entry.caller,
                    entry.entry_hash[:16] + "...",
                    entry.timestamp.isoformat()[:19],
                )
        console.print(entries)

    engine.dispose()
    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return all_valid


def main() -> None:
    parser = argparse.ArgumentParser(description="Pension fund ledger integrity auditor")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show asset classes and recent journal entries",
    )
    args = parser.parse_args()

    configure_logging()
    db_url = args.database_url or settings.database_url
    is_valid = run_audit(db_url, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
