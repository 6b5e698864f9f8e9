#!/usr/bin/env python3
"""
demo.py - Walkthrough: Move Cash Between Tills

Runs the reference settlement scenario against a live Redis server and prints
what the ledger looks like after every step.

WHAT YOU'LL SEE:
  1: The empty ledger for a settlement document
  2: $1.50 in cash moving from till-1 to till-2
  3: The same $1.50 moving on from till-2 to till-3
  4: The snapshot, conservation check and audit log

Run:
    python demo.py                 # Interactive mode (press Enter for each step)
    python demo.py --quick         # Run all steps without pausing
    python demo.py --keep          # Do not clear the demo keys first

The server is taken from REDIS_URL (default: redis://localhost:6379/0).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple
import sys

import redis

from settlement_ledger import (
    LedgerEngine, RedisStore, LedgerAddress, Direction,
    DenominationMovement, TenderMovement, Transaction, Till,
    StoreError, base_key, find_divergent_tenders,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    # Store
    redis_url: Optional[str] = None

    # Ledger address
    organization: str = "test-org"
    enterprise_unit: str = "test-eu"
    settlement_doc_id: str = "settlement-id-1"

    # The cash moved by each transfer: (name, count, amount)
    tender_id: str = "cash"
    amount: Decimal = Decimal("1.5")
    denominations: Tuple[Tuple[str, int, Decimal], ...] = (
        ("dollar bill", 1, Decimal("1")),
        ("quarter", 2, Decimal("0.5")),
    )

    # Each transfer as (source, destination)
    route: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("till-1", "till-2"),
        ("till-2", "till-3"),
    ])


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv
KEEP_DATA = "--keep" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def print_tills(tills: List[Till]):
    if not tills:
        print("  (no tills)")
    for till in tills:
        print(f"  {till.id}")
        for tender in till.tenders:
            print(f"    {tender.id:<12} {tender.amount:>10}")
            for d in tender.tender_breakdowns:
                print(f"      {d.name:<14} count={d.count:<4} amount={d.amount}")


def cash_transfer(address: LedgerAddress, source: str, destination: str) -> Transaction:
    return Transaction(
        address,
        source,
        destination,
        Direction.FORWARD,
        [TenderMovement(
            CONFIG.tender_id,
            CONFIG.amount,
            [DenominationMovement(name, count, amount) for name, count, amount in CONFIG.denominations],
        )],
    )


def clear_ledger(store: RedisStore, address: LedgerAddress) -> int:
    """Delete every key under the demo address so the run starts from zero."""
    keys = list(store.client.scan_iter(match=f"{base_key(address)}:*"))
    if keys:
        store.client.delete(*keys)
    return len(keys)


# ============================================================================
# STEPS
# ============================================================================

def step_01_empty_ledger(engine: LedgerEngine, address: LedgerAddress):
    step_header(1, "The Empty Ledger",
        "A settlement document starts with no tills.")

    print(f"Address:  {address}")
    print(f"Key root: {base_key(address)}")
    section_header("Ledger State")
    print_tills(engine.get_ledger_state(address))
    wait_for_enter()


def step_transfer(number: int, engine: LedgerEngine, address: LedgerAddress, source: str, destination: str):
    step_header(number, f"Transfer {source} > {destination}",
        "The destination is credited and the source debited, per tender and per denomination.")

    engine.process_transaction(cash_transfer(address, source, destination))

    section_header("Ledger State")
    print_tills(engine.get_ledger_state(address))
    wait_for_enter()


def step_reconcile(number: int, engine: LedgerEngine, address: LedgerAddress):
    step_header(number, "Reconciliation",
        "Every tender nets to zero across tills, and the audit log replays the day.")

    result = engine.verify_conservation(address)
    print(f"Conserved:          {result['valid']}")
    for tender_id, totals in result['totals'].items():
        print(f"  {tender_id:<12} total={totals['amount']}")
    for d in result['discrepancies']:
        print(f"  ✗ {d}")

    divergent = find_divergent_tenders(engine.get_ledger_state(address))
    print(f"Divergent tenders:  {divergent or 'none'}")

    section_header("Audit Log")
    for sequence, tx in enumerate(engine.get_transaction_log(address), start=1):
        print(f"  #{sequence}: {tx.source} {Direction.parse(tx.direction).value} {tx.destination}")


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the walkthrough."""
    print("=" * 70)
    print("       SETTLEMENT LEDGER - WALKTHROUGH")
    print("=" * 70)

    store = RedisStore.from_url(CONFIG.redis_url)
    address = LedgerAddress(CONFIG.organization, CONFIG.enterprise_unit, CONFIG.settlement_doc_id)
    engine = LedgerEngine(store, audit=True, verbose=True)

    try:
        if not KEEP_DATA:
            removed = clear_ledger(store, address)
            print(f"\nCleared {removed} existing key(s) under {base_key(address)}")

        step_01_empty_ledger(engine, address)
        for number, (source, destination) in enumerate(CONFIG.route, start=2):
            step_transfer(number, engine, address, source, destination)
        step_reconcile(len(CONFIG.route) + 2, engine, address)
    except (StoreError, redis.RedisError) as e:
        print(f"\nStore unavailable: {e}")
        return 1

    print(f"\n{'='*70}")
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
