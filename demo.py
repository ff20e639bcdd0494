#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Staking Pool Step by Step

This is a pedagogical walkthrough of the uncollateralized lending pool.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Staking         - The pool, deposits, the minimum stake time
  4-6:  Voting          - Loan requests, stake-weighted votes, quorum
  7-8:  Loans           - Repayment and distribution, default and blacklist
  9-10: Guarantees      - Gateway failures roll back, conservation, history

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from stakepool import (
    Ledger, StakePool, CreditVerification, InstantSettlement,
    LedgerError, SettlementError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    alice_stake: int = 1000
    bob_stake: int = 300
    carol_stake: int = 100

    loan_amount: int = 1000
    loan_interest: int = 70
    loan_duration: timedelta = timedelta(days=30)


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


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
    print(f"\n--- {text} ---\n")


def show_stakers(pool: StakePool, *identities: str):
    for identity in identities:
        staker = pool.get_staker(identity)
        print(f"  {identity:6s} staked={staker.staked_amount:5d}  locked={staker.locked_amount:5d}  "
              f"eligible={pool.is_eligible(identity)}")
    print(f"  pool   total_staked={pool.total_staked()}  undistributed={pool.undistributed()}")


class PrintingSettlement(InstantSettlement):
    """Settles instantly and shows every batch it receives."""

    def settle(self, transfers):
        for t in transfers:
            print(f"  [GATEWAY] {t.amount} {t.currency}: {t.source} -> {t.dest} ({t.reference})")
        super().settle(transfers)


# ============================================================================
# PHASE 1: STAKING (Steps 1-3)
# ============================================================================

def step_01_create_pool():
    step_header(1, "The Pool", "A pool is a ledger plus a registry of terms, stakers and loans.")

    ledger = Ledger("tutorial", CONFIG.start_time, verbose=False)
    pool = StakePool(ledger, gateway=PrintingSettlement(), verbose=True)

    section_header("Pool terms (written into the POOL record)")
    for key, value in ledger.get_unit_state("POOL").items():
        print(f"  {key:26s} {value}")
    return pool


def step_02_stake(pool: StakePool):
    step_header(2, "Staking", "Stakers deposit capital; deposits arrive with the call, so no gateway transfer.")
    pool.stake("alice", CONFIG.alice_stake)
    pool.stake("bob", CONFIG.bob_stake)
    pool.stake("carol", CONFIG.carol_stake)
    section_header("Stakers")
    show_stakers(pool, "alice", "bob", "carol")
    return pool


def step_03_min_stake_time(pool: StakePool):
    step_header(3, "Minimum Stake Time", "Only stake that has aged for the minimum stake time may vote.")
    pool.ledger.advance_time(CONFIG.start_time + timedelta(days=8))
    print(f"  clock advanced to {pool.ledger.current_time}")
    show_stakers(pool, "alice", "bob", "carol")
    return pool


# ============================================================================
# PHASE 2: VOTING (Steps 4-6)
# ============================================================================

def step_04_verified_request(pool: StakePool):
    step_header(4, "Credit Verification", "An oracle scores the borrower and hands out an opaque risk note.")
    oracle = CreditVerification(pool.ledger, owner="acme", verbose=True)
    oracle.request_verification("dave", ("ipfs://payslip", "ipfs://invoice"))
    note = oracle.verify("acme", "dave", 35)
    print(f"  risk note: {note}")
    return pool, note


def step_05_request_and_vote(pool: StakePool, note: str):
    step_header(5, "Stake-Weighted Voting", "Yes votes weigh the voter's stake; quorum is a share of the amount.")
    request_id = pool.request_loan(
        "dave", CONFIG.loan_amount, CONFIG.loan_interest, CONFIG.loan_duration,
        purpose="working capital", risk_note=note,
    )
    request = pool.get_request(request_id)
    print(f"  request #{request_id}: {request.amount} + {request.interest_amount}, "
          f"needs {request.required_votes} votes before {request.voting_deadline}")

    pool.vote(request_id, "bob", True)
    pool.vote(request_id, "carol", False)
    print(f"  yes votes so far: {pool.get_request(request_id).yes_votes}")
    return pool, request_id


def step_06_quorum(pool: StakePool, request_id: int):
    step_header(6, "Quorum", "The deciding vote creates the loan, locks lender stake and disburses.")
    loan_id = pool.vote(request_id, "alice", True)
    loan = pool.get_loan(loan_id)
    print(f"  lender shares: {dict(loan.lender_shares)}")
    print(f"  locked stakes: {dict(loan.locked_stakes)}")
    show_stakers(pool, "alice", "bob", "carol")
    return pool, loan_id


# ============================================================================
# PHASE 3: LOANS (Steps 7-8)
# ============================================================================

def step_07_repay(pool: StakePool, loan_id: int):
    step_header(7, "Repayment", "Principal plus interest is split by quorum-time stake; dust stays in the pool.")
    pool.ledger.advance_time(pool.ledger.current_time + timedelta(days=20))
    loan = pool.get_loan(loan_id)
    pool.repay_loan(loan_id, loan.total_due)
    print(f"  distributions: {dict(pool.get_loan(loan_id).distributions)}")
    show_stakers(pool, "alice", "bob", "carol")
    return pool


def step_08_default(pool: StakePool):
    step_header(8, "Default", "After the deadline anyone can mark a loan defaulted; the borrower is blacklisted.")
    request_id = pool.request_loan("erin", 200, 20, timedelta(days=10))
    loan_id = pool.vote(request_id, "alice", True)
    pool.ledger.advance_time(pool.get_loan(loan_id).deadline + timedelta(seconds=1))
    pool.mark_as_defaulted(loan_id, caller="carol")
    print(f"  erin blacklisted: {pool.is_blacklisted('erin')}")
    try:
        pool.request_loan("erin", 10, 1, timedelta(days=10))
    except LedgerError as e:
        print(f"  next request rejected: {type(e).__name__}: {e}")
    show_stakers(pool, "alice", "bob", "carol")
    return pool


# ============================================================================
# PHASE 4: GUARANTEES (Steps 9-10)
# ============================================================================

class RefusingSettlement:
    def settle(self, transfers):
        raise SettlementError("bank transfer refused")


def step_09_gateway_failure(pool: StakePool):
    step_header(9, "Atomic Settlement", "A refused transfer aborts the operation; the ledger is unchanged.")
    refusing = StakePool(pool.ledger, gateway=RefusingSettlement(), verbose=True)
    before = pool.get_staker("bob")
    try:
        refusing.withdraw_stake("bob", 10)
    except SettlementError as e:
        print(f"  withdrawal failed: {e}")
    print(f"  bob before: {before}")
    print(f"  bob after:  {pool.get_staker('bob')}")
    return pool


def step_10_conservation(pool: StakePool):
    step_header(10, "Conservation and History", "Cash nets to zero; any past moment can be reconstructed.")
    result = pool.ledger.verify_double_entry(expected_supplies={pool.currency: Decimal("0")})
    print(f"  conservation valid: {result['valid']}  supplies: {result['supplies'][pool.currency]}")

    section_header("Transaction log")
    for tx in pool.ledger.transaction_log:
        print(f"  #{tx.sequence_number:02d} {tx.execution_time}  {tx.origin.event_type:12s} by {tx.origin.source_id}")

    past = pool.ledger.clone_at(CONFIG.start_time + timedelta(days=8))
    print(f"\n  loans on day 8: {[u for u in past.list_units() if u.startswith('LOAN:')]}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       STAKEPOOL - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    pool = step_01_create_pool()
    wait_for_enter()
    pool = step_02_stake(pool)
    wait_for_enter()
    pool = step_03_min_stake_time(pool)
    wait_for_enter()

    pool, note = step_04_verified_request(pool)
    wait_for_enter()
    pool, request_id = step_05_request_and_vote(pool, note)
    wait_for_enter()
    pool, loan_id = step_06_quorum(pool, request_id)
    wait_for_enter()

    pool = step_07_repay(pool, loan_id)
    wait_for_enter()
    pool = step_08_default(pool)
    wait_for_enter()

    pool = step_09_gateway_failure(pool)
    wait_for_enter()
    step_10_conservation(pool)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See stakepool/units/*.py for the pure compute functions
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
