"""
pool_helpers.py - Test helpers for pool-level tests

Builds pools on fresh ledgers, captures everything an operation may
change so failure paths can be compared against the state before, and
generates random operation sequences for property tests.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal

from hypothesis import note
from hypothesis import strategies as st

from stakepool import Ledger, LedgerError, StakePool


T0 = datetime(2025, 1, 1)
SEASONED = T0 + timedelta(days=8)


def snapshot(ledger: Ledger) -> dict:
    """Everything a pool operation may change: balances, records, log, wallets."""
    return {
        "balances": {w: {u: q for u, q in b.items() if q != 0} for w, b in ledger.balances.items()},
        "states": {symbol: ledger.get_unit_state(symbol) for symbol in ledger.list_units()},
        "log_length": len(ledger.transaction_log),
        "wallets": ledger.list_wallets(),
    }


def make_pool(gateway=None, config=None, time=T0) -> StakePool:
    """Fresh pool on its own ledger."""
    ledger = Ledger("test", time, verbose=False)
    return StakePool(ledger, gateway=gateway, config=config)


def seasoned(pool: StakePool) -> StakePool:
    """alice 1000, bob 300, carol 100 staked at T0; clock at T0 + 8 days."""
    pool.stake("alice", 1000)
    pool.stake("bob", 300)
    pool.stake("carol", 100)
    pool.ledger.advance_time(SEASONED)
    return pool


def cash_balance(pool: StakePool, wallet: str) -> Decimal:
    return pool.ledger.get_balance(wallet, pool.currency)


# =============================================================================
# RANDOM OPERATION SEQUENCES
# =============================================================================

MONTH = timedelta(days=30)

identities = st.sampled_from(["alice", "bob", "carol", "dave"])

operations = st.one_of(
    st.tuples(st.just("stake"), identities, st.integers(min_value=1, max_value=500)),
    st.tuples(st.just("withdraw"), identities, st.integers(min_value=1, max_value=500)),
    st.tuples(st.just("request"), identities, st.integers(min_value=1, max_value=800)),
    st.tuples(st.just("vote"), identities, st.booleans()),
    st.tuples(st.just("repay"), st.integers(min_value=0, max_value=30)),
    st.tuples(st.just("default")),
    st.tuples(st.just("wait"), st.integers(min_value=1, max_value=20)),
)


def apply_operation(pool: StakePool, op) -> None:
    """Run one random operation; pool rule violations are expected."""
    kind = op[0]
    try:
        if kind == "stake":
            pool.stake(op[1], op[2])
        elif kind == "withdraw":
            pool.withdraw_stake(op[1], op[2])
        elif kind == "request":
            pool.request_loan(op[1], op[2], op[2] // 10, MONTH)
        elif kind == "vote":
            requests = pool.list_requests()
            if requests:
                pool.vote(requests[-1].request_id, op[1], op[2])
        elif kind == "repay":
            for loan in pool.list_loans():
                if loan.active:
                    pool.repay_loan(loan.loan_id, loan.total_due + op[1])
                    break
        elif kind == "default":
            for loan in pool.list_loans():
                if loan.active:
                    pool.mark_as_defaulted(loan.loan_id)
                    break
        elif kind == "wait":
            pool.ledger.advance_time(pool.ledger.current_time + timedelta(days=op[1]))
    except LedgerError as e:
        note(f"{op} rejected: {e}")
