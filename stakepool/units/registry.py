"""
registry.py - Pool Registry Unit

The POOL unit holds the pool-wide fields every operation reads or writes:

    total_staked      sum of all stakers' staked_amount
    next_request_id   id counter for loan requests
    next_loan_id      id counter for loans
    blacklist         append-only, sorted list of defaulted borrowers
    undistributed     rounding dust and overpayments kept by the pool
    sequence          count of committed changes to this record

and the pool terms copied from PoolConfig at creation. Two operations that
touch pool-wide fields conflict on this record's old_state.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Dict, Tuple

from ..core import (
    LedgerView, PoolConfig, Unit, UnitStateChange,
    UNIT_TYPE_POOL, entity_unit,
)


POOL_SYMBOL = "POOL"


@dataclass(frozen=True, slots=True)
class PoolTerms:
    """Pool parameters - fixed when the pool is created."""
    currency: str
    pool_wallet: str
    min_stake_time: timedelta
    voting_period: timedelta
    quorum_percent: int
    require_verified_borrower: bool


@dataclass(frozen=True, slots=True)
class PoolState:
    """Pool-wide mutable fields at a point in time."""
    total_staked: int
    next_request_id: int
    next_loan_id: int
    blacklist: Tuple[str, ...]
    undistributed: int
    sequence: int = 0


def create_pool_unit(config: PoolConfig) -> Unit:
    """
    Create the POOL registry unit for a new pool.

    Example:
        ledger.register_unit(create_pool_unit(PoolConfig()))
    """
    terms = PoolTerms(
        currency=config.currency,
        pool_wallet=config.pool_wallet,
        min_stake_time=config.min_stake_time,
        voting_period=config.voting_period,
        quorum_percent=config.quorum_percent,
        require_verified_borrower=config.require_verified_borrower,
    )
    state = PoolState(
        total_staked=0,
        next_request_id=1,
        next_loan_id=1,
        blacklist=(),
        undistributed=0,
    )
    return entity_unit(
        symbol=POOL_SYMBOL,
        name=f"Staking pool ({config.currency})",
        unit_type=UNIT_TYPE_POOL,
        state=to_state_dict(terms, state),
    )


def load_pool(view: LedgerView) -> Tuple[PoolTerms, PoolState]:
    """
    Load the pool registry as typed frozen dataclasses.

    Raises:
        UnitNotRegistered: If the pool was never created on this ledger.
    """
    raw = view.get_unit_state(POOL_SYMBOL)
    terms = PoolTerms(
        currency=raw['currency'],
        pool_wallet=raw['pool_wallet'],
        min_stake_time=raw['min_stake_time'],
        voting_period=raw['voting_period'],
        quorum_percent=raw['quorum_percent'],
        require_verified_borrower=raw.get('require_verified_borrower', False),
    )
    state = PoolState(
        total_staked=raw.get('total_staked', 0),
        next_request_id=raw.get('next_request_id', 1),
        next_loan_id=raw.get('next_loan_id', 1),
        blacklist=tuple(raw.get('blacklist', ())),
        undistributed=raw.get('undistributed', 0),
        sequence=raw.get('sequence', 0),
    )
    return terms, state


def to_state_dict(terms: PoolTerms, state: PoolState) -> Dict[str, Any]:
    """Inverse of load_pool()."""
    return {
        'currency': terms.currency,
        'pool_wallet': terms.pool_wallet,
        'min_stake_time': terms.min_stake_time,
        'voting_period': terms.voting_period,
        'quorum_percent': terms.quorum_percent,
        'require_verified_borrower': terms.require_verified_borrower,
        'total_staked': state.total_staked,
        'next_request_id': state.next_request_id,
        'next_loan_id': state.next_loan_id,
        'blacklist': list(state.blacklist),
        'undistributed': state.undistributed,
        'sequence': state.sequence,
    }


def pool_state_change(view: LedgerView, terms: PoolTerms, new_state: PoolState) -> UnitStateChange:
    """
    Build the POOL state change from the current stored state to new_state.

    The sequence is advanced on every change, so two operations with the
    same amounts at the same logical time still have distinct intents.
    """
    old_state = view.get_unit_state(POOL_SYMBOL)
    new_state = replace(new_state, sequence=old_state.get('sequence', 0) + 1)
    return UnitStateChange(
        unit=POOL_SYMBOL,
        old_state=old_state,
        new_state=to_state_dict(terms, new_state),
    )


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def calculate_required_votes(amount: int, quorum_percent: int) -> int:
    """
    Yes stake-weight needed to approve a loan of ``amount``.

    The threshold is a share of the loan amount, not of the pool or of
    votes cast: a 100 loan at 60% needs 60 units of yes stake.
    """
    return amount * quorum_percent // 100


def add_to_blacklist(state: PoolState, identity: str) -> PoolState:
    """Return state with identity blacklisted. Entries are never removed."""
    if identity in state.blacklist:
        return state
    return replace(state, blacklist=tuple(sorted(state.blacklist + (identity,))))


def is_blacklisted(view: LedgerView, identity: str) -> bool:
    _, state = load_pool(view)
    return identity in state.blacklist
