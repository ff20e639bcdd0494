"""
staker.py - Stake Manager

=== STAKE MODEL ===

Every participant who deposits capital has a STAKER:<identity> record:

    staked_amount     capital deposited and not withdrawn
    locked_amount     part of staked_amount backing active loans
    last_stake_time   time of the most recent deposit

Invariant: locked_amount <= staked_amount.

Depositing moves cash identity -> pool wallet (value arrives with the call).
Withdrawing moves cash pool wallet -> identity through the settlement
gateway; only the free part (staked - locked) can be withdrawn.

=== ELIGIBILITY ===

A staker may vote once their stake has aged:

    staked_amount > 0  AND  now >= last_stake_time + min_stake_time

Every new deposit restarts the clock, so stake-vote-withdraw within one
window is impossible.

=== PURE FUNCTIONS ===

    calculate_eligibility(staker, now, min_stake_time) -> bool
    calculate_lock(staker, amount) -> StakerState
    calculate_release(staker, amount, consume) -> StakerState
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    InsufficientFreeStake, build_transaction, entity_unit, require_amount,
    user_origin, UNIT_TYPE_STAKER,
)
from .registry import load_pool, pool_state_change


@dataclass(frozen=True, slots=True)
class StakerState:
    """Snapshot of a staker record."""
    identity: str
    staked_amount: int = 0
    locked_amount: int = 0
    last_stake_time: Optional[datetime] = None

    def __post_init__(self):
        if self.staked_amount < 0 or self.locked_amount < 0:
            raise ValueError(f"negative stake for {self.identity}")
        if self.locked_amount > self.staked_amount:
            raise ValueError(
                f"locked_amount {self.locked_amount} exceeds staked_amount "
                f"{self.staked_amount} for {self.identity}"
            )

    @property
    def free_amount(self) -> int:
        return self.staked_amount - self.locked_amount


def staker_symbol(identity: str) -> str:
    return f"STAKER:{identity}"


def load_staker(view: LedgerView, identity: str) -> StakerState:
    """
    Load a staker record. Identities that never staked read as an empty
    record (zero balances), which is also a valid terminal state.
    """
    symbol = staker_symbol(identity)
    if not view.has_unit(symbol):
        return StakerState(identity=identity)
    raw = view.get_unit_state(symbol)
    return StakerState(
        identity=raw['identity'],
        staked_amount=raw.get('staked_amount', 0),
        locked_amount=raw.get('locked_amount', 0),
        last_stake_time=raw.get('last_stake_time'),
    )


def to_state_dict(staker: StakerState) -> Dict[str, Any]:
    return {
        'identity': staker.identity,
        'staked_amount': staker.staked_amount,
        'locked_amount': staker.locked_amount,
        'last_stake_time': staker.last_stake_time,
    }


def create_staker_unit(staker: StakerState) -> Unit:
    return entity_unit(
        symbol=staker_symbol(staker.identity),
        name=f"Staker {staker.identity}",
        unit_type=UNIT_TYPE_STAKER,
        state=to_state_dict(staker),
    )


def staker_update(view: LedgerView, new_staker: StakerState):
    """
    Persist a staker snapshot: a UnitStateChange if the record exists,
    otherwise a new record unit.

    Returns:
        (state_changes, units_to_create) lists, one of them holding one entry
    """
    symbol = staker_symbol(new_staker.identity)
    if view.has_unit(symbol):
        change = UnitStateChange(
            unit=symbol,
            old_state=view.get_unit_state(symbol),
            new_state=to_state_dict(new_staker),
        )
        return [change], []
    return [], [create_staker_unit(new_staker)]


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_eligibility(
    staker: StakerState,
    now: datetime,
    min_stake_time: timedelta,
) -> bool:
    """
    Return True if the staker may vote at ``now``.

    Example:
        Staked 1000 at 2025-01-01, min_stake_time 7 days
        -> not eligible on 2025-01-07, eligible from 2025-01-08 00:00
    """
    if staker.staked_amount <= 0 or staker.last_stake_time is None:
        return False
    return now >= staker.last_stake_time + min_stake_time


def calculate_lock(staker: StakerState, amount: int) -> StakerState:
    """
    Lock part of the free stake.

    Raises:
        InsufficientFreeStake: If amount exceeds the free stake.
    """
    if amount < 0:
        raise ValueError(f"lock amount cannot be negative, got {amount}")
    if amount > staker.free_amount:
        raise InsufficientFreeStake(
            f"{staker.identity}: cannot lock {amount}, free stake is {staker.free_amount}"
        )
    return replace(staker, locked_amount=staker.locked_amount + amount)


def calculate_release(staker: StakerState, amount: int, consume: bool) -> StakerState:
    """
    Release a previously locked amount.

    With ``consume`` the released amount also leaves the stake: it was paid
    back to the staker through a repayment, or written off on default.
    """
    if amount < 0 or amount > staker.locked_amount:
        raise ValueError(
            f"{staker.identity}: cannot release {amount}, locked is {staker.locked_amount}"
        )
    staked = staker.staked_amount - amount if consume else staker.staked_amount
    return replace(staker, staked_amount=staked, locked_amount=staker.locked_amount - amount)


# ============================================================================
# LEDGER OPERATIONS
# ============================================================================

def is_eligible(view: LedgerView, identity: str) -> bool:
    """Eligibility predicate consumed by the voting engine."""
    terms, _ = load_pool(view)
    return calculate_eligibility(load_staker(view, identity), view.current_time, terms.min_stake_time)


def compute_stake(view: LedgerView, identity: str, amount: int) -> PendingTransaction:
    """
    Deposit stake.

    Returns:
        PendingTransaction with:
        - moves: cash identity -> pool wallet (flagged as settled with the call)
        - staker record created or updated, last_stake_time = now
        - POOL total_staked increased

    Raises:
        InvalidAmount: If amount is not a positive integer.
    """
    require_amount(amount)
    terms, pool = load_pool(view)
    now = view.current_time

    staker = load_staker(view, identity)
    new_staker = replace(
        staker,
        staked_amount=staker.staked_amount + amount,
        last_stake_time=now,
    )
    changes, units = staker_update(view, new_staker)
    changes.append(pool_state_change(view, terms, replace(pool, total_staked=pool.total_staked + amount)))

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=terms.currency,
        source=identity,
        dest=terms.pool_wallet,
        contract_id=f"stake:{identity}",
        metadata={'settled': True},
    )]
    return build_transaction(
        view, moves, changes,
        origin=user_origin(identity, "STAKE", staker_symbol(identity)),
        units_to_create=tuple(units),
    )


def compute_withdrawal(view: LedgerView, identity: str, amount: int) -> PendingTransaction:
    """
    Withdraw free stake.

    Returns:
        PendingTransaction with:
        - moves: cash pool wallet -> identity (settled through the gateway)
        - staker staked_amount decreased
        - POOL total_staked decreased

    Raises:
        InvalidAmount: If amount is not a positive integer.
        InsufficientFreeStake: If amount > staked_amount - locked_amount.
    """
    require_amount(amount)
    terms, pool = load_pool(view)
    staker = load_staker(view, identity)
    if amount > staker.free_amount:
        raise InsufficientFreeStake(
            f"{identity} requested {amount}, free stake is {staker.free_amount} "
            f"(staked {staker.staked_amount}, locked {staker.locked_amount})"
        )

    new_staker = replace(staker, staked_amount=staker.staked_amount - amount)
    changes, _ = staker_update(view, new_staker)
    changes.append(pool_state_change(view, terms, replace(pool, total_staked=pool.total_staked - amount)))

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=terms.currency,
        source=terms.pool_wallet,
        dest=identity,
        contract_id=f"withdraw:{identity}",
    )]
    return build_transaction(
        view, moves, changes,
        origin=user_origin(identity, "WITHDRAW", staker_symbol(identity)),
    )
