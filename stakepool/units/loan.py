"""
loan.py - Loan Ledger

=== LOAN LIFECYCLE ===

    (quorum on request) ──> ACTIVE ──repay──> REPAID
                              │
                              └──default (after deadline)──> DEFAULTED

A loan is created only inside the vote that makes its request reach quorum.
It flips out of ACTIVE exactly once and is never deleted.

=== LENDER SNAPSHOT ===

At quorum time the loan records, for every yes-voter in vote order, the
stake that voter holds at that moment:

    lender_shares   = {voter: staked_amount at quorum}
    total_yes_votes = sum(lender_shares)

and locks each lender's contribution to the principal:

    contribution = amount * share // total_yes_votes

The rounding remainder is locked from lenders with free stake left, in
vote order, so the locked contributions always add up to the principal.
A deciding vote whose lenders cannot cover the principal from free stake
is refused, and the request stays open for other voters.

All later distribution uses this snapshot, never the request's vote list
or current stakes.

=== REPAYMENT ===

    payout(voter) = (amount + interest) * share // total_yes_votes

Multiplying before dividing keeps small loans from rounding every payout to
zero. The rounding remainder (always less than the number of lenders) and
any overpayment stay with the pool as ``undistributed``; nothing is assigned
to a particular lender. Contributions are released and leave the stake,
since the capital comes back to the lender inside the payout.

All transfers of a repayment go to the settlement gateway as one batch:
either every lender is paid and the loan closes, or nothing happens.

=== DEFAULT ===

After the deadline anyone may mark the loan defaulted. The borrower is
blacklisted for good and the lenders' contributions are written off
(released and removed from their stake and from total_staked).
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    AlreadyExecuted, InsufficientFreeStake, InsufficientPayment, LoanNotActive, NotYetExpired,
    QuorumNotMet, UnknownLoan,
    UNIT_TYPE_LOAN,
    build_transaction, entity_unit, require_amount, user_origin,
)
from .registry import add_to_blacklist, load_pool, pool_state_change
from .staker import StakerState, calculate_lock, calculate_release, load_staker, staker_update
from .loan_request import LoanRequest, request_symbol, to_state_dict as request_state_dict


class LoanStatus(str, Enum):
    """Status of a loan."""
    ACTIVE = "active"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


@dataclass(frozen=True, slots=True)
class Loan:
    """Snapshot of a loan record."""
    loan_id: int
    request_id: int
    borrower: str
    amount: int
    interest_amount: int
    duration: timedelta
    issued_at: datetime
    deadline: datetime
    active: bool
    repaid: bool
    defaulted: bool
    total_yes_votes: int
    lender_shares: Mapping[str, int]   # voter -> stake at quorum, in vote order
    locked_stakes: Mapping[str, int]   # voter -> contribution locked from their stake
    amount_paid: int = 0
    distributions: Optional[Mapping[str, int]] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.distributions is None:
            object.__setattr__(self, 'distributions', {})

    @property
    def total_due(self) -> int:
        return self.amount + self.interest_amount


def loan_symbol(loan_id: int) -> str:
    return f"LOAN:{loan_id}"


def load_loan(view: LedgerView, loan_id: int) -> Loan:
    """
    Load a loan record.

    Raises:
        UnknownLoan: If no loan with this id exists.
    """
    symbol = loan_symbol(loan_id)
    if not view.has_unit(symbol):
        raise UnknownLoan(f"loan {loan_id} does not exist")
    raw = view.get_unit_state(symbol)
    return Loan(
        loan_id=raw['loan_id'],
        request_id=raw['request_id'],
        borrower=raw['borrower'],
        amount=raw['amount'],
        interest_amount=raw['interest_amount'],
        duration=raw['duration'],
        issued_at=raw['issued_at'],
        deadline=raw['deadline'],
        active=raw['active'],
        repaid=raw['repaid'],
        defaulted=raw['defaulted'],
        total_yes_votes=raw['total_yes_votes'],
        lender_shares=dict(raw.get('lender_shares', {})),
        locked_stakes=dict(raw.get('locked_stakes', {})),
        amount_paid=raw.get('amount_paid', 0),
        distributions=dict(raw.get('distributions', {})),
        closed_at=raw.get('closed_at'),
    )


def to_state_dict(loan: Loan) -> Dict[str, Any]:
    return {
        'loan_id': loan.loan_id,
        'request_id': loan.request_id,
        'borrower': loan.borrower,
        'amount': loan.amount,
        'interest_amount': loan.interest_amount,
        'duration': loan.duration,
        'issued_at': loan.issued_at,
        'deadline': loan.deadline,
        'active': loan.active,
        'repaid': loan.repaid,
        'defaulted': loan.defaulted,
        'total_yes_votes': loan.total_yes_votes,
        'lender_shares': dict(loan.lender_shares),
        'locked_stakes': dict(loan.locked_stakes),
        'amount_paid': loan.amount_paid,
        'distributions': dict(loan.distributions),
        'closed_at': loan.closed_at,
    }


def create_loan_unit(loan: Loan) -> Unit:
    return entity_unit(
        symbol=loan_symbol(loan.loan_id),
        name=f"Loan #{loan.loan_id}: {loan.amount}+{loan.interest_amount} to {loan.borrower}",
        unit_type=UNIT_TYPE_LOAN,
        state=to_state_dict(loan),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def loan_status(loan: Loan) -> LoanStatus:
    if loan.active:
        return LoanStatus.ACTIVE
    if loan.repaid:
        return LoanStatus.REPAID
    return LoanStatus.DEFAULTED


def calculate_lender_shares(
    request: LoanRequest,
    stakers: Mapping[str, StakerState],
) -> Dict[str, int]:
    """
    Snapshot each yes-voter's current stake, in vote order.

    Args:
        request: The request at the moment quorum is reached
        stakers: Current staker records keyed by identity
    """
    return {voter: stakers[voter].staked_amount for voter in request.yes_voters}


def calculate_contributions(
    amount: int,
    shares: Mapping[str, int],
    free_stake: Mapping[str, int],
) -> Dict[str, int]:
    """
    Each lender's locked part of the principal.

    Every lender locks ``amount * share // total``; the rounding remainder
    is taken from lenders with free stake left, in vote order. The result
    always sums to ``amount``.

    Raises:
        InsufficientFreeStake: If a lender's free stake is below their part,
            or nobody has room for the remainder.

    Example:
        amount=100, shares={'a': 2, 'b': 1}, ample free stake
        -> {'a': 67, 'b': 33}
    """
    total = sum(shares.values())
    contributions: Dict[str, int] = {}
    for voter, share in shares.items():
        part = amount * share // total if total > 0 else 0
        free = free_stake.get(voter, 0)
        if part > free:
            raise InsufficientFreeStake(
                f"{voter} has {free} free stake, {part} needed to back the loan"
            )
        contributions[voter] = part

    remainder = amount - sum(contributions.values())
    for voter in shares:
        if remainder <= 0:
            break
        extra = min(remainder, free_stake.get(voter, 0) - contributions[voter])
        contributions[voter] += extra
        remainder -= extra
    if remainder > 0:
        raise InsufficientFreeStake(
            f"lenders' free stake is {remainder} short of the principal {amount}"
        )
    return contributions


def calculate_distribution(total_amount: int, shares: Mapping[str, int]) -> Tuple[Dict[str, int], int]:
    """
    Split a repayment across lenders by their quorum-time stake.

    Returns:
        (payouts, dust): payouts for every lender with a nonzero share, and
        the rounding remainder left undistributed.

    Example:
        total_amount=110, shares={'a': 2, 'b': 1}
        -> ({'a': 73, 'b': 36}, 1)
    """
    total_shares = sum(shares.values())
    if total_shares <= 0:
        return {}, total_amount
    payouts = {
        voter: total_amount * share // total_shares
        for voter, share in shares.items()
        if share > 0
    }
    return payouts, total_amount - sum(payouts.values())


# ============================================================================
# LOAN CREATION
# ============================================================================

def plan_loan_creation(
    view: LedgerView,
    request: LoanRequest,
) -> Tuple[List[Move], List[UnitStateChange], List[Unit]]:
    """
    Materialize a loan from a request that has just reached quorum.

    ``request`` is the request as it stands after the deciding vote; the
    stored record is what the request's state change replaces. The caller
    folds the returned pieces into its own transaction.

    Returns:
        (moves, state_changes, units_to_create) with:
        - disbursement move pool wallet -> borrower
        - request marked executed, linked to the loan
        - lender stakes locked
        - POOL loan counter advanced
        - the new LOAN:<id> record

    Raises:
        AlreadyExecuted: If the request already produced a loan.
        QuorumNotMet: If yes_votes < required_votes.
        InsufficientFreeStake: If the lenders' free stake cannot back the
            whole principal.
    """
    if request.executed:
        raise AlreadyExecuted(f"loan request {request.request_id} was already executed")
    if request.yes_votes < request.required_votes:
        raise QuorumNotMet(
            f"loan request {request.request_id} has {request.yes_votes} of "
            f"{request.required_votes} required votes"
        )

    terms, pool = load_pool(view)
    now = view.current_time
    loan_id = pool.next_loan_id

    stakers = {voter: load_staker(view, voter) for voter in request.yes_voters}
    shares = calculate_lender_shares(request, stakers)
    contributions = calculate_contributions(
        request.amount, shares, {voter: s.free_amount for voter, s in stakers.items()}
    )

    state_changes: List[UnitStateChange] = []
    units: List[Unit] = []
    for voter, contribution in contributions.items():
        if contribution <= 0:
            continue
        changes, created = staker_update(view, calculate_lock(stakers[voter], contribution))
        state_changes.extend(changes)
        units.extend(created)

    loan = Loan(
        loan_id=loan_id,
        request_id=request.request_id,
        borrower=request.borrower,
        amount=request.amount,
        interest_amount=request.interest_amount,
        duration=request.duration,
        issued_at=now,
        deadline=now + request.duration,
        active=True,
        repaid=False,
        defaulted=False,
        total_yes_votes=sum(shares.values()),
        lender_shares=shares,
        locked_stakes={voter: c for voter, c in contributions.items() if c > 0},
    )
    units.append(create_loan_unit(loan))

    executed_request = replace(request, executed=True, loan_id=loan_id)
    req_symbol = request_symbol(request.request_id)
    state_changes.append(UnitStateChange(
        unit=req_symbol,
        old_state=view.get_unit_state(req_symbol),
        new_state=request_state_dict(executed_request),
    ))
    state_changes.append(pool_state_change(view, terms, replace(pool, next_loan_id=loan_id + 1)))

    moves = [Move(
        quantity=Decimal(request.amount),
        unit_symbol=terms.currency,
        source=terms.pool_wallet,
        dest=request.borrower,
        contract_id=f"disburse:{loan_symbol(loan_id)}",
    )]
    return moves, state_changes, units


# ============================================================================
# REPAYMENT
# ============================================================================

def compute_repayment(view: LedgerView, loan_id: int, paid_amount: int) -> PendingTransaction:
    """
    Repay a loan in full and distribute the proceeds to its lenders.

    Returns:
        PendingTransaction with:
        - moves: borrower -> pool wallet (paid_amount), pool wallet -> each lender
        - loan closed as repaid
        - lender contributions released and removed from stake
        - POOL total_staked reduced, undistributed increased by dust + overpayment

    Raises:
        InvalidAmount: paid_amount not a positive integer
        UnknownLoan: no such loan
        LoanNotActive: loan already repaid or defaulted
        InsufficientPayment: paid_amount < amount + interest_amount

    Example:
        Loan of 100 + 10 interest, single lender 'alice'
        compute_repayment(view, 1, 110) -> alice receives 110
    """
    require_amount(paid_amount, "paid_amount")
    loan = load_loan(view, loan_id)
    if not loan.active:
        raise LoanNotActive(f"loan {loan_id} is {loan_status(loan).value}")
    if paid_amount < loan.total_due:
        raise InsufficientPayment(
            f"loan {loan_id} requires {loan.total_due}, got {paid_amount}"
        )

    terms, pool = load_pool(view)
    symbol = loan_symbol(loan_id)
    payouts, dust = calculate_distribution(loan.total_due, loan.lender_shares)
    surplus = paid_amount - loan.total_due

    moves = [Move(
        quantity=Decimal(paid_amount),
        unit_symbol=terms.currency,
        source=loan.borrower,
        dest=terms.pool_wallet,
        contract_id=f"repay:{symbol}",
    )]
    for voter, payout in payouts.items():
        if payout <= 0:
            continue
        moves.append(Move(
            quantity=Decimal(payout),
            unit_symbol=terms.currency,
            source=terms.pool_wallet,
            dest=voter,
            contract_id=f"payout:{symbol}:{voter}",
        ))

    state_changes, released = _release_contributions(view, loan)
    closed = replace(
        loan,
        active=False,
        repaid=True,
        amount_paid=paid_amount,
        distributions={voter: p for voter, p in payouts.items() if p > 0},
        closed_at=view.current_time,
    )
    state_changes.append(UnitStateChange(
        unit=symbol, old_state=view.get_unit_state(symbol), new_state=to_state_dict(closed),
    ))
    state_changes.append(pool_state_change(view, terms, replace(
        pool,
        total_staked=pool.total_staked - released,
        undistributed=pool.undistributed + dust + surplus,
    )))
    return build_transaction(
        view, moves, state_changes,
        origin=user_origin(loan.borrower, "REPAYMENT", symbol),
    )


# ============================================================================
# DEFAULT
# ============================================================================

def compute_default(view: LedgerView, loan_id: int, caller: str = "anyone") -> PendingTransaction:
    """
    Mark an overdue loan as defaulted and blacklist its borrower.

    Returns:
        PendingTransaction with:
        - loan closed as defaulted (repaid stays False)
        - borrower appended to the POOL blacklist
        - lender contributions written off

    Raises:
        UnknownLoan: no such loan
        LoanNotActive: loan already repaid or defaulted
        NotYetExpired: current time is not past the loan deadline
    """
    loan = load_loan(view, loan_id)
    if not loan.active:
        raise LoanNotActive(f"loan {loan_id} is {loan_status(loan).value}")
    now = view.current_time
    if now <= loan.deadline:
        raise NotYetExpired(f"loan {loan_id} is due {loan.deadline}, now {now}")

    terms, pool = load_pool(view)
    symbol = loan_symbol(loan_id)
    state_changes, released = _release_contributions(view, loan)
    closed = replace(loan, active=False, defaulted=True, closed_at=now)
    state_changes.append(UnitStateChange(
        unit=symbol, old_state=view.get_unit_state(symbol), new_state=to_state_dict(closed),
    ))
    new_pool = add_to_blacklist(replace(pool, total_staked=pool.total_staked - released), loan.borrower)
    state_changes.append(pool_state_change(view, terms, new_pool))
    return build_transaction(
        view, [], state_changes,
        origin=user_origin(caller, "DEFAULT", symbol),
    )


def _release_contributions(view: LedgerView, loan: Loan) -> Tuple[List[UnitStateChange], int]:
    """Release and consume every lender's locked contribution."""
    changes: List[UnitStateChange] = []
    released = 0
    for voter, contribution in loan.locked_stakes.items():
        if contribution <= 0:
            continue
        staker = calculate_release(load_staker(view, voter), contribution, consume=True)
        staker_changes, _ = staker_update(view, staker)
        changes.extend(staker_changes)
        released += contribution
    return changes, released


def list_loans(view: LedgerView) -> List[Loan]:
    """All loans ever created, by id."""
    _, pool = load_pool(view)
    return [load_loan(view, i) for i in range(1, pool.next_loan_id)]
