"""
loan_request.py - Loan Request Unit

=== REQUEST LIFECYCLE ===

    OPEN ──(yes vote reaches quorum)──> EXECUTED
      │
      └──(voting_deadline passes)────> EXPIRED   (implicit, storage unchanged)

A request is created by compute_loan_request() and mutated only by votes.
Expiry is never written: a request nobody touches after its deadline stays
"open" in storage and is inert, because every vote checks the deadline.

=== VOTES ===

Votes are an ordered secondary index inside the request record, appended as
they arrive:

    votes = [{'voter': 'alice', 'support': True, 'weight': 1000, 'cast_at': t}, ...]

Only yes votes carry weight; no votes are recorded so the voter cannot vote
again. yes_votes only ever increases.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core import (
    LedgerView, PendingTransaction, Unit,
    AmountExceedsPool, Blacklisted, InvalidDuration,
    UnknownRequest, UnverifiedBorrower,
    UNIT_TYPE_LOAN_REQUEST,
    build_transaction, entity_unit, require_amount, user_origin,
)
from .registry import calculate_required_votes, load_pool, pool_state_change


class RequestStatus(str, Enum):
    """Status of a loan request."""
    OPEN = "open"             # Accepting votes
    EXECUTED = "executed"     # Quorum reached, loan created
    EXPIRED = "expired"       # Deadline passed without quorum


@dataclass(frozen=True, slots=True)
class Vote:
    """One recorded vote on a request."""
    voter: str
    support: bool
    weight: int
    cast_at: datetime


@dataclass(frozen=True, slots=True)
class LoanRequest:
    """Snapshot of a loan request record."""
    request_id: int
    borrower: str
    amount: int
    interest_amount: int
    duration: timedelta
    purpose: str
    proof_refs: Tuple[str, ...]
    risk_note: Optional[str]
    created_at: datetime
    voting_deadline: datetime
    yes_votes: int
    required_votes: int
    executed: bool
    loan_id: Optional[int]
    votes: Tuple[Vote, ...]

    @property
    def voters(self) -> Tuple[str, ...]:
        """All identities that voted, in arrival order."""
        return tuple(v.voter for v in self.votes)

    @property
    def yes_voters(self) -> Tuple[str, ...]:
        """Identities that voted yes, in arrival order."""
        return tuple(v.voter for v in self.votes if v.support)

    def has_voted(self, identity: str) -> bool:
        return any(v.voter == identity for v in self.votes)


def request_symbol(request_id: int) -> str:
    return f"REQUEST:{request_id}"


def load_loan_request(view: LedgerView, request_id: int) -> LoanRequest:
    """
    Load a loan request record.

    Raises:
        UnknownRequest: If no request with this id exists.
    """
    symbol = request_symbol(request_id)
    if not view.has_unit(symbol):
        raise UnknownRequest(f"loan request {request_id} does not exist")
    return _from_state_dict(view.get_unit_state(symbol))


def _from_state_dict(raw: Dict[str, Any]) -> LoanRequest:
    return LoanRequest(
        request_id=raw['request_id'],
        borrower=raw['borrower'],
        amount=raw['amount'],
        interest_amount=raw['interest_amount'],
        duration=raw['duration'],
        purpose=raw.get('purpose', ''),
        proof_refs=tuple(raw.get('proof_refs', ())),
        risk_note=raw.get('risk_note'),
        created_at=raw['created_at'],
        voting_deadline=raw['voting_deadline'],
        yes_votes=raw.get('yes_votes', 0),
        required_votes=raw['required_votes'],
        executed=raw.get('executed', False),
        loan_id=raw.get('loan_id'),
        votes=tuple(Vote(**v) for v in raw.get('votes', ())),
    )


def to_state_dict(request: LoanRequest) -> Dict[str, Any]:
    return {
        'request_id': request.request_id,
        'borrower': request.borrower,
        'amount': request.amount,
        'interest_amount': request.interest_amount,
        'duration': request.duration,
        'purpose': request.purpose,
        'proof_refs': list(request.proof_refs),
        'risk_note': request.risk_note,
        'created_at': request.created_at,
        'voting_deadline': request.voting_deadline,
        'yes_votes': request.yes_votes,
        'required_votes': request.required_votes,
        'executed': request.executed,
        'loan_id': request.loan_id,
        'votes': [
            {'voter': v.voter, 'support': v.support, 'weight': v.weight, 'cast_at': v.cast_at}
            for v in request.votes
        ],
    }


def create_loan_request_unit(request: LoanRequest) -> Unit:
    return entity_unit(
        symbol=request_symbol(request.request_id),
        name=f"Loan request #{request.request_id}: {request.amount} to {request.borrower}",
        unit_type=UNIT_TYPE_LOAN_REQUEST,
        state=to_state_dict(request),
    )


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def is_open(request: LoanRequest, now: datetime) -> bool:
    """Votes are accepted strictly before the voting deadline."""
    return now < request.voting_deadline


def request_status(request: LoanRequest, now: datetime) -> RequestStatus:
    if request.executed:
        return RequestStatus.EXECUTED
    if is_open(request, now):
        return RequestStatus.OPEN
    return RequestStatus.EXPIRED


def calculate_vote(request: LoanRequest, voter: str, support: bool, weight: int, now: datetime) -> LoanRequest:
    """
    Record a vote and return the updated request.

    ``weight`` is the voter's current stake; it is added to yes_votes only
    for a yes vote. Duplicate and deadline checks belong to the caller.
    """
    vote = Vote(voter=voter, support=support, weight=weight if support else 0, cast_at=now)
    yes_votes = request.yes_votes + weight if support else request.yes_votes
    return replace(request, yes_votes=yes_votes, votes=request.votes + (vote,))


def quorum_reached(request: LoanRequest) -> bool:
    return request.yes_votes >= request.required_votes


# ============================================================================
# LEDGER OPERATIONS
# ============================================================================

def compute_loan_request(
    view: LedgerView,
    borrower: str,
    amount: int,
    interest_amount: int,
    duration: timedelta,
    purpose: str = "",
    proof_refs: Tuple[str, ...] = (),
    risk_note: Optional[str] = None,
) -> PendingTransaction:
    """
    Open a loan request for a vote.

    Sets voting_deadline = now + voting_period (3 days by default) and
    required_votes = quorum_percent of the amount (60 by default).

    Returns:
        PendingTransaction creating the REQUEST:<id> record and advancing
        the pool's request counter.

    Raises:
        InvalidAmount: amount not positive, or interest_amount negative
        InvalidDuration: duration not a positive timedelta
        Blacklisted: borrower defaulted before
        AmountExceedsPool: amount > total_staked
        UnverifiedBorrower: pool requires a risk note and none was given

    Example:
        pending = compute_loan_request(view, "bob", 100, 10, timedelta(days=30),
                                       purpose="inventory", risk_note=note)
        ledger.commit(pending)
    """
    require_amount(amount)
    require_amount(interest_amount, "interest_amount", allow_zero=True)
    if not isinstance(duration, timedelta) or duration <= timedelta(0):
        raise InvalidDuration(f"duration must be a positive timedelta, got {duration!r}")

    terms, pool = load_pool(view)
    if borrower in pool.blacklist:
        raise Blacklisted(f"{borrower} is blacklisted")
    if amount > pool.total_staked:
        raise AmountExceedsPool(
            f"requested {amount} exceeds total staked {pool.total_staked}"
        )
    if terms.require_verified_borrower and not risk_note:
        raise UnverifiedBorrower(f"{borrower} supplied no risk note")

    now = view.current_time
    request = LoanRequest(
        request_id=pool.next_request_id,
        borrower=borrower,
        amount=amount,
        interest_amount=interest_amount,
        duration=duration,
        purpose=purpose,
        proof_refs=tuple(proof_refs),
        risk_note=risk_note,
        created_at=now,
        voting_deadline=now + terms.voting_period,
        yes_votes=0,
        required_votes=calculate_required_votes(amount, terms.quorum_percent),
        executed=False,
        loan_id=None,
        votes=(),
    )
    changes = [pool_state_change(view, terms, replace(pool, next_request_id=pool.next_request_id + 1))]
    symbol = request_symbol(request.request_id)
    return build_transaction(
        view, [], changes,
        origin=user_origin(borrower, "REQUEST_LOAN", symbol),
        units_to_create=(create_loan_request_unit(request),),
    )


def list_requests(view: LedgerView) -> List[LoanRequest]:
    """All requests ever created, by id."""
    _, pool = load_pool(view)
    return [load_loan_request(view, i) for i in range(1, pool.next_request_id)]
