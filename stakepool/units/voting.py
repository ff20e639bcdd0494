"""
voting.py - Voting Engine

Stake-weighted approval of loan requests.

A vote is accepted when, in this order:

    1. the request exists                        else UnknownRequest
    2. the request is not executed               else AlreadyExecuted (yes votes)
    3. now < voting_deadline                     else VotingClosed
    4. the voter has not voted on it             else DuplicateVote
    5. the voter is eligible (aged stake > 0)    else NotEligible

A yes vote adds the voter's current staked_amount to yes_votes. The vote
that brings yes_votes to required_votes creates the loan in the same
transaction, so there is never a moment where a request has reached quorum
without its loan existing. When the yes-voters' free stake cannot back the
whole principal, the deciding vote is refused with InsufficientFreeStake
and the request stays open.

Votes arriving after execution are harmless: a no vote is still recorded,
a yes vote is refused with AlreadyExecuted and nothing changes.
"""

from __future__ import annotations
from typing import List

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    AlreadyExecuted, DuplicateVote, NotEligible, VotingClosed,
    build_transaction, user_origin,
)
from .registry import load_pool
from .staker import calculate_eligibility, load_staker
from .loan_request import (
    calculate_vote, is_open, load_loan_request, quorum_reached, request_symbol,
    to_state_dict,
)
from .loan import plan_loan_creation


def compute_vote(view: LedgerView, request_id: int, voter: str, support: bool) -> PendingTransaction:
    """
    Cast a vote on a loan request.

    Returns:
        PendingTransaction that records the vote and, if this yes vote
        reaches quorum, also creates and disburses the loan.

    Raises:
        UnknownRequest, AlreadyExecuted, VotingClosed, DuplicateVote,
        NotEligible, InsufficientFreeStake

    Example:
        # alice staked 1000 more than 7 days ago, loan of 100 needs 60
        pending = compute_vote(view, 1, "alice", True)
        ledger.commit(pending, settle=hook)   # loan #1 disbursed
    """
    request = load_loan_request(view, request_id)
    now = view.current_time

    if request.executed and support:
        raise AlreadyExecuted(
            f"loan request {request_id} already produced loan {request.loan_id}"
        )
    if not is_open(request, now):
        raise VotingClosed(
            f"voting on request {request_id} closed at {request.voting_deadline}"
        )
    if request.has_voted(voter):
        raise DuplicateVote(f"{voter} already voted on request {request_id}")

    terms, _ = load_pool(view)
    staker = load_staker(view, voter)
    if not calculate_eligibility(staker, now, terms.min_stake_time):
        raise NotEligible(
            f"{voter} is not eligible to vote (staked {staker.staked_amount}, "
            f"last stake {staker.last_stake_time})"
        )

    voted = calculate_vote(request, voter, support, staker.staked_amount, now)

    moves: List[Move] = []
    units: List[Unit] = []
    if support and not voted.executed and quorum_reached(voted):
        moves, state_changes, units = plan_loan_creation(view, voted)
    else:
        symbol = request_symbol(request_id)
        state_changes = [UnitStateChange(
            unit=symbol,
            old_state=view.get_unit_state(symbol),
            new_state=to_state_dict(voted),
        )]

    return build_transaction(
        view, moves, state_changes,
        origin=user_origin(voter, "VOTE", request_symbol(request_id)),
        units_to_create=tuple(units),
    )
