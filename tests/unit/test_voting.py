"""
test_voting.py - Unit tests for the voting engine

Tests:
- Rejections in order: unknown request, executed, closed, duplicate, not eligible
- Yes votes weighted by current stake, no votes weightless
- Quorum crossing folds loan creation into the vote
- Lender snapshot uses stake at quorum time, in vote order
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from stakepool import (
    AlreadyExecuted, DuplicateVote, InsufficientFreeStake, NotEligible, UnknownRequest,
    VotingClosed,
    UNIT_TYPE_LOAN,
)
from stakepool.units import (
    POOL_SYMBOL, StakerState, calculate_vote, compute_vote,
)
from tests.fake_view import make_request, pool_view


T0 = datetime(2025, 1, 1)
NOW = T0 + timedelta(days=8)
STAKERS = [
    StakerState("alice", 1000, 0, T0),
    StakerState("bob", 300, 0, T0),
    StakerState("carol", 100, 0, T0),
    StakerState("eve", 5000, 0, NOW - timedelta(days=1)),
]


def _open_request(**overrides):
    fields = dict(
        amount=1000,
        required_votes=600,
        created_at=NOW,
        voting_deadline=NOW + timedelta(days=3),
    )
    fields.update(overrides)
    return make_request(**fields)


def _view(request, time=NOW, stakers=STAKERS):
    return pool_view(time, stakers, requests=[request])


def _change(pending, unit):
    return next(sc for sc in pending.state_changes if sc.unit == unit)


# ============================================================================
# REJECTIONS
# ============================================================================

class TestVoteRejections:

    def test_unknown_request(self):
        with pytest.raises(UnknownRequest):
            compute_vote(pool_view(NOW, STAKERS), 1, "alice", True)

    def test_voting_closed_at_deadline(self):
        request = _open_request()
        with pytest.raises(VotingClosed):
            compute_vote(_view(request, time=request.voting_deadline), 1, "alice", True)

    def test_duplicate_vote(self):
        request = calculate_vote(_open_request(), "bob", True, 300, NOW)
        with pytest.raises(DuplicateVote):
            compute_vote(_view(request), 1, "bob", True)

    def test_duplicate_after_no_vote(self):
        request = calculate_vote(_open_request(), "bob", False, 300, NOW)
        with pytest.raises(DuplicateVote):
            compute_vote(_view(request), 1, "bob", True)

    def test_stake_too_young(self):
        with pytest.raises(NotEligible):
            compute_vote(_view(_open_request()), 1, "eve", True)

    def test_never_staked(self):
        with pytest.raises(NotEligible):
            compute_vote(_view(_open_request()), 1, "mallory", False)

    def test_closed_checked_before_duplicate(self):
        request = calculate_vote(_open_request(), "bob", True, 300, NOW)
        with pytest.raises(VotingClosed):
            compute_vote(_view(request, time=request.voting_deadline), 1, "bob", True)

    def test_yes_vote_after_execution(self):
        request = _open_request(executed=True, loan_id=1, yes_votes=1000)
        with pytest.raises(AlreadyExecuted):
            compute_vote(_view(request), 1, "bob", True)


# ============================================================================
# RECORDING VOTES
# ============================================================================

class TestRecordVote:

    def test_yes_vote_below_quorum(self):
        pending = compute_vote(_view(_open_request()), 1, "bob", True)

        assert pending.moves == ()
        assert pending.units_to_create == ()
        assert len(pending.state_changes) == 1
        state = _change(pending, "REQUEST:1").new_state
        assert state['yes_votes'] == 300
        assert state['executed'] is False
        assert state['votes'] == [{'voter': 'bob', 'support': True, 'weight': 300, 'cast_at': NOW}]

    def test_no_vote_has_no_weight(self):
        pending = compute_vote(_view(_open_request()), 1, "alice", False)
        state = _change(pending, "REQUEST:1").new_state
        assert state['yes_votes'] == 0
        assert state['votes'][0]['support'] is False

    def test_no_vote_cannot_trigger_quorum(self):
        request = _open_request(required_votes=0)
        pending = compute_vote(_view(request), 1, "alice", False)
        assert pending.units_to_create == ()
        assert _change(pending, "REQUEST:1").new_state['executed'] is False

    def test_no_vote_after_execution_is_recorded(self):
        request = _open_request(executed=True, loan_id=1, yes_votes=1000)
        pending = compute_vote(_view(request), 1, "bob", False)
        state = _change(pending, "REQUEST:1").new_state
        assert state['loan_id'] == 1
        assert state['votes'][-1]['voter'] == "bob"
        assert pending.units_to_create == ()

    def test_weight_is_current_stake(self):
        stakers = [StakerState("bob", 450, 200, T0)]
        pending = compute_vote(_view(_open_request(), stakers=stakers), 1, "bob", True)
        assert _change(pending, "REQUEST:1").new_state['yes_votes'] == 450


# ============================================================================
# QUORUM
# ============================================================================

class TestQuorum:

    def test_quorum_creates_loan(self):
        request = _open_request(amount=100, required_votes=60)
        pending = compute_vote(_view(request), 1, "carol", True)

        loans = [u for u in pending.units_to_create if u.unit_type == UNIT_TYPE_LOAN]
        assert len(loans) == 1
        loan = loans[0].state
        assert loans[0].symbol == "LOAN:1"
        assert loan['borrower'] == "bob"
        assert loan['amount'] == 100
        assert loan['deadline'] == NOW + request.duration
        assert loan['active'] is True
        assert loan['lender_shares'] == {"carol": 100}
        assert loan['total_yes_votes'] == 100
        assert loan['locked_stakes'] == {"carol": 100}

        request_state = _change(pending, "REQUEST:1").new_state
        assert request_state['executed'] is True
        assert request_state['loan_id'] == 1
        assert request_state['yes_votes'] == 100

    def test_quorum_disburses_to_borrower(self):
        request = _open_request(amount=100, required_votes=60)
        pending = compute_vote(_view(request), 1, "carol", True)
        assert len(pending.moves) == 1
        move = pending.moves[0]
        assert (move.source, move.dest, move.quantity) == ("pool", "bob", Decimal("100"))
        assert move.contract_id == "disburse:LOAN:1"

    def test_quorum_locks_stake_and_advances_loan_counter(self):
        request = _open_request(amount=100, required_votes=60)
        pending = compute_vote(_view(request), 1, "carol", True)
        assert _change(pending, "STAKER:carol").new_state['locked_amount'] == 100
        assert _change(pending, POOL_SYMBOL).new_state['next_loan_id'] == 2

    def test_snapshot_in_vote_order(self):
        request = calculate_vote(_open_request(), "bob", True, 300, NOW)
        request = calculate_vote(request, "carol", False, 100, NOW)
        pending = compute_vote(_view(request), 1, "alice", True)

        loan = next(u for u in pending.units_to_create if u.unit_type == UNIT_TYPE_LOAN).state
        assert list(loan['lender_shares']) == ["bob", "alice"]
        assert loan['total_yes_votes'] == 1300
        # 1000 * 300 // 1300 = 230 and 1000 * 1000 // 1300 = 769; bob, first
        # in vote order, locks the remaining 1
        assert loan['locked_stakes'] == {"bob": 231, "alice": 769}

    def test_snapshot_uses_stake_at_quorum(self):
        # bob voted with 300 and has since topped up to 500
        request = calculate_vote(_open_request(), "bob", True, 300, NOW)
        stakers = [StakerState("alice", 1000, 0, T0), StakerState("bob", 500, 0, T0)]
        pending = compute_vote(_view(request, stakers=stakers), 1, "alice", True)

        loan = next(u for u in pending.units_to_create if u.unit_type == UNIT_TYPE_LOAN).state
        assert loan['lender_shares'] == {"bob": 500, "alice": 1000}
        assert loan['total_yes_votes'] == 1500
        assert _change(pending, "REQUEST:1").new_state['yes_votes'] == 1300

    def test_deciding_vote_needs_free_stake(self):
        stakers = [StakerState("alice", 1000, 950, T0)]
        request = _open_request(amount=100, required_votes=60)
        with pytest.raises(InsufficientFreeStake, match="alice has 50 free stake"):
            compute_vote(_view(request, stakers=stakers), 1, "alice", True)

    def test_locked_voter_can_still_vote_below_quorum(self):
        stakers = [StakerState("alice", 1000, 1000, T0)]
        request = _open_request(amount=2000, required_votes=1200)
        pending = compute_vote(_view(request, stakers=stakers), 1, "alice", True)
        assert pending.units_to_create == ()
        assert _change(pending, "REQUEST:1").new_state['yes_votes'] == 1000
