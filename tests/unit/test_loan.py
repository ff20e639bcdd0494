"""
test_loan.py - Unit tests for the loan ledger

Tests:
- Lender shares, contributions and distribution math
- plan_loan_creation guards (executed, quorum, free stake)
- compute_repayment: collection, payouts, dust, overpayment, stake release
- compute_default: deadline boundary, blacklist, write-off
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from stakepool import (
    AlreadyExecuted, InsufficientFreeStake, InsufficientPayment, InvalidAmount, LoanNotActive,
    NotYetExpired, QuorumNotMet, UnknownLoan,
)
from stakepool.units import (
    POOL_SYMBOL, StakerState, Loan, LoanStatus,
    calculate_contributions, calculate_distribution, calculate_lender_shares,
    calculate_vote, compute_default, compute_repayment, load_loan, loan_status,
    plan_loan_creation,
)
from tests.fake_view import make_request, pool_view


T0 = datetime(2025, 1, 1)
ISSUED = T0 + timedelta(days=8)
DEADLINE = ISSUED + timedelta(days=30)


def make_loan(**overrides) -> Loan:
    fields = dict(
        loan_id=1,
        request_id=1,
        borrower="bob",
        amount=100,
        interest_amount=10,
        duration=timedelta(days=30),
        issued_at=ISSUED,
        deadline=DEADLINE,
        active=True,
        repaid=False,
        defaulted=False,
        total_yes_votes=1000,
        lender_shares={"alice": 1000},
        locked_stakes={"alice": 100},
    )
    fields.update(overrides)
    return Loan(**fields)


def _change(pending, unit):
    return next(sc for sc in pending.state_changes if sc.unit == unit)


def _payouts(pending):
    return {m.dest: int(m.quantity) for m in pending.moves if m.source == "pool"}


@pytest.fixture
def single_lender_view():
    return pool_view(
        ISSUED + timedelta(days=10),
        [StakerState("alice", 1000, 100, T0)],
        loans=[make_loan()],
    )


@pytest.fixture
def two_lender_view():
    loan = make_loan(
        total_yes_votes=3,
        lender_shares={"alice": 2, "carol": 1},
        locked_stakes={"alice": 67, "carol": 33},
    )
    return pool_view(
        ISSUED + timedelta(days=10),
        [StakerState("alice", 200, 67, T0), StakerState("carol", 100, 33, T0)],
        loans=[loan],
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

class TestDistributionMath:

    def test_single_lender_gets_everything(self):
        assert calculate_distribution(110, {"alice": 1000}) == ({"alice": 110}, 0)

    def test_dust_stays_undistributed(self):
        payouts, dust = calculate_distribution(110, {"alice": 2, "carol": 1})
        assert payouts == {"alice": 73, "carol": 36}
        assert dust == 1

    def test_zero_shares_are_skipped(self):
        payouts, dust = calculate_distribution(100, {"alice": 5, "carol": 0})
        assert payouts == {"alice": 100}
        assert dust == 0

    def test_no_shares_keeps_everything(self):
        assert calculate_distribution(100, {}) == ({}, 100)

    def test_small_total_over_large_stake(self):
        # (amount + interest) // total_yes_votes would be 0 here
        assert calculate_distribution(110, {"alice": 1000}) == ({"alice": 110}, 0)

    def test_contributions_proportional(self):
        assert calculate_contributions(100, {"a": 300, "b": 100}, {"a": 300, "b": 100}) == {"a": 75, "b": 25}

    def test_contributions_cover_principal(self):
        contributions = calculate_contributions(100, {"a": 2, "b": 1}, {"a": 200, "b": 100})
        assert contributions == {"a": 67, "b": 33}
        assert sum(contributions.values()) == 100

    def test_remainder_skips_lenders_without_room(self):
        assert calculate_contributions(100, {"a": 2, "b": 1}, {"a": 66, "b": 100}) == {"a": 66, "b": 34}

    def test_lender_short_of_free_stake(self):
        with pytest.raises(InsufficientFreeStake, match="a has 10 free stake"):
            calculate_contributions(100, {"a": 300, "b": 100}, {"a": 10, "b": 100})

    def test_no_room_for_remainder(self):
        with pytest.raises(InsufficientFreeStake, match="1 short"):
            calculate_contributions(100, {"a": 2, "b": 1}, {"a": 66, "b": 33})

    def test_lender_shares_use_current_stake(self):
        request = calculate_vote(make_request(), "alice", True, 10, T0)
        request = calculate_vote(request, "carol", False, 10, T0)
        stakers = {"alice": StakerState("alice", 700, 0, T0)}
        assert calculate_lender_shares(request, stakers) == {"alice": 700}


# ============================================================================
# LOAN CREATION
# ============================================================================

class TestPlanLoanCreation:

    def test_creates_loan_from_quorate_request(self):
        stored = make_request(created_at=ISSUED)
        request = calculate_vote(stored, "alice", True, 1000, ISSUED)
        view = pool_view(ISSUED, [StakerState("alice", 1000, 0, T0)], requests=[stored])
        moves, changes, units = plan_loan_creation(view, request)

        assert [u.symbol for u in units] == ["LOAN:1"]
        assert units[0].state['locked_stakes'] == {"alice": 100}
        executed = next(sc for sc in changes if sc.unit == "REQUEST:1")
        assert executed.new_state['executed'] is True
        assert [(m.source, m.dest, m.quantity) for m in moves] == [("pool", "bob", Decimal("100"))]

    def test_already_executed(self):
        request = make_request(executed=True, loan_id=1, yes_votes=1000)
        view = pool_view(ISSUED, [StakerState("alice", 1000, 0, T0)], requests=[request])
        with pytest.raises(AlreadyExecuted):
            plan_loan_creation(view, request)

    def test_quorum_not_met(self):
        request = calculate_vote(make_request(), "alice", True, 59, T0)
        view = pool_view(T0, [StakerState("alice", 59, 0, T0)], requests=[make_request()])
        with pytest.raises(QuorumNotMet):
            plan_loan_creation(view, request)

    def test_fully_locked_lender_cannot_back_loan(self):
        stored = make_request(created_at=ISSUED)
        request = calculate_vote(stored, "alice", True, 1000, ISSUED)
        view = pool_view(ISSUED, [StakerState("alice", 1000, 1000, T0)], requests=[stored])
        with pytest.raises(InsufficientFreeStake):
            plan_loan_creation(view, request)


# ============================================================================
# REPAYMENT
# ============================================================================

class TestComputeRepayment:

    def test_single_lender_receives_principal_and_interest(self, single_lender_view):
        pending = compute_repayment(single_lender_view, 1, 110)

        collect = next(m for m in pending.moves if m.dest == "pool")
        assert (collect.source, collect.quantity) == ("bob", Decimal("110"))
        assert _payouts(pending) == {"alice": 110}

    def test_closes_loan(self, single_lender_view):
        pending = compute_repayment(single_lender_view, 1, 110)
        loan = _change(pending, "LOAN:1").new_state
        assert loan['active'] is False
        assert loan['repaid'] is True
        assert loan['defaulted'] is False
        assert loan['amount_paid'] == 110
        assert loan['distributions'] == {"alice": 110}
        assert loan['closed_at'] == single_lender_view.current_time

    def test_releases_and_consumes_contribution(self, single_lender_view):
        pending = compute_repayment(single_lender_view, 1, 110)
        staker = _change(pending, "STAKER:alice").new_state
        assert (staker['staked_amount'], staker['locked_amount']) == (900, 0)
        assert _change(pending, POOL_SYMBOL).new_state['total_staked'] == 900

    def test_dust_and_overpayment_kept_by_pool(self, two_lender_view):
        pending = compute_repayment(two_lender_view, 1, 115)
        assert _payouts(pending) == {"alice": 73, "carol": 36}
        # 1 rounding dust + 5 overpaid
        assert _change(pending, POOL_SYMBOL).new_state['undistributed'] == 6

    def test_distributed_never_exceeds_due(self, two_lender_view):
        pending = compute_repayment(two_lender_view, 1, 110)
        assert sum(_payouts(pending).values()) <= 110

    def test_insufficient_payment(self, single_lender_view):
        with pytest.raises(InsufficientPayment):
            compute_repayment(single_lender_view, 1, 109)

    def test_invalid_amount(self, single_lender_view):
        with pytest.raises(InvalidAmount):
            compute_repayment(single_lender_view, 1, 0)

    def test_unknown_loan(self, single_lender_view):
        with pytest.raises(UnknownLoan):
            compute_repayment(single_lender_view, 2, 110)

    @pytest.mark.parametrize("closed", [
        dict(active=False, repaid=True),
        dict(active=False, defaulted=True),
    ])
    def test_closed_loan_not_active(self, closed):
        view = pool_view(ISSUED, [StakerState("alice", 900, 0, T0)], loans=[make_loan(**closed)])
        with pytest.raises(LoanNotActive):
            compute_repayment(view, 1, 110)

    def test_late_repayment_allowed(self):
        view = pool_view(DEADLINE + timedelta(days=5), [StakerState("alice", 1000, 100, T0)], loans=[make_loan()])
        assert _payouts(compute_repayment(view, 1, 110)) == {"alice": 110}


# ============================================================================
# DEFAULT
# ============================================================================

class TestComputeDefault:

    def _view(self, time):
        return pool_view(time, [StakerState("alice", 1000, 100, T0)], loans=[make_loan()])

    def test_not_yet_expired_at_deadline(self):
        with pytest.raises(NotYetExpired):
            compute_default(self._view(DEADLINE), 1)

    def test_default_after_deadline(self):
        pending = compute_default(self._view(DEADLINE + timedelta(seconds=1)), 1, caller="carol")

        assert pending.moves == ()
        loan = _change(pending, "LOAN:1").new_state
        assert loan['active'] is False
        assert loan['defaulted'] is True
        assert loan['repaid'] is False
        pool = _change(pending, POOL_SYMBOL).new_state
        assert pool['blacklist'] == ["bob"]
        assert pool['total_staked'] == 900
        assert pending.origin.source_id == "carol"

    def test_contribution_written_off(self):
        pending = compute_default(self._view(DEADLINE + timedelta(days=1)), 1)
        staker = _change(pending, "STAKER:alice").new_state
        assert (staker['staked_amount'], staker['locked_amount']) == (900, 0)

    def test_already_repaid(self):
        view = pool_view(DEADLINE + timedelta(days=1), [StakerState("alice", 900, 0, T0)],
                         loans=[make_loan(active=False, repaid=True)])
        with pytest.raises(LoanNotActive):
            compute_default(view, 1)


# ============================================================================
# STATUS
# ============================================================================

class TestStatus:

    @pytest.mark.parametrize("fields, status", [
        (dict(), LoanStatus.ACTIVE),
        (dict(active=False, repaid=True), LoanStatus.REPAID),
        (dict(active=False, defaulted=True), LoanStatus.DEFAULTED),
    ])
    def test_loan_status(self, fields, status):
        assert loan_status(make_loan(**fields)) == status

    def test_load_round_trip(self, single_lender_view):
        assert load_loan(single_lender_view, 1) == make_loan()

