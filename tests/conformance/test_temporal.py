"""
Temporal Conformance Tests

INVARIANT: Deadlines are compared against the ledger clock at the moment
an operation runs, and time only moves forward.

    vote allowed      ⟺ now <  voting_deadline
    default allowed   ⟺ now >  loan deadline
    eligible to vote  ⟺ now >= last_stake_time + min_stake_time

Nothing happens on its own when a deadline passes: request expiry is a
computed status, and a default needs someone to call it.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta

from stakepool import NotEligible, NotYetExpired, VotingClosed, RequestStatus, LoanStatus

from tests.pool_helpers import T0, SEASONED, make_pool, seasoned


MONTH = timedelta(days=30)
SECOND = timedelta(seconds=1)


class TestVotingWindow:

    def test_vote_one_second_before_deadline(self, seasoned_pool):
        request_id = seasoned_pool.request_loan("dave", 1000, 10, MONTH)
        deadline = seasoned_pool.get_request(request_id).voting_deadline
        seasoned_pool.ledger.advance_time(deadline - SECOND)
        seasoned_pool.vote(request_id, "bob", True)
        assert seasoned_pool.get_request(request_id).yes_votes == 300

    def test_vote_at_deadline_rejected(self, seasoned_pool):
        request_id = seasoned_pool.request_loan("dave", 1000, 10, MONTH)
        seasoned_pool.ledger.advance_time(seasoned_pool.get_request(request_id).voting_deadline)
        with pytest.raises(VotingClosed):
            seasoned_pool.vote(request_id, "bob", True)

    def test_expiry_is_computed_not_stored(self, seasoned_pool):
        request_id = seasoned_pool.request_loan("dave", 1000, 10, MONTH)
        log_length = len(seasoned_pool.ledger.transaction_log)
        assert seasoned_pool.request_status(request_id) == RequestStatus.OPEN

        seasoned_pool.ledger.advance_time(SEASONED + timedelta(days=3))

        assert seasoned_pool.request_status(request_id) == RequestStatus.EXPIRED
        assert not seasoned_pool.get_request(request_id).executed
        assert len(seasoned_pool.ledger.transaction_log) == log_length


class TestStakeAge:

    def test_eligible_exactly_at_min_stake_time(self, pool):
        pool.stake("alice", 1000)
        pool.ledger.advance_time(T0 + timedelta(days=7) - SECOND)
        assert not pool.is_eligible("alice")
        pool.ledger.advance_time(T0 + timedelta(days=7))
        assert pool.is_eligible("alice")

    def test_top_up_restarts_clock(self, seasoned_pool):
        seasoned_pool.stake("bob", 1)
        assert not seasoned_pool.is_eligible("bob")
        request_id = seasoned_pool.request_loan("dave", 1000, 10, MONTH)
        with pytest.raises(NotEligible):
            seasoned_pool.vote(request_id, "bob", True)

    def test_withdrawal_keeps_eligibility(self, seasoned_pool):
        seasoned_pool.withdraw_stake("bob", 100)
        assert seasoned_pool.is_eligible("bob")


class TestLoanDeadline:

    def _loan(self, pool):
        request_id = pool.request_loan("dave", 100, 10, MONTH)
        return pool.vote(request_id, "alice", True)

    def test_no_default_at_deadline(self, seasoned_pool):
        loan_id = self._loan(seasoned_pool)
        seasoned_pool.ledger.advance_time(seasoned_pool.get_loan(loan_id).deadline)
        with pytest.raises(NotYetExpired):
            seasoned_pool.mark_as_defaulted(loan_id)

    def test_default_one_second_after(self, seasoned_pool):
        loan_id = self._loan(seasoned_pool)
        seasoned_pool.ledger.advance_time(seasoned_pool.get_loan(loan_id).deadline + SECOND)
        seasoned_pool.mark_as_defaulted(loan_id)
        assert seasoned_pool.loan_status(loan_id) == LoanStatus.DEFAULTED

    def test_overdue_loan_stays_active_until_marked(self, seasoned_pool):
        loan_id = self._loan(seasoned_pool)
        seasoned_pool.ledger.advance_time(seasoned_pool.get_loan(loan_id).deadline + MONTH)
        assert seasoned_pool.loan_status(loan_id) == LoanStatus.ACTIVE

    def test_deadline_counts_from_disbursement(self, seasoned_pool):
        request_id = seasoned_pool.request_loan("dave", 1000, 10, MONTH)
        seasoned_pool.vote(request_id, "bob", True)
        seasoned_pool.ledger.advance_time(SEASONED + timedelta(days=2))
        loan_id = seasoned_pool.vote(request_id, "alice", True)
        loan = seasoned_pool.get_loan(loan_id)
        assert loan.issued_at == SEASONED + timedelta(days=2)
        assert loan.deadline == loan.issued_at + MONTH


class TestHistory:

    def test_clone_at_before_loan(self, seasoned_pool):
        request_id = seasoned_pool.request_loan("dave", 100, 10, MONTH)
        seasoned_pool.ledger.advance_time(SEASONED + timedelta(days=1))
        seasoned_pool.vote(request_id, "alice", True)

        past = seasoned_pool.ledger.clone_at(SEASONED)

        assert not past.has_unit("LOAN:1")
        assert past.get_unit_state("REQUEST:1")['executed'] is False
        assert past.get_unit_state("STAKER:alice")['locked_amount'] == 0
        assert past.get_balance("dave", "USD") == 0

    @given(st.lists(st.integers(min_value=1, max_value=5), min_size=1, max_size=8))
    @settings(max_examples=30, deadline=None)
    def test_log_is_time_ordered(self, gaps):
        """
        PROPERTY: Execution times in the log never decrease.
        """
        pool = seasoned(make_pool())
        for gap in gaps:
            pool.ledger.advance_time(pool.ledger.current_time + timedelta(hours=gap))
            pool.stake("carol", gap)
        times = [tx.execution_time for tx in pool.ledger.transaction_log]
        assert times == sorted(times)
