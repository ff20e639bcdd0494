"""
pool.py - Staking Pool Service

The public operation surface of the lending pool.

Each operation runs as one unit of work under the ledger lock:

    1. read current state through the ledger's LedgerView
    2. compute a PendingTransaction (pure function in stakepool.units)
    3. Ledger.commit(): validate -> settle cash moves via gateway -> apply

A raise at any step leaves the ledger exactly as it was. Deadlines are
compared against the ledger's logical clock when an operation runs; there
is no background processing.
"""

from __future__ import annotations
from datetime import timedelta
from typing import List, Optional, Tuple

from .core import PoolConfig, PendingTransaction, Transaction, UNIT_TYPE_LOAN, cash
from .ledger import Ledger
from .settlement import InstantSettlement, SettlementGateway, settlement_hook
from .units.registry import POOL_SYMBOL, create_pool_unit, is_blacklisted, load_pool
from .units.staker import (
    StakerState, compute_stake, compute_withdrawal, is_eligible, load_staker,
)
from .units.loan_request import (
    LoanRequest, RequestStatus, compute_loan_request, list_requests, load_loan_request,
    request_status,
)
from .units.voting import compute_vote
from .units.loan import (
    Loan, LoanStatus, compute_default, compute_repayment, list_loans, load_loan, loan_status,
)


class StakePool:
    """
    Uncollateralized lending pool over a Ledger.

    Example:
        ledger = Ledger("pool", datetime(2025, 1, 1), verbose=False)
        pool = StakePool(ledger)
        pool.stake("alice", 1000)
        ledger.advance_time(datetime(2025, 1, 9))
        request_id = pool.request_loan("bob", 100, 10, timedelta(days=30))
        loan_id = pool.vote(request_id, "alice", True)
        pool.repay_loan(loan_id, 110)
    """

    def __init__(
        self,
        ledger: Ledger,
        gateway: Optional[SettlementGateway] = None,
        config: Optional[PoolConfig] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Attach a pool to a ledger, creating the pool's currency, registry
        and wallet on first use.

        Args:
            ledger: The ledger to operate on
            gateway: Settlement gateway (InstantSettlement if not provided)
            config: Pool terms, used only when the pool is created
            verbose: Print one line per operation (defaults to ledger.verbose)
        """
        self.ledger = ledger
        self.gateway = gateway if gateway is not None else InstantSettlement()
        self.verbose = ledger.verbose if verbose is None else verbose

        with ledger.lock:
            if not ledger.has_unit(POOL_SYMBOL):
                config = config or PoolConfig()
                if not ledger.has_unit(config.currency):
                    ledger.register_unit(cash(config.currency, config.currency))
                ledger.register_unit(create_pool_unit(config))
                ledger.ensure_wallet(config.pool_wallet)
            terms, _ = load_pool(ledger)
        self.currency = terms.currency
        self.pool_wallet = terms.pool_wallet

    def _commit(self, pending: PendingTransaction) -> Optional[Transaction]:
        return self.ledger.commit(pending, settle=settlement_hook(self.gateway, self.currency))

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[POOL] {message}")

    # ========================================================================
    # STAKE MANAGER
    # ========================================================================

    def stake(self, identity: str, amount: int) -> None:
        """Deposit ``amount`` of stake for ``identity``."""
        with self.ledger.lock:
            pending = compute_stake(self.ledger, identity, amount)
            self.ledger.ensure_wallet(identity)
            self._commit(pending)
        self._log(f"{identity} staked {amount}")

    def withdraw_stake(self, identity: str, amount: int) -> None:
        """Withdraw free stake. Paid out through the settlement gateway."""
        with self.ledger.lock:
            self._commit(compute_withdrawal(self.ledger, identity, amount))
        self._log(f"{identity} withdrew {amount}")

    # ========================================================================
    # VOTING ENGINE
    # ========================================================================

    def request_loan(
        self,
        borrower: str,
        amount: int,
        interest_amount: int,
        duration: timedelta,
        purpose: str = "",
        proof_refs: Tuple[str, ...] = (),
        risk_note: Optional[str] = None,
    ) -> int:
        """
        Open a loan request for a vote.

        Returns:
            The new request id.
        """
        with self.ledger.lock:
            pending = compute_loan_request(
                self.ledger, borrower, amount, interest_amount, duration,
                purpose=purpose, proof_refs=proof_refs, risk_note=risk_note,
            )
            self.ledger.ensure_wallet(borrower)
            request_id = pending.units_to_create[0].state['request_id']
            self._commit(pending)
        self._log(f"{borrower} requested {amount} + {interest_amount} (request #{request_id})")
        return request_id

    def vote(self, request_id: int, voter: str, support: bool) -> Optional[int]:
        """
        Vote on a loan request.

        Returns:
            The id of the loan this vote created, or None if the request
            has not reached quorum.
        """
        with self.ledger.lock:
            pending = compute_vote(self.ledger, request_id, voter, support)
            self._commit(pending)
            loan_id = load_loan_request(self.ledger, request_id).loan_id
            created = any(u.unit_type == UNIT_TYPE_LOAN for u in pending.units_to_create)
        self._log(f"{voter} voted {'yes' if support else 'no'} on request #{request_id}")
        if created:
            self._log(f"request #{request_id} reached quorum, loan #{loan_id} disbursed")
            return loan_id
        return None

    # ========================================================================
    # LOAN LEDGER
    # ========================================================================

    def repay_loan(self, loan_id: int, paid_amount: int) -> None:
        """Repay a loan in full and distribute it to the lenders."""
        with self.ledger.lock:
            self._commit(compute_repayment(self.ledger, loan_id, paid_amount))
        self._log(f"loan #{loan_id} repaid with {paid_amount}")

    def mark_as_defaulted(self, loan_id: int, caller: str = "anyone") -> None:
        """Mark an overdue loan as defaulted and blacklist its borrower."""
        with self.ledger.lock:
            self._commit(compute_default(self.ledger, loan_id, caller))
        self._log(f"loan #{loan_id} defaulted")

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def get_staker(self, identity: str) -> StakerState:
        return load_staker(self.ledger, identity)

    def get_request(self, request_id: int) -> LoanRequest:
        return load_loan_request(self.ledger, request_id)

    def get_loan(self, loan_id: int) -> Loan:
        return load_loan(self.ledger, loan_id)

    def list_requests(self) -> List[LoanRequest]:
        return list_requests(self.ledger)

    def list_loans(self) -> List[Loan]:
        return list_loans(self.ledger)

    def request_status(self, request_id: int) -> RequestStatus:
        """Status as of the ledger's current time (expiry is computed)."""
        return request_status(self.get_request(request_id), self.ledger.current_time)

    def loan_status(self, loan_id: int) -> LoanStatus:
        return loan_status(self.get_loan(loan_id))

    def is_eligible(self, identity: str) -> bool:
        return is_eligible(self.ledger, identity)

    def is_blacklisted(self, identity: str) -> bool:
        return is_blacklisted(self.ledger, identity)

    def total_staked(self) -> int:
        _, state = load_pool(self.ledger)
        return state.total_staked

    def undistributed(self) -> int:
        """Rounding dust and overpayments retained by the pool."""
        _, state = load_pool(self.ledger)
        return state.undistributed

    def free_stake(self, identity: str) -> int:
        return self.get_staker(identity).free_amount
